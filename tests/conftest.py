from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

import pytest

from sortie.core.exceptions import ProviderError
from sortie.flight import Flight, FlightConfig
from sortie.model import FloatingIPSummary, Image, ImageSummary, Server, ServerSummary, SSHKeySummary


@dataclass
class FakeFloatingIP:
    id: str
    address: str
    server_id: str | None = None


class FakeProvider:
    """In-memory provider recording every lifecycle call.

    Implements Provider, FloatingIPCapable and SSHKeyCapable. Servers get a
    fresh floating IP unless one is passed in, mirroring the pooled-IP backends.
    """

    def __init__(self, *, quota: int = 4) -> None:
        self.quota = quota
        self.servers: dict[str, Server] = {}
        self.floating_ips: dict[str, FakeFloatingIP] = {}
        self.ssh_keys: dict[str, str] = {}
        self.server_summaries: list[ServerSummary] = []
        self.image_summaries: list[ImageSummary] = []
        self.ssh_key_summaries: list[SSHKeySummary] = []

        self.created: list[tuple[str, str | None]] = []
        self.deleted: list[tuple[str, bool]] = []
        self.deleted_ips: list[str] = []
        self.deleted_images: list[str] = []
        self.deleted_keys: list[str] = []
        self.fail_create: set[int] = set()
        self.fail_delete: set[str] = set()
        self.closed = False

        self._ids = itertools.count(1)

    @classmethod
    async def create(cls, config: object, *, log=None) -> FakeProvider:
        return cls()

    @property
    def name(self) -> str:
        return "fake"

    @property
    def metadata_placeholders(self) -> dict[str, str]:
        return {"$public_ipv4": "${FAKE_PUBLIC_IPV4}"}

    @property
    def floating_ip_quota(self) -> int:
        return self.quota

    async def create_server(
        self,
        name: str,
        user_data: str,
        *,
        floating_ip: str | None = None,
        ssh_key_id: str | None = None,
    ) -> Server:
        n = next(self._ids)
        self.created.append((name, floating_ip))
        if len(self.created) in self.fail_create:
            raise ProviderError(f"quota exceeded creating {name}")

        ip_id = floating_ip or await self.create_floating_ip()
        server = Server(
            id=f"srv-{n}",
            name=name,
            status="active",
            created_at=datetime.now(UTC),
            public_ip=self.floating_ips[ip_id].address,
            private_ip=f"192.168.0.{n}",
            floating_ip=ip_id,
            floating_ip_address=self.floating_ips[ip_id].address,
        )
        self.floating_ips[ip_id].server_id = server.id
        self.servers[server.id] = server
        return server

    async def delete_server(self, server_id: str, *, release_floating_ip: bool = True) -> None:
        if server_id in self.fail_delete:
            raise ProviderError(f"cannot delete {server_id}", server_id)
        self.deleted.append((server_id, release_floating_ip))
        server = self.servers.pop(server_id, None)
        if server is None or server.floating_ip is None:
            return
        self.floating_ips[server.floating_ip].server_id = None
        if release_floating_ip:
            await self.delete_floating_ip(server.floating_ip)

    async def create_image(self, name: str, source_url: str) -> Image:
        return Image(id=f"img-{next(self._ids)}", name=name, status="available")

    async def delete_image(self, image_id: str) -> None:
        self.deleted_images.append(image_id)

    async def list_servers(self) -> list[ServerSummary]:
        return list(self.server_summaries)

    async def list_images(self) -> list[ImageSummary]:
        return list(self.image_summaries)

    async def console_output(self, server_id: str) -> str:
        return f"console of {server_id}"

    async def close(self) -> None:
        self.closed = True

    # Floating IPs

    async def create_floating_ip(self) -> str:
        n = next(self._ids)
        ip = FakeFloatingIP(id=f"fip-{n}", address=f"203.0.113.{n}")
        self.floating_ips[ip.id] = ip
        return ip.id

    async def delete_floating_ip(self, floating_ip_id: str) -> None:
        self.floating_ips.pop(floating_ip_id)
        self.deleted_ips.append(floating_ip_id)

    async def attach_floating_ip(self, floating_ip_id: str, server_id: str) -> None:
        self.floating_ips[floating_ip_id].server_id = server_id

    async def detach_floating_ip(self, floating_ip_id: str) -> None:
        self.floating_ips[floating_ip_id].server_id = None

    async def list_floating_ips(self) -> list[FloatingIPSummary]:
        return [
            FloatingIPSummary(id=ip.id, address=ip.address, server_id=ip.server_id)
            for ip in self.floating_ips.values()
        ]

    # SSH keys

    async def create_ssh_key(self, name: str, public_key: str) -> str:
        key_id = f"key-{next(self._ids)}"
        self.ssh_keys[key_id] = public_key
        return key_id

    async def delete_ssh_key(self, key_id: str) -> None:
        if key_id in self.fail_delete:
            raise ProviderError(f"cannot delete {key_id}", key_id)
        self.ssh_keys.pop(key_id, None)
        self.deleted_keys.append(key_id)

    async def list_ssh_keys(self) -> list[SSHKeySummary]:
        return list(self.ssh_key_summaries)


@dataclass
class FakeJournal:
    directory: Path
    started: int = 0
    destroyed: bool = False
    fail_start: bool = False
    lines: list[str] = field(default_factory=list)

    async def start(self, machine) -> None:
        if self.fail_start:
            raise OSError("connection refused")
        self.started += 1
        self.lines.append(f"-- boot {self.started} of {machine.id} --\n")

    def read(self) -> bytes:
        return "".join(self.lines).encode()

    async def destroy(self) -> None:
        self.destroyed = True


class JournalRecorder:
    """Journal factory that keeps every journal it built."""

    def __init__(self) -> None:
        self.journals: list[FakeJournal] = []
        self.fail_start = False

    def __call__(self, directory: Path) -> FakeJournal:
        journal = FakeJournal(directory, fail_start=self.fail_start)
        self.journals.append(journal)
        return journal


class Checker:
    """Startup check that passes unless the machine id is listed in ``failing``."""

    def __init__(self) -> None:
        self.checked: list[str] = []
        self.failing: set[str] = set()

    async def __call__(self, machine) -> None:
        self.checked.append(machine.id)
        if machine.id in self.failing:
            raise RuntimeError(f"{machine.id} failed its startup check")


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def journals() -> JournalRecorder:
    return JournalRecorder()


@pytest.fixture
def checker() -> Checker:
    return Checker()


@pytest.fixture
def flight_config(tmp_path: Path) -> FlightConfig:
    return FlightConfig(base_name="test", output_dir=tmp_path / "out", ssh_key_path=tmp_path / "id")


@pytest.fixture
def make_flight(provider, journals, checker, flight_config):
    def make(*, seed: tuple[str, ...] = (), config: FlightConfig | None = None) -> Flight:
        return Flight(
            provider,
            config or flight_config,
            seed=seed,
            journal_factory=journals,
            checker=checker,
        )

    return make


@pytest.fixture
def flight(make_flight) -> Flight:
    return make_flight()
