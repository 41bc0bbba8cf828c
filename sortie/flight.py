"""Flight: a provisioning session bound to one provider.

A Flight owns the floating-IP pool, the SSH key injected into every server,
and the set of live Clusters. Destroying it releases all of them.

Example:
    provider = await create_provider(DigitalOcean(region="ams3", image="12345"))
    async with await Flight.create(provider, FlightConfig(base_name="smoke")) as flight:
        cluster = flight.new_cluster()
        machine = await cluster.new_machine(ignition)
        print(await machine.ssh("uname -r"))
        await cluster.destroy()
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

import asyncssh
from loguru import logger

from sortie.checks import MachineChecker, check_machine
from sortie.cluster import Cluster
from sortie.core.exceptions import PoolClosedError, PoolOverflowError, SortieError
from sortie.journal import JournalFactory, ssh_journal_factory
from sortie.pool import ResourcePool
from sortie.providers.provider import FloatingIPCapable, Provider, SSHKeyCapable
from sortie.userdata import DEFAULT_IGNITION_VERSION, SubstitutingRenderer, UserDataRenderer

SSH_KEY_FILE = "id_ed25519"


@dataclass(frozen=True, slots=True)
class FlightConfig:
    """Session-wide settings shared by every Cluster of a Flight.

    Args:
        base_name: Prefix of the Flight name, and so of every server name.
        output_dir: Root of the per-machine working directories.
        pool_capacity: Floating-IP pool size. Defaults to the provider's quota.
        ssh_user: Login user on the provisioned image.
        ssh_key_path: Existing private key. A fresh ed25519 key is generated when unset.
        ssh_retries: Attempts for each SSH connection and for the startup check.
        ssh_retry_delay: Seconds between those attempts.
        ssh_connect_timeout: Timeout of a single connection attempt.
        ignition_version: Version of the empty Ignition config used when no user data is given.
        check_os_release: Expected ``ID=`` of ``/etc/os-release``; unset skips the check.
        allow_failed_units: Skip the failed-systemd-units check.
    """

    base_name: str = "sortie"
    output_dir: Path = Path("_sortie")
    pool_capacity: int | None = None
    ssh_user: str = "core"
    ssh_key_path: Path | None = None
    ssh_retries: int = 60
    ssh_retry_delay: float = 10.0
    ssh_connect_timeout: float = 10.0
    ignition_version: str = DEFAULT_IGNITION_VERSION
    check_os_release: str | None = None
    allow_failed_units: bool = False


class Flight:
    """Provisioning session bound to one Provider.

    Build it with ``await Flight.create(...)`` (which also prepares the SSH
    key) and destroy it exactly once, after destroying its Clusters.
    Clusters still registered at that point are destroyed first, then the
    pool is drained and the SSH key deleted.
    """

    def __init__(
        self,
        provider: Provider,
        config: FlightConfig | None = None,
        *,
        seed: Iterable[str] = (),
        renderer: UserDataRenderer | None = None,
        journal_factory: JournalFactory | None = None,
        checker: MachineChecker | None = None,
        log=None,
    ) -> None:
        self.provider = provider
        self.config = config or FlightConfig()
        self.name = f"{self.config.base_name}-{uuid.uuid4()}"
        self.output_dir = self.config.output_dir
        self.renderer = renderer or SubstitutingRenderer(self.config.ignition_version)
        self.journal_factory = journal_factory or ssh_journal_factory
        self.checker = checker or check_machine
        self.ssh_key_path: Path | None = self.config.ssh_key_path
        self.ssh_key_id: str | None = None
        self._log = (log or logger).bind(component="flight", provider=provider.name, flight=self.name)

        capacity = self.config.pool_capacity or provider.floating_ip_quota
        self.pool = ResourcePool(max(1, capacity), seed, log=self._log)

        self._clusters: dict[str, Cluster] = {}
        self._opened = False
        self._destroyed = False

    @classmethod
    async def create(
        cls,
        provider: Provider,
        config: FlightConfig | None = None,
        **kwargs,
    ) -> Flight:
        flight = cls(provider, config, **kwargs)
        await flight.open()
        return flight

    async def open(self) -> None:
        """Prepare the SSH key and register it with the provider when supported."""
        if self._opened:
            return
        self._opened = True

        if self.ssh_key_path is None:
            key = asyncssh.generate_private_key("ssh-ed25519", comment=self.name)
            directory = self.output_dir / self.name
            directory.mkdir(parents=True, exist_ok=True)
            self.ssh_key_path = directory / SSH_KEY_FILE
            key.write_private_key(str(self.ssh_key_path))
            self.ssh_key_path.chmod(0o600)
        else:
            key = asyncssh.read_private_key(str(self.ssh_key_path))

        if isinstance(self.provider, SSHKeyCapable):
            public = key.export_public_key().decode().strip()
            self.ssh_key_id = await self.provider.create_ssh_key(self.name, public)
            self._log.debug("Registered SSH key {id}", id=self.ssh_key_id)

        self._log.info("Flight {name} ready", name=self.name)

    # =========================================================================
    # Clusters
    # =========================================================================

    def new_cluster(self, *, output_dir: Path | None = None) -> Cluster:
        if self._destroyed:
            raise SortieError(f"flight {self.name} is destroyed")
        cluster = Cluster(self, output_dir=output_dir, log=self._log)
        self._clusters[cluster.name] = cluster
        return cluster

    def clusters(self) -> list[Cluster]:
        return list(self._clusters.values())

    def _deregister(self, cluster: Cluster) -> None:
        self._clusters.pop(cluster.name, None)

    # =========================================================================
    # Floating IPs
    # =========================================================================

    async def return_floating_ip(self, floating_ip: str) -> None:
        """Put a checked-out floating IP back, or delete it if the pool cannot take it.

        Never raises.
        """
        try:
            self.pool.release(floating_ip)
            return
        except PoolClosedError:
            self._log.debug("Pool closed, deleting floating IP {ip}", ip=floating_ip)
        except PoolOverflowError as e:
            self._log.error("{error}, deleting floating IP {ip}", error=e, ip=floating_ip)

        try:
            await self._delete_floating_ip(floating_ip)
        except Exception as e:
            self._log.error("Deleting floating IP {ip}: {error}", ip=floating_ip, error=e)

    async def _delete_floating_ip(self, floating_ip: str) -> None:
        if not isinstance(self.provider, FloatingIPCapable):
            raise SortieError(f"{self.provider.name} does not manage floating IPs")
        await self.provider.delete_floating_ip(floating_ip)

    # =========================================================================
    # Teardown
    # =========================================================================

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    async def destroy(self) -> None:
        """Release every Flight resource. Runs once and never raises."""
        if self._destroyed:
            return
        self._destroyed = True

        leftover = self.clusters()
        if leftover:
            self._log.warning(
                "Destroying {n} clusters still alive at flight teardown", n=len(leftover)
            )
            await asyncio.gather(*(c.destroy() for c in leftover))

        await self.pool.drain_and_destroy(self._delete_floating_ip)

        if self.ssh_key_id is not None and isinstance(self.provider, SSHKeyCapable):
            try:
                await self.provider.delete_ssh_key(self.ssh_key_id)
            except Exception as e:
                self._log.error("Deleting SSH key {id}: {error}", id=self.ssh_key_id, error=e)

        try:
            await self.provider.close()
        except Exception as e:
            self._log.error("Closing provider: {error}", error=e)

        self._log.info("Flight {name} destroyed", name=self.name)

    async def __aenter__(self) -> Flight:
        await self.open()
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.destroy()

    def __repr__(self) -> str:
        return f"Flight(name={self.name!r}, provider={self.provider.name!r}, clusters={len(self._clusters)})"


__all__ = ["Flight", "FlightConfig"]
