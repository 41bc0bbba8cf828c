"""Hetzner Cloud provider.

Servers are reached on their native public IPv4 address, so the Flight's
floating-IP pool stays empty for this backend.
"""

from __future__ import annotations

import shlex
from collections.abc import Mapping

from loguru import logger

from sortie.core.exceptions import ConfigurationError, ProviderError, ProvisioningError
from sortie.infra.ssh import SSHTransport
from sortie.model import Image, ImageSummary, ResourceStatus, Server, ServerSummary, SSHKeySummary
from sortie.providers.base import await_created, parse_timestamp

from .client import MANAGED_LABELS, HetznerClient
from .config import Hetzner
from .types import ServerResponse

_SERVER_STATUS: dict[str, ResourceStatus] = {
    "initializing": "creating",
    "starting": "creating",
    "running": "active",
    "stopping": "active",
    "off": "off",
    "deleting": "deleting",
}

_IMAGE_STATUS: dict[str, ResourceStatus] = {
    "available": "available",
    "creating": "creating",
    "unavailable": "failed",
}

# The CUSTOM metadata provider is used; Hetzner-specific names are rewritten at boot.
_PLACEHOLDERS = {
    "$public_ipv4": "${COREOS_CUSTOM_PUBLIC_IPV4}",
    "$private_ipv4": "${COREOS_CUSTOM_PRIVATE_IPV4}",
}

_DECOMPRESSORS = {".bz2": "bzip2 -cd", ".xz": "xz -cd", ".gz": "gzip -cd", ".zst": "zstd -cd"}

RESCUE_SSH_ATTEMPTS = 30
RESCUE_SSH_DELAY = 5.0
WRITE_TIMEOUT = 1800.0


def _server(data: ServerResponse) -> Server:
    ipv4 = (data.get("public_net") or {}).get("ipv4") or {}
    private = data.get("private_net") or []
    return Server(
        id=str(data["id"]),
        name=data.get("name", ""),
        status=_SERVER_STATUS.get(data.get("status", ""), "unknown"),
        created_at=parse_timestamp(data.get("created")),
        public_ip=ipv4.get("ip"),
        private_ip=private[0]["ip"] if private else None,
    )


def write_image_command(source_url: str, device: str = "/dev/sda") -> str:
    """Shell pipeline that streams ``source_url`` onto ``device``, decompressing by suffix."""
    decompress = next(
        (cmd for suffix, cmd in _DECOMPRESSORS.items() if source_url.endswith(suffix)), "cat"
    )
    return (
        f"set -o pipefail; wget --quiet --output-document=- {shlex.quote(source_url)}"
        f" | {decompress} | dd of={device} bs=4M && sync"
    )


class HetznerProvider:
    """Stateless Hetzner provider. Holds only immutable config and resolved references."""

    def __init__(self, config: Hetzner, client: HetznerClient, image: int | None, *, log=None) -> None:
        self._config = config
        self._client = client
        self._image = image
        self._log = (log or logger).bind(provider="hetzner")

    @classmethod
    async def create(cls, config: Hetzner, *, log=None) -> HetznerProvider:
        client = HetznerClient(config, log=log)
        try:
            server_type = await client.find_one("/server_types", "server_types", config.server_type)
            if server_type is None:
                raise ConfigurationError(f"Hetzner server type {config.server_type!r} not found")
            location = await client.find_one("/locations", "locations", config.location)
            if location is None:
                raise ConfigurationError(f"Hetzner location {config.location!r} not found")
            image = await cls._resolve_image(client, config)
        except ProviderError as e:
            await client.close()
            raise ConfigurationError(f"Hetzner preflight failed: {e}") from e
        except ConfigurationError:
            await client.close()
            raise
        return cls(config, client, image, log=log)

    @staticmethod
    async def _resolve_image(client: HetznerClient, config: Hetzner) -> int | None:
        if not config.image:
            return None
        if config.image.isdigit():
            found = await client.get_image(int(config.image))
        else:
            found = await client.find_one(
                "/images", "images", config.image, architecture=config.architecture
            )
        if found is None:
            raise ConfigurationError(f"Hetzner image {config.image!r} not found")
        return found["id"]

    @property
    def name(self) -> str:
        return "hetzner"

    @property
    def metadata_placeholders(self) -> Mapping[str, str]:
        return _PLACEHOLDERS

    @property
    def floating_ip_quota(self) -> int:
        return 0

    # =========================================================================
    # Servers
    # =========================================================================

    async def create_server(
        self,
        name: str,
        user_data: str,
        *,
        floating_ip: str | None = None,
        ssh_key_id: str | None = None,
    ) -> Server:
        if floating_ip is not None:
            raise ProviderError("Hetzner servers use their own public address, not pooled IPs")
        if self._image is None:
            raise ConfigurationError("Hetzner provider has no image configured")

        result = await self._client.create_server(
            name,
            image=self._image,
            user_data=user_data,
            ssh_keys=[int(ssh_key_id)] if ssh_key_id else None,
        )
        server_id = result["server"]["id"]
        try:
            await self._client.wait_for_actions(result.get("action"), *result.get("next_actions", []))
            created = await self._client.get_server(server_id)
            if created is None:
                raise ProviderError(f"server {server_id} vanished after creation", str(server_id))
        except BaseException:
            try:
                await self.delete_server(str(server_id))
            except Exception as cleanup:
                self._log.error("Deleting half-created server {id}: {error}", id=server_id, error=cleanup)
            raise

        return _server(created)

    async def delete_server(self, server_id: str, *, release_floating_ip: bool = True) -> None:
        server = await self._client.get_server(server_id)
        if server is None:
            return
        action = await self._client.delete_server(server_id)
        await self._client.wait_for_actions(action)
        self._log.debug("Deleted server {id}", id=server_id)

    async def list_servers(self) -> list[ServerSummary]:
        return [
            ServerSummary(
                id=str(s["id"]),
                created_at=parse_timestamp(s.get("created")),
                status=_SERVER_STATUS.get(s.get("status", ""), "unknown"),
            )
            for s in await self._client.list_servers()
        ]

    async def console_output(self, server_id: str) -> str:
        # Only a VNC console exists.
        return ""

    # =========================================================================
    # Images
    # =========================================================================

    async def create_image(self, name: str, source_url: str) -> Image:
        """Import ``source_url`` by writing it to a rescue-booted server's disk and snapshotting it.

        The temporary server is always deleted; a snapshot that never becomes
        available is deleted before the error is raised.
        """
        result = await self._client.create_server(
            f"{name[:40]}-builder",
            image=self._config.builder_image,
            start_after_create=False,
        )
        builder_id = result["server"]["id"]
        self._log.info("Importing image {name} through builder server {id}", name=name, id=builder_id)

        try:
            await self._client.wait_for_actions(result.get("action"), *result.get("next_actions", []))
            return await self._write_and_snapshot(builder_id, name, source_url)
        finally:
            try:
                await self.delete_server(str(builder_id))
            except Exception as e:
                self._log.error("Deleting builder server {id}: {error}", id=builder_id, error=e)

    async def _write_and_snapshot(self, builder_id: int, name: str, source_url: str) -> Image:
        rescue = await self._client.server_action(builder_id, "enable_rescue", {"type": "linux64"})
        await self._client.wait_for_actions(rescue.get("action"))
        poweron = await self._client.server_action(builder_id, "poweron")
        await self._client.wait_for_actions(poweron.get("action"))

        builder = await self._client.get_server(builder_id)
        if builder is None:
            raise ProvisioningError(f"builder server {builder_id} vanished", str(builder_id))
        address = _server(builder).public_ip
        if address is None:
            raise ProvisioningError(f"builder server {builder_id} has no public address", str(builder_id))

        async with SSHTransport(
            host=address,
            user="root",
            password=rescue["root_password"],
            retry_attempts=RESCUE_SSH_ATTEMPTS,
            retry_delay=RESCUE_SSH_DELAY,
        ) as ssh:
            await ssh.run(write_image_command(source_url), timeout=WRITE_TIMEOUT, check=True)

        poweroff = await self._client.server_action(builder_id, "poweroff")
        await self._client.wait_for_actions(poweroff.get("action"))

        snapshot = await self._client.server_action(
            builder_id,
            "create_image",
            {"type": "snapshot", "description": name, "labels": MANAGED_LABELS},
        )
        snapshot_id = snapshot["image"]["id"]

        async def describe() -> str:
            image = await self._client.get_image(snapshot_id)
            return image["status"] if image is not None else "deleted"

        status = await await_created(
            str(snapshot_id),
            describe=describe,
            delete=lambda: self._client.delete_image(snapshot_id),
            ready=("available",),
            failed=("unavailable", "deleted"),
            timeout=self._config.image_timeout,
            log=self._log,
        )
        return Image(id=str(snapshot_id), name=name, status=_IMAGE_STATUS.get(status, "unknown"))

    async def delete_image(self, image_id: str) -> None:
        await self._client.delete_image(image_id)

    async def list_images(self) -> list[ImageSummary]:
        return [
            ImageSummary(
                id=str(i["id"]),
                created_at=parse_timestamp(i.get("created")),
                status=_IMAGE_STATUS.get(i.get("status", ""), "unknown"),
                public=i.get("type") == "system",
            )
            for i in await self._client.list_images()
        ]

    # =========================================================================
    # SSH keys
    # =========================================================================

    async def create_ssh_key(self, name: str, public_key: str) -> str:
        return str((await self._client.create_ssh_key(name, public_key))["id"])

    async def delete_ssh_key(self, key_id: str) -> None:
        await self._client.delete_ssh_key(key_id)

    async def list_ssh_keys(self) -> list[SSHKeySummary]:
        return [
            SSHKeySummary(
                id=str(k["id"]), name=k.get("name", ""), created_at=parse_timestamp(k.get("created"))
            )
            for k in await self._client.list_ssh_keys()
        ]

    async def close(self) -> None:
        await self._client.close()


__all__ = ["HetznerProvider", "write_image_command"]
