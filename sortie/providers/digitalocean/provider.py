"""DigitalOcean provider: droplets on their native public address."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import UTC, datetime

from loguru import logger

from sortie.core.exceptions import ConfigurationError, ProviderError
from sortie.model import Image, ImageSummary, ResourceStatus, Server, ServerSummary, SSHKeySummary
from sortie.providers.base import await_created, parse_timestamp
from sortie.retry import wait_for_ready

from .client import DigitalOceanClient
from .config import DigitalOcean
from .types import DropletResponse

_DROPLET_STATUS: dict[str, ResourceStatus] = {
    "new": "creating",
    "active": "active",
    "off": "off",
    "archive": "deleted",
}

_IMAGE_STATUS: dict[str, ResourceStatus] = {
    "new": "creating",
    "pending": "creating",
    "available": "available",
    "deleted": "deleted",
    "retired": "deleted",
}

_PLACEHOLDERS = {
    "$public_ipv4": "${COREOS_DIGITALOCEAN_IPV4_PUBLIC_0}",
    "$private_ipv4": "${COREOS_DIGITALOCEAN_IPV4_PRIVATE_0}",
}

DROPLET_POLL_INTERVAL = 5.0

# DigitalOcean keys carry no creation time; it is encoded in the key name instead.
SSH_KEY_PREFIX = "sortie-"


def _address(droplet: DropletResponse, kind: str) -> str | None:
    for network in (droplet.get("networks") or {}).get("v4", []):
        if network.get("type") == kind:
            return network["ip_address"]
    return None


def _server(droplet: DropletResponse) -> Server:
    return Server(
        id=str(droplet["id"]),
        name=droplet.get("name", ""),
        status=_DROPLET_STATUS.get(droplet.get("status", ""), "unknown"),
        created_at=parse_timestamp(droplet.get("created_at")),
        public_ip=_address(droplet, "public"),
        private_ip=_address(droplet, "private"),
    )


def _image_ref(image: str) -> str | int:
    return int(image) if image.isdigit() else image


def ssh_key_name(name: str, now: datetime | None = None) -> str:
    stamp = int((now or datetime.now(UTC)).timestamp())
    return f"{SSH_KEY_PREFIX}{stamp}-{name}"


def ssh_key_created(key_name: str) -> datetime | None:
    """Creation time encoded by ``ssh_key_name``, or None for keys registered elsewhere."""
    if not key_name.startswith(SSH_KEY_PREFIX):
        return None
    stamp, _, _ = key_name.removeprefix(SSH_KEY_PREFIX).partition("-")
    if not stamp.isdigit():
        return None
    return datetime.fromtimestamp(int(stamp), tz=UTC)


class DigitalOceanProvider:
    """Stateless DigitalOcean provider. Holds only immutable config and the API client."""

    def __init__(self, config: DigitalOcean, client: DigitalOceanClient, *, log=None) -> None:
        self._config = config
        self._client = client
        self._log = (log or logger).bind(provider="digitalocean")

    @classmethod
    async def create(cls, config: DigitalOcean, *, log=None) -> DigitalOceanProvider:
        client = DigitalOceanClient(config, log=log)
        client.open()
        try:
            await client.get_account()
        except ProviderError as e:
            await client.close()
            raise ConfigurationError(f"DigitalOcean token rejected: {e}") from e
        return cls(config, client, log=log)

    @property
    def name(self) -> str:
        return "digitalocean"

    @property
    def metadata_placeholders(self) -> Mapping[str, str]:
        return _PLACEHOLDERS

    @property
    def floating_ip_quota(self) -> int:
        return 0

    # =========================================================================
    # Droplets
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
            raise ProviderError("DigitalOcean droplets use their own public address, not pooled IPs")
        if not self._config.image:
            raise ConfigurationError("DigitalOcean provider has no image configured")

        droplet = await self._client.create_droplet(
            name,
            image=_image_ref(self._config.image),
            ssh_keys=[int(ssh_key_id)] if ssh_key_id else [],
            user_data=user_data,
        )
        droplet_id = droplet["id"]

        try:
            # A droplet that is not visible yet reads as None and keeps the poll going.
            ready = await wait_for_ready(
                lambda: self._client.get_droplet(droplet_id),
                lambda d: d.get("status") == "active" and _address(d, "public") is not None,
                terminal_check=lambda d: d.get("status") == "archive",
                timeout=self._config.create_timeout,
                interval=DROPLET_POLL_INTERVAL,
                description=f"droplet {droplet_id}",
            )
        except BaseException:
            try:
                await self._client.delete_droplet(droplet_id)
            except Exception as cleanup:
                self._log.error("Deleting half-created droplet {id}: {error}", id=droplet_id, error=cleanup)
            raise

        return _server(ready)

    async def delete_server(self, server_id: str, *, release_floating_ip: bool = True) -> None:
        await self._client.delete_droplet(int(server_id))
        self._log.debug("Deleted droplet {id}", id=server_id)

    async def list_servers(self) -> list[ServerSummary]:
        return [
            ServerSummary(
                id=str(d["id"]),
                created_at=parse_timestamp(d.get("created_at")),
                status=_DROPLET_STATUS.get(d.get("status", ""), "unknown"),
            )
            for d in await self._client.list_droplets()
        ]

    async def console_output(self, server_id: str) -> str:
        # DigitalOcean provides no API for retrieving console output.
        return ""

    # =========================================================================
    # Images
    # =========================================================================

    async def create_image(self, name: str, source_url: str) -> Image:
        created = await self._client.create_custom_image(name, source_url)
        image_id = created["id"]

        async def describe() -> str:
            image = await self._client.get_image(image_id)
            return image["status"].lower() if image is not None else "deleted"

        status = await await_created(
            str(image_id),
            describe=describe,
            delete=lambda: self._client.delete_image(image_id),
            ready=("available",),
            failed=("deleted", "retired"),
            log=self._log,
        )
        return Image(id=str(image_id), name=name, status=_IMAGE_STATUS.get(status, "unknown"))

    async def delete_image(self, image_id: str) -> None:
        await self._client.delete_image(int(image_id))

    async def list_images(self) -> list[ImageSummary]:
        return [
            ImageSummary(
                id=str(i["id"]),
                created_at=parse_timestamp(i.get("created_at")),
                status=_IMAGE_STATUS.get(str(i.get("status", "")).lower(), "unknown"),
                public=bool(i.get("public")),
            )
            for i in await self._client.list_images()
        ]

    # =========================================================================
    # SSH keys
    # =========================================================================

    async def create_ssh_key(self, name: str, public_key: str) -> str:
        key = await self._client.create_ssh_key(ssh_key_name(name), public_key)
        return str(key["id"])

    async def delete_ssh_key(self, key_id: str) -> None:
        await self._client.delete_ssh_key(int(key_id))

    async def list_ssh_keys(self) -> list[SSHKeySummary]:
        keys = []
        for key in await self._client.list_ssh_keys():
            created = ssh_key_created(key["name"])
            if created is not None:
                keys.append(SSHKeySummary(id=str(key["id"]), name=key["name"], created_at=created))
        return keys

    async def close(self) -> None:
        await self._client.close()


__all__ = ["DigitalOceanProvider", "ssh_key_created", "ssh_key_name"]
