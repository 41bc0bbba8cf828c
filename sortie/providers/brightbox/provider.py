"""Brightbox provider: servers reached through pooled cloud IPs."""

from __future__ import annotations

from collections.abc import Mapping

from loguru import logger

from sortie.core.exceptions import ConfigurationError, ProviderError
from sortie.model import (
    FloatingIPSummary,
    Image,
    ImageSummary,
    ResourceStatus,
    Server,
    ServerSummary,
)
from sortie.providers.base import await_created, parse_timestamp

from .client import BrightboxClient
from .config import Brightbox
from .types import ServerResponse

_SERVER_STATUS: dict[str, ResourceStatus] = {
    "creating": "creating",
    "active": "active",
    "inactive": "off",
    "deleting": "deleting",
    "deleted": "deleted",
    "failed": "failed",
}

_IMAGE_STATUS: dict[str, ResourceStatus] = {
    "creating": "creating",
    "available": "available",
    "deprecated": "available",
    "deleting": "deleting",
    "deleted": "deleted",
    "failed": "failed",
}

# Brightbox servers read their addresses from the OpenStack-compatible metadata service.
_PLACEHOLDERS = {
    "$public_ipv4": "${COREOS_OPENSTACK_IPV4_PUBLIC}",
    "$private_ipv4": "${COREOS_OPENSTACK_IPV4_LOCAL}",
}


def _server(data: ServerResponse) -> Server:
    cloud_ips = data.get("cloud_ips") or []
    interfaces = data.get("interfaces") or []
    return Server(
        id=data["id"],
        name=data.get("name", ""),
        status=_SERVER_STATUS.get(data.get("status", ""), "unknown"),
        created_at=parse_timestamp(data.get("created_at")),
        public_ip=cloud_ips[0]["public_ipv4"] if cloud_ips else None,
        private_ip=interfaces[0].get("ipv4_address") if interfaces else None,
        floating_ip=cloud_ips[0]["id"] if cloud_ips else None,
        floating_ip_address=cloud_ips[0]["public_ipv4"] if cloud_ips else None,
    )


class BrightboxProvider:
    """Stateless Brightbox provider. Holds only immutable config and the API client."""

    def __init__(self, config: Brightbox, client: BrightboxClient, *, log=None) -> None:
        self._config = config
        self._client = client
        self._log = (log or logger).bind(provider="brightbox")

    @classmethod
    async def create(cls, config: Brightbox, *, log=None) -> BrightboxProvider:
        if not config.image:
            raise ConfigurationError("Brightbox provider requires an image")
        client = BrightboxClient(config, log=log)
        try:
            image = await client.get_image(config.image)
        except ProviderError as e:
            await client.close()
            raise ConfigurationError(f"Brightbox credentials rejected: {e}") from e
        except ConfigurationError:
            await client.close()
            raise
        if image is None:
            await client.close()
            raise ConfigurationError(f"Brightbox image {config.image} not found")
        return cls(config, client, log=log)

    @property
    def name(self) -> str:
        return "brightbox"

    @property
    def metadata_placeholders(self) -> Mapping[str, str]:
        return _PLACEHOLDERS

    @property
    def floating_ip_quota(self) -> int:
        return self._config.cloud_ip_quota

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
        # Keys come from user data; the API has no per-server key injection.
        created = await self._client.create_server(name, user_data)
        server_id = created["id"]
        fresh_ip: str | None = None

        try:
            if floating_ip is None:
                self._log.info("No pooled cloud IP available, creating a new one")
                fresh_ip = (await self._client.create_cloud_ip())["id"]
            await self._client.map_cloud_ip(floating_ip or fresh_ip, server_id)

            # Refetch to pick up the freshly mapped cloud IP.
            refreshed = await self._client.get_server(server_id)
            if refreshed is None:
                raise ProviderError(f"server {server_id} vanished after creation", server_id)
        except BaseException:
            await self._discard(server_id, fresh_ip)
            raise

        server = _server(refreshed)
        self._log.debug(
            "Created server {id} with cloud IP {ip}", id=server_id, ip=server.floating_ip_address
        )
        return server

    async def _discard(self, server_id: str, fresh_ip: str | None) -> None:
        try:
            await self.delete_server(server_id, release_floating_ip=False)
        except Exception as e:
            self._log.error("Deleting half-created server {id}: {error}", id=server_id, error=e)
        if fresh_ip is not None:
            try:
                await self._client.destroy_cloud_ip(fresh_ip)
            except Exception as e:
                self._log.error("Deleting cloud IP {id}: {error}", id=fresh_ip, error=e)

    async def delete_server(self, server_id: str, *, release_floating_ip: bool = True) -> None:
        server = await self._client.get_server(server_id)
        if server is None or server.get("status") in ("deleting", "deleted"):
            return

        cloud_ips = server.get("cloud_ips") or []
        cloud_ip = cloud_ips[0]["id"] if cloud_ips else None
        if cloud_ip is not None:
            await self._client.unmap_cloud_ip(cloud_ip)
            self._log.debug("Unmapped cloud IP {ip} from {id}", ip=cloud_ip, id=server_id)

        await self._client.destroy_server(server_id)

        if cloud_ip is not None and release_floating_ip:
            await self._client.destroy_cloud_ip(cloud_ip)
            self._log.debug("Deleted cloud IP {ip}", ip=cloud_ip)

    async def list_servers(self) -> list[ServerSummary]:
        return [
            ServerSummary(
                id=s["id"],
                created_at=parse_timestamp(s.get("created_at")),
                status=_SERVER_STATUS.get(s.get("status", ""), "unknown"),
            )
            for s in await self._client.list_servers()
        ]

    async def console_output(self, server_id: str) -> str:
        # Only a browser console (console_url + token) exists.
        return ""

    # =========================================================================
    # Images
    # =========================================================================

    async def create_image(self, name: str, source_url: str) -> Image:
        created = await self._client.create_image(name, source_url)
        image_id = created["id"]

        async def describe() -> str:
            image = await self._client.get_image(image_id)
            return image["status"] if image is not None else "deleted"

        # Extraction usually takes around 20 seconds.
        status = await await_created(
            image_id,
            describe=describe,
            delete=lambda: self._client.destroy_image(image_id),
            ready=("available",),
            log=self._log,
        )
        return Image(id=image_id, name=name, status=_IMAGE_STATUS.get(status, "unknown"))

    async def delete_image(self, image_id: str) -> None:
        await self._client.destroy_image(image_id)

    async def list_images(self) -> list[ImageSummary]:
        return [
            ImageSummary(
                id=i["id"],
                created_at=parse_timestamp(i.get("created_at")),
                status=_IMAGE_STATUS.get(i.get("status", ""), "unknown"),
                public=bool(i.get("public")),
            )
            for i in await self._client.list_images()
        ]

    # =========================================================================
    # Cloud IPs
    # =========================================================================

    async def create_floating_ip(self) -> str:
        return (await self._client.create_cloud_ip())["id"]

    async def delete_floating_ip(self, floating_ip_id: str) -> None:
        await self._client.destroy_cloud_ip(floating_ip_id)

    async def attach_floating_ip(self, floating_ip_id: str, server_id: str) -> None:
        await self._client.map_cloud_ip(floating_ip_id, server_id)

    async def detach_floating_ip(self, floating_ip_id: str) -> None:
        await self._client.unmap_cloud_ip(floating_ip_id)

    async def list_floating_ips(self) -> list[FloatingIPSummary]:
        return [
            FloatingIPSummary(
                id=c["id"],
                address=c.get("public_ipv4", ""),
                server_id=(c.get("server") or {}).get("id"),
            )
            for c in await self._client.list_cloud_ips()
        ]

    async def close(self) -> None:
        await self._client.close()


__all__ = ["BrightboxProvider"]
