"""Async HTTP client for the Brightbox API."""

from __future__ import annotations

import base64
import os
from typing import Any

from loguru import logger

from sortie.core.exceptions import ConfigurationError
from sortie.infra.http import HttpClient, HttpError, OAuth2Auth
from sortie.providers.base import provider_error, with_read_retry

from .config import Brightbox
from .types import CloudIPResponse, ImageResponse, ServerResponse


def token_url(api_url: str) -> str:
    """OAuth2 token endpoint for an API url such as ``https://api.gb1.brightbox.com/1.0``."""
    return f"{api_url.rstrip('/').rsplit('/', 1)[0]}/token/"


def get_credentials() -> tuple[str, str]:
    """Get Brightbox API client credentials from the environment."""
    client_id = os.environ.get("BRIGHTBOX_CLIENT_ID")
    client_secret = os.environ.get("BRIGHTBOX_CLIENT_SECRET")
    if not client_id or not client_secret:
        raise ConfigurationError(
            "Brightbox credentials not found. "
            "Set BRIGHTBOX_CLIENT_ID and BRIGHTBOX_CLIENT_SECRET environment variables."
        )
    return client_id, client_secret


class BrightboxClient:
    """Thin typed wrapper over the Brightbox REST endpoints sortie needs."""

    def __init__(self, config: Brightbox, http: HttpClient | None = None, *, log=None) -> None:
        self.config = config
        if http is None:
            client_id, client_secret = config.client_id, config.client_secret
            if not client_id or not client_secret:
                client_id, client_secret = get_credentials()
            auth = OAuth2Auth(client_id, client_secret, token_url(config.api_url))
            http = HttpClient(config.api_url, auth, timeout=config.request_timeout)
        self._http = http
        self._log = (log or logger).bind(provider="brightbox", component="client")

    async def close(self) -> None:
        await self._http.close()

    async def _request(
        self,
        method: str,
        path: str,
        json: dict[str, Any] | None = None,
        *,
        resource_id: str | None = None,
    ) -> Any:
        try:
            return await self._http.request(method, path, json=json)
        except HttpError as e:
            self._log.warning(
                "API error {method} {path}: {status}", method=method, path=path, status=e.status
            )
            raise provider_error(f"Brightbox {method} {path} failed", e, resource_id) from e

    async def _get_or_none(self, path: str) -> Any:
        async def fetch() -> Any:
            try:
                return await self._http.get(path)
            except HttpError as e:
                if e.not_found:
                    return None
                raise provider_error(f"Brightbox GET {path} failed", e) from e

        return await with_read_retry(fetch)

    async def _list(self, path: str) -> list[Any]:
        result = await with_read_retry(lambda: self._request("GET", path))
        return result or []

    # =========================================================================
    # Servers
    # =========================================================================

    async def create_server(self, name: str, user_data: str) -> ServerResponse:
        body: dict[str, Any] = {
            "name": name,
            "image": self.config.image,
            "server_type": self.config.server_type,
            # The API expects user data base64-encoded.
            "user_data": base64.b64encode(user_data.encode()).decode(),
        }
        if self.config.zone:
            body["zone"] = self.config.zone
        return await self._request("POST", "/servers", body)

    async def get_server(self, server_id: str) -> ServerResponse | None:
        return await self._get_or_none(f"/servers/{server_id}")

    async def list_servers(self) -> list[ServerResponse]:
        return await self._list("/servers")

    async def destroy_server(self, server_id: str) -> None:
        await self._request("DELETE", f"/servers/{server_id}", resource_id=server_id)

    # =========================================================================
    # Cloud IPs
    # =========================================================================

    async def create_cloud_ip(self) -> CloudIPResponse:
        return await self._request("POST", "/cloud_ips", {})

    async def map_cloud_ip(self, cloud_ip_id: str, destination: str) -> None:
        await self._request(
            "POST", f"/cloud_ips/{cloud_ip_id}/map", {"destination": destination},
            resource_id=cloud_ip_id,
        )

    async def unmap_cloud_ip(self, cloud_ip_id: str) -> None:
        await self._request("POST", f"/cloud_ips/{cloud_ip_id}/unmap", {}, resource_id=cloud_ip_id)

    async def destroy_cloud_ip(self, cloud_ip_id: str) -> None:
        await self._request("DELETE", f"/cloud_ips/{cloud_ip_id}", resource_id=cloud_ip_id)

    async def list_cloud_ips(self) -> list[CloudIPResponse]:
        return await self._list("/cloud_ips")

    # =========================================================================
    # Images
    # =========================================================================

    async def create_image(self, name: str, url: str, *, username: str = "core") -> ImageResponse:
        body = {"name": name, "http_url": url, "username": username, "arch": "x86_64"}
        return await self._request("POST", "/images", body)

    async def get_image(self, image_id: str) -> ImageResponse | None:
        return await self._get_or_none(f"/images/{image_id}")

    async def list_images(self) -> list[ImageResponse]:
        return await self._list("/images")

    async def destroy_image(self, image_id: str) -> None:
        await self._request("DELETE", f"/images/{image_id}", resource_id=image_id)


__all__ = ["BrightboxClient", "get_credentials", "token_url"]
