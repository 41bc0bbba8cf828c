"""Async client for the DigitalOcean API.

Uses pydo.aio for async operations. Returns TypedDicts directly.
"""

from __future__ import annotations

import os
from typing import Any, cast

from loguru import logger
from pydo.aio import Client as PyDOClient

from sortie.core.exceptions import ConfigurationError
from sortie.providers.base import provider_error, with_read_retry
from sortie.retry import any_of, on_exception_message, on_status_code

from .config import DigitalOcean
from .types import DropletResponse, ImageResponse, SSHKeyResponse

PAGE_SIZE = 100

_not_found = any_of(on_status_code(404), on_exception_message("404", "not_found"))


def get_token() -> str:
    """Get DigitalOcean API token from environment."""
    token = os.environ.get("DIGITALOCEAN_TOKEN")
    if not token:
        raise ConfigurationError(
            "DigitalOcean API token not found. Set DIGITALOCEAN_TOKEN environment variable."
        )
    return token


class DigitalOceanClient:
    """Async client for the DigitalOcean API using pydo.aio.

    Example:
        async with DigitalOceanClient(DigitalOcean(region="ams3")) as client:
            droplets = await client.list_droplets()
    """

    def __init__(self, config: DigitalOcean, client: PyDOClient | None = None, *, log=None) -> None:
        self.config = config
        self._client = client
        self._log = (log or logger).bind(provider="digitalocean", component="client")

    async def __aenter__(self) -> DigitalOceanClient:
        self.open()
        return self

    async def __aexit__(self, *_: Any) -> None:
        await self.close()

    def open(self) -> None:
        if self._client is None:
            self._client = PyDOClient(token=self.config.token or get_token())

    async def close(self) -> None:
        if self._client:
            await self._client.close()
            self._client = None

    @property
    def client(self) -> PyDOClient:
        if not self._client:
            raise RuntimeError("Client not initialized. Call open() or use 'async with'.")
        return self._client

    # =========================================================================
    # Account
    # =========================================================================

    async def get_account(self) -> dict[str, Any]:
        """Cheap authenticated call used to validate the token."""
        try:
            result = await self.client.account.get()
        except Exception as e:
            raise provider_error("Failed to get account", e) from e
        return result.get("account", {})

    # =========================================================================
    # SSH Key Management
    # =========================================================================

    async def create_ssh_key(self, name: str, public_key: str) -> SSHKeyResponse:
        """Register a new SSH public key."""
        try:
            result = await self.client.ssh_keys.create(body={"name": name, "public_key": public_key})
        except Exception as e:
            raise provider_error("Failed to create SSH key", e) from e
        return cast(SSHKeyResponse, result["ssh_key"])

    async def delete_ssh_key(self, key_id: int) -> None:
        """Delete an SSH key by ID."""
        try:
            await self.client.ssh_keys.delete(ssh_key_identifier=key_id)
        except Exception as e:
            raise provider_error("Failed to delete SSH key", e, str(key_id)) from e

    async def list_ssh_keys(self) -> list[SSHKeyResponse]:
        """List every SSH key of the account."""
        return await self._paginate(
            lambda page: self.client.ssh_keys.list(page=page, per_page=PAGE_SIZE),
            "ssh_keys",
        )

    # =========================================================================
    # Droplet Management
    # =========================================================================

    async def create_droplet(
        self,
        name: str,
        *,
        image: str | int,
        ssh_keys: list[int],
        user_data: str | None = None,
    ) -> DropletResponse:
        """Create a new droplet tagged with the configured tag."""
        body: dict[str, Any] = {
            "name": name,
            "region": self.config.region,
            "size": self.config.size,
            "image": image,
            "ssh_keys": ssh_keys,
            "tags": [self.config.tag],
        }
        if user_data:
            body["user_data"] = user_data

        self._log.debug("Creating droplet {name} in {region}", name=name, region=self.config.region)
        try:
            result = await self.client.droplets.create(body=body)
        except Exception as e:
            raise provider_error("Failed to create droplet", e) from e
        droplet = result.get("droplet")
        if not droplet:
            raise provider_error("Failed to create droplet", ValueError("empty response"))
        return cast(DropletResponse, droplet)

    async def get_droplet(self, droplet_id: int) -> DropletResponse | None:
        """Get droplet details. Returns None if not found."""

        async def fetch() -> DropletResponse | None:
            try:
                result = await self.client.droplets.get(droplet_id=droplet_id)
            except Exception as e:
                if _not_found(e):
                    return None
                raise provider_error("Failed to get droplet", e, str(droplet_id)) from e
            droplet = result.get("droplet")
            return cast(DropletResponse, droplet) if droplet else None

        return await with_read_retry(fetch)

    async def list_droplets(self) -> list[DropletResponse]:
        """List every droplet carrying the configured tag."""
        return await self._paginate(
            lambda page: self.client.droplets.list(tag_name=self.config.tag, page=page, per_page=PAGE_SIZE),
            "droplets",
        )

    async def delete_droplet(self, droplet_id: int) -> None:
        """Delete a droplet. Deleting a droplet that is already gone is a no-op."""
        try:
            await self.client.droplets.destroy(droplet_id=droplet_id)
        except Exception as e:
            if _not_found(e):
                return
            raise provider_error("Failed to delete droplet", e, str(droplet_id)) from e

    # =========================================================================
    # Custom Images
    # =========================================================================

    async def create_custom_image(self, name: str, url: str) -> ImageResponse:
        body = {
            "name": name,
            "url": url,
            "region": self.config.region,
            "distribution": "Unknown",
            "tags": [self.config.tag],
        }
        try:
            result = await self.client.images.create_custom(body=body)
        except Exception as e:
            raise provider_error("Failed to create custom image", e) from e
        return cast(ImageResponse, result["image"])

    async def get_image(self, image_id: int) -> ImageResponse | None:
        async def fetch() -> ImageResponse | None:
            try:
                result = await self.client.images.get(image_id=image_id)
            except Exception as e:
                if _not_found(e):
                    return None
                raise provider_error("Failed to get image", e, str(image_id)) from e
            return cast(ImageResponse, result.get("image"))

        return await with_read_retry(fetch)

    async def list_images(self) -> list[ImageResponse]:
        """List the account's private images."""
        return await self._paginate(
            lambda page: self.client.images.list(private=True, page=page, per_page=PAGE_SIZE),
            "images",
        )

    async def delete_image(self, image_id: int) -> None:
        try:
            await self.client.images.delete(image_id=image_id)
        except Exception as e:
            raise provider_error("Failed to delete image", e, str(image_id)) from e

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _paginate(self, fetch_page, key: str) -> list[Any]:
        items: list[Any] = []
        page = 1
        while True:

            async def fetch() -> list[Any]:
                try:
                    result = await fetch_page(page)
                except Exception as e:
                    raise provider_error(f"Failed to list {key}", e) from e
                return result.get(key, [])

            batch = await with_read_retry(fetch)
            items.extend(batch)
            if len(batch) < PAGE_SIZE:
                return items
            page += 1


__all__ = ["DigitalOceanClient", "get_token"]
