"""Async HTTP client for the Hetzner Cloud API."""

from __future__ import annotations

import os
from typing import Any

from loguru import logger

from sortie.core.exceptions import ConfigurationError, ProviderError
from sortie.infra.http import BearerAuth, HttpClient, HttpError
from sortie.providers.base import provider_error, with_read_retry
from sortie.retry import wait_until_ready

from .config import Hetzner
from .types import ActionResponse, ImageResponse, ServerResponse, SSHKeyResponse

MANAGED_LABELS = {"managed-by": "sortie"}
ACTION_POLL_INTERVAL = 2.0


def label_selector(labels: dict[str, str]) -> str:
    """Sorted ``k=v`` selector so that requests are reproducible."""
    return ",".join(sorted(f"{k}={v}" for k, v in labels.items()))


def get_token() -> str:
    """Get the Hetzner Cloud API token from the environment."""
    token = os.environ.get("HCLOUD_TOKEN")
    if not token:
        raise ConfigurationError(
            "Hetzner Cloud API token not found. Set HCLOUD_TOKEN environment variable."
        )
    return token


class HetznerClient:
    """Typed wrapper over the Hetzner Cloud endpoints sortie needs."""

    def __init__(self, config: Hetzner, http: HttpClient | None = None, *, log=None) -> None:
        self.config = config
        if http is None:
            http = HttpClient(
                config.api_url,
                BearerAuth(config.token or get_token()),
                timeout=config.request_timeout,
            )
        self._http = http
        self._log = (log or logger).bind(provider="hetzner", component="client")

    async def close(self) -> None:
        await self._http.close()

    async def _request(
        self,
        method: str,
        path: str,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        *,
        resource_id: str | None = None,
    ) -> Any:
        try:
            return await self._http.request(method, path, json=json, params=params)
        except HttpError as e:
            self._log.warning(
                "API error {method} {path}: {status}", method=method, path=path, status=e.status
            )
            raise provider_error(f"Hetzner {method} {path} failed", e, resource_id) from e

    async def _get_or_none(self, path: str, key: str) -> Any:
        async def fetch() -> Any:
            try:
                result = await self._http.get(path)
            except HttpError as e:
                if e.not_found:
                    return None
                raise provider_error(f"Hetzner GET {path} failed", e) from e
            return result[key]

        return await with_read_retry(fetch)

    async def _paginate(self, path: str, key: str, params: dict[str, Any] | None = None) -> list[Any]:
        items: list[Any] = []
        page: int | None = 1
        while page is not None:
            query = {**(params or {}), "page": page, "per_page": 50}
            result = await with_read_retry(lambda: self._request("GET", path, params=query))
            items.extend(result.get(key, []))
            page = result.get("meta", {}).get("pagination", {}).get("next_page")
        return items

    # =========================================================================
    # Actions
    # =========================================================================

    async def wait_for_actions(self, *actions: ActionResponse | None) -> None:
        """Block until every action succeeded.

        Raises:
            ProviderError: An action finished with status "error".
        """
        for action in actions:
            if action is None:
                continue
            action_id = action["id"]

            async def done() -> bool:
                current: ActionResponse = await self._get_or_none(f"/actions/{action_id}", "action")
                if current is None or current["status"] == "running":
                    return False
                if current["status"] == "error":
                    error = current.get("error") or {}
                    raise ProviderError(
                        f"Hetzner action {current['command']} failed: {error.get('message', 'unknown')}",
                        str(action_id),
                    )
                return True

            await wait_until_ready(
                self.config.action_timeout,
                ACTION_POLL_INTERVAL,
                done,
                description=f"Hetzner action {action.get('command', action_id)}",
            )

    # =========================================================================
    # Preflight lookups
    # =========================================================================

    async def find_one(self, path: str, key: str, name: str, **params: str) -> dict[str, Any] | None:
        items = await self._paginate(path, key, {"name": name, **params})
        return items[0] if items else None

    async def get_image(self, image_id: int) -> ImageResponse | None:
        return await self._get_or_none(f"/images/{image_id}", "image")

    # =========================================================================
    # Servers
    # =========================================================================

    async def create_server(
        self,
        name: str,
        *,
        image: int | str,
        user_data: str | None = None,
        ssh_keys: list[int] | None = None,
        start_after_create: bool = True,
    ) -> dict[str, Any]:
        """Submit a server and return the raw response (server, action, next_actions, root_password)."""
        body: dict[str, Any] = {
            "name": name,
            "server_type": self.config.server_type,
            "image": image,
            "location": self.config.location,
            "labels": MANAGED_LABELS,
            "start_after_create": start_after_create,
        }
        if user_data is not None:
            body["user_data"] = user_data
        if ssh_keys:
            body["ssh_keys"] = ssh_keys
        return await self._request("POST", "/servers", body)

    async def get_server(self, server_id: int | str) -> ServerResponse | None:
        return await self._get_or_none(f"/servers/{server_id}", "server")

    async def list_servers(self) -> list[ServerResponse]:
        return await self._paginate("/servers", "servers", {"label_selector": label_selector(MANAGED_LABELS)})

    async def delete_server(self, server_id: int | str) -> ActionResponse:
        result = await self._request("DELETE", f"/servers/{server_id}", resource_id=str(server_id))
        return result["action"]

    async def server_action(
        self, server_id: int | str, action: str, body: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        return await self._request(
            "POST", f"/servers/{server_id}/actions/{action}", body or {}, resource_id=str(server_id)
        )

    # =========================================================================
    # Images
    # =========================================================================

    async def list_images(self) -> list[ImageResponse]:
        return await self._paginate(
            "/images", "images",
            {"type": "snapshot", "label_selector": label_selector(MANAGED_LABELS)},
        )

    async def delete_image(self, image_id: int | str) -> None:
        await self._request("DELETE", f"/images/{image_id}", resource_id=str(image_id))

    # =========================================================================
    # SSH keys
    # =========================================================================

    async def create_ssh_key(self, name: str, public_key: str) -> SSHKeyResponse:
        result = await self._request(
            "POST", "/ssh_keys", {"name": name, "public_key": public_key, "labels": MANAGED_LABELS}
        )
        return result["ssh_key"]

    async def delete_ssh_key(self, key_id: int | str) -> None:
        await self._request("DELETE", f"/ssh_keys/{key_id}", resource_id=str(key_id))

    async def list_ssh_keys(self) -> list[SSHKeyResponse]:
        return await self._paginate(
            "/ssh_keys", "ssh_keys", {"label_selector": label_selector(MANAGED_LABELS)}
        )


__all__ = ["MANAGED_LABELS", "HetznerClient", "get_token", "label_selector"]
