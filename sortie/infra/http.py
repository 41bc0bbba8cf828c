"""JSON-over-HTTP client shared by the REST-based provider adapters.

One aiohttp session per client, bearer tokens from a pluggable Auth, and a
single transparent retry after a 401 so that expired OAuth2 tokens renew
without the adapters noticing.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Protocol, runtime_checkable

import aiohttp
from loguru import logger

from sortie.core.exceptions import ConfigurationError, ProviderError

USER_AGENT = "sortie/0.1"

# Renew OAuth2 tokens this many seconds before the server says they expire.
TOKEN_EXPIRY_MARGIN = 60.0


class HttpError(ProviderError):
    """Non-2xx response or transport failure. ``status`` is 0 for the latter."""

    def __init__(self, status: int, body: str, resource_id: str | None = None) -> None:
        self.status = status
        self.body = body
        super().__init__(f"HTTP {status}: {body[:500]}", resource_id)

    @property
    def not_found(self) -> bool:
        return self.status == 404


@runtime_checkable
class Auth(Protocol):
    async def token(self) -> str:
        """Current bearer token, fetching one if needed."""
        ...

    def invalidate(self) -> None:
        """Forget the current token; the next ``token()`` call fetches a new one."""
        ...


class BearerAuth:
    """A fixed API token."""

    def __init__(self, token: str) -> None:
        self._token = token

    async def token(self) -> str:
        return self._token

    def invalidate(self) -> None:
        pass


class OAuth2Auth:
    """OAuth2 client-credentials grant.

    Concurrent callers share one token fetch. The token is renewed when it
    is about to expire or after the API rejected it.
    """

    def __init__(self, client_id: str, client_secret: str, token_url: str) -> None:
        self._credentials = aiohttp.BasicAuth(client_id, client_secret)
        self._token_url = token_url
        self._token: str | None = None
        self._expires_at = 0.0
        self._lock = asyncio.Lock()
        self._log = logger.bind(component="http")

    async def token(self) -> str:
        async with self._lock:
            if self._token is None or time.monotonic() >= self._expires_at:
                self._token, lifetime = await self._fetch()
                self._expires_at = time.monotonic() + max(0.0, lifetime - TOKEN_EXPIRY_MARGIN)
            return self._token

    def invalidate(self) -> None:
        self._token = None

    async def _fetch(self) -> tuple[str, float]:
        self._log.debug("Fetching OAuth2 token from {url}", url=self._token_url)
        try:
            async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=30)) as session:
                async with session.post(
                    self._token_url,
                    data={"grant_type": "client_credentials"},
                    auth=self._credentials,
                ) as resp:
                    if resp.status in (400, 401, 403):
                        raise ConfigurationError(
                            f"OAuth2 client credentials rejected ({resp.status}): "
                            f"{(await resp.text())[:200]}"
                        )
                    if resp.status >= 400:
                        raise HttpError(resp.status, await resp.text())
                    grant = await resp.json(content_type=None)
        except aiohttp.ClientError as e:
            raise HttpError(0, str(e)) from e
        return grant["access_token"], float(grant.get("expires_in", 3600))


class HttpClient:
    """Thin JSON client over a shared aiohttp session.

    Safe for concurrent use by many tasks. Paths are appended to
    ``base_url`` verbatim.
    """

    def __init__(self, base_url: str, auth: Auth | None = None, *, timeout: float = 30) -> None:
        self._base_url = base_url.rstrip("/")
        self._auth = auth
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: aiohttp.ClientSession | None = None
        self._log = logger.bind(component="http")

    def _session_for_request(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=self._timeout,
                headers={"Accept": "application/json", "User-Agent": USER_AGENT},
            )
        return self._session

    async def _headers(self) -> dict[str, str]:
        if self._auth is None:
            return {}
        return {"Authorization": f"Bearer {await self._auth.token()}"}

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | list[Any] | None = None,
        params: dict[str, Any] | None = None,
        text: bool = False,
    ) -> Any:
        """Send one request and decode the response.

        Returns the decoded JSON body (None when empty), or the raw text when
        ``text`` is set.

        Raises:
            HttpError: On any status >= 400 and on transport failures.
        """
        session = self._session_for_request()
        url = f"{self._base_url}{path}"
        self._log.debug("{method} {path}", method=method, path=path)

        try:
            for attempt in (1, 2):
                async with session.request(
                    method, url, headers=await self._headers(), json=json, params=params
                ) as resp:
                    if resp.status == 401 and self._auth is not None and attempt == 1:
                        self._log.debug("401 from {path}, renewing token", path=path)
                        self._auth.invalidate()
                        continue
                    return await self._decode(resp, text)
        except aiohttp.ClientResponseError as e:
            raise HttpError(e.status, e.message) from e
        except aiohttp.ClientError as e:
            raise HttpError(0, str(e)) from e

    async def _decode(self, resp: aiohttp.ClientResponse, text: bool) -> Any:
        if resp.status >= 400:
            body = await resp.text()
            self._log.warning(
                "HTTP {status} from {method} {url}: {body}",
                status=resp.status, method=resp.method, url=str(resp.url), body=body[:500],
            )
            raise HttpError(resp.status, body)
        if text:
            return await resp.text()
        raw = await resp.read()
        return await resp.json(content_type=None) if raw else None

    async def get(self, path: str, *, params: dict[str, Any] | None = None) -> Any:
        return await self.request("GET", path, params=params)

    async def post(self, path: str, *, json: dict[str, Any] | None = None) -> Any:
        return await self.request("POST", path, json=json)

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def __aenter__(self) -> HttpClient:
        self._session_for_request()
        return self

    async def __aexit__(self, *_: Any) -> None:
        await self.close()


__all__ = ["Auth", "BearerAuth", "HttpClient", "HttpError", "OAuth2Auth"]
