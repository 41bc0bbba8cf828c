"""Brightbox provider configuration."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Brightbox:
    """Brightbox provider configuration.

    Servers are reached through cloud IPs, which the Flight pools and reuses
    across machines.

    Example:
        >>> from sortie.providers.brightbox import Brightbox
        >>> config = Brightbox(image="img-abcde", server_type="2gb.ssd")

    Args:
        client_id: API client id. Falls back to BRIGHTBOX_CLIENT_ID env var.
        client_secret: API client secret. Falls back to BRIGHTBOX_CLIENT_SECRET env var.
        image: Image id servers boot from.
        server_type: Server type handle (memory and disk class).
        zone: Optional zone handle; Brightbox picks one when unset.
        cloud_ip_quota: Cloud IPs the account may hold at once.
        api_url: API endpoint including the version prefix.
        request_timeout: Per-request HTTP timeout in seconds.
    """

    client_id: str | None = None
    client_secret: str | None = None
    image: str | None = None
    server_type: str = "2gb.ssd"
    zone: str | None = None
    cloud_ip_quota: int = 5
    api_url: str = "https://api.gb1.brightbox.com/1.0"
    request_timeout: float = 30


__all__ = ["Brightbox"]
