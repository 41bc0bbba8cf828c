"""Hetzner Cloud provider configuration."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Hetzner:
    """Hetzner Cloud provider configuration.

    Servers use their native public IPv4 address. Images are imported by
    booting a temporary server into the rescue system, writing the image to
    its disk and snapshotting it.

    Example:
        >>> from sortie.providers.hetzner import Hetzner
        >>> config = Hetzner(image="flatcar-stable", server_type="cx22", location="fsn1")

    Args:
        token: API token. Falls back to HCLOUD_TOKEN env var.
        image: Image id or name servers boot from.
        server_type: Server type name.
        location: Location name used for every server.
        architecture: Image architecture, "x86" or "arm".
        builder_image: System image of the temporary server used by ``create_image``.
        action_timeout: Seconds to wait for a single API action.
        image_timeout: Seconds to wait for an imported snapshot to become available.
        api_url: API endpoint.
        request_timeout: Per-request HTTP timeout in seconds.
    """

    token: str | None = None
    image: str | None = None
    server_type: str = "cx22"
    location: str = "fsn1"
    architecture: str = "x86"
    builder_image: str = "ubuntu-24.04"
    action_timeout: float = 300.0
    image_timeout: float = 900.0
    api_url: str = "https://api.hetzner.cloud/v1"
    request_timeout: float = 30


__all__ = ["Hetzner"]
