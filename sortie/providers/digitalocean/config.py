"""DigitalOcean provider configuration."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class DigitalOcean:
    """DigitalOcean provider configuration.

    Droplets use their native public address; the Flight's SSH key is
    registered with the account and injected into every droplet.

    Example:
        >>> from sortie.providers.digitalocean import DigitalOcean
        >>> config = DigitalOcean(region="ams3", image="123456789")

    Args:
        token: API token. Falls back to DIGITALOCEAN_TOKEN env var.
        region: Region slug for droplets and imported images.
        size: Droplet size slug.
        image: Image id or slug droplets boot from.
        tag: Tag applied to every droplet and imported image, used to list them back.
        create_timeout: Seconds to wait for a droplet to become active.
    """

    token: str | None = None
    region: str = "sfo3"
    size: str = "s-1vcpu-2gb"
    image: str | None = None
    tag: str = "sortie"
    create_timeout: float = 300.0


__all__ = ["DigitalOcean"]
