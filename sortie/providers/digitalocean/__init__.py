"""DigitalOcean provider.

Environment Variables:
    DIGITALOCEAN_TOKEN: API token (required if not passed directly)
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .client import DigitalOceanClient
    from .provider import DigitalOceanProvider

from .config import DigitalOcean


def __getattr__(name: str) -> Any:
    if name == "DigitalOceanProvider":
        from .provider import DigitalOceanProvider
        return DigitalOceanProvider
    if name == "DigitalOceanClient":
        from .client import DigitalOceanClient
        return DigitalOceanClient
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = ["DigitalOcean", "DigitalOceanClient", "DigitalOceanProvider"]
