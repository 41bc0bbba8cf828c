"""Hetzner Cloud provider.

Environment Variables:
    HCLOUD_TOKEN: API token (required if not passed directly)
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .client import HetznerClient
    from .provider import HetznerProvider

from .config import Hetzner


def __getattr__(name: str) -> Any:
    if name == "HetznerProvider":
        from .provider import HetznerProvider
        return HetznerProvider
    if name == "HetznerClient":
        from .client import HetznerClient
        return HetznerClient
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = ["Hetzner", "HetznerClient", "HetznerProvider"]
