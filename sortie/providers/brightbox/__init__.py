"""Brightbox provider.

Only the config class is imported at package level. For the provider and
client, import explicitly or rely on the lazy attributes below:

    from sortie.providers.brightbox.provider import BrightboxProvider

Environment Variables:
    BRIGHTBOX_CLIENT_ID: API client id (required if not passed directly)
    BRIGHTBOX_CLIENT_SECRET: API client secret (required if not passed directly)
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .client import BrightboxClient
    from .provider import BrightboxProvider

from .config import Brightbox


def __getattr__(name: str) -> Any:
    if name == "BrightboxProvider":
        from .provider import BrightboxProvider
        return BrightboxProvider
    if name == "BrightboxClient":
        from .client import BrightboxClient
        return BrightboxClient
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = ["Brightbox", "BrightboxClient", "BrightboxProvider"]
