"""User-data rendering and persistence.

Only placeholder substitution happens here; the template language itself
(Ignition, cloud-config) is opaque.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from pathlib import Path
from typing import Protocol, runtime_checkable

DEFAULT_IGNITION_VERSION = "3.0.0"
USER_DATA_FILE = "user-data"


@runtime_checkable
class UserDataRenderer(Protocol):
    def render(self, user_data: str | None, placeholders: Mapping[str, str]) -> str: ...


def empty_ignition(version: str = DEFAULT_IGNITION_VERSION) -> str:
    return json.dumps({"ignition": {"version": version}})


class SubstitutingRenderer:
    """Replace each placeholder token with the provider's metadata expression.

    Tokens are replaced verbatim in iteration order; no escaping is applied.
    A missing user-data document becomes an empty Ignition config.
    """

    def __init__(self, ignition_version: str = DEFAULT_IGNITION_VERSION) -> None:
        self.ignition_version = ignition_version

    def render(self, user_data: str | None, placeholders: Mapping[str, str]) -> str:
        text = user_data if user_data is not None else empty_ignition(self.ignition_version)
        for token, replacement in placeholders.items():
            text = text.replace(token, replacement)
        return text


def write_user_data(directory: Path, rendered: str) -> Path:
    path = directory / USER_DATA_FILE
    path.write_text(rendered)
    return path


__all__ = [
    "DEFAULT_IGNITION_VERSION",
    "SubstitutingRenderer",
    "UserDataRenderer",
    "empty_ignition",
    "write_user_data",
]
