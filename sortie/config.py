"""TOML-based provider and flight configuration.

Loads ~/.sortie/defaults.toml (global) and sortie.toml (project), merges
them, and resolves named providers and the ``[flight]`` table.

Example sortie.toml:

    [flight]
    base_name = "smoke"
    ssh_user = "core"
    check_os_release = "flatcar"

    [providers.bbx]
    type = "brightbox"
    image = "img-abcde"
    server_type = "2gb.ssd"
"""

from __future__ import annotations

import dataclasses
import tomllib
from pathlib import Path
from typing import TYPE_CHECKING, Any

from sortie.core.exceptions import ConfigurationError
from sortie.flight import FlightConfig

if TYPE_CHECKING:
    from sortie.providers.registry import ProviderConfig

type RawConfig = dict[str, Any]

GLOBAL_CONFIG_PATH = Path.home() / ".sortie" / "defaults.toml"
PROJECT_CONFIG_NAME = "sortie.toml"

_PATH_FIELDS = ("output_dir", "ssh_key_path")


def _deep_merge(base: RawConfig, override: RawConfig) -> RawConfig:
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _read_toml(path: Path) -> RawConfig:
    if not path.is_file():
        return {}
    try:
        with path.open("rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"Invalid TOML in {path}: {e}") from e


def load_config(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> RawConfig:
    global_cfg = _read_toml(global_path or GLOBAL_CONFIG_PATH)
    project_path = (project_dir or Path.cwd()) / PROJECT_CONFIG_NAME
    project_cfg = _read_toml(project_path)

    merged = _deep_merge(global_cfg, project_cfg)
    merged.setdefault("providers", {})
    merged.setdefault("flight", {})
    return merged


def _get_provider_map() -> dict[str, type]:
    from sortie.providers.brightbox.config import Brightbox
    from sortie.providers.digitalocean.config import DigitalOcean
    from sortie.providers.hetzner.config import Hetzner

    return {
        "brightbox": Brightbox,
        "digitalocean": DigitalOcean,
        "hetzner": Hetzner,
    }


def _build(cls: type, raw: RawConfig, what: str) -> Any:
    known = {f.name for f in dataclasses.fields(cls)}
    unknown = sorted(set(raw) - known)
    if unknown:
        raise ConfigurationError(f"Unknown {what} field(s): {', '.join(unknown)}")
    return cls(**raw)


def _build_provider(name: str, raw: RawConfig) -> ProviderConfig:
    raw = dict(raw)
    provider_type = raw.pop("type", None)
    if provider_type is None:
        raise ConfigurationError(f"Provider '{name}' missing 'type' field")

    provider_map = _get_provider_map()
    cls = provider_map.get(provider_type)
    if cls is None:
        raise ConfigurationError(
            f"Unknown provider type '{provider_type}'. Valid: {', '.join(provider_map)}"
        )
    return _build(cls, raw, f"provider '{name}'")


def resolve_provider(
    name: str,
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> ProviderConfig:
    """Build the provider config registered under ``[providers.<name>]``."""
    config = load_config(project_dir=project_dir, global_path=global_path)

    providers = config["providers"]
    if name not in providers:
        raise ConfigurationError(
            f"Provider '{name}' not found. Available: {', '.join(providers) or 'none'}"
        )
    return _build_provider(name, providers[name])


def resolve_flight_config(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> FlightConfig:
    """Build a FlightConfig from the ``[flight]`` table; missing keys keep their defaults."""
    config = load_config(project_dir=project_dir, global_path=global_path)

    raw = dict(config["flight"])
    for key in _PATH_FIELDS:
        if raw.get(key) is not None:
            raw[key] = Path(raw[key]).expanduser()
    return _build(FlightConfig, raw, "flight")


__all__ = ["load_config", "resolve_flight_config", "resolve_provider"]
