"""Provider registry: configuration object to Provider.

Uses lazy imports so that SDK dependencies load only when needed.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from loguru import logger

from sortie.core.exceptions import ConfigurationError

if TYPE_CHECKING:
    from .brightbox.config import Brightbox
    from .digitalocean.config import DigitalOcean
    from .hetzner.config import Hetzner
    from .provider import Provider

type ProviderConfig = Brightbox | DigitalOcean | Hetzner


async def create_provider(config: ProviderConfig, *, log=None) -> Provider:
    """Create a Provider for a configuration object.

    ``log`` is a bound loguru logger handed to the adapter and its API client.

    Raises:
        ConfigurationError: Unknown config type, missing credentials or failed preflight.
    """
    from .brightbox.config import Brightbox
    from .digitalocean.config import DigitalOcean
    from .hetzner.config import Hetzner

    config_type = type(config).__name__
    (log or logger).bind(component="registry").debug(
        "Creating provider for config={config_type}", config_type=config_type
    )

    match config:
        case DigitalOcean():
            from .digitalocean.provider import DigitalOceanProvider
            return await DigitalOceanProvider.create(config, log=log)
        case Brightbox():
            from .brightbox.provider import BrightboxProvider
            return await BrightboxProvider.create(config, log=log)
        case Hetzner():
            from .hetzner.provider import HetznerProvider
            return await HetznerProvider.create(config, log=log)
        case _:
            raise ConfigurationError(
                f"No provider registered for {config_type}. "
                f"Available providers: DigitalOcean, Brightbox, Hetzner"
            )


__all__ = ["ProviderConfig", "create_provider"]
