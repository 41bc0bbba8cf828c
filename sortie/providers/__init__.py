"""Cloud backends behind the uniform Provider contract.

Only config classes are imported at package level; adapters load their SDKs
when ``create_provider`` (or the adapter module) is imported.
"""

from .brightbox import Brightbox
from .digitalocean import DigitalOcean
from .hetzner import Hetzner
from .provider import FloatingIPCapable, Provider, SSHKeyCapable
from .registry import ProviderConfig, create_provider

__all__ = [
    "Brightbox",
    "DigitalOcean",
    "FloatingIPCapable",
    "Hetzner",
    "Provider",
    "ProviderConfig",
    "SSHKeyCapable",
    "create_provider",
]
