"""Core types shared across Sortie."""

from sortie.core.exceptions import (
    ConfigurationError,
    GarbageCollectionError,
    PoolClosedError,
    PoolError,
    PoolOverflowError,
    ProviderError,
    ProvisioningError,
    RemoteCommandError,
    SortieError,
    TransientProviderError,
    WaitTimeoutError,
)

__all__ = [
    "ConfigurationError",
    "GarbageCollectionError",
    "PoolClosedError",
    "PoolError",
    "PoolOverflowError",
    "ProviderError",
    "ProvisioningError",
    "RemoteCommandError",
    "SortieError",
    "TransientProviderError",
    "WaitTimeoutError",
]
