"""Sortie - provision short-lived cloud machines for integration tests.

Example:

    from sortie import Flight, FlightConfig, DigitalOcean, create_provider

    provider = await create_provider(DigitalOcean(region="ams3", image="12345"))
    async with await Flight.create(provider, FlightConfig(base_name="smoke")) as flight:
        cluster = flight.new_cluster()
        m1, m2 = await cluster.new_machines(2, ignition)
        result = await m1.ssh(f"ping -c1 {m2.private_ip}")
        await cluster.destroy()
"""

from sortie.cluster import Cluster
from sortie.config import load_config, resolve_flight_config, resolve_provider
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
from sortie.flight import Flight, FlightConfig
from sortie.gc import GCReport, collect_garbage, remove_floating_ips
from sortie.machine import Machine
from sortie.model import CommandResult, Image, Server
from sortie.observability import LogConfig, setup_logging, teardown_logging
from sortie.pool import ResourcePool
from sortie.providers import (
    Brightbox,
    DigitalOcean,
    FloatingIPCapable,
    Hetzner,
    Provider,
    SSHKeyCapable,
    create_provider,
)
from sortie.retry import is_transient, retry, retry_conditional, wait_until_ready

__version__ = "0.1.0"

__all__ = [
    # Lifecycle
    "Flight",
    "FlightConfig",
    "Cluster",
    "Machine",
    "ResourcePool",
    # Providers
    "Provider",
    "FloatingIPCapable",
    "SSHKeyCapable",
    "create_provider",
    "Brightbox",
    "DigitalOcean",
    "Hetzner",
    # Records
    "CommandResult",
    "Image",
    "Server",
    # Garbage collection
    "GCReport",
    "collect_garbage",
    "remove_floating_ips",
    # Retry
    "is_transient",
    "retry",
    "retry_conditional",
    "wait_until_ready",
    # Config
    "load_config",
    "resolve_flight_config",
    "resolve_provider",
    # Logging
    "LogConfig",
    "setup_logging",
    "teardown_logging",
    # Errors
    "SortieError",
    "ConfigurationError",
    "ProviderError",
    "TransientProviderError",
    "ProvisioningError",
    "WaitTimeoutError",
    "RemoteCommandError",
    "PoolError",
    "PoolOverflowError",
    "PoolClosedError",
    "GarbageCollectionError",
]
