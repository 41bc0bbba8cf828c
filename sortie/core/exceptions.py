"""Exception hierarchy for Sortie.

All sortie-specific exceptions inherit from SortieError, enabling
callers to catch every sortie failure with a single except clause.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from sortie.model import CommandResult


class SortieError(Exception):
    """Base exception for all Sortie errors."""


class ConfigurationError(SortieError):
    """Raised for invalid configuration or missing credentials. Never retried."""


class ProviderError(SortieError):
    """Raised when a backend API call fails."""

    def __init__(self, message: str, resource_id: str | None = None) -> None:
        self.resource_id = resource_id
        super().__init__(message)


class TransientProviderError(ProviderError):
    """Backend failure worth retrying (timeouts, 5xx, rate limits)."""


class ProvisioningError(SortieError):
    """Raised when a machine or image could not be brought up."""

    def __init__(self, message: str, resource_id: str | None = None) -> None:
        self.resource_id = resource_id
        super().__init__(message)


class WaitTimeoutError(SortieError):
    """Raised when a poll loop exceeds its time limit."""

    def __init__(self, description: str, timeout: float) -> None:
        self.description = description
        self.timeout = timeout
        super().__init__(f"time limit exceeded waiting for {description} ({timeout:.1f}s)")


class RemoteCommandError(SortieError):
    """Raised when a command run over SSH exits non-zero."""

    def __init__(self, command: str, result: CommandResult) -> None:
        self.command = command
        self.result = result
        super().__init__(
            f"Command {command!r} failed ({result.exit_status}): {result.stderr.strip()}"
        )


class PoolError(SortieError):
    """Base for resource pool invariant violations."""


class PoolOverflowError(PoolError):
    """Raised when releasing into a pool that is already at capacity."""

    def __init__(self, identifier: str, capacity: int) -> None:
        self.identifier = identifier
        self.capacity = capacity
        super().__init__(f"Cannot release {identifier}: pool is full (capacity={capacity})")


class PoolClosedError(PoolError):
    """Raised when releasing into a pool that has been drained."""

    def __init__(self, identifier: str) -> None:
        self.identifier = identifier
        super().__init__(f"Cannot release {identifier}: pool is closed")


class GarbageCollectionError(SortieError):
    """Raised when a GC pass aborts on a resource it could not delete."""

    def __init__(self, kind: str, resource_id: str) -> None:
        self.kind = kind
        self.resource_id = resource_id
        super().__init__(f"Garbage collection failed deleting {kind} {resource_id}")
