"""Provider-agnostic resource types.

Every backend adapter normalizes its native responses into these records so
that Flight, Cluster, Machine and the garbage collector never depend on a
concrete SDK type.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Literal

type ResourceStatus = Literal[
    "creating",
    "active",
    "available",
    "off",
    "deleting",
    "deleted",
    "failed",
    "unknown",
]


@dataclass(frozen=True, slots=True)
class Server:
    """A server as returned by ``Provider.create_server``."""

    id: str
    name: str
    status: ResourceStatus
    created_at: datetime
    public_ip: str | None = None
    private_ip: str | None = None
    floating_ip: str | None = None
    floating_ip_address: str | None = None


@dataclass(frozen=True, slots=True)
class ServerSummary:
    id: str
    created_at: datetime
    status: ResourceStatus

    @property
    def deleted(self) -> bool:
        return self.status in ("deleting", "deleted")


@dataclass(frozen=True, slots=True)
class ImageSummary:
    id: str
    created_at: datetime
    status: ResourceStatus
    public: bool = False

    @property
    def deleted(self) -> bool:
        return self.status in ("deleting", "deleted")


@dataclass(frozen=True, slots=True)
class Image:
    id: str
    name: str
    status: ResourceStatus


@dataclass(frozen=True, slots=True)
class FloatingIPSummary:
    id: str
    address: str
    server_id: str | None = None

    @property
    def attached(self) -> bool:
        return self.server_id is not None


@dataclass(frozen=True, slots=True)
class SSHKeySummary:
    id: str
    name: str
    created_at: datetime


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Outcome of a command executed over SSH."""

    exit_status: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.exit_status == 0


__all__ = [
    "CommandResult",
    "FloatingIPSummary",
    "Image",
    "ImageSummary",
    "ResourceStatus",
    "SSHKeySummary",
    "Server",
    "ServerSummary",
]
