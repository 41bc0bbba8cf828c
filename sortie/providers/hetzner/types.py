"""Hetzner Cloud API response types."""

from __future__ import annotations

from typing import NotRequired, TypedDict


class IPv4(TypedDict):
    ip: str


class PublicNet(TypedDict):
    ipv4: IPv4 | None


class PrivateNet(TypedDict):
    ip: str


class ServerResponse(TypedDict):
    id: int
    name: str
    status: str  # initializing, starting, running, stopping, off, deleting, migrating, rebuilding, unknown
    created: str
    public_net: PublicNet
    private_net: NotRequired[list[PrivateNet]]


class ActionError(TypedDict):
    code: str
    message: str


class ActionResponse(TypedDict):
    id: int
    command: str
    status: str  # running, success, error
    error: ActionError | None


class ImageResponse(TypedDict):
    id: int
    type: str  # system, app, snapshot, backup
    status: str  # available, creating, unavailable
    description: str
    created: str


class SSHKeyResponse(TypedDict):
    id: int
    name: str
    public_key: str
    created: str


__all__ = [
    "ActionResponse",
    "ImageResponse",
    "PrivateNet",
    "PublicNet",
    "SSHKeyResponse",
    "ServerResponse",
]
