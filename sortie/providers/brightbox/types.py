"""Brightbox API response types.

TypedDicts for API responses - no conversion needed.
"""

from __future__ import annotations

from typing import NotRequired, TypedDict


class ResourceRef(TypedDict):
    id: str


class CloudIPRef(TypedDict):
    id: str
    public_ipv4: str


class InterfaceRef(TypedDict):
    id: str
    ipv4_address: str


class ServerResponse(TypedDict):
    id: str
    name: str
    status: str  # creating, active, inactive, deleting, deleted, failed, unavailable
    created_at: str | None
    cloud_ips: list[CloudIPRef]
    interfaces: NotRequired[list[InterfaceRef]]


class CloudIPResponse(TypedDict):
    id: str
    public_ipv4: str
    status: str  # mapped, unmapped
    server: ResourceRef | None


class ImageResponse(TypedDict):
    id: str
    name: str
    status: str  # creating, available, deprecated, unavailable, deleting, deleted, failed
    public: bool
    created_at: str | None


__all__ = ["CloudIPRef", "CloudIPResponse", "ImageResponse", "InterfaceRef", "ResourceRef", "ServerResponse"]
