"""DigitalOcean API response types."""

from __future__ import annotations

from typing import TypedDict


class NetworkV4(TypedDict):
    ip_address: str
    type: str  # public, private


class Networks(TypedDict):
    v4: list[NetworkV4]


class DropletResponse(TypedDict):
    id: int
    name: str
    status: str  # new, active, off, archive
    created_at: str
    networks: Networks


class ImageResponse(TypedDict):
    id: int
    name: str
    status: str  # NEW, pending, available, deleted, retired
    public: bool
    created_at: str


class SSHKeyResponse(TypedDict):
    id: int
    fingerprint: str
    public_key: str
    name: str


__all__ = ["DropletResponse", "ImageResponse", "NetworkV4", "Networks", "SSHKeyResponse"]
