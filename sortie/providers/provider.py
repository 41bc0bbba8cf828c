from __future__ import annotations

from collections.abc import Mapping
from typing import Protocol, Self, runtime_checkable

from sortie.model import FloatingIPSummary, Image, ImageSummary, Server, ServerSummary, SSHKeySummary


@runtime_checkable
class Provider[C](Protocol):
    """Uniform lifecycle contract every cloud backend implements.

    Implementations hold only immutable configuration and an API client that
    is safe for concurrent use. All lifecycle state lives in the Flight,
    Cluster and Machine objects that call these methods.
    """

    @property
    def name(self) -> str:
        """Short backend name, e.g. ``"digitalocean"``."""
        ...

    @property
    def metadata_placeholders(self) -> Mapping[str, str]:
        """Substitutions for well-known user-data tokens.

        Maps tokens such as ``$public_ipv4`` to the backend-specific metadata
        expression the guest resolves at boot.
        """
        ...

    @property
    def floating_ip_quota(self) -> int:
        """Upper bound on floating IPs the account can hold; sizes the Flight's pool."""
        ...

    @classmethod
    async def create(cls, config: C, *, log=None) -> Self:
        """Build a provider from its configuration.

        Raises:
            ConfigurationError: Credentials are missing or rejected by a preflight call.
        """
        ...

    async def create_server(
        self,
        name: str,
        user_data: str,
        *,
        floating_ip: str | None = None,
        ssh_key_id: str | None = None,
    ) -> Server:
        """Create a server and give it a public address.

        When ``floating_ip`` is given that address is attached to the new
        server; otherwise a fresh one is allocated. If a step fails after the
        backend accepted the server, the server is deleted before the error
        is raised. A caller-supplied ``floating_ip`` is never deleted here.
        """
        ...

    async def delete_server(self, server_id: str, *, release_floating_ip: bool = True) -> None:
        """Delete a server, detaching its floating IP first.

        The detached IP is deleted as well unless ``release_floating_ip`` is
        False, in which case the caller keeps ownership of it. Deleting a
        server that no longer exists is a no-op.
        """
        ...

    async def create_image(self, name: str, source_url: str) -> Image:
        """Import an image and wait until it is available.

        A partially created image is deleted before any error is raised.
        """
        ...

    async def delete_image(self, image_id: str) -> None: ...

    async def list_servers(self) -> list[ServerSummary]: ...

    async def list_images(self) -> list[ImageSummary]: ...

    async def console_output(self, server_id: str) -> str:
        """Serial console text, or ``""`` where the backend offers no API for it."""
        ...

    async def close(self) -> None: ...


@runtime_checkable
class FloatingIPCapable(Protocol):
    """Provider manages standalone floating IPs that outlive servers.

    Only providers implementing this protocol get a Flight resource pool
    that is worth seeding or draining.
    """

    async def create_floating_ip(self) -> str: ...

    async def delete_floating_ip(self, floating_ip_id: str) -> None: ...

    async def attach_floating_ip(self, floating_ip_id: str, server_id: str) -> None: ...

    async def detach_floating_ip(self, floating_ip_id: str) -> None: ...

    async def list_floating_ips(self) -> list[FloatingIPSummary]: ...


@runtime_checkable
class SSHKeyCapable(Protocol):
    """Provider injects registered SSH keys into new servers."""

    async def create_ssh_key(self, name: str, public_key: str) -> str: ...

    async def delete_ssh_key(self, key_id: str) -> None: ...

    async def list_ssh_keys(self) -> list[SSHKeySummary]:
        """Keys this library registered, for age-based garbage collection."""
        ...


__all__ = ["FloatingIPCapable", "Provider", "SSHKeyCapable"]
