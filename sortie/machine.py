"""Handle to one provisioned instance.

A Machine exists only once it is fully provisioned: Cluster builds it,
runs the startup check, and registers it only after everything succeeded.
"""

from __future__ import annotations

import contextlib
from pathlib import Path
from typing import TYPE_CHECKING

import asyncssh
from loguru import logger

from sortie.checks import start_machine, start_reboot
from sortie.infra.ssh import SSHTransport
from sortie.model import CommandResult, Server

if TYPE_CHECKING:
    from sortie.cluster import Cluster
    from sortie.flight import Flight
    from sortie.journal import Journal

CONSOLE_FILE = "console.txt"


class Machine:
    """One live server inside a Cluster.

    ``ip`` is the floating IP address when one is attached, otherwise the
    backend's native public address. ``pooled`` records whether the floating
    IP was checked out of the Flight's pool and must be returned there.
    """

    def __init__(
        self,
        cluster: Cluster,
        server: Server,
        *,
        directory: Path,
        journal: Journal,
        pooled: bool,
        log=None,
    ) -> None:
        self.cluster = cluster
        self.server = server
        self.directory = directory
        self.journal = journal
        self.pooled = pooled
        self.console = ""
        self._ssh: SSHTransport | None = None
        self._destroyed = False
        self._log = (log or logger).bind(component="machine", machine=server.id)

    @property
    def flight(self) -> Flight:
        return self.cluster.flight

    @property
    def id(self) -> str:
        return self.server.id

    @property
    def name(self) -> str:
        return self.server.name

    @property
    def ip(self) -> str:
        address = self.server.floating_ip_address or self.server.public_ip
        if address is None:
            raise RuntimeError(f"machine {self.id} has no public address")
        return address

    @property
    def private_ip(self) -> str | None:
        return self.server.private_ip

    @property
    def floating_ip(self) -> str | None:
        """Backend identifier of the attached floating IP, if any."""
        return self.server.floating_ip

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    # -------------------------------------------------------------------------
    # Remote access
    # -------------------------------------------------------------------------

    def transport(self) -> SSHTransport:
        """A new, unconnected SSH transport to this machine."""
        config = self.flight.config
        return SSHTransport(
            host=self.ip,
            user=config.ssh_user,
            key_path=str(self.flight.ssh_key_path) if self.flight.ssh_key_path else None,
            connect_timeout=config.ssh_connect_timeout,
            retry_attempts=config.ssh_retries,
            retry_delay=config.ssh_retry_delay,
        )

    async def _connection(self) -> SSHTransport:
        if self._ssh is None:
            transport = self.transport()
            await transport.connect()
            self._ssh = transport
        return self._ssh

    async def _drop_connection(self) -> None:
        if self._ssh is not None:
            ssh, self._ssh = self._ssh, None
            with contextlib.suppress(OSError, asyncssh.Error):
                await ssh.close()

    async def ssh(self, command: str, *, check: bool = False) -> CommandResult:
        """Run ``command`` on the machine over a cached SSH connection.

        A broken connection is discarded so the next call reconnects.
        """
        transport = await self._connection()
        try:
            return await transport.run(command, check=check)
        except (OSError, asyncssh.Error):
            await self._drop_connection()
            raise

    async def reboot(self) -> None:
        """Reboot and block until the startup check passes again."""
        self._log.info("Rebooting machine {id}", id=self.id)
        await start_reboot(self)
        await self._drop_connection()
        await start_machine(self)

    async def copy_file_to(self, local: Path | str, remote: str) -> None:
        """Install a local file on the machine, creating parent directories."""
        transport = await self._connection()
        await transport.install_file(Path(local).read_bytes(), remote)

    async def read_file(self, remote: str) -> bytes:
        transport = await self._connection()
        return await transport.read_file(remote)

    # -------------------------------------------------------------------------
    # Diagnostics
    # -------------------------------------------------------------------------

    async def console_output(self) -> str:
        if self._destroyed:
            return self.console
        return await self.flight.provider.console_output(self.id)

    def journal_output(self) -> str:
        return self.journal.read().decode(errors="replace")

    # -------------------------------------------------------------------------
    # Teardown
    # -------------------------------------------------------------------------

    async def destroy(self) -> None:
        """Delete the server and release everything it held. Never raises.

        A pooled floating IP survives the server and goes back to the pool;
        any other floating IP is deleted together with the server.
        """
        if self._destroyed:
            return
        self._destroyed = True
        provider = self.flight.provider

        try:
            self.console = await provider.console_output(self.id)
            (self.directory / CONSOLE_FILE).write_text(self.console)
        except Exception as e:
            self._log.warning("Saving console for {id}: {error}", id=self.id, error=e)

        floating_ip, pooled = self.floating_ip, self.pooled

        try:
            await provider.delete_server(self.id, release_floating_ip=not pooled)
            self._log.info("Deleted server {id}", id=self.id)
        except Exception as e:
            self._log.error("Deleting server {id}: {error}", id=self.id, error=e)

        await self._drop_connection()
        try:
            await self.journal.destroy()
        except Exception as e:
            self._log.error("Destroying journal for {id}: {error}", id=self.id, error=e)

        self.cluster._deregister(self)

        if pooled and floating_ip is not None:
            await self.flight.return_floating_ip(floating_ip)

    def __repr__(self) -> str:
        return f"Machine(id={self.id!r}, name={self.name!r}, pooled={self.pooled})"


__all__ = ["CONSOLE_FILE", "Machine"]
