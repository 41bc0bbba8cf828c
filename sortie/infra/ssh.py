"""AsyncSSH-based transport for commands run on provisioned machines.

Service class pattern: host, user and credentials are bound at construction,
not passed on every call.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncIterator
from dataclasses import dataclass, field

import asyncssh
from loguru import logger

from sortie.core.exceptions import RemoteCommandError
from sortie.model import CommandResult
from sortie.retry import retry_conditional


def _retryable_connect_error(e: BaseException) -> bool:
    # Keys and passwords are often injected after sshd already listens.
    return isinstance(e, (OSError, asyncssh.Error, TimeoutError))


@dataclass
class SSHTransport:
    """Async SSH connection to a single host.

    ``connect()`` retries at a fixed interval, since a freshly booted machine
    refuses connections until sshd is up.

    As context manager:
        >>> async with SSHTransport(host="10.0.0.1", user="core", key_path="id_ed25519") as t:
        ...     result = await t.run("systemctl is-system-running")
    """

    host: str
    user: str
    key_path: str | None = None
    password: str | None = None
    port: int = 22
    connect_timeout: float = 10.0
    retry_attempts: int = 30
    retry_delay: float = 5.0

    _conn: asyncssh.SSHClientConnection | None = field(default=None, repr=False)

    async def connect(self) -> None:
        """Establish the SSH connection, retrying until sshd answers."""
        if self._conn is not None:
            return

        async def do_connect() -> asyncssh.SSHClientConnection:
            return await asyncssh.connect(
                self.host,
                port=self.port,
                username=self.user,
                client_keys=[self.key_path] if self.key_path else None,
                password=self.password,
                known_hosts=None,
                connect_timeout=self.connect_timeout,
            )

        logger.bind(component="ssh").debug(
            "Connecting to {user}@{host}:{port}", user=self.user, host=self.host, port=self.port
        )
        self._conn = await retry_conditional(
            self.retry_attempts, self.retry_delay, _retryable_connect_error, do_connect
        )

    async def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(self._conn.wait_closed(), timeout=5.0)
            self._conn = None

    async def __aenter__(self) -> SSHTransport:
        await self.connect()
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.close()

    def _require_connection(self) -> asyncssh.SSHClientConnection:
        if self._conn is None:
            raise RuntimeError("Not connected. Call connect() first.")
        return self._conn

    # -------------------------------------------------------------------------
    # Command Execution
    # -------------------------------------------------------------------------

    async def run(
        self,
        command: str,
        *,
        input: str | bytes | None = None,
        timeout: float | None = None,
        check: bool = False,
    ) -> CommandResult:
        """Execute ``command`` and return its exit status and trimmed output.

        Raises:
            RemoteCommandError: If ``check`` is set and the command exits non-zero.
        """
        conn = self._require_connection()
        result = await conn.run(command, input=input, timeout=timeout, check=False)

        outcome = CommandResult(
            exit_status=result.exit_status if result.exit_status is not None else -1,
            stdout=str(result.stdout or "").strip(),
            stderr=str(result.stderr or "").strip(),
        )
        if check and not outcome.ok:
            raise RemoteCommandError(command, outcome)
        return outcome

    async def stream(self, command: str) -> AsyncIterator[str]:
        """Run ``command`` and yield its stdout line by line until it exits."""
        conn = self._require_connection()
        async with conn.create_process(command) as proc:
            async for line in proc.stdout:
                yield line

    # -------------------------------------------------------------------------
    # File Transfer
    # -------------------------------------------------------------------------

    async def read_file(self, remote: str) -> bytes:
        """Read a remote file with root privileges."""
        conn = self._require_connection()
        result = await conn.run(f"sudo cat {remote}", encoding=None, check=False)
        if result.exit_status != 0:
            stderr = (result.stderr or b"").decode(errors="replace")
            raise RemoteCommandError(
                f"sudo cat {remote}",
                CommandResult(result.exit_status or -1, "", stderr),
            )
        return bytes(result.stdout or b"")

    async def install_file(self, content: bytes, remote: str, mode: str = "0755") -> None:
        """Write ``content`` to ``remote``, creating parent directories."""
        parent = remote.rsplit("/", 1)[0] or "/"
        await self.run(f"sudo mkdir -p {parent}", check=True)
        conn = self._require_connection()
        result = await conn.run(
            f"sudo install -m {mode} /dev/stdin {remote}", input=content, encoding=None, check=False
        )
        if result.exit_status != 0:
            stderr = (result.stderr or b"").decode(errors="replace")
            raise RemoteCommandError(
                f"install {remote}",
                CommandResult(result.exit_status or -1, "", stderr),
            )
