"""Per-machine systemd journal capture.

The default sink follows ``journalctl`` over its own SSH connection and
appends every line to ``<machine dir>/journal.txt``. Record parsing is out of
scope: the text is stored as the remote side prints it.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from loguru import logger

if TYPE_CHECKING:
    from sortie.infra.ssh import SSHTransport
    from sortie.machine import Machine

JOURNAL_FILE = "journal.txt"
JOURNAL_COMMAND = "journalctl --no-pager --quiet --boot --follow --output=short-precise"


@runtime_checkable
class Journal(Protocol):
    async def start(self, machine: Machine) -> None:
        """Begin (or resume, after a reboot) capturing the machine's journal."""
        ...

    def read(self) -> bytes: ...

    async def destroy(self) -> None: ...


type JournalFactory = Callable[[Path], Journal]


class SSHJournal:
    """Streams ``journalctl --follow`` into a file until destroyed.

    ``start`` returns once the SSH connection is up, so callers may rely on
    the machine being reachable afterwards. Calling ``start`` again (after a
    reboot) replaces the previous stream and keeps appending to the same file.
    """

    def __init__(self, directory: Path, *, log=None) -> None:
        self.path = directory / JOURNAL_FILE
        self._task: asyncio.Task[None] | None = None
        self._transport: SSHTransport | None = None
        self._log = log or logger.bind(component="journal")

    async def start(self, machine: Machine) -> None:
        await self._stop()
        self.path.touch()

        transport = machine.transport()
        await transport.connect()
        self._transport = transport
        self._task = asyncio.create_task(self._follow(transport), name=f"journal-{machine.id}")

    async def _follow(self, transport: SSHTransport) -> None:
        try:
            with self.path.open("a", encoding="utf-8") as sink:
                async for line in transport.stream(JOURNAL_COMMAND):
                    sink.write(line)
                    sink.flush()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # Expected when the machine reboots or is deleted under us.
            self._log.debug("Journal stream for {path} ended: {error}", path=self.path, error=e)

    def read(self) -> bytes:
        try:
            return self.path.read_bytes()
        except FileNotFoundError:
            return b""

    async def _stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        if self._transport is not None:
            await self._transport.close()
            self._transport = None

    async def destroy(self) -> None:
        await self._stop()


def ssh_journal_factory(directory: Path) -> Journal:
    return SSHJournal(directory)


__all__ = ["JOURNAL_FILE", "Journal", "JournalFactory", "SSHJournal", "ssh_journal_factory"]
