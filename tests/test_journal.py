from __future__ import annotations

import asyncio

import pytest

from sortie.journal import JOURNAL_COMMAND, JOURNAL_FILE, Journal, SSHJournal, ssh_journal_factory

pytestmark = [pytest.mark.unit]


class FakeTransport:
    def __init__(self, lines: list[str], *, hang: bool = False) -> None:
        self.lines = lines
        self.hang = hang
        self.connected = False
        self.closed = False
        self.commands: list[str] = []

    async def connect(self) -> None:
        self.connected = True

    async def stream(self, command: str):
        self.commands.append(command)
        for line in self.lines:
            yield line
        if self.hang:
            await asyncio.Event().wait()

    async def close(self) -> None:
        self.closed = True


class FakeMachine:
    id = "srv-1"

    def __init__(self, *transports: FakeTransport) -> None:
        self._transports = list(transports)

    def transport(self) -> FakeTransport:
        return self._transports.pop(0)


class TestSSHJournal:
    def test_factory_builds_journal(self, tmp_path):
        journal = ssh_journal_factory(tmp_path)
        assert isinstance(journal, Journal)
        assert journal.read() == b""

    async def test_streams_into_file(self, tmp_path):
        transport = FakeTransport(["-- Boot abc --\n", "systemd[1]: Started sshd.\n"])
        journal = SSHJournal(tmp_path)

        await journal.start(FakeMachine(transport))  # type: ignore[arg-type]
        await journal._task

        assert transport.commands == [JOURNAL_COMMAND]
        assert journal.read() == b"-- Boot abc --\nsystemd[1]: Started sshd.\n"
        assert (tmp_path / JOURNAL_FILE).exists()

    async def test_restart_appends_and_closes_previous_stream(self, tmp_path):
        first = FakeTransport(["boot 1\n"], hang=True)
        second = FakeTransport(["boot 2\n"])
        journal = SSHJournal(tmp_path)
        machine = FakeMachine(first, second)

        await journal.start(machine)  # type: ignore[arg-type]
        await asyncio.sleep(0.01)
        await journal.start(machine)  # type: ignore[arg-type]
        await journal._task

        assert first.closed
        assert journal.read() == b"boot 1\nboot 2\n"

        await journal.destroy()
        assert second.closed

    async def test_destroy_stops_stream(self, tmp_path):
        transport = FakeTransport([], hang=True)
        journal = SSHJournal(tmp_path)

        await journal.start(FakeMachine(transport))  # type: ignore[arg-type]
        task = journal._task
        await journal.destroy()

        assert task.cancelled()
        assert transport.closed
