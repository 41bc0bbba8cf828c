from __future__ import annotations

from dataclasses import replace
from types import SimpleNamespace

import pytest

from sortie.checks import check_machine
from sortie.core.exceptions import ProvisioningError
from sortie.flight import FlightConfig
from sortie.model import CommandResult

pytestmark = [pytest.mark.unit]

CONFIG = FlightConfig(ssh_retries=3, ssh_retry_delay=0)


def ok(stdout: str = "") -> CommandResult:
    return CommandResult(exit_status=0, stdout=stdout, stderr="")


def fail(stdout: str = "", status: int = 1) -> CommandResult:
    return CommandResult(exit_status=status, stdout=stdout, stderr="")


class ScriptedMachine:
    """Answers SSH commands from a script; each entry is consumed once, the last one repeats."""

    def __init__(self, script: dict[str, list[CommandResult]], config: FlightConfig = CONFIG) -> None:
        self.id = "srv-1"
        self.flight = SimpleNamespace(config=config)
        self.script = script
        self.commands: list[str] = []

    async def ssh(self, command: str, *, check: bool = False) -> CommandResult:
        self.commands.append(command)
        for prefix, results in self.script.items():
            if command.startswith(prefix):
                return results.pop(0) if len(results) > 1 else results[0]
        raise AssertionError(f"unexpected command {command!r}")


def healthy(**extra: list[CommandResult]) -> dict[str, list[CommandResult]]:
    return {
        "systemctl is-system-running": [ok("running")],
        "systemctl --no-legend --state failed list-units": [ok("")],
        **extra,
    }


class TestCheckMachine:
    async def test_healthy_machine_passes(self):
        machine = ScriptedMachine(healthy())
        await check_machine(machine)  # type: ignore[arg-type]

    async def test_waits_for_system_to_settle(self):
        machine = ScriptedMachine(
            healthy(
                **{
                    "systemctl is-system-running": [fail("starting"), fail("starting"), ok("running")],
                    "systemctl list-jobs": [ok("1 jobs listed")],
                }
            )
        )

        await check_machine(machine)  # type: ignore[arg-type]

        assert machine.commands.count("systemctl is-system-running") == 3

    async def test_empty_answer_is_retried(self):
        machine = ScriptedMachine(
            healthy(**{"systemctl is-system-running": [fail(""), ok("running")]})
        )

        await check_machine(machine)  # type: ignore[arg-type]

        assert machine.commands.count("systemctl is-system-running") == 2

    async def test_degraded_system_is_reported_by_failed_units(self):
        machine = ScriptedMachine(
            {
                "systemctl is-system-running": [fail("degraded")],
                "systemctl --no-legend --state failed list-units": [ok("broken.service loaded failed failed")],
                "systemctl status broken.service": [ok("Active: failed")],
                "journalctl -b -u broken.service": [ok("boom")],
            }
        )

        with pytest.raises(ProvisioningError, match="some systemd units failed") as exc_info:
            await check_machine(machine)  # type: ignore[arg-type]

        assert "Active: failed" in str(exc_info.value)
        assert exc_info.value.resource_id == "srv-1"

    async def test_failed_units_can_be_allowed(self):
        machine = ScriptedMachine(
            {"systemctl is-system-running": [fail("degraded")]},
            replace(CONFIG, allow_failed_units=True),
        )

        await check_machine(machine)  # type: ignore[arg-type]

    async def test_never_settles(self):
        machine = ScriptedMachine(
            healthy(
                **{
                    "systemctl is-system-running": [fail("starting")],
                    "systemctl list-jobs": [ok("")],
                }
            )
        )

        with pytest.raises(ProvisioningError, match="system not ready"):
            await check_machine(machine)  # type: ignore[arg-type]

        assert machine.commands.count("systemctl is-system-running") == 3

    async def test_unreachable(self):
        class Unreachable(ScriptedMachine):
            async def ssh(self, command: str, *, check: bool = False) -> CommandResult:
                raise OSError("connection refused")

        with pytest.raises(ProvisioningError, match="ssh unreachable"):
            await check_machine(Unreachable({}))  # type: ignore[arg-type]

    async def test_os_release_matches(self):
        machine = ScriptedMachine(
            healthy(**{"grep ^ID= /etc/os-release": [ok("ID=flatcar")]}),
            replace(CONFIG, check_os_release="flatcar"),
        )

        await check_machine(machine)  # type: ignore[arg-type]

    async def test_os_release_mismatch(self):
        machine = ScriptedMachine(
            healthy(**{"grep ^ID= /etc/os-release": [ok("ID=ubuntu")]}),
            replace(CONFIG, check_os_release="flatcar"),
        )

        with pytest.raises(ProvisioningError, match="not a flatcar instance"):
            await check_machine(machine)  # type: ignore[arg-type]
