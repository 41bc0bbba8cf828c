"""Startup checks: wait until a machine answers over SSH and booted cleanly."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

import asyncssh
from loguru import logger

from sortie.core.exceptions import ProvisioningError, SortieError
from sortie.retry import retry

if TYPE_CHECKING:
    from sortie.machine import Machine

type MachineChecker = Callable[[Machine], Awaitable[None]]

# States from which `systemctl is-system-running` can still reach "running".
# Empty output means systemd did not answer yet.
_SETTLING_STATES = ("", "initializing", "starting", "running", "stopping")

REBOOT_COMMAND = "sudo systemctl stop sshd.socket && sudo reboot"

log = logger.bind(component="checks")


class MachineNotReadyError(SortieError):
    """The machine is reachable but not (yet) in a usable state."""


async def _wait_system_running(machine: Machine) -> None:
    result = await machine.ssh("systemctl is-system-running")
    # Anything else (e.g. "degraded") will not settle; the failed-unit check reports it.
    if result.stdout not in _SETTLING_STATES:
        return
    if result.ok:
        return

    jobs = ""
    if result.stdout == "starting":
        pending = await machine.ssh("systemctl list-jobs")
        jobs = f", systemctl list-jobs returned: {pending.stdout!r}"
    raise MachineNotReadyError(
        f"systemctl is-system-running returned {result.stdout!r} "
        f"(exit {result.exit_status}): {result.stderr!r}{jobs}"
    )


async def check_machine(machine: Machine) -> None:
    """Verify that ``machine`` is reachable and booted without failed units.

    Raises:
        ProvisioningError: SSH never answered, the OS is not the expected one,
            or systemd units failed during boot.
    """
    config = machine.flight.config

    try:
        await retry(
            config.ssh_retries,
            config.ssh_retry_delay,
            lambda: _wait_system_running(machine),
        )
    except Exception as e:
        raise ProvisioningError(f"ssh unreachable or system not ready: {e}", machine.id) from e

    if config.check_os_release:
        result = await machine.ssh("grep ^ID= /etc/os-release")
        if not result.ok:
            raise ProvisioningError(f"no /etc/os-release file: {result.stderr}", machine.id)
        if result.stdout != f"ID={config.check_os_release}":
            raise ProvisioningError(
                f"not a {config.check_os_release} instance: {result.stdout!r}", machine.id
            )

    if not config.allow_failed_units:
        result = await machine.ssh("systemctl --no-legend --state failed list-units")
        if not result.ok:
            raise ProvisioningError(f"systemctl: {result.stdout}: {result.stderr}", machine.id)
        if result.stdout:
            units = result.stdout.split()
            info = ""
            if units:
                status = await machine.ssh(f"systemctl status {units[0]}")
                journal = await machine.ssh(f"journalctl -b -u {units[0]}")
                info = f"\nstatus: {status.stdout}\njournal:{journal.stdout}"
            raise ProvisioningError(f"some systemd units failed:\n{result.stdout}{info}", machine.id)


async def start_machine(machine: Machine) -> None:
    """Attach the journal and run the Flight's startup check."""
    try:
        await machine.journal.start(machine)
    except Exception as e:
        raise ProvisioningError(f"machine {machine.id} failed to start: {e}", machine.id) from e

    await machine.flight.checker(machine)
    log.debug("Machine {id} passed startup checks", id=machine.id)


async def start_reboot(machine: Machine) -> None:
    # The connection drops as the machine goes down; only a clean non-zero exit is an error.
    try:
        result = await machine.ssh(REBOOT_COMMAND)
    except (OSError, TimeoutError, asyncssh.Error) as e:
        log.debug("Connection to {id} closed while rebooting: {error}", id=machine.id, error=e)
        return
    if result.exit_status not in (0, -1):
        raise ProvisioningError(
            f"machine {machine.id} failed to begin rebooting: {result.stderr}", machine.id
        )


__all__ = [
    "MachineChecker",
    "MachineNotReadyError",
    "check_machine",
    "start_machine",
    "start_reboot",
]
