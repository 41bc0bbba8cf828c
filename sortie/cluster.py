"""Groups of machines provisioned together, with rollback on failure."""

from __future__ import annotations

import asyncio
import contextlib
import secrets
import shutil
import uuid
from pathlib import Path
from typing import TYPE_CHECKING

from loguru import logger

from sortie.checks import start_machine
from sortie.core.exceptions import ProvisioningError
from sortie.machine import Machine
from sortie.userdata import write_user_data

if TYPE_CHECKING:
    from sortie.flight import Flight
    from sortie.journal import Journal


class Cluster:
    """A set of live Machines created through one Flight.

    Machines appear in ``machines()`` only after they were fully provisioned
    and passed the startup check. ``destroy()`` tears all of them down
    concurrently and deregisters the cluster from its Flight.
    """

    def __init__(self, flight: Flight, *, output_dir: Path | None = None, log=None) -> None:
        self.flight = flight
        self.name = f"{flight.name}-{uuid.uuid4().hex}"
        self.output_dir = output_dir if output_dir is not None else flight.output_dir
        self._machines: dict[str, Machine] = {}
        self._consoles: dict[str, str] = {}
        self._destroyed = False
        self._log = (log or logger).bind(component="cluster", cluster=self.name)

    def vmname(self) -> str:
        """Unique server name derived from the cluster name."""
        return f"{self.name[:13]}-{secrets.token_hex(5)}"

    def machines(self) -> list[Machine]:
        return list(self._machines.values())

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    # =========================================================================
    # Provisioning
    # =========================================================================

    async def new_machine(self, user_data: str | None = None) -> Machine:
        """Create one server and wait until it passes the startup check.

        Every resource acquired along the way goes onto a rollback stack. If
        any step fails, or the task is cancelled, the stack unwinds in reverse
        order (journal, working directory, server, pooled floating IP) and
        the Machine is never registered.

        Raises:
            ProvisioningError: Naming the server (or server name) that failed.
        """
        if self._destroyed:
            raise ProvisioningError(f"cluster {self.name} is destroyed")
        flight = self.flight
        provider = flight.provider

        try:
            rendered = flight.renderer.render(user_data, provider.metadata_placeholders)
        except Exception as e:
            raise ProvisioningError(f"rendering user data: {e}") from e

        name = self.vmname()
        async with contextlib.AsyncExitStack() as rollback:
            reserved = flight.pool.try_acquire()
            if reserved is not None:
                rollback.push_async_callback(flight.return_floating_ip, reserved)

            try:
                server = await provider.create_server(
                    name, rendered, floating_ip=reserved, ssh_key_id=flight.ssh_key_id
                )
            except Exception as e:
                raise ProvisioningError(f"creating server {name}: {e}", name) from e
            rollback.push_async_callback(self._rollback_server, server.id, reserved is None)

            try:
                directory = self.output_dir / server.id
                directory.mkdir(parents=True, exist_ok=True)
                rollback.callback(shutil.rmtree, directory, ignore_errors=True)
                write_user_data(directory, rendered)

                journal = flight.journal_factory(directory)
                rollback.push_async_callback(self._rollback_journal, journal, server.id)

                machine = Machine(
                    self,
                    server,
                    directory=directory,
                    journal=journal,
                    pooled=reserved is not None,
                    log=self._log,
                )
                await start_machine(machine)
                if self._destroyed:
                    raise ProvisioningError(
                        f"cluster {self.name} was destroyed while {server.id} was starting", server.id
                    )
            except ProvisioningError as e:
                if e.resource_id == server.id:
                    raise
                raise ProvisioningError(f"machine {server.id}: {e}", server.id) from e
            except Exception as e:
                raise ProvisioningError(f"machine {server.id}: {e}", server.id) from e

            rollback.pop_all()

        self._machines[machine.id] = machine
        self._log.info("Machine {id} ({name}) is ready at {ip}", id=machine.id, name=name, ip=machine.ip)
        return machine

    async def new_machines(self, count: int, user_data: str | None = None) -> list[Machine]:
        """Create ``count`` machines concurrently; all of them or none.

        If any creation fails, the machines that did come up are destroyed
        and the first error is raised.
        """
        results = await asyncio.gather(
            *(self.new_machine(user_data) for _ in range(count)),
            return_exceptions=True,
        )
        machines = [r for r in results if isinstance(r, Machine)]
        errors = [r for r in results if isinstance(r, BaseException)]
        if errors:
            self._log.warning(
                "{failed}/{count} machines failed, destroying the rest",
                failed=len(errors), count=count,
            )
            await asyncio.gather(*(m.destroy() for m in machines))
            raise errors[0]
        return machines

    async def _rollback_server(self, server_id: str, release_floating_ip: bool) -> None:
        try:
            await asyncio.shield(
                self.flight.provider.delete_server(server_id, release_floating_ip=release_floating_ip)
            )
            self._log.info("Rolled back server {id}", id=server_id)
        except Exception as e:
            self._log.error("Rolling back server {id}: {error}", id=server_id, error=e)

    async def _rollback_journal(self, journal: Journal, server_id: str) -> None:
        try:
            await journal.destroy()
        except Exception as e:
            self._log.error("Destroying journal for {id}: {error}", id=server_id, error=e)

    # =========================================================================
    # Diagnostics
    # =========================================================================

    def console_output(self) -> dict[str, str]:
        """Console text captured from machines destroyed so far, by server id."""
        return dict(self._consoles)

    def journal_output(self) -> dict[str, str]:
        """Journal text of the live machines, by server id."""
        return {m.id: m.journal_output() for m in self.machines()}

    # =========================================================================
    # Teardown
    # =========================================================================

    def _deregister(self, machine: Machine) -> None:
        self._machines.pop(machine.id, None)
        self._consoles[machine.id] = machine.console

    async def destroy(self) -> None:
        """Destroy every machine concurrently, then leave the Flight. Never raises."""
        if self._destroyed:
            return
        self._destroyed = True
        machines = self.machines()
        self._log.info("Destroying cluster {name} ({n} machines)", name=self.name, n=len(machines))
        await asyncio.gather(*(m.destroy() for m in machines))
        self.flight._deregister(self)

    def __repr__(self) -> str:
        return f"Cluster(name={self.name!r}, machines={len(self._machines)})"


__all__ = ["Cluster"]
