from __future__ import annotations

import asyncio
import json

import pytest

from sortie.core.exceptions import ProvisioningError
from sortie.machine import CONSOLE_FILE
from sortie.model import CommandResult
from sortie.userdata import USER_DATA_FILE

pytestmark = [pytest.mark.unit]


async def seeded(provider, n: int) -> tuple[str, ...]:
    return tuple([await provider.create_floating_ip() for _ in range(n)])


class TestNewMachine:
    async def test_registers_checked_machine(self, flight, provider, journals, checker):
        cluster = flight.new_cluster()

        machine = await cluster.new_machine('{"ip": "$public_ipv4"}')

        assert cluster.machines() == [machine]
        assert checker.checked == [machine.id]
        assert journals.journals[0].started == 1
        assert machine.ip == provider.floating_ips[machine.floating_ip].address
        assert not machine.pooled

    async def test_user_data_is_rendered_and_saved(self, flight):
        cluster = flight.new_cluster()

        machine = await cluster.new_machine('{"ip": "$public_ipv4"}')

        saved = (machine.directory / USER_DATA_FILE).read_text()
        assert saved == '{"ip": "${FAKE_PUBLIC_IPV4}"}'

    async def test_missing_user_data_becomes_empty_ignition(self, flight):
        cluster = flight.new_cluster()

        machine = await cluster.new_machine()

        saved = json.loads((machine.directory / USER_DATA_FILE).read_text())
        assert saved == {"ignition": {"version": flight.config.ignition_version}}

    async def test_server_names_derive_from_cluster_name(self, flight, provider):
        cluster = flight.new_cluster()

        await cluster.new_machines(2)

        names = [name for name, _ in provider.created]
        assert len(set(names)) == 2
        for name in names:
            prefix, suffix = name.rsplit("-", 1)
            assert prefix == cluster.name[:13]
            assert len(suffix) == 10

    async def test_uses_pooled_floating_ip(self, make_flight, provider):
        (ip,) = await seeded(provider, 1)
        flight = make_flight(seed=(ip,))
        cluster = flight.new_cluster()

        machine = await cluster.new_machine()

        assert machine.pooled
        assert machine.floating_ip == ip
        assert flight.pool.available == 0
        assert provider.created[0][1] == ip

    async def test_destroyed_cluster_refuses_machines(self, flight):
        cluster = flight.new_cluster()
        await cluster.destroy()

        with pytest.raises(ProvisioningError):
            await cluster.new_machine()


class TestRollback:
    async def test_failed_check_deletes_server_and_fresh_ip(self, flight, provider, journals, checker):
        cluster = flight.new_cluster()
        checker.failing.add("srv-1")

        with pytest.raises(ProvisioningError) as exc_info:
            await cluster.new_machine()

        assert exc_info.value.resource_id == "srv-1"
        assert provider.deleted == [("srv-1", True)]
        assert provider.servers == {}
        assert provider.floating_ips == {}
        assert journals.journals[0].destroyed
        assert not (flight.output_dir / "srv-1").exists()
        assert cluster.machines() == []

    async def test_failed_check_returns_pooled_ip(self, make_flight, provider, checker):
        (ip,) = await seeded(provider, 1)
        flight = make_flight(seed=(ip,))
        cluster = flight.new_cluster()
        checker.failing.add("srv-2")

        with pytest.raises(ProvisioningError):
            await cluster.new_machine()

        assert provider.deleted == [("srv-2", False)]
        assert ip in provider.floating_ips
        assert flight.pool.snapshot() == [ip]

    async def test_create_failure_names_the_server(self, make_flight, provider):
        (ip,) = await seeded(provider, 1)
        flight = make_flight(seed=(ip,))
        cluster = flight.new_cluster()
        provider.fail_create.add(1)

        with pytest.raises(ProvisioningError) as exc_info:
            await cluster.new_machine()

        assert exc_info.value.resource_id == provider.created[0][0]
        assert provider.deleted == []
        assert flight.pool.snapshot() == [ip]

    async def test_journal_failure_rolls_back(self, flight, provider, journals):
        cluster = flight.new_cluster()
        journals.fail_start = True

        with pytest.raises(ProvisioningError, match="failed to start") as exc_info:
            await cluster.new_machine()

        assert exc_info.value.resource_id == "srv-1"
        assert provider.servers == {}
        assert cluster.machines() == []

    async def test_cancellation_rolls_back(self, flight, provider, checker):
        cluster = flight.new_cluster()
        entered = asyncio.Event()

        async def hang(machine) -> None:
            entered.set()
            await asyncio.Event().wait()

        flight.checker = hang
        task = asyncio.create_task(cluster.new_machine())
        await entered.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert provider.servers == {}
        assert provider.floating_ips == {}
        assert cluster.machines() == []

    async def test_destroy_during_startup_rolls_back(self, make_flight, provider):
        (ip,) = await seeded(provider, 1)
        flight = make_flight(seed=(ip,))
        cluster = flight.new_cluster()
        entered = asyncio.Event()
        release = asyncio.Event()

        async def slow(machine) -> None:
            entered.set()
            await release.wait()

        flight.checker = slow
        task = asyncio.create_task(cluster.new_machine())
        await entered.wait()
        await cluster.destroy()
        release.set()

        with pytest.raises(ProvisioningError, match="destroyed") as exc_info:
            await task

        assert exc_info.value.resource_id == "srv-2"
        assert cluster.machines() == []
        assert provider.servers == {}
        assert flight.pool.snapshot() == [ip]

    async def test_new_machines_is_all_or_nothing(self, flight, provider):
        cluster = flight.new_cluster()
        provider.fail_create.add(2)

        with pytest.raises(ProvisioningError):
            await cluster.new_machines(3)

        assert provider.servers == {}
        assert provider.floating_ips == {}
        assert cluster.machines() == []


class TestDestroy:
    async def test_pooled_ips_survive_and_fresh_ones_do_not(self, make_flight, provider):
        ips = await seeded(provider, 2)
        flight = make_flight(seed=ips)
        cluster = flight.new_cluster()

        machines = await cluster.new_machines(3)

        assert sorted(m.pooled for m in machines) == [False, True, True]
        assert flight.pool.available == 0
        assert {m.floating_ip for m in machines if m.pooled} == set(ips)

        await cluster.destroy()

        assert provider.servers == {}
        assert set(provider.floating_ips) == set(ips)
        assert sorted(flight.pool.snapshot()) == sorted(ips)
        assert cluster not in flight.clusters()

        await flight.destroy()

        assert provider.floating_ips == {}
        assert flight.pool.available == 0
        assert provider.closed

    async def test_console_is_saved(self, flight):
        cluster = flight.new_cluster()
        machine = await cluster.new_machine()

        await cluster.destroy()

        assert (machine.directory / CONSOLE_FILE).read_text() == f"console of {machine.id}"
        assert cluster.console_output() == {machine.id: f"console of {machine.id}"}
        assert await machine.console_output() == f"console of {machine.id}"

    async def test_machine_destroy_never_raises(self, flight, provider, journals):
        cluster = flight.new_cluster()
        machine = await cluster.new_machine()
        provider.fail_delete.add(machine.id)

        await machine.destroy()

        assert machine.destroyed
        assert journals.journals[0].destroyed
        assert cluster.machines() == []

    async def test_destroy_is_idempotent(self, flight, provider):
        cluster = flight.new_cluster()
        machine = await cluster.new_machine()

        await cluster.destroy()
        await cluster.destroy()
        await machine.destroy()

        assert provider.deleted == [(machine.id, True)]
        assert cluster.destroyed

    async def test_journal_output_by_machine(self, flight):
        cluster = flight.new_cluster()
        machine = await cluster.new_machine()

        output = cluster.journal_output()

        assert output == {machine.id: f"-- boot 1 of {machine.id} --\n"}


class TestReboot:
    async def test_reboot_reruns_startup(self, flight, journals, checker, monkeypatch):
        cluster = flight.new_cluster()
        machine = await cluster.new_machine()
        commands: list[str] = []

        async def ssh(command: str, *, check: bool = False) -> CommandResult:
            commands.append(command)
            return CommandResult(exit_status=-1, stdout="", stderr="")

        monkeypatch.setattr(machine, "ssh", ssh)

        await machine.reboot()

        assert commands == ["sudo systemctl stop sshd.socket && sudo reboot"]
        assert journals.journals[0].started == 2
        assert checker.checked == [machine.id, machine.id]

    async def test_reboot_refused(self, flight, monkeypatch):
        cluster = flight.new_cluster()
        machine = await cluster.new_machine()

        async def ssh(command: str, *, check: bool = False) -> CommandResult:
            return CommandResult(exit_status=1, stdout="", stderr="permission denied")

        monkeypatch.setattr(machine, "ssh", ssh)

        with pytest.raises(ProvisioningError, match="failed to begin rebooting"):
            await machine.reboot()
