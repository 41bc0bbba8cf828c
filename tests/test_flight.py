from __future__ import annotations

from dataclasses import replace

import asyncssh
import pytest

from sortie.core.exceptions import SortieError
from sortie.flight import SSH_KEY_FILE, Flight, FlightConfig

pytestmark = [pytest.mark.unit]


class TestFlightConfig:
    def test_defaults(self):
        config = FlightConfig()
        assert config.base_name == "sortie"
        assert config.ssh_user == "core"
        assert config.pool_capacity is None
        assert not config.allow_failed_units

    def test_frozen(self):
        with pytest.raises(AttributeError):
            FlightConfig().base_name = "other"  # type: ignore[misc]


class TestFlight:
    def test_name_uses_base_name(self, flight):
        assert flight.name.startswith("test-")

    def test_pool_sized_from_provider_quota(self, flight, provider):
        assert flight.pool.capacity == provider.floating_ip_quota

    def test_pool_capacity_override(self, make_flight, flight_config):
        flight = make_flight(config=replace(flight_config, pool_capacity=7))
        assert flight.pool.capacity == 7

    def test_zero_quota_still_builds_pool(self, provider, flight_config):
        provider.quota = 0
        flight = Flight(provider, flight_config)
        assert flight.pool.capacity == 1
        assert flight.pool.available == 0

    async def test_open_generates_and_registers_key(self, provider, flight_config):
        flight = await Flight.create(provider, replace(flight_config, ssh_key_path=None))

        assert flight.ssh_key_path == flight.output_dir / flight.name / SSH_KEY_FILE
        assert flight.ssh_key_path.stat().st_mode & 0o777 == 0o600
        key = asyncssh.read_private_key(str(flight.ssh_key_path))
        public = key.export_public_key().decode().strip()
        assert provider.ssh_keys[flight.ssh_key_id] == public

        await flight.destroy()

        assert provider.ssh_keys == {}

    async def test_open_reads_existing_key(self, provider, flight_config, tmp_path):
        path = tmp_path / "existing"
        asyncssh.generate_private_key("ssh-ed25519").write_private_key(str(path))

        async with Flight(provider, replace(flight_config, ssh_key_path=path)) as flight:
            assert flight.ssh_key_path == path
            assert len(provider.ssh_keys) == 1

        assert provider.ssh_keys == {}
        assert provider.closed

    async def test_destroy_tears_down_leftover_clusters(self, flight, provider):
        cluster = flight.new_cluster()
        await cluster.new_machine()

        await flight.destroy()

        assert cluster.destroyed
        assert flight.clusters() == []
        assert provider.servers == {}
        assert provider.floating_ips == {}

    async def test_destroy_drains_pool(self, make_flight, provider):
        ips = (await provider.create_floating_ip(), await provider.create_floating_ip())
        flight = make_flight(seed=ips)

        await flight.destroy()
        await flight.destroy()

        assert sorted(provider.deleted_ips) == sorted(ips)
        assert flight.pool.closed
        assert flight.destroyed

    async def test_new_cluster_after_destroy(self, flight):
        await flight.destroy()
        with pytest.raises(SortieError):
            flight.new_cluster()


class TestReturnFloatingIP:
    async def test_returns_to_pool(self, flight, provider):
        ip = await provider.create_floating_ip()

        await flight.return_floating_ip(ip)

        assert flight.pool.snapshot() == [ip]
        assert ip in provider.floating_ips

    async def test_deletes_when_pool_closed(self, flight, provider):
        ip = await provider.create_floating_ip()
        await flight.pool.drain_and_destroy(provider.delete_floating_ip)

        await flight.return_floating_ip(ip)

        assert provider.deleted_ips == [ip]

    async def test_deletes_when_pool_full(self, make_flight, provider, flight_config):
        seed = await provider.create_floating_ip()
        extra = await provider.create_floating_ip()
        flight = make_flight(seed=(seed,), config=replace(flight_config, pool_capacity=1))

        await flight.return_floating_ip(extra)

        assert flight.pool.snapshot() == [seed]
        assert provider.deleted_ips == [extra]

    async def test_never_raises(self, flight, provider):
        await flight.pool.drain_and_destroy(provider.delete_floating_ip)

        await flight.return_floating_ip("fip-unknown")

        assert provider.deleted_ips == []
