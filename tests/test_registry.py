"""Tests for the file-backed tunnel registry."""

import multiprocessing
import os
from datetime import datetime

import pytest

from ssh_tunnel_manager.common.exceptions import RegistryIOError
from ssh_tunnel_manager.models import Tunnel
from ssh_tunnel_manager.registry import TunnelRegistry


def make_tunnel(pid: int, app_name: str = "app1", local_port: int | None = None) -> Tunnel:
    return Tunnel(
        app_name=app_name,
        local_port=local_port or 50000 + pid % 1000,
        remote_host=f"{app_name}-host.example.com",
        remote_port=3000,
        pid=pid,
        created_at=datetime(2024, 5, 1, 12, 0, 0),
    )


def _append_many(tunnel_dir: str, start_pid: int, count: int) -> None:
    registry = TunnelRegistry(tunnel_dir)
    for pid in range(start_pid, start_pid + count):
        registry.append(make_tunnel(pid))


class TestTunnelRegistry:
    """Test append, enumerate and removal."""

    def test_empty_registry(self, registry):
        assert registry.list_tunnels() == []
        assert registry.get(1) is None

    def test_append_and_list_in_insertion_order(self, registry):
        for pid in (30, 10, 20):
            registry.append(make_tunnel(pid))

        assert [t.pid for t in registry.list_tunnels()] == [30, 10, 20]

    def test_append_writes_record_line_and_marker(self, registry):
        tunnel = make_tunnel(4242, local_port=50001)
        registry.append(tunnel)

        lines = registry.records_path.read_text().splitlines()
        assert lines == [tunnel.to_record()]
        marker = registry.tunnel_dir / "app1-50001-4242.pid"
        assert marker.read_text() == "4242\n"
        assert registry.owns(tunnel)

    def test_second_instance_sees_records(self, registry):
        """Records survive across manager invocations."""
        registry.append(make_tunnel(1))

        other = TunnelRegistry(registry.tunnel_dir)
        assert [t.pid for t in other.list_tunnels()] == [1]

    def test_remove_deletes_record_and_marker(self, registry):
        keep, drop = make_tunnel(1), make_tunnel(2)
        registry.append(keep)
        registry.append(drop)

        removed = registry.remove(2)

        assert removed == [drop]
        assert registry.list_tunnels() == [keep]
        assert not registry.owns(drop)
        assert registry.owns(keep)

    def test_remove_unknown_pid_is_noop(self, registry):
        registry.append(make_tunnel(1))
        before = registry.records_path.read_bytes()

        assert registry.remove(999) == []
        assert registry.remove(999) == []
        assert registry.records_path.read_bytes() == before

    def test_remove_on_missing_store_is_noop(self, registry):
        assert registry.remove(1) == []

    def test_remove_where(self, registry):
        registry.append(make_tunnel(1, "app1"))
        registry.append(make_tunnel(2, "app2"))
        registry.append(make_tunnel(3, "app1"))

        removed = registry.remove_where(lambda t: t.app_name == "app1")

        assert [t.pid for t in removed] == [1, 3]
        assert [t.pid for t in registry.list_tunnels()] == [2]

    def test_legacy_five_field_records(self, registry):
        registry.tunnel_dir.mkdir(parents=True)
        registry.records_path.write_text(
            "app1:50001:app1-host.example.com:3000:111\n"
            "app2:50002:app2-host.example.com:3001:222\n"
        )

        tunnels = registry.list_tunnels()

        assert [(t.app_name, t.local_port, t.pid) for t in tunnels] == [
            ("app1", 50001, 111),
            ("app2", 50002, 222),
        ]
        assert registry.remove(111)[0].pid == 111
        assert registry.records_path.read_text() == (
            "app2:50002:app2-host.example.com:3001:222\n"
        )

    def test_legacy_record_created_at_from_marker(self, registry):
        registry.tunnel_dir.mkdir(parents=True)
        marker = registry.tunnel_dir / "app1-50001-111.pid"
        marker.write_text("111\n")
        os.utime(marker, (1_600_000_000, 1_600_000_000))
        registry.records_path.write_text("app1:50001:host:3000:111\n")

        (tunnel,) = registry.list_tunnels()

        assert tunnel.created_at == datetime.fromtimestamp(1_600_000_000)

    def test_malformed_lines_skipped_but_preserved(self, registry):
        registry.tunnel_dir.mkdir(parents=True)
        registry.records_path.write_text("garbage\n")
        registry.append(make_tunnel(5))

        assert [t.pid for t in registry.list_tunnels()] == [5]

        registry.remove(5)
        assert registry.records_path.read_text() == "garbage\n"

    def test_out_of_range_timestamp_skipped_but_preserved(self, registry):
        registry.tunnel_dir.mkdir(parents=True)
        bad = "app1:50001:h:3000:111:99999999999999999999\n"
        registry.records_path.write_text(bad)
        registry.append(make_tunnel(5))

        assert [t.pid for t in registry.list_tunnels()] == [5]

        registry.remove(5)
        assert registry.records_path.read_text() == bad

    def test_undecodable_records_raise_registry_error(self, registry):
        registry.tunnel_dir.mkdir(parents=True)
        registry.records_path.write_bytes(b"app1:50001:h:3000:111\n\xff\xfe\n")

        with pytest.raises(RegistryIOError):
            registry.list_tunnels()
        with pytest.raises(RegistryIOError):
            registry.remove(111)

    def test_unwritable_store_raises_registry_error(self, tmp_path):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("")
        registry = TunnelRegistry(blocker / "tunnels")

        with pytest.raises(RegistryIOError):
            registry.append(make_tunnel(1))
        with pytest.raises(RegistryIOError):
            registry.list_tunnels()

    def test_unreadable_records_raise_registry_error(self, registry):
        registry.records_path.parent.mkdir(parents=True)
        registry.records_path.mkdir()

        with pytest.raises(RegistryIOError):
            registry.list_tunnels()


class TestRegistryConcurrency:
    """Concurrent invocations must not lose or corrupt records."""

    def test_concurrent_appends_from_processes(self, registry):
        ctx = multiprocessing.get_context("fork")
        workers = [
            ctx.Process(
                target=_append_many, args=(str(registry.tunnel_dir), 1000 * (i + 1), 25)
            )
            for i in range(4)
        ]
        for worker in workers:
            worker.start()
        for worker in workers:
            worker.join(timeout=30)
            assert worker.exitcode == 0

        pids = [t.pid for t in registry.list_tunnels()]
        assert len(pids) == 100
        assert sorted(pids) == sorted(
            pid for i in range(4) for pid in range(1000 * (i + 1), 1000 * (i + 1) + 25)
        )

    def test_concurrent_append_and_remove(self, registry):
        for pid in range(1, 51):
            registry.append(make_tunnel(pid))

        ctx = multiprocessing.get_context("fork")
        writer = ctx.Process(target=_append_many, args=(str(registry.tunnel_dir), 5000, 50))
        writer.start()
        for pid in range(1, 51):
            registry.remove(pid)
        writer.join(timeout=30)
        assert writer.exitcode == 0

        assert sorted(t.pid for t in registry.list_tunnels()) == list(range(5000, 5050))
