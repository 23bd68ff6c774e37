"""Shared pytest fixtures for tunnel manager tests."""

import itertools

import pytest

from ssh_tunnel_manager.allocator import PortAllocator
from ssh_tunnel_manager.catalog import Catalog
from ssh_tunnel_manager.common.exceptions import PortInUseError
from ssh_tunnel_manager.manager import TunnelManager
from ssh_tunnel_manager.models import CatalogEntry, SSHCredentials
from ssh_tunnel_manager.process import TunnelProcess
from ssh_tunnel_manager.registry import TunnelRegistry


class FakeProbe:
    """In-memory ProcessProbe: a PID is alive while it is in ``alive``."""

    def __init__(self):
        self.alive: set[int] = set()
        self.listening: dict[int, int] = {}
        self.terminated: list[int] = []
        self.started_at: dict[int, float] = {}

    def is_alive(self, pid: int) -> bool:
        return pid in self.alive

    def listens_on(self, pid: int, port: int) -> bool:
        return self.listening.get(pid) == port

    def create_time(self, pid: int) -> float | None:
        if pid not in self.alive:
            return None
        return self.started_at.get(pid, 0.0)

    def terminate(self, pid: int, timeout: float = 5.0) -> bool:
        if pid not in self.alive:
            return False
        self.alive.discard(pid)
        self.listening.pop(pid, None)
        self.terminated.append(pid)
        return True

    def kill_out_of_band(self, pid: int) -> None:
        self.alive.discard(pid)
        self.listening.pop(pid, None)

    def reuse_pid(self, pid: int, started_at: float) -> None:
        """An unrelated process now runs under ``pid``."""
        self.alive.add(pid)
        self.listening.pop(pid, None)
        self.started_at[pid] = started_at


class FakeSupervisor:
    """Supervisor stand-in that "binds" ports and hands out increasing PIDs.

    A port already held by a live fake process fails with PortInUseError,
    like ``ssh -o ExitOnForwardFailure=yes`` would. Queued exceptions in
    ``failures`` are raised by the next calls to ``start``.
    """

    def __init__(self, probe: FakeProbe, first_pid: int = 1000):
        self.probe = probe
        self._pids = itertools.count(first_pid)
        self.failures: list[Exception] = []
        self.started: list[tuple[int, str, int, SSHCredentials]] = []

    def start(self, local_port, remote_host, remote_port, credentials):
        self.started.append((local_port, remote_host, remote_port, credentials))
        if self.failures:
            raise self.failures.pop(0)
        if local_port in self.probe.listening.values():
            raise PortInUseError(local_port, "Address already in use")

        pid = next(self._pids)
        self.probe.alive.add(pid)
        self.probe.listening[pid] = local_port
        return TunnelProcess(
            pid=pid,
            local_port=local_port,
            remote_host=remote_host,
            remote_port=remote_port,
            command=["ssh"],
        )


class SequenceRandom:
    """Minimal ``random.Random`` stand-in returning scripted ``randint`` values."""

    def __init__(self, values):
        self._values = iter(values)

    def randint(self, a, b):
        return next(self._values)


@pytest.fixture
def probe():
    return FakeProbe()


@pytest.fixture
def supervisor(probe):
    return FakeSupervisor(probe)


@pytest.fixture
def registry(tmp_path):
    return TunnelRegistry(tmp_path / "tunnels")


@pytest.fixture
def catalog():
    return Catalog(
        [
            CatalogEntry(name="app1", remote_host="host1", remote_port=3000),
            CatalogEntry(name="app2", remote_host="host2", remote_port=3001),
        ]
    )


@pytest.fixture
def credentials():
    return SSHCredentials(user="tester")


@pytest.fixture
def manager(catalog, registry, supervisor, probe, credentials):
    """TunnelManager over a temporary registry with fake processes."""
    allocator = PortAllocator(
        50000, 50100, max_attempts=50, probe=lambda port, host: True
    )
    return TunnelManager(
        catalog=catalog,
        registry=registry,
        allocator=allocator,
        supervisor=supervisor,
        probe=probe,
        credentials=credentials,
    )


@pytest.fixture
def scripted_rng():
    """Factory for SequenceRandom instances."""
    return SequenceRandom
