"""Tunnel manager: the commands run against catalog, registry and processes."""

from .allocator import PortAllocator
from .catalog import Catalog
from .common.exceptions import NotFound, PortExhausted, PortInUseError
from .common.logging import get_logger
from .config import ManagerConfig
from .interfaces import ProcessProbe
from .models import CatalogEntry, SSHCredentials, Tunnel, TunnelState
from .process import PsutilProcessProbe, SSHTunnelSupervisor
from .reconciler import Reconciler
from .registry import TunnelRegistry

logger = get_logger(__name__)


class TunnelManager:
    """Creates, lists and removes tunnels.

    Every call is a self-contained transaction; the only state carried
    between invocations is what the registry persists.
    """

    def __init__(
        self,
        catalog: Catalog,
        registry: TunnelRegistry,
        allocator: PortAllocator,
        supervisor: SSHTunnelSupervisor,
        probe: ProcessProbe,
        credentials: SSHCredentials,
        max_spawn_attempts: int = 3,
        stop_timeout: float = 5.0,
        prune_before_create: bool = True,
    ):
        self.catalog = catalog
        self.registry = registry
        self.allocator = allocator
        self.supervisor = supervisor
        self.probe = probe
        self.credentials = credentials
        self.max_spawn_attempts = max_spawn_attempts
        self.stop_timeout = stop_timeout
        self.prune_before_create = prune_before_create
        self.reconciler = Reconciler(registry, probe)

    @classmethod
    def from_config(
        cls, config: ManagerConfig, probe: ProcessProbe | None = None
    ) -> "TunnelManager":
        """Wire up a manager from configuration."""
        probe = probe or PsutilProcessProbe()
        return cls(
            catalog=Catalog.default(config.apps),
            registry=TunnelRegistry(config.tunnel_dir),
            allocator=PortAllocator(
                config.min_port, config.max_port, max_attempts=config.max_port_probes
            ),
            supervisor=SSHTunnelSupervisor(
                probe,
                ssh_binary=config.ssh_binary,
                startup_timeout=config.startup_timeout,
                stop_timeout=config.stop_timeout,
            ),
            probe=probe,
            credentials=config.credentials,
            max_spawn_attempts=config.max_spawn_attempts,
            stop_timeout=config.stop_timeout,
            prune_before_create=config.prune_before_create,
        )

    def create_tunnel(self, app_name: str) -> Tunnel:
        """Open a tunnel to a catalog application on a fresh local port.

        Args:
            app_name: Catalog application name

        Returns:
            The recorded tunnel

        Raises:
            UnknownApplication: If the app is not in the catalog
            PortExhausted: If no port could be bound within the retry bounds
            ConnectionError: If the remote is unreachable or auth fails
        """
        entry = self.catalog.get(app_name)

        if self.prune_before_create:
            self.reconciler.cleanup()

        taken = {tunnel.local_port for tunnel in self.registry.list_tunnels()}

        for attempt in range(1, self.max_spawn_attempts + 1):
            local_port = self.allocator.allocate(exclude=taken)
            try:
                handle = self.supervisor.start(
                    local_port, entry.remote_host, entry.remote_port, self.credentials
                )
            except PortInUseError:
                logger.warning(
                    "Local port taken at bind time, retrying",
                    app=app_name,
                    port=local_port,
                    attempt=attempt,
                )
                taken.add(local_port)
                continue

            tunnel = Tunnel(
                app_name=entry.name,
                local_port=local_port,
                remote_host=entry.remote_host,
                remote_port=entry.remote_port,
                pid=handle.pid,
            )
            try:
                self.registry.append(tunnel)
            except Exception:
                logger.error("Could not record tunnel, stopping it", pid=tunnel.pid)
                self.probe.terminate(tunnel.pid, self.stop_timeout)
                raise

            logger.info(
                "Created tunnel",
                app=app_name,
                local_port=local_port,
                remote=entry.endpoint,
                pid=tunnel.pid,
            )
            return tunnel

        logger.error("Failed to create tunnel", app=app_name, attempts=attempt)
        raise PortExhausted(
            f"Could not bind a local port for '{app_name}' "
            f"after {self.max_spawn_attempts} attempts"
        )

    def list_tunnels(self) -> list[TunnelState]:
        """All recorded tunnels with their current status."""
        return self.reconciler.states()

    def delete_tunnel(self, pid: int) -> Tunnel:
        """Terminate a tracked tunnel and remove its record.

        A tracked but dead tunnel has its stale record removed before
        NotFound is raised. An untracked PID is never signalled.

        Raises:
            NotFound: If ``pid`` is not a tracked, live tunnel
        """
        tunnel = self.registry.get(pid)
        if tunnel is None:
            logger.warning("No tracked tunnel with PID", pid=pid)
            raise NotFound(pid)

        if not self.reconciler.is_tunnel_process(tunnel):
            self.registry.remove(pid)
            logger.warning("Removed stale record for dead tunnel", pid=pid)
            raise NotFound(pid, stale_removed=True)

        self.probe.terminate(pid, self.stop_timeout)
        self.registry.remove(pid)
        logger.info(
            "Terminated tunnel",
            app=tunnel.app_name,
            pid=pid,
            local_port=tunnel.local_port,
        )
        return tunnel

    def delete_app_tunnels(self, app_name: str) -> list[Tunnel]:
        """Terminate and remove every tunnel recorded for ``app_name``.

        Only processes carrying this tool's ownership marker are signalled;
        records of other live processes are removed with a warning.

        Returns:
            Removed records
        """
        handled: set[int] = set()
        for tunnel in self.registry.list_tunnels():
            if tunnel.app_name != app_name:
                continue
            if self.reconciler.is_tunnel_process(tunnel):
                if self.registry.owns(tunnel):
                    self.probe.terminate(tunnel.pid, self.stop_timeout)
                    logger.info("Terminated tunnel", app=app_name, pid=tunnel.pid)
                else:
                    logger.warning(
                        "Tunnel process has no ownership marker, not signalling it",
                        app=app_name,
                        pid=tunnel.pid,
                    )
            handled.add(tunnel.pid)

        removed = self.registry.remove_where(
            lambda t: t.app_name == app_name and t.pid in handled
        )
        logger.info("Deleted application tunnels", app=app_name, count=len(removed))
        return removed

    def cleanup(self) -> list[Tunnel]:
        """Remove every record whose process is gone."""
        removed = self.reconciler.cleanup()
        logger.debug("Cleanup finished", removed=len(removed))
        return removed

    def list_apps(self) -> list[CatalogEntry]:
        return self.catalog.entries()
