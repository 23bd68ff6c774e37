"""Reconciliation of registry records against live process state."""

from .common.logging import get_logger
from .interfaces import ProcessProbe
from .models import Tunnel, TunnelState, TunnelStatus
from .registry import TunnelRegistry

logger = get_logger(__name__)

# Records store whole seconds; a process started later than this after its
# record was written is a different process that reused the PID.
START_TIME_TOLERANCE = 2.0


class Reconciler:
    """Classifies registry records as RUNNING or DEAD and prunes the dead."""

    def __init__(self, registry: TunnelRegistry, probe: ProcessProbe):
        self.registry = registry
        self.probe = probe

    def is_tunnel_process(self, tunnel: Tunnel) -> bool:
        """Whether ``tunnel.pid`` is alive and is still the process recorded.

        A live PID whose process started after the record was created has
        been reused by an unrelated process.
        """
        if not self.probe.is_alive(tunnel.pid):
            return False
        started = self.probe.create_time(tunnel.pid)
        if started is None:
            return False
        return started <= tunnel.created_at.timestamp() + START_TIME_TOLERANCE

    def classify(self, tunnel: Tunnel) -> TunnelStatus:
        if self.is_tunnel_process(tunnel):
            return TunnelStatus.RUNNING
        return TunnelStatus.DEAD

    def states(self) -> list[TunnelState]:
        """Every record with its status as observed now."""
        return [
            TunnelState(tunnel=tunnel, status=self.classify(tunnel))
            for tunnel in self.registry.list_tunnels()
        ]

    def cleanup(self) -> list[Tunnel]:
        """Remove every DEAD record.

        Liveness is re-checked under the registry lock, so a record is only
        removed if its process is dead at removal time.

        Returns:
            Removed records
        """
        removed = self.registry.remove_where(
            lambda tunnel: self.classify(tunnel) == TunnelStatus.DEAD
        )
        for tunnel in removed:
            logger.info(
                "Cleaned up dead tunnel",
                app=tunnel.app_name,
                pid=tunnel.pid,
                local_port=tunnel.local_port,
            )
        return removed
