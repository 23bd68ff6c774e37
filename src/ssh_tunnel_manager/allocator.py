"""Random local port allocation with a bounded number of probes."""

import random
import socket
from collections.abc import Callable, Collection

from .common.exceptions import PortExhausted
from .common.logging import get_logger
from .common.utils import validate_port

logger = get_logger(__name__)

LOOPBACK_HOST = "127.0.0.1"


def is_port_available(port: int, host: str = LOOPBACK_HOST) -> bool:
    """Check whether nothing is currently bound to ``host:port``."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        sock.bind((host, port))
        return True
    except OSError:
        return False
    finally:
        sock.close()


class PortAllocator:
    """Picks free local ports uniformly at random from a range.

    Probing is inherently racy: another process may bind the port between
    the probe and the forwarding process's own bind. Callers treat the
    spawn-time bind as authoritative and ask for a fresh port on failure.
    """

    def __init__(
        self,
        min_port: int,
        max_port: int,
        max_attempts: int = 100,
        host: str = LOOPBACK_HOST,
        probe: Callable[[int, str], bool] = is_port_available,
        rng: random.Random | None = None,
    ):
        validate_port(min_port, "Minimum port")
        validate_port(max_port, "Maximum port")
        if min_port > max_port:
            raise ValueError(f"Empty port range {min_port}-{max_port}")
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        self.min_port = min_port
        self.max_port = max_port
        self.max_attempts = max_attempts
        self.host = host
        self._probe = probe
        self._rng = rng or random.SystemRandom()

    def allocate(self, exclude: Collection[int] = ()) -> int:
        """Return a port in ``[min_port, max_port]`` that is currently free.

        Args:
            exclude: Ports to treat as taken without probing

        Returns:
            Free local port

        Raises:
            PortExhausted: If no free port was found within ``max_attempts``
        """
        for attempt in range(1, self.max_attempts + 1):
            port = self._rng.randint(self.min_port, self.max_port)
            if port in exclude:
                continue
            if self._probe(port, self.host):
                logger.debug("Allocated local port", port=port, attempt=attempt)
                return port

        logger.warning(
            "Port allocation exhausted",
            min_port=self.min_port,
            max_port=self.max_port,
            attempts=self.max_attempts,
        )
        raise PortExhausted(
            f"No free local port in {self.min_port}-{self.max_port} "
            f"after {self.max_attempts} attempts"
        )
