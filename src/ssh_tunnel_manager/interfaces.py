"""Protocol interfaces for process inspection and control."""

from typing import Protocol


class ProcessProbe(Protocol):
    """Capability for observing and stopping forwarding processes by PID."""

    def is_alive(self, pid: int) -> bool:
        """Whether the process currently exists and belongs to this user."""
        ...

    def listens_on(self, pid: int, port: int) -> bool:
        """Whether the process holds a listening socket on ``port``."""
        ...

    def create_time(self, pid: int) -> float | None:
        """Process start time as a Unix timestamp, or None if it is gone."""
        ...

    def terminate(self, pid: int, timeout: float) -> bool:
        """Stop the process; return False if it was already gone."""
        ...
