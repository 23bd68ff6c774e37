"""Custom exceptions for the SSH tunnel manager."""


class TunnelManagerError(Exception):
    """Base exception for all tunnel manager errors."""

    exit_code = 1


class UnknownApplication(TunnelManagerError):
    """Raised when an application name is not in the catalog."""

    exit_code = 3

    def __init__(self, app_name: str):
        self.app_name = app_name
        super().__init__(f"Application '{app_name}' not found")


class PortExhausted(TunnelManagerError):
    """Raised when no free local port could be found within the retry bound."""

    exit_code = 4


class PortInUseError(TunnelManagerError):
    """Raised when the forwarding process cannot bind its local port."""

    exit_code = 4

    def __init__(self, port: int, detail: str = ""):
        self.port = port
        message = f"Local port {port} is already in use"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class ConnectionError(TunnelManagerError):
    """Raised when the remote endpoint is unreachable or authentication fails."""

    exit_code = 5


class NotFound(TunnelManagerError):
    """Raised when a delete target is not a tracked, live tunnel."""

    exit_code = 6

    def __init__(self, pid: int, stale_removed: bool = False):
        self.pid = pid
        self.stale_removed = stale_removed
        message = f"No active tunnel found with PID: {pid}"
        if stale_removed:
            message = f"{message} (stale record removed)"
        super().__init__(message)


class RegistryIOError(TunnelManagerError):
    """Raised when the registry backing store cannot be read or written."""

    exit_code = 7


class ConfigurationError(TunnelManagerError):
    """Raised when configuration is invalid."""

    exit_code = 8


class BinaryNotFoundError(TunnelManagerError):
    """Raised when the ssh binary is not found or not executable."""

    exit_code = 9


class ProcessError(TunnelManagerError):
    """Raised when the forwarding process cannot be spawned."""

    exit_code = 10
