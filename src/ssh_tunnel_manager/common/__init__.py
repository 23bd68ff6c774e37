"""Common utilities and shared functionality."""

from .exceptions import (
    BinaryNotFoundError,
    ConfigurationError,
    ConnectionError,
    NotFound,
    PortExhausted,
    PortInUseError,
    ProcessError,
    RegistryIOError,
    TunnelManagerError,
    UnknownApplication,
)
from .logging import get_logger, setup_logging
from .utils import (
    DYNAMIC_MAX_PORT,
    DYNAMIC_MIN_PORT,
    MAX_PORT,
    MIN_PORT,
    parse_host_port,
    validate_non_empty_string,
    validate_port,
)

__all__ = [
    # Exceptions
    "TunnelManagerError",
    "UnknownApplication",
    "PortExhausted",
    "PortInUseError",
    "ConnectionError",
    "NotFound",
    "RegistryIOError",
    "ConfigurationError",
    "BinaryNotFoundError",
    "ProcessError",
    # Logging
    "get_logger",
    "setup_logging",
    # Utils
    "validate_port",
    "validate_non_empty_string",
    "parse_host_port",
    "MIN_PORT",
    "MAX_PORT",
    "DYNAMIC_MIN_PORT",
    "DYNAMIC_MAX_PORT",
]
