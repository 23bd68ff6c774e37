"""SSH Tunnel Manager - a local registry and supervisor for SSH port forwards."""

from .allocator import PortAllocator, is_port_available
from .catalog import Catalog
from .common.exceptions import (
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
from .common.logging import get_logger, setup_logging
from .config import ManagerConfig, ensure_layout, load_config
from .manager import TunnelManager
from .models import CatalogEntry, SSHCredentials, Tunnel, TunnelState, TunnelStatus
from .process import PsutilProcessProbe, SSHTunnelSupervisor, TunnelProcess
from .reconciler import Reconciler
from .registry import TunnelRegistry

__version__ = "0.1.0"


__all__ = [
    # Commands
    "TunnelManager",
    # Components
    "Catalog",
    "PortAllocator",
    "SSHTunnelSupervisor",
    "PsutilProcessProbe",
    "TunnelRegistry",
    "Reconciler",
    "is_port_available",
    # Models
    "CatalogEntry",
    "SSHCredentials",
    "Tunnel",
    "TunnelProcess",
    "TunnelState",
    "TunnelStatus",
    # Configuration
    "ManagerConfig",
    "load_config",
    "ensure_layout",
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
]
