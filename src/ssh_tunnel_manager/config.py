"""Manager configuration and on-disk layout."""

import shlex
from pathlib import Path
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from .common.exceptions import ConfigurationError
from .common.logging import get_logger
from .common.utils import DYNAMIC_MAX_PORT, DYNAMIC_MIN_PORT, parse_host_port
from .models import SSHCredentials, validate_app_name

logger = get_logger(__name__)

DEFAULT_CONFIG_FILE = Path.home() / ".ssh_tunnel_manager.conf"
DEFAULT_TUNNEL_DIR = Path.home() / ".ssh_tunnels"
DEFAULT_LOG_FILE = Path.home() / ".ssh_tunnel_manager.log"
DEFAULT_SSH_USER = "remote_user"

APP_KEY_PREFIX = "APP_"

# Config file key -> ManagerConfig field
_KEY_MAP = {
    "SSH_USER": "ssh_user",
    "SSH_IDENTITY_FILE": "ssh_identity_file",
    "SSH_PORT": "ssh_port",
    "SSH_BINARY": "ssh_binary",
    "TUNNEL_DIR": "tunnel_dir",
    "LOG_FILE": "log_file",
    "MIN_PORT": "min_port",
    "MAX_PORT": "max_port",
    "MAX_PORT_PROBES": "max_port_probes",
    "MAX_SPAWN_ATTEMPTS": "max_spawn_attempts",
    "STARTUP_TIMEOUT": "startup_timeout",
    "STOP_TIMEOUT": "stop_timeout",
    "PRUNE_BEFORE_CREATE": "prune_before_create",
}


class ManagerConfig(BaseModel):
    """Validated configuration for a tunnel manager invocation."""

    model_config = ConfigDict(
        str_strip_whitespace=True, validate_assignment=True, extra="forbid"
    )

    ssh_user: str = Field(default=DEFAULT_SSH_USER, min_length=1)
    ssh_identity_file: str | None = Field(default=None)
    ssh_port: int = Field(default=22, ge=1, le=65535)
    ssh_binary: str = Field(default="ssh", min_length=1)

    tunnel_dir: Path = Field(default=DEFAULT_TUNNEL_DIR)
    log_file: Path = Field(default=DEFAULT_LOG_FILE)

    min_port: int = Field(default=DYNAMIC_MIN_PORT, ge=1, le=65535)
    max_port: int = Field(default=DYNAMIC_MAX_PORT, ge=1, le=65535)
    max_port_probes: int = Field(default=100, ge=1, le=10000)
    max_spawn_attempts: int = Field(default=3, ge=1, le=20)

    startup_timeout: float = Field(default=10.0, gt=0, le=120.0)
    stop_timeout: float = Field(default=5.0, gt=0, le=60.0)

    prune_before_create: bool = Field(default=True)
    apps: dict[str, str] = Field(
        default_factory=dict, description="Catalog additions as name -> host:port"
    )

    @field_validator("tunnel_dir", "log_file")
    @classmethod
    def expand_path(cls, v: Path) -> Path:
        return v.expanduser()

    @field_validator("apps")
    @classmethod
    def validate_apps(cls, v: dict[str, str]) -> dict[str, str]:
        for name, endpoint in v.items():
            try:
                validate_app_name(name)
            except ValueError as e:
                raise ValueError(f"Application name '{name}' {e}") from None
            parse_host_port(endpoint, f"Application '{name}'")
        return v

    @model_validator(mode="after")
    def validate_port_range(self) -> "ManagerConfig":
        if self.min_port > self.max_port:
            raise ValueError(
                f"min_port ({self.min_port}) must not exceed max_port ({self.max_port})"
            )
        return self

    @property
    def credentials(self) -> SSHCredentials:
        return SSHCredentials(
            user=self.ssh_user,
            identity_file=self.ssh_identity_file,
            ssh_port=self.ssh_port,
        )


def parse_config_text(text: str) -> dict[str, Any]:
    """Parse shell-style ``KEY=VALUE`` lines into ManagerConfig field values.

    Args:
        text: Configuration file contents

    Returns:
        Field values suitable for ``ManagerConfig(**values)``

    Raises:
        ConfigurationError: On malformed lines or unknown keys
    """
    values: dict[str, Any] = {}
    apps: dict[str, str] = {}

    for lineno, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export ") :].lstrip()

        key, sep, value = line.partition("=")
        key = key.strip()
        if not sep or not key:
            raise ConfigurationError(f"Line {lineno}: expected KEY=VALUE, got '{raw}'")

        try:
            words = shlex.split(value, comments=True)
        except ValueError as e:
            raise ConfigurationError(f"Line {lineno}: {e}") from e
        value = " ".join(words)

        if key.startswith(APP_KEY_PREFIX) and len(key) > len(APP_KEY_PREFIX):
            apps[key[len(APP_KEY_PREFIX) :]] = value
        elif key in _KEY_MAP:
            values[_KEY_MAP[key]] = value or None
        else:
            raise ConfigurationError(f"Line {lineno}: unknown setting '{key}'")

    if apps:
        values["apps"] = apps
    return values


def load_config(path: Path | str | None = None) -> ManagerConfig:
    """Load configuration from file.

    A missing file yields the defaults.

    Raises:
        ConfigurationError: If the file cannot be read or contains invalid values
    """
    config_path = Path(path).expanduser() if path else DEFAULT_CONFIG_FILE
    values: dict[str, Any] = {}

    if config_path.exists():
        try:
            text = config_path.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigurationError(f"Cannot read {config_path}: {e}") from e
        values = parse_config_text(text)

    values = {k: v for k, v in values.items() if v is not None}
    try:
        config = ManagerConfig(**values)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration in {config_path}: {e}") from e

    logger.debug(
        "Configuration loaded", path=str(config_path), ssh_user=config.ssh_user
    )
    return config


def ensure_layout(config: ManagerConfig, config_path: Path | str | None = None) -> bool:
    """Create the tunnel directory, log file and a default config if missing.

    Returns:
        True if a default configuration file was written

    Raises:
        ConfigurationError: If the layout cannot be created
    """
    config_path = Path(config_path).expanduser() if config_path else DEFAULT_CONFIG_FILE
    try:
        config.tunnel_dir.mkdir(parents=True, exist_ok=True)
        config.log_file.parent.mkdir(parents=True, exist_ok=True)
        config.log_file.touch(exist_ok=True)
        if not config_path.exists():
            config_path.parent.mkdir(parents=True, exist_ok=True)
            config_path.write_text(f"SSH_USER={DEFAULT_SSH_USER}\n", encoding="utf-8")
            return True
    except OSError as e:
        raise ConfigurationError(f"Cannot prepare manager layout: {e}") from e
    return False
