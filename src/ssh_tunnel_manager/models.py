"""Data models for catalog entries, tunnels and their derived state.

Registry records are serialized as colon-delimited lines::

    app:local_port:remote_host:remote_port:pid[:created_at]

``created_at`` is an integer Unix timestamp. Lines written without it
(five fields) are still accepted.
"""

import os
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

RECORD_SEPARATOR = ":"


def validate_app_name(v: str) -> str:
    """App names end up in registry records and ownership marker file names."""
    if RECORD_SEPARATOR in v or any(ch.isspace() for ch in v):
        raise ValueError("must not contain ':' or whitespace")
    if os.sep in v or (os.altsep and os.altsep in v) or v in (".", ".."):
        raise ValueError("must not be a path")
    return v


class TunnelStatus(str, Enum):
    """Derived tunnel status, computed from process state on every read."""

    RUNNING = "RUNNING"
    DEAD = "DEAD"


class CatalogEntry(BaseModel):
    """A named remote application reachable through a tunnel."""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True, extra="forbid")

    name: str = Field(min_length=1, description="Application name")
    remote_host: str = Field(min_length=1, description="Remote hostname")
    remote_port: int = Field(ge=1, le=65535, description="Remote service port")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return validate_app_name(v)

    @field_validator("remote_host")
    @classmethod
    def validate_no_separator(cls, v: str) -> str:
        """Hosts end up in colon-delimited records."""
        if RECORD_SEPARATOR in v or any(ch.isspace() for ch in v):
            raise ValueError("must not contain ':' or whitespace")
        return v

    @property
    def endpoint(self) -> str:
        return f"{self.remote_host}:{self.remote_port}"


class SSHCredentials(BaseModel):
    """Identity used to open the secure channel."""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True, extra="forbid")

    user: str = Field(min_length=1, description="Remote SSH user")
    identity_file: str | None = Field(default=None, description="Private key path")
    ssh_port: int = Field(default=22, ge=1, le=65535, description="Remote SSH port")


class Tunnel(BaseModel):
    """A tunnel record, identified by the pid of its forwarding process."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    app_name: str = Field(min_length=1, description="Catalog application name")
    local_port: int = Field(ge=1, le=65535, description="Local listening port")
    remote_host: str = Field(min_length=1, description="Remote hostname")
    remote_port: int = Field(ge=1, le=65535, description="Remote service port")
    pid: int = Field(gt=0, description="PID of the forwarding process")
    created_at: datetime = Field(
        default_factory=datetime.now, description="Tunnel creation timestamp"
    )

    @field_validator("app_name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return validate_app_name(v)

    @property
    def marker_name(self) -> str:
        """File name of the ownership marker for this tunnel."""
        return f"{self.app_name}-{self.local_port}-{self.pid}.pid"

    def to_record(self) -> str:
        """Serialize to a single registry line (without newline)."""
        return RECORD_SEPARATOR.join(
            [
                self.app_name,
                str(self.local_port),
                self.remote_host,
                str(self.remote_port),
                str(self.pid),
                str(int(self.created_at.timestamp())),
            ]
        )

    @classmethod
    def from_record(
        cls, line: str, default_created_at: datetime | None = None
    ) -> "Tunnel":
        """Parse a registry line.

        Args:
            line: Colon-delimited record
            default_created_at: Timestamp to use for five-field records

        Returns:
            Parsed tunnel

        Raises:
            ValueError: If the line is malformed
        """
        fields = line.strip().split(RECORD_SEPARATOR)
        if len(fields) not in (5, 6):
            raise ValueError(f"Expected 5 or 6 fields, got {len(fields)}: '{line}'")

        app_name, local_port, remote_host, remote_port, pid = fields[:5]
        if len(fields) == 6:
            try:
                created_at = datetime.fromtimestamp(int(fields[5]))
            except (OverflowError, OSError) as e:
                raise ValueError(f"Invalid timestamp '{fields[5]}': {e}") from e
        else:
            created_at = default_created_at or datetime.now()

        return cls(
            app_name=app_name,
            local_port=int(local_port),
            remote_host=remote_host,
            remote_port=int(remote_port),
            pid=int(pid),
            created_at=created_at,
        )


class TunnelState(BaseModel):
    """A tunnel record together with its status at read time."""

    model_config = ConfigDict(frozen=True)

    tunnel: Tunnel
    status: TunnelStatus

    @property
    def is_running(self) -> bool:
        return self.status == TunnelStatus.RUNNING
