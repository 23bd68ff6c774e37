"""File-backed tunnel registry shared between manager invocations.

Layout inside the tunnel directory::

    active_tunnels              one colon-delimited record per line
    <app>-<port>-<pid>.pid      ownership marker per tunnel
    .lock                       flock target serializing all access

Appends are single ``O_APPEND`` writes under an exclusive lock; removals
rewrite the file through a temporary file and ``os.replace`` under the same
lock, so concurrent invocations never interleave partial writes.
"""

import fcntl
import os
import tempfile
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

from .common.exceptions import RegistryIOError
from .common.logging import get_logger
from .models import Tunnel

logger = get_logger(__name__)

RECORDS_FILE = "active_tunnels"
LOCK_FILE = ".lock"
MARKER_SUFFIX = ".pid"


class TunnelRegistry:
    """Durable, ordered record of tunnels created and not yet removed."""

    def __init__(self, tunnel_dir: Path | str):
        self.tunnel_dir = Path(tunnel_dir)
        self.records_path = self.tunnel_dir / RECORDS_FILE
        self.lock_path = self.tunnel_dir / LOCK_FILE

    @contextmanager
    def _locked(self, exclusive: bool) -> Iterator[None]:
        try:
            self.tunnel_dir.mkdir(parents=True, exist_ok=True)
            fd = os.open(self.lock_path, os.O_CREAT | os.O_RDWR, 0o600)
        except OSError as e:
            raise RegistryIOError(
                f"Cannot open registry lock {self.lock_path}: {e}"
            ) from e
        try:
            fcntl.flock(fd, fcntl.LOCK_EX if exclusive else fcntl.LOCK_SH)
            yield
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
            os.close(fd)

    def _read_lines(self) -> list[str]:
        try:
            with open(self.records_path, encoding="utf-8") as f:
                return [line.rstrip("\n") for line in f if line.strip()]
        except FileNotFoundError:
            return []
        except (OSError, UnicodeDecodeError) as e:
            raise RegistryIOError(
                f"Cannot read registry {self.records_path}: {e}"
            ) from e

    def _fallback_created_at(self, line: str) -> datetime:
        """Creation time for legacy records: marker mtime, else records mtime."""
        fields = line.split(":")
        candidates = []
        if len(fields) >= 5:
            candidates.append(
                self.tunnel_dir / f"{fields[0]}-{fields[1]}-{fields[4]}{MARKER_SUFFIX}"
            )
        candidates.append(self.records_path)
        for path in candidates:
            try:
                return datetime.fromtimestamp(path.stat().st_mtime)
            except OSError:
                continue
        return datetime.now()

    def _parse(self, line: str) -> Tunnel | None:
        try:
            return Tunnel.from_record(line, self._fallback_created_at(line))
        except ValueError as e:
            logger.warning(
                "Skipping malformed registry record", record=line, error=str(e)
            )
            return None

    def _marker_path(self, tunnel: Tunnel) -> Path:
        return self.tunnel_dir / tunnel.marker_name

    def append(self, tunnel: Tunnel) -> None:
        """Add a record and its ownership marker.

        Raises:
            RegistryIOError: If the backing store cannot be written
        """
        data = (tunnel.to_record() + "\n").encode("utf-8")
        with self._locked(exclusive=True):
            try:
                fd = os.open(
                    self.records_path, os.O_WRONLY | os.O_APPEND | os.O_CREAT, 0o600
                )
                try:
                    os.write(fd, data)
                    os.fsync(fd)
                finally:
                    os.close(fd)
                marker = self._marker_path(tunnel)
                marker.write_text(f"{tunnel.pid}\n", encoding="utf-8")
            except OSError as e:
                raise RegistryIOError(
                    f"Cannot write registry {self.records_path}: {e}"
                ) from e
        logger.debug("Appended tunnel record", pid=tunnel.pid, app=tunnel.app_name)

    def list_tunnels(self) -> list[Tunnel]:
        """All records in insertion order, newest last."""
        with self._locked(exclusive=False):
            lines = self._read_lines()
        return [tunnel for tunnel in map(self._parse, lines) if tunnel is not None]

    def get(self, pid: int) -> Tunnel | None:
        """The first record for ``pid``, if any."""
        for tunnel in self.list_tunnels():
            if tunnel.pid == pid:
                return tunnel
        return None

    def owns(self, tunnel: Tunnel) -> bool:
        """Whether the ownership marker for ``tunnel`` exists."""
        return self._marker_path(tunnel).exists()

    def remove(self, pid: int) -> list[Tunnel]:
        """Remove every record for ``pid``; a no-op if there is none."""
        return self.remove_where(lambda tunnel: tunnel.pid == pid)

    def remove_where(self, predicate: Callable[[Tunnel], bool]) -> list[Tunnel]:
        """Remove every record matching ``predicate``.

        Unparseable lines are kept as they are.

        Returns:
            Removed records

        Raises:
            RegistryIOError: If the backing store cannot be rewritten
        """
        with self._locked(exclusive=True):
            kept: list[str] = []
            removed: list[Tunnel] = []
            for line in self._read_lines():
                tunnel = self._parse(line)
                if tunnel is not None and predicate(tunnel):
                    removed.append(tunnel)
                else:
                    kept.append(line)

            if not removed:
                return []

            self._rewrite(kept)
            try:
                for tunnel in removed:
                    self._marker_path(tunnel).unlink(missing_ok=True)
            except OSError as e:
                raise RegistryIOError(f"Cannot remove ownership marker: {e}") from e

        for tunnel in removed:
            logger.debug("Removed tunnel record", pid=tunnel.pid, app=tunnel.app_name)
        return removed

    def _rewrite(self, lines: list[str]) -> None:
        try:
            fd, temp_path = tempfile.mkstemp(
                dir=self.tunnel_dir, prefix=f".{RECORDS_FILE}.", suffix=".tmp"
            )
        except OSError as e:
            raise RegistryIOError(f"Cannot rewrite registry: {e}") from e
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.writelines(line + "\n" for line in lines)
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp_path, self.records_path)
        except OSError as e:
            try:
                os.unlink(temp_path)
            except OSError:
                pass
            raise RegistryIOError(f"Cannot rewrite registry: {e}") from e
