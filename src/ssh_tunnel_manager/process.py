"""Spawning and probing of SSH forwarding processes."""

import os
import shutil
import subprocess
import tempfile
import time
from typing import IO

import psutil
from pydantic import BaseModel, ConfigDict

from .common.exceptions import (
    BinaryNotFoundError,
    ConnectionError,
    PortInUseError,
    ProcessError,
)
from .common.logging import get_logger
from .interfaces import ProcessProbe
from .models import SSHCredentials

logger = get_logger(__name__)

# ssh stderr fragments that mean the local side of the forward could not bind
PORT_IN_USE_MARKERS = (
    "address already in use",
    "cannot listen to port",
    "could not request local forwarding",
)

MAX_STDERR_BYTES = 8192


class PsutilProcessProbe:
    """ProcessProbe backed by psutil."""

    def __init__(self, uid: int | None = None):
        """Initialize probe.

        Args:
            uid: Real uid a process must run as to count as ours
                (defaults to the current user)
        """
        self.uid = os.getuid() if uid is None else uid

    def is_alive(self, pid: int) -> bool:
        try:
            process = psutil.Process(pid)
            if not process.is_running() or process.status() == psutil.STATUS_ZOMBIE:
                return False
            return process.uids().real == self.uid
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            return False

    def create_time(self, pid: int) -> float | None:
        try:
            return psutil.Process(pid).create_time()
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            return None

    def listens_on(self, pid: int, port: int) -> bool:
        try:
            connections = psutil.Process(pid).net_connections(kind="tcp")
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            return False
        return any(
            conn.status == psutil.CONN_LISTEN and conn.laddr and conn.laddr.port == port
            for conn in connections
        )

    def terminate(self, pid: int, timeout: float = 5.0) -> bool:
        try:
            process = psutil.Process(pid)
            process.terminate()
            try:
                process.wait(timeout=timeout)
                logger.debug("Process terminated gracefully", pid=pid)
            except psutil.TimeoutExpired:
                logger.warning(
                    "Process did not terminate gracefully, force killing", pid=pid
                )
                process.kill()
                process.wait(timeout=timeout)
            return True
        except psutil.NoSuchProcess:
            return False
        except psutil.AccessDenied as e:
            raise ProcessError(f"Not permitted to stop process {pid}") from e


class TunnelProcess(BaseModel):
    """Handle of a started forwarding process."""

    model_config = ConfigDict(frozen=True)

    pid: int
    local_port: int
    remote_host: str
    remote_port: int
    command: list[str]


class SSHTunnelSupervisor:
    """Starts detached ``ssh -N -L`` processes and waits until they forward.

    A started process runs in its own session and outlives the manager.
    The supervisor does not watch it afterwards.
    """

    def __init__(
        self,
        probe: ProcessProbe,
        ssh_binary: str = "ssh",
        startup_timeout: float = 10.0,
        stop_timeout: float = 5.0,
        poll_interval: float = 0.1,
    ):
        self.probe = probe
        self.ssh_binary = ssh_binary
        self.startup_timeout = startup_timeout
        self.stop_timeout = stop_timeout
        self.poll_interval = poll_interval

    def _resolve_binary(self) -> str:
        """Find the ssh binary.

        Raises:
            BinaryNotFoundError: If it is not on PATH or not executable
        """
        binary = shutil.which(self.ssh_binary)
        if binary is None:
            raise BinaryNotFoundError(
                f"SSH client '{self.ssh_binary}' not found in system PATH. "
                "Please install OpenSSH or set SSH_BINARY in the configuration."
            )
        return binary

    def build_command(
        self,
        binary: str,
        local_port: int,
        remote_host: str,
        remote_port: int,
        credentials: SSHCredentials,
    ) -> list[str]:
        connect_timeout = max(1, int(self.startup_timeout))
        command = [
            binary,
            "-N",
            "-L",
            f"127.0.0.1:{local_port}:{remote_host}:{remote_port}",
            "-p",
            str(credentials.ssh_port),
        ]
        if credentials.identity_file:
            command += ["-i", os.path.expanduser(credentials.identity_file)]
        command += [
            "-o",
            "ExitOnForwardFailure=yes",
            "-o",
            "BatchMode=yes",
            "-o",
            f"ConnectTimeout={connect_timeout}",
            "-o",
            "ServerAliveInterval=30",
            "-o",
            "ServerAliveCountMax=3",
            f"{credentials.user}@{remote_host}",
        ]
        return command

    def start(
        self,
        local_port: int,
        remote_host: str,
        remote_port: int,
        credentials: SSHCredentials,
    ) -> TunnelProcess:
        """Start a forwarding process.

        Returns:
            Handle of the running process

        Raises:
            BinaryNotFoundError: If ssh is not installed
            ProcessError: If the process cannot be spawned
            PortInUseError: If ssh could not bind ``local_port``
            ConnectionError: If the remote is unreachable, authentication
                fails, or the forward is not up within ``startup_timeout``
        """
        command = self.build_command(
            self._resolve_binary(), local_port, remote_host, remote_port, credentials
        )
        logger.info(
            "Starting SSH tunnel process",
            local_port=local_port,
            remote=f"{remote_host}:{remote_port}",
            user=credentials.user,
        )

        with tempfile.TemporaryFile() as stderr_file:
            try:
                process = subprocess.Popen(
                    command,
                    stdin=subprocess.DEVNULL,
                    stdout=subprocess.DEVNULL,
                    stderr=stderr_file,
                    start_new_session=True,
                )
            except OSError as e:
                logger.error("Failed to start SSH process", error=str(e))
                raise ProcessError(f"Failed to start SSH process: {e}") from e

            self._wait_for_forward(process, local_port, remote_host, stderr_file)

        logger.info(
            "SSH tunnel process started", pid=process.pid, local_port=local_port
        )
        return TunnelProcess(
            pid=process.pid,
            local_port=local_port,
            remote_host=remote_host,
            remote_port=remote_port,
            command=command,
        )

    def _wait_for_forward(
        self,
        process: "subprocess.Popen[bytes]",
        local_port: int,
        remote_host: str,
        stderr_file: IO[bytes],
    ) -> None:
        deadline = time.monotonic() + self.startup_timeout
        while True:
            returncode = process.poll()
            if returncode is not None:
                raise self._classify_failure(
                    local_port, remote_host, returncode, self._read_stderr(stderr_file)
                )
            if self.probe.listens_on(process.pid, local_port):
                return
            if time.monotonic() >= deadline:
                break
            time.sleep(self.poll_interval)

        logger.error(
            "SSH tunnel did not come up in time",
            pid=process.pid,
            timeout=self.startup_timeout,
        )
        self._stop(process)
        raise ConnectionError(
            f"Tunnel to {remote_host} not established within {self.startup_timeout}s"
        )

    def _stop(self, process: "subprocess.Popen[bytes]") -> None:
        process.terminate()
        try:
            process.wait(timeout=self.stop_timeout)
        except subprocess.TimeoutExpired:
            logger.warning("Process did not terminate, force killing", pid=process.pid)
            process.kill()
            process.wait()

    @staticmethod
    def _read_stderr(stderr_file: IO[bytes]) -> str:
        stderr_file.seek(0)
        return stderr_file.read(MAX_STDERR_BYTES).decode("utf-8", errors="replace")

    @staticmethod
    def _classify_failure(
        local_port: int, remote_host: str, returncode: int, stderr: str
    ) -> Exception:
        lines = [line.strip() for line in stderr.splitlines() if line.strip()]
        detail = lines[-1] if lines else f"ssh exited with status {returncode}"

        if any(marker in stderr.lower() for marker in PORT_IN_USE_MARKERS):
            logger.warning(
                "SSH could not bind local port", port=local_port, detail=detail
            )
            return PortInUseError(local_port, detail)

        logger.error(
            "SSH tunnel failed",
            remote_host=remote_host,
            returncode=returncode,
            detail=detail,
        )
        return ConnectionError(f"Failed to connect to {remote_host}: {detail}")
