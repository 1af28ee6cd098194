"""Port-based process discovery and forced termination.

The agent identifies a running unit purely by the TCP port it listens on.
Ports are compared numerically, so a listener on 8080 is never mistaken for
one on 80. Two implementations exist: psutil enumerates sockets on Linux
and Windows, while macOS (where ``net_connections`` needs root) asks ``lsof``.
"""
from __future__ import annotations

import logging
import os
import shutil
import signal
import subprocess
import sys
from typing import Protocol, runtime_checkable

import psutil

from ..errors import ProcessError, ProcessErrorKind

LOGGER = logging.getLogger(__name__)


@runtime_checkable
class ProcessSupervisor(Protocol):
    """Capability needed by the orchestrator to guard and stop units."""

    def find_by_port(self, port: int) -> int | None:
        """Return the pid listening on *port*, or ``None``."""
        ...

    def kill(self, pid: int) -> None:
        """Forcefully terminate *pid* without waiting for it to exit."""
        ...


class PsutilProcessSupervisor:
    """Socket enumeration via :func:`psutil.net_connections`."""

    def find_by_port(self, port: int) -> int | None:
        try:
            connections = psutil.net_connections(kind="tcp")
        except psutil.AccessDenied as exc:
            raise ProcessError(
                ProcessErrorKind.DISCOVERY_FAILED,
                f"Permission denied while listing sockets for port {port}: {exc}",
            ) from exc
        ownerless = False
        for conn in connections:
            if conn.status != psutil.CONN_LISTEN or not conn.laddr or conn.laddr.port != port:
                continue
            if conn.pid:
                return int(conn.pid)
            ownerless = True
        if ownerless:
            # Sockets of other users carry no pid without root.
            raise ProcessError(
                ProcessErrorKind.DISCOVERY_FAILED,
                f"Port {port} has a listener whose owning process cannot be read.",
            )
        return None

    def kill(self, pid: int) -> None:
        try:
            psutil.Process(pid).kill()
        except psutil.NoSuchProcess:
            LOGGER.debug("Process %s already exited", pid)
        except psutil.AccessDenied as exc:
            raise ProcessError(
                ProcessErrorKind.KILL_FAILED,
                f"Permission denied killing process {pid}.",
                pid=pid,
            ) from exc


class LsofProcessSupervisor:
    """Socket lookup via ``lsof`` for hosts where psutil needs root."""

    def __init__(self, lsof_bin: str = "lsof") -> None:
        """Remember which ``lsof`` binary to invoke."""
        self.lsof_bin = lsof_bin

    def find_by_port(self, port: int) -> int | None:
        if shutil.which(self.lsof_bin) is None:
            raise ProcessError(
                ProcessErrorKind.DISCOVERY_FAILED,
                f"'{self.lsof_bin}' not found on PATH.",
            )
        result = subprocess.run(  # noqa: S603 - controlled command execution
            [self.lsof_bin, "-nP", f"-iTCP:{port}", "-sTCP:LISTEN", "-Fpn"],
            capture_output=True,
            text=True,
            check=False,
        )
        # lsof exits 1 when nothing matches.
        if result.returncode not in (0, 1):
            message = (result.stderr or result.stdout or "").strip() or "lsof failed"
            raise ProcessError(ProcessErrorKind.DISCOVERY_FAILED, message)
        return _parse_lsof_fields(result.stdout, port)

    def kill(self, pid: int) -> None:
        try:
            os.kill(pid, signal.SIGKILL)
        except ProcessLookupError:
            LOGGER.debug("Process %s already exited", pid)
        except PermissionError as exc:
            raise ProcessError(
                ProcessErrorKind.KILL_FAILED,
                f"Permission denied killing process {pid}.",
                pid=pid,
            ) from exc


def _parse_lsof_fields(output: str, port: int) -> int | None:
    """Return the pid whose ``n`` field names exactly *port*.

    ``-F`` output is one field per line: ``p<pid>`` opens a process block and
    ``n<host>:<port>`` lines list its sockets.
    """
    current_pid: int | None = None
    for line in output.splitlines():
        if not line:
            continue
        tag, value = line[0], line[1:]
        if tag == "p":
            current_pid = int(value) if value.isdigit() else None
        elif tag == "n" and current_pid is not None:
            _, _, port_text = value.rpartition(":")
            if port_text.isdigit() and int(port_text) == port:
                return current_pid
    return None


def default_process_supervisor() -> ProcessSupervisor:
    """Pick the supervisor implementation for the current platform."""
    if sys.platform == "darwin":
        return LsofProcessSupervisor()
    return PsutilProcessSupervisor()


__all__ = [
    "LsofProcessSupervisor",
    "ProcessSupervisor",
    "PsutilProcessSupervisor",
    "default_process_supervisor",
]
