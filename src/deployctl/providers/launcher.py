"""Start a staged application jar on its staged Java runtime."""
from __future__ import annotations

import logging
import os
import stat
import subprocess
import sys
from collections.abc import Mapping
from pathlib import Path
from typing import Protocol

from ..errors import ProcessError, ProcessErrorKind

LOGGER = logging.getLogger(__name__)


class Launcher(Protocol):
    """Capability the orchestrator uses to start a unit."""

    def launch(self, app_path: Path, runtime_path: Path, port: int) -> int:
        """Start the application and return its pid."""
        ...


class JavaLauncher:
    """Spawn ``java -jar <app> --server.port <port>`` as a detached process."""

    def __init__(
        self,
        *,
        logs_dir: Path,
        env: Mapping[str, str] | None = None,
        windows: bool | None = None,
    ) -> None:
        """Configure where output goes and the base environment."""
        self.logs_dir = Path(logs_dir).expanduser()
        self.env = dict(os.environ if env is None else env)
        self.windows = sys.platform == "win32" if windows is None else windows

    def java_binary(self, runtime_path: Path) -> Path:
        name = "javaw.exe" if self.windows else "java"
        return runtime_path / "bin" / name

    def build_command(self, app_path: Path, runtime_path: Path, port: int) -> list[str]:
        return [
            str(self.java_binary(runtime_path)),
            "-jar",
            str(app_path),
            "--server.port",
            str(port),
        ]

    def log_path(self, port: int) -> Path:
        return self.logs_dir / f"app-{port}.log"

    def launch(self, app_path: Path, runtime_path: Path, port: int) -> int:
        """Start the unit and return the child's pid without waiting on it."""
        java = self.java_binary(runtime_path)
        if not java.exists():
            raise ProcessError(
                ProcessErrorKind.LAUNCH_FAILED,
                f"Java binary not found at {java}.",
            )
        if not self.windows:
            _ensure_executable(java)

        env = dict(self.env)
        bin_dir = str(runtime_path / "bin")
        env["PATH"] = os.pathsep.join(filter(None, [bin_dir, env.get("PATH", "")]))
        env["JAVA_HOME"] = str(runtime_path)

        command = self.build_command(app_path, runtime_path, port)
        popen_kwargs: dict[str, object] = {}
        if self.windows:  # pragma: no cover - exercised on Windows only
            popen_kwargs["creationflags"] = getattr(subprocess, "DETACHED_PROCESS", 0) | getattr(
                subprocess, "CREATE_NEW_PROCESS_GROUP", 0
            )
        else:
            popen_kwargs["start_new_session"] = True

        try:
            self.logs_dir.mkdir(parents=True, exist_ok=True)
            with self.log_path(port).open("ab") as log_handle:
                process = subprocess.Popen(  # noqa: S603 - controlled command execution
                    command,
                    cwd=str(app_path.parent),
                    env=env,
                    stdin=subprocess.DEVNULL,
                    stdout=log_handle,
                    stderr=subprocess.STDOUT,
                    **popen_kwargs,  # type: ignore[arg-type]
                )
        except OSError as exc:
            raise ProcessError(
                ProcessErrorKind.LAUNCH_FAILED,
                f"Failed to start {app_path.name} on port {port}: {exc}",
            ) from exc

        LOGGER.info("Started %s on port %d (pid %d)", app_path.name, port, process.pid)
        return int(process.pid)


def _ensure_executable(path: Path) -> None:
    try:
        mode = path.stat().st_mode
        wanted = mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH
        if wanted != mode:
            path.chmod(wanted)
    except OSError as exc:
        raise ProcessError(
            ProcessErrorKind.LAUNCH_FAILED,
            f"Cannot mark {path} executable: {exc}",
        ) from exc


__all__ = ["JavaLauncher", "Launcher"]
