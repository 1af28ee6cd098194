"""Process supervisor and Java launcher tests."""
from __future__ import annotations

import os
import subprocess
from pathlib import Path
from types import SimpleNamespace

import psutil
import pytest

from deployctl.errors import ProcessError, ProcessErrorKind
from deployctl.providers import process as process_module
from deployctl.providers.launcher import JavaLauncher
from deployctl.providers.process import (
    LsofProcessSupervisor,
    PsutilProcessSupervisor,
    _parse_lsof_fields,
)


def _conn(port: int, pid: int | None, status: str = psutil.CONN_LISTEN) -> SimpleNamespace:
    return SimpleNamespace(laddr=SimpleNamespace(ip="0.0.0.0", port=port), status=status, pid=pid)


def test_find_by_port_matches_exact_port(monkeypatch: pytest.MonkeyPatch) -> None:
    """A listener on 8080 is never reported for port 80."""
    monkeypatch.setattr(
        process_module.psutil,
        "net_connections",
        lambda kind: [_conn(8080, 4242), _conn(80, 77, status=psutil.CONN_ESTABLISHED)],
    )
    supervisor = PsutilProcessSupervisor()

    assert supervisor.find_by_port(80) is None
    assert supervisor.find_by_port(8080) == 4242


def test_find_by_port_access_denied(monkeypatch: pytest.MonkeyPatch) -> None:
    """Permission errors while enumerating sockets are DISCOVERY_FAILED."""

    def deny(kind: str) -> list[object]:
        raise psutil.AccessDenied()

    monkeypatch.setattr(process_module.psutil, "net_connections", deny)

    with pytest.raises(ProcessError) as excinfo:
        PsutilProcessSupervisor().find_by_port(80)

    assert excinfo.value.kind is ProcessErrorKind.DISCOVERY_FAILED


def test_find_by_port_listener_without_pid(monkeypatch: pytest.MonkeyPatch) -> None:
    """A listener hidden by another user's permissions is not a free port."""
    monkeypatch.setattr(
        process_module.psutil,
        "net_connections",
        lambda kind: [_conn(8080, None), _conn(9090, 31)],
    )
    supervisor = PsutilProcessSupervisor()

    with pytest.raises(ProcessError) as excinfo:
        supervisor.find_by_port(8080)

    assert excinfo.value.kind is ProcessErrorKind.DISCOVERY_FAILED
    assert supervisor.find_by_port(9090) == 31
    assert supervisor.find_by_port(80) is None


def test_kill_ignores_vanished_process(monkeypatch: pytest.MonkeyPatch) -> None:
    """Killing a process that already exited is not an error."""

    class Gone:
        def __init__(self, pid: int) -> None:
            raise psutil.NoSuchProcess(pid)

    monkeypatch.setattr(process_module.psutil, "Process", Gone)

    PsutilProcessSupervisor().kill(1234)


def test_kill_access_denied(monkeypatch: pytest.MonkeyPatch) -> None:
    """Permission errors while killing are KILL_FAILED and carry the pid."""

    class Guarded:
        def __init__(self, pid: int) -> None:
            self.pid = pid

        def kill(self) -> None:
            raise psutil.AccessDenied(self.pid)

    monkeypatch.setattr(process_module.psutil, "Process", Guarded)

    with pytest.raises(ProcessError) as excinfo:
        PsutilProcessSupervisor().kill(99)

    assert excinfo.value.kind is ProcessErrorKind.KILL_FAILED
    assert excinfo.value.pid == 99


def test_parse_lsof_fields_exact_port() -> None:
    """lsof field output is matched on the whole port number."""
    output = "p100\nn*:8080\np200\nn127.0.0.1:80\n"

    assert _parse_lsof_fields(output, 80) == 200
    assert _parse_lsof_fields(output, 8080) == 100
    assert _parse_lsof_fields(output, 8) is None
    assert _parse_lsof_fields("", 80) is None


def test_lsof_no_match_returns_none(monkeypatch: pytest.MonkeyPatch) -> None:
    """Exit status 1 from lsof means nothing is listening."""
    monkeypatch.setattr(process_module.shutil, "which", lambda name: "/usr/sbin/lsof")
    monkeypatch.setattr(
        process_module.subprocess,
        "run",
        lambda *args, **kwargs: subprocess.CompletedProcess(args, 1, stdout="", stderr=""),
    )

    assert LsofProcessSupervisor().find_by_port(80) is None


def test_lsof_missing_binary(monkeypatch: pytest.MonkeyPatch) -> None:
    """A missing lsof binary is a discovery failure."""
    monkeypatch.setattr(process_module.shutil, "which", lambda name: None)

    with pytest.raises(ProcessError) as excinfo:
        LsofProcessSupervisor().find_by_port(80)

    assert excinfo.value.kind is ProcessErrorKind.DISCOVERY_FAILED


# ----------------------------------------------------------------------
# launcher
# ----------------------------------------------------------------------
def _runtime(tmp_path: Path) -> Path:
    runtime = tmp_path / "prod" / "temurin" / "17.0.2" / "jdk-17.0.2"
    (runtime / "bin").mkdir(parents=True)
    java = runtime / "bin" / "java"
    java.write_text("#!/bin/sh\n")
    java.chmod(0o644)
    return runtime


def test_launch_spawns_detached_java(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """The launcher runs java -jar with the port argument and runtime env."""
    captured: dict[str, object] = {}

    class FakePopen:
        def __init__(self, command: list[str], **kwargs: object) -> None:
            captured["command"] = command
            captured.update(kwargs)
            self.pid = 31337

    monkeypatch.setattr("deployctl.providers.launcher.subprocess.Popen", FakePopen)
    runtime = _runtime(tmp_path)
    app_path = tmp_path / "prod" / "shop" / "1.2.0" / "shop-1.2.0.jar"
    app_path.parent.mkdir(parents=True)
    app_path.write_bytes(b"jar")
    launcher = JavaLauncher(logs_dir=tmp_path / "logs", env={"PATH": "/usr/bin"}, windows=False)

    pid = launcher.launch(app_path, runtime, 8080)

    assert pid == 31337
    assert captured["command"] == [
        str(runtime / "bin" / "java"),
        "-jar",
        str(app_path),
        "--server.port",
        "8080",
    ]
    assert captured["cwd"] == str(app_path.parent)
    assert captured["start_new_session"] is True
    env = captured["env"]
    assert isinstance(env, dict)
    assert env["JAVA_HOME"] == str(runtime)
    assert env["PATH"] == os.pathsep.join([str(runtime / "bin"), "/usr/bin"])
    assert os.access(runtime / "bin" / "java", os.X_OK)
    assert (tmp_path / "logs" / "app-8080.log").exists()


def test_launch_missing_java(tmp_path: Path) -> None:
    """A runtime without bin/java cannot launch."""
    launcher = JavaLauncher(logs_dir=tmp_path / "logs", env={}, windows=False)

    with pytest.raises(ProcessError) as excinfo:
        launcher.launch(tmp_path / "app.jar", tmp_path / "runtime", 80)

    assert excinfo.value.kind is ProcessErrorKind.LAUNCH_FAILED


def test_windows_uses_javaw(tmp_path: Path) -> None:
    """Windows hosts start the console-less javaw binary."""
    launcher = JavaLauncher(logs_dir=tmp_path, env={}, windows=True)

    assert launcher.java_binary(tmp_path).name == "javaw.exe"


def test_launch_popen_failure(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """OS errors from Popen are LAUNCH_FAILED."""

    def boom(*args: object, **kwargs: object) -> None:
        raise OSError("exec format error")

    monkeypatch.setattr("deployctl.providers.launcher.subprocess.Popen", boom)
    runtime = _runtime(tmp_path)
    launcher = JavaLauncher(logs_dir=tmp_path / "logs", env={}, windows=False)

    with pytest.raises(ProcessError, match="exec format error"):
        launcher.launch(tmp_path / "app.jar", runtime, 80)
