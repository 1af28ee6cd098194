"""Tests for the deployctl command line."""
from __future__ import annotations

import json
from dataclasses import replace
from pathlib import Path

import pytest
import yaml
from typer.testing import CliRunner

from deployctl import __version__
from deployctl.cli import app
from deployctl.errors import RemoteError, RemoteErrorKind
from deployctl.models import ManagedUnit
from deployctl.state import StateRegistry, UnitRegistry

runner = CliRunner()


def _unit(port: int) -> ManagedUnit:
    return ManagedUnit(
        remote_url="http://platform.local",
        installer_token=f"inst-{port}",
        app_name="shop",
        app_version="1.2.0",
        app_file_name="shop-1.2.0.jar",
        app_run_port=port,
        jdk_name="temurin",
        jdk_version="17.0.2",
        jdk_file_name="temurin-17.0.2.zip",
    )


class StubSupervisor:
    def __init__(self) -> None:
        self.listeners: dict[int, int] = {}
        self.killed: list[int] = []

    def find_by_port(self, port: int) -> int | None:
        return self.listeners.get(port)

    def kill(self, pid: int) -> None:
        self.killed.append(pid)
        self.listeners = {port: owner for port, owner in self.listeners.items() if owner != pid}


class StubRemote:
    def __init__(self) -> None:
        self.registered: list[tuple[str, str, int]] = []
        self.reject = False

    def register(self, remote_url: str, registration_token: str, port: int) -> ManagedUnit:
        if self.reject:
            raise RemoteError(
                RemoteErrorKind.VALIDATION,
                "token: is unknown",
                status_code=422,
                messages=["token: is unknown"],
            )
        self.registered.append((remote_url, registration_token, port))
        return replace(_unit(port), remote_url=remote_url)

    def request_latest(self, unit: ManagedUnit) -> ManagedUnit:
        return unit

    def deregister(self, unit: ManagedUnit) -> None:
        return None


def _prepare_environment(tmp_path: Path) -> dict[str, str]:
    config = {
        "state_dir": str(tmp_path / "state"),
        "prod_root": str(tmp_path / "prod"),
        "logs_dir": str(tmp_path / "logs"),
        "runtime_dir": str(tmp_path / "run"),
        "lock_timeout": 1,
        "default_remote_url": "http://platform.local",
    }
    config_path = tmp_path / "config.yml"
    config_path.write_text(yaml.safe_dump(config), encoding="utf-8")
    return {"DEPLOYCTL_CONFIG_FILE": str(config_path)}


def _units(tmp_path: Path) -> UnitRegistry:
    return UnitRegistry(StateRegistry(tmp_path / "state" / "registry"))


def _operations(tmp_path: Path) -> list[dict[str, object]]:
    log_path = tmp_path / "logs" / "operations.log"
    return [json.loads(line) for line in log_path.read_text(encoding="utf-8").splitlines()]


@pytest.fixture()
def supervisor(monkeypatch: pytest.MonkeyPatch) -> StubSupervisor:
    stub = StubSupervisor()
    monkeypatch.setattr("deployctl.cli.default_process_supervisor", lambda: stub)
    return stub


@pytest.fixture()
def remote(monkeypatch: pytest.MonkeyPatch) -> StubRemote:
    stub = StubRemote()
    monkeypatch.setattr("deployctl.cli.RemotePlatformClient", lambda client: stub)
    return stub


def test_version_option(tmp_path: Path) -> None:
    """--version prints the package version and logs the operation."""
    env = _prepare_environment(tmp_path)

    result = runner.invoke(app, ["--version"], env=env)

    assert result.exit_code == 0
    assert f"deployctl {__version__}" in result.stdout
    assert _operations(tmp_path)[-1]["command"] == "root --version"


def test_list_empty_registry(tmp_path: Path, supervisor: StubSupervisor) -> None:
    """An empty registry renders a placeholder row."""
    env = _prepare_environment(tmp_path)

    result = runner.invoke(app, ["list"], env=env)

    assert result.exit_code == 0
    assert "(none)" in result.stdout


def test_list_json_reports_status(tmp_path: Path, supervisor: StubSupervisor) -> None:
    """JSON output includes each unit with its running status."""
    env = _prepare_environment(tmp_path)
    _units(tmp_path).add(_unit(80))
    _units(tmp_path).add(_unit(8080))
    supervisor.listeners[8080] = 4242

    result = runner.invoke(app, ["list", "--json"], env=env)

    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    statuses = {entry["app_run_port"]: entry["status"] for entry in payload["units"]}
    assert statuses == {80: "stopped", 8080: "running (pid 4242)"}


def test_list_corrupt_registry_is_environment_error(
    tmp_path: Path, supervisor: StubSupervisor
) -> None:
    """An unreadable unit registry exits with the environment code."""
    env = _prepare_environment(tmp_path)
    registry_dir = tmp_path / "state" / "registry"
    registry_dir.mkdir(parents=True)
    (registry_dir / "units.yml").write_text("units: 5\n", encoding="utf-8")

    result = runner.invoke(app, ["list"], env=env)

    assert result.exit_code == 3


def test_register_with_options(
    tmp_path: Path, supervisor: StubSupervisor, remote: StubRemote
) -> None:
    """register persists the unit returned by the platform."""
    env = _prepare_environment(tmp_path)

    result = runner.invoke(
        app,
        ["register", "--url", "http://platform.local/", "--token", "reg", "--port", "8080"],
        env=env,
    )

    assert result.exit_code == 0, result.stdout
    assert remote.registered == [("http://platform.local", "reg", 8080)]
    assert _units(tmp_path).get(8080) == _unit(8080)
    record = _operations(tmp_path)[-1]
    assert record["command"] == "register"
    assert record["result"]["status"] == "success"  # type: ignore[index]


def test_register_prompts_for_missing_values(
    tmp_path: Path, supervisor: StubSupervisor, remote: StubRemote
) -> None:
    """Omitted values are prompted for, with the configured URL as default."""
    env = _prepare_environment(tmp_path)

    result = runner.invoke(app, ["register"], input="\nreg\n9090\n", env=env)

    assert result.exit_code == 0, result.stdout
    assert remote.registered == [("http://platform.local", "reg", 9090)]


def test_register_validation_failure(
    tmp_path: Path, supervisor: StubSupervisor, remote: StubRemote
) -> None:
    """Platform validation errors are itemised and exit non-zero."""
    env = _prepare_environment(tmp_path)
    remote.reject = True

    result = runner.invoke(
        app, ["register", "--url", "http://platform.local", "--token", "x", "--port", "80"], env=env
    )

    assert result.exit_code == 4
    assert "- token: is unknown" in result.stdout
    assert _units(tmp_path).list_units() == []


@pytest.mark.parametrize("args", [["stop"], ["stop", "--port", "80", "--all"]])
def test_lifecycle_requires_exactly_one_selector(
    tmp_path: Path, supervisor: StubSupervisor, args: list[str]
) -> None:
    """Either --port or --all must be given, not both."""
    env = _prepare_environment(tmp_path)

    result = runner.invoke(app, args, env=env)

    assert result.exit_code == 2


def test_stop_unregistered_port(tmp_path: Path, supervisor: StubSupervisor) -> None:
    """Stopping an unknown port fails with the provider exit code."""
    env = _prepare_environment(tmp_path)

    result = runner.invoke(app, ["stop", "--port", "9999"], env=env)

    assert result.exit_code == 4
    assert "not registered" in result.stdout


def test_stop_kills_running_unit(tmp_path: Path, supervisor: StubSupervisor) -> None:
    """stop --port kills the listener and records the lock wait."""
    env = _prepare_environment(tmp_path)
    _units(tmp_path).add(_unit(8080))
    supervisor.listeners[8080] = 321

    result = runner.invoke(app, ["stop", "-p", "8080"], env=env)

    assert result.exit_code == 0, result.stdout
    assert supervisor.killed == [321]
    record = _operations(tmp_path)[-1]
    assert record["command"] == "stop"
    assert "lock_wait_ms" in record
    assert (tmp_path / "run" / "deployctl.lock").exists()


def test_stop_all_reports_each_unit(tmp_path: Path, supervisor: StubSupervisor) -> None:
    """stop --all visits every registered unit."""
    env = _prepare_environment(tmp_path)
    _units(tmp_path).add(_unit(80))
    _units(tmp_path).add(_unit(8080))
    supervisor.listeners[80] = 10
    supervisor.listeners[8080] = 20

    result = runner.invoke(app, ["stop", "--all"], env=env)

    assert result.exit_code == 0, result.stdout
    assert supervisor.killed == [10, 20]


def test_run_already_running_does_nothing(tmp_path: Path, supervisor: StubSupervisor) -> None:
    """run on a live unit reports it and spawns nothing."""
    env = _prepare_environment(tmp_path)
    _units(tmp_path).add(_unit(8080))
    supervisor.listeners[8080] = 99

    result = runner.invoke(app, ["run", "--port", "8080"], env=env)

    assert result.exit_code == 0, result.stdout
    assert "already running" in result.stdout
    assert not (tmp_path / "state" / "cache").exists()


def test_unregister_removes_unit(
    tmp_path: Path, supervisor: StubSupervisor, remote: StubRemote
) -> None:
    """unregister forgets the unit and stops its process."""
    env = _prepare_environment(tmp_path)
    _units(tmp_path).add(_unit(8080))
    supervisor.listeners[8080] = 7

    result = runner.invoke(app, ["unregister", "--port", "8080"], env=env)

    assert result.exit_code == 0, result.stdout
    assert _units(tmp_path).list_units() == []
    assert supervisor.killed == [7]


def test_config_show_json(tmp_path: Path) -> None:
    """config show --json renders the merged configuration."""
    env = _prepare_environment(tmp_path)

    result = runner.invoke(app, ["config", "show", "--json"], env=env)

    assert result.exit_code == 0
    data = json.loads(result.stdout)
    assert data["prod_root"] == str(tmp_path / "prod")
    assert data["cache_root"] == str(tmp_path / "state" / "cache")
    assert data["http"]["chunk_size"] == 65536


def test_invalid_config_exits_with_validation_code(tmp_path: Path) -> None:
    """A broken config file is reported before any command runs."""
    config_path = tmp_path / "config.yml"
    config_path.write_text("bogus: true\n", encoding="utf-8")

    result = runner.invoke(app, ["list"], env={"DEPLOYCTL_CONFIG_FILE": str(config_path)})

    assert result.exit_code == 2
    assert "Unknown configuration keys" in result.stdout


def test_batch_with_empty_registry_logs_warning(tmp_path: Path, supervisor: StubSupervisor) -> None:
    """--all against an empty registry succeeds and logs a warning."""
    env = _prepare_environment(tmp_path)

    result = runner.invoke(app, ["stop", "--all"], env=env)

    assert result.exit_code == 0
    assert "No units are registered." in result.stdout
    assert _operations(tmp_path)[-1]["result"]["status"] == "warning"  # type: ignore[index]
