"""Lifecycle operations over registered units.

The orchestrator ties the download manager, staging pipeline, process
supervisor, and launcher together for each managed unit. Single-port
operations and their ``*_all`` batch variants share one rule: a failure in
one unit is reported and the batch moves on, while an unreadable unit
registry aborts the whole invocation.
"""
from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path

from .errors import DeployError, RemoteError
from .models import ArtifactRef, ManagedUnit, StageKind, UnitOutcome, UpgradeState
from .providers.download import DownloadManager, ProgressCallback
from .providers.launcher import Launcher
from .providers.process import ProcessSupervisor
from .providers.remote import RemotePlatformClient
from .providers.staging import StagingPipeline
from .state import StateRegistryError, UnitRegistry, UnitRegistryError
from .versions import is_newer

LOGGER = logging.getLogger(__name__)

Reporter = Callable[[str], None]
ProgressFactory = Callable[[ArtifactRef], "ProgressCallback | None"]
UnitAction = Callable[[ManagedUnit], str]


def _discard(_message: str) -> None:
    return None


class Orchestrator:
    """Run register/run/update/stop/unregister against managed units."""

    def __init__(
        self,
        *,
        units: UnitRegistry,
        remote: RemotePlatformClient,
        downloads: DownloadManager,
        staging: StagingPipeline,
        supervisor: ProcessSupervisor,
        launcher: Launcher,
        reporter: Reporter | None = None,
        progress_factory: ProgressFactory | None = None,
    ) -> None:
        """Wire the collaborators; *reporter* receives narration as it happens."""
        self.units = units
        self.remote = remote
        self.downloads = downloads
        self.staging = staging
        self.supervisor = supervisor
        self.launcher = launcher
        self.reporter = reporter or _discard
        self.progress_factory = progress_factory

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------
    def list_units(self) -> list[ManagedUnit]:
        return self.units.list_units()

    def register(self, remote_url: str, registration_token: str, port: int) -> UnitOutcome:
        """Register a new unit on *port* with the platform and persist it."""
        if not 1 <= port <= 65535:
            return self._outcome(port, "register", False, f"Port {port} is not a valid TCP port.")
        if self.units.get(port) is not None:
            return self._outcome(
                port, "register", False, f"Port {port} is already registered."
            )
        try:
            pid = self.supervisor.find_by_port(port)
            if pid is not None:
                return self._outcome(
                    port,
                    "register",
                    False,
                    f"Port {port} is already in use by process {pid}.",
                )
            unit = self.remote.register(remote_url, registration_token, port)
            self.units.add(unit)
        except RemoteError as exc:
            for item in exc.messages:
                self.reporter(f"  - {item}")
            return self._outcome(port, "register", False, f"Registration failed: {exc}")
        except (DeployError, StateRegistryError, UnitRegistryError) as exc:
            return self._outcome(port, "register", False, f"Registration failed: {exc}")
        return self._outcome(
            port,
            "register",
            True,
            f"Registered {unit.app_name} {unit.app_version} on port {port}.",
        )

    def unregister(self, port: int) -> UnitOutcome:
        return self._for_port("unregister", port, self._unregister)

    def unregister_all(self) -> list[UnitOutcome]:
        return self._for_all("unregister", self._unregister)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def run(self, port: int) -> UnitOutcome:
        return self._for_port("run", port, self._run)

    def run_all(self) -> list[UnitOutcome]:
        return self._for_all("run", self._run)

    def update(self, port: int) -> UnitOutcome:
        return self._for_port("update", port, self._update)

    def update_all(self) -> list[UnitOutcome]:
        return self._for_all("update", self._update)

    def stop(self, port: int) -> UnitOutcome:
        return self._for_port("stop", port, self._stop)

    def stop_all(self) -> list[UnitOutcome]:
        return self._for_all("stop", self._stop)

    # ------------------------------------------------------------------
    # Per-unit actions (return the success message, raise on failure)
    # ------------------------------------------------------------------
    def _run(self, unit: ManagedUnit) -> str:
        port = unit.app_run_port
        pid = self.supervisor.find_by_port(port)
        if pid is not None:
            return f"{unit.app_name} is already running on port {port} (pid {pid})."
        app_path = self._stage(unit.remote_url, unit.app_artifact, StageKind.COPY)
        runtime_path = self._stage(unit.remote_url, unit.jdk_artifact, StageKind.EXPAND)
        pid = self.launcher.launch(app_path, runtime_path, port)
        return f"Started {unit.app_name} {unit.app_version} on port {port} (pid {pid})."

    def _update(self, unit: ManagedUnit) -> str:
        port = unit.app_run_port
        latest = self.remote.request_latest(unit)
        state = UpgradeState.from_flags(
            is_newer(latest.app_version, unit.app_version),
            is_newer(latest.jdk_version, unit.jdk_version),
        )
        updated = unit.with_latest(latest, app=state.app_changed, jdk=state.jdk_changed)
        LOGGER.debug("Upgrade state for port %d: %s", port, state.value)

        if state.app_changed:
            app_path = self._stage(unit.remote_url, updated.app_artifact, StageKind.COPY)
        else:
            app_path = self.staging.production_path(updated.app_artifact, StageKind.COPY)
        if state.jdk_changed:
            runtime_path = self._stage(unit.remote_url, updated.jdk_artifact, StageKind.EXPAND)
        else:
            runtime_path = self.staging.production_path(updated.jdk_artifact, StageKind.EXPAND)

        pid = self.supervisor.find_by_port(port)
        if state is UpgradeState.NO_CHANGE:
            self._persist(unit, updated)
            return f"{unit.app_name} on port {port} is already up to date."
        if pid is None:
            # A halted unit stays halted.
            self._persist(unit, updated)
            return (
                f"Staged {_describe(state, unit, updated)} for port {port}; "
                "the unit is stopped and was not started."
            )

        self.supervisor.kill(pid)
        self.reporter(f"Stopped process {pid} on port {port}.")
        new_pid = self.launcher.launch(app_path, runtime_path, port)
        self._persist(unit, updated)
        return (
            f"Upgraded {_describe(state, unit, updated)} on port {port}; "
            f"restarted as pid {new_pid}."
        )

    def _stop(self, unit: ManagedUnit) -> str:
        port = unit.app_run_port
        pid = self.supervisor.find_by_port(port)
        if pid is None:
            return f"No process is listening on port {port}."
        self.supervisor.kill(pid)
        return f"Stopped {unit.app_name} on port {port} (pid {pid})."

    def _unregister(self, unit: ManagedUnit) -> str:
        port = unit.app_run_port
        self.remote.deregister(unit)
        self.units.remove(port)
        pid = self.supervisor.find_by_port(port)
        if pid is None:
            return f"Unregistered {unit.app_name} on port {port}."
        self.supervisor.kill(pid)
        return f"Unregistered {unit.app_name} on port {port} and stopped process {pid}."

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _stage(self, root_url: str, artifact: ArtifactRef, kind: StageKind) -> Path:
        progress = self.progress_factory(artifact) if self.progress_factory else None
        self.downloads.acquire(root_url, artifact, progress)
        return self.staging.ensure_staged(artifact, kind)

    def _persist(self, current: ManagedUnit, updated: ManagedUnit) -> None:
        if updated != current:
            self.units.update(updated)

    def _for_port(self, action: str, port: int, handler: UnitAction) -> UnitOutcome:
        unit = self.units.get(port)
        if unit is None:
            return self._outcome(port, action, False, f"Port {port} is not registered.")
        return self._guard(action, unit, handler)

    def _for_all(self, action: str, handler: UnitAction) -> list[UnitOutcome]:
        units = self.units.list_units()
        if not units:
            self.reporter("No units are registered.")
            return []
        return [self._guard(action, unit, handler) for unit in units]

    def _guard(self, action: str, unit: ManagedUnit, handler: UnitAction) -> UnitOutcome:
        port = unit.app_run_port
        try:
            message = handler(unit)
        except (DeployError, StateRegistryError, UnitRegistryError) as exc:
            LOGGER.debug("%s failed for port %d", action, port, exc_info=True)
            return self._outcome(port, action, False, f"{action.capitalize()} failed: {exc}")
        return self._outcome(port, action, True, message)

    def _outcome(self, port: int, action: str, ok: bool, message: str) -> UnitOutcome:
        self.reporter(message)
        return UnitOutcome(port=port, action=action, ok=ok, message=message)


def _describe(state: UpgradeState, before: ManagedUnit, after: ManagedUnit) -> str:
    parts: list[str] = []
    if state.app_changed:
        parts.append(f"{after.app_name} {before.app_version} -> {after.app_version}")
    if state.jdk_changed:
        parts.append(f"{after.jdk_name} {before.jdk_version} -> {after.jdk_version}")
    return " and ".join(parts)


__all__ = ["Orchestrator", "Reporter"]
