"""Typer-powered command line for ``deployctl``.

Every command loads the layered configuration once (see
:mod:`deployctl.config`), records a structured operation log entry, and
mutating commands hold the agent-wide lock for their whole duration. The
lifecycle work itself lives in :class:`deployctl.orchestrator.Orchestrator`;
this module only prompts, renders, and maps outcomes to exit codes.
"""
from __future__ import annotations

import json
import textwrap
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import httpx
import typer
from rich.console import Console
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    TextColumn,
    TransferSpeedColumn,
)
from rich.table import Table

from . import __version__
from .config import AppConfig, ConfigError, load_config
from .errors import ProcessError
from .exit_codes import ExitCode
from .locking import LockError, LockManager
from .logging import OperationScope, StructuredLogger
from .models import ArtifactRef, UnitOutcome
from .orchestrator import Orchestrator
from .providers import (
    DownloadManager,
    JavaLauncher,
    ProcessSupervisor,
    ProgressCallback,
    RemotePlatformClient,
    StagingPipeline,
    default_process_supervisor,
)
from .state import DownloadStateStore, StateRegistry, StateRegistryError, UnitRegistry

console = Console()

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to deployctl's YAML config file.",
)
PORT_OPTION = typer.Option(
    None,
    "--port",
    "-p",
    min=1,
    max=65535,
    help="Port of the managed unit to act on.",
)
ALL_OPTION = typer.Option(
    False,
    "--all",
    "-a",
    help="Act on every registered unit.",
)
JSON_OPTION = typer.Option(
    False,
    "--json",
    help="Emit JSON instead of a table.",
)

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Deployment agent for Java services.

        Register units with the distribution platform, then run, update, and
        stop them by the port they listen on.
        """
    ).strip(),
)
config_app = typer.Typer(help="Inspect the effective configuration.")
app.add_typer(config_app, name="config")


@dataclass
class RuntimeContext:
    """Config, stores and providers built once per CLI invocation."""

    config: AppConfig
    registry: StateRegistry
    units: UnitRegistry
    downloads: DownloadStateStore
    locks: LockManager
    logger: StructuredLogger
    supervisor: ProcessSupervisor
    http_client: httpx.Client


def _ensure_runtime(
    ctx: typer.Context,
    config_file: Path | None,
    lock_timeout_override: float | None = None,
) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime

    overrides: dict[str, object] = {}
    if lock_timeout_override is not None:
        overrides["lock_timeout"] = lock_timeout_override

    try:
        config = load_config(config_file=config_file, overrides=overrides)
    except ConfigError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=ExitCode.VALIDATION) from exc

    registry = StateRegistry(config.registry_dir)
    http_client = httpx.Client(timeout=config.http.timeout, follow_redirects=True)
    ctx.call_on_close(http_client.close)
    runtime = RuntimeContext(
        config=config,
        registry=registry,
        units=UnitRegistry(registry=registry),
        downloads=DownloadStateStore(registry=registry),
        locks=LockManager(config.runtime_dir, config.lock_timeout),
        logger=StructuredLogger(config.logs_dir),
        supervisor=default_process_supervisor(),
        http_client=http_client,
    )
    ctx.obj = runtime
    return runtime


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    return _ensure_runtime(ctx, None, None)


def _build_orchestrator(
    runtime: RuntimeContext,
    *,
    reporter: Callable[[str], None],
    progress_factory: Callable[[ArtifactRef], ProgressCallback | None] | None = None,
) -> Orchestrator:
    config = runtime.config
    return Orchestrator(
        units=runtime.units,
        remote=RemotePlatformClient(runtime.http_client),
        downloads=DownloadManager(
            cache_root=config.cache_root,
            state=runtime.downloads,
            client=runtime.http_client,
            chunk_size=config.http.chunk_size,
        ),
        staging=StagingPipeline(
            cache_root=config.cache_root,
            prod_root=config.prod_root,
            runtime_dir_template=config.runtime_dir_template,
        ),
        supervisor=runtime.supervisor,
        launcher=JavaLauncher(logs_dir=config.logs_dir),
        reporter=reporter,
        progress_factory=progress_factory,
    )


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the deployctl version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
    lock_timeout: float | None = typer.Option(
        None,
        "--lock-timeout",
        help="Override lock acquisition timeout in seconds.",
    ),
) -> None:
    """Global options; runs before every subcommand."""
    if version:
        runtime = _ensure_runtime(ctx, config_file, lock_timeout)
        with runtime.logger.operation(
            "root --version",
            args={"version": True},
            target={"kind": "meta", "scope": "version"},
        ) as op:
            console.print(f"deployctl {__version__}")
            op.success("Reported CLI version.", changed=0)
        raise typer.Exit(code=0)

    _ensure_runtime(ctx, config_file, lock_timeout)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=0)


def _command_error(
    op: OperationScope,
    message: str,
    *,
    rc: int = ExitCode.VALIDATION,
    errors: Sequence[str] | None = None,
) -> NoReturn:
    """Emit a structured error and terminate the command."""
    console.print(f"[red]{message}[/red]")
    op.error(message, errors=list(errors or [message]), rc=int(rc))
    raise typer.Exit(code=int(rc))


def _report(message: str) -> None:
    console.print(message)


@contextmanager
def _download_progress() -> Iterator[Callable[[ArtifactRef], ProgressCallback]]:
    """Render one Rich progress bar per artifact downloaded in the block."""
    progress = Progress(
        TextColumn("[bold blue]{task.description}"),
        BarColumn(),
        DownloadColumn(),
        TransferSpeedColumn(),
        console=console,
        transient=True,
    )

    def factory(artifact: ArtifactRef) -> ProgressCallback:
        task_id = progress.add_task(str(artifact), total=None)

        def update(done: int, total: int | None) -> None:
            progress.update(task_id, completed=done, total=total)

        return update

    with progress:
        yield factory


@contextmanager
def _mutating(runtime: RuntimeContext, op: OperationScope) -> Iterator[None]:
    """Hold the agent lock and map infrastructure failures to exit codes."""
    try:
        with runtime.locks.agent_lock() as handle:
            op.set_lock_wait_ms(handle.wait_ms)
            op.add_step("lock.acquire", detail=str(handle.path))
            yield
    except LockError as exc:
        _command_error(op, str(exc), rc=ExitCode.ENVIRONMENT)
    except StateRegistryError as exc:
        _command_error(op, f"Unit registry unavailable: {exc}", rc=ExitCode.ENVIRONMENT)


def _finish(op: OperationScope, action: str, outcomes: Sequence[UnitOutcome]) -> None:
    """Record per-unit outcomes and exit non-zero if any unit failed."""
    for outcome in outcomes:
        op.add_step(
            f"{action}.{outcome.port}",
            status="success" if outcome.ok else "error",
            detail=outcome.message,
        )
    if not outcomes:
        op.warning(
            f"{action} had no registered units to act on.",
            warnings=["No units are registered."],
        )
        return
    failures = [outcome for outcome in outcomes if not outcome.ok]
    changed = sum(1 for outcome in outcomes if outcome.ok)
    context = {"ports": [outcome.port for outcome in outcomes]}
    if failures:
        _command_error(
            op,
            f"{action} failed for {len(failures)} of {len(outcomes)} unit(s).",
            rc=ExitCode.PROVIDER,
            errors=[outcome.message for outcome in failures],
        )
    op.success(f"{action} completed for {len(outcomes)} unit(s).", changed=changed, context=context)


def _select(op: OperationScope, port: int | None, all_units: bool) -> None:
    if port is None and not all_units:
        _command_error(op, "Specify --port <port> for one unit or --all for every unit.")
    if port is not None and all_units:
        _command_error(op, "--port and --all are mutually exclusive.")


def _lifecycle(
    ctx: typer.Context,
    action: str,
    port: int | None,
    all_units: bool,
    *,
    single: Callable[[Orchestrator, int], UnitOutcome],
    batch: Callable[[Orchestrator], list[UnitOutcome]],
    downloads: bool = False,
) -> None:
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        action,
        args={"port": port, "all": all_units},
        target={"kind": "unit", "port": port if port is not None else "all"},
    ) as op:
        _select(op, port, all_units)
        with _mutating(runtime, op):
            if downloads:
                with _download_progress() as factory:
                    orchestrator = _build_orchestrator(
                        runtime, reporter=_report, progress_factory=factory
                    )
                    outcomes = (
                        [single(orchestrator, port)] if port is not None else batch(orchestrator)
                    )
            else:
                orchestrator = _build_orchestrator(runtime, reporter=_report)
                outcomes = [single(orchestrator, port)] if port is not None else batch(orchestrator)
        _finish(op, action, outcomes)


# ----------------------------------------------------------------------
# Commands
# ----------------------------------------------------------------------
@app.command()
def register(
    ctx: typer.Context,
    url: str | None = typer.Option(
        None,
        "--url",
        help="Base URL of the distribution platform (prompted when omitted).",
    ),
    token: str | None = typer.Option(
        None,
        "--token",
        help="Registration token of the project to bind (prompted when omitted).",
    ),
    port: int | None = typer.Option(
        None,
        "--port",
        "-p",
        help="Port the application will listen on (prompted when omitted).",
    ),
) -> None:
    """Register a new unit with the distribution platform."""
    runtime = _get_runtime(ctx)
    if url is None:
        url = typer.prompt("Platform URL", default=runtime.config.default_remote_url)
    if token is None:
        token = typer.prompt("Registration token")
    if port is None:
        port = typer.prompt("Application port", default=80, type=int)

    with runtime.logger.operation(
        "register",
        args={"url": url, "port": port},
        target={"kind": "unit", "port": port},
    ) as op:
        remote_url = url.strip().rstrip("/")
        if not remote_url:
            _command_error(op, "Platform URL must not be empty.")
        if not token.strip():
            _command_error(op, "Registration token must not be empty.")
        if not 1 <= port <= 65535:
            _command_error(op, f"Port {port} is not a valid TCP port.")

        with _mutating(runtime, op):
            orchestrator = _build_orchestrator(runtime, reporter=_report)
            outcome = orchestrator.register(remote_url, token.strip(), port)
        if outcome.ok:
            console.print(f"[green]Run `deployctl run --port {port}` to start it.[/green]")
        _finish(op, "register", [outcome])


@app.command("list")
def list_units(
    ctx: typer.Context,
    json_output: bool = JSON_OPTION,
) -> None:
    """List registered units and whether they are running."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "list",
        args={"json": json_output},
        target={"kind": "unit", "scope": "registry"},
    ) as op:
        try:
            units = runtime.units.list_units()
        except StateRegistryError as exc:
            _command_error(op, f"Unit registry unavailable: {exc}", rc=ExitCode.ENVIRONMENT)

        entries: list[dict[str, object]] = []
        for unit in units:
            entry = unit.to_dict()
            entry["status"] = _status_for(runtime.supervisor, unit.app_run_port)
            entries.append(entry)

        if json_output:
            console.print_json(data={"units": entries})
            op.success("Reported unit list as JSON.", changed=0)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Port", style="bold")
        table.add_column("App")
        table.add_column("Version")
        table.add_column("JDK")
        table.add_column("JDK Version")
        table.add_column("Status")
        table.add_column("URL")

        if not entries:
            table.add_row("(none)", "", "", "", "", "", "")
        else:
            for entry in entries:
                table.add_row(
                    str(entry["app_run_port"]),
                    str(entry["app_name"]),
                    str(entry["app_version"]),
                    str(entry["jdk_name"]),
                    str(entry["jdk_version"]),
                    str(entry["status"]),
                    str(entry["remote_url"]),
                )

        console.print(table)
        op.success("Reported unit list.", changed=0)


def _status_for(supervisor: ProcessSupervisor, port: int) -> str:
    try:
        pid = supervisor.find_by_port(port)
    except ProcessError:
        return "unknown"
    return f"running (pid {pid})" if pid is not None else "stopped"


@app.command()
def unregister(
    ctx: typer.Context,
    port: int | None = PORT_OPTION,
    all_units: bool = ALL_OPTION,
) -> None:
    """Deregister units from the platform, stop them, and forget them."""
    _lifecycle(
        ctx,
        "unregister",
        port,
        all_units,
        single=lambda orchestrator, value: orchestrator.unregister(value),
        batch=lambda orchestrator: orchestrator.unregister_all(),
    )


@app.command()
def run(
    ctx: typer.Context,
    port: int | None = PORT_OPTION,
    all_units: bool = ALL_OPTION,
) -> None:
    """Download, stage, and start units that are not already running."""
    _lifecycle(
        ctx,
        "run",
        port,
        all_units,
        single=lambda orchestrator, value: orchestrator.run(value),
        batch=lambda orchestrator: orchestrator.run_all(),
        downloads=True,
    )


@app.command()
def update(
    ctx: typer.Context,
    port: int | None = PORT_OPTION,
    all_units: bool = ALL_OPTION,
) -> None:
    """Fetch the latest releases and restart running units that changed."""
    _lifecycle(
        ctx,
        "update",
        port,
        all_units,
        single=lambda orchestrator, value: orchestrator.update(value),
        batch=lambda orchestrator: orchestrator.update_all(),
        downloads=True,
    )


@app.command()
def stop(
    ctx: typer.Context,
    port: int | None = PORT_OPTION,
    all_units: bool = ALL_OPTION,
) -> None:
    """Kill the processes listening on the units' ports."""
    _lifecycle(
        ctx,
        "stop",
        port,
        all_units,
        single=lambda orchestrator, value: orchestrator.stop(value),
        batch=lambda orchestrator: orchestrator.stop_all(),
    )


@config_app.command("show")
def config_show(
    ctx: typer.Context,
    json_output: bool = JSON_OPTION,
) -> None:
    """Print the configuration deployctl resolved from every layer."""
    runtime = _get_runtime(ctx)
    data = runtime.config.to_dict()

    with runtime.logger.operation(
        "config show",
        args={"json": json_output},
        target={"kind": "config"},
    ) as op:
        if json_output:
            console.print_json(data=data)
            op.success("Rendered configuration as JSON.", changed=0)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Key", style="bold")
        table.add_column("Value")

        for key, value in data.items():
            if isinstance(value, dict):
                rendered = json.dumps(value, indent=2, sort_keys=True)
            else:
                rendered = str(value)
            table.add_row(key, rendered)

        console.print(table)
        op.success("Rendered configuration table.", changed=0)


def main() -> None:
    """Console script entry point."""
    app()


__all__ = ["app", "main"]
