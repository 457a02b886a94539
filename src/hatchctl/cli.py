"""Typer-powered command line interface for ``hatchctl``.

Every command builds (or reuses) a :class:`RuntimeContext`, runs inside a
structured logging operation, and maps domain errors onto
:class:`~hatchctl.exit_codes.ExitCode` values through :func:`_command_error`.
"""
from __future__ import annotations

import json
import textwrap
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import __version__
from .config import AppConfig, ConfigError, load_config
from .destroy import DestroyError, Destroyer
from .exit_codes import ExitCode
from .health import HealthProber, ProbeResult, monitor
from .lifecycle import (
    OUTCOME_FAILED,
    OUTCOME_SKIPPED,
    OUTCOME_SUCCESS,
    BatchResult,
    InstanceNotFoundError,
    LifecycleController,
    LifecycleError,
)
from .logging import OperationScope, StructuredLogger
from .ports import PortAllocator, PortConflictError, PortExhaustedError, PortsError
from .providers import ComposeError, ComposeProvider, InstanceStatus, InstanceStatusProvider
from .remote import (
    RemoteDeployer,
    RemoteDeployError,
    RemoteError,
    RemoteStartError,
    RemoteTarget,
    SshProvider,
)
from .scaffold import (
    InstanceExistsError,
    InstanceNameError,
    InstanceScaffolder,
    ScaffoldError,
    validate_instance_name,
)
from .snapshots import SnapshotError, Snapshotter
from .state import FleetRegistry, InstanceRecord, RegistryConflictError, RegistryError
from .templates import TemplateEngine

console = Console()

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to hatchctl's YAML config file.",
)

JSON_OPTION = typer.Option(
    False,
    "--json",
    help="Emit structured JSON instead of a table.",
)

ALL_OPTION = typer.Option(
    False,
    "--all",
    help="Apply to every registered instance (the default when NAME is omitted).",
)

OPTIONAL_NAME_ARGUMENT = typer.Argument(
    None,
    help="Instance name (omit to target every registered instance).",
)

_STATE_STYLES = {
    "running": "green",
    "exited": "red",
    "dead": "red",
    "not-created": "dim",
}

_OUTCOME_STYLES = {
    OUTCOME_SUCCESS: "green",
    OUTCOME_FAILED: "red",
    OUTCOME_SKIPPED: "yellow",
}

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Fleet registry and lifecycle manager for containerised assistant instances.

        Scaffold instances locally or on SSH hosts, start and stop them, probe
        their health, snapshot their state and tear them down.
        """
    ).strip(),
)
ports_app = typer.Typer(help="Inspect port assignments.")
config_app = typer.Typer(help="Inspect the effective configuration.")

app.add_typer(ports_app, name="ports")
app.add_typer(config_app, name="config")


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: AppConfig
    registry: FleetRegistry
    allocator: PortAllocator
    templates: TemplateEngine
    logger: StructuredLogger
    ssh: SshProvider
    compose: ComposeProvider
    instance_status_provider: InstanceStatusProvider
    lifecycle: LifecycleController
    scaffolder: InstanceScaffolder
    deployer: RemoteDeployer
    prober: HealthProber
    destroyer: Destroyer
    snapshotter: Snapshotter


def _build_runtime(config: AppConfig) -> RuntimeContext:
    registry = FleetRegistry(config.registry_file)
    allocator = PortAllocator(base=config.ports.base, limit=config.ports.limit)
    templates = TemplateEngine.with_overrides(config.templates_dir)
    logger = StructuredLogger(config.logs_dir)
    ssh = SshProvider(
        ssh_bin=config.remote.ssh_bin,
        rsync_bin=config.remote.rsync_bin,
        runtime_dir=config.runtime_dir,
        connect_timeout=config.health.connect_timeout,
    )
    compose = ComposeProvider(
        ssh=ssh,
        docker_bin=config.docker.docker_bin,
        container_prefix=config.docker.container_prefix,
    )
    status_provider = InstanceStatusProvider()
    lifecycle = LifecycleController(
        registry=registry,
        compose=compose,
        status_provider=status_provider,
        instances_dir=config.instances_dir,
        remote_root=config.remote.default_root,
    )
    scaffolder = InstanceScaffolder(
        registry=registry,
        allocator=allocator,
        templates=templates,
        instances_dir=config.instances_dir,
        container_prefix=config.docker.container_prefix,
        container_port=config.docker.container_port,
    )
    return RuntimeContext(
        config=config,
        registry=registry,
        allocator=allocator,
        templates=templates,
        logger=logger,
        ssh=ssh,
        compose=compose,
        instance_status_provider=status_provider,
        lifecycle=lifecycle,
        scaffolder=scaffolder,
        deployer=RemoteDeployer(ssh=ssh, docker_bin=config.docker.docker_bin),
        prober=HealthProber(
            ssh=ssh,
            timeout=config.health.timeout,
            connect_timeout=config.health.connect_timeout,
        ),
        destroyer=Destroyer(lifecycle=lifecycle, archives_dir=config.archives_dir),
        snapshotter=Snapshotter(
            compose=compose,
            registry=registry,
            snapshots_dir=config.snapshots_dir,
            state_path=config.snapshot.state_path,
            docker_host=config.snapshot.docker_host,
        ),
    )


def _ensure_runtime(ctx: typer.Context, config_file: Path | None) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    try:
        config = load_config(config_file=config_file)
    except ConfigError as exc:
        console.print(f"[red]Configuration error: {escape(str(exc))}[/red]")
        raise typer.Exit(code=ExitCode.ENVIRONMENT) from exc
    runtime = _build_runtime(config)
    ctx.obj = runtime
    return runtime


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    return _ensure_runtime(ctx, None)


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the hatchctl version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if version:
        runtime = _ensure_runtime(ctx, config_file)
        with runtime.logger.operation(
            "root --version",
            args={"version": True},
            target={"kind": "meta", "scope": "version"},
        ) as op:
            console.print(f"hatchctl {__version__}")
            op.success("Reported CLI version.", changed=0)
        raise typer.Exit(code=0)

    _ensure_runtime(ctx, config_file)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=0)


# ----------------------------------------------------------------------
# Error helpers
# ----------------------------------------------------------------------
def _command_error(
    op: OperationScope,
    message: str,
    *,
    rc: int = ExitCode.VALIDATION,
    errors: Sequence[str] | None = None,
) -> NoReturn:
    """Emit a structured error and terminate the command."""
    console.print(f"[red]{escape(message)}[/red]")
    op.error(message, errors=list(errors or [message]), rc=int(rc))
    raise typer.Exit(code=int(rc))


def _exit_code_for(exc: Exception) -> ExitCode:
    """Map a domain exception onto the CLI exit code taxonomy."""
    if isinstance(exc, (InstanceExistsError, PortConflictError, RegistryConflictError)):
        return ExitCode.CONFLICT
    if isinstance(exc, ScaffoldError) and isinstance(exc.__cause__, RegistryConflictError):
        return ExitCode.CONFLICT
    if isinstance(exc, (InstanceNameError, InstanceNotFoundError)):
        return ExitCode.VALIDATION
    if isinstance(exc, PortExhaustedError):
        return ExitCode.ENVIRONMENT
    if isinstance(exc, PortsError):
        return ExitCode.VALIDATION
    if isinstance(exc, (RegistryError, ConfigError)):
        return ExitCode.ENVIRONMENT
    return ExitCode.PROVIDER


def _fail(op: OperationScope, exc: Exception) -> NoReturn:
    _command_error(op, str(exc), rc=_exit_code_for(exc))


def _resolve_batch_names(
    op: OperationScope, name: str | None, all_instances: bool
) -> list[str] | None:
    if name and all_instances:
        _command_error(op, "Pass either an instance NAME or --all, not both.", rc=ExitCode.VALIDATION)
    return [name] if name else None


# ----------------------------------------------------------------------
# Rendering helpers
# ----------------------------------------------------------------------
def _styled(value: str, styles: dict[str, str], *, width: int = 0) -> str:
    style = styles.get(value)
    text = value.rjust(width)
    return f"[{style}]{text}[/{style}]" if style else text


def _location_label(status: InstanceStatus, records: Mapping[str, InstanceRecord]) -> str:
    record = records.get(status.name)
    if record is not None and record.ssh_target:
        return record.ssh_target
    return "local"


def _render_status_table(
    statuses: Sequence[InstanceStatus], records: Mapping[str, InstanceRecord]
) -> None:
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Instance", style="bold")
    table.add_column("Port")
    table.add_column("State")
    table.add_column("Uptime")
    table.add_column("Location")
    table.add_column("Detail")
    if not statuses:
        table.add_row("(none)", "", "", "", "", "")
    for status in statuses:
        name = status.name if status.registered else f"{status.name} (unregistered)"
        table.add_row(
            name,
            str(status.port) if status.port is not None else "?",
            _styled(status.state, _STATE_STYLES),
            status.uptime or "-",
            _location_label(status, records),
            escape(status.detail),
        )
    console.print(table)


def _render_probe_table(results: Sequence[ProbeResult]) -> None:
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Instance", style="bold")
    table.add_column("Port")
    table.add_column("Code")
    table.add_column("Latency")
    table.add_column("Via")
    table.add_column("Error")
    for result in results:
        code_style = "green" if result.healthy else "red"
        latency = f"{result.latency_ms:.0f} ms" if result.latency_ms is not None else "-"
        table.add_row(
            result.name,
            str(result.port),
            f"[{code_style}]{result.display_code}[/{code_style}]",
            latency,
            result.via,
            escape(result.error or ""),
        )
    console.print(table)


def _report_batch(op: OperationScope, result: BatchResult) -> None:
    if not result.outcomes:
        console.print("No instances registered.")
        op.success(f"No instances to {result.action}.", changed=0)
        return
    for outcome in result.outcomes:
        op.add_step(
            f"{result.action}.{outcome.name}", status=_step_status(outcome.status), detail=outcome.detail
        )
        label = _styled(outcome.status, _OUTCOME_STYLES, width=7)
        console.print(f"{label} {outcome.name}: {escape(outcome.detail)}")
    summary = (
        f"{result.action}: {result.count(OUTCOME_SUCCESS)} succeeded, "
        f"{result.count(OUTCOME_FAILED)} failed, {result.count(OUTCOME_SKIPPED)} skipped."
    )
    if not result.ok:
        _command_error(
            op,
            summary,
            rc=ExitCode.PROVIDER,
            errors=[f"{item.name}: {item.detail}" for item in result.failed],
        )
    console.print(summary)
    op.success(summary, changed=result.count(OUTCOME_SUCCESS), context=result.to_dict())


def _step_status(outcome_status: str) -> str:
    if outcome_status == OUTCOME_FAILED:
        return "error"
    if outcome_status == OUTCOME_SKIPPED:
        return "skipped"
    return "success"


# ----------------------------------------------------------------------
# Commands
# ----------------------------------------------------------------------
@app.command()
def create(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Name for the new instance."),
    port: int | None = typer.Option(
        None,
        "--port",
        help="Host port to bind (default: next free port from the configured base).",
    ),
    host: str | None = typer.Option(
        None,
        "--host",
        help="Deploy to a remote Docker host (ssh://[user@]host).",
    ),
    path: str | None = typer.Option(
        None,
        "--path",
        help="Remote directory for the instance (requires --host).",
    ),
) -> None:
    """Scaffold a new instance and register it."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "create",
        args={"name": name, "port": port, "host": host, "path": path},
        target={"kind": "instance", "name": name},
    ) as op:
        if path is not None and host is None:
            _command_error(op, "--path requires --host.", rc=ExitCode.VALIDATION)
        try:
            validate_instance_name(name)
            remote = (
                RemoteTarget.parse(
                    host,
                    name=name,
                    path=path,
                    default_root=runtime.config.remote.default_root,
                )
                if host is not None
                else None
            )
        except (InstanceNameError, RemoteError) as exc:
            _command_error(op, str(exc), rc=ExitCode.VALIDATION)

        try:
            result = runtime.scaffolder.scaffold(name, requested_port=port, remote=remote)
        except (ScaffoldError, PortsError, RegistryError) as exc:
            _fail(op, exc)
        op.add_step("scaffold", detail=str(result.directory))
        op.add_step("registry.upsert", detail=f"port={result.port}")
        source = "auto-assigned" if result.auto_port else "requested"
        console.print(
            f"[green]Created instance '{name}'[/green] on port {result.port} ({source}) at {result.directory}"
        )

        if remote is not None:
            console.print(f"Deploying to {remote.ssh_target}:{remote.path} ...")
            try:
                runtime.deployer.deploy(result.directory, remote)
            except RemoteDeployError as exc:
                op.add_step(f"remote.{exc.stage}", status="error", detail=str(exc))
                _command_error(
                    op,
                    f"Remote deploy failed at '{exc.stage}': {exc}. "
                    f"Instance '{name}' is registered but not deployed.",
                    rc=ExitCode.PROVIDER,
                )
            except RemoteStartError as exc:
                op.add_step("remote.start", status="error", detail=str(exc))
                _command_error(
                    op,
                    f"Instance '{name}' synced to {remote.ssh_target} but not running: {exc}",
                    rc=ExitCode.PROVIDER,
                )
            op.add_step("remote.deploy", detail=f"{remote.ssh_target}:{remote.path}")
            console.print(f"[green]Deployed and started on {remote.ssh_target}.[/green]")

        console.print("\nNext steps:")
        console.print(f"  1. cp {result.directory}/.env.example {result.directory}/.env and add an API key")
        console.print(f"  2. Edit {result.directory}/workspace/SOUL.md to define the instance")
        if remote is None:
            console.print(f"  3. hatchctl start {name}")
        else:
            console.print(
                f"  3. Sync the .env file to {remote.ssh_target}:{remote.path} and run hatchctl update {name}"
            )
        op.success(
            f"Created instance '{name}'.",
            changed=1,
            context={"port": result.port, "directory": result.directory, "remote": bool(remote)},
        )


@app.command()
def status(
    ctx: typer.Context,
    name: str | None = typer.Argument(None, help="Instance to query (default: all)."),
    json_output: bool = JSON_OPTION,
) -> None:
    """Report runtime state for instances, including unregistered directories."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "status",
        args={"name": name, "json": json_output},
        target={"kind": "instance", "name": name or "*"},
    ) as op:
        try:
            statuses = runtime.lifecycle.status([name] if name else None)
            records = runtime.registry.load().instances
        except (LifecycleError, RegistryError) as exc:
            _fail(op, exc)

        if json_output:
            console.print_json(data={"instances": [item.to_dict() for item in statuses]})
        else:
            _render_status_table(statuses, records)
        op.success("Reported instance status.", changed=0, context={"count": len(statuses)})


@app.command()
def health(
    ctx: typer.Context,
    name: str | None = typer.Argument(None, help="Instance to probe (default: all registered)."),
    json_output: bool = JSON_OPTION,
) -> None:
    """Probe ``/health`` on instances, tunnelling over SSH for remote ones."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "health",
        args={"name": name, "json": json_output},
        target={"kind": "instance", "name": name or "*"},
    ) as op:
        try:
            targets = runtime.lifecycle.resolve([name] if name else None)
        except (LifecycleError, RegistryError) as exc:
            _fail(op, exc)

        results = runtime.prober.probe_many(targets)
        for result in results:
            op.add_step(
                f"probe.{result.name}",
                status="success" if result.healthy else "error",
                detail=f"{result.display_code} via {result.via}",
            )

        if json_output:
            console.print_json(data={"results": [result.to_dict() for result in results]})
        elif not results:
            console.print("No instances registered.")
        else:
            _render_probe_table(results)

        unhealthy = [result.name for result in results if not result.healthy]
        if unhealthy:
            _command_error(
                op,
                f"Unhealthy instances: {', '.join(unhealthy)}",
                rc=ExitCode.PROVIDER,
            )
        op.success("All probed instances healthy.", changed=0, context={"count": len(results)})


@app.command()
def start(
    ctx: typer.Context,
    name: str | None = OPTIONAL_NAME_ARGUMENT,
    all_instances: bool = ALL_OPTION,
) -> None:
    """Start one or all instances (``docker compose up -d``)."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "start",
        args={"name": name, "all": all_instances},
        target={"kind": "instance", "name": name or "*"},
    ) as op:
        names = _resolve_batch_names(op, name, all_instances)
        try:
            result = runtime.lifecycle.start(names)
        except (LifecycleError, RegistryError) as exc:
            _fail(op, exc)
        _report_batch(op, result)


@app.command()
def stop(
    ctx: typer.Context,
    name: str | None = OPTIONAL_NAME_ARGUMENT,
    all_instances: bool = ALL_OPTION,
) -> None:
    """Stop one or all instances (``docker compose down``)."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "stop",
        args={"name": name, "all": all_instances},
        target={"kind": "instance", "name": name or "*"},
    ) as op:
        names = _resolve_batch_names(op, name, all_instances)
        try:
            result = runtime.lifecycle.stop(names)
        except (LifecycleError, RegistryError) as exc:
            _fail(op, exc)
        _report_batch(op, result)


@app.command()
def update(
    ctx: typer.Context,
    name: str | None = OPTIONAL_NAME_ARGUMENT,
    all_instances: bool = ALL_OPTION,
) -> None:
    """Rebuild images with fresh base layers and recreate containers."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "update",
        args={"name": name, "all": all_instances},
        target={"kind": "instance", "name": name or "*"},
    ) as op:
        names = _resolve_batch_names(op, name, all_instances)
        try:
            result = runtime.lifecycle.update(names)
        except (LifecycleError, RegistryError) as exc:
            _fail(op, exc)
        _report_batch(op, result)


@app.command()
def logs(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Instance whose container logs to show."),
    follow: bool = typer.Option(
        True,
        "--follow/--no-follow",
        help="Stream new log lines until interrupted.",
    ),
    tail: int | None = typer.Option(
        None,
        "--tail",
        min=0,
        help="Only show the last N lines.",
    ),
) -> None:
    """Show ``docker logs`` for an instance's container."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "logs",
        args={"name": name, "follow": follow, "tail": tail},
        target={"kind": "instance", "name": name},
    ) as op:
        try:
            result = runtime.lifecycle.logs(name, follow=follow, tail=tail)
        except (LifecycleError, RegistryError, ComposeError) as exc:
            _fail(op, exc)
        if not follow:
            typer.echo(result.stdout or "", nl=False)
            if result.stderr:
                typer.echo(result.stderr, nl=False, err=True)
        op.success("Displayed container logs.", changed=0)


@app.command()
def destroy(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Instance to destroy."),
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Do not ask for confirmation.",
    ),
    archive: bool = typer.Option(
        False,
        "--archive",
        help="Archive the instance directory before deleting it.",
    ),
) -> None:
    """Stop an instance, optionally archive it, then unregister and delete it."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "destroy",
        args={"name": name, "force": force, "archive": archive},
        target={"kind": "instance", "name": name},
    ) as op:
        try:
            record, directory = runtime.destroyer.resolve(name)
        except (LifecycleError, RegistryError) as exc:
            _fail(op, exc)

        if not force:
            where = f" on {record.ssh_target}" if record is not None and record.ssh_target else ""
            confirmed = typer.confirm(
                f"Destroy instance '{name}'{where}? This removes its containers, volumes and {directory}.",
                default=False,
            )
            if not confirmed:
                console.print("Aborted; nothing was changed.")
                op.add_step("confirm", status="skipped", detail="declined")
                op.success("Destroy declined by operator.", changed=0)
                return

        try:
            result = runtime.destroyer.destroy(
                name,
                archive=archive,
                on_step=lambda step, state, detail: op.add_step(step, status=state, detail=detail),
            )
        except (DestroyError, LifecycleError, RegistryError) as exc:
            _fail(op, exc)

        if result.archive_path is not None:
            console.print(f"Archived to {result.archive_path}")
        console.print(f"[green]Destroyed instance '{name}'.[/green]")
        op.success(f"Destroyed instance '{name}'.", changed=1, context=result.to_dict())


@app.command(name="monitor")
def monitor_command(
    ctx: typer.Context,
    json_output: bool = JSON_OPTION,
) -> None:
    """Probe every running instance; exit non-zero if any is unhealthy."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "monitor",
        args={"json": json_output},
        target={"kind": "fleet"},
    ) as op:
        try:
            statuses = runtime.lifecycle.status()
            records = runtime.registry.load().instances
        except (LifecycleError, RegistryError) as exc:
            _fail(op, exc)

        report = monitor(runtime.prober, statuses, records)
        if json_output:
            console.print_json(data=report.to_dict())
        elif not report.results:
            console.print("No running instances to probe.")
        else:
            _render_probe_table(report.results)

        if not report.healthy:
            unhealthy = [result.name for result in report.results if not result.healthy]
            _command_error(
                op,
                f"Unhealthy instances: {', '.join(unhealthy)}",
                rc=ExitCode.PROVIDER,
            )
        if not json_output:
            console.print(f"[green]Fleet healthy[/green] ({len(report.results)} checked).")
        op.success("Fleet healthy.", changed=0, context=report.to_dict())


@app.command()
def snapshot(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Running instance to snapshot."),
) -> None:
    """Archive the persisted state of a running instance."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "snapshot",
        args={"name": name},
        target={"kind": "instance", "name": name},
    ) as op:
        try:
            result = runtime.snapshotter.snapshot(name)
        except (SnapshotError, LifecycleError, RegistryError) as exc:
            _fail(op, exc)
        console.print(f"[green]Snapshot written[/green] to {result.archive.path}")
        op.success(f"Snapshot of '{name}' created.", changed=1, context=result.to_dict())


@ports_app.command("list")
def ports_list(
    ctx: typer.Context,
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Emit port assignments as JSON instead of a table.",
    ),
) -> None:
    """List assigned instance ports."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "ports list",
        args={"json": json_output},
        target={"kind": "ports"},
    ) as op:
        try:
            document = runtime.registry.load()
        except RegistryError as exc:
            _fail(op, exc)
        entries = [
            {"port": port, "name": name}
            for port, name in runtime.allocator.list_assignments(document)
        ]

        if json_output:
            console.print_json(data={"ports": entries})
            op.success("Reported port assignments as JSON.", changed=0)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Port", style="bold")
        table.add_column("Instance")

        if not entries:
            table.add_row("(none)", "")
        else:
            for entry in entries:
                table.add_row(str(entry["port"]), str(entry["name"]))

        console.print(table)
        op.success("Reported port assignments.", changed=0)


@config_app.command("show")
def config_show(
    ctx: typer.Context,
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Emit configuration as JSON instead of a table.",
    ),
) -> None:
    """Display the effective configuration after merges."""
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


__all__ = ["RuntimeContext", "app", "main"]
