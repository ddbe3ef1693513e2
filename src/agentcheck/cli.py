"""Command line interface for agentcheck."""
from __future__ import annotations

import json
import textwrap
from collections.abc import Sequence
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from . import __version__
from .config import ConfigError, Settings, default_settings, load_settings, parse_checks
from .context import RunContext
from .diagnostic.accessor import StatusAccessor
from .diagnostic.catalog import DiagnosticCatalog, build_catalog
from .diagnostic.models import DiagnosticId, DiagnosticRunError, Stage, StageName
from .diagnostic.runner import DiagnosticRunner
from .diagnostic.utils import check_rows, snapshot
from .exit_codes import ExitCode
from .http import HttpClient
from .logging import OperationScope, StructuredLogger, configure_logging
from .telemetry import TelemetryError, post_report

console = Console()

CONFIG_FILES_OPTION = typer.Option(
    ...,
    "--config-file",
    "-f",
    dir_okay=False,
    help="Validator YAML config file (repeatable; later files override earlier ones).",
)
JSON_OPTION = typer.Option(
    False,
    "--json",
    help="Emit the report as JSON instead of a table.",
)
TIMEOUT_OPTION = typer.Option(
    None,
    "--timeout",
    min=0.0,
    help="Deadline in seconds applied to every probe in the run.",
)

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Kubernetes agent validator.

        Runs staged diagnostic checks against the cluster the agent is deployed
        into and publishes the resulting report to the cloud API.
        """
    ).strip(),
)
diagnose_app = typer.Typer(help="Run diagnostic checks for a lifecycle stage.")
config_app = typer.Typer(help="Inspect the effective configuration.")

app.add_typer(diagnose_app, name="diagnose")
app.add_typer(config_app, name="config")


@app.callback(invoke_without_command=True)
def _root(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the agentcheck version and exit.",
    ),
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if version:
        console.print(f"agentcheck {__version__}")
        raise typer.Exit(code=0)
    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=0)


def _load_settings(config_files: Sequence[Path]) -> Settings:
    try:
        settings = load_settings(*config_files)
    except ConfigError as exc:
        console.print(f"[red]Invalid configuration: {exc}[/red]")
        raise typer.Exit(code=int(ExitCode.VALIDATION)) from exc
    configure_logging(settings.logging.level)
    return settings


def _render_checks(accessor: StatusAccessor) -> None:
    rows = accessor.read_from_report(lambda report: check_rows(report.checks))
    if not rows:
        console.print("No checks were recorded.")
        return
    table = Table("Name", "Passing", "Error", title="Checks")
    for name, passing, error in rows:
        style = "green" if passing == "yes" else "red"
        table.add_row(name, f"[{style}]{passing}[/{style}]", error)
    console.print(table)


def _publish(
    ctx: RunContext,
    client: HttpClient,
    settings: Settings,
    accessor: StatusAccessor,
    op: OperationScope,
) -> None:
    try:
        post_report(ctx, client, settings, accessor)
    except TelemetryError as exc:
        console.print(f"[yellow]Failed to post status: {exc}[/yellow]")
        op.add_step("telemetry.post", status="failed", detail=str(exc))
        return
    op.add_step("telemetry.post")


def _execute(
    settings: Settings,
    catalog: DiagnosticCatalog,
    stage: StageName,
    op: OperationScope,
    *,
    timeout: float | None,
) -> tuple[RunContext, HttpClient, StatusAccessor]:
    ctx = RunContext.background()
    if timeout is not None:
        ctx = ctx.with_timeout(timeout)
    client = HttpClient()
    runner = DiagnosticRunner(settings, catalog, stage, client=client)
    try:
        accessor = runner.run(ctx)
    except DiagnosticRunError as exc:
        console.print(f"[red]Failed to run diagnostics: {exc}[/red]")
        op.error(
            "Diagnostics aborted.",
            rc=int(ExitCode.DIAGNOSTIC),
            context={"report": snapshot(exc.accessor)},
        )
        raise typer.Exit(code=int(ExitCode.DIAGNOSTIC)) from exc
    op.add_step(f"stage.{stage.value}", detail=f"{len(runner.plan)} checks planned")
    return ctx, client, accessor


def _finish(
    settings: Settings,
    stage: StageName,
    accessor: StatusAccessor,
    op: OperationScope,
) -> None:
    report = snapshot(accessor)
    failing = accessor.read_from_report(
        lambda status: [check.name.value for check in status.failing_checks()]
    )
    if not failing:
        op.success("All checks passed.", context={"report": report})
        return

    enforced = any(item.enforce for item in settings.stage(stage))
    if not enforced:
        op.warning("Checks failed.", warnings=failing, context={"report": report})
        return

    console.print(f"[red]Checks failed in enforced stage {stage.value}.[/red]")
    op.error(
        "Checks failed in an enforced stage.",
        rc=int(ExitCode.CHECKS_FAILED),
        errors=failing,
        context={"report": report},
    )
    raise typer.Exit(code=int(ExitCode.CHECKS_FAILED))


def _run_stage(
    stage: StageName,
    config_files: Sequence[Path],
    *,
    json_output: bool,
    timeout: float | None,
    webhook_configs: Sequence[Path] = (),
    aggregator_configs: Sequence[Path] = (),
) -> None:
    settings = _load_settings(config_files)
    if stage is StageName.CONFIG_LOAD and not settings.stage(stage):
        settings = settings.with_stages(
            *settings.diagnostics.stages,
            Stage(StageName.CONFIG_LOAD, checks=(DiagnosticId.AGENT_SETTINGS,)),
        )
    logger = StructuredLogger(settings.logging.location)
    with logger.operation(
        f"diagnose {stage.value}",
        args={"config_files": list(config_files), "json": json_output, "timeout": timeout},
    ) as op:
        catalog = build_catalog(
            settings,
            webhook_configs=webhook_configs,
            aggregator_configs=aggregator_configs,
        )
        ctx, client, accessor = _execute(settings, catalog, stage, op, timeout=timeout)

        if json_output:
            console.print_json(data=snapshot(accessor))
        else:
            _render_checks(accessor)

        if not settings.cloudzero.disable_telemetry:
            _publish(ctx, client, settings, accessor, op)

        _finish(settings, stage, accessor, op)


@diagnose_app.command("get-available")
def diagnose_get_available() -> None:
    """List the diagnostic checks that can be configured."""
    catalog = build_catalog(default_settings())
    for diagnostic in catalog.list():
        console.print(f"- {diagnostic.value}")


@diagnose_app.command("run")
def diagnose_run(
    checks: list[str] = typer.Option(
        ...,
        "--check",
        help="Check to run (repeatable or comma separated).",
    ),
    config_files: list[Path] = CONFIG_FILES_OPTION,
    post: bool = typer.Option(False, "--post", help="Publish the report when done."),
    timeout: float | None = TIMEOUT_OPTION,
) -> None:
    """Run specific checks as an ad hoc init stage and print the JSON report."""
    requested = [item.strip() for value in checks for item in value.split(",") if item.strip()]
    if not requested:
        return
    settings = _load_settings(config_files)
    try:
        diagnostics = parse_checks(requested)
    except ConfigError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=int(ExitCode.VALIDATION)) from exc
    settings = settings.with_stages(Stage(StageName.INIT, enforce=False, checks=diagnostics))

    logger = StructuredLogger(settings.logging.location)
    with logger.operation(
        "diagnose run",
        args={"checks": requested, "post": post, "timeout": timeout},
    ) as op:
        catalog = build_catalog(settings)
        ctx, client, accessor = _execute(settings, catalog, StageName.INIT, op, timeout=timeout)
        console.print_json(data=snapshot(accessor))
        if post:
            _publish(ctx, client, settings, accessor, op)
        _finish(settings, StageName.INIT, accessor, op)


@diagnose_app.command("pre-start")
def diagnose_pre_start(
    config_files: list[Path] = CONFIG_FILES_OPTION,
    json_output: bool = JSON_OPTION,
    timeout: float | None = TIMEOUT_OPTION,
) -> None:
    """Run the pre-start diagnostics."""
    _run_stage(StageName.INIT, config_files, json_output=json_output, timeout=timeout)


@diagnose_app.command("post-start")
def diagnose_post_start(
    config_files: list[Path] = CONFIG_FILES_OPTION,
    json_output: bool = JSON_OPTION,
    timeout: float | None = TIMEOUT_OPTION,
) -> None:
    """Run the post-start diagnostics."""
    _run_stage(StageName.START, config_files, json_output=json_output, timeout=timeout)


@diagnose_app.command("pre-stop")
def diagnose_pre_stop(
    config_files: list[Path] = CONFIG_FILES_OPTION,
    json_output: bool = JSON_OPTION,
    timeout: float | None = TIMEOUT_OPTION,
) -> None:
    """Run the pre-stop diagnostics."""
    _run_stage(StageName.STOP, config_files, json_output=json_output, timeout=timeout)


@diagnose_app.command("config-load")
def diagnose_config_load(
    config_files: list[Path] = CONFIG_FILES_OPTION,
    webhook_configs: list[Path] = typer.Option(
        ...,
        "--config-webhook",
        dir_okay=False,
        help="Webhook server config file (repeatable).",
    ),
    aggregator_configs: list[Path] = typer.Option(
        ...,
        "--config-aggregator",
        dir_okay=False,
        help="Aggregator config file (repeatable).",
    ),
    json_output: bool = JSON_OPTION,
    timeout: float | None = TIMEOUT_OPTION,
) -> None:
    """Check that every agent component's configuration loads."""
    _run_stage(
        StageName.CONFIG_LOAD,
        config_files,
        json_output=json_output,
        timeout=timeout,
        webhook_configs=webhook_configs,
        aggregator_configs=aggregator_configs,
    )


@config_app.command("show")
def config_show(
    config_files: list[Path] = CONFIG_FILES_OPTION,
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Emit configuration as JSON instead of a table.",
    ),
) -> None:
    """Display the effective configuration after merges."""
    settings = _load_settings(config_files)
    data = settings.to_dict()
    if json_output:
        console.print_json(data=data)
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Key", style="bold")
    table.add_column("Value")
    for key, value in data.items():
        if isinstance(value, (dict, list)):
            rendered = json.dumps(value, indent=2, sort_keys=True)
        else:
            rendered = str(value)
        table.add_row(key, rendered)
    console.print(table)


def main() -> None:
    """Console script entry point."""
    app()


__all__ = ["app", "main"]
