"""
The ``pgtestbed`` command line: run the PostgreSQL image scenarios on OpenShift.

Usage::

    export IMAGE_NAME=centos/postgresql-96-centos7 VERSION=9.6 OS=centos7

    pgtestbed run                                  # all scenarios, fail-fast
    pgtestbed run -s template -s persistent_redeploy
    pgtestbed run --json                           # machine-readable result

    pgtestbed scenarios                            # list scenarios
    pgtestbed doctor                               # check env vars and CLIs
    pgtestbed clean --prefix pgtest                # delete leftover projects

Exit codes: 0 every selected scenario passed, 1 a scenario failed or the
run errored, 2 configuration error.
"""

from __future__ import annotations

import json
import os
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from pgtestbed import __version__
from pgtestbed.config import LEGACY_IMAGES, REQUIRED_ENV, TestbedConfig, missing_required_env
from pgtestbed.errors import ConfigError, TestbedError
from pgtestbed.logging import configure_logging
from pgtestbed.results import OverallStatus, TestbedRunResult

EXIT_FAILED = 1
EXIT_CONFIG = 2

app = typer.Typer(
    name="pgtestbed",
    help="pgtestbed: integration scenarios for PostgreSQL images on OpenShift.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)
console = Console()
err_console = Console(stderr=True)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from importlib.metadata import PackageNotFoundError
        from importlib.metadata import version as pkg_version

        try:
            v = pkg_version("pg-openshift-testbed")
        except PackageNotFoundError:
            v = __version__
        typer.echo(f"pgtestbed {v}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    log_level: str | None = typer.Option(
        None, "--log-level", help="DEBUG, INFO, WARNING or ERROR (default: $PGTESTBED_LOG_LEVEL or INFO)."
    ),
    log_format: str | None = typer.Option(
        None, "--log-format", help="console or json (default: $PGTESTBED_LOG_FORMAT or console)."
    ),
) -> None:
    """pgtestbed CLI for PostgreSQL images on OpenShift."""
    configure_logging(level=log_level, format=log_format, force=True)
    ctx.obj = {"log_format": log_format}


# ── Run ──────────────────────────────────────────────────────────────────


@app.command()
def run(
    ctx: typer.Context,
    scenario: list[str] = typer.Option(
        [], "--scenario", "-s",
        help="Scenario(s) to run, in order. Repeatable. Use 'all' for all. Default: $PGTESTBED_SCENARIOS or all.",
    ),
    output_dir: Path | None = typer.Option(None, "--output", "-o", help="Output directory."),
    cleanup_on_failure: bool = typer.Option(
        False, "--cleanup-on-failure", help="Delete the project of a failed scenario."
    ),
    json_out: bool = typer.Option(False, "--json", help="Output results as JSON."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output."),
) -> None:
    """Run the scenarios against $IMAGE_NAME.

    Stops at the first failing scenario; later ones are reported as skipped.
    """
    from pgtestbed.runner import TestbedRunner

    try:
        config = TestbedConfig.from_env(
            scenarios=scenario or None,
            output_dir=output_dir,
            cleanup_on_failure=cleanup_on_failure or None,
            verbose=verbose or None,
        )
        if config.verbose:
            configure_logging(level="DEBUG", format=(ctx.obj or {}).get("log_format"), force=True)
        runner = TestbedRunner(config)
        if not json_out:
            console.print(f"[bold]pgtestbed[/] — run_id: {config.run_id}")
            console.print(f"  image:     {config.image_name} ({config.version}, {config.os})")
            console.print(f"  scenarios: {', '.join(config.scenarios)}")
        result = runner.run()
    except ConfigError as e:
        err_console.print(f"[bold red]Configuration error[/bold red]: {e.message}")
        raise typer.Exit(code=EXIT_CONFIG) from e

    if json_out:
        typer.echo(result.model_dump_json(indent=2))
    else:
        _print_run_result(result)
        console.print(f"[dim]Reports: {config.output_dir / config.run_id}[/dim]")

    if not result.success:
        raise typer.Exit(code=EXIT_FAILED)


# ── Scenarios ────────────────────────────────────────────────────────────


@app.command("scenarios")
def list_scenarios(
    json_out: bool = typer.Option(False, "--json", help="Output as JSON."),
) -> None:
    """List available scenarios in run order."""
    from pgtestbed.scenarios import SCENARIOS

    if json_out:
        out = {
            name: {
                "description": spec.description,
                "storage": spec.storage,
                "templates": list(spec.templates),
            }
            for name, spec in SCENARIOS.items()
        }
        typer.echo(json.dumps(out, indent=2))
        return

    table = Table(title="Available Scenarios")
    table.add_column("Name", style="bold cyan")
    table.add_column("Storage")
    table.add_column("Description")

    for name, spec in SCENARIOS.items():
        table.add_row(name, spec.storage, spec.description)

    console.print(table)


# ── Doctor ───────────────────────────────────────────────────────────────


@app.command()
def doctor() -> None:
    """Check that the environment can run the scenarios."""
    from pgtestbed.cluster import OpenShiftClient
    from pgtestbed.container import ContainerRuntime

    checks: list[tuple[str, bool, str]] = []
    missing = missing_required_env()
    checks.append(
        (
            "environment",
            not missing,
            f"missing: {', '.join(missing)}" if missing else ", ".join(REQUIRED_ENV) + " set",
        )
    )
    os_name = os.environ.get("OS", "").strip()
    if os_name:
        checks.append(
            (
                "OS",
                os_name in LEGACY_IMAGES,
                os_name if os_name in LEGACY_IMAGES else f"{os_name} not in {', '.join(sorted(LEGACY_IMAGES))}",
            )
        )
    oc_ok = OpenShiftClient.is_oc_available()
    checks.append(("oc", oc_ok, "logged in" if oc_ok else "not installed or not logged in"))
    docker_ok = ContainerRuntime.is_docker_available()
    checks.append(("docker", docker_ok, "daemon reachable" if docker_ok else "not installed or daemon down"))

    table = Table(title="Environment")
    table.add_column("Check", style="bold")
    table.add_column("Status")
    table.add_column("Detail")
    for name, ok, detail in checks:
        status = "[green]OK[/green]" if ok else "[red]FAIL[/red]"
        table.add_row(name, status, detail)
    console.print(table)

    if not all(ok for _, ok, _ in checks):
        raise typer.Exit(code=EXIT_FAILED)


# ── Clean ────────────────────────────────────────────────────────────────


@app.command("clean")
def clean(
    prefix: str = typer.Option(
        "pgtest", "--prefix", envvar="PGTESTBED_PROJECT_PREFIX", help="Project name prefix."
    ),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
) -> None:
    """Delete projects left behind by earlier runs."""
    from pgtestbed.cluster import OpenShiftClient

    try:
        cluster = OpenShiftClient()
        projects = cluster.list_projects(f"{prefix}-")
    except TestbedError as e:
        err_console.print(f"[red]{e.message}[/]")
        raise typer.Exit(code=EXIT_FAILED) from e

    if not projects:
        console.print(f"[dim]No projects with prefix {prefix}-.[/dim]")
        return

    for name in projects:
        console.print(f"  {name}")
    if not yes and not typer.confirm(f"Delete {len(projects)} project(s)?"):
        raise typer.Exit(code=EXIT_FAILED)

    failed = 0
    for name in projects:
        try:
            cluster.delete_project(name)
        except TestbedError as e:
            failed += 1
            err_console.print(f"[red]{name}: {e.message}[/]")
    console.print(f"[green]Deleted {len(projects) - failed} project(s).[/]")
    if failed:
        raise typer.Exit(code=EXIT_FAILED)


# ── Output formatters ────────────────────────────────────────────────────


def _print_run_result(result: TestbedRunResult) -> None:
    """Pretty-print a TestbedRunResult."""
    table = Table(title="Scenario Results")
    table.add_column("Scenario", style="bold")
    table.add_column("Status")
    table.add_column("Checks")
    table.add_column("Time")
    table.add_column("Project")
    table.add_column("Error")

    for sr in result.scenarios:
        status_style = {
            OverallStatus.PASSED: "green",
            OverallStatus.FAILED: "red",
            OverallStatus.ERROR: "red bold",
            OverallStatus.SKIPPED: "dim",
        }.get(sr.status, "white")

        passed = sum(1 for c in sr.checks if c.passed)
        project = sr.project or "—"
        if sr.project and not sr.project_deleted:
            project = f"{project} (kept)"

        table.add_row(
            sr.name,
            f"[{status_style}]{sr.status.value}[/{status_style}]",
            f"{passed}/{len(sr.checks)}" if sr.checks else "—",
            f"{sr.duration_seconds:.1f}s" if sr.duration_seconds else "—",
            project,
            sr.error or "—",
        )

    console.print(table)

    if result.error:
        err_console.print(f"\n[red]Error: {result.error}[/]")

    style = "green" if result.overall_status == OverallStatus.PASSED else "red"
    console.print(f"\n[bold {style}]{result.overall_status.value}[/] — {result.summary}")
