"""converge CLI.

Usage:
    converge apply infra.py                 # Reconcile the resources infra.py declares
    converge apply infra.py --local         # Dry run: synthesize outputs, no Azure calls
    converge destroy infra.py --stage prod  # Delete everything recorded for the stage
"""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path

import click

from .main import EXIT_SUCCESS, main as run_main, setup_logging
from .materializer import RunReport

VERSION = "0.1.0"


def _print_report(report: RunReport) -> None:
    click.echo(f"Applied: {len(report.applied)}  Deleted: {len(report.deleted)}")
    click.echo(f"Duration: {report.duration_seconds:.1f}s")

    for key in report.deleted:
        click.echo(f"  - deleted {key}")

    for key, error in report.failed.items():
        click.secho(f"  ✗ {key}: {error}", fg="red")
    for key, error in report.delete_failures.items():
        click.secho(f"  ✗ delete {key}: {error}", fg="red")

    if report.success:
        click.secho("✓ Run succeeded", fg="green")
    else:
        click.secho("✗ Run failed", fg="red")


def _run(
    program: Path,
    *,
    destroy: bool,
    app_name: str | None,
    stage: str | None,
    local: bool | None,
    adopt: bool | None,
    verbose: bool,
) -> None:
    setup_logging(logging.DEBUG if verbose else logging.INFO)
    exit_code, report = asyncio.run(
        run_main(
            program,
            destroy=destroy,
            app_name=app_name,
            stage=stage,
            local=local,
            adopt=adopt,
        )
    )
    if report is not None:
        _print_report(report)
    elif exit_code != EXIT_SUCCESS:
        click.secho("✗ Run did not start or was aborted, see log for details", fg="red", err=True)
    sys.exit(exit_code)


def run_options(func):  # type: ignore[no-untyped-def]
    """Options shared by apply and destroy."""
    func = click.argument(
        "program", type=click.Path(exists=True, dir_okay=False, path_type=Path)
    )(func)
    func = click.option("--app", "app_name", help="Application name (default: $APP_NAME)")(func)
    func = click.option("--stage", help="Stage name (default: $STAGE, then $USER)")(func)
    func = click.option(
        "--local/--no-local", default=None, help="Synthesize outputs without calling Azure"
    )(func)
    func = click.option(
        "--adopt/--no-adopt", default=None, help="Adopt pre-existing resources by default"
    )(func)
    func = click.option("--verbose", "-v", is_flag=True, help="Debug logging")(func)
    return func


@click.group()
@click.version_option(version=VERSION, prog_name="converge")
def cli() -> None:
    """converge: reconcile declared Azure resources.

    \b
    Quick Start:
        converge apply infra.py --local   # Validate the declaration graph
        converge apply infra.py           # Create/update/replace resources
        converge destroy infra.py         # Tear everything down
    """
    pass


@cli.command()
@run_options
def apply(
    program: Path,
    app_name: str | None,
    stage: str | None,
    local: bool | None,
    adopt: bool | None,
    verbose: bool,
) -> None:
    """Reconcile the resources PROGRAM declares and delete orphans."""
    _run(
        program,
        destroy=False,
        app_name=app_name,
        stage=stage,
        local=local,
        adopt=adopt,
        verbose=verbose,
    )


@cli.command()
@run_options
def destroy(
    program: Path,
    app_name: str | None,
    stage: str | None,
    local: bool | None,
    adopt: bool | None,
    verbose: bool,
) -> None:
    """Delete every resource recorded for the app and stage."""
    _run(
        program,
        destroy=True,
        app_name=app_name,
        stage=stage,
        local=local,
        adopt=adopt,
        verbose=verbose,
    )


# =============================================================================
# Entry Point
# =============================================================================


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
