"""watchkeeper command line interface.

Usage:
    watchkeeper plan                          # Show what would change
    watchkeeper update                        # Plan, confirm, apply
    watchkeeper update --yes                  # Apply without prompting
    watchkeeper validate                      # Check project files offline
    watchkeeper --project team-a --kind monitor plan
    watchkeeper --tracking-id 'monitor:team-a:*' plan

Filters given on the command line replace the PROJECT, KIND and
TRACKING_ID environment variables.
"""

from __future__ import annotations

import sys
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass

import click

from .api import Api
from .config import Config
from .engine import Engine
from .errors import WatchkeeperError
from .filter import Filter
from .main import setup_logging
from .planner import Plan

VERSION = "0.1.0"


@dataclass(frozen=True)
class RunOptions:
    """Options shared by every command."""

    scope: Filter


@contextmanager
def handle_errors() -> Iterator[None]:
    """Turn watchkeeper errors into clean CLI failures."""
    try:
        yield
    except WatchkeeperError as e:
        raise click.ClickException(str(e)) from e


def build_scope(
    projects: tuple[str, ...], kinds: tuple[str, ...], tracking_ids: tuple[str, ...]
) -> Filter:
    if not (projects or kinds or tracking_ids):
        return Filter.from_env()
    return Filter(
        projects=frozenset(projects),
        kinds=frozenset(kinds),
        tracking_ids=tuple(tracking_ids),
    )


def prompt_confirm(plan: Plan) -> bool:
    """Ask before applying; non-interactive runs proceed."""
    if not sys.stdin.isatty():
        return True
    return click.confirm("Apply this plan?", default=False)


# =============================================================================
# Main CLI Group
# =============================================================================


@click.group()
@click.version_option(version=VERSION, prog_name="watchkeeper")
@click.option("--project", "projects", multiple=True, help="Only this project (repeatable).")
@click.option("--kind", "kinds", multiple=True, help="Only this resource kind (repeatable).")
@click.option(
    "--tracking-id",
    "tracking_ids",
    multiple=True,
    help="Only tracking ids matching this glob (repeatable).",
)
@click.option("--json-logs", is_flag=True, help="Emit logs as JSON lines.")
@click.pass_context
def cli(
    ctx: click.Context,
    projects: tuple[str, ...],
    kinds: tuple[str, ...],
    tracking_ids: tuple[str, ...],
    json_logs: bool,
) -> None:
    """watchkeeper: monitoring resources as code.

    \b
    Quick Start:
        watchkeeper validate   # Check project files
        watchkeeper plan       # Preview changes
        watchkeeper update     # Apply changes
    """
    setup_logging(json_output=json_logs)
    with handle_errors():
        ctx.obj = RunOptions(scope=build_scope(projects, kinds, tracking_ids))


# =============================================================================
# Commands
# =============================================================================


@cli.command()
@click.pass_obj
def plan(options: RunOptions) -> None:
    """Show the changes an update would make."""
    with handle_errors():
        config = Config.from_env()
        config.require_credentials()
        with Api.from_config(config) as api:
            engine = Engine(config, api=api, scope=options.scope)
            click.echo(engine.plan().render())


@cli.command()
@click.option("--yes", "-y", is_flag=True, help="Apply without asking for confirmation.")
@click.option(
    "--allow-mass-delete",
    is_flag=True,
    help="Apply even if the plan deletes most managed resources in scope.",
)
@click.pass_obj
def update(options: RunOptions, yes: bool, allow_mass_delete: bool) -> None:
    """Plan, confirm and apply changes."""
    with handle_errors():
        config = Config.from_env()
        config.require_credentials()
        with Api.from_config(config) as api:
            engine = Engine(
                config,
                api=api,
                scope=options.scope,
                confirm=(lambda _plan: True) if yes else prompt_confirm,
            )
            click.echo(engine.plan().render())
            report = engine.update(allow_mass_delete=allow_mass_delete)

    if report is None:
        if config.dry_run:
            click.echo("Dry run, nothing applied")
        return

    click.echo(report.render())
    if not report.success:
        sys.exit(1)


@cli.command()
@click.pass_obj
def validate(options: RunOptions) -> None:
    """Check project files and tracking ids without contacting the platform."""
    with handle_errors():
        config = Config.from_env()
        resources = Engine(config, scope=options.scope).validate()
    click.echo(f"{len(resources)} resources valid")


if __name__ == "__main__":
    cli()
