"""``state`` subcommands: read-only views of a state directory."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Annotated

import typer

from saas_provisioner.cli import app, configure_logging, verbosity_level
from saas_provisioner.cli.errors import handle_error
from saas_provisioner.cli.formatting import format_instances, format_scope_list
from saas_provisioner.config import load, state_store_from_settings
from saas_provisioner.core.state import FileStateStore

state_app = typer.Typer(name="state", help="Inspect recorded state.", no_args_is_help=True)
app.add_typer(state_app, name="state")


@dataclass(frozen=True)
class StateSession:
    """What every ``state`` subcommand works from."""

    store: FileStateStore
    color: bool

    def fail(self, exc: Exception) -> typer.Exit:
        return typer.Exit(handle_error(exc, color=self.color))


def _use_color(no_color: bool) -> bool:
    return not (no_color or os.environ.get("NO_COLOR"))


@state_app.callback()
def state_main(
    ctx: typer.Context,
    config: Annotated[
        Path | None,
        typer.Option("--config", "-c", help="Path to the settings file."),
    ] = None,
    no_color: Annotated[bool, typer.Option("--no-color", help="Disable colored output.")] = False,
) -> None:
    """Inspect recorded state.

    Secrets stay encrypted, so no passphrase is needed.
    """
    color = _use_color(no_color)
    try:
        settings = load(config)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    verbose = ctx.find_root().params.get("verbose", 0)
    configure_logging(verbosity_level(verbose) or settings.log_level_number)
    ctx.obj = StateSession(store=state_store_from_settings(settings), color=color)


@state_app.command(name="list")
def list_cmd(ctx: typer.Context) -> None:
    """List recorded scopes and how many resources each holds."""
    session: StateSession = ctx.obj
    store = session.store
    try:
        counts = [
            (name, len(store.load(name, decrypt=False).resources)) for name in store.list_scopes()
        ]
    except Exception as exc:
        raise session.fail(exc) from exc
    typer.echo(format_scope_list(counts, color=session.color))


@state_app.command(name="show")
def show_cmd(
    ctx: typer.Context,
    scope: Annotated[str, typer.Argument(help="Scope name.")],
) -> None:
    """Show the resources recorded for SCOPE, secrets masked."""
    session: StateSession = ctx.obj
    try:
        instances = session.store.load(scope, decrypt=False).ordered()
    except Exception as exc:
        raise session.fail(exc) from exc
    typer.echo(format_instances(scope, instances, color=session.color))
