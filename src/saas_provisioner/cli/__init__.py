"""``saas-provisioner``: inspect what the engine has recorded in a state directory."""

from __future__ import annotations

import logging
import sys

import typer

from saas_provisioner import __version__

app = typer.Typer(
    name="saas-provisioner",
    no_args_is_help=True,
    add_completion=False,
)

_LOG_FORMAT = "%(levelname)s %(name)s: %(message)s"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"saas-provisioner {__version__}")
        raise typer.Exit


def verbosity_level(verbose: int) -> int | None:
    """Log level requested by ``-v`` flags, or ``None`` when none were given."""
    if verbose <= 0:
        return None
    return logging.INFO if verbose == 1 else logging.DEBUG


def configure_logging(level: int | None) -> None:
    """Route ``saas_provisioner`` records at *level* and above to stderr.

    With ``None`` logging is left unconfigured, so the CLI stays silent.
    """
    if level is None:
        return
    logging.basicConfig(level=logging.WARNING, format=_LOG_FORMAT, stream=sys.stderr, force=True)
    logging.getLogger("saas_provisioner").setLevel(level)


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    verbose: int = typer.Option(
        0,
        "--verbose",
        "-v",
        count=True,
        help="Log engine activity (-v info, -vv debug); overrides log_level.",
    ),
) -> None:
    """Inspect the recorded state of provisioned SaaS resources."""
    _ = version, verbose


from saas_provisioner.cli import commands as _commands  # noqa: E402, F401
