"""Typer CLI for shipwright: wiring hub for command modules."""

from __future__ import annotations

from typing import Annotated

import typer

from shipwright.cli._helpers import console

app = typer.Typer(
    name="shipwright",
    help="Declarative CI/CD pipeline engine.",
    no_args_is_help=True,
)


def version_callback(value: bool) -> None:
    if value:
        from shipwright import __version__

        console.print(f"shipwright {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option("--version", callback=version_callback, is_eager=True),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", help="Enable debug logging"),
    ] = False,
) -> None:
    """shipwright: deterministic builds, signing profiles and release gates."""
    from shipwright._log import setup_logging

    setup_logging(verbose=verbose)


# ---------------------------------------------------------------------------
# Command registrations: plain functions from *_cmd modules
# ---------------------------------------------------------------------------

from shipwright.cli.run_cmd import run, validate, version  # noqa: E402
from shipwright.cli.store_cmd import history, list_pipelines  # noqa: E402

app.command()(run)
app.command()(validate)
app.command("version")(version)
app.command("list")(list_pipelines)
app.command()(history)
