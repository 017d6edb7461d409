"""Medic CLI.

Package structure:
    cli/
    ├── __init__.py           # App assembly and global options
    ├── helpers.py            # Logging state, config loading, engine runner
    ├── output.py             # Rich formatting
    └── commands/
        ├── analyze.py        # analyze, validate-config
        ├── recover.py        # recover
        ├── phases.py         # phases, run-phase
        └── serve.py          # serve
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer

from medic import __version__

from . import helpers as helpers
from .commands import analyze, phases, recover, run_phase, serve, validate_config
from .helpers import (
    configure_global_logging,
    set_log_file,
    set_log_format,
    set_log_level,
)
from .output import console

# =============================================================================
# Typer app definition
# =============================================================================

app = typer.Typer(
    name="medic",
    help="Self-healing orchestration for multi-package workspaces",
    add_completion=False,
)


# =============================================================================
# Global option callbacks
# =============================================================================


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"Medic v{__version__}")
        raise typer.Exit()


def log_level_callback(value: str | None) -> str | None:
    if value:
        set_log_level(value)
    return value


def log_file_callback(value: Path | None) -> Path | None:
    if value:
        set_log_file(value)
    return value


def log_format_callback(value: str | None) -> str | None:
    if value:
        set_log_format(value)
    return value


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
    log_level: Annotated[
        str | None,
        typer.Option(
            "--log-level",
            "-L",
            callback=log_level_callback,
            help="Logging level (DEBUG, INFO, WARNING, ERROR)",
            envvar="MEDIC_LOG_LEVEL",
        ),
    ] = None,
    log_file: Annotated[
        Path | None,
        typer.Option(
            "--log-file",
            callback=log_file_callback,
            help="Path for log file output",
            envvar="MEDIC_LOG_FILE",
        ),
    ] = None,
    log_format: Annotated[
        str | None,
        typer.Option(
            "--log-format",
            callback=log_format_callback,
            help="Log format: json, console, or both",
            envvar="MEDIC_LOG_FORMAT",
        ),
    ] = None,
) -> None:
    """Medic - assess and recover the packages of a workspace."""
    configure_global_logging(console)


# =============================================================================
# Command registration
# =============================================================================

app.command()(analyze)
app.command(name="validate-config")(validate_config)
app.command()(recover)
app.command()(phases)
app.command(name="run-phase")(run_phase)
app.command()(serve)


__all__ = ["app", "console", "main"]
