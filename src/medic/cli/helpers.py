"""Shared helpers for the Medic CLI: logging state, config and engine setup."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Literal, TypeVar

import typer
from rich.console import Console

from medic.core.config import MedicConfig, load_config
from medic.core.errors import MedicError
from medic.core.logging import configure_logging, get_logger
from medic.engine import RecoveryEngine

from .output import console, output_envelope

_logger = get_logger("cli")

T = TypeVar("T")

# Error codes that indicate bad input rather than a failed operation
USAGE_ERROR_CODES: frozenset[str] = frozenset({
    "CONFIGURATION_ERROR",
    "INVALID_PHASE_ID",
    "MODULE_NOT_FOUND",
    "UNSUPPORTED_STRATEGY",
})

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2


# =============================================================================
# Logging configuration
# =============================================================================


@dataclass
class CliLoggingConfig:
    """Logging options collected from the global CLI flags."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "WARNING"
    file: Path | None = None
    format: Literal["json", "console", "both"] = "console"
    configured: bool = False
    overridden: bool = False  # a global flag was given


_log_config = CliLoggingConfig()


def set_log_level(level: str) -> None:
    _log_config.level = level.upper()  # type: ignore[assignment]
    _log_config.overridden = True


def set_log_file(path: Path | None) -> None:
    _log_config.file = path
    _log_config.overridden = True


def set_log_format(fmt: str) -> None:
    _log_config.format = fmt  # type: ignore[assignment]
    _log_config.overridden = True


def configure_global_logging(console: Console) -> None:
    """Configure logging from the global options, once per process.

    Raises:
        typer.Exit: If the logging options are inconsistent.
    """
    if _log_config.configured:
        return
    try:
        configure_logging(
            level=_log_config.level,
            format=_log_config.format,
            file_path=_log_config.file,
        )
        _log_config.configured = True
    except ValueError as e:
        console.print(f"[red]Logging configuration error:[/red] {e}")
        raise typer.Exit(EXIT_USAGE) from None


def reset_logging_state() -> None:
    """Reset logging state so tests can reconfigure it."""
    _log_config.level = "WARNING"
    _log_config.file = None
    _log_config.format = "console"
    _log_config.configured = False
    _log_config.overridden = False


# =============================================================================
# Engine setup
# =============================================================================


def load_cli_config(workspace: Path | None, config_file: Path | None) -> MedicConfig:
    """Load the engine config for a command.

    Raises:
        typer.Exit: With code 2 if the config cannot be loaded.
    """
    try:
        config = load_config(config_file, workspace=(workspace or Path.cwd()).resolve())
    except MedicError as e:
        output_envelope(e.to_envelope())
        raise typer.Exit(EXIT_USAGE) from None
    if "logging" in config.model_fields_set and not _log_config.overridden:
        _apply_config_logging(config)
    return config


def _apply_config_logging(config: MedicConfig) -> None:
    """Reconfigure logging from the config file's ``logging`` section.

    Raises:
        typer.Exit: If the section is inconsistent.
    """
    settings = config.logging
    try:
        configure_logging(level=settings.level, format=settings.format, file_path=settings.file)
    except ValueError as e:
        console.print(f"[red]Logging configuration error:[/red] {e}")
        raise typer.Exit(EXIT_USAGE) from None


def create_engine(config: MedicConfig) -> RecoveryEngine:
    """Build the engine used by CLI commands."""
    return RecoveryEngine(config)


def run_with_engine(
    config: MedicConfig,
    action: Callable[[RecoveryEngine], Awaitable[T]],
    *,
    json_output: bool = False,
) -> T:
    """Run ``action`` against a fresh engine, rendering engine errors.

    Raises:
        typer.Exit: With code 2 for usage errors, 1 for other engine errors.
    """

    async def _run() -> T:
        engine = create_engine(config)
        try:
            return await action(engine)
        finally:
            await engine.close()

    try:
        return asyncio.run(_run())
    except MedicError as e:
        _logger.debug("cli.command_failed", code=e.code)
        output_envelope(e.to_envelope(), json_output=json_output)
        raise typer.Exit(EXIT_USAGE if e.code in USAGE_ERROR_CODES else EXIT_FAILURE) from None


__all__ = [
    "CliLoggingConfig",
    "EXIT_FAILURE",
    "EXIT_OK",
    "EXIT_USAGE",
    "configure_global_logging",
    "create_engine",
    "load_cli_config",
    "reset_logging_state",
    "run_with_engine",
    "set_log_file",
    "set_log_format",
    "set_log_level",
]
