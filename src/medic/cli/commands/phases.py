"""Pipeline commands: ``phases`` and ``run-phase``."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

import typer
from pydantic import ValidationError

from medic.engine import RecoveryEngine
from medic.scheduler.models import ExecutionStatus, PhaseExecutionOptions

from ..helpers import EXIT_FAILURE, EXIT_USAGE, load_cli_config, run_with_engine
from ..output import console, execution_panel, output_json, phase_table
from .analyze import ConfigOption, WorkspaceOption

POLL_INTERVAL_SECONDS = 0.5


def phases(
    workspace: Path | None = WorkspaceOption,
    config_file: Path | None = ConfigOption,
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
) -> None:
    """Show the five-phase recovery pipeline."""
    config = load_cli_config(workspace, config_file)

    async def _phases(engine: RecoveryEngine) -> Any:
        return await engine.get_phases(include_tasks=False)

    overview = run_with_engine(config, _phases, json_output=json_output)
    if json_output:
        output_json(overview.model_dump(mode="json"))
        return
    console.print(phase_table(overview))
    console.print(
        f"Progress: {overview.overall_progress}%  "
        f"health {overview.initial_health_score} → {overview.current_health_score}"
    )


def run_phase(
    phase_id: str = typer.Argument(..., help="Phase number (1-5)"),
    force: bool = typer.Option(False, "--force", help="Run even if the previous phase is incomplete"),
    skip_validation: bool = typer.Option(
        False, "--skip-validation", help="Skip the phase's pre-flight checks"
    ),
    parallel: bool = typer.Option(False, "--parallel", help="Run each layer group concurrently"),
    max_concurrency: int | None = typer.Option(
        None, "--max-concurrency", min=1, max=10, help="Concurrent task limit"
    ),
    timeout: float | None = typer.Option(None, "--timeout", help="Phase budget in seconds"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show the task plan only"),
    workspace: Path | None = WorkspaceOption,
    config_file: Path | None = ConfigOption,
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
) -> None:
    """Execute one pipeline phase and wait for it to finish.

    Sessions are not persisted, so within one CLI invocation earlier phases
    have not run: use --force to run a later phase on its own.

    Examples:
        medic run-phase 1
        medic run-phase 3 --force --parallel --max-concurrency 4
        medic run-phase 2 --dry-run --force
    """
    config = load_cli_config(workspace, config_file)
    options: dict[str, Any] = {
        "force_execution": force,
        "skip_validation": skip_validation,
        "parallel_execution": parallel,
        "dry_run": dry_run,
    }
    if max_concurrency is not None:
        options["max_concurrency"] = max_concurrency
    if timeout is not None:
        options["timeout"] = timeout
    try:
        parsed = PhaseExecutionOptions(**options)
    except ValidationError as e:
        console.print(f"[red]Error:[/red] invalid phase options: {e.error_count()} error(s)")
        raise typer.Exit(EXIT_USAGE) from None

    async def _run(engine: RecoveryEngine) -> Any:
        execution = await engine.execute_phase(phase_id, parsed)
        while not execution.status.is_terminal:
            await asyncio.sleep(POLL_INTERVAL_SECONDS)
            execution = engine.get_execution_status(execution.execution_id)
        return execution

    execution = run_with_engine(config, _run, json_output=json_output)
    if json_output:
        output_json(execution.model_dump(mode="json"))
    else:
        console.print(execution_panel(execution))

    if execution.status not in (ExecutionStatus.COMPLETED, ExecutionStatus.PLANNED):
        raise typer.Exit(EXIT_FAILURE)
