"""``recover`` command: run one recovery strategy against one module."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import typer

from medic.engine import RecoveryEngine
from medic.models.recovery import StepStatus, total_improvement

from ..helpers import EXIT_FAILURE, load_cli_config, run_with_engine
from ..output import console, output_json, step_table
from .analyze import ConfigOption, WorkspaceOption


def recover(
    module_id: str = typer.Argument(..., help="Module to recover"),
    strategy: str = typer.Option(
        "repair", "--strategy", "-s", help="repair, rebuild or reset"
    ),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show the steps without running them"),
    no_tests: bool = typer.Option(False, "--no-tests", help="Skip tests after a rebuild"),
    workspace: Path | None = WorkspaceOption,
    config_file: Path | None = ConfigOption,
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
) -> None:
    """Recover a module with a repair, rebuild or reset strategy.

    Exits with code 1 if any step failed.

    Examples:
        medic recover auth                     # Repair in place
        medic recover auth -s rebuild          # Clean rebuild
        medic recover payments -s reset --dry-run
    """
    config = load_cli_config(workspace, config_file)

    async def _recover(engine: RecoveryEngine) -> Any:
        results = await engine.recover_module(
            module_id, strategy, dry_run=dry_run, include_tests=not no_tests
        )
        return results, engine.store.get(module_id).health_score

    results, score = run_with_engine(config, _recover, json_output=json_output)
    failed = any(r.status == StepStatus.FAILED for r in results)

    if json_output:
        output_json({
            "module_id": module_id,
            "strategy": strategy,
            "dry_run": dry_run,
            "health_score": score,
            "results": [r.model_dump(mode="json") for r in results],
        })
    else:
        console.print(step_table(results))
        for result in results:
            if result.error:
                console.print(f"[red]{result.phase_name}:[/red] {result.error.get('message')}")
        if not dry_run:
            console.print(
                f"Health improvement: [green]+{total_improvement(results)}[/green]  "
                f"score now {score}"
            )

    if failed:
        raise typer.Exit(EXIT_FAILURE)
