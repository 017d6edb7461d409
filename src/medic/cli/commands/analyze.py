"""Health analysis commands: ``analyze`` and ``validate-config``."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import typer

from medic.core.config import AnalysisDepth
from medic.engine import RecoveryEngine
from medic.models.workspace import AnalysisOptions

from ..helpers import EXIT_FAILURE, load_cli_config, run_with_engine
from ..output import (
    config_report_panel,
    console,
    module_table,
    output_json,
    workspace_panel,
)

WorkspaceOption = typer.Option(
    None, "--workspace", "-w", help="Workspace root (defaults to current directory)"
)
ConfigOption = typer.Option(None, "--config", "-c", help="Engine config YAML file")


def analyze(
    module_id: str | None = typer.Argument(None, help="Analyze a single module"),
    workspace: Path | None = WorkspaceOption,
    config_file: Path | None = ConfigOption,
    depth: str = typer.Option(
        "detailed", "--depth", "-d", help="basic, detailed or comprehensive"
    ),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
    details: bool = typer.Option(False, "--details", help="Include full issue text"),
) -> None:
    """Assess module health.

    Examples:
        medic analyze                       # Whole workspace
        medic analyze auth --depth basic    # One module, structure only
        medic analyze --json --details      # Machine-readable with issues
    """
    if depth not in ("basic", "detailed", "comprehensive"):
        console.print(f"[red]Error:[/red] invalid depth {depth!r}")
        raise typer.Exit(2)
    analysis_depth: AnalysisDepth = depth  # type: ignore[assignment]
    config = load_cli_config(workspace, config_file)

    if module_id is not None:

        async def _module(engine: RecoveryEngine) -> Any:
            return await engine.analyzer.analyze_module(
                module_id, analysis_depth, include_error_details=True
            )

        state = run_with_engine(config, _module, json_output=json_output)
        if json_output:
            output_json(state.model_dump(mode="json"))
            return
        console.print(module_table([state], show_issues=True))
        for rec in state.recommendations:
            console.print(f"[dim]→ {rec}[/dim]")
        return

    async def _workspace(engine: RecoveryEngine) -> Any:
        return await engine.analyze_workspace(
            AnalysisOptions(analysis_depth=analysis_depth, include_error_details=details)
        )

    health = run_with_engine(config, _workspace, json_output=json_output)
    if json_output:
        output_json(health.model_dump(mode="json"))
        return
    console.print(workspace_panel(health))
    console.print(module_table(health.module_states.values(), show_issues=details))


def validate_config(
    workspace: Path | None = WorkspaceOption,
    config_file: Path | None = ConfigOption,
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
) -> None:
    """Validate the workspace root configuration.

    Exits with code 1 when the configuration has errors.
    """
    config = load_cli_config(workspace, config_file)

    async def _validate(engine: RecoveryEngine) -> Any:
        return engine.validate_configuration()

    report = run_with_engine(config, _validate, json_output=json_output)
    if json_output:
        output_json(report.model_dump(mode="json"))
    else:
        console.print(config_report_panel(report))
    if not report.valid:
        raise typer.Exit(EXIT_FAILURE)
