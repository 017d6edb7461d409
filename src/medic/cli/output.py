"""Rich output formatting for the Medic CLI.

Centralizes the console, status colors, and the table builders shared by
the commands.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from medic.models.module import ModuleState, ModuleStatus
from medic.models.recovery import RecoveryPhaseResult, StepStatus
from medic.models.session import PhaseStatus
from medic.models.workspace import WorkspaceConfigReport, WorkspaceHealth
from medic.scheduler.models import ExecutionStatus, PhaseExecution, PhaseOverview

# =============================================================================
# Shared console instance
# =============================================================================

console = Console()


# =============================================================================
# Color schemes for status values
# =============================================================================


class StatusColors:
    """Color mappings for the engine's status enums."""

    MODULE_STATUS: dict[ModuleStatus, str] = {
        ModuleStatus.HEALTHY: "green",
        ModuleStatus.WARNING: "yellow",
        ModuleStatus.CRITICAL: "red",
        ModuleStatus.FAILED: "bold red",
        ModuleStatus.RECOVERING: "blue",
        ModuleStatus.UNKNOWN: "dim",
    }

    STEP_STATUS: dict[StepStatus, str] = {
        StepStatus.COMPLETED: "green",
        StepStatus.FAILED: "red",
        StepStatus.SKIPPED: "dim",
    }

    PHASE_STATUS: dict[PhaseStatus, str] = {
        PhaseStatus.PENDING: "dim",
        PhaseStatus.READY: "yellow",
        PhaseStatus.EXECUTING: "blue",
        PhaseStatus.COMPLETED: "green",
        PhaseStatus.FAILED: "red",
        PhaseStatus.SKIPPED: "dim",
        PhaseStatus.ROLLED_BACK: "magenta",
    }

    EXECUTION_STATUS: dict[ExecutionStatus, str] = {
        ExecutionStatus.EXECUTING: "blue",
        ExecutionStatus.COMPLETED: "green",
        ExecutionStatus.FAILED: "red",
        ExecutionStatus.CANCELLED: "magenta",
        ExecutionStatus.PLANNED: "cyan",
    }


def colored(value: Any, colors: dict[Any, str]) -> str:
    """Wrap an enum value in its Rich color markup."""
    color = colors.get(value, "white")
    text = value.value if hasattr(value, "value") else str(value)
    return f"[{color}]{text}[/{color}]"


def score_color(score: int) -> str:
    if score >= 90:
        return "green"
    if score >= 70:
        return "yellow"
    return "red"


# =============================================================================
# Errors
# =============================================================================


def output_json(data: Any) -> None:
    """Print JSON without markup processing or line wrapping."""
    console.print_json(data=data, default=str)


def output_envelope(envelope: dict[str, Any], *, json_output: bool = False) -> None:
    """Print a ``{code, message, details}`` error envelope."""
    if json_output:
        output_json(envelope)
        return
    console.print(
        f"[red]Error ({envelope.get('code')}):[/red] {escape(str(envelope.get('message')))}"
    )
    for key, value in (envelope.get("details") or {}).items():
        console.print(f"  [dim]{key}:[/dim] {escape(str(value))}")


# =============================================================================
# Table builders
# =============================================================================


def module_table(states: Iterable[ModuleState], *, show_issues: bool = False) -> Table:
    table = Table(title="Module Health")
    table.add_column("Module", style="cyan")
    table.add_column("Layer", justify="right")
    table.add_column("Score", justify="right")
    table.add_column("Status")
    table.add_column("Errors", justify="right")
    table.add_column("Warnings", justify="right")
    table.add_column("Strategy")
    for state in states:
        color = score_color(state.health_score)
        table.add_row(
            state.module_id,
            str(state.layer),
            f"[{color}]{state.health_score}[/{color}]",
            colored(state.status, StatusColors.MODULE_STATUS),
            str(state.error_count),
            str(state.warning_count),
            state.recommended_strategy.value if state.recommended_strategy else "-",
        )
        if show_issues:
            for issue in state.issues:
                table.add_row("", "", "", "", "", "", f"[dim]{issue}[/dim]")
    return table


def workspace_panel(health: WorkspaceHealth) -> Panel:
    summary = health.module_summary
    score = health.overall_health_score
    readiness = health.recovery_readiness
    lines = [
        f"Workspace: {health.workspace_path}",
        f"Overall score: {score if score is not None else '-'}"
        + (f" ({health.health_status.value})" if health.health_status else ""),
        f"Modules: {summary.total_modules} total, {summary.healthy_modules} healthy, "
        f"{summary.warning_modules} warning, {summary.critical_modules} critical, "
        f"{summary.failed_modules} failed",
        f"Readiness: {readiness.readiness_status} ({readiness.recovery_readiness_score})",
    ]
    for blocker in readiness.recovery_blockers:
        lines.append(f"  [yellow]•[/yellow] {blocker.description}")
    return Panel("\n".join(lines), title="Workspace Health", border_style="blue")


def step_table(results: Iterable[RecoveryPhaseResult]) -> Table:
    table = Table(title="Recovery Steps")
    table.add_column("#", justify="right")
    table.add_column("Step", style="cyan")
    table.add_column("Status")
    table.add_column("Tasks", justify="right")
    table.add_column("Improvement", justify="right")
    table.add_column("Log")
    for result in results:
        table.add_row(
            str(result.phase_id),
            result.phase_name,
            colored(result.status, StatusColors.STEP_STATUS),
            f"{result.tasks_successful}/{result.tasks_executed}",
            f"+{result.health_improvement}",
            "\n".join(result.logs),
        )
    return table


def phase_table(overview: PhaseOverview) -> Table:
    table = Table(title=f"Recovery Pipeline ({overview.session_id})")
    table.add_column("#", justify="right")
    table.add_column("Phase", style="cyan")
    table.add_column("Type")
    table.add_column("Status")
    table.add_column("Tasks", justify="right")
    table.add_column("Improvement", justify="right")
    for phase in overview.phases:
        table.add_row(
            str(phase.phase_id),
            phase.name,
            phase.phase_type.value,
            colored(phase.status, StatusColors.PHASE_STATUS),
            f"{phase.tasks_completed}/{phase.tasks_total}",
            f"+{phase.health_improvement}",
        )
    return table


def execution_panel(execution: PhaseExecution) -> Panel:
    lines = [
        f"Execution: {execution.execution_id}",
        f"Phase: {execution.phase_id} {execution.phase_name}",
        f"Status: {colored(execution.status, StatusColors.EXECUTION_STATUS)}"
        f" (phase {colored(execution.phase_status, StatusColors.PHASE_STATUS)})",
        f"Tasks: {execution.tasks_completed} completed, {execution.tasks_failed} failed, "
        f"{execution.tasks_skipped} skipped, {execution.tasks_cancelled} cancelled "
        f"of {execution.tasks_total}",
        f"Health improvement: +{execution.health_improvement}",
    ]
    if execution.dry_run:
        lines.append("Planned tasks:")
        lines.extend(f"  • {t.task_id}" for t in execution.tasks)
    if execution.error:
        lines.append(f"[red]{execution.error.get('message')}[/red]")
    return Panel("\n".join(lines), title="Phase Execution", border_style="blue")


def config_report_panel(report: WorkspaceConfigReport) -> Panel:
    lines = [f"Valid: {'[green]yes[/green]' if report.valid else '[red]no[/red]'}"]
    lines.extend(f"[red]✗[/red] {e}" for e in report.errors)
    lines.extend(f"[yellow]![/yellow] {w}" for w in report.warnings)
    lines.extend(f"[dim]→ {r}[/dim]" for r in report.recommendations)
    return Panel("\n".join(lines), title="Workspace Configuration", border_style="blue")


__all__ = [
    "StatusColors",
    "colored",
    "config_report_panel",
    "console",
    "execution_panel",
    "module_table",
    "output_envelope",
    "output_json",
    "phase_table",
    "score_color",
    "step_table",
    "workspace_panel",
]
