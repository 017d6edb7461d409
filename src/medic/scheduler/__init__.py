"""Five-phase workspace recovery pipeline."""

from medic.scheduler.models import (
    CancellationResult,
    ExecutionStatus,
    PhaseExecution,
    PhaseExecutionOptions,
    PhaseOverview,
    PhaseSummary,
)
from medic.scheduler.pipeline import PIPELINE, PhaseDefinition, build_session, get_definition
from medic.scheduler.scheduler import PhaseScheduler, validate_phase_id

__all__ = [
    "CancellationResult",
    "ExecutionStatus",
    "PIPELINE",
    "PhaseDefinition",
    "PhaseExecution",
    "PhaseExecutionOptions",
    "PhaseOverview",
    "PhaseScheduler",
    "PhaseSummary",
    "build_session",
    "get_definition",
    "validate_phase_id",
]
