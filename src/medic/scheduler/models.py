"""Request and response models of the phase scheduler."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from medic.core import constants
from medic.models.session import PhaseStatus, PhaseType, RecoveryTask, SessionStatus


class PhaseExecutionOptions(BaseModel):
    """Options accepted by ``execute_phase``. Unknown keys are rejected."""

    model_config = ConfigDict(extra="forbid")

    force_execution: bool = Field(
        default=False,
        description="Run even if the previous phase has not completed",
    )
    skip_validation: bool = Field(
        default=False,
        description="Skip the phase's pre-flight checks",
    )
    parallel_execution: bool = Field(
        default=False,
        description="Run each layer group's tasks concurrently",
    )
    max_concurrency: int = Field(
        default=constants.DEFAULT_MAX_CONCURRENCY,
        ge=constants.MIN_CONCURRENCY,
        le=constants.MAX_CONCURRENCY,
        description="Concurrent task limit when parallel_execution is set",
    )
    timeout: float | None = Field(
        default=None,
        ge=1,
        description="Phase wall-clock budget in seconds; defaults to configuration",
    )
    dry_run: bool = Field(
        default=False,
        description="Report the task plan without claiming or mutating modules",
    )


class ExecutionStatus(str, Enum):
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    PLANNED = "planned"  # dry run

    @property
    def is_terminal(self) -> bool:
        return self != ExecutionStatus.EXECUTING


class PhaseExecution(BaseModel):
    """Pollable record of one phase execution."""

    execution_id: str
    phase_id: int = Field(ge=1, le=5)
    phase_name: str
    status: ExecutionStatus
    phase_status: PhaseStatus
    accepted: bool = Field(
        default=False,
        description="True when the call returned before the execution finished",
    )
    dry_run: bool = False
    options: PhaseExecutionOptions
    started_at: datetime
    completed_at: datetime | None = None
    module_ids: list[str] = Field(default_factory=list)
    tasks_total: int = 0
    tasks_completed: int = 0
    tasks_failed: int = 0
    tasks_skipped: int = 0
    tasks_cancelled: int = 0
    progress: int = Field(default=0, ge=0, le=100)
    health_improvement: int = 0
    cleanup_performed: bool = False
    tasks: list[RecoveryTask] = Field(default_factory=list)
    error: dict[str, Any] | None = None


class CancellationResult(BaseModel):
    execution_id: str
    phase_id: int
    cancelled: bool
    reason: str
    cleanup_performed: bool = False
    status: ExecutionStatus


class PhaseSummary(BaseModel):
    phase_id: int
    name: str
    description: str
    phase_type: PhaseType
    status: PhaseStatus
    estimated_duration: int
    tasks_total: int
    tasks_completed: int
    tasks_failed: int
    health_improvement: int
    errors: list[str] = Field(default_factory=list)
    start_time: datetime | None = None
    end_time: datetime | None = None
    last_execution_id: str | None = None
    tasks: list[RecoveryTask] | None = None


class PhaseOverview(BaseModel):
    """Pipeline state as returned by ``get_phases``."""

    session_id: str
    session_status: SessionStatus
    phases: list[PhaseSummary]
    current_phase: int | None = None
    overall_progress: int = Field(ge=0, le=100)
    total_health_improvement: int = 0
    initial_health_score: int | None = None
    current_health_score: int | None = None
    estimated_completion: datetime | None = None


__all__ = [
    "CancellationResult",
    "ExecutionStatus",
    "PhaseExecution",
    "PhaseExecutionOptions",
    "PhaseOverview",
    "PhaseSummary",
]
