"""Recovery session models.

A RecoverySession is the top-level record of one workspace-wide recovery
run. It exclusively owns its RecoveryPhase list, and each phase owns its
RecoveryTask list, for the lifetime of the session. Sessions live in
process memory only.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from medic.models.module import _utc_now


class SessionStatus(str, Enum):
    INITIALIZING = "initializing"
    ANALYZING = "analyzing"
    PLANNING = "planning"
    EXECUTING = "executing"
    PAUSED = "paused"
    INTERRUPTED = "interrupted"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class PhaseStatus(str, Enum):
    """Lifecycle of a pipeline phase.

    pending -> ready -> executing -> {completed | failed | skipped | rolled_back}
    """

    PENDING = "pending"
    READY = "ready"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"
    ROLLED_BACK = "rolled_back"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_PHASE_STATUSES


_TERMINAL_PHASE_STATUSES = frozenset({
    PhaseStatus.COMPLETED,
    PhaseStatus.FAILED,
    PhaseStatus.SKIPPED,
    PhaseStatus.ROLLED_BACK,
})


class TaskStatus(str, Enum):
    PENDING = "pending"
    READY = "ready"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"
    RETRYING = "retrying"
    CANCELLED = "cancelled"


class PhaseType(str, Enum):
    STABILIZATION = "stabilization"
    ANALYSIS = "analysis"
    IMPLEMENTATION = "implementation"
    VALIDATION = "validation"
    MONITORING = "monitoring"


class TaskAction(str, Enum):
    """What a scheduled task does to its module."""

    REPAIR = "repair"
    REBUILD = "rebuild"
    TEST = "test"
    VALIDATE = "validate"


class RecoveryAttempt(BaseModel):
    """One attempt at running a task."""

    attempt_number: int = Field(ge=1)
    execution_id: str
    started_at: datetime = Field(default_factory=_utc_now)
    completed_at: datetime | None = None
    status: TaskStatus = TaskStatus.EXECUTING
    health_improvement: int = 0
    output: str | None = None
    error: dict[str, Any] | None = None


class RecoveryTask(BaseModel):
    """Atomic unit of work within a phase, scoped to one module."""

    task_id: str
    phase_id: int = Field(ge=1, le=5)
    module_id: str
    layer: int = Field(ge=0, le=2)
    action: TaskAction
    mandatory: bool = True
    status: TaskStatus = TaskStatus.PENDING
    attempts: list[RecoveryAttempt] = Field(default_factory=list)

    @property
    def task_name(self) -> str:
        return f"{self.action.value} {self.module_id}"

    @property
    def last_attempt(self) -> RecoveryAttempt | None:
        return self.attempts[-1] if self.attempts else None


class RecoveryPhase(BaseModel):
    """One stage of the five-stage workspace recovery pipeline."""

    phase_id: int = Field(ge=1, le=5)
    name: str
    description: str
    phase_type: PhaseType
    status: PhaseStatus = PhaseStatus.PENDING
    estimated_duration: int = Field(ge=0, description="Seconds")
    tasks: list[RecoveryTask] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    health_improvement: int = 0
    start_time: datetime | None = None
    end_time: datetime | None = None
    last_execution_id: str | None = None

    @property
    def tasks_total(self) -> int:
        return len(self.tasks)

    @property
    def tasks_completed(self) -> int:
        return sum(1 for t in self.tasks if t.status == TaskStatus.COMPLETED)

    @property
    def tasks_failed(self) -> int:
        return sum(1 for t in self.tasks if t.status == TaskStatus.FAILED)


class RecoverySession(BaseModel):
    """Top-level record of one end-to-end recovery run."""

    session_id: str = Field(default_factory=lambda: f"session-{uuid.uuid4().hex[:12]}")
    workspace_path: str
    status: SessionStatus = SessionStatus.INITIALIZING
    overall_progress: int = Field(default=0, ge=0, le=100)
    initial_health_score: int = Field(default=0, ge=0, le=100)
    current_health_score: int = Field(default=0, ge=0, le=100)
    health_improvement: int = Field(default=0, ge=0)
    current_phase: int | None = None
    start_time: datetime = Field(default_factory=_utc_now)
    end_time: datetime | None = None
    deadline: datetime | None = None
    phases: list[RecoveryPhase] = Field(default_factory=list)

    def get_phase(self, phase_id: int) -> RecoveryPhase:
        for phase in self.phases:
            if phase.phase_id == phase_id:
                return phase
        raise KeyError(phase_id)


__all__ = [
    "PhaseStatus",
    "PhaseType",
    "RecoveryAttempt",
    "RecoveryPhase",
    "RecoverySession",
    "RecoveryTask",
    "SessionStatus",
    "TaskAction",
    "TaskStatus",
]
