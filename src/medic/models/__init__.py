"""Shared data entities read and mutated by the engine components."""

from medic.models.module import (
    BuildStatus,
    DependencyHealth,
    IssueCategory,
    ModuleState,
    ModuleStatus,
    RecoveryStrategy,
    TestStatus,
    ValidationResult,
    clamp_score,
    status_from_score,
)
from medic.models.recovery import (
    BuildOptions,
    BuildTicket,
    RecoveryPhaseResult,
    RecoveryResultSummary,
    StepStatus,
    TestOptions,
    TestTicket,
    total_improvement,
)
from medic.models.session import (
    PhaseStatus,
    PhaseType,
    RecoveryAttempt,
    RecoveryPhase,
    RecoverySession,
    RecoveryTask,
    SessionStatus,
    TaskAction,
    TaskStatus,
)
from medic.models.workspace import (
    AnalysisOptions,
    WorkspaceConfigReport,
    WorkspaceHealth,
    WorkspaceHealthStatus,
)

__all__ = [
    "AnalysisOptions",
    "BuildStatus",
    "BuildOptions",
    "BuildTicket",
    "DependencyHealth",
    "IssueCategory",
    "ModuleState",
    "ModuleStatus",
    "PhaseStatus",
    "PhaseType",
    "RecoveryAttempt",
    "RecoveryPhase",
    "RecoveryPhaseResult",
    "RecoveryResultSummary",
    "RecoverySession",
    "RecoveryStrategy",
    "RecoveryTask",
    "SessionStatus",
    "StepStatus",
    "TaskAction",
    "TaskStatus",
    "TestStatus",
    "TestOptions",
    "TestTicket",
    "ValidationResult",
    "WorkspaceConfigReport",
    "WorkspaceHealth",
    "WorkspaceHealthStatus",
    "clamp_score",
    "status_from_score",
    "total_improvement",
]
