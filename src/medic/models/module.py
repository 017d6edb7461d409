"""Module state models.

Defines the per-module health record shared by the Health Analyzer (reads),
the Recovery Strategy Dispatcher, and the Phase Scheduler (the only
writers), together with the ValidationResult produced by a module check.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, Field, model_validator

from medic.core import constants


def _utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(UTC)


class ModuleStatus(str, Enum):
    """Overall health status of a module."""

    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"
    FAILED = "failed"
    RECOVERING = "recovering"
    UNKNOWN = "unknown"


class BuildStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    BUILDING = "building"
    NOT_STARTED = "not_started"
    CANCELLED = "cancelled"


class TestStatus(str, Enum):
    __test__ = False  # not a pytest test class

    PASSING = "passing"
    FAILING = "failing"
    RUNNING = "running"
    NOT_CONFIGURED = "not_configured"
    NOT_STARTED = "not_started"
    CANCELLED = "cancelled"


class DependencyHealth(str, Enum):
    RESOLVED = "resolved"
    MISSING = "missing"
    CONFLICTED = "conflicted"
    CIRCULAR = "circular"
    OUTDATED = "outdated"


class RecoveryStrategy(str, Enum):
    """Escalating levels of intervention applied to one module."""

    REPAIR = "repair"
    REBUILD = "rebuild"
    RESET = "reset"


class IssueCategory(str, Enum):
    """Classification of a detected issue; drives recommendations."""

    MISSING_DIRECTORY = "missing_directory"
    MISSING_FILE = "missing_file"
    INVALID_PACKAGE_JSON = "invalid_package_json"
    MISSING_DEPENDENCY = "missing_dependency"
    INVALID_TSCONFIG = "invalid_tsconfig"
    COMPILATION = "compilation"
    BUILD = "build"
    TESTS = "tests"
    WORKSPACE_DEPENDENCY = "workspace_dependency"


def status_from_score(score: int) -> ModuleStatus:
    """Derive a module status from a health score."""
    if score >= constants.HEALTHY_THRESHOLD:
        return ModuleStatus.HEALTHY
    if score >= constants.WARNING_THRESHOLD:
        return ModuleStatus.WARNING
    if score >= constants.CRITICAL_THRESHOLD:
        return ModuleStatus.CRITICAL
    if score > 0:
        return ModuleStatus.FAILED
    return ModuleStatus.UNKNOWN


def clamp_score(score: float) -> int:
    """Clamp a raw score into [0, 100]."""
    return int(max(constants.MIN_HEALTH_SCORE, min(constants.MAX_HEALTH_SCORE, round(score))))


class ValidationResult(BaseModel):
    """Outcome of checking one module.

    ``is_valid`` is true iff no issues were found.
    """

    module_id: str
    is_valid: bool
    health_score: int = Field(ge=0, le=100)
    issues: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    categories: list[IssueCategory] = Field(
        default_factory=list,
        description="Distinct issue categories, in first-seen order",
    )

    @model_validator(mode="after")
    def _validity_matches_issues(self) -> ValidationResult:
        if self.is_valid != (not self.issues):
            raise ValueError("is_valid must be true exactly when there are no issues")
        return self


class ModuleState(BaseModel):
    """Current health record of a single module."""

    module_id: str
    layer: int = Field(ge=0, le=2, description="Dependency layer (0 = core)")
    status: ModuleStatus = ModuleStatus.UNKNOWN
    build_status: BuildStatus = BuildStatus.NOT_STARTED
    test_status: TestStatus = TestStatus.NOT_STARTED
    dependency_health: DependencyHealth = DependencyHealth.RESOLVED
    health_score: int = Field(default=0, ge=0, le=100)
    error_count: int = Field(default=0, ge=0)
    warning_count: int = Field(default=0, ge=0)
    issues: list[str] = Field(
        default_factory=list,
        description="Full issue text; empty when error details were not requested",
    )
    recommendations: list[str] = Field(default_factory=list)
    recommended_strategy: RecoveryStrategy | None = None
    workspace_dependencies: list[str] = Field(
        default_factory=list,
        description="Workspace modules this module declares as dependencies",
    )
    last_build_time: datetime | None = None
    last_test_run: datetime | None = None
    last_assessment: datetime | None = None
    last_modified: datetime = Field(default_factory=_utc_now)
    modified_by: str = "system"
    notes: str | None = None
    active_execution_id: str | None = Field(
        default=None,
        description="Execution that owns the module while it is recovering",
    )

    def needs_recovery(self, target_score: int = constants.DEFAULT_TARGET_HEALTH_SCORE) -> bool:
        """True below ``target_score`` or while any error is recorded."""
        return self.health_score < target_score or self.error_count > 0


__all__ = [
    "BuildStatus",
    "DependencyHealth",
    "IssueCategory",
    "ModuleState",
    "ModuleStatus",
    "RecoveryStrategy",
    "TestStatus",
    "ValidationResult",
    "clamp_score",
    "status_from_score",
]
