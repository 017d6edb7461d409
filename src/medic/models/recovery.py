"""Recovery step result models.

A module recovery run (repair, rebuild, or reset) executes ordered steps.
Each step yields exactly one RecoveryPhaseResult, whether it completed,
failed, or was skipped.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from medic.models.module import _utc_now


class StepStatus(str, Enum):
    """Terminal status of one recovery step."""

    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class RecoveryPhaseResult(BaseModel):
    """Result of one recovery step.

    ``tasks_executed`` always equals successful + failed + skipped.
    """

    phase_id: int = Field(ge=1, le=5, description="1-based position of the step in its strategy")
    phase_name: str
    status: StepStatus
    start_time: datetime = Field(default_factory=_utc_now)
    end_time: datetime = Field(default_factory=_utc_now)
    tasks_executed: int = Field(default=0, ge=0)
    tasks_successful: int = Field(default=0, ge=0)
    tasks_failed: int = Field(default=0, ge=0)
    tasks_skipped: int = Field(default=0, ge=0)
    health_improvement: int = Field(default=0, ge=0, le=100)
    errors_resolved: int = Field(default=0, ge=0)
    artifacts: list[str] = Field(default_factory=list)
    logs: list[str] = Field(default_factory=list)
    error: dict[str, Any] | None = Field(
        default=None,
        description="Structured {code, message, details} envelope when the step failed",
    )

    @model_validator(mode="after")
    def _task_counts_balance(self) -> RecoveryPhaseResult:
        total = self.tasks_successful + self.tasks_failed + self.tasks_skipped
        if self.tasks_executed != total:
            raise ValueError(
                f"tasks_executed ({self.tasks_executed}) must equal "
                f"successful+failed+skipped ({total})"
            )
        return self


def total_improvement(results: list[RecoveryPhaseResult]) -> int:
    """Sum the health improvement of completed steps."""
    return sum(r.health_improvement for r in results if r.status == StepStatus.COMPLETED)


class RecoveryResultSummary(BaseModel):
    """Condensed outcome of a strategy run, attached to build and test tickets."""

    strategy: str
    status: StepStatus = Field(description="failed if any step failed, skipped if all were")
    steps: int = Field(ge=0)
    steps_failed: int = Field(default=0, ge=0)
    health_improvement: int = Field(default=0, ge=0)
    errors_resolved: int = Field(default=0, ge=0)

    @classmethod
    def from_results(cls, strategy: str, results: list[RecoveryPhaseResult]) -> RecoveryResultSummary:
        failed = sum(1 for r in results if r.status == StepStatus.FAILED)
        if failed:
            status = StepStatus.FAILED
        elif results and all(r.status == StepStatus.SKIPPED for r in results):
            status = StepStatus.SKIPPED
        else:
            status = StepStatus.COMPLETED
        return cls(
            strategy=strategy,
            status=status,
            steps=len(results),
            steps_failed=failed,
            health_improvement=total_improvement(results),
            errors_resolved=sum(
                r.errors_resolved for r in results if r.status == StepStatus.COMPLETED
            ),
        )


class BuildOptions(BaseModel):
    """Options of a module build request."""

    model_config = ConfigDict(extra="forbid")

    clean_build: bool = Field(True, description="Remove build artifacts before rebuilding")
    skip_tests: bool = Field(False, description="Do not run the test command after the build")
    dependency_resolution: bool = Field(
        True,
        description="Remove node_modules and the lockfile so dependencies resolve from scratch",
    )
    timeout: float | None = Field(
        None, ge=1, description="Budget in seconds for each command; config default when omitted"
    )


class TestOptions(BaseModel):
    """Options of a module test request."""

    __test__ = False

    model_config = ConfigDict(extra="forbid")

    test_suite: str | None = Field(
        None, min_length=1, description="Test file or pattern handed to the test command"
    )
    coverage: bool = Field(False, description="Collect coverage while testing")
    generate_report: bool = Field(True, description="Attach the test command output to the ticket")
    fix_failures: bool = Field(True, description="Run the repair strategy before testing")
    timeout: float | None = Field(
        None, ge=1, description="Budget in seconds for each command; config default when omitted"
    )


class BuildTicket(BaseModel):
    """Response of a module build request."""

    build_id: str
    module_id: str
    build_status: str = "building"
    estimated_duration: int = Field(description="Seconds")
    build_phases: list[str]
    started_at: datetime = Field(default_factory=_utc_now)
    recovery_result: RecoveryResultSummary


class TestTicket(BaseModel):
    """Response of a module test request."""

    __test__ = False

    test_id: str
    module_id: str
    test_status: str
    estimated_duration: int = Field(description="Seconds")
    test_phases: list[str]
    started_at: datetime = Field(default_factory=_utc_now)
    output: str | None = None
    error: dict[str, Any] | None = Field(
        default=None, description="Error envelope when the test command did not finish"
    )
    recovery_result: RecoveryResultSummary


__all__ = [
    "BuildOptions",
    "BuildTicket",
    "RecoveryPhaseResult",
    "RecoveryResultSummary",
    "StepStatus",
    "TestOptions",
    "TestTicket",
    "total_improvement",
]
