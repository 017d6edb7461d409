"""Workspace-level health models.

WorkspaceHealth aggregates every module's state into summary counts, a
weighted overall score, per-layer health, a cross-module dependency graph,
and an assessment of how ready the workspace is for recovery.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from medic.core.config import AnalysisDepth
from medic.models.module import ModuleState, RecoveryStrategy, _utc_now

Severity = Literal["low", "medium", "high", "critical"]


class WorkspaceHealthStatus(str, Enum):
    EXCELLENT = "excellent"  # 90-100
    GOOD = "good"  # 70-89
    FAIR = "fair"  # 50-69
    POOR = "poor"  # 30-49
    CRITICAL = "critical"  # 10-29
    FAILED = "failed"  # 0-9


def workspace_status_from_score(score: int) -> WorkspaceHealthStatus:
    if score >= 90:
        return WorkspaceHealthStatus.EXCELLENT
    if score >= 70:
        return WorkspaceHealthStatus.GOOD
    if score >= 50:
        return WorkspaceHealthStatus.FAIR
    if score >= 30:
        return WorkspaceHealthStatus.POOR
    if score >= 10:
        return WorkspaceHealthStatus.CRITICAL
    return WorkspaceHealthStatus.FAILED


class AnalysisOptions(BaseModel):
    """Options recognized by ``analyze_workspace``. Unknown keys are rejected."""

    model_config = ConfigDict(extra="forbid")

    include_health_metrics: bool = Field(
        default=True,
        description="Compute derived scores; when false only raw counts are returned",
    )
    include_dependency_graph: bool = Field(
        default=True,
        description="Build cross-module edges and score workspace dependency issues",
    )
    include_error_details: bool = Field(
        default=False,
        description="Attach full issue text to each module state",
    )
    analysis_depth: AnalysisDepth = Field(
        default="detailed",
        description="basic: structure only; detailed: + configuration; "
        "comprehensive: + type-check, build and tests",
    )
    module_filter: list[str] | None = Field(
        default=None,
        description="Restrict the analysis to these module ids",
    )


class HealthDistribution(BaseModel):
    excellent: int = 0
    good: int = 0
    fair: int = 0
    poor: int = 0
    critical: int = 0
    failed: int = 0


class ModuleSummary(BaseModel):
    total_modules: int = 0
    healthy_modules: int = 0
    warning_modules: int = 0
    critical_modules: int = 0
    failed_modules: int = 0
    recovering_modules: int = 0
    unknown_modules: int = 0
    health_distribution: HealthDistribution | None = None
    high_priority_modules: list[str] = Field(default_factory=list)
    medium_priority_modules: list[str] = Field(default_factory=list)
    low_priority_modules: list[str] = Field(default_factory=list)


class LayerHealthMetrics(BaseModel):
    layer: int
    layer_name: str
    modules: list[str] = Field(default_factory=list)
    average_health_score: int = 0
    health_status: WorkspaceHealthStatus = WorkspaceHealthStatus.FAILED
    critical_issues: int = 0
    blocked_modules: list[str] = Field(default_factory=list)
    blocking_modules: list[str] = Field(default_factory=list)
    layer_stable: bool = False


class LayerDependencyIssue(BaseModel):
    from_layer: int
    to_layer: int
    issue_type: Literal["upward_dependency", "circular_dependency", "missing_dependency"]
    affected_modules: list[str]
    severity: Severity
    description: str


class LayerHealth(BaseModel):
    layers: list[LayerHealthMetrics]
    layer_dependency_issues: list[LayerDependencyIssue] = Field(default_factory=list)
    layer_isolation_valid: bool = True


class DependencyNode(BaseModel):
    node_id: str
    layer: int
    status: str
    dependency_count: int = 0
    dependent_count: int = 0


class DependencyEdge(BaseModel):
    from_node: str
    to_node: str
    satisfied: bool = True
    issues: list[str] = Field(default_factory=list)


class CircularDependency(BaseModel):
    cycle: list[str]
    severity: Severity = "high"
    resolution_strategy: str = "Break the cycle by moving shared code into a lower layer"


class DependencyGraph(BaseModel):
    nodes: list[DependencyNode] = Field(default_factory=list)
    edges: list[DependencyEdge] = Field(default_factory=list)
    circular_dependencies: list[CircularDependency] = Field(default_factory=list)
    orphaned_nodes: list[str] = Field(default_factory=list)
    dependency_depth: dict[str, int] = Field(default_factory=dict)
    critical_path: list[str] = Field(default_factory=list)


class RecoveryBlocker(BaseModel):
    blocker_id: str
    blocker_type: Literal["dependency", "resource", "configuration", "external"]
    description: str
    severity: Severity
    affected_modules: list[str] = Field(default_factory=list)
    resolution_required: bool = True


class RecoveryReadiness(BaseModel):
    recovery_readiness_score: int = Field(ge=0, le=100)
    readiness_status: Literal["ready", "partial", "not_ready"]
    recovery_blockers: list[RecoveryBlocker] = Field(default_factory=list)
    prerequisite_actions: list[str] = Field(default_factory=list)
    recommended_strategies: dict[str, RecoveryStrategy] = Field(default_factory=dict)
    estimated_recovery_time: int = Field(default=0, description="Seconds, sequential")
    parallel_recovery_time: int = Field(default=0, description="Seconds, fully parallel")
    recovery_complexity: Literal["simple", "moderate", "complex", "critical"] = "simple"


class WorkspaceConfigReport(BaseModel):
    """Result of validating the workspace root configuration."""

    valid: bool
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)


class WorkspaceHealth(BaseModel):
    """Aggregate health of the whole workspace."""

    workspace_path: str
    assessed_at: datetime = Field(default_factory=_utc_now)
    analysis_depth: AnalysisDepth
    module_states: dict[str, ModuleState]
    module_summary: ModuleSummary
    overall_health_score: int | None = Field(
        default=None,
        description="Layer-weighted mean of module scores; None when metrics were not requested",
    )
    health_status: WorkspaceHealthStatus | None = None
    layer_health: LayerHealth | None = None
    dependency_graph: DependencyGraph | None = None
    recovery_readiness: RecoveryReadiness


__all__ = [
    "AnalysisOptions",
    "CircularDependency",
    "DependencyEdge",
    "DependencyGraph",
    "DependencyNode",
    "HealthDistribution",
    "LayerDependencyIssue",
    "LayerHealth",
    "LayerHealthMetrics",
    "ModuleSummary",
    "RecoveryBlocker",
    "RecoveryReadiness",
    "Severity",
    "WorkspaceConfigReport",
    "WorkspaceHealth",
    "WorkspaceHealthStatus",
    "workspace_status_from_score",
]
