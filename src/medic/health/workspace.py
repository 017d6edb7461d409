"""Workspace-level aggregation.

Pure functions that turn per-module check reports and states into the
cross-module views of WorkspaceHealth: the dependency graph (with cycles,
depths and the critical path), workspace dependency issues fed back into
module scores, per-layer health, summary counts, and recovery readiness.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from pathlib import Path

from medic.core import constants
from medic.health.checks import CheckReport
from medic.models.module import (
    DependencyHealth,
    IssueCategory,
    ModuleState,
    ModuleStatus,
    RecoveryStrategy,
)
from medic.models.workspace import (
    CircularDependency,
    DependencyEdge,
    DependencyGraph,
    DependencyNode,
    HealthDistribution,
    LayerDependencyIssue,
    LayerHealth,
    LayerHealthMetrics,
    ModuleSummary,
    RecoveryBlocker,
    RecoveryReadiness,
    WorkspaceConfigReport,
    workspace_status_from_score,
)
from medic.modules.catalogue import ModuleRegistry
from medic.modules.descriptor import LAYER_NAMES

_SEVERITY_PENALTY: dict[str, int] = {"critical": 40, "high": 25, "medium": 10, "low": 5}


# =============================================================================
# Dependency graph
# =============================================================================


def find_cycles(edges: Mapping[str, Iterable[str]]) -> list[list[str]]:
    """Find elementary cycles reachable by depth-first search.

    Each cycle is rotated to start at its smallest id and reported once,
    closed (first id repeated at the end).
    """
    seen: set[tuple[str, ...]] = set()
    cycles: list[list[str]] = []
    visiting: list[str] = []
    on_stack: set[str] = set()
    done: set[str] = set()

    def visit(node: str) -> None:
        visiting.append(node)
        on_stack.add(node)
        for target in edges.get(node, ()):
            if target in on_stack:
                cycle = visiting[visiting.index(target):]
                start = cycle.index(min(cycle))
                rotated = tuple(cycle[start:] + cycle[:start])
                if rotated not in seen:
                    seen.add(rotated)
                    cycles.append([*rotated, rotated[0]])
            elif target not in done and target in edges:
                visit(target)
        visiting.pop()
        on_stack.discard(node)
        done.add(node)

    for node in sorted(edges):
        if node not in done:
            visit(node)
    return cycles


def _longest_chains(edges: Mapping[str, list[str]]) -> dict[str, list[str]]:
    """Longest acyclic dependency chain starting at each node."""

    def chain(node: str, path: frozenset[str]) -> list[str]:
        best: list[str] = []
        for target in edges.get(node, []):
            if target in path or target not in edges:
                continue
            candidate = chain(target, path | {target})
            if len(candidate) > len(best):
                best = candidate
        return [node, *best]

    return {node: chain(node, frozenset({node})) for node in sorted(edges)}


def apply_workspace_dependency_issues(
    reports: Mapping[str, CheckReport],
    registry: ModuleRegistry,
    packages_path: Path,
) -> list[list[str]]:
    """Score unresolved workspace dependencies onto each report.

    Each problem costs WORKSPACE_DEPENDENCY_PENALTY: a dependency on an
    unknown module or a missing module directory (missing), on a higher
    layer (conflicted), or participation in a cycle (circular).

    Returns:
        The detected cycles.
    """
    edges = {module_id: r.workspace_dependencies for module_id, r in reports.items()}
    cycles = find_cycles(edges)

    for module_id, report in reports.items():
        if not report.directory_exists:
            continue
        layer = report.descriptor.layer
        for dep_id in report.workspace_dependencies:
            target = registry.find(dep_id)
            if target is None:
                _dependency_issue(
                    report,
                    f"Workspace dependency '{dep_id}' is not a known module",
                    DependencyHealth.MISSING,
                )
            elif not (packages_path / dep_id).is_dir():
                _dependency_issue(
                    report,
                    f"Workspace dependency '{dep_id}' module directory does not exist",
                    DependencyHealth.MISSING,
                )
            elif target.layer > layer:
                _dependency_issue(
                    report,
                    f"Workspace dependency '{dep_id}' is in a higher layer "
                    f"({target.layer} > {layer})",
                    DependencyHealth.CONFLICTED,
                )

    for cycle in cycles:
        text = " -> ".join(cycle)
        for module_id in dict.fromkeys(cycle):
            report = reports[module_id]
            if report.directory_exists:
                _dependency_issue(
                    report, f"Circular workspace dependency: {text}", DependencyHealth.CIRCULAR
                )
    return cycles


def _dependency_issue(report: CheckReport, message: str, health: DependencyHealth) -> None:
    report.add_issue(
        message, IssueCategory.WORKSPACE_DEPENDENCY, constants.WORKSPACE_DEPENDENCY_PENALTY
    )
    report.mark_dependency_health(health)


def build_dependency_graph(
    states: Mapping[str, ModuleState],
    packages_path: Path,
    cycles: list[list[str]],
) -> DependencyGraph:
    """Build nodes and edges from each module's declared workspace dependencies."""
    edges_by_node = {m: list(s.workspace_dependencies) for m, s in states.items()}
    dependents: dict[str, int] = dict.fromkeys(states, 0)
    edges: list[DependencyEdge] = []
    for module_id, deps in edges_by_node.items():
        for dep_id in deps:
            issues: list[str] = []
            target = states.get(dep_id)
            if not (packages_path / dep_id).is_dir():
                issues.append("target module directory does not exist")
            elif target is not None and target.layer > states[module_id].layer:
                issues.append("dependency points to a higher layer")
            if dep_id in dependents:
                dependents[dep_id] += 1
            edges.append(
                DependencyEdge(
                    from_node=module_id,
                    to_node=dep_id,
                    satisfied=not issues,
                    issues=issues,
                )
            )

    nodes = [
        DependencyNode(
            node_id=module_id,
            layer=state.layer,
            status=state.status.value,
            dependency_count=len(edges_by_node[module_id]),
            dependent_count=dependents[module_id],
        )
        for module_id, state in states.items()
    ]
    chains = _longest_chains(edges_by_node)
    critical_path = max(chains.values(), key=len, default=[])
    return DependencyGraph(
        nodes=nodes,
        edges=edges,
        circular_dependencies=[CircularDependency(cycle=c) for c in cycles],
        orphaned_nodes=[n.node_id for n in nodes if not n.dependency_count and not n.dependent_count],
        dependency_depth={module_id: len(chain) - 1 for module_id, chain in chains.items()},
        critical_path=critical_path if len(critical_path) > 1 else [],
    )


# =============================================================================
# Summary and layer health
# =============================================================================


def weighted_workspace_score(states: Iterable[ModuleState]) -> int:
    """Layer-weighted mean of module scores (core modules count most)."""
    total = 0
    weight_sum = 0
    for state in states:
        weight = constants.LAYER_WEIGHTS.get(state.layer, 1)
        total += state.health_score * weight
        weight_sum += weight
    if weight_sum == 0:
        return 0
    return round(total / weight_sum)


def summarize_modules(
    states: Mapping[str, ModuleState],
    target_score: int,
    include_distribution: bool,
) -> ModuleSummary:
    counts: dict[ModuleStatus, int] = dict.fromkeys(ModuleStatus, 0)
    for state in states.values():
        counts[state.status] += 1

    distribution = None
    if include_distribution:
        bands: dict[str, int] = {}
        for state in states.values():
            band = workspace_status_from_score(state.health_score).value
            bands[band] = bands.get(band, 0) + 1
        distribution = HealthDistribution(**bands)

    high: list[str] = []
    medium: list[str] = []
    low: list[str] = []
    for module_id, state in states.items():
        if state.health_score >= target_score and state.error_count == 0:
            continue
        if state.health_score < constants.CRITICAL_THRESHOLD or state.layer == 0:
            high.append(module_id)
        elif state.health_score < constants.WARNING_THRESHOLD:
            medium.append(module_id)
        else:
            low.append(module_id)

    return ModuleSummary(
        total_modules=len(states),
        healthy_modules=counts[ModuleStatus.HEALTHY],
        warning_modules=counts[ModuleStatus.WARNING],
        critical_modules=counts[ModuleStatus.CRITICAL],
        failed_modules=counts[ModuleStatus.FAILED],
        recovering_modules=counts[ModuleStatus.RECOVERING],
        unknown_modules=counts[ModuleStatus.UNKNOWN],
        health_distribution=distribution,
        high_priority_modules=high,
        medium_priority_modules=medium,
        low_priority_modules=low,
    )


def compute_layer_health(
    states: Mapping[str, ModuleState],
    cycles: list[list[str]],
) -> LayerHealth:
    """Per-layer averages, blockers and isolation checks."""
    unhealthy = {
        m for m, s in states.items() if s.health_score < constants.WARNING_THRESHOLD
    }
    layers: list[LayerHealthMetrics] = []
    for layer, layer_name in LAYER_NAMES.items():
        members = [s for s in states.values() if s.layer == layer]
        if not members:
            continue
        average = round(sum(s.health_score for s in members) / len(members))
        critical_issues = sum(
            1 for s in members if s.status in (ModuleStatus.CRITICAL, ModuleStatus.FAILED)
        )
        blocked = [
            s.module_id
            for s in members
            if any(
                dep in unhealthy and dep in states and states[dep].layer != layer
                for dep in s.workspace_dependencies
            )
        ]
        blocking = [
            s.module_id
            for s in members
            if s.module_id in unhealthy
            and any(s.module_id in other.workspace_dependencies for other in states.values())
        ]
        layers.append(
            LayerHealthMetrics(
                layer=layer,
                layer_name=layer_name,
                modules=[s.module_id for s in members],
                average_health_score=average,
                health_status=workspace_status_from_score(average),
                critical_issues=critical_issues,
                blocked_modules=blocked,
                blocking_modules=blocking,
                layer_stable=(
                    all(s.health_score >= constants.WARNING_THRESHOLD for s in members)
                    and critical_issues == 0
                ),
            )
        )

    issues: list[LayerDependencyIssue] = []
    upward: dict[tuple[int, int], list[str]] = {}
    for state in states.values():
        for dep in state.workspace_dependencies:
            target = states.get(dep)
            if target is not None and target.layer > state.layer:
                upward.setdefault((state.layer, target.layer), []).append(state.module_id)
    for (from_layer, to_layer), affected in sorted(upward.items()):
        issues.append(
            LayerDependencyIssue(
                from_layer=from_layer,
                to_layer=to_layer,
                issue_type="upward_dependency",
                affected_modules=sorted(set(affected)),
                severity="high",
                description=f"Layer {from_layer} modules depend on layer {to_layer}",
            )
        )
    for cycle in cycles:
        cycle_layers = [states[m].layer for m in cycle if m in states]
        issues.append(
            LayerDependencyIssue(
                from_layer=min(cycle_layers),
                to_layer=max(cycle_layers),
                issue_type="circular_dependency",
                affected_modules=list(dict.fromkeys(cycle)),
                severity="high",
                description=f"Circular dependency: {' -> '.join(cycle)}",
            )
        )

    return LayerHealth(
        layers=layers,
        layer_dependency_issues=issues,
        layer_isolation_valid=not upward,
    )


# =============================================================================
# Recovery readiness
# =============================================================================


def assess_readiness(
    states: Mapping[str, ModuleState],
    cycles: list[list[str]],
    config_report: WorkspaceConfigReport,
    target_score: int,
    missing_modules: set[str],
) -> RecoveryReadiness:
    """Blockers, strategy plan and time estimates for recovering the workspace.

    Args:
        states: Analyzed module states.
        cycles: Closed dependency cycles.
        config_report: Workspace configuration validation result.
        target_score: Score at which a module no longer needs recovery.
        missing_modules: Ids whose module directory does not exist, or
            which are referenced but not registered.
    """
    blockers: list[RecoveryBlocker] = []
    actions: list[str] = []

    if config_report.errors:
        blockers.append(
            RecoveryBlocker(
                blocker_id="workspace-configuration",
                blocker_type="configuration",
                description="; ".join(config_report.errors),
                severity="critical",
            )
        )
        actions.append("Fix workspace configuration errors before recovery")

    for index, cycle in enumerate(cycles, start=1):
        blockers.append(
            RecoveryBlocker(
                blocker_id=f"circular-dependency-{index}",
                blocker_type="dependency",
                description=f"Circular dependency: {' -> '.join(cycle)}",
                severity="high",
                affected_modules=list(dict.fromkeys(cycle)),
            )
        )
        actions.append(f"Break circular dependency: {' -> '.join(cycle)}")

    for module_id, state in states.items():
        if module_id in missing_modules:
            continue
        absent = [d for d in state.workspace_dependencies if d in missing_modules]
        if absent:
            blockers.append(
                RecoveryBlocker(
                    blocker_id=f"missing-dependency-{module_id}",
                    blocker_type="dependency",
                    description=f"{module_id} depends on missing modules: {', '.join(absent)}",
                    severity="medium",
                    affected_modules=[module_id, *absent],
                )
            )

    recovering = [m for m, s in states.items() if s.status == ModuleStatus.RECOVERING]
    if recovering:
        blockers.append(
            RecoveryBlocker(
                blocker_id="modules-recovering",
                blocker_type="resource",
                description="Modules are currently being recovered",
                severity="medium",
                affected_modules=recovering,
                resolution_required=False,
            )
        )
        actions.append(f"Wait for in-flight recoveries to finish: {', '.join(recovering)}")

    strategies: dict[str, RecoveryStrategy] = {}
    for module_id, state in states.items():
        if state.needs_recovery(target_score) and state.recommended_strategy is not None:
            strategies[module_id] = state.recommended_strategy

    durations = [constants.STRATEGY_DURATION_SECONDS[s.value] for s in strategies.values()]
    score = max(0, 100 - sum(_SEVERITY_PENALTY[b.severity] for b in blockers))
    if not blockers:
        status = "ready"
    elif score < 50:
        status = "not_ready"
    else:
        status = "partial"

    if any(b.severity == "critical" for b in blockers):
        complexity = "critical"
    elif RecoveryStrategy.RESET in strategies.values() or cycles:
        complexity = "complex"
    elif RecoveryStrategy.REBUILD in strategies.values() or len(strategies) > 3:
        complexity = "moderate"
    else:
        complexity = "simple"

    return RecoveryReadiness(
        recovery_readiness_score=score,
        readiness_status=status,
        recovery_blockers=blockers,
        prerequisite_actions=actions,
        recommended_strategies=strategies,
        estimated_recovery_time=sum(durations),
        parallel_recovery_time=max(durations, default=0),
        recovery_complexity=complexity,
    )


__all__ = [
    "apply_workspace_dependency_issues",
    "assess_readiness",
    "build_dependency_graph",
    "compute_layer_health",
    "find_cycles",
    "summarize_modules",
    "weighted_workspace_score",
]
