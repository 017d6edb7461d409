"""Health analyzer.

Scores modules from heterogeneous signals (structure, configuration,
toolchain results, workspace dependencies) and aggregates them into a
WorkspaceHealth view. The analyzer is read-only with respect to the
module state store: it reads stored states only to carry over recovery
ownership, operator notes, and the last known build/test results.

Depths:
    basic: module directory and required files.
    detailed: + package.json validity, required dependencies, tsconfig.json.
    comprehensive: + type-check, build and tests through the command runner.
"""

from __future__ import annotations

import json
import time
from pathlib import Path

from medic.core.config import AnalysisDepth, MedicConfig
from medic.core.logging import get_logger
from medic.health.checks import (
    CheckReport,
    check_configuration,
    check_structure,
    check_toolchain,
)
from medic.health.recommendations import recommend_strategy, recommendations_for
from medic.health.workspace import (
    apply_workspace_dependency_issues,
    assess_readiness,
    build_dependency_graph,
    compute_layer_health,
    summarize_modules,
    weighted_workspace_score,
)
from medic.models.module import (
    BuildStatus,
    ModuleState,
    ModuleStatus,
    TestStatus,
    ValidationResult,
    _utc_now,
    status_from_score,
)
from medic.models.workspace import (
    AnalysisOptions,
    WorkspaceConfigReport,
    WorkspaceHealth,
    workspace_status_from_score,
)
from medic.modules.catalogue import ModuleRegistry
from medic.modules.descriptor import ModuleDescriptor
from medic.runner import CommandRunner
from medic.state.store import ModuleStateStore

_logger = get_logger("health")

RECOMMENDED_ROOT_SCRIPTS: tuple[str, ...] = ("build", "test", "lint", "type-check")


class HealthAnalyzer:
    """Assesses module and workspace health.

    Example:
        analyzer = HealthAnalyzer(config, registry, store, SubprocessRunner())
        state = await analyzer.analyze_module("auth")
        health = await analyzer.analyze_workspace(AnalysisOptions(analysis_depth="basic"))
    """

    def __init__(
        self,
        config: MedicConfig,
        registry: ModuleRegistry,
        store: ModuleStateStore,
        runner: CommandRunner,
    ) -> None:
        self._config = config
        self._registry = registry
        self._store = store
        self._runner = runner

    # ─── Module assessment ────────────────────────────────────────────

    async def _assess(
        self,
        descriptor: ModuleDescriptor,
        depth: AnalysisDepth,
        *,
        include_tests: bool = True,
    ) -> CheckReport:
        report = CheckReport(descriptor=descriptor)
        module_dir = self._config.module_path(descriptor.module_id)
        if not check_structure(report, module_dir):
            return report
        if depth in ("detailed", "comprehensive"):
            check_configuration(report, module_dir, self._config.package_scope)
        if depth == "comprehensive":
            await check_toolchain(
                report,
                module_dir,
                self._runner,
                self._config.commands,
                self._config.task_timeout_seconds,
                include_tests=include_tests,
            )
        return report

    def _to_state(self, report: CheckReport, *, include_error_details: bool) -> ModuleState:
        stored = self._store.get(report.module_id)
        now = _utc_now()
        score = report.score

        if stored.status == ModuleStatus.RECOVERING:
            status = ModuleStatus.RECOVERING
        else:
            status = status_from_score(score)

        build_status = stored.build_status
        test_status = stored.test_status
        last_build_time = stored.last_build_time
        last_test_run = stored.last_test_run
        if not report.directory_exists:
            build_status = BuildStatus.NOT_STARTED
            test_status = TestStatus.NOT_STARTED
        if report.build_status is not None:
            build_status = report.build_status
            last_build_time = now
        if report.test_status is not None:
            test_status = report.test_status
            last_test_run = now

        return ModuleState(
            module_id=report.module_id,
            layer=report.descriptor.layer,
            status=status,
            build_status=build_status,
            test_status=test_status,
            dependency_health=report.dependency_health,
            health_score=score,
            error_count=len(report.issues),
            warning_count=len(report.warnings),
            issues=list(report.issues) if include_error_details else [],
            recommendations=recommendations_for(report.categories, bool(report.issues)),
            recommended_strategy=recommend_strategy(
                report.categories,
                score,
                len(report.issues),
                self._config.target_health_score,
            ),
            workspace_dependencies=report.workspace_dependencies,
            last_build_time=last_build_time,
            last_test_run=last_test_run,
            last_assessment=now,
            last_modified=stored.last_modified,
            modified_by=stored.modified_by,
            notes=stored.notes,
            active_execution_id=stored.active_execution_id,
        )

    async def analyze_module(
        self,
        module_id: str,
        depth: AnalysisDepth | None = None,
        *,
        include_error_details: bool = True,
    ) -> ModuleState:
        """Assess one module.

        Args:
            module_id: Registered module id.
            depth: Analysis depth, defaults to ``detailed``.
            include_error_details: Attach full issue text to the state.

        Raises:
            ModuleNotFoundError: If the id is not registered.
        """
        descriptor = self._registry.get(module_id)
        report = await self._assess(descriptor, depth or "detailed")
        state = self._to_state(report, include_error_details=include_error_details)
        _logger.debug(
            "health.module_analyzed",
            module_id=module_id,
            depth=depth or "detailed",
            health_score=state.health_score,
            error_count=state.error_count,
        )
        return state

    async def validate_module(self, module_id: str, *, include_tests: bool = True) -> ValidationResult:
        """Run the full check set (structure, configuration, toolchain).

        Raises:
            ModuleNotFoundError: If the id is not registered.
        """
        descriptor = self._registry.get(module_id)
        report = await self._assess(descriptor, "comprehensive", include_tests=include_tests)
        result = ValidationResult(
            module_id=module_id,
            is_valid=not report.issues,
            health_score=report.score,
            issues=list(report.issues),
            warnings=list(report.warnings),
            recommendations=recommendations_for(report.categories, bool(report.issues)),
            categories=list(report.categories),
        )
        _logger.info(
            "health.module_validated",
            module_id=module_id,
            is_valid=result.is_valid,
            health_score=result.health_score,
            issue_count=len(result.issues),
        )
        return result

    # ─── Workspace assessment ─────────────────────────────────────────

    async def analyze_workspace(self, options: AnalysisOptions | None = None) -> WorkspaceHealth:
        """Assess every (or every filtered) module and aggregate.

        Raises:
            ModuleNotFoundError: If ``module_filter`` names an unknown module.
        """
        options = options or AnalysisOptions()
        started = time.monotonic()
        if options.module_filter is not None:
            descriptors = [self._registry.get(m) for m in dict.fromkeys(options.module_filter)]
            descriptors.sort(key=lambda d: d.layer)
        else:
            descriptors = self._registry.all_descriptors()

        reports: dict[str, CheckReport] = {}
        for descriptor in descriptors:
            reports[descriptor.module_id] = await self._assess(descriptor, options.analysis_depth)

        cycles: list[list[str]] = []
        if options.include_dependency_graph:
            cycles = apply_workspace_dependency_issues(
                reports, self._registry, self._config.packages_path
            )

        states = {
            module_id: self._to_state(report, include_error_details=options.include_error_details)
            for module_id, report in reports.items()
        }

        packages_path = self._config.packages_path
        missing_modules = {m for m, r in reports.items() if not r.directory_exists}
        for state in states.values():
            for dep_id in state.workspace_dependencies:
                if not self._registry.has(dep_id) or not (packages_path / dep_id).is_dir():
                    missing_modules.add(dep_id)

        overall = None
        health_status = None
        layer_health = None
        if options.include_health_metrics:
            overall = weighted_workspace_score(states.values())
            health_status = workspace_status_from_score(overall)
            layer_health = compute_layer_health(states, cycles)

        health = WorkspaceHealth(
            workspace_path=str(self._config.workspace_path),
            analysis_depth=options.analysis_depth,
            module_states=states,
            module_summary=summarize_modules(
                states,
                self._config.target_health_score,
                include_distribution=options.include_health_metrics,
            ),
            overall_health_score=overall,
            health_status=health_status,
            layer_health=layer_health,
            dependency_graph=(
                build_dependency_graph(states, packages_path, cycles)
                if options.include_dependency_graph
                else None
            ),
            recovery_readiness=assess_readiness(
                states,
                cycles,
                self.validate_configuration(),
                self._config.target_health_score,
                missing_modules,
            ),
        )
        _logger.info(
            "health.workspace_analyzed",
            module_count=len(states),
            depth=options.analysis_depth,
            overall_health_score=overall,
            duration_seconds=round(time.monotonic() - started, 3),
        )
        return health

    # ─── Workspace configuration ──────────────────────────────────────

    def validate_configuration(self) -> WorkspaceConfigReport:
        """Validate the workspace root configuration.

        Checks the root package.json (workspaces, recommended scripts), the
        root tsconfig.json (project references, path mappings), the packages
        directory, and each module directory.
        """
        root = self._config.workspace_path
        errors: list[str] = []
        warnings: list[str] = []

        package_path = root / "package.json"
        if not package_path.is_file():
            errors.append("Root package.json not found")
        else:
            package = _load_json(package_path)
            if not isinstance(package, dict):
                errors.append("Root package.json is not valid JSON")
            else:
                workspaces = package.get("workspaces")
                if isinstance(workspaces, dict):
                    workspaces = workspaces.get("packages")
                if not isinstance(workspaces, list):
                    errors.append("Root package.json is missing a workspaces array")
                elif f"{self._config.packages_dir}/*" not in workspaces:
                    warnings.append(
                        f"Workspaces do not include {self._config.packages_dir}/*"
                    )
                scripts = package.get("scripts")
                scripts = scripts if isinstance(scripts, dict) else {}
                for script in RECOMMENDED_ROOT_SCRIPTS:
                    if script not in scripts:
                        warnings.append(f"Missing recommended root script: {script}")

        tsconfig_path = root / "tsconfig.json"
        if not tsconfig_path.is_file():
            warnings.append("Root tsconfig.json not found")
        else:
            tsconfig = _load_json(tsconfig_path)
            if not isinstance(tsconfig, dict):
                errors.append("Root tsconfig.json is not valid JSON")
            else:
                if not tsconfig.get("references"):
                    warnings.append("Root tsconfig.json has no project references")
                compiler_options = tsconfig.get("compilerOptions")
                if not isinstance(compiler_options, dict) or not compiler_options.get("paths"):
                    warnings.append("Root tsconfig.json has no path mappings")

        packages_path = self._config.packages_path
        if not packages_path.is_dir():
            errors.append(f"Packages directory not found: {self._config.packages_dir}")
        else:
            for module_id in self._registry.ids():
                if not (packages_path / module_id).is_dir():
                    warnings.append(
                        f"Module directory missing: {self._config.packages_dir}/{module_id}"
                    )

        recommendations: list[str] = []
        if errors:
            recommendations.append("Fix configuration errors before running recovery")
        if warnings:
            recommendations.append(
                "Consider addressing configuration warnings to improve development experience"
            )
        if not errors and not warnings:
            recommendations.append("Workspace configuration is optimal")

        _logger.debug(
            "health.configuration_validated",
            error_count=len(errors),
            warning_count=len(warnings),
        )
        return WorkspaceConfigReport(
            valid=not errors,
            errors=errors,
            warnings=warnings,
            recommendations=recommendations,
        )


def _load_json(path: Path) -> object:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None


__all__ = ["HealthAnalyzer", "RECOMMENDED_ROOT_SCRIPTS"]
