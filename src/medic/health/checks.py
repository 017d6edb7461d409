"""Per-module health checks.

Each check inspects one aspect of a module (structure, configuration, or
toolchain results) and records issues, warnings and score penalties on a
shared CheckReport. Checks never raise for a broken module: every problem
becomes an issue.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from medic.core import constants
from medic.core.config import CommandConfig
from medic.core.logging import get_logger
from medic.models.module import (
    BuildStatus,
    DependencyHealth,
    IssueCategory,
    TestStatus,
    clamp_score,
)
from medic.modules.descriptor import PACKAGE_JSON, TSCONFIG_JSON, ModuleDescriptor
from medic.runner import CommandResult, CommandRunner

_logger = get_logger("health")

# Severity order used when several workspace dependency problems apply.
_DEPENDENCY_HEALTH_RANK: dict[DependencyHealth, int] = {
    DependencyHealth.RESOLVED: 0,
    DependencyHealth.OUTDATED: 1,
    DependencyHealth.CONFLICTED: 2,
    DependencyHealth.MISSING: 3,
    DependencyHealth.CIRCULAR: 4,
}


@dataclass
class CheckReport:
    """Accumulated findings for one module."""

    descriptor: ModuleDescriptor
    penalty: int = 0
    issues: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    categories: list[IssueCategory] = field(default_factory=list)
    directory_exists: bool = True
    build_status: BuildStatus | None = None
    test_status: TestStatus | None = None
    dependency_health: DependencyHealth = DependencyHealth.RESOLVED
    declared_workspace_dependencies: list[str] | None = None
    has_test_script: bool | None = None
    toolchain_ran: bool = False

    @property
    def module_id(self) -> str:
        return self.descriptor.module_id

    @property
    def score(self) -> int:
        return clamp_score(constants.MAX_HEALTH_SCORE - self.penalty)

    @property
    def workspace_dependencies(self) -> list[str]:
        """Declared workspace dependencies, falling back to the descriptor's."""
        if self.declared_workspace_dependencies is not None:
            return list(self.declared_workspace_dependencies)
        return list(self.descriptor.workspace_dependencies)

    def add_issue(self, message: str, category: IssueCategory, penalty: int) -> None:
        self.issues.append(message)
        self.penalty += penalty
        if category not in self.categories:
            self.categories.append(category)

    def add_warning(self, message: str) -> None:
        self.warnings.append(message)

    def mark_dependency_health(self, health: DependencyHealth) -> None:
        """Keep the most severe dependency health seen."""
        if _DEPENDENCY_HEALTH_RANK[health] > _DEPENDENCY_HEALTH_RANK[self.dependency_health]:
            self.dependency_health = health


def _read_json(path: Path) -> tuple[Any, bool]:
    """Return (data, parsed_ok)."""
    try:
        return json.loads(path.read_text(encoding="utf-8")), True
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None, False


def check_structure(report: CheckReport, module_dir: Path) -> bool:
    """Check the module directory and its required files.

    Returns:
        False if the module directory is missing; no further checks apply.
    """
    descriptor = report.descriptor
    if not module_dir.is_dir():
        report.directory_exists = False
        report.add_issue(
            f"{descriptor.name} module directory does not exist",
            IssueCategory.MISSING_DIRECTORY,
            constants.MISSING_DIRECTORY_PENALTY,
        )
        report.mark_dependency_health(DependencyHealth.MISSING)
        return False

    penalty = (
        constants.MISSING_FILE_PENALTY_LARGE if descriptor.is_large else constants.MISSING_FILE_PENALTY
    )
    for relative in descriptor.required_files:
        if not (module_dir / relative).is_file():
            report.add_issue(
                f"Missing essential file: {relative}",
                IssueCategory.MISSING_FILE,
                penalty,
            )
    return True


def check_configuration(report: CheckReport, module_dir: Path, package_scope: str) -> None:
    """Check package.json validity, declared dependencies, and tsconfig.json.

    Absent files are not re-reported here; check_structure already flags them.
    """
    descriptor = report.descriptor
    package_path = module_dir / PACKAGE_JSON
    if package_path.is_file():
        package, parsed = _read_json(package_path)
        if not parsed or not isinstance(package, dict):
            report.add_issue(
                "package.json is not valid JSON",
                IssueCategory.INVALID_PACKAGE_JSON,
                constants.UNPARSEABLE_PACKAGE_JSON_PENALTY,
            )
        else:
            _check_package_json(report, package, package_scope)

    tsconfig_path = module_dir / TSCONFIG_JSON
    if tsconfig_path.is_file():
        tsconfig, parsed = _read_json(tsconfig_path)
        if not parsed or not isinstance(tsconfig, dict):
            report.add_issue(
                "tsconfig.json is not valid JSON",
                IssueCategory.INVALID_TSCONFIG,
                constants.INVALID_TSCONFIG_PENALTY,
            )
        elif not isinstance(tsconfig.get("compilerOptions"), dict):
            report.add_issue(
                "Invalid tsconfig.json: missing compilerOptions",
                IssueCategory.INVALID_TSCONFIG,
                constants.INVALID_TSCONFIG_PENALTY,
            )

    if descriptor.service_configs:
        missing = [c for c in descriptor.service_configs if not (module_dir / c).is_file()]
        for config_file in missing:
            report.add_warning(f"Missing service configuration: {config_file}")


def _check_package_json(report: CheckReport, package: dict[str, Any], package_scope: str) -> None:
    descriptor = report.descriptor
    if not package.get("name") or not package.get("version"):
        report.add_issue(
            "Invalid package.json: missing name or version",
            IssueCategory.INVALID_PACKAGE_JSON,
            constants.INVALID_PACKAGE_JSON_PENALTY,
        )

    declared: dict[str, Any] = {}
    for section in ("dependencies", "devDependencies", "peerDependencies"):
        value = package.get(section)
        if isinstance(value, dict):
            declared.update(value)

    penalty = (
        constants.MISSING_DEPENDENCY_PENALTY_LARGE
        if descriptor.has_many_dependencies
        else constants.MISSING_DEPENDENCY_PENALTY
    )
    for dep in descriptor.required_dependencies:
        if dep not in declared:
            report.add_issue(
                f"Missing required dependency: {dep}",
                IssueCategory.MISSING_DEPENDENCY,
                penalty,
            )

    prefix = f"{package_scope}/"
    report.declared_workspace_dependencies = [
        name[len(prefix):] for name in declared if name.startswith(prefix)
    ]

    scripts = package.get("scripts")
    report.has_test_script = isinstance(scripts, dict) and bool(scripts.get("test"))


async def _run_bounded(
    runner: CommandRunner, command: str, cwd: Path, timeout: float
) -> CommandResult | None:
    """Run a command under ``timeout``; None means it timed out."""
    try:
        return await asyncio.wait_for(runner.run(command, cwd), timeout=timeout)
    except TimeoutError:
        _logger.warning("health.command_timed_out", command=command, timeout_seconds=timeout)
        return None


async def check_toolchain(
    report: CheckReport,
    module_dir: Path,
    runner: CommandRunner,
    commands: CommandConfig,
    timeout: float,
    *,
    include_tests: bool = True,
) -> None:
    """Re-run type-check, build and (optionally) tests through the runner."""
    report.toolchain_ran = True

    result = await _run_bounded(runner, commands.type_check, module_dir, timeout)
    if result is None or not result.ok:
        report.add_issue(
            "TypeScript compilation fails",
            IssueCategory.COMPILATION,
            constants.COMPILATION_FAILURE_PENALTY,
        )

    result = await _run_bounded(runner, commands.build, module_dir, timeout)
    if result is None or not result.ok:
        report.build_status = BuildStatus.FAILED
        report.add_issue(
            "Build process fails",
            IssueCategory.BUILD,
            constants.BUILD_FAILURE_PENALTY,
        )
    else:
        report.build_status = BuildStatus.SUCCESS

    if not include_tests:
        return
    if report.has_test_script is False:
        report.test_status = TestStatus.NOT_CONFIGURED
        report.add_warning("Test script not configured")
        return

    result = await _run_bounded(runner, commands.test, module_dir, timeout)
    if result is None or not result.ok:
        report.test_status = TestStatus.FAILING
        report.add_issue(
            "Test suite fails",
            IssueCategory.TESTS,
            constants.TEST_FAILURE_PENALTY,
        )
    else:
        report.test_status = TestStatus.PASSING


__all__ = [
    "CheckReport",
    "check_configuration",
    "check_structure",
    "check_toolchain",
]
