"""Module recovery scripts.

A recovery script knows how to drive one module through a strategy. The
engine ships a single data-driven implementation, DescriptorRecoveryScript,
that interprets a module's descriptor; per-module variation lives entirely
in the descriptor.

Strategies expand into ordered steps:

    repair:  <Name> Module Repair
    rebuild: Clean Build Artifacts, Restore Source Structure,
             [Restore Service Configuration], Rebuild Dependencies
    reset:   Backup Configuration, Reset to Default, Restore Configuration

Each step yields exactly one RecoveryPhaseResult. A failed step does not
abort the run unless a later step names it as a hard prerequisite. Failures
are encoded in results, never raised.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from datetime import datetime
from pathlib import Path
from typing import Protocol, runtime_checkable

from medic.core import constants
from medic.core.config import MedicConfig
from medic.core.errors import MedicError, RecoveryTimeoutError, ServiceError
from medic.core.logging import MedicLogger, get_logger
from medic.models.module import RecoveryStrategy, ValidationResult, _utc_now
from medic.models.recovery import RecoveryPhaseResult, StepStatus
from medic.modules.descriptor import PACKAGE_JSON, ModuleDescriptor
from medic.recovery import steps as fs
from medic.runner import CommandRunner

_logger = get_logger("recovery")


@dataclass
class RecoveryContext:
    """Per-run options and controls for a module recovery.

    Attributes:
        execution_id: Execution that owns the module for the run.
        dry_run: Report the plan without touching anything.
        include_tests: Run the test command after rebuilding dependencies.
        clean_build: Remove build artifacts at the start of a rebuild.
        dependency_resolution: Remove node_modules and the lockfile before
            reinstalling during a rebuild.
        cancel_event: Set to stop the run before its next step.
        task_timeout: Budget in seconds for each runner call; None uses config.
    """

    execution_id: str
    dry_run: bool = False
    include_tests: bool = True
    clean_build: bool = True
    dependency_resolution: bool = True
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    task_timeout: float | None = None

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()


@runtime_checkable
class ModuleRecoveryScript(Protocol):
    """Recovery implementation for one module."""

    @property
    def module_id(self) -> str: ...

    @property
    def supported_strategies(self) -> tuple[RecoveryStrategy, ...]: ...

    async def execute_recovery(
        self, strategy: RecoveryStrategy, context: RecoveryContext
    ) -> list[RecoveryPhaseResult]: ...

    async def validate_module(self) -> ValidationResult: ...


class _StepFailed(Exception):
    """Raised inside a step body to fail the step with a prepared envelope."""

    def __init__(self, error: MedicError) -> None:
        super().__init__(error.message)
        self.error = error


@dataclass
class _StepRun:
    """Mutable tally for the step currently executing."""

    total_tasks: int
    succeeded: int = 0
    skipped: int = 0
    errors_resolved: int = 0
    artifacts: list[str] = field(default_factory=list)
    logs: list[str] = field(default_factory=list)

    def done(self, log: str | None = None, *, resolved: int = 0) -> None:
        self.succeeded += 1
        self.errors_resolved += resolved
        if log:
            self.logs.append(log)

    def skip(self, log: str) -> None:
        self.skipped += 1
        self.logs.append(log)


@dataclass
class _RunState:
    """State shared by the steps of one strategy run.

    Created per ``execute_recovery`` call; scripts are registry singletons.
    """

    outcomes: dict[str, StepStatus] = field(default_factory=dict)
    backed_up: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class _StepSpec:
    key: str
    name: str
    improvement: int
    total_tasks: int
    action: str
    body: Callable[[_StepRun, RecoveryContext, _RunState], Awaitable[None]]
    requires: str | None = None


class DescriptorRecoveryScript:
    """Generic strategy interpreter driven by a ModuleDescriptor."""

    def __init__(
        self,
        descriptor: ModuleDescriptor,
        config: MedicConfig,
        runner: CommandRunner,
        validator: Callable[[str], Awaitable[ValidationResult]],
    ) -> None:
        self._descriptor = descriptor
        self._config = config
        self._runner = runner
        self._validator = validator

    @property
    def module_id(self) -> str:
        return self._descriptor.module_id

    @property
    def supported_strategies(self) -> tuple[RecoveryStrategy, ...]:
        return self._descriptor.supported_strategies

    @property
    def module_dir(self) -> Path:
        return self._config.module_path(self.module_id)

    async def validate_module(self) -> ValidationResult:
        return await self._validator(self.module_id)

    # ─── Step plans ───────────────────────────────────────────────────

    def plan(self, strategy: RecoveryStrategy) -> list[_StepSpec]:
        """Ordered steps for a strategy."""
        if strategy == RecoveryStrategy.REPAIR:
            return [
                _StepSpec(
                    key="repair",
                    name=f"{self._descriptor.name} Module Repair",
                    improvement=constants.REPAIR_IMPROVEMENT,
                    total_tasks=3,
                    action="repair configuration and reinstall dependencies",
                    body=self._repair,
                ),
            ]
        if strategy == RecoveryStrategy.REBUILD:
            specs = [
                _StepSpec(
                    key="clean",
                    name="Clean Build Artifacts",
                    improvement=constants.CLEAN_ARTIFACTS_IMPROVEMENT,
                    total_tasks=1,
                    action=f"remove {', '.join(constants.BUILD_ARTIFACT_PATHS)}",
                    body=self._clean_artifacts,
                ),
                _StepSpec(
                    key="restore-structure",
                    name="Restore Source Structure",
                    improvement=constants.RESTORE_STRUCTURE_IMPROVEMENT,
                    total_tasks=2,
                    action="recreate directories and missing required files",
                    body=self._restore_structure,
                ),
            ]
            if self._descriptor.service_configs:
                specs.append(
                    _StepSpec(
                        key="restore-service-config",
                        name="Restore Service Configuration",
                        improvement=constants.RESTORE_SERVICE_CONFIG_IMPROVEMENT,
                        total_tasks=1,
                        action="restore missing service configuration files",
                        body=self._restore_service_config,
                    )
                )
            specs.append(
                _StepSpec(
                    key="rebuild-dependencies",
                    name="Rebuild Dependencies",
                    improvement=constants.REBUILD_DEPENDENCIES_IMPROVEMENT,
                    total_tasks=3,
                    action="reinstall dependencies from scratch and build",
                    body=self._rebuild_dependencies,
                    requires="restore-structure",
                )
            )
            return specs
        return [
            _StepSpec(
                key="backup",
                name="Backup Configuration",
                improvement=constants.BACKUP_CONFIGURATION_IMPROVEMENT,
                total_tasks=1,
                action=f"back up configuration into {constants.BACKUP_DIR_NAME}",
                body=self._backup_configuration,
            ),
            _StepSpec(
                key="reset-to-default",
                name="Reset to Default",
                improvement=constants.RESET_TO_DEFAULT_IMPROVEMENT,
                total_tasks=2,
                action="wipe sources and write the default module",
                body=self._reset_to_default,
            ),
            _StepSpec(
                key="restore-config",
                name="Restore Configuration",
                improvement=constants.RESTORE_CONFIGURATION_IMPROVEMENT,
                total_tasks=3,
                action="merge backed-up configuration and reinstall dependencies",
                body=self._restore_configuration,
                requires="reset-to-default",
            ),
        ]

    # ─── Interpreter ──────────────────────────────────────────────────

    async def execute_recovery(
        self, strategy: RecoveryStrategy, context: RecoveryContext
    ) -> list[RecoveryPhaseResult]:
        """Run every step of ``strategy`` and return one result per step."""
        specs = self.plan(strategy)
        if strategy == RecoveryStrategy.REBUILD and context.include_tests:
            specs[-1] = replace(specs[-1], total_tasks=4)

        state = _RunState()
        results: list[RecoveryPhaseResult] = []
        try:
            for position, spec in enumerate(specs, start=1):
                result = await self._execute_step(position, spec, context, state)
                state.outcomes[spec.key] = result.status
                results.append(result)
        finally:
            if strategy == RecoveryStrategy.RESET and not context.dry_run:
                if fs.remove_backup(self.module_dir):
                    _logger.debug(
                        "recovery.backup_removed",
                        module_id=self.module_id,
                        execution_id=context.execution_id,
                    )
        return results

    async def _execute_step(
        self,
        position: int,
        spec: _StepSpec,
        context: RecoveryContext,
        state: _RunState,
    ) -> RecoveryPhaseResult:
        started = _utc_now()
        log = _logger.bind(
            module_id=self.module_id,
            execution_id=context.execution_id,
            step=spec.name,
        )

        if context.dry_run:
            return _result(
                position, spec, StepStatus.SKIPPED, started,
                skipped=spec.total_tasks,
                logs=[f"DRY RUN: would {spec.action}"],
            )
        if context.cancelled:
            log.info("recovery.step_skipped", reason="cancelled")
            return _result(
                position, spec, StepStatus.SKIPPED, started,
                skipped=spec.total_tasks,
                logs=["Skipped: recovery cancelled"],
            )
        if spec.requires and state.outcomes.get(spec.requires) != StepStatus.COMPLETED:
            log.warning("recovery.step_prerequisite_failed", requires=spec.requires)
            return _result(
                position, spec, StepStatus.FAILED, started,
                logs=[f"Prerequisite step '{spec.requires}' did not complete"],
            )

        run = _StepRun(total_tasks=spec.total_tasks)
        log.debug("recovery.step_started")
        try:
            await spec.body(run, context, state)
        except _StepFailed as e:
            return self._failed(position, spec, started, run, e.error, log)
        except MedicError as e:
            return self._failed(position, spec, started, run, e, log)
        except OSError as e:
            error = ServiceError(
                f"Filesystem operation failed: {e}",
                service="filesystem",
                operation=spec.key,
                module_id=self.module_id,
            )
            return self._failed(position, spec, started, run, error, log)

        if run.succeeded == 0 and run.skipped == spec.total_tasks:
            log.info("recovery.step_skipped", reason="disabled")
            return _result(
                position, spec, StepStatus.SKIPPED, started,
                skipped=run.skipped,
                logs=run.logs,
            )

        log.info(
            "recovery.step_completed",
            health_improvement=spec.improvement,
            errors_resolved=run.errors_resolved,
        )
        return _result(
            position, spec, StepStatus.COMPLETED, started,
            successful=run.succeeded,
            skipped=run.skipped,
            improvement=spec.improvement,
            errors_resolved=run.errors_resolved,
            artifacts=run.artifacts,
            logs=run.logs,
        )

    def _failed(
        self,
        position: int,
        spec: _StepSpec,
        started: datetime,
        run: _StepRun,
        error: MedicError,
        log: MedicLogger,
    ) -> RecoveryPhaseResult:
        log.warning("recovery.step_failed", error_code=error.code, error=error.message)
        remaining = max(0, spec.total_tasks - run.succeeded - run.skipped - 1)
        return _result(
            position, spec, StepStatus.FAILED, started,
            successful=run.succeeded,
            failed=1,
            skipped=run.skipped + remaining,
            errors_resolved=run.errors_resolved,
            artifacts=run.artifacts,
            logs=[*run.logs, f"{spec.name} failed: {error.message}"],
            error=error.to_envelope(),
        )

    async def _run_command(self, command: str, operation: str, context: RecoveryContext) -> bool:
        """Run a configured command inside the module directory.

        Returns:
            True on exit status 0.

        Raises:
            RecoveryTimeoutError: If the call exceeds the task budget.
        """
        timeout = context.task_timeout or self._config.task_timeout_seconds
        try:
            result = await asyncio.wait_for(
                self._runner.run(command, self.module_dir), timeout=timeout
            )
        except TimeoutError:
            raise RecoveryTimeoutError(
                "task",
                timeout,
                module_id=self.module_id,
                execution_id=context.execution_id,
                operation=operation,
            ) from None
        if not result.ok:
            _logger.debug(
                "recovery.command_failed",
                module_id=self.module_id,
                operation=operation,
                exit_code=result.exit_code,
                output=result.summary(),
            )
        return result.ok

    async def _require_command(self, command: str, operation: str, context: RecoveryContext) -> None:
        if not await self._run_command(command, operation, context):
            raise _StepFailed(
                ServiceError(
                    f"Command failed: {command}",
                    service="runner",
                    operation=operation,
                    module_id=self.module_id,
                    command=command,
                )
            )

    # ─── Step bodies ──────────────────────────────────────────────────

    async def _repair(
        self, run: _StepRun, context: RecoveryContext, state: _RunState
    ) -> None:
        module_dir = self.module_dir
        scope = self._config.package_scope
        module_dir.mkdir(parents=True, exist_ok=True)

        resolved = 0
        if fs.repair_package_json(self._descriptor, module_dir, scope):
            resolved += 1
            run.logs.append("Repaired package.json configuration")
        if fs.repair_tsconfig(self._descriptor, module_dir):
            resolved += 1
            run.logs.append("Restored TypeScript configuration")
        run.artifacts.extend(["package.json", "tsconfig.json"])
        run.done(resolved=resolved)

        restored = fs.write_missing_files(
            self._descriptor, module_dir, scope, self._descriptor.service_configs
        )
        run.artifacts.extend(restored)
        run.done(
            f"Restored {len(restored)} service configuration files" if restored else None,
            resolved=len(restored),
        )

        await self._require_command(self._config.commands.install, "install", context)
        run.done("Installed missing dependencies")

    async def _clean_artifacts(
        self, run: _StepRun, context: RecoveryContext, state: _RunState
    ) -> None:
        if not context.clean_build:
            run.skip("Clean build disabled, kept existing artifacts")
            return
        removed = fs.remove_paths(self.module_dir, constants.BUILD_ARTIFACT_PATHS)
        run.done(f"Cleaned {len(removed)} build artifacts")

    async def _restore_structure(
        self, run: _StepRun, context: RecoveryContext, state: _RunState
    ) -> None:
        created = fs.create_directories(self._descriptor, self.module_dir)
        run.done(f"Created {len(created)} directories")

        restored = fs.write_missing_files(
            self._descriptor,
            self.module_dir,
            self._config.package_scope,
            self._descriptor.required_files,
        )
        run.artifacts.extend(restored)
        run.done(f"Restored {len(restored)} source files", resolved=len(restored))

    async def _restore_service_config(
        self, run: _StepRun, context: RecoveryContext, state: _RunState
    ) -> None:
        restored = fs.write_missing_files(
            self._descriptor,
            self.module_dir,
            self._config.package_scope,
            self._descriptor.service_configs,
        )
        run.artifacts.extend(restored)
        run.done(f"Restored {len(restored)} service configuration files", resolved=len(restored))

    async def _rebuild_dependencies(
        self, run: _StepRun, context: RecoveryContext, state: _RunState
    ) -> None:
        commands = self._config.commands
        if context.dependency_resolution:
            await self._require_command(commands.clean_install, "clean_install", context)
            run.done("Removed node_modules and package-lock.json")
        else:
            run.skip("Dependency resolution disabled, kept node_modules and package-lock.json")
        await self._require_command(commands.install, "install", context)
        run.done("Installed dependencies")

        await self._require_command(commands.build, "build", context)
        run.artifacts.append("dist")
        run.done("Built module successfully")

        if not context.include_tests:
            return
        package = fs.load_json_object(self.module_dir / PACKAGE_JSON) or {}
        scripts = package.get("scripts")
        if not (isinstance(scripts, dict) and scripts.get("test")):
            run.skip("Tests not configured")
        elif await self._run_command(commands.test, "test", context):
            run.done("Ran test suite successfully")
        else:
            # failing tests do not fail the rebuild
            run.skip("Test suite failed")

    async def _backup_configuration(
        self, run: _StepRun, context: RecoveryContext, state: _RunState
    ) -> None:
        copied: list[str] = []
        if self.module_dir.is_dir():
            copied = fs.backup_files(self._descriptor, self.module_dir)
        state.backed_up = copied
        run.artifacts.extend(f"{constants.BACKUP_DIR_NAME}/{c}" for c in copied)
        run.done(f"Backed up {len(copied)} configuration files")

    async def _reset_to_default(
        self, run: _StepRun, context: RecoveryContext, state: _RunState
    ) -> None:
        removed = fs.remove_paths(self.module_dir, constants.RESET_REMOVAL_PATHS)
        run.done(f"Removed {len(removed)} paths")

        fs.materialize_module(self._descriptor, self.module_dir, self._config.package_scope)
        run.artifacts.extend(self._descriptor.required_files)
        run.done(
            f"Wrote default module with {len(self._descriptor.required_files)} required files",
            resolved=len(self._descriptor.required_files),
        )

    async def _restore_configuration(
        self, run: _StepRun, context: RecoveryContext, state: _RunState
    ) -> None:
        backup_dir = self.module_dir / constants.BACKUP_DIR_NAME
        backed_up = state.backed_up
        if not backed_up:
            run.done("No configuration backup found, using defaults")
        else:
            lost = [f for f in backed_up if not (backup_dir / f).is_file()]
            if lost:
                _logger.error(
                    "recovery.backup_lost",
                    module_id=self.module_id,
                    execution_id=context.execution_id,
                    files=lost,
                )
                raise _StepFailed(
                    ServiceError(
                        f"Configuration backup lost: {', '.join(lost)}",
                        service="reset",
                        operation="restore_backup",
                        module_id=self.module_id,
                        file=lost[0],
                    )
                )
            restored = self._restore_backed_up_files(backup_dir, backed_up, run)
            run.artifacts.extend(restored)
            run.done(f"Restored {len(restored)} configuration files")

        await self._require_command(self._config.commands.install, "install", context)
        run.done("Installed dependencies")

        if fs.remove_backup(self.module_dir):
            run.done("Cleaned up backup files")
        else:
            run.done()

    def _restore_backed_up_files(
        self, backup_dir: Path, backed_up: list[str], run: _StepRun
    ) -> list[str]:
        restored: list[str] = []
        for relative in backed_up:
            source = backup_dir / relative
            target = self.module_dir / relative
            if relative == PACKAGE_JSON:
                saved = fs.load_json_object(source)
                if saved is None:
                    run.logs.append("Discarded unparseable package.json backup")
                    continue
                default = self._descriptor.default_package_json(self._config.package_scope)
                fs.write_json(target, fs.merge_package_json(default, saved))
            else:
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_bytes(source.read_bytes())
            restored.append(relative)
        return restored


def _result(
    position: int,
    spec: _StepSpec,
    status: StepStatus,
    started: datetime,
    *,
    successful: int = 0,
    failed: int = 0,
    skipped: int = 0,
    improvement: int = 0,
    errors_resolved: int = 0,
    artifacts: list[str] | None = None,
    logs: list[str] | None = None,
    error: dict[str, object] | None = None,
) -> RecoveryPhaseResult:
    return RecoveryPhaseResult(
        phase_id=position,
        phase_name=spec.name,
        status=status,
        start_time=started,
        end_time=_utc_now(),
        tasks_executed=successful + failed + skipped,
        tasks_successful=successful,
        tasks_failed=failed,
        tasks_skipped=skipped,
        health_improvement=improvement,
        errors_resolved=errors_resolved,
        artifacts=list(artifacts or []),
        logs=list(logs or []),
        error=error,
    )


__all__ = [
    "DescriptorRecoveryScript",
    "ModuleRecoveryScript",
    "RecoveryContext",
]
