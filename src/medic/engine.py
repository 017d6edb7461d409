"""Recovery engine facade, decoupled from the CLI and the request layer.

Wires configuration, the descriptor registry, the command runner, the
module state store, the health analyzer, the recovery dispatcher and the
phase scheduler together. Both the CLI and the dashboard hold a
RecoveryEngine by reference; nothing in the engine is a module-level
global.
"""

from __future__ import annotations

import asyncio
import shlex
import time
import uuid
from typing import Any, TypeVar

from pydantic import BaseModel

from medic.core import constants
from medic.core.config import MedicConfig
from medic.core.errors import RecoveryTimeoutError
from medic.core.logging import ExecutionContext, get_logger, with_context
from medic.health.analyzer import HealthAnalyzer
from medic.models.module import (
    ModuleState,
    ModuleStatus,
    RecoveryStrategy,
    TestStatus,
    ValidationResult,
    _utc_now,
)
from medic.models.recovery import (
    BuildOptions,
    BuildTicket,
    RecoveryPhaseResult,
    RecoveryResultSummary,
    StepStatus,
    TestOptions,
    TestTicket,
)
from medic.models.workspace import AnalysisOptions, WorkspaceConfigReport, WorkspaceHealth
from medic.modules.catalogue import ModuleRegistry, create_default_registry
from medic.recovery.dispatcher import RecoveryDispatcher, create_default_dispatcher
from medic.recovery.script import RecoveryContext
from medic.runner import CommandRunner, SubprocessRunner
from medic.scheduler.models import (
    CancellationResult,
    PhaseExecution,
    PhaseExecutionOptions,
    PhaseOverview,
)
from medic.scheduler.scheduler import PhaseScheduler
from medic.state.store import ModuleStateStore

_logger = get_logger("engine")

BUILD_PHASES: tuple[str, ...] = (
    "dependency-resolution",
    "compilation",
    "type-checking",
    "bundling",
)
TEST_PHASES: tuple[str, ...] = ("unit-tests", "integration-tests", "coverage-analysis")

_OptionsT = TypeVar("_OptionsT", bound=BaseModel)


def _coerce(model: type[_OptionsT], options: _OptionsT | dict[str, Any] | None) -> _OptionsT:
    if options is None:
        return model()
    if isinstance(options, dict):
        return model.model_validate(options)
    return options


def _test_command(base: str, options: TestOptions) -> str:
    """Append the suite filter and coverage flag after ``--``."""
    extra: list[str] = []
    if options.test_suite:
        extra.append(shlex.quote(options.test_suite))
    if options.coverage:
        extra.append("--coverage")
    return f"{base} -- {' '.join(extra)}" if extra else base


class RecoveryEngine:
    """Single entry point to analysis, recovery and the phase pipeline.

    Example:
        engine = RecoveryEngine(load_config(None, workspace=Path(".")))
        health = await engine.list_modules()
        results = await engine.recover_module("auth", "rebuild")
        await engine.close()
    """

    def __init__(
        self,
        config: MedicConfig | None = None,
        *,
        registry: ModuleRegistry | None = None,
        runner: CommandRunner | None = None,
    ) -> None:
        self.config = config or MedicConfig()
        self.registry = registry or create_default_registry()
        self.runner: CommandRunner = runner or SubprocessRunner()
        self.store = ModuleStateStore(self.registry)
        self.analyzer = HealthAnalyzer(self.config, self.registry, self.store, self.runner)
        self.dispatcher: RecoveryDispatcher = create_default_dispatcher(
            self.config, self.registry, self.store, self.analyzer, self.runner
        )
        self.scheduler = PhaseScheduler(
            self.config,
            self.registry,
            self.store,
            self.analyzer,
            self.dispatcher,
            self.runner,
        )

    async def __aenter__(self) -> RecoveryEngine:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def close(self) -> None:
        """Cancel running phase executions and release their claims."""
        await self.scheduler.shutdown()

    def _refresh(self, states: list[ModuleState]) -> None:
        for state in states:
            if self.store.owner_of(state.module_id) is None:
                self.store.put(state)

    # ─── Modules ──────────────────────────────────────────────────────

    async def analyze_workspace(
        self, options: AnalysisOptions | dict[str, Any] | None = None
    ) -> WorkspaceHealth:
        """Read-only workspace assessment."""
        if isinstance(options, dict):
            options = AnalysisOptions.model_validate(options)
        return await self.analyzer.analyze_workspace(options)

    async def list_modules(
        self, options: AnalysisOptions | dict[str, Any] | None = None
    ) -> WorkspaceHealth:
        """Assess the workspace and record the fresh module states."""
        health = await self.analyze_workspace(options)
        self._refresh(list(health.module_states.values()))
        return health

    async def get_module(self, module_id: str, *, include_error_details: bool = True) -> ModuleState:
        """Assess one module and record its fresh state.

        Raises:
            ModuleNotFoundError: If the id is not registered.
        """
        state = await self.analyzer.analyze_module(
            module_id, include_error_details=include_error_details
        )
        self._refresh([state])
        return state

    async def validate_module(self, module_id: str) -> ValidationResult:
        return await self.analyzer.validate_module(module_id)

    def validate_configuration(self) -> WorkspaceConfigReport:
        return self.analyzer.validate_configuration()

    def update_module(
        self,
        module_id: str,
        *,
        status: ModuleStatus | str | None = None,
        notes: str | None = None,
    ) -> ModuleState:
        """Apply an operator update of status and/or notes.

        Raises:
            ModuleNotFoundError: If the id is not registered.
            ModuleBusyError: If an execution currently owns the module.
        """
        self.registry.get(module_id)
        parsed = ModuleStatus(status) if status is not None else None
        return self.store.update_operator_fields(module_id, status=parsed, notes=notes)

    # ─── Recovery ─────────────────────────────────────────────────────

    async def recover_module(
        self,
        module_id: str,
        strategy: RecoveryStrategy | str,
        *,
        dry_run: bool = False,
        include_tests: bool = True,
        clean_build: bool = True,
        dependency_resolution: bool = True,
        task_timeout: float | None = None,
        execution_id: str | None = None,
    ) -> list[RecoveryPhaseResult]:
        """Run one strategy against one module.

        Raises:
            ModuleNotFoundError: If the id is not registered.
            UnsupportedStrategyError: For an unknown strategy.
            ModuleBusyError: If another execution owns the module.
        """
        context = RecoveryContext(
            execution_id=execution_id or f"recover-{module_id}-{uuid.uuid4().hex[:12]}",
            dry_run=dry_run,
            include_tests=include_tests,
            clean_build=clean_build,
            dependency_resolution=dependency_resolution,
            task_timeout=task_timeout or self.config.task_timeout_seconds,
        )
        return await self.dispatcher.recover_module(module_id, strategy, context)

    async def trigger_build(
        self, module_id: str, options: BuildOptions | dict[str, Any] | None = None
    ) -> BuildTicket:
        """Rebuild a module and return a build ticket.

        Raises:
            ModuleNotFoundError: If the id is not registered.
            ModuleBusyError: If another execution owns the module.
            pydantic.ValidationError: For unknown or invalid options.
        """
        options = _coerce(BuildOptions, options)
        self.registry.get(module_id)
        build_id = f"build-{module_id}-{int(time.time() * 1000)}"
        results = await self.recover_module(
            module_id,
            RecoveryStrategy.REBUILD,
            include_tests=not options.skip_tests,
            clean_build=options.clean_build,
            dependency_resolution=options.dependency_resolution,
            task_timeout=options.timeout,
            execution_id=build_id,
        )
        state = self.store.get(module_id)
        ticket = BuildTicket(
            build_id=build_id,
            module_id=module_id,
            build_status=state.build_status.value,
            estimated_duration=constants.BUILD_TICKET_DURATION_SECONDS,
            build_phases=list(BUILD_PHASES),
            recovery_result=RecoveryResultSummary.from_results("rebuild", results),
        )
        _logger.info(
            "engine.build_triggered",
            module_id=module_id,
            build_id=build_id,
            build_status=ticket.build_status,
        )
        return ticket

    async def trigger_test(
        self, module_id: str, options: TestOptions | dict[str, Any] | None = None
    ) -> TestTicket:
        """Repair a module, run its test command and return a test ticket.

        The test command is bounded by ``options.timeout`` or the task
        budget; on expiry the module is marked ``failing`` and the ticket
        carries a ``TIMEOUT`` envelope.

        Raises:
            ModuleNotFoundError: If the id is not registered.
            ModuleBusyError: If another execution owns the module.
            pydantic.ValidationError: For unknown or invalid options.
        """
        options = _coerce(TestOptions, options)
        self.registry.get(module_id)
        test_id = f"test-{module_id}-{int(time.time() * 1000)}"
        if options.fix_failures:
            results = await self.recover_module(
                module_id,
                RecoveryStrategy.REPAIR,
                include_tests=False,
                task_timeout=options.timeout,
                execution_id=test_id,
            )
            summary = RecoveryResultSummary.from_results("repair", results)
        else:
            summary = RecoveryResultSummary(strategy="repair", status=StepStatus.SKIPPED, steps=0)

        module_dir = self.config.module_path(module_id)
        command = _test_command(self.config.commands.test, options)
        timeout = options.timeout or self.config.task_timeout_seconds
        output: str | None = None
        error: dict[str, Any] | None = None
        test_status = TestStatus.NOT_STARTED
        if module_dir.is_dir():
            acquired = self.store.claim(module_id, test_id)
            try:
                with with_context(
                    ExecutionContext(execution_id=test_id, module_id=module_id, component="engine")
                ):
                    try:
                        result = await asyncio.wait_for(
                            self.runner.run(command, module_dir), timeout=timeout
                        )
                    except TimeoutError:
                        test_status = TestStatus.FAILING
                        error = RecoveryTimeoutError(
                            "task",
                            timeout,
                            module_id=module_id,
                            execution_id=test_id,
                            operation="test",
                        ).to_envelope()
                        _logger.warning("engine.test_timed_out", budget_seconds=timeout)
                    else:
                        test_status = TestStatus.PASSING if result.ok else TestStatus.FAILING
                        if options.generate_report:
                            output = result.summary()
                self.store.put(
                    self.store.get(module_id).model_copy(
                        update={"test_status": test_status, "last_test_run": _utc_now()}
                    )
                )
            finally:
                if acquired:
                    self.store.release(module_id, test_id)

        ticket = TestTicket(
            test_id=test_id,
            module_id=module_id,
            test_status=test_status.value,
            estimated_duration=constants.TEST_TICKET_DURATION_SECONDS,
            test_phases=list(TEST_PHASES),
            output=output,
            error=error,
            recovery_result=summary,
        )
        _logger.info(
            "engine.test_triggered",
            module_id=module_id,
            test_id=test_id,
            test_status=ticket.test_status,
        )
        return ticket

    # ─── Phases ───────────────────────────────────────────────────────

    async def get_phases(
        self, *, include_tasks: bool = False, include_metrics: bool = True
    ) -> PhaseOverview:
        return await self.scheduler.get_phases(
            include_tasks=include_tasks, include_metrics=include_metrics
        )

    async def execute_phase(
        self,
        phase_id: Any,
        options: PhaseExecutionOptions | dict[str, Any] | None = None,
    ) -> PhaseExecution:
        return await self.scheduler.execute_phase(phase_id, options)

    def get_execution_status(self, execution_id: str, phase_id: int | None = None) -> PhaseExecution:
        return self.scheduler.get_execution_status(execution_id, phase_id)

    async def cancel_phase(
        self,
        execution_id: str,
        phase_id: int | None = None,
        reason: str | None = None,
    ) -> CancellationResult:
        return await self.scheduler.cancel_phase(execution_id, phase_id, reason)


__all__ = ["BUILD_PHASES", "RecoveryEngine", "TEST_PHASES"]
