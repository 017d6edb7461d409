"""Phase scheduler: the five-phase workspace recovery pipeline.

Owns the process-scoped RecoverySession and drives its phases. Each phase
execution:

1. validates the phase id, the predecessor, and the phase's pre-flight
   checks, then synchronously claims every target module under a new
   execution id (a concurrent execution touching the same modules is
   rejected with ModuleBusyError);
2. runs its tasks in a background asyncio task, layer group by layer
   group, sequentially or concurrently up to ``max_concurrency``;
3. bounds each task by the task budget and the whole phase by the phase
   budget;
4. releases its claims when it ends, whatever the outcome.

Cancellation is cooperative: the execution's cancel event is observed
before every task and every recovery step. After ``cancel_grace_seconds``
the background task is cancelled outright. Cleanup then releases claims
and removes stray reset backups.

Sessions live in process memory only.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from itertools import groupby
from typing import Any

from medic.core import constants
from medic.core.config import MedicConfig
from medic.core.errors import (
    ExecutionNotFoundError,
    InvalidPhaseIdError,
    MedicError,
    ModuleBusyError,
    PhaseMismatchError,
    PhasePrerequisiteError,
    RecoveryTimeoutError,
    ServiceError,
)
from medic.core.logging import ExecutionContext, get_logger, with_context
from medic.health.analyzer import HealthAnalyzer
from medic.models.module import RecoveryStrategy, TestStatus, _utc_now
from medic.models.recovery import StepStatus, total_improvement
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
from medic.models.workspace import AnalysisOptions
from medic.modules.catalogue import ModuleRegistry
from medic.recovery import steps as fs
from medic.recovery.dispatcher import RecoveryDispatcher
from medic.recovery.script import RecoveryContext
from medic.runner import CommandRunner
from medic.scheduler.models import (
    CancellationResult,
    ExecutionStatus,
    PhaseExecution,
    PhaseExecutionOptions,
    PhaseOverview,
    PhaseSummary,
)
from medic.scheduler.pipeline import build_session
from medic.scheduler.task_utils import log_task_exception
from medic.state.store import ModuleStateStore

_logger = get_logger("scheduler")

_UNFINISHED_TASK_STATUSES = frozenset({
    TaskStatus.PENDING,
    TaskStatus.READY,
    TaskStatus.EXECUTING,
    TaskStatus.RETRYING,
})

_STRATEGY_FOR_ACTION: dict[TaskAction, RecoveryStrategy] = {
    TaskAction.REPAIR: RecoveryStrategy.REPAIR,
    TaskAction.REBUILD: RecoveryStrategy.REBUILD,
}


@dataclass
class _TaskOutcome:
    status: TaskStatus
    health_improvement: int = 0
    output: str | None = None
    error: dict[str, Any] | None = None


@dataclass
class _Execution:
    """Live bookkeeping for one phase execution."""

    execution_id: str
    phase_id: int
    options: PhaseExecutionOptions
    module_ids: list[str]
    tasks: list[RecoveryTask]
    started_at: datetime = field(default_factory=_utc_now)
    status: ExecutionStatus = ExecutionStatus.EXECUTING
    completed_at: datetime | None = None
    error: dict[str, Any] | None = None
    cleanup_performed: bool = False
    cancel_reason: str | None = None
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    task: asyncio.Task[None] | None = None
    final: PhaseExecution | None = None

    def improvement(self) -> int:
        return sum(
            a.health_improvement
            for t in self.tasks
            for a in t.attempts
            if a.execution_id == self.execution_id and a.status == TaskStatus.COMPLETED
        )


def validate_phase_id(phase_id: Any) -> int:
    """Coerce and range-check a phase id.

    Raises:
        InvalidPhaseIdError: If the id is not an integer in [1, PHASE_COUNT].
    """
    if isinstance(phase_id, int) and not isinstance(phase_id, bool):
        value = phase_id
    elif isinstance(phase_id, str) and phase_id.strip().isdigit():
        value = int(phase_id)
    else:
        raise InvalidPhaseIdError(phase_id, 1, constants.PHASE_COUNT)
    if not 1 <= value <= constants.PHASE_COUNT:
        raise InvalidPhaseIdError(phase_id, 1, constants.PHASE_COUNT)
    return value


class PhaseScheduler:
    """Sequences the recovery pipeline and tracks phase executions.

    Example:
        scheduler = PhaseScheduler(config, registry, store, analyzer, dispatcher, runner)
        execution = await scheduler.execute_phase(1)
        while not execution.status.is_terminal:
            await asyncio.sleep(1)
            execution = scheduler.get_execution_status(execution.execution_id)
    """

    def __init__(
        self,
        config: MedicConfig,
        registry: ModuleRegistry,
        store: ModuleStateStore,
        analyzer: HealthAnalyzer,
        dispatcher: RecoveryDispatcher,
        runner: CommandRunner,
    ) -> None:
        self._config = config
        self._registry = registry
        self._store = store
        self._analyzer = analyzer
        self._dispatcher = dispatcher
        self._runner = runner
        self._session: RecoverySession | None = None
        self._session_lock = asyncio.Lock()
        self._executions: dict[str, _Execution] = {}

    # ─── Session ──────────────────────────────────────────────────────

    @property
    def session(self) -> RecoverySession | None:
        return self._session

    async def _ensure_session(self) -> RecoverySession:
        async with self._session_lock:
            if self._session is None:
                health = await self._analyzer.analyze_workspace(
                    AnalysisOptions(analysis_depth=self._config.recovery_assessment_depth)
                )
                initial = health.overall_health_score or 0
                session = build_session(
                    self._registry,
                    str(self._config.workspace_path),
                    initial,
                    _utc_now() + timedelta(seconds=self._config.session_timeout_seconds),
                )
                session.status = SessionStatus.PLANNING
                session.phases[0].status = PhaseStatus.READY
                self._session = session
                _logger.info(
                    "scheduler.session_started",
                    session_id=session.session_id,
                    initial_health_score=initial,
                    deadline=session.deadline.isoformat() if session.deadline else None,
                )
            return self._session

    def _refresh_progress(self, session: RecoverySession) -> None:
        completed = [p for p in session.phases if p.status == PhaseStatus.COMPLETED]
        session.overall_progress = len(completed) * 100 // constants.PHASE_COUNT
        session.health_improvement = sum(p.health_improvement for p in session.phases)
        session.current_health_score = min(
            constants.MAX_HEALTH_SCORE,
            session.initial_health_score + session.health_improvement,
        )
        for previous, phase in zip(session.phases, session.phases[1:]):
            if previous.status == PhaseStatus.COMPLETED and phase.status == PhaseStatus.PENDING:
                phase.status = PhaseStatus.READY
        if len(completed) == constants.PHASE_COUNT:
            session.status = SessionStatus.COMPLETED
            session.end_time = _utc_now()

    # ─── Queries ──────────────────────────────────────────────────────

    async def get_phases(
        self, *, include_tasks: bool = False, include_metrics: bool = True
    ) -> PhaseOverview:
        """Summarize every phase and the session's progress."""
        session = await self._ensure_session()
        remaining = sum(
            p.estimated_duration for p in session.phases if p.status != PhaseStatus.COMPLETED
        )
        return PhaseOverview(
            session_id=session.session_id,
            session_status=session.status,
            phases=[self._summarize(p, include_tasks) for p in session.phases],
            current_phase=session.current_phase,
            overall_progress=session.overall_progress,
            total_health_improvement=session.health_improvement,
            initial_health_score=session.initial_health_score if include_metrics else None,
            current_health_score=session.current_health_score if include_metrics else None,
            estimated_completion=(
                _utc_now() + timedelta(seconds=remaining) if remaining else session.end_time
            ),
        )

    @staticmethod
    def _summarize(phase: RecoveryPhase, include_tasks: bool) -> PhaseSummary:
        return PhaseSummary(
            phase_id=phase.phase_id,
            name=phase.name,
            description=phase.description,
            phase_type=phase.phase_type,
            status=phase.status,
            estimated_duration=phase.estimated_duration,
            tasks_total=phase.tasks_total,
            tasks_completed=phase.tasks_completed,
            tasks_failed=phase.tasks_failed,
            health_improvement=phase.health_improvement,
            errors=list(phase.errors),
            start_time=phase.start_time,
            end_time=phase.end_time,
            last_execution_id=phase.last_execution_id,
            tasks=[t.model_copy(deep=True) for t in phase.tasks] if include_tasks else None,
        )

    def _lookup(self, execution_id: str, phase_id: int | None = None) -> _Execution:
        execution = self._executions.get(execution_id)
        if execution is None:
            raise ExecutionNotFoundError(execution_id, phase_id=phase_id)
        if phase_id is not None and phase_id != execution.phase_id:
            raise PhaseMismatchError(execution_id, execution.phase_id, phase_id)
        return execution

    def get_execution_status(self, execution_id: str, phase_id: int | None = None) -> PhaseExecution:
        """Poll an execution.

        Raises:
            ExecutionNotFoundError: If the id is unknown.
            PhaseMismatchError: If ``phase_id`` is given and differs.
        """
        return self._snapshot(self._lookup(execution_id, phase_id))

    def _snapshot(self, execution: _Execution, *, accepted: bool = False) -> PhaseExecution:
        if execution.final is not None:
            return execution.final.model_copy(update={"accepted": accepted}, deep=True)
        assert self._session is not None
        phase = self._session.get_phase(execution.phase_id)
        tasks = execution.tasks
        counts = {status: 0 for status in TaskStatus}
        for task in tasks:
            counts[task.status] += 1
        finished = sum(n for status, n in counts.items() if status not in _UNFINISHED_TASK_STATUSES)
        return PhaseExecution(
            execution_id=execution.execution_id,
            phase_id=execution.phase_id,
            phase_name=phase.name,
            status=execution.status,
            phase_status=phase.status,
            accepted=accepted,
            dry_run=execution.options.dry_run,
            options=execution.options,
            started_at=execution.started_at,
            completed_at=execution.completed_at,
            module_ids=list(execution.module_ids),
            tasks_total=len(tasks),
            tasks_completed=counts[TaskStatus.COMPLETED],
            tasks_failed=counts[TaskStatus.FAILED],
            tasks_skipped=counts[TaskStatus.SKIPPED],
            tasks_cancelled=counts[TaskStatus.CANCELLED],
            progress=finished * 100 // len(tasks) if tasks else 100,
            health_improvement=execution.improvement(),
            cleanup_performed=execution.cleanup_performed,
            tasks=[t.model_copy(deep=True) for t in tasks],
            error=execution.error,
        )

    # ─── Execution ────────────────────────────────────────────────────

    async def execute_phase(
        self,
        phase_id: Any,
        options: PhaseExecutionOptions | dict[str, Any] | None = None,
    ) -> PhaseExecution:
        """Start a phase execution.

        Waits up to ``sync_wait_seconds`` for the execution to finish. If it
        is still running the record is returned with ``accepted=True`` and
        the execution continues in the background.

        Raises:
            InvalidPhaseIdError: For a phase id outside 1-5.
            PhasePrerequisiteError: If the predecessor has not completed
                (without ``force_execution``) or a pre-flight check fails.
            ModuleBusyError: If a target module is claimed by another execution.
            RecoveryTimeoutError: If the session deadline has passed.
        """
        number = validate_phase_id(phase_id)
        if options is None:
            options = PhaseExecutionOptions()
        elif isinstance(options, dict):
            options = PhaseExecutionOptions.model_validate(options)
        if "max_concurrency" not in options.model_fields_set:
            options = options.model_copy(
                update={"max_concurrency": self._config.default_max_concurrency}
            )

        session = await self._ensure_session()
        # Everything from here to the task launch is synchronous; claims are
        # taken before the next suspension point.
        if session.deadline is not None and _utc_now() > session.deadline:
            session.status = SessionStatus.INTERRUPTED
            _logger.warning("scheduler.session_timed_out", session_id=session.session_id)
            raise RecoveryTimeoutError(
                "session",
                self._config.session_timeout_seconds,
                session_id=session.session_id,
                phase_id=number,
            )

        phase = session.get_phase(number)
        module_ids = list(dict.fromkeys(t.module_id for t in phase.tasks))
        if phase.status == PhaseStatus.EXECUTING and not options.dry_run:
            raise ModuleBusyError(module_ids[0] if module_ids else "", phase.last_execution_id)
        self._check_prerequisites(session, phase, options)

        execution_id = f"exec-phase{number}-{uuid.uuid4().hex[:12]}"
        if options.dry_run:
            return self._plan(execution_id, phase, options, module_ids)

        self._store.claim_many(module_ids, execution_id)

        for task in phase.tasks:
            task.status = TaskStatus.PENDING
        phase.status = PhaseStatus.EXECUTING
        phase.start_time = _utc_now()
        phase.end_time = None
        phase.errors = []
        phase.health_improvement = 0
        phase.last_execution_id = execution_id
        session.status = SessionStatus.EXECUTING
        session.current_phase = number

        execution = _Execution(
            execution_id=execution_id,
            phase_id=number,
            options=options,
            module_ids=module_ids,
            tasks=phase.tasks,
        )
        self._executions[execution_id] = execution
        execution.task = asyncio.create_task(
            self._run_execution(execution), name=f"phase-{number}-{execution_id}"
        )
        execution.task.add_done_callback(
            lambda t: log_task_exception(t, _logger, "scheduler.execution_crashed")
        )
        _logger.info(
            "scheduler.phase_started",
            execution_id=execution_id,
            phase_id=number,
            phase_name=phase.name,
            task_count=len(phase.tasks),
            parallel=options.parallel_execution,
            max_concurrency=options.max_concurrency,
        )

        await asyncio.wait({execution.task}, timeout=self._config.sync_wait_seconds)
        return self._snapshot(execution, accepted=not execution.task.done())

    def _check_prerequisites(
        self,
        session: RecoverySession,
        phase: RecoveryPhase,
        options: PhaseExecutionOptions,
    ) -> None:
        if phase.phase_id > 1 and not options.force_execution:
            previous = session.get_phase(phase.phase_id - 1)
            if previous.status != PhaseStatus.COMPLETED:
                raise PhasePrerequisiteError(
                    phase.phase_id,
                    f"phase {previous.phase_id} is {previous.status.value}, not completed",
                    required_phase=previous.phase_id,
                    expected="completed",
                    received=previous.status.value,
                )

        if options.skip_validation:
            return
        if phase.phase_type == PhaseType.STABILIZATION:
            report = self._analyzer.validate_configuration()
            if len(report.errors) > constants.STABILIZATION_MAX_CONFIG_ERRORS:
                raise PhasePrerequisiteError(
                    phase.phase_id,
                    f"workspace configuration has {len(report.errors)} errors",
                    errors=report.errors,
                    max_errors=constants.STABILIZATION_MAX_CONFIG_ERRORS,
                )
        elif phase.phase_type == PhaseType.IMPLEMENTATION and not options.force_execution:
            prior = sum(
                p.health_improvement for p in session.phases if p.phase_id < phase.phase_id
            )
            if prior < constants.IMPLEMENTATION_MIN_PRIOR_IMPROVEMENT:
                raise PhasePrerequisiteError(
                    phase.phase_id,
                    f"earlier phases improved health by {prior}, "
                    f"need at least {constants.IMPLEMENTATION_MIN_PRIOR_IMPROVEMENT}",
                    expected=constants.IMPLEMENTATION_MIN_PRIOR_IMPROVEMENT,
                    received=prior,
                )

    def _plan(
        self,
        execution_id: str,
        phase: RecoveryPhase,
        options: PhaseExecutionOptions,
        module_ids: list[str],
    ) -> PhaseExecution:
        planned = [
            t.model_copy(update={"status": TaskStatus.PENDING, "attempts": []}, deep=True)
            for t in phase.tasks
        ]
        execution = _Execution(
            execution_id=execution_id,
            phase_id=phase.phase_id,
            options=options,
            module_ids=module_ids,
            tasks=planned,
            status=ExecutionStatus.PLANNED,
            completed_at=_utc_now(),
        )
        self._executions[execution_id] = execution
        execution.final = self._snapshot(execution)
        _logger.info(
            "scheduler.phase_planned",
            execution_id=execution_id,
            phase_id=phase.phase_id,
            task_count=len(planned),
        )
        return execution.final.model_copy(deep=True)

    async def _run_execution(self, execution: _Execution) -> None:
        budget = execution.options.timeout or self._config.phase_timeout_seconds
        ctx = ExecutionContext(
            execution_id=execution.execution_id,
            phase_id=execution.phase_id,
            component="scheduler",
        )
        with with_context(ctx):
            try:
                await asyncio.wait_for(self._run_tasks(execution), timeout=budget)
            except TimeoutError:
                self._finish_timed_out(execution, budget)
            except asyncio.CancelledError:
                execution.cancel_event.set()
                self._finish_cancelled(execution)
                raise
            except Exception as e:
                _logger.exception("scheduler.phase_crashed", error=str(e))
                self._finish_crashed(execution, e)
            else:
                if execution.cancel_event.is_set():
                    self._finish_cancelled(execution)
                else:
                    self._finish(execution)
            finally:
                self._store.release_all(execution.execution_id)

    async def _run_tasks(self, execution: _Execution) -> None:
        options = execution.options
        semaphore = asyncio.Semaphore(options.max_concurrency)

        async def bounded(task: RecoveryTask) -> None:
            async with semaphore:
                await self._run_task(execution, task)

        for _, group in groupby(execution.tasks, key=lambda t: t.layer):
            layer_tasks = list(group)
            if options.parallel_execution:
                # a crashing task cancels its siblings before claims are released
                try:
                    async with asyncio.TaskGroup() as group:
                        for task in layer_tasks:
                            group.create_task(bounded(task))
                except ExceptionGroup as eg:
                    raise eg.exceptions[0] from eg
            else:
                for task in layer_tasks:
                    await self._run_task(execution, task)

    async def _run_task(self, execution: _Execution, task: RecoveryTask) -> None:
        if execution.cancel_event.is_set():
            task.status = TaskStatus.CANCELLED
            return

        log = _logger.bind(task_id=task.task_id, module_id=task.module_id)
        task.status = TaskStatus.EXECUTING
        attempt = RecoveryAttempt(
            attempt_number=len(task.attempts) + 1,
            execution_id=execution.execution_id,
        )
        task.attempts.append(attempt)
        log.debug("scheduler.task_started", action=task.action.value)

        budget = self._config.task_timeout_seconds
        try:
            outcome = await asyncio.wait_for(self._perform(execution, task), timeout=budget)
        except TimeoutError:
            outcome = _TaskOutcome(
                status=TaskStatus.FAILED,
                error=RecoveryTimeoutError(
                    "task",
                    budget,
                    module_id=task.module_id,
                    phase_id=task.phase_id,
                    execution_id=execution.execution_id,
                ).to_envelope(),
            )
        except MedicError as e:
            outcome = _TaskOutcome(status=TaskStatus.FAILED, error=e.to_envelope())

        attempt.status = outcome.status
        attempt.health_improvement = outcome.health_improvement
        attempt.output = outcome.output
        attempt.error = outcome.error
        attempt.completed_at = _utc_now()
        task.status = outcome.status

        if outcome.status == TaskStatus.FAILED:
            log.warning(
                "scheduler.task_failed",
                error_code=(outcome.error or {}).get("code"),
                mandatory=task.mandatory,
            )
        else:
            log.info(
                "scheduler.task_finished",
                status=outcome.status.value,
                health_improvement=outcome.health_improvement,
            )

    async def _perform(self, execution: _Execution, task: RecoveryTask) -> _TaskOutcome:
        if task.action in _STRATEGY_FOR_ACTION:
            return await self._perform_recovery(execution, task)
        if task.action == TaskAction.TEST:
            return await self._perform_test(task)
        return await self._perform_validation(task)

    async def _perform_recovery(self, execution: _Execution, task: RecoveryTask) -> _TaskOutcome:
        context = RecoveryContext(
            execution_id=execution.execution_id,
            include_tests=False,
            cancel_event=execution.cancel_event,
            task_timeout=self._config.task_timeout_seconds,
        )
        results = await self._dispatcher.recover_module(
            task.module_id, _STRATEGY_FOR_ACTION[task.action], context
        )
        output = "\n".join(line for r in results for line in r.logs)
        improvement = total_improvement(results)
        failed = [r for r in results if r.status == StepStatus.FAILED]
        if failed:
            return _TaskOutcome(
                status=TaskStatus.FAILED,
                health_improvement=improvement,
                output=output,
                error=failed[0].error
                or {
                    "code": "STEP_FAILED",
                    "message": f"{failed[0].phase_name} failed",
                    "details": {"module_id": task.module_id, "step": failed[0].phase_name},
                },
            )
        if any(r.status == StepStatus.SKIPPED for r in results):
            return _TaskOutcome(
                status=TaskStatus.CANCELLED, health_improvement=improvement, output=output
            )
        return _TaskOutcome(
            status=TaskStatus.COMPLETED, health_improvement=improvement, output=output
        )

    async def _perform_test(self, task: RecoveryTask) -> _TaskOutcome:
        module_dir = self._config.module_path(task.module_id)
        if not module_dir.is_dir():
            raise ServiceError(
                "Module directory does not exist",
                service="runner",
                operation="test",
                module_id=task.module_id,
            )
        result = await self._runner.run(self._config.commands.test, module_dir)
        state = self._store.get(task.module_id)
        self._store.put(
            state.model_copy(
                update={
                    "test_status": TestStatus.PASSING if result.ok else TestStatus.FAILING,
                    "last_test_run": _utc_now(),
                }
            )
        )
        if result.ok:
            return _TaskOutcome(status=TaskStatus.COMPLETED, output=result.summary())
        return _TaskOutcome(
            status=TaskStatus.FAILED,
            output=result.summary(),
            error=ServiceError(
                "Test suite fails",
                service="runner",
                operation="test",
                module_id=task.module_id,
                exit_code=result.exit_code,
            ).to_envelope(),
        )

    async def _perform_validation(self, task: RecoveryTask) -> _TaskOutcome:
        state = await self._analyzer.analyze_module(
            task.module_id, self._config.recovery_assessment_depth
        )
        self._store.put(state)
        target = self._config.target_health_score
        output = f"Health score {state.health_score} (target {target})"
        if state.health_score >= target:
            return _TaskOutcome(status=TaskStatus.COMPLETED, output=output)
        return _TaskOutcome(
            status=TaskStatus.FAILED,
            output=output,
            error={
                "code": "HEALTH_BELOW_TARGET",
                "message": f"{task.module_id} health score {state.health_score} is below {target}",
                "details": {
                    "module_id": task.module_id,
                    "expected": target,
                    "received": state.health_score,
                },
            },
        )

    # ─── Finalization ─────────────────────────────────────────────────

    def _close(self, execution: _Execution, status: ExecutionStatus) -> RecoveryPhase:
        assert self._session is not None
        phase = self._session.get_phase(execution.phase_id)
        phase.health_improvement = execution.improvement()
        phase.end_time = _utc_now()
        execution.status = status
        execution.completed_at = phase.end_time
        return phase

    def _freeze(self, execution: _Execution) -> None:
        assert self._session is not None
        self._refresh_progress(self._session)
        execution.final = self._snapshot(execution)

    def _finish(self, execution: _Execution) -> None:
        assert self._session is not None
        failed = [t for t in execution.tasks if t.mandatory and t.status == TaskStatus.FAILED]
        if failed:
            phase = self._close(execution, ExecutionStatus.FAILED)
            phase.status = PhaseStatus.FAILED
            phase.errors = [f"{t.task_name} failed" for t in failed]
            self._session.status = SessionStatus.FAILED
            _logger.warning(
                "scheduler.phase_failed",
                failed_tasks=[t.task_id for t in failed],
                health_improvement=phase.health_improvement,
            )
        else:
            phase = self._close(execution, ExecutionStatus.COMPLETED)
            phase.status = PhaseStatus.COMPLETED
            _logger.info(
                "scheduler.phase_completed",
                health_improvement=phase.health_improvement,
            )
        self._freeze(execution)

    def _finish_timed_out(self, execution: _Execution, budget: float) -> None:
        assert self._session is not None
        error = RecoveryTimeoutError(
            "phase",
            budget,
            phase_id=execution.phase_id,
            execution_id=execution.execution_id,
        )
        now = _utc_now()
        for task in execution.tasks:
            if task.status == TaskStatus.EXECUTING:
                task.status = TaskStatus.FAILED
                attempt = task.last_attempt
                if attempt is not None and attempt.execution_id == execution.execution_id:
                    attempt.status = TaskStatus.FAILED
                    attempt.error = error.to_envelope()
                    attempt.completed_at = now
            elif task.status in _UNFINISHED_TASK_STATUSES:
                task.status = TaskStatus.SKIPPED
        phase = self._close(execution, ExecutionStatus.FAILED)
        phase.status = PhaseStatus.FAILED
        phase.errors = [error.message]
        execution.error = error.to_envelope()
        self._session.status = SessionStatus.FAILED
        _logger.warning("scheduler.phase_timed_out", budget_seconds=budget)
        self._freeze(execution)

    def _finish_crashed(self, execution: _Execution, exc: Exception) -> None:
        assert self._session is not None
        error = ServiceError(
            f"Phase execution crashed: {exc}",
            service="scheduler",
            operation="execute_phase",
            phase_id=execution.phase_id,
            execution_id=execution.execution_id,
        )
        for task in execution.tasks:
            if task.status in _UNFINISHED_TASK_STATUSES:
                task.status = TaskStatus.FAILED
        phase = self._close(execution, ExecutionStatus.FAILED)
        phase.status = PhaseStatus.FAILED
        phase.errors = [error.message]
        execution.error = error.to_envelope()
        self._session.status = SessionStatus.FAILED
        self._freeze(execution)

    def _finish_cancelled(self, execution: _Execution) -> None:
        assert self._session is not None
        now = _utc_now()
        for task in execution.tasks:
            if task.status in _UNFINISHED_TASK_STATUSES:
                task.status = TaskStatus.CANCELLED
                attempt = task.last_attempt
                if (
                    attempt is not None
                    and attempt.execution_id == execution.execution_id
                    and attempt.completed_at is None
                ):
                    attempt.status = TaskStatus.CANCELLED
                    attempt.completed_at = now

        cleaned = self._cleanup(execution)
        phase = self._close(execution, ExecutionStatus.CANCELLED)
        phase.status = PhaseStatus.ROLLED_BACK if cleaned else PhaseStatus.FAILED
        phase.errors = [f"Cancelled: {execution.cancel_reason or 'execution cancelled'}"]
        execution.cleanup_performed = cleaned
        self._session.status = SessionStatus.PAUSED
        _logger.info(
            "scheduler.phase_cancelled",
            reason=execution.cancel_reason,
            cleanup_performed=cleaned,
            phase_status=phase.status.value,
        )
        self._freeze(execution)

    def _cleanup(self, execution: _Execution) -> bool:
        """Release claims and remove stray reset backups."""
        self._store.release_all(execution.execution_id)
        ok = True
        for module_id in execution.module_ids:
            try:
                fs.remove_backup(self._config.module_path(module_id))
            except OSError as e:
                ok = False
                _logger.error(
                    "scheduler.cleanup_failed",
                    module_id=module_id,
                    error=str(e),
                )
        return ok

    # ─── Cancellation ─────────────────────────────────────────────────

    async def cancel_phase(
        self,
        execution_id: str,
        phase_id: int | None = None,
        reason: str | None = None,
    ) -> CancellationResult:
        """Cancel a running phase execution.

        Raises:
            ExecutionNotFoundError: If the id is unknown.
            PhaseMismatchError: If ``phase_id`` is given and differs.
        """
        execution = self._lookup(execution_id, phase_id)
        if execution.status != ExecutionStatus.EXECUTING or execution.task is None:
            return CancellationResult(
                execution_id=execution_id,
                phase_id=execution.phase_id,
                cancelled=False,
                reason="Execution not currently running",
                status=execution.status,
            )

        execution.cancel_reason = reason or "Cancelled by request"
        execution.cancel_event.set()
        _logger.info(
            "scheduler.cancel_requested",
            execution_id=execution_id,
            phase_id=execution.phase_id,
            reason=execution.cancel_reason,
        )
        done, _ = await asyncio.wait({execution.task}, timeout=self._config.cancel_grace_seconds)
        if not done:
            execution.task.cancel(msg="cancel grace period exceeded")
            await asyncio.wait({execution.task})

        return CancellationResult(
            execution_id=execution_id,
            phase_id=execution.phase_id,
            cancelled=execution.status == ExecutionStatus.CANCELLED,
            reason=execution.cancel_reason,
            cleanup_performed=execution.cleanup_performed,
            status=execution.status,
        )

    async def shutdown(self) -> None:
        """Cancel every running execution and wait for cleanup."""
        running = [
            e for e in self._executions.values()
            if e.status == ExecutionStatus.EXECUTING and e.task is not None
        ]
        for execution in running:
            execution.cancel_reason = "Engine shutting down"
            execution.cancel_event.set()
            assert execution.task is not None
            execution.task.cancel(msg="engine shutdown")
        if running:
            await asyncio.wait({e.task for e in running if e.task is not None})
            _logger.info("scheduler.shutdown", cancelled_executions=len(running))


__all__ = ["PhaseScheduler", "validate_phase_id"]
