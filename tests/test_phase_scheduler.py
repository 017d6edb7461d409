"""Tests for the five-phase recovery pipeline.

Covers phase validation and prerequisites, dry runs, sequential and
concurrent task execution, module exclusivity between executions,
cooperative cancellation with cleanup, and the task/phase/session budgets.
"""

import asyncio
from collections.abc import AsyncIterator
from pathlib import Path

import pytest
from pydantic import ValidationError

from medic.core.config import MedicConfig
from medic.core.errors import (
    ExecutionNotFoundError,
    InvalidPhaseIdError,
    ModuleBusyError,
    PhaseMismatchError,
    PhasePrerequisiteError,
    RecoveryTimeoutError,
)
from medic.engine import RecoveryEngine
from medic.models.module import ModuleStatus, TestStatus
from medic.models.session import PhaseStatus, SessionStatus, TaskStatus
from medic.models.workspace import WorkspaceConfigReport
from medic.scheduler.models import ExecutionStatus, PhaseExecutionOptions
from medic.scheduler.pipeline import PIPELINE
from medic.scheduler.scheduler import validate_phase_id
from tests.helpers import FakeRunner, wait_for_terminal, wait_until


# ─── Fixtures ──────────────────────────────────────────────────────────


@pytest.fixture
async def quick_engine(
    config: MedicConfig, fake_runner: FakeRunner
) -> AsyncIterator[RecoveryEngine]:
    """Engine that returns from execute_phase almost immediately."""
    eng = RecoveryEngine(
        config.model_copy(update={"sync_wait_seconds": 0.01}), runner=fake_runner
    )
    yield eng
    await eng.close()


async def _run_phases(engine: RecoveryEngine, *phase_ids: int) -> None:
    for phase_id in phase_ids:
        execution = await engine.execute_phase(phase_id)
        assert execution.status == ExecutionStatus.COMPLETED, execution.error


# ─── Pipeline definition ───────────────────────────────────────────────


class TestPipeline:
    def test_five_phases_in_order(self) -> None:
        assert [p.name for p in PIPELINE] == [
            "Emergency Stabilization",
            "Dependency Resolution",
            "Build Recovery",
            "Integration Testing",
            "Validation and Completion",
        ]

    @pytest.mark.asyncio
    async def test_initial_overview(self, engine: RecoveryEngine) -> None:
        overview = await engine.get_phases(include_tasks=True)
        assert overview.session_status == SessionStatus.PLANNING
        assert [p.status for p in overview.phases] == [
            PhaseStatus.READY,
            PhaseStatus.PENDING,
            PhaseStatus.PENDING,
            PhaseStatus.PENDING,
            PhaseStatus.PENDING,
        ]
        assert overview.overall_progress == 0
        assert overview.initial_health_score == 50
        assert overview.estimated_completion is not None
        stabilization = overview.phases[0]
        assert stabilization.tasks is not None
        assert [t.module_id for t in stabilization.tasks] == ["auth", "i18n"]
        assert stabilization.tasks[0].task_id == "phase1-repair-auth"
        assert overview.phases[2].tasks_total == 11

    @pytest.mark.asyncio
    async def test_tasks_omitted_by_default(self, engine: RecoveryEngine) -> None:
        overview = await engine.get_phases()
        assert all(p.tasks is None for p in overview.phases)

    @pytest.mark.asyncio
    async def test_metrics_can_be_omitted(self, engine: RecoveryEngine) -> None:
        overview = await engine.get_phases(include_metrics=False)
        assert overview.initial_health_score is None
        assert overview.current_health_score is None


# ─── Validation and prerequisites ──────────────────────────────────────


class TestPhaseValidation:
    """Tests for phase id validation and phase prerequisites."""

    @pytest.mark.parametrize("phase_id", [0, 6, -1, "abc", "", True, None, 2.5])
    def test_invalid_phase_ids(self, phase_id: object) -> None:
        with pytest.raises(InvalidPhaseIdError):
            validate_phase_id(phase_id)

    @pytest.mark.parametrize(("phase_id", "expected"), [(1, 1), (5, 5), ("3", 3)])
    def test_valid_phase_ids(self, phase_id: object, expected: int) -> None:
        assert validate_phase_id(phase_id) == expected

    @pytest.mark.asyncio
    async def test_invalid_phase_rejected_before_any_work(
        self, engine: RecoveryEngine, fake_runner: FakeRunner
    ) -> None:
        with pytest.raises(InvalidPhaseIdError) as exc_info:
            await engine.execute_phase(6)
        assert exc_info.value.details["valid_range"] == [1, 5]
        assert engine.scheduler.session is None
        assert fake_runner.calls == []

    @pytest.mark.asyncio
    async def test_predecessor_must_complete(self, engine: RecoveryEngine) -> None:
        with pytest.raises(PhasePrerequisiteError) as exc_info:
            await engine.execute_phase(2)
        error = exc_info.value
        assert error.code == "PHASE_NOT_READY"
        assert error.details["expected"] == "completed"
        # phase 1 is ready as soon as the session exists
        assert error.details["received"] == "ready"

    @pytest.mark.asyncio
    async def test_failed_predecessor_blocks_next_phase(
        self,
        healthy_workspace: Path,
        engine: RecoveryEngine,
        fake_runner: FakeRunner,
    ) -> None:
        fake_runner.fail("npm install")
        first = await engine.execute_phase(1)
        assert first.status == ExecutionStatus.FAILED

        with pytest.raises(PhasePrerequisiteError) as exc_info:
            await engine.execute_phase(2)
        details = exc_info.value.details
        assert details["required_phase"] == 1
        assert details["received"] == "failed"

    @pytest.mark.asyncio
    async def test_force_skips_predecessor_check(
        self, healthy_workspace: Path, engine: RecoveryEngine
    ) -> None:
        execution = await engine.execute_phase(2, {"force_execution": True})
        assert execution.status == ExecutionStatus.COMPLETED
        assert execution.tasks_total == 11

    @pytest.mark.asyncio
    async def test_stabilization_refuses_broken_workspace(
        self, engine: RecoveryEngine, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        report = WorkspaceConfigReport(
            valid=False,
            errors=[f"error {i}" for i in range(6)],
            warnings=[],
            recommendations=[],
        )
        monkeypatch.setattr(engine.analyzer, "validate_configuration", lambda: report)

        with pytest.raises(PhasePrerequisiteError) as exc_info:
            await engine.execute_phase(1)
        assert exc_info.value.details["max_errors"] == 5

    @pytest.mark.asyncio
    async def test_skip_validation_bypasses_preflight(
        self,
        healthy_workspace: Path,
        engine: RecoveryEngine,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        report = WorkspaceConfigReport(
            valid=False, errors=["broken"] * 6, warnings=[], recommendations=[]
        )
        monkeypatch.setattr(engine.analyzer, "validate_configuration", lambda: report)

        execution = await engine.execute_phase(1, {"skip_validation": True})
        assert execution.status == ExecutionStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_unknown_option_rejected(self, engine: RecoveryEngine) -> None:
        with pytest.raises(ValidationError):
            await engine.execute_phase(1, {"turbo": True})


# ─── Dry runs ──────────────────────────────────────────────────────────


class TestDryRun:
    @pytest.mark.asyncio
    async def test_dry_run_plans_without_touching_modules(
        self,
        workspace: Path,
        engine: RecoveryEngine,
        fake_runner: FakeRunner,
    ) -> None:
        execution = await engine.execute_phase(
            3, {"dry_run": True, "force_execution": True}
        )
        assert execution.status == ExecutionStatus.PLANNED
        assert execution.dry_run
        assert execution.tasks_total == 11
        assert all(t.status == TaskStatus.PENDING for t in execution.tasks)
        assert fake_runner.calls == []
        assert not (workspace / "packages" / "auth").exists()
        assert all(s.status != ModuleStatus.RECOVERING for s in engine.store.all())

        overview = await engine.get_phases()
        assert overview.phases[2].status == PhaseStatus.PENDING

    @pytest.mark.asyncio
    async def test_dry_run_still_checks_prerequisites(self, engine: RecoveryEngine) -> None:
        with pytest.raises(PhasePrerequisiteError):
            await engine.execute_phase(3, {"dry_run": True})

    @pytest.mark.asyncio
    async def test_dry_run_is_pollable(self, engine: RecoveryEngine) -> None:
        execution = await engine.execute_phase(1, {"dry_run": True})
        polled = engine.get_execution_status(execution.execution_id, 1)
        assert polled.status == ExecutionStatus.PLANNED


# ─── Execution ─────────────────────────────────────────────────────────


class TestExecution:
    """Tests for phase execution outcomes."""

    @pytest.mark.asyncio
    async def test_stabilization_repairs_critical_modules(
        self,
        healthy_workspace: Path,
        engine: RecoveryEngine,
        fake_runner: FakeRunner,
    ) -> None:
        execution = await engine.execute_phase(1)

        assert execution.status == ExecutionStatus.COMPLETED
        assert execution.phase_status == PhaseStatus.COMPLETED
        assert not execution.accepted
        assert execution.execution_id.startswith("exec-phase1-")
        assert execution.module_ids == ["auth", "i18n"]
        assert execution.tasks_completed == 2
        assert execution.progress == 100
        assert execution.health_improvement == 50
        assert len(fake_runner.calls) == 2

        overview = await engine.get_phases()
        assert overview.phases[0].status == PhaseStatus.COMPLETED
        assert overview.phases[1].status == PhaseStatus.READY
        assert overview.overall_progress == 20
        assert overview.total_health_improvement == 50
        assert engine.store.owner_of("auth") is None

    @pytest.mark.asyncio
    async def test_full_pipeline_completes_session(
        self, healthy_workspace: Path, engine: RecoveryEngine
    ) -> None:
        await _run_phases(engine, 1, 2, 3, 4, 5)

        overview = await engine.get_phases()
        assert overview.session_status == SessionStatus.COMPLETED
        assert overview.overall_progress == 100
        assert overview.current_health_score == 100
        assert all(p.status == PhaseStatus.COMPLETED for p in overview.phases)
        assert overview.estimated_completion is not None

    @pytest.mark.asyncio
    async def test_mandatory_task_failure_fails_phase(
        self,
        healthy_workspace: Path,
        engine: RecoveryEngine,
        fake_runner: FakeRunner,
    ) -> None:
        fake_runner.fail("npm install")

        execution = await engine.execute_phase(1)

        assert execution.status == ExecutionStatus.FAILED
        assert execution.phase_status == PhaseStatus.FAILED
        assert execution.tasks_failed == 2
        attempt = execution.tasks[0].attempts[-1]
        assert attempt.status == TaskStatus.FAILED
        assert attempt.error is not None
        assert attempt.error["code"] == "SERVICE_ERROR"

        overview = await engine.get_phases()
        assert overview.session_status == SessionStatus.FAILED
        assert overview.phases[0].errors == ["repair auth failed", "repair i18n failed"]
        assert overview.phases[1].status == PhaseStatus.PENDING

    @pytest.mark.asyncio
    async def test_failed_phase_can_be_retried(
        self,
        healthy_workspace: Path,
        engine: RecoveryEngine,
        fake_runner: FakeRunner,
    ) -> None:
        fake_runner.fail("npm install")
        first = await engine.execute_phase(1)
        assert first.status == ExecutionStatus.FAILED

        fake_runner.clear_failures()
        second = await engine.execute_phase(1)

        assert second.status == ExecutionStatus.COMPLETED
        assert second.execution_id != first.execution_id
        assert [len(t.attempts) for t in second.tasks] == [2, 2]

    @pytest.mark.asyncio
    async def test_optional_test_failures_do_not_fail_phase(
        self,
        healthy_workspace: Path,
        engine: RecoveryEngine,
        fake_runner: FakeRunner,
    ) -> None:
        fake_runner.fail("npm test")

        execution = await engine.execute_phase(4, {"force_execution": True})

        assert execution.status == ExecutionStatus.COMPLETED
        assert execution.tasks_failed == 11
        assert engine.store.get("auth").test_status == TestStatus.FAILING

    @pytest.mark.asyncio
    async def test_validation_below_target_fails(self, engine: RecoveryEngine) -> None:
        execution = await engine.execute_phase(5, {"force_execution": True})

        assert execution.status == ExecutionStatus.FAILED
        error = execution.tasks[0].attempts[-1].error
        assert error is not None
        assert error["code"] == "HEALTH_BELOW_TARGET"
        assert error["details"]["received"] == 50
        assert error["details"]["expected"] == 85

    @pytest.mark.asyncio
    async def test_default_concurrency_comes_from_config(
        self, healthy_workspace: Path, config: MedicConfig, fake_runner: FakeRunner
    ) -> None:
        async with RecoveryEngine(
            config.model_copy(update={"default_max_concurrency": 4}), runner=fake_runner
        ) as eng:
            execution = await eng.execute_phase(1, PhaseExecutionOptions())
        assert execution.options.max_concurrency == 4

    @pytest.mark.asyncio
    async def test_sequential_execution_runs_one_task_at_a_time(
        self, healthy_workspace: Path, engine: RecoveryEngine, fake_runner: FakeRunner
    ) -> None:
        fake_runner.delay = 0.02
        execution = await engine.execute_phase(2, {"force_execution": True})
        assert execution.status == ExecutionStatus.COMPLETED
        assert fake_runner.max_active == 1

    @pytest.mark.asyncio
    async def test_parallel_execution_respects_max_concurrency(
        self, healthy_workspace: Path, engine: RecoveryEngine, fake_runner: FakeRunner
    ) -> None:
        fake_runner.delay = 0.05
        execution = await engine.execute_phase(
            2,
            {"force_execution": True, "parallel_execution": True, "max_concurrency": 2},
        )
        assert execution.status == ExecutionStatus.COMPLETED
        assert fake_runner.max_active == 2

    @pytest.mark.asyncio
    async def test_layers_run_in_order(
        self, healthy_workspace: Path, engine: RecoveryEngine, fake_runner: FakeRunner
    ) -> None:
        await engine.execute_phase(
            2, {"force_execution": True, "parallel_execution": True, "max_concurrency": 10}
        )
        layer_of = {d.module_id: d.layer for d in engine.registry.all_descriptors()}
        layers = [layer_of[cwd.name] for _, cwd in fake_runner.calls]
        assert layers == sorted(layers)

    @pytest.mark.asyncio
    async def test_crashing_task_cancels_parallel_siblings(
        self,
        healthy_workspace: Path,
        engine: RecoveryEngine,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """An unexpected error in one task stops the rest of its layer before release."""
        perform = engine.scheduler._perform
        cancelled: list[str] = []

        async def crash_i18n(execution, task):
            if task.module_id == "i18n":
                await asyncio.sleep(0.01)
                raise RuntimeError("disk vanished")
            if task.layer == 1:
                try:
                    await asyncio.sleep(30)
                except asyncio.CancelledError:
                    cancelled.append(task.module_id)
                    raise
            return await perform(execution, task)

        monkeypatch.setattr(engine.scheduler, "_perform", crash_i18n)

        execution = await engine.execute_phase(
            2, {"force_execution": True, "parallel_execution": True, "max_concurrency": 10}
        )

        assert execution.status == ExecutionStatus.FAILED
        assert execution.error is not None
        assert execution.error["code"] == "SERVICE_ERROR"
        assert "disk vanished" in execution.error["message"]
        siblings = [d.module_id for d in engine.registry.by_layer(1) if d.module_id != "i18n"]
        assert sorted(cancelled) == sorted(siblings)
        assert all(engine.store.owner_of(m) is None for m in engine.registry.ids())


# ─── Polling ───────────────────────────────────────────────────────────


class TestExecutionStatus:
    @pytest.mark.asyncio
    async def test_unknown_execution(self, engine: RecoveryEngine) -> None:
        with pytest.raises(ExecutionNotFoundError):
            engine.get_execution_status("exec-phase1-missing")

    @pytest.mark.asyncio
    async def test_phase_mismatch(
        self, healthy_workspace: Path, engine: RecoveryEngine
    ) -> None:
        execution = await engine.execute_phase(1)
        with pytest.raises(PhaseMismatchError) as exc_info:
            engine.get_execution_status(execution.execution_id, 2)
        assert exc_info.value.details["expected"] == 1
        assert exc_info.value.details["received"] == 2

    @pytest.mark.asyncio
    async def test_accepted_execution_is_pollable(
        self,
        healthy_workspace: Path,
        quick_engine: RecoveryEngine,
        fake_runner: FakeRunner,
    ) -> None:
        gate = fake_runner.hold()

        execution = await quick_engine.execute_phase(1)
        assert execution.accepted
        assert execution.status == ExecutionStatus.EXECUTING
        assert execution.phase_status == PhaseStatus.EXECUTING

        gate.set()
        final = await wait_for_terminal(quick_engine, execution.execution_id)
        assert final.status == ExecutionStatus.COMPLETED
        assert not final.accepted


# ─── Exclusivity ───────────────────────────────────────────────────────


class TestExclusivity:
    """A module is recovered by at most one execution at a time."""

    @pytest.mark.asyncio
    async def test_overlapping_execution_rejected(
        self,
        healthy_workspace: Path,
        quick_engine: RecoveryEngine,
        fake_runner: FakeRunner,
    ) -> None:
        gate = fake_runner.hold()
        running = await quick_engine.execute_phase(1)
        assert running.status == ExecutionStatus.EXECUTING

        with pytest.raises(ModuleBusyError):
            await quick_engine.execute_phase(2, {"force_execution": True})
        with pytest.raises(ModuleBusyError):
            await quick_engine.execute_phase(1)
        with pytest.raises(ModuleBusyError):
            quick_engine.update_module("i18n", notes="not now")
        with pytest.raises(ModuleBusyError):
            await quick_engine.recover_module("auth", "repair")

        gate.set()
        final = await wait_for_terminal(quick_engine, running.execution_id)
        assert final.status == ExecutionStatus.COMPLETED
        assert quick_engine.store.owner_of("auth") is None
        assert quick_engine.store.owner_of("i18n") is None

    @pytest.mark.asyncio
    async def test_targets_are_claimed_for_the_whole_phase(
        self,
        healthy_workspace: Path,
        quick_engine: RecoveryEngine,
        fake_runner: FakeRunner,
    ) -> None:
        gate = fake_runner.hold()
        running = await quick_engine.execute_phase(1)

        # i18n has not started yet but already belongs to the execution
        assert quick_engine.store.owner_of("i18n") == running.execution_id

        gate.set()
        await wait_for_terminal(quick_engine, running.execution_id)


# ─── Cancellation ──────────────────────────────────────────────────────


class TestCancellation:
    """Tests for cooperative cancellation and cleanup."""

    @pytest.mark.asyncio
    async def test_cancel_running_execution(
        self,
        healthy_workspace: Path,
        quick_engine: RecoveryEngine,
        fake_runner: FakeRunner,
    ) -> None:
        fake_runner.hold()
        running = await quick_engine.execute_phase(1)
        await wait_until(lambda: fake_runner.calls)

        result = await quick_engine.cancel_phase(running.execution_id, 1, "operator stop")

        assert result.cancelled
        assert result.status == ExecutionStatus.CANCELLED
        assert result.reason == "operator stop"
        assert result.cleanup_performed

        execution = quick_engine.get_execution_status(running.execution_id)
        assert execution.phase_status == PhaseStatus.ROLLED_BACK
        assert [t.status for t in execution.tasks] == [TaskStatus.CANCELLED] * 2
        assert quick_engine.store.owner_of("auth") is None
        assert quick_engine.store.owner_of("i18n") is None

        overview = await quick_engine.get_phases()
        assert overview.session_status == SessionStatus.PAUSED
        assert overview.phases[0].errors == ["Cancelled: operator stop"]

    @pytest.mark.asyncio
    async def test_cancelled_phase_can_run_again(
        self,
        healthy_workspace: Path,
        quick_engine: RecoveryEngine,
        fake_runner: FakeRunner,
    ) -> None:
        gate = fake_runner.hold()
        running = await quick_engine.execute_phase(1)
        await wait_until(lambda: fake_runner.calls)
        await quick_engine.cancel_phase(running.execution_id)

        gate.set()
        again = await quick_engine.execute_phase(1)
        final = await wait_for_terminal(quick_engine, again.execution_id)
        assert final.status == ExecutionStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_cancel_finished_execution(
        self, healthy_workspace: Path, engine: RecoveryEngine
    ) -> None:
        execution = await engine.execute_phase(1)

        result = await engine.cancel_phase(execution.execution_id)

        assert not result.cancelled
        assert result.reason == "Execution not currently running"
        assert result.status == ExecutionStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_cancel_with_wrong_phase(
        self, healthy_workspace: Path, engine: RecoveryEngine
    ) -> None:
        execution = await engine.execute_phase(1)
        with pytest.raises(PhaseMismatchError):
            await engine.cancel_phase(execution.execution_id, 3)

    @pytest.mark.asyncio
    async def test_engine_close_cancels_running_executions(
        self,
        healthy_workspace: Path,
        config: MedicConfig,
        fake_runner: FakeRunner,
    ) -> None:
        fake_runner.hold()
        eng = RecoveryEngine(
            config.model_copy(update={"sync_wait_seconds": 0.01}), runner=fake_runner
        )
        running = await eng.execute_phase(1)

        await eng.close()

        execution = eng.get_execution_status(running.execution_id)
        assert execution.status == ExecutionStatus.CANCELLED
        assert eng.store.owner_of("auth") is None


# ─── Budgets ───────────────────────────────────────────────────────────


class TestTimeouts:
    """Tests for the task, phase and session budgets."""

    @pytest.mark.asyncio
    async def test_task_timeout_fails_task(
        self,
        healthy_workspace: Path,
        config: MedicConfig,
        fake_runner: FakeRunner,
    ) -> None:
        fake_runner.hold()
        async with RecoveryEngine(
            config.model_copy(update={"task_timeout_seconds": 0.1}), runner=fake_runner
        ) as eng:
            execution = await eng.execute_phase(1)

            assert execution.status == ExecutionStatus.FAILED
            for task in execution.tasks:
                assert task.status == TaskStatus.FAILED
                error = task.attempts[-1].error
                assert error is not None
                assert error["code"] == "TIMEOUT"
            assert eng.store.owner_of("auth") is None

    @pytest.mark.asyncio
    async def test_phase_timeout_fails_phase(
        self,
        healthy_workspace: Path,
        quick_engine: RecoveryEngine,
        fake_runner: FakeRunner,
    ) -> None:
        fake_runner.hold()
        running = await quick_engine.execute_phase(1, {"timeout": 1})

        execution = await wait_for_terminal(quick_engine, running.execution_id)

        assert execution.status == ExecutionStatus.FAILED
        assert execution.phase_status == PhaseStatus.FAILED
        assert execution.error is not None
        assert execution.error["code"] == "TIMEOUT"
        assert execution.error["details"]["scope"] == "phase"
        assert [t.status for t in execution.tasks] == [TaskStatus.FAILED, TaskStatus.SKIPPED]
        assert quick_engine.store.owner_of("auth") is None

    @pytest.mark.asyncio
    async def test_session_deadline_interrupts_pipeline(
        self, config: MedicConfig, fake_runner: FakeRunner
    ) -> None:
        async with RecoveryEngine(
            config.model_copy(update={"session_timeout_seconds": 0.01}), runner=fake_runner
        ) as eng:
            await eng.get_phases()
            await asyncio.sleep(0.05)

            with pytest.raises(RecoveryTimeoutError) as exc_info:
                await eng.execute_phase(1)

            assert exc_info.value.details["scope"] == "session"
            overview = await eng.get_phases()
            assert overview.session_status == SessionStatus.INTERRUPTED
