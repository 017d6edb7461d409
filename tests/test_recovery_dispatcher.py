"""Tests for module recovery strategies and the recovery dispatcher."""

import asyncio
import json
import shutil
from pathlib import Path

import pytest

from medic.core import constants
from medic.core.errors import ModuleBusyError, ModuleNotFoundError, UnsupportedStrategyError
from medic.engine import RecoveryEngine
from medic.models.module import BuildStatus, ModuleStatus, RecoveryStrategy
from medic.models.recovery import StepStatus
from medic.recovery import steps as fs
from medic.recovery.script import RecoveryContext
from tests.helpers import FakeRunner, wait_until, write_json


def _module_dir(workspace: Path, module_id: str) -> Path:
    return workspace / "packages" / module_id


def _names(results: list) -> list[str]:
    return [r.phase_name for r in results]


def _statuses(results: list) -> list[StepStatus]:
    return [r.status for r in results]


# ─── Repair ────────────────────────────────────────────────────────────


class TestRepair:
    """Tests for the repair strategy."""

    @pytest.mark.asyncio
    async def test_repairs_broken_configuration(
        self,
        healthy_workspace: Path,
        engine: RecoveryEngine,
        fake_runner: FakeRunner,
    ) -> None:
        module_dir = _module_dir(healthy_workspace, "auth")
        write_json(module_dir / "package.json", {"dependencies": {"lodash": "^4.17.21"}})
        (module_dir / "tsconfig.json").unlink()

        results = await engine.recover_module("auth", "repair")

        assert _names(results) == ["Auth Module Repair"]
        result = results[0]
        assert result.status == StepStatus.COMPLETED
        assert result.tasks_successful == 3
        assert result.health_improvement == constants.REPAIR_IMPROVEMENT
        package = json.loads((module_dir / "package.json").read_text())
        assert package["name"] == "@workspace/auth"
        assert package["version"] == "1.0.0"
        assert package["dependencies"] == {"lodash": "^4.17.21"}
        assert "scripts" not in package
        assert (module_dir / "tsconfig.json").is_file()
        assert fake_runner.commands == ["npm install"]

    @pytest.mark.asyncio
    async def test_valid_package_json_left_untouched(
        self, healthy_workspace: Path, engine: RecoveryEngine
    ) -> None:
        """Repair does not rewrite a package.json that already parses."""
        module_dir = _module_dir(healthy_workspace, "auth")
        path = module_dir / "package.json"
        path.write_text(
            '{"name": "@workspace/auth", "version": "2.1.0", "dependencies": {"jose": "^5.0.0"}}'
        )
        before = path.read_bytes()

        results = await engine.recover_module("auth", "repair")

        assert results[0].status == StepStatus.COMPLETED
        assert "Repaired package.json configuration" not in results[0].logs
        assert path.read_bytes() == before

    @pytest.mark.asyncio
    async def test_install_failure_is_encoded_in_result(
        self,
        healthy_workspace: Path,
        engine: RecoveryEngine,
        fake_runner: FakeRunner,
    ) -> None:
        fake_runner.fail("npm install")
        results = await engine.recover_module("auth", "repair")

        result = results[0]
        assert result.status == StepStatus.FAILED
        assert result.tasks_failed == 1
        assert result.health_improvement == 0
        assert result.error is not None
        assert result.error["code"] == "SERVICE_ERROR"
        assert result.error["details"]["operation"] == "install"
        assert result.error["details"]["service"] == "runner"

    @pytest.mark.asyncio
    async def test_stores_outcome_and_releases_module(
        self, healthy_workspace: Path, engine: RecoveryEngine
    ) -> None:
        await engine.recover_module("auth", "repair", execution_id="exec-repair")
        state = engine.store.get("auth")
        assert state.health_score == 100
        assert state.status == ModuleStatus.HEALTHY
        assert state.modified_by == "exec-repair"
        assert engine.store.owner_of("auth") is None


# ─── Rebuild ───────────────────────────────────────────────────────────


class TestRebuild:
    """Tests for the rebuild strategy."""

    @pytest.mark.asyncio
    async def test_rebuild_absent_module(
        self,
        workspace: Path,
        engine: RecoveryEngine,
        fake_runner: FakeRunner,
    ) -> None:
        results = await engine.recover_module("auth", "rebuild")

        assert _names(results) == [
            "Clean Build Artifacts",
            "Restore Source Structure",
            "Rebuild Dependencies",
        ]
        assert _statuses(results) == [StepStatus.COMPLETED] * 3
        assert [r.phase_id for r in results] == [1, 2, 3]
        module_dir = _module_dir(workspace, "auth")
        assert (module_dir / "src/services/AuthService.ts").is_file()
        assert (module_dir / "package.json").is_file()
        assert fake_runner.commands == [
            "rm -rf node_modules package-lock.json",
            "npm install",
            "npm run build",
            "npm test",
        ]

        state = engine.store.get("auth")
        assert state.health_score == 100
        assert state.build_status == BuildStatus.SUCCESS
        assert state.last_build_time is not None

    @pytest.mark.asyncio
    async def test_rebuild_restores_service_configuration(
        self, healthy_workspace: Path, engine: RecoveryEngine
    ) -> None:
        config_file = _module_dir(healthy_workspace, "payments") / "src/config/stripe.config.ts"
        config_file.unlink()

        results = await engine.recover_module("payments", "rebuild")

        assert "Restore Service Configuration" in _names(results)
        assert config_file.is_file()

    @pytest.mark.asyncio
    async def test_rebuild_removes_build_artifacts(
        self, healthy_workspace: Path, engine: RecoveryEngine
    ) -> None:
        dist = _module_dir(healthy_workspace, "auth") / "dist"
        dist.mkdir()
        (dist / "index.js").write_text("stale")

        results = await engine.recover_module("auth", "rebuild", include_tests=False)

        assert not dist.exists()
        assert results[0].logs == ["Cleaned 1 build artifacts"]

    @pytest.mark.asyncio
    async def test_clean_build_disabled_skips_clean_step(
        self, healthy_workspace: Path, engine: RecoveryEngine
    ) -> None:
        dist = _module_dir(healthy_workspace, "auth") / "dist"
        dist.mkdir()
        (dist / "index.js").write_text("cached")

        results = await engine.recover_module(
            "auth", "rebuild", include_tests=False, clean_build=False
        )

        assert dist.is_dir()
        assert results[0].status == StepStatus.SKIPPED
        assert results[0].health_improvement == 0
        assert _statuses(results)[1:] == [StepStatus.COMPLETED, StepStatus.COMPLETED]

    @pytest.mark.asyncio
    async def test_build_failure_marks_build_status(
        self,
        healthy_workspace: Path,
        engine: RecoveryEngine,
        fake_runner: FakeRunner,
    ) -> None:
        fake_runner.fail("npm run build")
        results = await engine.recover_module("auth", "rebuild")

        assert results[-1].status == StepStatus.FAILED
        assert results[-1].error is not None
        assert results[-1].error["details"]["operation"] == "build"
        assert engine.store.get("auth").build_status == BuildStatus.FAILED

    @pytest.mark.asyncio
    async def test_failing_tests_do_not_fail_rebuild(
        self,
        healthy_workspace: Path,
        engine: RecoveryEngine,
        fake_runner: FakeRunner,
    ) -> None:
        fake_runner.fail("npm test")
        results = await engine.recover_module("auth", "rebuild")

        last = results[-1]
        assert last.status == StepStatus.COMPLETED
        assert last.tasks_skipped == 1
        assert "Test suite failed" in last.logs


# ─── Reset ─────────────────────────────────────────────────────────────


class TestReset:
    """Tests for the reset strategy."""

    @pytest.mark.asyncio
    async def test_reset_preserves_configuration(
        self, healthy_workspace: Path, engine: RecoveryEngine
    ) -> None:
        module_dir = _module_dir(healthy_workspace, "auth")
        package = json.loads((module_dir / "package.json").read_text())
        package["dependencies"]["lodash"] = "^4.17.21"
        package["scripts"]["lint"] = "eslint src"
        write_json(module_dir / "package.json", package)
        (module_dir / ".env.local").write_text("API_KEY=local\n")
        (module_dir / "src/extra.ts").write_text("export const stray = 1;\n")

        results = await engine.recover_module("auth", "reset")

        assert _names(results) == [
            "Backup Configuration",
            "Reset to Default",
            "Restore Configuration",
        ]
        assert _statuses(results) == [StepStatus.COMPLETED] * 3
        restored = json.loads((module_dir / "package.json").read_text())
        assert restored["dependencies"]["lodash"] == "^4.17.21"
        assert restored["scripts"]["lint"] == "eslint src"
        assert "jsonwebtoken" in restored["dependencies"]
        assert (module_dir / ".env.local").read_text() == "API_KEY=local\n"
        assert not (module_dir / "src/extra.ts").exists()
        assert not (module_dir / constants.BACKUP_DIR_NAME).exists()

    @pytest.mark.asyncio
    async def test_reset_absent_module_uses_defaults(
        self, workspace: Path, engine: RecoveryEngine
    ) -> None:
        results = await engine.recover_module("auth", "reset")

        assert _statuses(results) == [StepStatus.COMPLETED] * 3
        assert "No configuration backup found, using defaults" in results[2].logs
        module_dir = _module_dir(workspace, "auth")
        for relative in engine.registry.get("auth").required_files:
            assert (module_dir / relative).is_file()

    @pytest.mark.asyncio
    async def test_reset_is_idempotent(
        self, healthy_workspace: Path, engine: RecoveryEngine
    ) -> None:
        module_dir = _module_dir(healthy_workspace, "auth")
        first = await engine.recover_module("auth", "reset")
        package_after_first = (module_dir / "package.json").read_text()

        second = await engine.recover_module("auth", "reset")

        assert _statuses(second) == _statuses(first)
        assert (module_dir / "package.json").read_text() == package_after_first

    @pytest.mark.asyncio
    async def test_dry_run_during_reset_leaves_it_intact(
        self,
        healthy_workspace: Path,
        engine: RecoveryEngine,
        fake_runner: FakeRunner,
    ) -> None:
        module_dir = _module_dir(healthy_workspace, "auth")
        package = json.loads((module_dir / "package.json").read_text())
        package["dependencies"]["lodash"] = "^4.17.21"
        write_json(module_dir / "package.json", package)
        script = engine.dispatcher.get("auth")
        gate = fake_runner.hold()

        reset = asyncio.create_task(
            script.execute_recovery(
                RecoveryStrategy.RESET, RecoveryContext(execution_id="exec-reset")
            )
        )
        await wait_until(lambda: fake_runner.commands == ["npm install"])
        planned = await script.execute_recovery(
            RecoveryStrategy.RESET, RecoveryContext(execution_id="exec-plan", dry_run=True)
        )
        gate.set()
        results = await reset

        assert _statuses(planned) == [StepStatus.SKIPPED] * 3
        assert _statuses(results) == [StepStatus.COMPLETED] * 3
        restored = json.loads((module_dir / "package.json").read_text())
        assert restored["dependencies"]["lodash"] == "^4.17.21"

    @pytest.mark.asyncio
    async def test_lost_backup_fails_restore(
        self,
        healthy_workspace: Path,
        engine: RecoveryEngine,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        original = fs.materialize_module

        def materialize_and_lose_backup(descriptor, module_dir, scope):
            original(descriptor, module_dir, scope)
            shutil.rmtree(module_dir / constants.BACKUP_DIR_NAME)

        monkeypatch.setattr(fs, "materialize_module", materialize_and_lose_backup)

        results = await engine.recover_module("auth", "reset")

        assert _statuses(results) == [
            StepStatus.COMPLETED,
            StepStatus.COMPLETED,
            StepStatus.FAILED,
        ]
        error = results[2].error
        assert error is not None
        assert error["code"] == "SERVICE_ERROR"
        assert error["details"]["service"] == "reset"
        assert error["details"]["operation"] == "restore_backup"
        # defaults from the reset step stay in place
        module_dir = _module_dir(healthy_workspace, "auth")
        assert json.loads((module_dir / "package.json").read_text())["name"] == "@workspace/auth"

    @pytest.mark.asyncio
    async def test_restore_requires_reset_step(
        self,
        healthy_workspace: Path,
        engine: RecoveryEngine,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        def broken_remove(module_dir, paths):
            raise PermissionError("read-only file system")

        monkeypatch.setattr(fs, "remove_paths", broken_remove)

        results = await engine.recover_module("auth", "reset")

        assert results[1].status == StepStatus.FAILED
        assert results[1].error is not None
        assert results[1].error["details"]["service"] == "filesystem"
        assert results[2].status == StepStatus.FAILED
        assert results[2].logs == ["Prerequisite step 'reset-to-default' did not complete"]
        assert not (_module_dir(healthy_workspace, "auth") / constants.BACKUP_DIR_NAME).exists()


# ─── Dispatch rules ────────────────────────────────────────────────────


class TestDispatch:
    """Tests for strategy validation, dry runs and exclusivity."""

    @pytest.mark.asyncio
    async def test_dry_run_touches_nothing(
        self,
        workspace: Path,
        engine: RecoveryEngine,
        fake_runner: FakeRunner,
    ) -> None:
        results = await engine.recover_module("auth", "rebuild", dry_run=True)

        assert _statuses(results) == [StepStatus.SKIPPED] * 3
        assert all(r.logs[0].startswith("DRY RUN: would") for r in results)
        assert all(r.health_improvement == 0 for r in results)
        assert not _module_dir(workspace, "auth").exists()
        assert fake_runner.calls == []
        assert engine.store.get("auth").status == ModuleStatus.UNKNOWN

    @pytest.mark.asyncio
    async def test_unsupported_strategy(self, engine: RecoveryEngine) -> None:
        with pytest.raises(UnsupportedStrategyError) as exc_info:
            await engine.recover_module("auth", "rewrite")
        assert exc_info.value.details["supported_strategies"] == ["repair", "rebuild", "reset"]

    @pytest.mark.asyncio
    async def test_unknown_module(self, engine: RecoveryEngine) -> None:
        with pytest.raises(ModuleNotFoundError):
            await engine.recover_module("billing", "repair")

    @pytest.mark.asyncio
    async def test_busy_module_rejected(
        self, healthy_workspace: Path, engine: RecoveryEngine
    ) -> None:
        engine.store.claim("auth", "exec-other")
        with pytest.raises(ModuleBusyError):
            await engine.recover_module("auth", "repair")
        assert engine.store.owner_of("auth") == "exec-other"

    @pytest.mark.asyncio
    async def test_cancelled_context_skips_steps(
        self, healthy_workspace: Path, engine: RecoveryEngine
    ) -> None:
        context = RecoveryContext(execution_id="exec-cancelled")
        context.cancel_event.set()

        results = await engine.dispatcher.recover_module("auth", "reset", context)

        assert _statuses(results) == [StepStatus.SKIPPED] * 3
        assert results[0].logs == ["Skipped: recovery cancelled"]
        assert engine.store.owner_of("auth") is None
