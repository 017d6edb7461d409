"""Tests for structured logging and execution context propagation."""

import asyncio
import json
from pathlib import Path

import pytest

from medic.core.logging import (
    ExecutionContext,
    configure_logging,
    get_current_context,
    get_logger,
    merge_execution_context,
    redact_sensitive_fields,
    with_context,
)


class TestExecutionContext:
    def test_to_dict_omits_unset_fields(self):
        ctx = ExecutionContext(execution_id="exec-phase1-abc", component="scheduler")
        assert ctx.to_dict() == {"execution_id": "exec-phase1-abc", "component": "scheduler"}

    def test_to_dict_keeps_phase_and_module(self):
        ctx = ExecutionContext(execution_id="exec-phase2-abc", module_id="auth", phase_id=2)
        assert ctx.to_dict() == {
            "execution_id": "exec-phase2-abc",
            "module_id": "auth",
            "phase_id": 2,
            "component": "unknown",
        }

    def test_with_context_restores_previous(self):
        outer = ExecutionContext(execution_id="outer")
        inner = ExecutionContext(execution_id="inner")
        assert get_current_context() is None
        with with_context(outer):
            with with_context(inner):
                assert get_current_context() is inner
            assert get_current_context() is outer
        assert get_current_context() is None

    @pytest.mark.asyncio
    async def test_context_is_task_local(self):
        """Concurrent tasks each see their own context."""
        seen: dict[str, str | None] = {}

        async def worker(name: str) -> None:
            with with_context(ExecutionContext(execution_id=name)):
                await asyncio.sleep(0.01)
                ctx = get_current_context()
                seen[name] = ctx.execution_id if ctx else None

        await asyncio.gather(worker("a"), worker("b"))
        assert seen == {"a": "a", "b": "b"}


class TestProcessors:
    def test_sensitive_fields_redacted(self):
        event = redact_sensitive_fields(
            None, "info", {"event": "x", "api_token": "abc", "env": {"DB_PASSWORD": "pw", "PORT": 1}}
        )
        assert event["api_token"] == "[REDACTED]"
        assert event["env"] == {"DB_PASSWORD": "[REDACTED]", "PORT": 1}
        assert event["event"] == "x"

    def test_nested_mappings_redacted(self):
        event = redact_sensitive_fields(
            None, "info", {"event": "x", "request": {"headers": {"Authorization": "Bearer x"}}}
        )
        assert event["request"] == {"headers": {"Authorization": "[REDACTED]"}}

    def test_context_fields_added(self):
        with with_context(ExecutionContext(execution_id="exec-1", module_id="auth")):
            event = merge_execution_context(None, "info", {"event": "x", "module_id": "i18n"})
        assert event["execution_id"] == "exec-1"
        # explicit bindings win
        assert event["module_id"] == "i18n"


class TestConfigureLogging:
    def test_both_requires_file(self):
        with pytest.raises(ValueError, match="file_path"):
            configure_logging(format="both")

    def test_json_file_output(self, tmp_path: Path):
        log_file = tmp_path / "logs" / "medic.log"
        configure_logging(level="DEBUG", format="json", file_path=log_file)

        with with_context(ExecutionContext(execution_id="exec-phase1-abc", phase_id=1)):
            get_logger("scheduler").bind(module_id="auth").info(
                "scheduler.task_started", secret_key="hunter2"
            )

        entry = json.loads(log_file.read_text().strip().splitlines()[-1])
        assert entry["event"] == "scheduler.task_started"
        assert entry["component"] == "scheduler"
        assert entry["module_id"] == "auth"
        assert entry["execution_id"] == "exec-phase1-abc"
        assert entry["phase_id"] == 1
        assert entry["secret_key"] == "[REDACTED]"
        assert entry["level"] == "info"
        assert "timestamp" in entry

    def test_level_filtering(self, tmp_path: Path):
        log_file = tmp_path / "medic.log"
        configure_logging(level="WARNING", format="json", file_path=log_file)

        logger = get_logger("engine")
        logger.info("engine.ignored")
        logger.warning("engine.kept")

        events = [json.loads(line)["event"] for line in log_file.read_text().splitlines()]
        assert events == ["engine.kept"]
