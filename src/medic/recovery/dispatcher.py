"""Recovery strategy dispatcher.

Maps module ids to their recovery scripts and runs a strategy against one
module: it claims the module, scores it before the run, executes the
strategy's steps, then stores the resulting ModuleState attributed to the
execution id. The create_default_dispatcher() factory registers one
DescriptorRecoveryScript per registered module.
"""

from __future__ import annotations

import uuid

from medic.core.config import MedicConfig
from medic.core.errors import ModuleNotFoundError, UnsupportedStrategyError
from medic.core.logging import ExecutionContext, get_logger, with_context
from medic.health.analyzer import HealthAnalyzer
from medic.models.module import (
    BuildStatus,
    ModuleState,
    RecoveryStrategy,
    _utc_now,
    clamp_score,
    status_from_score,
)
from medic.models.recovery import RecoveryPhaseResult, StepStatus, total_improvement
from medic.modules.catalogue import ModuleRegistry
from medic.recovery.script import DescriptorRecoveryScript, ModuleRecoveryScript, RecoveryContext
from medic.runner import CommandRunner
from medic.state.store import ModuleStateStore

_logger = get_logger("recovery")

_REBUILD_DEPENDENCIES_STEP = "Rebuild Dependencies"


def parse_strategy(strategy: str | RecoveryStrategy, module_id: str | None = None) -> RecoveryStrategy:
    """Coerce a strategy name.

    Raises:
        UnsupportedStrategyError: If the name is not repair, rebuild or reset.
    """
    if isinstance(strategy, RecoveryStrategy):
        return strategy
    try:
        return RecoveryStrategy(strategy)
    except ValueError:
        raise UnsupportedStrategyError(
            str(strategy),
            module_id=module_id,
            supported=[s.value for s in RecoveryStrategy],
        ) from None


class RecoveryDispatcher:
    """Registry of module recovery scripts plus the shared run procedure.

    Example:
        dispatcher = create_default_dispatcher(config, registry, store, analyzer, runner)
        results = await dispatcher.recover_module("auth", "rebuild")
    """

    def __init__(
        self,
        config: MedicConfig,
        store: ModuleStateStore,
        analyzer: HealthAnalyzer,
    ) -> None:
        self._config = config
        self._store = store
        self._analyzer = analyzer
        self._scripts: dict[str, ModuleRecoveryScript] = {}

    def register(self, script: ModuleRecoveryScript) -> None:
        """Register (or replace) the script for ``script.module_id``."""
        self._scripts[script.module_id] = script

    def get(self, module_id: str) -> ModuleRecoveryScript:
        """Get the script for a module.

        Raises:
            ModuleNotFoundError: If no script is registered.
        """
        try:
            return self._scripts[module_id]
        except KeyError:
            raise ModuleNotFoundError(module_id, valid_module_ids=sorted(self._scripts)) from None

    def has(self, module_id: str) -> bool:
        return module_id in self._scripts

    def all_scripts(self) -> list[ModuleRecoveryScript]:
        return list(self._scripts.values())

    async def recover_module(
        self,
        module_id: str,
        strategy: str | RecoveryStrategy,
        context: RecoveryContext | None = None,
    ) -> list[RecoveryPhaseResult]:
        """Run a recovery strategy against one module.

        Step failures are encoded in the returned results. A dry run
        neither claims nor mutates the module.

        Raises:
            ModuleNotFoundError: If the module is unknown.
            UnsupportedStrategyError: If the script does not support the strategy.
            ModuleBusyError: If another execution is recovering the module.
        """
        script = self.get(module_id)
        parsed = parse_strategy(strategy, module_id)
        if parsed not in script.supported_strategies:
            raise UnsupportedStrategyError(
                parsed.value,
                module_id=module_id,
                supported=[s.value for s in script.supported_strategies],
            )
        if context is None:
            context = RecoveryContext(execution_id=f"recover-{module_id}-{uuid.uuid4().hex[:12]}")

        if context.dry_run:
            return await script.execute_recovery(parsed, context)

        acquired = self._store.claim(module_id, context.execution_id)
        ctx = ExecutionContext(
            execution_id=context.execution_id,
            module_id=module_id,
            component="recovery",
        )
        try:
            with with_context(ctx):
                _logger.info("recovery.started", strategy=parsed.value)
                before = await self._analyzer.analyze_module(
                    module_id, self._config.recovery_assessment_depth
                )
                results = await script.execute_recovery(parsed, context)
                self._store_outcome(before, results, context.execution_id)
                _logger.info(
                    "recovery.finished",
                    strategy=parsed.value,
                    health_before=before.health_score,
                    health_after=self._store.get(module_id).health_score,
                    failed_steps=sum(1 for r in results if r.status == StepStatus.FAILED),
                )
        finally:
            if acquired:
                self._store.release(module_id, context.execution_id)
        return results

    def _store_outcome(
        self,
        before: ModuleState,
        results: list[RecoveryPhaseResult],
        execution_id: str,
    ) -> None:
        score = clamp_score(before.health_score + total_improvement(results))
        update: dict[str, object] = {
            "health_score": score,
            "status": status_from_score(score),
            "last_modified": _utc_now(),
            "modified_by": execution_id,
        }
        resolved = sum(r.errors_resolved for r in results if r.status == StepStatus.COMPLETED)
        if resolved:
            update["error_count"] = max(0, before.error_count - resolved)
        for result in results:
            if result.phase_name != _REBUILD_DEPENDENCIES_STEP:
                continue
            if result.status == StepStatus.COMPLETED:
                update["build_status"] = BuildStatus.SUCCESS
                update["last_build_time"] = result.end_time
            elif result.status == StepStatus.FAILED:
                update["build_status"] = BuildStatus.FAILED
                update["last_build_time"] = result.end_time
        self._store.put(before.model_copy(update=update))


def create_default_dispatcher(
    config: MedicConfig,
    registry: ModuleRegistry,
    store: ModuleStateStore,
    analyzer: HealthAnalyzer,
    runner: CommandRunner,
) -> RecoveryDispatcher:
    """Create a dispatcher with a DescriptorRecoveryScript for every module."""
    dispatcher = RecoveryDispatcher(config, store, analyzer)
    for descriptor in registry.all_descriptors():
        dispatcher.register(
            DescriptorRecoveryScript(descriptor, config, runner, analyzer.validate_module)
        )
    return dispatcher


__all__ = [
    "RecoveryDispatcher",
    "create_default_dispatcher",
    "parse_strategy",
]
