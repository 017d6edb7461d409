"""Process-scoped store of module states.

The ModuleStateStore owns one ModuleState per registered module. The
Health Analyzer reads it; only the recovery dispatcher, the phase scheduler
and operator updates write it. A module being recovered is *claimed* by
exactly one execution id: a second claim from another execution is
rejected with ModuleBusyError.

All transitions are synchronous. Under a single event loop a claim is
therefore atomic with respect to other coroutines.
"""

from __future__ import annotations

from collections.abc import Iterable

from medic.core.errors import ModuleBusyError, ModuleNotFoundError
from medic.core.logging import get_logger
from medic.models.module import ModuleState, ModuleStatus, _utc_now, status_from_score
from medic.modules.catalogue import ModuleRegistry

_logger = get_logger("state")


class ModuleStateStore:
    """In-memory registry of module states keyed by module id."""

    def __init__(self, registry: ModuleRegistry) -> None:
        self._registry = registry
        self._states: dict[str, ModuleState] = {
            d.module_id: ModuleState(
                module_id=d.module_id,
                layer=d.layer,
                workspace_dependencies=list(d.workspace_dependencies),
            )
            for d in registry.all_descriptors()
        }

    def get(self, module_id: str) -> ModuleState:
        """Get the current state of a module.

        Raises:
            ModuleNotFoundError: If the module is not registered.
        """
        try:
            return self._states[module_id]
        except KeyError:
            raise ModuleNotFoundError(module_id, valid_module_ids=self._registry.ids()) from None

    def all(self) -> list[ModuleState]:
        return [self._states[module_id] for module_id in self._registry.ids()]

    def put(self, state: ModuleState) -> None:
        """Replace the stored state of a module.

        While the module is claimed the stored state stays ``recovering``
        under the owning execution; only ``release`` ends ownership.
        """
        current = self.get(state.module_id)
        if current.active_execution_id:
            state = state.model_copy(
                update={
                    "status": ModuleStatus.RECOVERING,
                    "active_execution_id": current.active_execution_id,
                }
            )
        self._states[state.module_id] = state

    def owner_of(self, module_id: str) -> str | None:
        """Execution id currently owning the module, if any."""
        state = self.get(module_id)
        return state.active_execution_id if state.status == ModuleStatus.RECOVERING else None

    def claim(self, module_id: str, execution_id: str) -> bool:
        """Mark a module ``recovering`` under ``execution_id``.

        Returns:
            True if the claim was newly acquired, False if ``execution_id``
            already held it.

        Raises:
            ModuleBusyError: If another execution holds the module.
        """
        owner = self.owner_of(module_id)
        if owner == execution_id:
            return False
        if owner is not None:
            raise ModuleBusyError(module_id, owner, requested_execution_id=execution_id)
        state = self._states[module_id]
        self._states[module_id] = state.model_copy(
            update={
                "status": ModuleStatus.RECOVERING,
                "active_execution_id": execution_id,
                "last_modified": _utc_now(),
                "modified_by": execution_id,
            }
        )
        _logger.debug("state.module_claimed", module_id=module_id, execution_id=execution_id)
        return True

    def claim_many(self, module_ids: Iterable[str], execution_id: str) -> list[str]:
        """Claim several modules all-or-nothing.

        Every module is checked before any is claimed.

        Returns:
            Ids that were newly claimed.

        Raises:
            ModuleBusyError: For the first module held by another execution.
        """
        ids = list(dict.fromkeys(module_ids))
        for module_id in ids:
            owner = self.owner_of(module_id)
            if owner is not None and owner != execution_id:
                raise ModuleBusyError(module_id, owner, requested_execution_id=execution_id)
        return [module_id for module_id in ids if self.claim(module_id, execution_id)]

    def release(self, module_id: str, execution_id: str) -> bool:
        """Release a claim held by ``execution_id``.

        The status is re-derived from the stored health score. A claim held
        by another execution is left untouched.

        Returns:
            True if a claim was released.
        """
        state = self.get(module_id)
        if state.active_execution_id != execution_id:
            return False
        self._states[module_id] = state.model_copy(
            update={
                "status": status_from_score(state.health_score),
                "active_execution_id": None,
                "last_modified": _utc_now(),
            }
        )
        _logger.debug("state.module_released", module_id=module_id, execution_id=execution_id)
        return True

    def release_all(self, execution_id: str) -> list[str]:
        """Release every claim held by ``execution_id``."""
        return [
            module_id
            for module_id in list(self._states)
            if self.release(module_id, execution_id)
        ]

    def update_operator_fields(
        self,
        module_id: str,
        *,
        status: ModuleStatus | None = None,
        notes: str | None = None,
        modified_by: str = "operator",
    ) -> ModuleState:
        """Apply an operator status/notes update.

        Raises:
            ModuleBusyError: If the module is claimed by an execution.
        """
        owner = self.owner_of(module_id)
        if owner is not None:
            raise ModuleBusyError(module_id, owner)
        update: dict[str, object] = {"last_modified": _utc_now(), "modified_by": modified_by}
        if status is not None:
            update["status"] = status
        if notes is not None:
            update["notes"] = notes
        state = self.get(module_id).model_copy(update=update)
        self._states[module_id] = state
        _logger.info(
            "state.module_updated",
            module_id=module_id,
            fields=sorted(k for k in update if k not in ("last_modified", "modified_by")),
        )
        return state


__all__ = ["ModuleStateStore"]
