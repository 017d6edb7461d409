"""Exception hierarchy for the Medic engine.

All engine exceptions inherit from MedicError, enabling callers to catch
broad (MedicError) or narrow (e.g., ModuleNotFoundError) conditions. Every
error carries a stable ``code``, a human-readable message, and a ``details``
dict so the request layer can render the ``{code, message, details}``
envelope without re-deriving anything.

Only truly unexpected conditions are raised. Failures inside a recovery
step or a scheduled task are encoded in the returned results instead; the
envelope of such failures is attached to those results via ``to_envelope()``.
"""

from __future__ import annotations

from typing import Any, ClassVar, Literal

TimeoutScope = Literal["task", "phase", "session"]


class MedicError(Exception):
    """Base exception for all engine errors."""

    code: ClassVar[str] = "MEDIC_ERROR"
    http_status: ClassVar[int] = 500

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details: dict[str, Any] = {k: v for k, v in details.items() if v is not None}

    def to_envelope(self) -> dict[str, Any]:
        """Render the structured error envelope."""
        return {"code": self.code, "message": self.message, "details": dict(self.details)}


class ModuleNotFoundError(MedicError):  # noqa: A001
    """Raised when a module id is not in the descriptor registry."""

    code = "MODULE_NOT_FOUND"
    http_status = 404

    def __init__(self, module_id: str, valid_module_ids: list[str] | None = None) -> None:
        super().__init__(
            f"Module '{module_id}' not found",
            module_id=module_id,
            valid_module_ids=valid_module_ids,
        )
        self.module_id = module_id


class UnsupportedStrategyError(MedicError):
    """Raised when a recovery strategy is not one the module supports."""

    code = "UNSUPPORTED_STRATEGY"
    http_status = 400

    def __init__(
        self,
        strategy: str,
        module_id: str | None = None,
        supported: list[str] | None = None,
    ) -> None:
        super().__init__(
            f"Unsupported recovery strategy: {strategy}",
            strategy=strategy,
            module_id=module_id,
            supported_strategies=supported,
        )
        self.strategy = strategy


class InvalidPhaseIdError(MedicError):
    """Raised for a phase id outside the pipeline range.

    Always raised before any module is touched.
    """

    code = "INVALID_PHASE_ID"
    http_status = 400

    def __init__(self, phase_id: Any, min_phase: int = 1, max_phase: int = 5) -> None:
        super().__init__(
            f"Phase id must be between {min_phase} and {max_phase}, got {phase_id!r}",
            phase_id=phase_id,
            valid_range=[min_phase, max_phase],
        )
        self.phase_id = phase_id


class ExecutionNotFoundError(MedicError):
    """Raised when an execution id is unknown to the scheduler."""

    code = "EXECUTION_NOT_FOUND"
    http_status = 404

    def __init__(self, execution_id: str, phase_id: int | None = None) -> None:
        super().__init__(
            f"Execution '{execution_id}' not found",
            execution_id=execution_id,
            phase_id=phase_id,
        )
        self.execution_id = execution_id


class PhaseMismatchError(MedicError):
    """Raised when an execution id belongs to a different phase than requested."""

    code = "PHASE_MISMATCH"
    http_status = 409

    def __init__(self, execution_id: str, expected_phase: int, received_phase: int) -> None:
        super().__init__(
            f"Execution '{execution_id}' belongs to phase {expected_phase}, "
            f"not phase {received_phase}",
            execution_id=execution_id,
            expected=expected_phase,
            received=received_phase,
        )


class ModuleBusyError(MedicError):
    """Raised when a module is already ``recovering`` under another execution.

    The engine never runs two strategies against the same module at once.
    """

    code = "MODULE_BUSY"
    http_status = 409

    def __init__(
        self,
        module_id: str,
        owner_execution_id: str | None,
        requested_execution_id: str | None = None,
    ) -> None:
        super().__init__(
            f"Module '{module_id}' is already recovering"
            + (f" under execution '{owner_execution_id}'" if owner_execution_id else ""),
            module_id=module_id,
            owner_execution_id=owner_execution_id,
            requested_execution_id=requested_execution_id,
        )
        self.module_id = module_id


class PhasePrerequisiteError(MedicError):
    """Raised when a phase is started before its predecessor completed,
    or when its pre-flight checks fail."""

    code = "PHASE_NOT_READY"
    http_status = 409

    def __init__(self, phase_id: int, reason: str, **details: Any) -> None:
        super().__init__(f"Phase {phase_id} cannot execute: {reason}", phase_id=phase_id, **details)


class ServiceError(MedicError):
    """Wraps an underlying tool or filesystem failure with service context."""

    code = "SERVICE_ERROR"
    http_status = 500

    def __init__(self, message: str, *, service: str, operation: str, **details: Any) -> None:
        super().__init__(message, service=service, operation=operation, **details)
        self.service = service
        self.operation = operation


class RecoveryTimeoutError(MedicError):
    """Raised (or recorded) when a task, phase, or session budget is exhausted."""

    code = "TIMEOUT"
    http_status = 408

    def __init__(self, scope: TimeoutScope, budget_seconds: float, **details: Any) -> None:
        super().__init__(
            f"{scope.capitalize()} exceeded its {budget_seconds:g}s budget",
            scope=scope,
            budget_seconds=budget_seconds,
            **details,
        )
        self.scope = scope
        self.budget_seconds = budget_seconds


class ConfigurationError(MedicError):
    """Raised when an engine configuration file cannot be loaded or validated."""

    code = "CONFIGURATION_ERROR"
    http_status = 400


__all__ = [
    "ConfigurationError",
    "ExecutionNotFoundError",
    "InvalidPhaseIdError",
    "MedicError",
    "ModuleBusyError",
    "ModuleNotFoundError",
    "PhaseMismatchError",
    "PhasePrerequisiteError",
    "RecoveryTimeoutError",
    "ServiceError",
    "TimeoutScope",
    "UnsupportedStrategyError",
]
