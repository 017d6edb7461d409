"""Recovery pipeline API endpoints."""
from __future__ import annotations

from fastapi import APIRouter, Body, Depends, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from medic.dashboard.app import get_engine
from medic.engine import RecoveryEngine
from medic.scheduler.models import (
    CancellationResult,
    ExecutionStatus,
    PhaseExecution,
    PhaseExecutionOptions,
    PhaseOverview,
)
from medic.scheduler.scheduler import validate_phase_id

router = APIRouter(prefix="/phases", tags=["Phases"])
control_router = APIRouter(prefix="/phases", tags=["Phase Control"])


class CancelRequest(BaseModel):
    """Optional body of a cancellation request."""

    model_config = ConfigDict(extra="forbid")

    reason: str | None = Field(None, description="Recorded on the execution")


@router.get("", response_model=PhaseOverview)
async def get_phases(
    include_tasks: bool = Query(False),
    include_metrics: bool = Query(True),
    engine: RecoveryEngine = Depends(get_engine),
) -> PhaseOverview:
    """Phase summaries and overall session progress."""
    return await engine.get_phases(include_tasks=include_tasks, include_metrics=include_metrics)


@router.get(
    "/{phase_id}/executions/{execution_id}",
    response_model=PhaseExecution,
)
async def get_execution_status(
    phase_id: str,
    execution_id: str,
    engine: RecoveryEngine = Depends(get_engine),
) -> PhaseExecution:
    """Poll one execution. 409 when it belongs to another phase."""
    return engine.get_execution_status(execution_id, validate_phase_id(phase_id))


@control_router.post("/{phase_id}/execute", response_model=PhaseExecution)
async def execute_phase(
    phase_id: str,
    options: PhaseExecutionOptions | None = Body(None),
    engine: RecoveryEngine = Depends(get_engine),
) -> JSONResponse:
    """Start a phase. 202 while executing, 200 once terminal."""
    execution = await engine.execute_phase(phase_id, options)
    status_code = 202 if execution.status == ExecutionStatus.EXECUTING else 200
    return JSONResponse(status_code=status_code, content=execution.model_dump(mode="json"))


@control_router.post(
    "/{phase_id}/executions/{execution_id}/cancel",
    response_model=CancellationResult,
)
async def cancel_phase(
    phase_id: str,
    execution_id: str,
    request: CancelRequest | None = Body(None),
    engine: RecoveryEngine = Depends(get_engine),
) -> CancellationResult:
    """Cooperatively cancel a running execution."""
    return await engine.cancel_phase(
        execution_id,
        validate_phase_id(phase_id),
        request.reason if request is not None else None,
    )


__all__ = ["control_router", "router"]
