"""Module health and module recovery API endpoints."""
from __future__ import annotations

import json
from typing import Any

from fastapi import APIRouter, Depends, Header, Query, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from medic.core import constants
from medic.core.config import AnalysisDepth
from medic.dashboard.app import error_response, get_engine
from medic.engine import RecoveryEngine
from medic.models.module import ModuleState, ModuleStatus
from medic.models.recovery import (
    BuildOptions,
    BuildTicket,
    RecoveryPhaseResult,
    TestOptions,
    TestTicket,
)
from medic.models.workspace import AnalysisOptions, WorkspaceHealth

router = APIRouter(prefix="/modules", tags=["Modules"])

# Mutating routes live on their own router so a deployment can attach
# authentication or rate limiting to them alone.
control_router = APIRouter(prefix="/modules", tags=["Module Control"])

UPDATABLE_FIELDS: frozenset[str] = frozenset({"status", "notes"})


# ============================================================================
# Request/Response Models
# ============================================================================


class RecoverRequest(BaseModel):
    """Request to run a recovery strategy against one module."""

    model_config = ConfigDict(extra="forbid")

    strategy: str = Field(..., description="repair, rebuild or reset")
    dry_run: bool = Field(False, description="Report the plan without touching the module")
    include_tests: bool = Field(True, description="Run tests after a rebuild")


class RecoverResponse(BaseModel):
    """Step results of a module recovery."""

    module_id: str
    strategy: str
    dry_run: bool
    health_score: int
    results: list[RecoveryPhaseResult]


# ============================================================================
# Read endpoints
# ============================================================================


def _cache_headers(etag: str, max_age: int) -> dict[str, str]:
    return {"ETag": etag, "Cache-Control": f"public, max-age={max_age}"}


@router.get("", response_model=WorkspaceHealth)
async def list_modules(
    response: Response,
    include_health_metrics: bool = Query(True),
    include_dependency_graph: bool = Query(True),
    include_error_details: bool = Query(False),
    analysis_depth: AnalysisDepth = Query("detailed"),
    module_filter: list[str] | None = Query(None),
    engine: RecoveryEngine = Depends(get_engine),
) -> WorkspaceHealth:
    """All module states plus summary statistics."""
    health = await engine.list_modules(
        AnalysisOptions(
            include_health_metrics=include_health_metrics,
            include_dependency_graph=include_dependency_graph,
            include_error_details=include_error_details,
            analysis_depth=analysis_depth,
            module_filter=module_filter,
        )
    )
    score = health.overall_health_score
    etag = f'"modules-{score if score is not None else "raw"}-{len(health.module_states)}"'
    response.headers.update(_cache_headers(etag, constants.MODULE_LIST_MAX_AGE_SECONDS))
    return health


@router.get("/{module_id}", response_model=ModuleState)
async def get_module(
    module_id: str,
    response: Response,
    if_none_match: str | None = Header(None),
    engine: RecoveryEngine = Depends(get_engine),
) -> Any:
    """One module state. Answers 304 when the client's ETag still matches."""
    state = await engine.get_module(module_id)
    etag = f'"{module_id}-{state.health_score}"'
    headers = _cache_headers(etag, constants.MODULE_DETAIL_MAX_AGE_SECONDS)
    if if_none_match is not None and etag in {t.strip() for t in if_none_match.split(",")}:
        return Response(status_code=304, headers=headers)
    response.headers.update(headers)
    return state


# ============================================================================
# Control endpoints
# ============================================================================


@control_router.patch("/{module_id}", response_model=ModuleState)
async def update_module(
    module_id: str,
    request: Request,
    engine: RecoveryEngine = Depends(get_engine),
) -> Any:
    """Operator update of a module's ``status`` and/or ``notes``."""
    raw = await request.body()
    if not raw.strip():
        return error_response(400, "EMPTY_UPDATE", "Update body is empty", module_id=module_id)
    try:
        body = json.loads(raw)
    except json.JSONDecodeError:
        return error_response(400, "VALIDATION_ERROR", "Update body is not valid JSON")
    if not isinstance(body, dict):
        return error_response(400, "VALIDATION_ERROR", "Update body must be a JSON object")
    if not body:
        return error_response(400, "EMPTY_UPDATE", "Update body is empty", module_id=module_id)

    unknown = sorted(set(body) - UPDATABLE_FIELDS)
    if unknown:
        return error_response(
            400,
            "UNKNOWN_FIELDS",
            f"Unknown fields: {', '.join(unknown)}",
            unknown_fields=unknown,
            allowed_fields=sorted(UPDATABLE_FIELDS),
        )

    valid_statuses = [s.value for s in ModuleStatus]
    status = body.get("status")
    if "status" in body and status not in valid_statuses:
        return error_response(
            400,
            "INVALID_STATUS",
            f"Invalid status: {status!r}",
            expected=valid_statuses,
            received=status,
        )
    notes = body.get("notes")
    if notes is not None and not isinstance(notes, str):
        return error_response(400, "VALIDATION_ERROR", "notes must be a string")

    return engine.update_module(module_id, status=status, notes=notes)


async def _read_options(
    request: Request, model: type[BuildOptions] | type[TestOptions], code: str, label: str
) -> BuildOptions | TestOptions | JSONResponse:
    """Parse an optional JSON options body; an empty body means defaults."""
    raw = await request.body()
    if not raw.strip():
        return model()
    try:
        body = json.loads(raw)
    except json.JSONDecodeError:
        return error_response(400, "VALIDATION_ERROR", f"{label} body is not valid JSON")
    if not isinstance(body, dict):
        return error_response(400, "VALIDATION_ERROR", f"{label} body must be a JSON object")

    valid = sorted(model.model_fields)
    invalid = sorted(set(body) - set(valid))
    if invalid:
        return error_response(
            400,
            code,
            f"Invalid {label.lower()}: {', '.join(invalid)}",
            invalid_options=invalid,
            valid_options=valid,
        )
    try:
        return model.model_validate(body)
    except ValidationError as e:
        errors = [
            {"field": ".".join(str(p) for p in err["loc"]), "error": err["msg"]}
            for err in e.errors()
        ]
        return error_response(400, "VALIDATION_ERROR", f"Invalid {label.lower()}", errors=errors)


@control_router.post("/{module_id}/build", status_code=202, response_model=BuildTicket)
async def trigger_build(
    module_id: str,
    request: Request,
    engine: RecoveryEngine = Depends(get_engine),
) -> Any:
    """Rebuild a module. Returns a build ticket.

    Body (optional): ``clean_build``, ``skip_tests``,
    ``dependency_resolution`` and ``timeout`` in seconds.
    """
    engine.registry.get(module_id)
    options = await _read_options(request, BuildOptions, "INVALID_BUILD_OPTIONS", "Build options")
    if isinstance(options, JSONResponse):
        return options
    return await engine.trigger_build(module_id, options)


@control_router.post("/{module_id}/test", status_code=202, response_model=TestTicket)
async def trigger_test(
    module_id: str,
    request: Request,
    engine: RecoveryEngine = Depends(get_engine),
) -> Any:
    """Run a module's tests, repairing it first. Returns a test ticket.

    Body (optional): ``test_suite``, ``coverage``, ``generate_report``,
    ``fix_failures`` and ``timeout`` in seconds.
    """
    engine.registry.get(module_id)
    options = await _read_options(request, TestOptions, "INVALID_TEST_OPTIONS", "Test options")
    if isinstance(options, JSONResponse):
        return options
    return await engine.trigger_test(module_id, options)


@control_router.post("/{module_id}/recover", response_model=RecoverResponse)
async def recover_module(
    module_id: str,
    request: RecoverRequest,
    engine: RecoveryEngine = Depends(get_engine),
) -> RecoverResponse:
    """Run a recovery strategy and return its step results."""
    results = await engine.recover_module(
        module_id,
        request.strategy,
        dry_run=request.dry_run,
        include_tests=request.include_tests,
    )
    return RecoverResponse(
        module_id=module_id,
        strategy=request.strategy,
        dry_run=request.dry_run,
        health_score=engine.store.get(module_id).health_score,
        results=results,
    )


__all__ = ["control_router", "router"]
