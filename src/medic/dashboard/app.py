"""FastAPI application factory for the Medic request layer.

Exposes module health, module recovery and the phase pipeline over HTTP.
Every error is rendered as the ``{code, message, details}`` envelope.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from medic.core.errors import MedicError
from medic.core.logging import get_logger
from medic.engine import RecoveryEngine

_logger = get_logger("dashboard")

# Module-level engine reference for dependency injection
_engine: RecoveryEngine | None = None


def get_engine() -> RecoveryEngine:
    """Get the configured recovery engine.

    Raises:
        RuntimeError: If no engine is configured (app not created properly).
    """
    if _engine is None:
        raise RuntimeError("Recovery engine not configured. Use create_app() with an engine.")
    return _engine


def error_response(status_code: int, code: str, message: str, **details: Any) -> JSONResponse:
    """Render an error envelope."""
    return JSONResponse(
        status_code=status_code,
        content={
            "code": code,
            "message": message,
            "details": {k: v for k, v in details.items() if v is not None},
        },
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler.

    Cancels running phase executions on shutdown.
    """
    yield
    if _engine is not None:
        await _engine.close()


async def _medic_error_handler(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, MedicError)
    level = "error" if exc.http_status >= 500 else "info"
    getattr(_logger, level)(
        "dashboard.request_failed",
        path=request.url.path,
        code=exc.code,
        status_code=exc.http_status,
    )
    return JSONResponse(status_code=exc.http_status, content=exc.to_envelope())


async def _validation_error_handler(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, RequestValidationError)
    errors = [
        {
            "field": ".".join(str(p) for p in err.get("loc", ()) if p != "body"),
            "error": err.get("msg", ""),
        }
        for err in exc.errors()
    ]
    return error_response(400, "VALIDATION_ERROR", "Request validation failed", errors=errors)


def create_app(
    engine: RecoveryEngine,
    title: str = "Medic",
    version: str = "0.3.0",
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        engine: The recovery engine the routes operate on.
        title: API title for OpenAPI docs.
        version: API version.

    Returns:
        Configured FastAPI application.
    """
    global _engine
    _engine = engine

    app = FastAPI(
        title=title,
        version=version,
        description="REST API for workspace health assessment and module recovery",
        lifespan=lifespan,
    )
    app.add_exception_handler(MedicError, _medic_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)

    from medic.dashboard.routes import router
    app.include_router(router)

    @app.get("/health", tags=["System"])
    async def health_check() -> dict[str, Any]:
        """Liveness probe."""
        return {
            "status": "healthy",
            "version": version,
            "service": "medic",
            "workspace": str(engine.config.workspace_path),
        }

    return app


__all__ = ["create_app", "error_response", "get_engine"]
