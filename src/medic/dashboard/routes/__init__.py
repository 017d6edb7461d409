"""Dashboard API routes.

All routes are prefixed with /api. Read-only and mutating routes are
registered from separate routers.
"""

from fastapi import APIRouter

from medic.dashboard.routes import modules, phases

router = APIRouter(prefix="/api")
router.include_router(modules.router)
router.include_router(modules.control_router)
router.include_router(phases.router)
router.include_router(phases.control_router)

__all__ = ["router"]
