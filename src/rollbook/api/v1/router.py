"""API v1 main router.

Aggregates all v1 API routers into a single router for inclusion in the app.
"""

from fastapi import APIRouter

from rollbook.api.v1.cache import router as cache_router
from rollbook.api.v1.routing import router as routing_router
from rollbook.api.v1.students import router as students_router

router = APIRouter()

# Include sub-routers
router.include_router(students_router, prefix="/students", tags=["Students"])
router.include_router(routing_router, prefix="/routing", tags=["Routing"])
router.include_router(cache_router, prefix="/cache", tags=["Cache"])
