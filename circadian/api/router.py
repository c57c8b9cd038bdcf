from fastapi import APIRouter, Depends

from circadian.api.diagnostics import router as diagnostics_router
from circadian.api.jobs import router as jobs_router
from circadian.api.notifications import router as notifications_router
from circadian.api.sessions import router as sessions_router
from circadian.core.security import require_admin

api_router = APIRouter()

# Operator routes at /api/*, all behind X-Admin-Key
admin = [Depends(require_admin)]
api_router.include_router(jobs_router, prefix="/api", tags=["jobs"], dependencies=admin)
api_router.include_router(sessions_router, prefix="/api", tags=["sessions"], dependencies=admin)
api_router.include_router(diagnostics_router, prefix="/api", tags=["diagnostics"], dependencies=admin)
api_router.include_router(notifications_router, prefix="/api", tags=["notifications"], dependencies=admin)
