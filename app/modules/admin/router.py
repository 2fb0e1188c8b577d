"""
Admin module sub-routers organized by domain.
"""
from fastapi import APIRouter, Depends

from app.core.dependencies import require_admin
from app.modules.admin.routers.dashboard import router as dashboard_router
from app.modules.admin.routers.loans import router as loans_router
from app.modules.admin.routers.disbursement import router as disbursement_router

# Main admin router; every route requires the admin role
router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])

# Include all sub-routers
router.include_router(dashboard_router)
router.include_router(loans_router)
router.include_router(disbursement_router)
