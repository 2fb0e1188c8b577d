"""
Admin dashboard endpoints.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.modules.admin.schemas import DashboardStats
from app.modules.admin.services import AdminService

router = APIRouter(tags=["admin-dashboard"])


@router.get("/dashboard-stats", response_model=DashboardStats)
async def get_dashboard_stats(db: AsyncSession = Depends(get_db)):
    """Get dashboard statistics"""
    service = AdminService(db)
    return await service.get_dashboard_stats()
