# Admin module
from app.modules.admin.schemas import DashboardStats, LoanStatusDistribution

__all__ = ["DashboardStats", "LoanStatusDistribution"]
