from pydantic import BaseModel


class LoanStatusDistribution(BaseModel):
    pending: int = 0
    approved: int = 0
    active: int = 0
    rejected: int = 0


class DashboardStats(BaseModel):
    # Users
    borrower_count: int = 0

    # Loans
    total_loan_count: int = 0
    active_loan_count: int = 0
    pending_approval_count: int = 0
    approved_loan_count: int = 0
    rejected_loan_count: int = 0
    total_disbursed: float = 0.0
    actual_payments: float = 0.0

    loan_status_distribution: LoanStatusDistribution = LoanStatusDistribution()
