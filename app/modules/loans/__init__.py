# Loans module
from app.modules.loans.models import (
    Loan, LoanStatus, LOAN_TRANSITIONS, normalize_status, can_transition
)

__all__ = [
    "Loan", "LoanStatus", "LOAN_TRANSITIONS", "normalize_status", "can_transition",
]
