from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from decimal import Decimal
import logging

from app.modules.admin.schemas import DashboardStats, LoanStatusDistribution
from app.modules.loans.models import Loan, LoanStatus, normalize_status
from app.modules.transactions.models import Transaction, TransactionType, normalize_transaction_type
from app.modules.users.models import User, UserRole

logger = logging.getLogger(__name__)


class AdminService:
    """Read-only projections for the admin dashboard"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_dashboard_stats(self) -> DashboardStats:
        """
        Aggregate counters over users and loans.

        Active loans are the disbursed ones; approved loans still waiting for
        disbursement are reported as approved_loan_count. Total disbursed is the
        requested amount summed over active loans; actual payments is the sum of
        loan_payment ledger entries.
        """
        # Users
        borrower_result = await self.db.execute(
            select(func.count(User.id)).where(func.lower(User.role) == UserRole.BORROWER.value)
        )
        borrower_count = borrower_result.scalar() or 0

        # Loans, grouped on the raw stored value so legacy spellings fold together
        status_result = await self.db.execute(
            select(Loan.status, func.count(Loan.id), func.sum(Loan.amount_requested))
            .group_by(Loan.status)
        )

        counts = {status: 0 for status in LoanStatus}
        amounts = {status: Decimal("0") for status in LoanStatus}
        total_loans = 0
        for raw_status, count, amount in status_result.all():
            total_loans += count
            status = normalize_status(raw_status)
            if status is None:
                logger.warning(f"{count} loan(s) with unrecognized status {raw_status!r} left out of dashboard buckets")
                continue
            counts[status] += count
            amounts[status] += Decimal(amount or 0)

        # Repayments, folded the same way the balance folds ledger types
        payment_result = await self.db.execute(
            select(Transaction.type, func.sum(Transaction.amount))
            .group_by(Transaction.type)
        )
        actual_payments = sum(
            (Decimal(total or 0) for raw_type, total in payment_result.all()
             if normalize_transaction_type(raw_type) == TransactionType.LOAN_PAYMENT),
            Decimal("0")
        )

        return DashboardStats(
            borrower_count=borrower_count,
            total_loan_count=total_loans,
            active_loan_count=counts[LoanStatus.ACTIVE],
            pending_approval_count=counts[LoanStatus.PENDING],
            approved_loan_count=counts[LoanStatus.APPROVED],
            rejected_loan_count=counts[LoanStatus.REJECTED],
            total_disbursed=float(amounts[LoanStatus.ACTIVE]),
            actual_payments=float(actual_payments),
            loan_status_distribution=LoanStatusDistribution(
                pending=counts[LoanStatus.PENDING],
                approved=counts[LoanStatus.APPROVED],
                active=counts[LoanStatus.ACTIVE],
                rejected=counts[LoanStatus.REJECTED]
            )
        )
