from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, func, String, type_coerce
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import List, Optional, Tuple
import logging

from app.core.config import settings
from app.core.database import UnitOfWork
from app.core.exceptions import InvalidTransition, NotFound, ValidationError
from app.core.security import Principal
from app.modules.loans.models import (
    Loan, LoanStatus, PENDING_STATUS_ALIASES, can_transition, normalize_status
)
from app.modules.loans.schemas import LoanQuote, LoanWithBorrowerResponse
from app.modules.transactions.models import Transaction, TransactionType
from app.modules.transactions.services import LedgerService
from app.modules.users.models import User

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")

_ACTION_VERBS = {
    LoanStatus.APPROVED: "approve",
    LoanStatus.REJECTED: "reject",
    LoanStatus.ACTIVE: "disburse",
}


class LoanService:
    """Loan applications and the admin-driven lifecycle"""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ------------------------------------------------------------
    # Borrower operations
    # ------------------------------------------------------------

    async def apply_loan(
        self,
        user_id: int,
        amount_requested,
        purpose: Optional[str],
        repayment_term_months
    ) -> Loan:
        """Create a loan application in pending state"""
        if amount_requested is None or purpose is None or repayment_term_months is None:
            raise ValidationError("Missing loan details")

        try:
            amount = Decimal(str(amount_requested))
        except (InvalidOperation, ValueError):
            raise ValidationError("Loan amount must be a number")
        if not amount.is_finite() or amount <= 0:
            raise ValidationError("Loan amount must be greater than zero")

        try:
            term = int(repayment_term_months)
        except (TypeError, ValueError):
            raise ValidationError("Repayment term must be a whole number of months")
        if term <= 0 or Decimal(str(repayment_term_months)) != term:
            raise ValidationError("Repayment term must be a positive whole number of months")

        purpose = str(purpose).strip()
        if not purpose:
            raise ValidationError("Loan purpose is required")

        db_loan = Loan(
            user_id=user_id,
            amount_requested=amount,
            purpose=purpose,
            repayment_term_months=term,
            status=LoanStatus.PENDING
        )
        async with UnitOfWork(self.db):
            self.db.add(db_loan)

        await self.db.refresh(db_loan)
        logger.info(f"Loan {db_loan.id} applied by user {user_id} for {amount} over {term} months")
        return db_loan

    async def get_user_loans(self, user_id: int) -> List[Loan]:
        """Loans owned by a borrower, newest first"""
        result = await self.db.execute(
            select(Loan)
            .where(Loan.user_id == user_id)
            .order_by(Loan.created_at.desc(), Loan.id.desc())
        )
        return list(result.scalars().all())

    async def get_loan(self, loan_id: int) -> Loan:
        result = await self.db.execute(select(Loan).where(Loan.id == loan_id))
        loan = result.scalar_one_or_none()
        if loan is None:
            raise NotFound("Loan not found")
        return loan

    async def get_loan_for(self, principal: Principal, loan_id: int) -> Loan:
        """A borrower sees only their own loans; admins see all"""
        loan = await self.get_loan(loan_id)
        if not principal.is_admin and loan.user_id != principal.id:
            raise NotFound("Loan not found")
        return loan

    @staticmethod
    def calculate_quote(principal, term_months: int, monthly_rate=None) -> LoanQuote:
        """
        Flat interest figures for display.

        interest = principal x monthly rate x months; nothing accrues.
        """
        if monthly_rate is None:
            monthly_rate = settings.MONTHLY_INTEREST_RATE
        principal = Decimal(str(principal))
        rate = Decimal(str(monthly_rate))
        if principal <= 0 or term_months <= 0:
            raise ValidationError("Amount and term must be greater than zero")

        interest = (principal * rate * term_months).quantize(CENT, rounding=ROUND_HALF_UP)
        total = principal + interest
        monthly = (total / term_months).quantize(CENT, rounding=ROUND_HALF_UP)

        return LoanQuote(
            principal=float(principal),
            term_months=term_months,
            monthly_interest_rate=float(rate),
            interest_amount=float(interest),
            total_repayable=float(total),
            monthly_payment=float(monthly)
        )

    # ------------------------------------------------------------
    # Admin reads
    # ------------------------------------------------------------

    async def get_loans(self) -> List[Loan]:
        """All loans, newest first"""
        result = await self.db.execute(
            select(Loan).order_by(Loan.created_at.desc(), Loan.id.desc())
        )
        return list(result.scalars().all())

    async def _loans_with_borrower(self, raw_statuses) -> List[LoanWithBorrowerResponse]:
        result = await self.db.execute(
            select(Loan, User.full_name)
            .outerjoin(User, User.id == Loan.user_id)
            .where(func.lower(type_coerce(Loan.status, String)).in_(raw_statuses))
            .order_by(Loan.created_at.desc(), Loan.id.desc())
        )
        loans = []
        for loan, full_name in result.all():
            item = LoanWithBorrowerResponse.model_validate(loan)
            item.full_name = full_name
            loans.append(item)
        return loans

    async def get_pending_loans(self) -> List[LoanWithBorrowerResponse]:
        """Loans awaiting an approve/reject decision, with borrower name"""
        return await self._loans_with_borrower(PENDING_STATUS_ALIASES)

    async def get_approved_loans(self) -> List[LoanWithBorrowerResponse]:
        """Approved loans awaiting disbursement, with borrower name"""
        return await self._loans_with_borrower(("approved", "approved_pending_disburse"))

    # ------------------------------------------------------------
    # Lifecycle transitions
    # ------------------------------------------------------------

    async def _get_for_update(self, loan_id: int) -> Tuple[Loan, str]:
        """
        Load a loan fresh from the store, row-locked where supported.

        Also returns the status string exactly as stored, which may be a
        legacy spelling of the normalized ``loan.status``.
        """
        result = await self.db.execute(
            select(Loan, type_coerce(Loan.status, String))
            .where(Loan.id == loan_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        row = result.one_or_none()
        if row is None:
            raise NotFound("Loan not found")
        return row[0], row[1]

    @staticmethod
    def _ensure_can(loan: Loan, target: LoanStatus) -> LoanStatus:
        current = normalize_status(loan.status)
        if not can_transition(current, target):
            shown = current.value if current else loan.status
            raise InvalidTransition(f"Cannot {_ACTION_VERBS[target]} a loan that is {shown}")
        return current

    async def _transition(
        self,
        loan: Loan,
        target: LoanStatus,
        note: Optional[str] = None,
        stored_status: Optional[str] = None
    ) -> None:
        """
        Compare-and-set the loan status.

        The UPDATE only matches while the row still holds the status we read,
        so a concurrent transition that committed first leaves rowcount 0.
        ``stored_status`` is the raw column value when it was read alongside
        the loan; legacy spellings are matched as stored and rewritten
        canonically.
        """
        current = self._ensure_can(loan, target)
        if stored_status is None:
            stored_status = current.value

        values = {"status": target}
        if note is not None:
            values["decision_note"] = note

        result = await self.db.execute(
            update(Loan)
            .where(Loan.id == loan.id, type_coerce(Loan.status, String) == stored_status)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise InvalidTransition(
                f"Cannot {_ACTION_VERBS[target]} loan {loan.id}: it was changed by another request"
            )

    async def _decide(self, loan_id: int, target: LoanStatus, note: Optional[str]) -> Loan:
        async with UnitOfWork(self.db):
            loan, stored_status = await self._get_for_update(loan_id)
            await self._transition(loan, target, note, stored_status)

        await self.db.refresh(loan)
        logger.info(f"Loan {loan_id} moved to {target.value}")
        return loan

    async def approve_loan(self, loan_id: int, note: Optional[str] = None) -> Loan:
        """pending -> approved"""
        return await self._decide(loan_id, LoanStatus.APPROVED, note)

    async def reject_loan(self, loan_id: int, note: Optional[str] = None) -> Loan:
        """pending -> rejected"""
        return await self._decide(loan_id, LoanStatus.REJECTED, note)

    async def disburse_loan(self, loan_id: int) -> Tuple[Loan, Transaction]:
        """
        approved -> active, paired with a loan_disbursement ledger entry.

        The ledger insert and the status change share one unit of work: both
        commit or neither does.
        """
        ledger = LedgerService(self.db)

        async with UnitOfWork(self.db):
            loan, stored_status = await self._get_for_update(loan_id)
            self._ensure_can(loan, LoanStatus.ACTIVE)

            db_txn = await ledger.append(
                loan.user_id,
                TransactionType.LOAN_DISBURSEMENT,
                loan.amount_requested,
                loan_id=loan.id
            )
            await self._transition(loan, LoanStatus.ACTIVE, stored_status=stored_status)

        await self.db.refresh(loan)
        logger.info(
            f"Loan {loan_id} disbursed: {db_txn.amount} credited to user {loan.user_id} "
            f"(transaction {db_txn.id})"
        )
        return loan, db_txn
