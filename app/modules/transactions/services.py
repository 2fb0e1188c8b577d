from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from decimal import Decimal, InvalidOperation
from typing import List, Optional
import logging

from app.core.database import UnitOfWork
from app.core.exceptions import NotFound, ValidationError
from app.modules.loans.models import Loan
from app.modules.transactions.models import Transaction, TransactionType, normalize_transaction_type
from app.modules.transactions.schemas import TransactionCreate

logger = logging.getLogger(__name__)

# Types a borrower may post directly; disbursements only come from the loan lifecycle
SELF_SERVICE_TYPES = (
    TransactionType.DEPOSIT,
    TransactionType.WITHDRAWAL,
    TransactionType.LOAN_PAYMENT,
)


class LedgerService:
    """Append-only ledger and the balance derived from it"""

    def __init__(self, db: AsyncSession):
        self.db = db

    @staticmethod
    def _validate_amount(amount) -> Decimal:
        try:
            value = Decimal(str(amount))
        except (InvalidOperation, ValueError, TypeError):
            raise ValidationError("Amount must be a number")
        if not value.is_finite() or value <= 0:
            raise ValidationError("Amount must be greater than zero")
        return value

    async def append(
        self,
        user_id: int,
        txn_type,
        amount,
        loan_id: Optional[int] = None
    ) -> Transaction:
        """
        Stage a ledger row in the current unit of work.

        The row is flushed but not committed; the caller's UnitOfWork decides
        whether it persists.
        """
        canonical = normalize_transaction_type(txn_type)
        if canonical is None:
            raise ValidationError(f"Unknown transaction type: {txn_type}")

        db_txn = Transaction(
            user_id=user_id,
            type=canonical.value,
            amount=self._validate_amount(amount),
            loan_id=loan_id
        )
        self.db.add(db_txn)
        await self.db.flush()
        return db_txn

    async def record_transaction(
        self,
        user_id: int,
        txn_type,
        amount,
        loan_id: Optional[int] = None
    ) -> Transaction:
        """Append a ledger row and commit it"""
        async with UnitOfWork(self.db):
            db_txn = await self.append(user_id, txn_type, amount, loan_id)

        logger.info(
            f"Recorded {db_txn.type} of {db_txn.amount} for user {user_id}"
            + (f" (loan {loan_id})" if loan_id else "")
        )
        return db_txn

    async def create_user_transaction(self, user_id: int, txn_in: TransactionCreate) -> Transaction:
        """Record a deposit, withdrawal or loan payment on the caller's own ledger"""
        canonical = normalize_transaction_type(txn_in.type)
        if canonical is None:
            raise ValidationError(f"Unknown transaction type: {txn_in.type}")
        if canonical not in SELF_SERVICE_TYPES:
            raise ValidationError("Loan disbursements are recorded by the lending desk only")

        if txn_in.loan_id is not None:
            result = await self.db.execute(
                select(Loan.id).where(Loan.id == txn_in.loan_id, Loan.user_id == user_id)
            )
            if result.scalar_one_or_none() is None:
                raise NotFound("Loan not found")

        return await self.record_transaction(user_id, canonical, txn_in.amount, txn_in.loan_id)

    async def compute_balance(self, user_id: int) -> Decimal:
        """
        Signed sum of the user's ledger.

        deposits + disbursements - withdrawals - loan payments. Rows whose type
        does not normalize contribute nothing and are reported in the log.
        """
        result = await self.db.execute(
            select(Transaction.type, func.sum(Transaction.amount))
            .where(Transaction.user_id == user_id)
            .group_by(Transaction.type)
        )

        balance = Decimal("0")
        for raw_type, total in result.all():
            canonical = normalize_transaction_type(raw_type)
            if canonical is None:
                logger.warning(
                    f"Ignoring unrecognized transaction type {raw_type!r} "
                    f"in balance of user {user_id}"
                )
                continue
            balance += canonical.sign * Decimal(total or 0)
        return balance

    async def recent_transactions(self, user_id: int, limit: int = 10) -> List[Transaction]:
        """Most recent ledger rows for a user, newest first"""
        result = await self.db.execute(
            select(Transaction)
            .where(Transaction.user_id == user_id)
            .order_by(Transaction.created_at.desc(), Transaction.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def get_loan_transactions(self, loan_id: int) -> List[Transaction]:
        result = await self.db.execute(
            select(Transaction)
            .where(Transaction.loan_id == loan_id)
            .order_by(Transaction.id)
        )
        return list(result.scalars().all())
