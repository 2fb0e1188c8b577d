from sqlalchemy import Column, Integer, String, Numeric, ForeignKey, DateTime, CheckConstraint
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from typing import Optional
from app.core.database import Base
import enum
import re


class TransactionType(str, enum.Enum):
    """Canonical money-movement buckets"""
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    LOAN_DISBURSEMENT = "loan_disbursement"
    LOAN_PAYMENT = "loan_payment"

    @property
    def sign(self) -> int:
        return TRANSACTION_SIGNS[self]


TRANSACTION_SIGNS = {
    TransactionType.DEPOSIT: 1,
    TransactionType.LOAN_DISBURSEMENT: 1,
    TransactionType.WITHDRAWAL: -1,
    TransactionType.LOAN_PAYMENT: -1,
}

# Keys are lower-cased with everything but letters stripped
_TYPE_ALIASES = {
    "deposit": TransactionType.DEPOSIT,
    "cashdeposit": TransactionType.DEPOSIT,
    "withdrawal": TransactionType.WITHDRAWAL,
    "withdraw": TransactionType.WITHDRAWAL,
    "cashwithdrawal": TransactionType.WITHDRAWAL,
    "loandisbursement": TransactionType.LOAN_DISBURSEMENT,
    "loanissued": TransactionType.LOAN_DISBURSEMENT,
    "loanpayment": TransactionType.LOAN_PAYMENT,
    "loanrepayment": TransactionType.LOAN_PAYMENT,
}


def normalize_transaction_type(value) -> Optional[TransactionType]:
    """Map a stored or submitted type string onto its bucket, or None"""
    if isinstance(value, TransactionType):
        return value
    if not isinstance(value, str):
        return None
    return _TYPE_ALIASES.get(re.sub(r"[^a-z]", "", value.lower()))


class Transaction(Base):
    """Append-only ledger entry"""
    __tablename__ = "transactions"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_transactions_amount_positive"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    type = Column(String(30), nullable=False)
    amount = Column(Numeric(15, 2), nullable=False)
    loan_id = Column(Integer, ForeignKey("loans.id"), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    user = relationship("User", back_populates="transactions", lazy="raise")
    loan = relationship("Loan", back_populates="transactions", lazy="raise")

    def __repr__(self):
        return f"<Transaction(id={self.id}, user_id={self.user_id}, type={self.type}, amount={self.amount})>"
