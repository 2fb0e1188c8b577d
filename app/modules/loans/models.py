from sqlalchemy import Column, Integer, String, Text, Numeric, ForeignKey, DateTime, CheckConstraint
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from sqlalchemy.types import TypeDecorator
from typing import Optional
from app.core.database import Base
import enum
import logging
import re

logger = logging.getLogger(__name__)


class LoanStatus(str, enum.Enum):
    """Canonical loan lifecycle states"""
    PENDING = "pending"
    APPROVED = "approved"
    ACTIVE = "active"  # disbursed
    REJECTED = "rejected"


# Allowed moves; active and rejected are terminal
LOAN_TRANSITIONS = {
    LoanStatus.PENDING: {LoanStatus.APPROVED, LoanStatus.REJECTED},
    LoanStatus.APPROVED: {LoanStatus.ACTIVE},
    LoanStatus.ACTIVE: set(),
    LoanStatus.REJECTED: set(),
}

# Lower-cased spellings that mean "awaiting a decision"
PENDING_STATUS_ALIASES = ("pending", "pending_approval", "pendingapproval")

# Keys are lower-cased with separators stripped
_STATUS_ALIASES = {
    "pending": LoanStatus.PENDING,
    "pendingapproval": LoanStatus.PENDING,
    "approved": LoanStatus.APPROVED,
    "approvedpendingdisburse": LoanStatus.APPROVED,
    "active": LoanStatus.ACTIVE,
    "disbursed": LoanStatus.ACTIVE,
    "rejected": LoanStatus.REJECTED,
}


def normalize_status(value) -> Optional[LoanStatus]:
    """Map a stored status string onto the canonical enum, or None"""
    if isinstance(value, LoanStatus):
        return value
    if not isinstance(value, str):
        return None
    return _STATUS_ALIASES.get(re.sub(r"[^a-z]", "", value.lower()))


def can_transition(current, target: LoanStatus) -> bool:
    current = normalize_status(current)
    return current is not None and target in LOAN_TRANSITIONS[current]


class LoanStatusType(TypeDecorator):
    """
    String column that only ever writes canonical statuses.

    Reads go through normalize_status so historical spellings still load;
    anything unrecognized is logged and handed back unchanged.
    """
    impl = String(30)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, LoanStatus):
            return value.value
        try:
            return LoanStatus(value).value
        except ValueError:
            raise ValueError(f"Refusing to persist non-canonical loan status {value!r}")

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        status = normalize_status(value)
        if status is None:
            logger.warning(f"Unrecognized loan status {value!r} read from store")
            return value
        return status


class Loan(Base):
    """Loan application and its lifecycle state"""
    __tablename__ = "loans"
    __table_args__ = (
        CheckConstraint("amount_requested > 0", name="ck_loans_amount_positive"),
        CheckConstraint("repayment_term_months > 0", name="ck_loans_term_positive"),
        CheckConstraint(
            "status IN ('pending', 'approved', 'active', 'rejected')",
            name="ck_loans_status_canonical"
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    amount_requested = Column(Numeric(15, 2), nullable=False)
    purpose = Column(Text, nullable=False)
    repayment_term_months = Column(Integer, nullable=False)
    status = Column(LoanStatusType(), default=LoanStatus.PENDING, nullable=False, index=True)
    decision_note = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    user = relationship("User", back_populates="loans", lazy="raise")
    transactions = relationship("Transaction", back_populates="loan", lazy="raise")

    def __repr__(self):
        return f"<Loan(id={self.id}, user_id={self.user_id}, status={self.status})>"
