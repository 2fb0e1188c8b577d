from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from typing import Optional


class TransactionCreate(BaseModel):
    """Borrower-initiated ledger entry"""
    type: str = Field(..., min_length=1, max_length=30)
    amount: Decimal = Field(..., gt=0, max_digits=15, decimal_places=2)
    loan_id: Optional[int] = None


class TransactionResponse(BaseModel):
    id: int
    user_id: int
    type: str
    amount: float
    loan_id: Optional[int]
    created_at: datetime

    class Config:
        from_attributes = True
