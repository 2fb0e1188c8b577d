from pydantic import BaseModel, Field, AliasChoices, field_validator
from datetime import datetime
from decimal import Decimal
from typing import Optional
import enum


class LoanApplicationRequest(BaseModel):
    amount_requested: Decimal = Field(
        ...,
        gt=0,
        max_digits=15,
        decimal_places=2,
        validation_alias=AliasChoices("amount_requested", "amountRequested", "amount")
    )
    purpose: str = Field(..., min_length=1, max_length=2000)
    repayment_term_months: int = Field(
        ...,
        gt=0,
        le=600,
        validation_alias=AliasChoices("repayment_term_months", "repaymentTermMonths", "term_months")
    )


class LoanDecisionRequest(BaseModel):
    note: Optional[str] = Field(None, max_length=2000)


class LoanQuoteRequest(BaseModel):
    amount: Decimal = Field(..., gt=0, max_digits=15, decimal_places=2)
    term_months: int = Field(..., gt=0, le=600)


class LoanQuote(BaseModel):
    """Display-only flat interest figures"""
    principal: float
    term_months: int
    monthly_interest_rate: float
    interest_amount: float
    total_repayable: float
    monthly_payment: float


class LoanResponse(BaseModel):
    id: int
    user_id: int
    amount_requested: float
    purpose: str
    repayment_term_months: int
    status: str
    decision_note: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True

    @field_validator("status", mode="before")
    @classmethod
    def status_value(cls, v):
        return v.value if isinstance(v, enum.Enum) else v


class LoanWithBorrowerResponse(LoanResponse):
    full_name: Optional[str] = None


class LoanApplicationResponse(BaseModel):
    message: str = "Loan submitted successfully!"
    loan: LoanResponse


class LoanActionResponse(BaseModel):
    message: str
    loan: LoanResponse


class LoanDetailResponse(BaseModel):
    loan: LoanResponse
    quote: LoanQuote


class DisbursementResponse(BaseModel):
    message: str = "Loan disbursed successfully!"
    loan: LoanResponse
    transaction_id: int
