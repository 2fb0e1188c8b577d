from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List
from app.core.database import get_db
from app.core.dependencies import get_current_principal
from app.core.security import Principal
from app.modules.loans.schemas import (
    LoanApplicationRequest, LoanApplicationResponse, LoanDetailResponse,
    LoanQuote, LoanQuoteRequest, LoanResponse
)
from app.modules.loans.services import LoanService

router = APIRouter(prefix="/loans", tags=["loans"])


@router.post("/apply", response_model=LoanApplicationResponse, status_code=status.HTTP_201_CREATED)
async def apply_loan(
    loan: LoanApplicationRequest,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal)
):
    """Submit a loan application; it starts out pending"""
    service = LoanService(db)
    db_loan = await service.apply_loan(
        principal.id,
        loan.amount_requested,
        loan.purpose,
        loan.repayment_term_months
    )
    return {"loan": db_loan}


@router.get("/my-loans", response_model=List[LoanResponse])
async def read_my_loans(
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal)
):
    service = LoanService(db)
    return await service.get_user_loans(principal.id)


@router.post("/quote", response_model=LoanQuote)
async def quote_loan(request: LoanQuoteRequest):
    """Flat interest preview for an amount and term"""
    return LoanService.calculate_quote(request.amount, request.term_months)


@router.get("/{loan_id}", response_model=LoanDetailResponse)
async def read_loan(
    loan_id: int,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal)
):
    """Loan details with the display-only repayment figures"""
    service = LoanService(db)
    db_loan = await service.get_loan_for(principal, loan_id)
    quote = LoanService.calculate_quote(db_loan.amount_requested, db_loan.repayment_term_months)
    return {"loan": db_loan, "quote": quote}
