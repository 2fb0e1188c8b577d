"""
Admin loan review endpoints.

Paths under /loan-approvals mirror the /loans/... ones for older clients.
"""
from fastapi import APIRouter, Body, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional
import logging

from app.core.database import get_db
from app.core.dependencies import require_admin
from app.core.security import Principal
from app.modules.loans.schemas import (
    LoanActionResponse, LoanDecisionRequest, LoanResponse, LoanWithBorrowerResponse
)
from app.modules.loans.services import LoanService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["admin-loans"])


@router.get("/loans", response_model=List[LoanResponse])
async def list_loans(db: AsyncSession = Depends(get_db)):
    """List all loans, newest first"""
    service = LoanService(db)
    return await service.get_loans()


@router.get("/loans/pending", response_model=List[LoanWithBorrowerResponse])
@router.get("/loan-approvals", response_model=List[LoanWithBorrowerResponse])
async def list_pending_loans(db: AsyncSession = Depends(get_db)):
    """List loans awaiting a decision"""
    service = LoanService(db)
    return await service.get_pending_loans()


@router.get("/approved-loans", response_model=List[LoanWithBorrowerResponse])
async def list_approved_loans(db: AsyncSession = Depends(get_db)):
    """List approved loans awaiting disbursement"""
    service = LoanService(db)
    return await service.get_approved_loans()


@router.post("/loans/{loan_id}/approve", response_model=LoanActionResponse)
@router.post("/loan-approvals/{loan_id}/approve", response_model=LoanActionResponse)
async def approve_loan(
    loan_id: int,
    decision: Optional[LoanDecisionRequest] = Body(None),
    db: AsyncSession = Depends(get_db),
    admin: Principal = Depends(require_admin)
):
    """Approve a pending loan application"""
    service = LoanService(db)
    loan = await service.approve_loan(loan_id, decision.note if decision else None)
    logger.info(f"Admin {admin.id} approved loan {loan_id}")
    return {"message": "Loan approved", "loan": loan}


@router.post("/loans/{loan_id}/reject", response_model=LoanActionResponse)
@router.post("/loan-approvals/{loan_id}/reject", response_model=LoanActionResponse)
async def reject_loan(
    loan_id: int,
    decision: Optional[LoanDecisionRequest] = Body(None),
    db: AsyncSession = Depends(get_db),
    admin: Principal = Depends(require_admin)
):
    """Reject a pending loan application"""
    service = LoanService(db)
    loan = await service.reject_loan(loan_id, decision.note if decision else None)
    logger.info(f"Admin {admin.id} rejected loan {loan_id}")
    return {"message": "Loan rejected", "loan": loan}
