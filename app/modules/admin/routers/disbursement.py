"""
Admin disbursement endpoint.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from app.core.database import get_db
from app.core.dependencies import require_admin
from app.core.security import Principal
from app.modules.loans.schemas import DisbursementResponse
from app.modules.loans.services import LoanService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["admin-disbursement"])


@router.post("/disburse/{loan_id}", response_model=DisbursementResponse)
async def disburse_loan(
    loan_id: int,
    db: AsyncSession = Depends(get_db),
    admin: Principal = Depends(require_admin)
):
    """Release an approved loan: credit the borrower and mark the loan active"""
    service = LoanService(db)
    loan, txn = await service.disburse_loan(loan_id)
    logger.info(f"Admin {admin.id} disbursed loan {loan_id}")
    return {"loan": loan, "transaction_id": txn.id}
