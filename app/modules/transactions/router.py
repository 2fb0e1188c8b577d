from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List
from app.core.database import get_db
from app.core.dependencies import get_current_principal
from app.core.security import Principal
from app.modules.transactions.schemas import TransactionCreate, TransactionResponse
from app.modules.transactions.services import LedgerService

router = APIRouter(prefix="/transactions", tags=["transactions"])


@router.get("/my", response_model=List[TransactionResponse])
async def read_my_transactions(
    limit: int = Query(10, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal)
):
    """Most recent ledger entries of the caller"""
    service = LedgerService(db)
    return await service.recent_transactions(principal.id, limit=limit)


@router.post("", response_model=TransactionResponse, status_code=status.HTTP_201_CREATED)
async def create_transaction(
    txn: TransactionCreate,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal)
):
    """Record a deposit, withdrawal or loan payment"""
    service = LedgerService(db)
    return await service.create_user_transaction(principal.id, txn)
