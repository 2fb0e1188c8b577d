from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession
from redis import asyncio as aioredis

from app.core.database import get_db, get_redis
from app.core.dependencies import get_bearer_token, get_current_principal, get_current_user
from app.core.security import Principal
from app.modules.users.models import User
from app.modules.users import schemas
from app.modules.users.services import UserService
from app.modules.transactions.services import LedgerService

router = APIRouter(prefix="/auth", tags=["auth"])
users_router = APIRouter(prefix="/users", tags=["users"])


@router.post("/register", response_model=schemas.RegistrationResponse, status_code=status.HTTP_201_CREATED)
async def register_user(
    user_data: schemas.UserRegistrationRequest,
    db: AsyncSession = Depends(get_db)
):
    """
    Register a new borrower.

    - Email must not already be registered
    - Returns an access token and the created profile
    """
    user = await UserService.register_user(db, user_data)
    return {**UserService.create_token(user), "user": user}


@router.post("/login", response_model=schemas.TokenResponse)
async def login(
    login_data: schemas.UserLoginRequest,
    db: AsyncSession = Depends(get_db)
):
    """
    Login with email and password.

    Unknown email and wrong password produce the same 401.
    """
    user = await UserService.authenticate_user(db, login_data.email, login_data.password)
    return UserService.create_token(user)


@router.get("/me", response_model=schemas.UserProfileResponse)
async def get_me(current_user: User = Depends(get_current_user)):
    """Get the caller's profile"""
    return current_user


@router.post("/logout", status_code=status.HTTP_200_OK)
async def logout(
    principal: Principal = Depends(get_current_principal),
    token: str = Depends(get_bearer_token),
    redis: aioredis.Redis = Depends(get_redis)
):
    """Revoke the presented token"""
    await UserService.logout_user(redis, token)
    return {"message": "Successfully logged out"}


@users_router.get("/balance", response_model=schemas.BalanceResponse)
async def get_balance(
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal)
):
    """Balance derived from the caller's ledger"""
    service = LedgerService(db)
    return {"balance": await service.compute_balance(principal.id)}
