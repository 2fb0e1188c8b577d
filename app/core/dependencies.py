from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional
from redis import asyncio as aioredis

from app.core.database import get_db, get_redis
from app.core.exceptions import Unauthenticated
from app.core.security import Principal, require_role, verify_token
from app.modules.users.models import User, UserRole
from app.modules.users.services import UserService

bearer_scheme = HTTPBearer(auto_error=False)


async def get_bearer_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)
) -> str:
    """Extract the raw token from an ``Authorization: Bearer`` header"""
    if credentials is None or not credentials.credentials:
        raise Unauthenticated("No token provided")
    return credentials.credentials


async def get_current_principal(
    token: str = Depends(get_bearer_token),
    redis: aioredis.Redis = Depends(get_redis)
) -> Principal:
    """Get the authenticated caller from the bearer token"""
    principal = verify_token(token)

    # Check if token is blacklisted (logged out)
    if await UserService.is_token_revoked(redis, token):
        raise Unauthenticated("Token has been revoked")

    return principal


async def get_current_user(
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db)
) -> User:
    """Load the caller's user row; a token for a deleted user is not valid"""
    result = await UserService.get_by_id_or_none(db, principal.id)
    if result is None:
        raise Unauthenticated()
    return result


async def require_admin(
    principal: Principal = Depends(get_current_principal)
) -> Principal:
    """Ensure the caller is an administrator"""
    return require_role(principal, UserRole.ADMIN)
