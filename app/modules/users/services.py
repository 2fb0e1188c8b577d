from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from redis import asyncio as aioredis
from typing import Optional
import logging

from app.core.config import settings
from app.core.database import UnitOfWork
from app.core.exceptions import InvalidCredentials, ValidationError
from app.core.security import (
    create_access_token,
    get_password_hash,
    verify_password
)
from app.modules.users.models import User, UserRole
from app.modules.users import schemas

logger = logging.getLogger(__name__)

# Hash compared against when the email is unknown, so both failure paths cost the same
_DUMMY_HASH = get_password_hash("not-a-real-password")


class UserService:
    """Service layer for registration, authentication and profiles"""

    @staticmethod
    def _normalize_email(email: str) -> str:
        return email.strip().lower()

    @staticmethod
    async def get_by_email(db: AsyncSession, email: str) -> Optional[User]:
        result = await db.execute(
            select(User).where(User.email == UserService._normalize_email(email))
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def get_by_id_or_none(db: AsyncSession, user_id: int) -> Optional[User]:
        result = await db.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    @staticmethod
    async def create_user(
        db: AsyncSession,
        full_name: str,
        email: str,
        password: str,
        role: UserRole = UserRole.BORROWER
    ) -> User:
        """Insert a user; the email must not be registered yet"""
        email = UserService._normalize_email(email)
        if await UserService.get_by_email(db, email):
            raise ValidationError("Email already exists.")

        user = User(
            full_name=full_name.strip(),
            email=email,
            password_hash=get_password_hash(password),
            role=UserRole(role).value
        )

        try:
            async with UnitOfWork(db):
                db.add(user)
        except IntegrityError:
            # Lost a race against a concurrent registration with the same email
            raise ValidationError("Email already exists.")

        await db.refresh(user)
        logger.info(f"Registered user {user.id} with role {user.role}")
        return user

    @staticmethod
    async def register_user(db: AsyncSession, user_data: schemas.UserRegistrationRequest) -> User:
        """Register a new borrower"""
        return await UserService.create_user(
            db,
            full_name=user_data.full_name,
            email=user_data.email,
            password=user_data.password
        )

    @staticmethod
    async def authenticate_user(db: AsyncSession, email: str, password: str) -> User:
        """Verify credentials; unknown email and wrong password fail identically"""
        user = await UserService.get_by_email(db, email)

        if user is None:
            verify_password(password, _DUMMY_HASH)
            raise InvalidCredentials()

        if not verify_password(password, user.password_hash):
            raise InvalidCredentials()

        if user.user_role is None:
            logger.warning(f"User {user.id} has unrecognized role {user.role!r}")
            raise InvalidCredentials()

        return user

    @staticmethod
    def create_token(user: User) -> dict:
        """Issue an access token for a user"""
        return {
            "token": create_access_token(user.id, user.user_role),
            "token_type": "bearer",
            "expires_in": settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60
        }

    @staticmethod
    async def logout_user(redis: aioredis.Redis, token: str):
        """Logout user by blacklisting token"""
        await redis.setex(
            f"blacklist:{token}",
            settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
            "1"
        )

    @staticmethod
    async def is_token_revoked(redis: aioredis.Redis, token: str) -> bool:
        return bool(await redis.get(f"blacklist:{token}"))
