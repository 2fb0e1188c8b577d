from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from redis import asyncio as aioredis
from typing import AsyncGenerator
import logging

from app.core.config import settings
from app.core.exceptions import StoreUnavailable, STORE_ERRORS

logger = logging.getLogger(__name__)


def engine_options(database_url: str) -> dict:
    """Pool and timeout options for the given backend"""
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite":
        return {"connect_args": {"timeout": settings.DB_CONNECT_TIMEOUT}}
    return {
        "pool_pre_ping": True,
        "pool_size": settings.DB_POOL_SIZE,
        "max_overflow": settings.DB_MAX_OVERFLOW,
        "pool_timeout": settings.DB_POOL_TIMEOUT,
        "connect_args": {
            "timeout": settings.DB_CONNECT_TIMEOUT,
            "command_timeout": settings.DB_COMMAND_TIMEOUT,
        },
    }


# Async engine shared by every request
async_engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,
    **engine_options(settings.DATABASE_URL)
)

# Async Session Factory
AsyncSessionLocal = async_sessionmaker(
    async_engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False
)

Base = declarative_base()

# Redis connection pool
redis_pool = None


async def get_redis() -> aioredis.Redis:
    """Get Redis connection"""
    global redis_pool
    if redis_pool is None:
        redis_pool = aioredis.from_url(
            settings.REDIS_URL,
            encoding="utf-8",
            decode_responses=True,
            max_connections=10,
            socket_timeout=settings.DB_COMMAND_TIMEOUT,
            socket_connect_timeout=settings.DB_CONNECT_TIMEOUT
        )
    return redis_pool


async def close_redis():
    """Close Redis connection"""
    global redis_pool
    if redis_pool:
        await redis_pool.aclose()
        redis_pool = None


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Get async database session"""
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


class UnitOfWork:
    """
    Transactional boundary around a session.

    Everything flushed inside the block commits together on a clean exit and
    is rolled back together on any exception. Store failures are re-raised
    as StoreUnavailable.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def __aenter__(self) -> "UnitOfWork":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        if exc_type is not None:
            await self.session.rollback()
            if isinstance(exc, STORE_ERRORS):
                raise StoreUnavailable() from exc
            return False

        try:
            await self.session.commit()
        except STORE_ERRORS as e:
            await self.session.rollback()
            raise StoreUnavailable() from e
        except Exception:
            await self.session.rollback()
            raise
        return False
