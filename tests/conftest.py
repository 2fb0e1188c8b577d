"""
Test configuration and fixtures for the lending backend tests.
"""
import os

# Settings are read once at import; keep hashing cheap and the store local
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("ENVIRONMENT", "test")

import pytest
from decimal import Decimal
from typing import AsyncGenerator

import fakeredis
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool
from httpx import AsyncClient, ASGITransport

from app.core.database import Base, get_db, get_redis
from app.core.security import create_access_token
from app.modules.users.models import UserRole
from app.modules.users.services import UserService
from main import app


# ============================================================
# Database Fixtures
# ============================================================

# Use SQLite for testing (in-memory)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture
async def test_engine():
    """Create test database engine"""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
async def db_session(test_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for each test"""
    async_session = async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False
    )

    async with async_session() as session:
        yield session
        await session.rollback()


@pytest.fixture
async def redis_client():
    """In-process Redis standing in for the token blacklist"""
    redis = fakeredis.FakeAsyncRedis(decode_responses=True)
    yield redis
    await redis.aclose()


@pytest.fixture
async def client(db_session, redis_client) -> AsyncGenerator[AsyncClient, None]:
    """Create test client with database and redis overrides"""

    async def override_get_db():
        yield db_session

    async def override_get_redis():
        return redis_client

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = override_get_redis

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ============================================================
# User Fixtures
# ============================================================

@pytest.fixture
async def borrower(db_session):
    """Create a borrower"""
    return await UserService.create_user(
        db_session, "Juan Dela Cruz", "juan@example.com", "Borrower123!"
    )


@pytest.fixture
async def other_borrower(db_session):
    """Create a second borrower"""
    return await UserService.create_user(
        db_session, "Maria Santos", "maria@example.com", "Borrower456!"
    )


@pytest.fixture
async def admin_user(db_session):
    """Create an administrator"""
    return await UserService.create_user(
        db_session, "Lending Admin", "admin@example.com", "AdminPass123!", role=UserRole.ADMIN
    )


def _headers(user_id: int, role: UserRole) -> dict:
    token = create_access_token(user_id, role)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
async def borrower_headers(borrower):
    """Generate auth headers for the borrower"""
    return _headers(borrower.id, UserRole.BORROWER)


@pytest.fixture
async def other_borrower_headers(other_borrower):
    return _headers(other_borrower.id, UserRole.BORROWER)


@pytest.fixture
async def admin_headers(admin_user):
    """Generate auth headers for the administrator"""
    return _headers(admin_user.id, UserRole.ADMIN)


# ============================================================
# Loan Fixtures
# ============================================================

@pytest.fixture
async def pending_loan(db_session, borrower):
    """A freshly submitted loan application"""
    from app.modules.loans.services import LoanService

    service = LoanService(db_session)
    return await service.apply_loan(borrower.id, Decimal("50000"), "Sari-sari store inventory", 12)


@pytest.fixture
async def approved_loan(db_session, pending_loan):
    """A loan approved and waiting for disbursement"""
    from app.modules.loans.services import LoanService

    service = LoanService(db_session)
    return await service.approve_loan(pending_loan.id)
