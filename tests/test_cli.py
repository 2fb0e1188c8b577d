"""
Tests for the operator CLI
"""
import asyncio
import pytest
from click.testing import CliRunner
from sqlalchemy import select
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker
from sqlalchemy.pool import NullPool

import app.cli as cli_module
from app.modules.users.models import User


@pytest.fixture
def cli_engine(tmp_path, monkeypatch):
    """Point the CLI at a throwaway file database"""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}", poolclass=NullPool)
    monkeypatch.setattr(cli_module, "async_engine", engine)
    monkeypatch.setattr(cli_module, "AsyncSessionLocal", async_sessionmaker(engine, expire_on_commit=False))
    monkeypatch.setattr(cli_module, "setup_logging", lambda: None)
    return engine


def _fetch_user(engine, email):
    async def fetch():
        async with async_sessionmaker(engine)() as session:
            result = await session.execute(select(User).where(User.email == email))
            user = result.scalar_one_or_none()
        await engine.dispose()
        return user

    return asyncio.run(fetch())


class TestCli:

    @pytest.mark.integration
    def test_init_db_then_create_admin(self, cli_engine):
        runner = CliRunner()

        init = runner.invoke(cli_module.cli, ["init-db"])
        assert init.exit_code == 0, init.output
        assert "Tables created." in init.output

        created = runner.invoke(
            cli_module.cli, ["create-admin", "Lending Admin", "Boss@Example.com", "AdminPass123!"]
        )
        assert created.exit_code == 0, created.output
        assert "boss@example.com" in created.output

        user = _fetch_user(cli_engine, "boss@example.com")
        assert user is not None
        assert user.role == "admin"

    @pytest.mark.integration
    def test_create_admin_twice_fails(self, cli_engine):
        runner = CliRunner()
        runner.invoke(cli_module.cli, ["init-db"])
        runner.invoke(cli_module.cli, ["create-admin", "Lending Admin", "boss@example.com", "AdminPass123!"])

        again = runner.invoke(cli_module.cli, ["create-admin", "Other Admin", "boss@example.com", "x1y2z3w4"])

        assert again.exit_code == 1
        assert "Email already exists." in again.output

    @pytest.mark.unit
    def test_serve_runs_uvicorn(self, monkeypatch):
        calls = []
        monkeypatch.setattr(cli_module, "setup_logging", lambda: None)
        monkeypatch.setattr("uvicorn.run", lambda *args, **kwargs: calls.append((args, kwargs)))

        result = CliRunner().invoke(cli_module.cli, ["serve", "--port", "8080"])

        assert result.exit_code == 0, result.output
        args, kwargs = calls[0]
        assert args == ("main:app",)
        assert kwargs["port"] == 8080
        assert kwargs["reload"] is False
