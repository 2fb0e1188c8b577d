"""
Operator commands.

    lending create-admin "Jane Admin" jane@example.com s3cretpw
    lending init-db
    lending serve --port 5001
"""
import asyncio

import click

from app.core.config import settings
from app.core.database import AsyncSessionLocal, Base, async_engine
from app.core.exceptions import ValidationError
from app.core.logging_config import setup_logging
from app.modules.loans.models import Loan  # noqa: F401  (register mappers)
from app.modules.transactions.models import Transaction  # noqa: F401
from app.modules.users.models import UserRole
from app.modules.users.services import UserService


async def _create_admin(full_name: str, email: str, password: str):
    try:
        async with AsyncSessionLocal() as session:
            return await UserService.create_user(
                session, full_name, email, password, role=UserRole.ADMIN
            )
    finally:
        await async_engine.dispose()


async def _init_db():
    async with async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    await async_engine.dispose()


@click.group()
def cli():
    """Micro-lending backend management."""
    setup_logging()


@cli.command("create-admin")
@click.argument("full_name")
@click.argument("email")
@click.argument("password")
def create_admin(full_name, email, password):
    """Create an administrator account."""
    try:
        user = asyncio.run(_create_admin(full_name, email, password))
    except ValidationError as e:
        raise click.ClickException(e.message)
    click.echo(f"Admin {user.email} created with id {user.id}.")


@cli.command("init-db")
def init_db():
    """Create missing tables (development only; use Alembic otherwise)."""
    asyncio.run(_init_db())
    click.echo("Tables created.")


@cli.command("serve")
@click.option("--host", default="0.0.0.0", show_default=True)
@click.option("--port", default=5001, show_default=True, type=int)
@click.option("--reload", is_flag=True, default=False)
def serve(host, port, reload):
    """Run the API with uvicorn."""
    import uvicorn

    uvicorn.run("main:app", host=host, port=port, reload=reload, log_level=settings.LOG_LEVEL.lower())


if __name__ == "__main__":
    cli()
