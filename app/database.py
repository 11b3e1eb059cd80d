"""
Database engine, session factory and schema bootstrap.

``AsyncSessionLocal`` is the process-wide session factory.  Request handlers
get a session through ``get_db``; background pipeline runs and mastery
upserts open their own sessions from an injected factory instead.
"""
from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool
from typing import AsyncGenerator
import logging

from app.config import settings

logger = logging.getLogger(__name__)


def _engine_options(url: str) -> dict:
    options = {"echo": False, "poolclass": NullPool}
    # pre-ping only matters for server databases
    if not make_url(url).get_backend_name().startswith("sqlite"):
        options["pool_pre_ping"] = True
    return options


engine = create_async_engine(settings.DATABASE_URL, **_engine_options(settings.DATABASE_URL))

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)

Base = declarative_base()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Request-scoped session: committed when the handler returns, rolled back
    when it raises.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception as exc:
            await session.rollback()
            logger.error("Database session rolled back: %s", exc)
            raise


async def ping(session: AsyncSession) -> bool:
    """True when the database answers a trivial query."""
    try:
        await session.execute(text("SELECT 1"))
        return True
    except Exception as exc:
        logger.error("Database ping failed: %s", exc)
        return False


async def init_db() -> None:
    """Create any missing tables (Alembic revisions mirror this schema)."""
    from app.models import database_models  # noqa: F401  registers the models

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables created/verified")


async def close_db() -> None:
    await engine.dispose()
    logger.info("Database connections closed")
