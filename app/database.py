"""
Async SQLAlchemy engine, session factory and request-scoped sessions.

Every request gets one session; whatever a handler writes is committed
when it returns and rolled back when it raises, so a generation run is
all-or-nothing at the request level.
"""
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool
from typing import AsyncGenerator
import logging

from app.config import settings

logger = logging.getLogger(__name__)

engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DATABASE_ECHO,
    pool_pre_ping=True,
    poolclass=NullPool,
)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)

Base = declarative_base()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency yielding the request's session.

    Commits after the handler returns, rolls back if it raises.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception as e:
            await session.rollback()
            logger.error("Request transaction rolled back: %s", e)
            raise


async def ping_db(session: AsyncSession) -> bool:
    """Return ``True`` when ``SELECT 1`` succeeds on *session*."""
    try:
        await session.execute(text("SELECT 1"))
        return True
    except SQLAlchemyError as e:
        logger.error("Database ping failed: %s", e)
        return False


async def init_db() -> None:
    """
    Ensure the pgvector extension and all workstream tables exist.

    Production schemas are managed by the alembic revisions; this only
    covers fresh local databases.
    """
    async with engine.begin() as conn:
        # Register models on Base.metadata
        from app.models import database_models  # noqa: F401

        await conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
        await conn.run_sync(Base.metadata.create_all)
    logger.info(
        "Database ready (pgvector enabled, %d tables verified)",
        len(Base.metadata.tables),
    )


async def close_db() -> None:
    """Dispose of the engine's connections."""
    await engine.dispose()
    logger.info("Database connections closed")
