"""
Database session and engine configuration.

This file sets up the async database connection using SQLAlchemy + asyncpg,
plus the transactional scope every /identify call runs in.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy.exc import DBAPIError, IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.core.config import settings
from app.errors import ConflictError, StorageError

logger = logging.getLogger(__name__)

# PostgreSQL SQLSTATEs worth re-running the transaction for
RETRYABLE_SQLSTATES = {
    "40001",  # serialization_failure
    "40P01",  # deadlock_detected
}


# Create the async database engine
engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,  # When DEBUG=True, prints SQL queries to console
    pool_size=settings.DB_POOL_SIZE,
    max_overflow=settings.DB_MAX_OVERFLOW,
    pool_pre_ping=True,
)

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,  # Keeps data accessible after commit
)

# Alias for dependencies
AsyncSessionLocal = async_session_maker


def _sqlstate(exc: DBAPIError) -> str | None:
    orig = exc.orig
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


def translate_db_error(exc: Exception) -> StorageError:
    """Map a database failure onto a retryable or fatal storage error."""
    if isinstance(exc, IntegrityError):
        return ConflictError("Contact was created concurrently", {"reason": "integrity_error"})
    if isinstance(exc, DBAPIError) and _sqlstate(exc) in RETRYABLE_SQLSTATES:
        return ConflictError("Transaction conflict", {"sqlstate": _sqlstate(exc)})
    return StorageError()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Get a database session.

    The session is committed when the request handler returns cleanly and
    rolled back otherwise.
    """
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


@asynccontextmanager
async def transaction_scope(
    session_maker: async_sessionmaker = async_session_maker,
) -> AsyncGenerator[AsyncSession, None]:
    """
    Run the enclosed block in one database transaction.

    All writes commit together or none do. SQLAlchemy errors, including those
    raised by the final COMMIT, surface as StorageError / ConflictError.
    """
    async with session_maker() as session:
        try:
            async with session.begin():
                yield session
        except (SQLAlchemyError, OSError) as exc:
            storage_error = translate_db_error(exc)
            if isinstance(storage_error, ConflictError):
                logger.info("Transaction rolled back on conflict: %s", exc.__class__.__name__)
            else:
                logger.error("Transaction failed: %s", exc)
            raise storage_error from exc
