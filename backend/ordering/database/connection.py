"""
Database connection management with SQLAlchemy async engine.

Provides the lazily created async engine and session factory, the scoped
session used by every service operation, and the single place where storage
errors are classified as connectivity failures. A connectivity failure
surfaces as ``StorageUnavailableError`` so checkout can switch to degraded
mode without inspecting driver exceptions itself.
"""

import asyncio
import errno
import socket
from contextlib import asynccontextmanager
from typing import AsyncIterator, Iterator, Optional

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from ordering.core.config import get_settings
from ordering.core.errors import OrderingError
from ordering.core.logging import get_logger

logger = get_logger(__name__)
settings = get_settings()

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None

_CONNECTIVITY_ERRNOS = frozenset(
    {
        errno.ECONNREFUSED,
        errno.ECONNRESET,
        errno.EHOSTUNREACH,
        errno.ENETUNREACH,
    }
)

_CONNECTIVITY_SIGNATURES = (
    "connection refused",
    "could not connect",
    "could not translate host name",
    "name or service not known",
    "nodename nor servname",
    "temporary failure in name resolution",
    "getaddrinfo failed",
    "no route to host",
    "econnrefused",
    "enotfound",
    "connection was closed",
)


class StorageUnavailableError(OrderingError):
    """Raised when the relational store cannot be reached."""

    code = "STORAGE_UNAVAILABLE"
    status_code = 503


def _iter_error_chain(exc: BaseException) -> Iterator[BaseException]:
    seen: set[int] = set()
    current: Optional[BaseException] = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        if isinstance(current, DBAPIError) and current.orig is not None:
            yield current.orig
        current = current.__cause__ or current.__context__


def is_connectivity_error(exc: BaseException) -> bool:
    """
    Decide whether an exception means the database is unreachable.

    Domain errors never count. Everything else is inspected along its cause
    chain for refused connections, unresolvable hosts, connect timeouts and
    invalidated connections.

    Args:
        exc: Exception raised by a storage operation

    Returns:
        True if the failure is a connectivity failure
    """
    if isinstance(exc, OrderingError):
        return False

    for error in _iter_error_chain(exc):
        if isinstance(error, (ConnectionRefusedError, socket.gaierror)):
            return True
        if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
            return True
        if isinstance(error, OSError) and error.errno in _CONNECTIVITY_ERRNOS:
            return True
        if isinstance(error, DBAPIError) and error.connection_invalidated:
            return True

        message = str(error).lower()
        if any(signature in message for signature in _CONNECTIVITY_SIGNATURES):
            return True

    return False


def _convert_database_url_to_async(url: str) -> str:
    """Use the asyncpg driver for plain PostgreSQL URLs."""
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


def create_engine() -> AsyncEngine:
    """
    Create async SQLAlchemy engine with connection pooling.

    Returns:
        Configured async SQLAlchemy engine
    """
    database_url = _convert_database_url_to_async(settings.database_url)

    pool_kwargs: dict = {}
    if settings.environment == "test":
        pool_kwargs["poolclass"] = NullPool
    else:
        pool_kwargs.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_recycle=3600,
        )

    engine = create_async_engine(
        database_url,
        echo=settings.debug,
        pool_pre_ping=True,
        connect_args={
            "server_settings": {"application_name": settings.app_name},
            "command_timeout": 60,
            "timeout": settings.db_connect_timeout_seconds,
        },
        **pool_kwargs,
    )

    logger.info(
        "Database engine created",
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        environment=settings.environment,
    )

    return engine


def get_engine() -> AsyncEngine:
    """
    Get or create the global async database engine.

    Raises:
        RuntimeError: If engine initialization fails
    """
    global _engine

    if _engine is None:
        try:
            _engine = create_engine()
        except Exception as e:
            logger.error(
                "Failed to create database engine",
                error=str(e),
                error_type=type(e).__name__,
            )
            raise RuntimeError(f"Database engine initialization failed: {e}") from e

    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """
    Get or create the global session factory.

    Raises:
        RuntimeError: If session factory initialization fails
    """
    global _session_factory

    if _session_factory is None:
        engine = get_engine()
        _session_factory = async_sessionmaker(
            engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
        logger.info("Database session factory created")

    return _session_factory


@asynccontextmanager
async def session_scope() -> AsyncIterator[AsyncSession]:
    """
    Provide a transactional session scope.

    Commits when the block exits normally, rolls back on any exception and
    always closes the session. Failures that mean the database cannot be
    reached are re-raised as ``StorageUnavailableError``.

    Yields:
        Async database session

    Raises:
        StorageUnavailableError: If the database is unreachable
    """
    try:
        session_factory = get_session_factory()
    except RuntimeError as e:
        raise StorageUnavailableError(
            "Database is not available",
            error=str(e),
        ) from e

    session = session_factory()

    try:
        yield session
        await session.commit()
    except Exception as e:
        await _rollback_quietly(session)
        if is_connectivity_error(e):
            logger.warning(
                "Database unreachable",
                error=str(e),
                error_type=type(e).__name__,
            )
            raise StorageUnavailableError(
                "Database is unreachable",
                error_type=type(e).__name__,
            ) from e
        raise
    finally:
        await session.close()


async def _rollback_quietly(session: AsyncSession) -> None:
    # A dead connection cannot roll back; the original error still propagates.
    try:
        await session.rollback()
    except (SQLAlchemyError, OSError) as e:
        logger.debug("Rollback failed", error=str(e), error_type=type(e).__name__)


async def check_database_health(max_retries: int = 1, retry_delay: float = 0.5) -> bool:
    """
    Check database connectivity with retry logic.

    Args:
        max_retries: Maximum number of connection attempts
        retry_delay: Base delay between retries in seconds

    Returns:
        True if database is healthy, False otherwise
    """
    for attempt in range(max_retries):
        try:
            engine = get_engine()
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            logger.debug("Database health check passed", attempt=attempt + 1)
            return True
        except (OperationalError, InterfaceError, DBAPIError, OSError) as e:
            logger.warning(
                "Database health check failed",
                attempt=attempt + 1,
                max_retries=max_retries,
                error=str(e),
                error_type=type(e).__name__,
            )
        except RuntimeError as e:
            logger.error("Database engine unavailable", error=str(e))
            return False

        if attempt < max_retries - 1:
            await asyncio.sleep(retry_delay * (2**attempt))

    return False


async def close_database_connections() -> None:
    """
    Dispose of the engine and forget the session factory.

    Called during application shutdown.
    """
    global _engine, _session_factory

    if _engine is not None:
        try:
            await _engine.dispose()
            logger.info("Database connections closed and engine disposed")
        finally:
            _engine = None
            _session_factory = None
