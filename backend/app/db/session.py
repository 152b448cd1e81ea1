"""
Database session management.
Handles SQLite connection and session lifecycle with async support.

Transactions:
- On SQLite every transaction opens with BEGIN IMMEDIATE: it takes the database
  write lock at its first statement, so two read-then-write sequences
  (sum-then-create, check-then-deactivate) never interleave. The second one waits
  for the first to commit (sqlite busy timeout) and then reads the committed state.
- Other backends get settings.DB_ISOLATION_LEVEL.
- unit_of_work() is the only place that commits. Services flush, never commit.
"""
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator

from sqlalchemy import event, Engine, create_engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, AsyncEngine
from sqlalchemy.pool import NullPool

from backend.app.config import get_settings
from backend.app.logging_config import get_logger
from backend.app.services.errors import CoreError, ConflictError, UnexpectedError

logger = get_logger(__name__)


def _is_sqlite(db_url: str) -> bool:
    return db_url.startswith("sqlite")


def enable_immediate_transactions(sync_engine: Engine) -> None:
    """
    Make SQLite transactions start with BEGIN IMMEDIATE.

    The pysqlite driver (and aiosqlite on top of it) defers BEGIN until the first
    write, so a SELECT-then-INSERT sequence reads outside any lock. The driver's own
    transaction handling is switched off and SQLAlchemy emits the BEGIN itself.

    For an AsyncEngine pass engine.sync_engine.
    """

    @event.listens_for(sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def _ensure_sqlite_directory(db_url: str) -> None:
    if db_url.startswith("sqlite:///"):
        db_path = db_url.replace("sqlite:///", "")
        if not db_path.startswith("/"):  # relative path
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)


def get_sync_engine(db_url: str | None = None) -> Engine:
    """
    Create a SYNC database engine.

    For blocking scripts and checks outside the event loop.

    Args:
        db_url: Database URL, defaults to settings.DATABASE_URL

    Returns:
        Engine: SQLAlchemy sync engine
    """
    settings = get_settings()
    db_url = db_url or settings.DATABASE_URL
    _ensure_sqlite_directory(db_url)

    if not _is_sqlite(db_url):
        return create_engine(db_url, echo=False, isolation_level=settings.DB_ISOLATION_LEVEL)

    engine = create_engine(db_url, echo=False, poolclass=NullPool)
    enable_immediate_transactions(engine)
    return engine


def get_async_engine(db_url: str | None = None) -> AsyncEngine:
    """
    Create the async database engine.

    sqlite:/// URLs are converted to sqlite+aiosqlite:///.

    Args:
        db_url: Database URL, defaults to settings.DATABASE_URL

    Returns:
        AsyncEngine: SQLAlchemy async engine
    """
    settings = get_settings()
    db_url = db_url or settings.DATABASE_URL
    _ensure_sqlite_directory(db_url)

    if not _is_sqlite(db_url):
        return create_async_engine(db_url, echo=False, isolation_level=settings.DB_ISOLATION_LEVEL)

    async_db_url = db_url.replace("sqlite:///", "sqlite+aiosqlite:///")
    engine = create_async_engine(
        async_db_url,
        echo=False,
        # NullPool for SQLite - each connection is independent
        poolclass=NullPool,
        )
    enable_immediate_transactions(engine.sync_engine)
    return engine


_async_engine: AsyncEngine | None = None


def _get_app_engine() -> AsyncEngine:
    global _async_engine
    if _async_engine is None:
        _async_engine = get_async_engine()
    return _async_engine


async def get_session_generator() -> AsyncGenerator[AsyncSession, None]:
    """
    Get an async database session for dependency injection.

    Usage in FastAPI:
        @router.get("/")
        async def endpoint(session: AsyncSession = Depends(get_session_generator)):
            ...

    Yields:
        AsyncSession: SQLAlchemy async session (expire_on_commit=False)
    """
    async with AsyncSession(_get_app_engine(), expire_on_commit=False) as session:
        yield session


@asynccontextmanager
async def unit_of_work(session: AsyncSession) -> AsyncGenerator[AsyncSession, None]:
    """
    Run a block of service calls as one transaction.

    - Commits when the block completes
    - Rolls back on any exception, including asyncio.CancelledError, so a cancelled
      request leaves no partial writes
    - CoreError propagates unchanged
    - IntegrityError (a concurrent writer won a unique constraint) becomes ConflictError
    - Any other exception is logged with full context and becomes UnexpectedError

    Usage:
        async with unit_of_work(session):
            result = await AllocationLedger(session, config).create(item)
    """
    try:
        yield session
        await session.commit()
    except CoreError:
        await session.rollback()
        raise
    except IntegrityError as e:
        await session.rollback()
        logger.warning("Concurrent write rejected by a database constraint", error=str(e.orig))
        raise ConflictError("Concurrent modification, retry the operation") from e
    except Exception as e:
        await session.rollback()
        logger.error("Unexpected error inside unit of work", error=str(e), exc_info=True)
        raise UnexpectedError() from e
    except BaseException:
        # Cancellation and interpreter exit: undo and let it through untouched
        await session.rollback()
        raise
