from collections.abc import AsyncGenerator
from typing import Any, Optional

from crm_core.config import crm_settings
from crm_core.logging import get_logger
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

logger = get_logger(__name__)

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def init_db(
    database_url: str | None = None,
    *,
    echo: bool | None = None,
    **engine_kwargs: Any,
) -> AsyncEngine:
    """
    Initialize the asynchronous SQLAlchemy engine and session factory.

    Args:
        database_url: The connection URL (e.g., 'sqlite+aiosqlite:///crm.sqlite3').
            Defaults to ``DATABASE_URL`` from the settings.
        echo: If True, SQLAlchemy will log all emitted SQL. Defaults to ``DB_ECHO``.
        **engine_kwargs: Additional keyword arguments passed to `create_async_engine`.

    Example:
        >>> init_db("sqlite+aiosqlite:///crm.sqlite3")
    """
    global _engine, _session_factory

    database_url = database_url or crm_settings.DATABASE_URL
    if not database_url:
        msg = "No database URL given and DATABASE_URL is not configured."
        raise RuntimeError(msg)

    # Normalize async drivers
    if database_url.startswith("postgresql://"):
        database_url = database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    elif database_url.startswith("mysql://"):
        database_url = database_url.replace("mysql://", "mysql+aiomysql://", 1)

    is_sqlite = database_url.startswith("sqlite")

    options: dict[str, Any] = {
        "echo": crm_settings.DB_ECHO if echo is None else echo,
        **engine_kwargs,
    }

    if is_sqlite:
        # SQLite does not support pooling options
        options.pop("pool_size", None)
        options.pop("max_overflow", None)
        options.pop("pool_pre_ping", None)
        options.setdefault("connect_args", {"check_same_thread": False})
    else:
        options.setdefault("pool_size", crm_settings.DB_POOL_SIZE)
        options.setdefault("max_overflow", crm_settings.DB_MAX_OVERFLOW)
        options.setdefault("pool_pre_ping", True)

    _engine = create_async_engine(database_url, **options)
    logger.info("Database engine initialized for %s", _engine.url.render_as_string())

    _session_factory = async_sessionmaker(
        bind=_engine,
        expire_on_commit=False,
        autoflush=False,
    )
    return _engine


async def close_db() -> None:
    """
    Dispose of the database engine and clean up resources.

    Example:
        >>> await close_db()
    """
    global _engine, _session_factory

    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None


def _require_session_factory() -> async_sessionmaker[AsyncSession]:
    if _session_factory is None:
        msg = "Database not initialized. Call init_db() first."
        raise RuntimeError(msg)
    return _session_factory


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Async generator that yields a database session.

    Example:
        >>> async for db in get_db():
        ...     em = EntityManager(db, metadata)
    """
    factory = _require_session_factory()
    async with factory() as session:
        yield session
