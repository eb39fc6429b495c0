from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from sqlalchemy.engine import URL, make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from pricecompare.core.config import get_settings

_TRUTHY = {"1", "true", "yes", "on"}

# Postgres pool sizing; SQLite (tests) keeps SQLAlchemy's defaults
POSTGRES_POOL = {
    "pool_pre_ping": True,
    "pool_size": 10,
    "max_overflow": 10,
    "pool_timeout": 30,
    "pool_recycle": 1800,
}


def _is_truthy(value: Optional[str]) -> bool:
    return value is not None and value.strip().lower() in _TRUTHY


def _adapt_url(raw_url: str) -> tuple[URL, dict[str, Any], dict[str, Any]]:
    """
    Return (async_url, connect_args, engine_kwargs).
    PostgreSQL is switched to asyncpg; any other backend is used as given.
    """
    url = make_url(raw_url)
    if url.get_backend_name() not in {"postgresql", "postgres"}:
        return url, {}, {}

    query = dict(url.query)
    sslmode = query.pop("sslmode", None)
    pgbouncer = query.pop("pgbouncer", None)

    connect_args: dict[str, Any] = {}
    # asyncpg takes ssl=True instead of libpq's sslmode
    if sslmode and sslmode.lower() in {"require", "verify-ca", "verify-full"}:
        connect_args["ssl"] = True
    # PgBouncer transaction pooling: no prepared statements
    if _is_truthy(pgbouncer):
        connect_args["statement_cache_size"] = 0

    return url.set(drivername="postgresql+asyncpg", query=query), connect_args, dict(POSTGRES_POOL)


_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def get_engine() -> AsyncEngine:
    """The process-wide engine, created on first use."""
    global _engine
    if _engine is None:
        url, connect_args, engine_kwargs = _adapt_url(get_settings().database_url)
        _engine = create_async_engine(url, echo=False, connect_args=connect_args, **engine_kwargs)
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(bind=get_engine(), expire_on_commit=False, autoflush=False)
    return _session_factory


@asynccontextmanager
async def get_async_session() -> AsyncIterator[AsyncSession]:
    """Plain session; the caller manages commit and rollback."""
    async with get_session_factory()() as session:
        yield session


@asynccontextmanager
async def async_transaction() -> AsyncIterator[AsyncSession]:
    """Session that commits on success and rolls back on error."""
    async with get_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def dispose_engines() -> None:
    """Close the connection pool on shutdown, if one was ever opened."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None


__all__ = [
    "get_engine",
    "get_session_factory",
    "get_async_session",
    "async_transaction",
    "dispose_engines",
]
