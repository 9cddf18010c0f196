"""Async SQLAlchemy engines and sessions for the ledger store.

Engines are cached per URL so the API process, the daily script and tests that point at the
same database share one connection pool.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import MetaData
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from .config import ServiceSettings

SQLITE_BUSY_TIMEOUT_SECONDS = 30

_ENGINES: dict[str, AsyncEngine] = {}
_SESSION_FACTORIES: dict[str, async_sessionmaker[AsyncSession]] = {}


def _engine_options(database_url: str) -> dict[str, Any]:
    if make_url(database_url).get_backend_name() == "sqlite":
        return {"connect_args": {"timeout": SQLITE_BUSY_TIMEOUT_SECONDS}}
    return {"pool_pre_ping": True}


def create_engine(database_url: str, **kwargs: Any) -> AsyncEngine:
    """Return the cached AsyncEngine for ``database_url``, creating it on first use."""

    engine = _ENGINES.get(database_url)
    if engine is None:
        options = {**_engine_options(database_url), **kwargs}
        engine = _ENGINES[database_url] = create_async_engine(database_url, **options)
    return engine


def get_session_factory(database_url: str) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the cached engine; objects stay readable after commit."""

    factory = _SESSION_FACTORIES.get(database_url)
    if factory is None:
        factory = _SESSION_FACTORIES[database_url] = async_sessionmaker(
            create_engine(database_url), expire_on_commit=False
        )
    return factory


@asynccontextmanager
async def lifespan_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncIterator[AsyncSession]:
    """One unit of work: commit when the block exits cleanly, roll back if it raises."""

    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def resolve_database_url(settings: ServiceSettings, fallback: str) -> str:
    return settings.database_url or fallback


async def create_schema(database_url: str, metadata: MetaData) -> None:
    """Create any missing tables for ``metadata``; existing tables are left untouched."""

    async with create_engine(database_url).begin() as conn:
        await conn.run_sync(metadata.create_all)


async def dispose_engines() -> None:
    """Close every cached pool and forget the engines (shutdown and tests)."""

    engines = list(_ENGINES.values())
    _ENGINES.clear()
    _SESSION_FACTORIES.clear()
    for engine in engines:
        await engine.dispose()
