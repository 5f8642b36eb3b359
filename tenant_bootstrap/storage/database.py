# Copyright (c) 2026 TenantBootstrap Contributors. All Rights Reserved.

"""
Database Connection Management — async engine and sessions for the
profile/tenant store.

The service never creates tables on its own: a missing table is reported at
startup and then surfaces per call as SCHEMA_ERROR. Tables are created with
`python -m tenant_bootstrap.storage.init_db`.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from tenant_bootstrap.core.config import settings

logger = logging.getLogger("bootstrap.database")


class Base(DeclarativeBase):
    pass


_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        kwargs = {"pool_pre_ping": True}
        if settings.DATABASE_URL.startswith("postgresql"):
            kwargs.update(pool_size=settings.DB_POOL_SIZE, max_overflow=settings.DB_MAX_OVERFLOW)
        _engine = create_async_engine(settings.DATABASE_URL, **kwargs)
    return _engine


def make_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Sessions as SqlIdentityStore expects them: no autoflush, no expiry on commit."""
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _session_factory
    if _session_factory is None:
        _session_factory = make_session_factory(get_engine())
    return _session_factory


async def missing_tables(engine: AsyncEngine) -> List[str]:
    """ORM tables that do not exist in the connected database."""
    async with engine.connect() as conn:
        existing = await conn.run_sync(lambda sync_conn: set(inspect(sync_conn).get_table_names()))
    return sorted(set(Base.metadata.tables) - existing)


async def init_db() -> None:
    """Connect once on startup and log any missing tables."""
    # Register every model on Base.metadata
    import tenant_bootstrap.storage.models  # noqa: F401

    missing = await missing_tables(get_engine())
    if missing:
        logger.warning("Store is missing tables %s; affected calls will report SCHEMA_ERROR",
                       ", ".join(missing))
    else:
        logger.info("Store schema verified (%d tables)", len(Base.metadata.tables))


async def close_db() -> None:
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None


async def create_all_tables() -> None:
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_all_tables() -> None:
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
