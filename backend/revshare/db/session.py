from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Any

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from revshare.core.config import settings

# Ledger steps and audit entries commit on separate sessions; SQLite needs a
# busy timeout so the second writer waits instead of failing with "locked".
SQLITE_BUSY_TIMEOUT_SECONDS = 15


def engine_options(url: str) -> dict[str, Any]:
    if make_url(url).get_backend_name() == "sqlite":
        return {"connect_args": {"timeout": SQLITE_BUSY_TIMEOUT_SECONDS}}
    return {
        "pool_pre_ping": True,  # detects dead connections before using them
        "pool_recycle": 300,
    }


# asyncpg rejects sslmode/channel_binding query params; use the cleaned URL.
DATABASE_URL_ASYNC = settings.DATABASE_URL_ASYNC_CLEAN

engine: AsyncEngine = create_async_engine(
    DATABASE_URL_ASYNC,
    echo=settings.LOG_LEVEL.upper() == "DEBUG",
    **engine_options(DATABASE_URL_ASYNC),
)

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    One AsyncSession per request. Work left uncommitted by a failed
    request is rolled back before the session closes.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
