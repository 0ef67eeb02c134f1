"""SQLAlchemy 2.x async database setup.

Engines and session factories are built from settings and owned by the
application (``app.state``); nothing connects at import time.
"""

from __future__ import annotations

from typing import AsyncIterator

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from .config import DatabaseSettings, settings
from .models import Base


def create_engine_from_settings(config: DatabaseSettings | None = None) -> AsyncEngine:
    config = config or settings.db
    return create_async_engine(config.url, echo=config.echo, future=True)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, expire_on_commit=False, class_=AsyncSession)


async def create_all(engine: AsyncEngine) -> None:
    """Create any missing tables."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_session(request: Request) -> AsyncIterator[AsyncSession]:
    """FastAPI-friendly async session dependency.

    Usage:
        async def endpoint(session: AsyncSession = Depends(get_session)):
            ...
    """

    async with request.app.state.session_factory() as session:
        yield session
