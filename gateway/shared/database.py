"""Async SQLAlchemy database engine and session management."""
from __future__ import annotations

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from gateway.shared.config import DATABASE_URL


def build_engine(url: str = DATABASE_URL, **kwargs) -> AsyncEngine:
    """Create an async engine; pool options only apply to server databases."""
    if not url.startswith("sqlite"):
        kwargs.setdefault("pool_size", 10)
        kwargs.setdefault("max_overflow", 20)
        kwargs.setdefault("pool_pre_ping", True)
    return create_async_engine(url, echo=False, **kwargs)


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind, expire_on_commit=False, class_=AsyncSession)


engine = build_engine()

AsyncSessionFactory: async_sessionmaker[AsyncSession] = build_session_factory(engine)


class Base(DeclarativeBase):
    """Base class for all ORM models."""


async def init_db(bind: AsyncEngine | None = None) -> None:
    """Create all tables defined in the ORM models."""
    from gateway.shared import models  # noqa: F401 - register models

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
