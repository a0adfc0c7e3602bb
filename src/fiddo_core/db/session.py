"""Engine and session factory wiring."""

from __future__ import annotations

from typing import Awaitable, Callable

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from fiddo_core.core.settings import settings

SessionFactory = Callable[[], AsyncSession] | Callable[[], Awaitable[AsyncSession]]


def build_engine(database_url: str, *, echo: bool = False) -> AsyncEngine:
    """Create an async engine, enabling SQLite foreign keys when relevant."""

    engine = create_async_engine(database_url, echo=echo, future=True)
    if engine.dialect.name == "sqlite":
        @event.listens_for(engine.sync_engine, "connect")
        def _enable_foreign_keys(dbapi_connection, _record) -> None:  # pragma: no cover - driver glue
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return engine


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


engine = build_engine(settings.database_url, echo=settings.database_echo)
async_session = build_session_factory(engine)


async def open_session(session_factory: SessionFactory) -> AsyncSession:
    """Resolve sync or async session factories into a session."""

    maybe_session = session_factory()
    if isinstance(maybe_session, AsyncSession):
        return maybe_session
    return await maybe_session


__all__ = [
    "SessionFactory",
    "async_session",
    "build_engine",
    "build_session_factory",
    "engine",
    "open_session",
]
