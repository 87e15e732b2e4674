import os
from typing import AsyncIterator, Optional

from sqlalchemy.ext.asyncio import AsyncSession, AsyncEngine, create_async_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import NullPool, StaticPool


engine: Optional[AsyncEngine] = None
AsyncSessionLocal: Optional[sessionmaker] = None
Base = declarative_base()


def _normalize_url(database_url: str) -> str:
    if database_url.startswith("postgresql://"):
        return database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return database_url


def get_engine() -> AsyncEngine:
    """Return a lazily created SQLAlchemy engine.

    The engine is created on first use from the ``DATABASE_URL`` environment
    variable, so importing this module never opens a connection and tests can
    point it at a throwaway database. ``RuntimeError`` is raised when the
    variable is missing.
    """

    global engine, AsyncSessionLocal

    if engine is None:
        database_url = os.getenv("DATABASE_URL")
        if not database_url:
            raise RuntimeError("DATABASE_URL environment variable is required")
        database_url = _normalize_url(database_url)

        engine_kwargs = {"echo": False}

        if database_url.startswith("sqlite+aiosqlite://"):
            # In-memory SQLite must reuse the same connection to persist schema/data.
            if ":memory:" in database_url:
                engine_kwargs["poolclass"] = StaticPool
            else:
                engine_kwargs["poolclass"] = NullPool
        else:
            engine_kwargs["pool_pre_ping"] = True

        engine = create_async_engine(database_url, **engine_kwargs)
        AsyncSessionLocal = sessionmaker(
            engine, class_=AsyncSession, expire_on_commit=False
        )

    return engine


async def get_session() -> AsyncIterator[AsyncSession]:
    """Provide a database session for FastAPI dependencies."""

    if AsyncSessionLocal is None:
        get_engine()

    assert AsyncSessionLocal is not None  # for type checkers
    async with AsyncSessionLocal() as session:
        yield session
