"""Ledger store: async engine, session factory, and schema setup."""

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from haul_dispatch.app.config import get_settings


class Base(DeclarativeBase):
    """Declarative base for the ledger models."""
    pass


settings = get_settings()

_is_sqlite = settings.database_url.startswith("sqlite")

# SQLite allows one writer at a time; concurrent accepts and trip moves wait
# for the lock instead of failing right away.
_connect_args = {"check_same_thread": False, "timeout": 30} if _is_sqlite else {}

engine = create_async_engine(
    settings.database_url,
    connect_args=_connect_args,
    pool_pre_ping=not _is_sqlite,
)

async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_db():
    """FastAPI dependency: one session per request."""
    async with async_session() as session:
        yield session


async def init_db():
    """Create the ledger tables and enable WAL on SQLite."""
    import haul_dispatch.domain.models  # noqa: F401

    async with engine.begin() as conn:
        if _is_sqlite:
            await conn.execute(text("PRAGMA journal_mode=WAL"))
        await conn.run_sync(Base.metadata.create_all)
