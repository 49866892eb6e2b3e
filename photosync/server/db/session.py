"""SQLite session and engine."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool

from photosync.server.config import get_settings

Base = declarative_base()

_settings = get_settings()
# SQLAlchemy async needs sqlite+aiosqlite and path as URL
_db_url = f"sqlite+aiosqlite:///{_settings.db_path}"
# timeout: concurrent inserts of the same fingerprint wait on the write lock, then hit the unique index
# One connection per session: sessions may run on different event loops
_engine = create_async_engine(_db_url, echo=False, poolclass=NullPool, connect_args={"timeout": 30})
_async_session = async_sessionmaker(
    _engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
)


async def init_db() -> None:
    """Create tables if they do not exist."""
    from photosync.server.photos import models  # noqa: F401 - register with Base

    _settings.db_path.parent.mkdir(parents=True, exist_ok=True)
    async with _engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async session (context manager)."""
    async with _async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency that yields an async session."""
    async with get_session() as session:
        yield session
