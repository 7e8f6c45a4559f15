# app/db/database.py
import logging
from pathlib import Path
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from app.core.config import settings
from app.models.models import Base

logger = logging.getLogger(__name__)


def _normalize_url(database_url: str) -> str:
    # Hosted MySQL hands out 'mysql://'; force the async driver
    if database_url.startswith("mysql://"):
        return database_url.replace("mysql://", "mysql+aiomysql://", 1)
    return database_url


def _ensure_sqlite_directory(database_url: str) -> None:
    prefix = "sqlite+aiosqlite:///"
    if not database_url.startswith(prefix):
        return
    path = database_url[len(prefix):]
    if path and path != ":memory:":
        Path(path).parent.mkdir(parents=True, exist_ok=True)


def build_engine(database_url: Optional[str] = None) -> AsyncEngine:
    """
    Create an async engine for the record store.
    Each caller owns the engine it builds and must dispose it.
    """
    database_url = _normalize_url(database_url or settings.get_database_url)
    _ensure_sqlite_directory(database_url)

    engine_kwargs = {"pool_pre_ping": True, "echo": False}
    if not database_url.startswith("sqlite"):
        engine_kwargs.update(
            pool_size=settings.DATABASE_POOL_SIZE,
            max_overflow=settings.DATABASE_MAX_OVERFLOW,
            pool_recycle=3600,
        )

    engine = create_async_engine(database_url, **engine_kwargs)
    logger.info(f"✅ Async database engine created ({engine.url.get_backend_name()})")
    return engine


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # expire_on_commit=False keeps loaded rows usable after commit
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        autoflush=False,
        expire_on_commit=False,
    )


async def create_db_and_tables(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
