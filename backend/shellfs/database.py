"""SQLAlchemy async engine & session for the SQLite content store (WAL mode)."""

from __future__ import annotations

import logging
from pathlib import Path

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine, AsyncSession

from shellfs.config import settings
from shellfs.models.base import Base

logger = logging.getLogger(__name__)


def _configure_sqlite(dbapi_conn, _connection_record):
    """Apply SQLite PRAGMAs for the content store."""
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=NORMAL")
    cursor.execute("PRAGMA cache_size=-8000")  # 8 MB
    cursor.close()


def create_engine_for(db_path: str | Path, echo: bool = False) -> AsyncEngine:
    """Build an aiosqlite engine with the PRAGMAs applied on every connection."""
    new_engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}", echo=echo)
    event.listen(new_engine.sync_engine, "connect", _configure_sqlite)
    return new_engine


db_path = Path(settings.database_path)

DATABASE_URL = f"sqlite+aiosqlite:///{db_path}"

engine = create_async_engine(
    DATABASE_URL,
    echo=settings.debug and settings.log_level == "DEBUG",
    pool_size=settings.max_db_connections,
    max_overflow=0,
)

# Apply SQLite PRAGMAs on each new connection
event.listen(engine.sync_engine, "connect", _configure_sqlite)

async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_db(target: AsyncEngine | None = None) -> None:
    """Create all tables (first run and tests)."""
    target = target or engine
    if target is engine:
        db_path.parent.mkdir(parents=True, exist_ok=True)
    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Content store tables created/verified at %s", target.url.database)
