"""Async engine, session factory and schema bootstrap for saved searches."""

import os

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from database.models import Base

DATABASE_URL = os.getenv(
    "DATABASE_URL",
    "sqlite+aiosqlite:///adsfinder.db",
)

_connect_args = {"timeout": 30} if DATABASE_URL.startswith("sqlite") else {}

engine = create_async_engine(
    DATABASE_URL,
    echo=False,
    connect_args=_connect_args,
)
async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

# Columns added after the first release of complete_searches
COMPLETE_SEARCH_LATE_COLUMNS = [
    ("search_metadata", "JSON"),
    ("avg_hotness_score", "FLOAT DEFAULT 0"),
    ("long_running_ads", "INTEGER DEFAULT 0"),
    ("top_pages", "JSON"),
    ("last_accessed", "DATETIME"),
    ("access_count", "INTEGER DEFAULT 1"),
]


async def get_db() -> AsyncSession:
    """Provide DB session dependency for FastAPI."""
    async with async_session() as session:
        yield session


async def init_db():
    """Create tables and bring older SQLite files up to the current columns."""
    async with engine.begin() as conn:
        if conn.dialect.name == "sqlite":
            await conn.exec_driver_sql("PRAGMA journal_mode=WAL")
            await conn.exec_driver_sql("PRAGMA synchronous=NORMAL")
        await conn.run_sync(Base.metadata.create_all)
        if conn.dialect.name == "sqlite":
            await _ensure_complete_search_columns(conn)


async def _ensure_complete_search_columns(conn):
    rows = await conn.exec_driver_sql("PRAGMA table_info(complete_searches)")
    existing = {row[1] for row in rows.fetchall()}
    for col, typ in COMPLETE_SEARCH_LATE_COLUMNS:
        if col not in existing:
            await conn.exec_driver_sql(f"ALTER TABLE complete_searches ADD COLUMN {col} {typ}")
            logger.info("[db] complete_searches: added column {}", col)
