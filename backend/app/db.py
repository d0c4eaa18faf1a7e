"""Database configuration and session management."""

import os
import logging
from pathlib import Path
from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base

logger = logging.getLogger(__name__)

# Database URL from environment or default
default_db = "sqlite+aiosqlite:///./infradeck.db"
DATABASE_URL = os.getenv("DATABASE_URL", default_db)

# Ensure database directory exists (skip for in-memory databases used in tests)
if DATABASE_URL.startswith("sqlite") and ":memory:" not in DATABASE_URL:
    db_path = DATABASE_URL.replace("sqlite+aiosqlite:///", "").replace("sqlite+aiosqlite://", "")
    db_dir = Path(db_path).resolve().parent
    if str(db_dir) != ".":
        db_dir.mkdir(parents=True, exist_ok=True)

if "sqlite" in DATABASE_URL:
    # SQLite: single persistent connection avoids locking issues
    from sqlalchemy.pool import StaticPool
    engine = create_async_engine(
        DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
else:
    engine = create_async_engine(
        DATABASE_URL,
        echo=False,
        pool_size=10,
        max_overflow=20,
        pool_timeout=30,
        pool_recycle=3600,
        pool_pre_ping=True,
    )


def enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    """Turn on FK enforcement so node deletion cascades to inventory rows."""
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


if "sqlite" in DATABASE_URL:
    event.listen(engine.sync_engine, "connect", enable_sqlite_foreign_keys)

# Session factory
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)

# Base class for models
Base = declarative_base()


async def get_db() -> AsyncSession:
    """Dependency for getting database sessions."""
    async with AsyncSessionLocal() as session:
        yield session


async def init_db():
    """Initialize database tables."""
    # Import models so they register with Base.metadata
    import app.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

        if "sqlite" in DATABASE_URL and ":memory:" not in DATABASE_URL:
            # WAL mode allows concurrent reads while a sync pass writes
            await conn.execute(text("PRAGMA journal_mode=WAL"))
            await conn.execute(text("PRAGMA synchronous=NORMAL"))
            await conn.execute(text("PRAGMA busy_timeout=5000"))
            logger.info("SQLite optimizations applied: WAL mode, 5s busy timeout")
