"""
Async SQLAlchemy engine, declarative base and the per-request session dependency
"""
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base

from config.settings import settings, IS_PRODUCTION

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./sql_app.db"


def normalize_database_url(url: str) -> str:
    """
    Rewrite a connection string to use an async driver.

    Hosting providers hand out postgres:// or postgresql:// URLs with no
    driver; those get the asyncpg dialect. Anything else is left alone.
    """
    for prefix in ("postgres://", "postgresql://"):
        if url.startswith(prefix):
            return "postgresql+asyncpg://" + url[len(prefix):]
    return url


def check_production_url(url: str) -> None:
    if not url:
        raise RuntimeError("DATABASE_URL must be set in production. SQLite is not allowed in production.")
    if "sqlite" in url.lower():
        raise RuntimeError("SQLite is forbidden in production. Use a PostgreSQL DATABASE_URL.")


if IS_PRODUCTION:
    check_production_url(settings.database_url)

DATABASE_URL = normalize_database_url(settings.database_url or DEFAULT_DATABASE_URL)

# One pooled engine per process
engine = create_async_engine(
    DATABASE_URL,
    echo=False,
    pool_pre_ping=True,
)

Base = declarative_base()

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def init_db():
    """
    Create the users and accounts tables if they do not exist.
    Called once from the application lifespan.
    """
    async with engine.begin() as conn:
        # Import models here to ensure they're registered with Base
        import database_models  # noqa: F401
        await conn.run_sync(Base.metadata.create_all)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Yield a session for one request.

    Commits when the route returns normally and rolls back when it raises,
    so a failed request never leaves a partial write behind.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
