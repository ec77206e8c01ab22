import logging

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from core.config import settings
from services.store import SQLStore

logger = logging.getLogger(__name__)


# ============================================================
# ✅ Async engine + session factory
# ============================================================
def build_engine(database_url: str = settings.DATABASE_URL) -> AsyncEngine:
    if database_url.startswith("sqlite"):
        logger.warning("⚠️ Using local SQLite database: %s", database_url)
        return create_async_engine(
            database_url,
            echo=settings.SQL_ECHO,
            connect_args={"check_same_thread": False},
        )

    logger.info("✅ Using database from environment.")
    # For PostgreSQL, pool_pre_ping avoids stale connections
    return create_async_engine(
        database_url,
        echo=settings.SQL_ECHO,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20,
    )


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


engine = build_engine()
async_session_maker = build_session_factory(engine)


# ============================================================
# ✅ Create tables (called at startup)
# ============================================================
async def create_db_and_tables(db_engine: AsyncEngine = engine) -> None:
    """
    Create all database tables based on SQLModel models.
    This runs automatically at app startup.
    """
    import models.models  # noqa: F401  (registers every table on SQLModel.metadata)

    try:
        async with db_engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)
        logger.info("✅ All database tables created successfully.")
    except Exception as e:
        logger.error("❌ Failed to create tables: %s", e)
        raise


# ============================================================
# ✅ Dependency: the app-wide store
# ============================================================
def get_store(request: Request) -> SQLStore:
    """The store built once at startup and kept on app.state."""
    return request.app.state.store
