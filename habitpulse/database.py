import os
import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from habitpulse.config import DATABASE_URL, DATABASE_ECHO

logger = logging.getLogger(__name__)

# Pool sizing only applies to server databases
engine_args = {}
if DATABASE_URL.startswith("sqlite"):
    engine_args["connect_args"] = {"check_same_thread": False}
else:
    engine_args.update({
        "pool_size": 5,
        "max_overflow": 10,
        "pool_timeout": 30,
        "pool_recycle": 1800,
    })

try:
    engine = create_async_engine(
        DATABASE_URL,
        **engine_args,
        echo=DATABASE_ECHO,
    )
    SessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
except Exception as e:
    logger.error(f"Failed to create engine: {e}")
    raise e

Base = declarative_base()


async def get_db():
    """FastAPI dependency — yields an async session and closes it after use."""
    async with SessionLocal() as db:
        yield db


async def init_db(bind=None):
    """Create the data/ directory for local SQLite files, then create all tables."""
    target = bind or engine
    if str(target.url).startswith("sqlite") and target.url.database not in (None, "", ":memory:"):
        os.makedirs(os.path.dirname(os.path.abspath(target.url.database)), exist_ok=True)

    # Import all models so they register with Base.metadata
    import habitpulse.models  # noqa: F401

    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database initialized successfully.")
