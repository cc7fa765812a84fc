"""
Database Connection Manager
===========================

Handles the async connection to the supervision database.

The Database object is created and owned by the process entry point (see
termwarden.registry) and disposed on shutdown; nothing here is a module
level singleton.
"""

import logging
from pathlib import Path
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from termwarden.db.models import Base

logger = logging.getLogger(__name__)


class Database:
    """An async engine plus its session factory."""

    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self.session_maker: async_sessionmaker[AsyncSession] = async_sessionmaker(
            engine, expire_on_commit=False
        )

    async def create_tables(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    def session(self) -> AsyncSession:
        return self.session_maker()

    async def dispose(self) -> None:
        await self.engine.dispose()

    async def __aenter__(self) -> "Database":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.dispose()


async def init_db(database_url: str, echo: bool = False) -> Database:
    """
    Initialize the database connection and create tables if they don't exist.

    For file-backed SQLite URLs the parent directory is created first.
    """
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)

    engine = create_async_engine(database_url, echo=echo)
    database = Database(engine)
    await database.create_tables()
    logger.debug("Database ready at %s", url.render_as_string(hide_password=True))
    return database


def sqlite_url(path: Path) -> str:
    """Build an aiosqlite URL for a database file."""
    return f"sqlite+aiosqlite:///{Path(path)}"

