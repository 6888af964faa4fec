"""SQLite engine and sessions, owned by an explicit Database object."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import Request
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from filevault.config import Settings
from filevault.errors import TransientStorageError

Base = declarative_base()
log = logging.getLogger(__name__)


class Database:
    """Engine plus session factory. Open with init(), close with dispose()."""

    def __init__(self, settings: Settings) -> None:
        # SQLAlchemy async needs sqlite+aiosqlite and path as URL
        self.url = f"sqlite+aiosqlite:///{settings.db_path}"
        self._engine = create_async_engine(
            self.url, echo=False, connect_args={"timeout": settings.db_timeout_seconds}
        )
        self._sessionmaker = async_sessionmaker(
            self._engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
        )

    async def init(self) -> None:
        """Create tables if they do not exist."""
        # Register models with Base before create_all
        from filevault.files.models import File  # noqa: F401
        from filevault.users.models import User  # noqa: F401

        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        log.info("Database ready at %s", self.url)

    async def dispose(self) -> None:
        await self._engine.dispose()

    async def is_alive(self) -> bool:
        """True if a trivial query succeeds."""
        try:
            async with self._engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except OperationalError as e:
            log.warning("Database check failed: %s", e)
            return False

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Yield an async session; commit on success, roll back on error."""
        async with self._sessionmaker() as session:
            try:
                yield session
                await session.commit()
            except OperationalError as e:
                await session.rollback()
                log.error("Database call failed: %s", e)
                raise TransientStorageError() from e
            except Exception:
                await session.rollback()
                raise


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency that yields a session from the app's Database."""
    database: Database = request.app.state.database
    async with database.session() as session:
        yield session
