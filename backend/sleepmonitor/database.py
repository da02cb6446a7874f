import logging
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import AsyncIterator, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase

from sleepmonitor.config import settings
from sleepmonitor.exceptions import StorageIOError


logger = logging.getLogger(__name__)

DATABASE_NAME = "sleep_database"
SCHEMA_VERSION = 1


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models"""
    pass


def create_session_factory(engine) -> async_sessionmaker:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


@asynccontextmanager
async def transaction(
    session_factory: async_sessionmaker,
    operation: str = "transaction",
) -> AsyncIterator[AsyncSession]:
    """
    Run a unit of work inside BEGIN ... COMMIT.

    Commits when the block exits normally, rolls back on any exception
    (including cancellation) and always releases the connection.
    SQLAlchemy errors are re-raised as StorageIOError.
    """
    async with session_factory() as session:
        try:
            async with session.begin():
                yield session
        except SQLAlchemyError as e:
            logger.error(f"{operation} failed, rolled back: {e}")
            raise StorageIOError(str(e), operation=operation) from e


class SleepDatabase:
    """
    The local sleep database: one engine, one session factory and the
    invalidation tracker shared by every live query on it.

    Use get_database() for the application-wide instance; tests and
    tools can build their own against any URL.
    """

    def __init__(self, url: Optional[str] = None, echo: Optional[bool] = None):
        from sleepmonitor.services.live_query import InvalidationTracker

        self.url = url or settings.DATABASE_URL
        connect_args = {}
        if self.url.startswith("sqlite"):
            connect_args["timeout"] = settings.SQLITE_BUSY_TIMEOUT_SECONDS

        self.engine = create_async_engine(
            self.url,
            echo=settings.DEBUG if echo is None else echo,
            future=True,
            connect_args=connect_args,
        )
        self.session_factory = create_session_factory(self.engine)
        self.invalidation_tracker = InvalidationTracker()
        self._sleep_store = None

    @property
    def sleep_store(self):
        if self._sleep_store is None:
            from sleepmonitor.services.sleep_store import SleepRecordStore

            self._sleep_store = SleepRecordStore(self.session_factory, self.invalidation_tracker)
        return self._sleep_store

    async def create_all(self) -> None:
        """Create the schema if it does not exist yet."""
        # Register the mapped tables on Base.metadata
        import sleepmonitor.models  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info(f"Database {DATABASE_NAME} v{SCHEMA_VERSION} ready at {self.url}")

    async def dispose(self) -> None:
        await self.engine.dispose()

    def __repr__(self) -> str:
        return f"<SleepDatabase(url={self.url})>"


@lru_cache()
def get_database() -> SleepDatabase:
    return SleepDatabase(settings.DATABASE_URL)
