from typing import Optional
from contextlib import asynccontextmanager
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy import select, update

from matchbot.config import Config
from matchbot.database.models import Base, Counter
from matchbot.utils.logger import setup_logger

class Database:
    def __init__(self, database_url: Optional[str] = None):
        self.logger = setup_logger(__name__)
        self.database_url = database_url or Config.DATABASE_URL
        self.engine = None
        self.async_session = None

    async def initialize(self):
        """Initialize the database connection and create tables"""
        self.logger.info("Initializing database...")

        # Convert sqlite URL to async if needed
        database_url = self.database_url
        if database_url.startswith('sqlite:///'):
            database_url = database_url.replace('sqlite:///', 'sqlite+aiosqlite:///')

        self.engine = create_async_engine(
            database_url,
            echo=Config.DEBUG,
            future=True
        )

        self.async_session = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False
        )

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        self.logger.info("Database initialized successfully")

    @asynccontextmanager
    async def get_session(self):
        """Get a database session. The caller commits."""
        async with self.async_session() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    @asynccontextmanager
    async def transaction(self):
        """
        Create a transaction boundary for atomic operations.

        All operations within the context are committed together on success,
        or rolled back together on failure.

        Usage:
            async with db.transaction() as session:
                session.add(match)
                await session.execute(delete(QueueEntry).where(...))
                # Both commit together here

        Exceptions must be allowed to propagate out of the context for
        rollback to occur.
        """
        async with self.async_session() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    async def next_sequence(self, name: str, session: Optional[AsyncSession] = None) -> int:
        """
        Atomically increment a named counter and return the new value.

        When a session is given the increment joins the caller's transaction,
        so a rolled-back insert gives the value back. Otherwise the increment
        commits on its own and a later failure leaves a gap.
        """
        if session is None:
            async with self.transaction() as own_session:
                return await self._increment(own_session, name)
        return await self._increment(session, name)

    async def _increment(self, session: AsyncSession, name: str) -> int:
        result = await session.execute(
            update(Counter).where(Counter.name == name).values(seq=Counter.seq + 1)
        )
        if result.rowcount == 0:
            session.add(Counter(name=name, seq=1))
            await session.flush()
            return 1
        return await session.scalar(select(Counter.seq).where(Counter.name == name))

    async def close(self):
        """Close the database connection"""
        if self.engine:
            await self.engine.dispose()
            self.logger.info("Database connection closed")
