"""
Base service class for the matchmaking bot.

Services share the bot's Database and open one short transaction per call.
SQLite reports contention as OperationalError ("database is locked"), which
is the only error execute_with_retry retries.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Awaitable, Callable, Tuple, Type, TypeVar
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from matchbot.utils.logger import setup_logger

T = TypeVar('T')

class BaseService:
    """Base class for services backed by the shared Database."""

    def __init__(self, database):
        """
        Args:
            database: Initialized matchbot.database.database.Database
        """
        self.db = database
        self.logger = setup_logger(self.__class__.__module__)

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """Transactional scope: commit on success, rollback on error."""
        async with self.db.transaction() as session:
            yield session

    async def execute_with_retry(
        self,
        func: Callable[[], Awaitable[T]],
        max_retries: int = 3,
        retry_on: Tuple[Type[BaseException], ...] = (OperationalError,),
    ) -> T:
        """Run func, retrying lock contention with exponential backoff."""
        for attempt in range(max_retries):
            try:
                return await func()
            except retry_on as e:
                if attempt == max_retries - 1:
                    raise
                self.logger.warning(f"Retry attempt {attempt + 1} for {getattr(func, '__name__', func)}: {e}")
                await asyncio.sleep(0.1 * (2 ** attempt))
