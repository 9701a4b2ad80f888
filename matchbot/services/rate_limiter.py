"""
Rate limiting for queue buttons and commands.

Queue join/leave buttons are public and easy to spam; every click costs a
database round-trip and a panel edit, so each user gets a small sliding
window per action.
"""

import time
import asyncio
from functools import wraps
from collections import defaultdict, deque
from typing import Deque, Dict

from matchbot.config import Config
from matchbot.utils.logger import setup_logger

logger = setup_logger(__name__)

class SimpleRateLimiter:
    """In-memory sliding-window rate limiter keyed by user and action."""

    def __init__(self):
        self._requests: Dict[str, Deque[float]] = defaultdict(deque)
        self._lock = asyncio.Lock()

    async def is_allowed(self, user_id: int, action: str, limit: int, window: int) -> bool:
        """Record an attempt and report whether it is within the limit."""
        if limit <= 0 or window <= 0:
            return False

        key = f"{user_id}:{action}"
        now = time.monotonic()

        async with self._lock:
            history = self._requests[key]
            while history and history[0] <= now - window:
                history.popleft()

            if len(history) < limit:
                history.append(now)
                return True

            return False

    async def retry_after(self, user_id: int, action: str, window: int) -> float:
        """Seconds until the oldest attempt leaves the window."""
        key = f"{user_id}:{action}"
        async with self._lock:
            history = self._requests.get(key)
            if not history:
                return 0.0
            return max(0.0, history[0] + window - time.monotonic())

def rate_limit(action: str, limit: int = 1, window: int = 60):
    """Decorator for cog callbacks whose first argument after self is the interaction."""
    def decorator(func):
        @wraps(func)
        async def wrapper(self, interaction, *args, **kwargs):
            rate_limiter = self.bot.rate_limiter

            if interaction.user.id == Config.OWNER_DISCORD_ID:
                return await func(self, interaction, *args, **kwargs)

            if not await rate_limiter.is_allowed(interaction.user.id, action, limit, window):
                wait = await rate_limiter.retry_after(interaction.user.id, action, window)
                logger.debug(f"Rate limited {interaction.user.id} on {action}")
                await interaction.response.send_message(
                    f"⏰ Slow down, try `{action}` again in {wait:.0f}s.",
                    ephemeral=True
                )
                return

            return await func(self, interaction, *args, **kwargs)
        return wrapper
    return decorator
