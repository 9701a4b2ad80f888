"""
Services package for the matchmaking bot.

Shared infrastructure used by the operations layer: session management,
runtime configuration, timers, rate limiting, board data and the Discord
gateway interface.
"""

from .base import BaseService
from .rate_limiter import SimpleRateLimiter
from .timers import TimerRegistry

__all__ = ['BaseService', 'SimpleRateLimiter', 'TimerRegistry']
