"""
Process-wide matchmaking coordinator.

One Matchmaking instance is created at startup and shared by every cog. It
owns the things that must be unique per process: the timer registry, the
lock that serializes queue evaluation (so at most one ready-check is pending
and every queued player is handed to at most one match), and the random
source used for captains and auto-bans.
"""

import asyncio
import random
from typing import Optional

from matchbot.operations.admin_operations import AdminOperations
from matchbot.operations.match_operations import MatchOperations
from matchbot.operations.queue_operations import QueueOperations
from matchbot.operations.ready_check_operations import ReadyCheckOperations
from matchbot.operations.veto_operations import VetoOperations
from matchbot.services.boards import BoardService
from matchbot.services.configuration import ConfigurationService
from matchbot.services.gateway import MatchGateway
from matchbot.services.timers import TimerRegistry
from matchbot.utils.logger import setup_logger

logger = setup_logger(__name__)


class Matchmaking:
    """Wires the operations together around shared timers, lock and RNG."""

    def __init__(self, database, config_service: ConfigurationService, gateway: MatchGateway,
                 timers: Optional[TimerRegistry] = None, rng: Optional[random.Random] = None):
        self.db = database
        self.config_service = config_service
        self.gateway = gateway
        self.timers = timers or TimerRegistry()
        self.rng = rng or random.Random()
        self.lock = asyncio.Lock()

        self.boards = BoardService(database, config_service, gateway)
        self.queue = QueueOperations(self)
        self.ready_checks = ReadyCheckOperations(self)
        self.matches = MatchOperations(self)
        self.veto = VetoOperations(self)
        self.admin = AdminOperations(self)

    async def startup(self):
        """Refresh the queue panel and start whatever the queue is ready for."""
        await self.queue.refresh_panel()
        await self.queue.trigger()
        logger.info("Matchmaking coordinator started")

    async def shutdown(self):
        cancelled = self.timers.cancel_all()
        logger.info(f"Matchmaking coordinator stopped, {cancelled} timers cancelled")
