"""
Queue Operations - join/leave and the start trigger

The queue is a single global waiting line ordered by (joined_at, id). Once it
holds QUEUE_SIZE players and no ready-check is pending, `trigger` starts a
ready-check, or claims a match directly when ready-checks are disabled.

trigger() is safe to call at any time and from anywhere: after joins, leaves,
ready-check expiry, match start, configuration changes and at startup.
"""

from typing import List, Optional, Tuple, TYPE_CHECKING

from sqlalchemy import select, delete, func
from sqlalchemy.exc import IntegrityError

from matchbot.config import Config
from matchbot.constants import MatchConstants, QueueConstants
from matchbot.data_models.displays import MessageRef, QueueSnapshot
from matchbot.database.models import Match, MatchPlayer, MatchStatus, Player, QueueEntry
from matchbot.services.gateway import safely
from matchbot.utils.exceptions import (
    AlreadyInActiveMatchError, AlreadyQueuedError, InvalidSettingError,
    NotQueuedError, NothingToUpdateError, PlayerBannedError
)
from matchbot.utils.logger import setup_logger
from matchbot.utils.time_utils import utc_now

if TYPE_CHECKING:
    from matchbot.services.matchmaking import Matchmaking

logger = setup_logger(__name__)

QUEUE_PANEL_KEY = 'display.queue_panel'


class QueueOperations:
    """Waiting line management for the single global queue."""

    def __init__(self, matchmaking: 'Matchmaking'):
        self.mm = matchmaking
        self.db = matchmaking.db
        self.config_service = matchmaking.config_service
        self.logger = logger

    # ============================================================================
    # Join / leave
    # ============================================================================

    async def join(self, player_id: int, display_name: Optional[str] = None) -> int:
        """
        Add a player to the end of the queue.

        Args:
            player_id: Discord user id
            display_name: Name to remember for boards

        Returns:
            Number of players in the queue after joining

        Raises:
            AlreadyQueuedError, AlreadyInActiveMatchError, PlayerBannedError
        """
        async with self.db.transaction() as session:
            if await self._is_queued(session, player_id):
                raise AlreadyQueuedError(player_id)

            active_match_id = await self.active_match_id(player_id, session)
            if active_match_id is not None:
                raise AlreadyInActiveMatchError(player_id, active_match_id)

            player = await self.ensure_player(session, player_id, display_name)
            if player.banned:
                raise PlayerBannedError(player_id)

            session.add(QueueEntry(player_id=player_id, joined_at=utc_now()))
            try:
                await session.flush()
            except IntegrityError:
                # Lost a double-click race on the unique player_id
                raise AlreadyQueuedError(player_id)

            count = await session.scalar(select(func.count(QueueEntry.id)))

        self.logger.info(f"Player {player_id} joined the queue ({count}/{MatchConstants.QUEUE_SIZE})")
        await self.refresh_panel()
        await self.trigger()
        return count

    async def leave(self, player_id: int) -> int:
        """
        Remove a player from the queue.

        Returns:
            Number of players left in the queue

        Raises:
            NotQueuedError
        """
        async with self.db.transaction() as session:
            result = await session.execute(delete(QueueEntry).where(QueueEntry.player_id == player_id))
            if result.rowcount == 0:
                raise NotQueuedError(player_id)
            count = await session.scalar(select(func.count(QueueEntry.id)))

        self.logger.info(f"Player {player_id} left the queue ({count}/{MatchConstants.QUEUE_SIZE})")
        await self.refresh_panel()
        await self.trigger()
        return count

    async def clear(self, admin_id: Optional[int] = None) -> int:
        """Empty the queue and expire a pending ready-check without penalties."""
        pending = await self.mm.ready_checks.pending()
        if pending is not None:
            await self.mm.ready_checks.expire_without_eviction(pending.id)

        async with self.db.transaction() as session:
            result = await session.execute(delete(QueueEntry))
            removed = result.rowcount

        self.logger.info(f"Queue cleared by {admin_id}: {removed} entries removed")
        await self.refresh_panel()
        return removed

    # ============================================================================
    # Queries
    # ============================================================================

    async def ensure_player(self, session, player_id: int, display_name: Optional[str] = None,
                            synthetic: bool = False) -> Player:
        """Get or create a player with the baseline rating."""
        player = (await session.execute(
            select(Player).where(Player.discord_id == player_id)
        )).scalar_one_or_none()

        if player is None:
            player = Player(
                discord_id=player_id,
                display_name=display_name,
                rating=Config.STARTING_RATING,
                games_played=0,
                banned=False,
                synthetic=synthetic,
            )
            session.add(player)
            await session.flush()
        elif display_name and player.display_name != display_name:
            player.display_name = display_name
        return player

    async def active_match_id(self, player_id: int, session=None) -> Optional[int]:
        """Id of a non-terminal match the player belongs to, if any."""
        query = (
            select(Match.id)
            .join(MatchPlayer, MatchPlayer.match_id == Match.id)
            .where(MatchPlayer.player_id == player_id, Match.status.in_(MatchStatus.active()))
            .limit(1)
        )
        if session is not None:
            return await session.scalar(query)
        async with self.db.get_session() as own_session:
            return await own_session.scalar(query)

    async def entries(self, limit: Optional[int] = None) -> List[QueueEntry]:
        """Queue entries in waiting order."""
        query = select(QueueEntry).order_by(QueueEntry.joined_at, QueueEntry.id)
        if limit is not None:
            query = query.limit(limit)
        async with self.db.get_session() as session:
            return list((await session.execute(query)).scalars().all())

    async def player_ids(self, limit: Optional[int] = None) -> List[int]:
        return [entry.player_id for entry in await self.entries(limit)]

    async def count(self, session=None) -> int:
        if session is not None:
            return await session.scalar(select(func.count(QueueEntry.id)))
        async with self.db.get_session() as own_session:
            return await own_session.scalar(select(func.count(QueueEntry.id)))

    async def _is_queued(self, session, player_id: int) -> bool:
        found = await session.scalar(select(QueueEntry.id).where(QueueEntry.player_id == player_id))
        return found is not None

    # ============================================================================
    # Trigger
    # ============================================================================

    async def trigger(self) -> Tuple[Optional[int], List[int]]:
        """
        Start whatever the queue is ready for.

        Returns:
            (ready_check_id started, match ids started); both empty when nothing happened
        """
        async with self.mm.lock:
            ready_check_id, match_ids = await self._evaluate_locked()

        if ready_check_id is not None:
            await self.mm.ready_checks.activate(ready_check_id)
        for match_id in match_ids:
            await self.mm.matches.setup_match(match_id)
        if match_ids:
            await self.refresh_panel()
        return ready_check_id, match_ids

    async def _evaluate_locked(self) -> Tuple[Optional[int], List[int]]:
        """Decide under the coordinator lock. Callers must hold mm.lock."""
        match_ids: List[int] = []
        while True:
            if await self.mm.ready_checks.pending() is not None:
                return None, match_ids
            if await self.count() < MatchConstants.QUEUE_SIZE:
                return None, match_ids

            if self.config_service.queue_settings().ready_enabled:
                return await self.mm.ready_checks.create_locked(), match_ids

            match_id = await self.mm.matches.claim_match_locked()
            if match_id is None:
                return None, match_ids
            match_ids.append(match_id)

    # ============================================================================
    # Settings
    # ============================================================================

    async def configure(self, ready_enabled: Optional[bool] = None, ready_seconds: Optional[int] = None,
                        user_id: Optional[int] = None):
        """
        Change queue settings. Only the values provided are changed.

        Disabling ready-checks expires a pending one without evicting anyone,
        then re-runs the trigger so a full queue starts a match directly.
        """
        if ready_enabled is None and ready_seconds is None:
            raise NothingToUpdateError()
        if ready_seconds is not None and not (
            QueueConstants.MIN_READY_SECONDS <= ready_seconds <= QueueConstants.MAX_READY_SECONDS
        ):
            raise InvalidSettingError(
                f"Ready-check seconds must be between {QueueConstants.MIN_READY_SECONDS} "
                f"and {QueueConstants.MAX_READY_SECONDS}."
            )

        if ready_seconds is not None:
            await self.config_service.set('queue.ready_seconds', ready_seconds, user_id)
        if ready_enabled is not None:
            await self.config_service.set('queue.ready_enabled', ready_enabled, user_id)

        if ready_enabled is False:
            pending = await self.mm.ready_checks.pending()
            if pending is not None:
                await self.mm.ready_checks.expire_without_eviction(pending.id)

        self.logger.info(f"Queue settings changed by {user_id}: {self.config_service.queue_settings()}")
        await self.refresh_panel()
        await self.trigger()
        return self.config_service.queue_settings()

    # ============================================================================
    # Panel
    # ============================================================================

    async def snapshot(self) -> QueueSnapshot:
        settings = self.config_service.queue_settings()
        pending = await self.mm.ready_checks.pending()
        return QueueSnapshot(
            player_ids=await self.player_ids(),
            queue_size=MatchConstants.QUEUE_SIZE,
            ready_enabled=settings.ready_enabled,
            ready_seconds=settings.ready_seconds,
            pending_ready_check_id=pending.id if pending else None,
        )

    def panel_channel_id(self) -> Optional[int]:
        stored = self.config_service.get(QUEUE_PANEL_KEY)
        return int(stored['channel_id']) if stored and stored.get('channel_id') else None

    async def install_panel(self, channel_id: int, user_id: Optional[int] = None) -> Optional[MessageRef]:
        """Post the queue panel in channel_id and make it the queue's home channel."""
        old_ref = MessageRef.from_dict(self.config_service.get(QUEUE_PANEL_KEY))
        if old_ref is not None and old_ref.channel_id != channel_id:
            await safely(self.mm.gateway.delete_message(old_ref), "delete old queue panel")
        await self.config_service.set(QUEUE_PANEL_KEY, {'channel_id': channel_id}, user_id)
        return await self.refresh_panel()

    async def refresh_panel(self) -> Optional[MessageRef]:
        """Upsert the queue panel, recreating it if the old message is gone."""
        stored = self.config_service.get(QUEUE_PANEL_KEY)
        if not stored:
            return None

        ref = MessageRef.from_dict(stored)
        new_ref = await safely(
            self.mm.gateway.upsert_queue_panel(int(stored['channel_id']), ref, await self.snapshot()),
            "queue panel"
        )
        if new_ref is not None and new_ref != ref:
            await self.config_service.set(QUEUE_PANEL_KEY, new_ref.to_dict())
        return new_ref
