"""
Ready-Check Operations - time-boxed confirmation before a match starts

Lifecycle of one ready-check: pending -> complete | expired.

- create_locked() snapshots the first QUEUE_SIZE queue entries. At most one
  ready-check is pending at a time; the coordinator lock plus the pending
  check in QueueOperations._evaluate_locked enforce it.
- activate() schedules the deadline timer and the periodic status refresh,
  posts the status display and direct-messages every real member.
- confirm() flips one member's flag with a conditional update that only
  succeeds while the check is still pending. The last confirmation runs
  on_complete().
- on_complete() moves the members to the front of the queue and claims the
  match. on_timeout() evicts everyone who did not confirm and records a
  missed ready-check for each of them.

Both transitions are compare-and-set on status, so a late timer or a late
confirmation after the other transition is a no-op.
"""

from datetime import datetime, timedelta
from typing import Iterable, List, Optional, TYPE_CHECKING

from sqlalchemy import select, update, delete, func

from matchbot.config import Config
from matchbot.constants import MatchConstants
from matchbot.data_models.displays import MessageRef, ReadyCheckSnapshot
from matchbot.database.models import Player, QueueEntry, ReadyCheck, ReadyCheckMember, ReadyCheckStatus
from matchbot.services.gateway import safely
from matchbot.utils.exceptions import (
    AlreadyConfirmedError, CheckNotPendingError, NotInThisCheckError, ReadyCheckNotFoundError
)
from matchbot.utils.logger import setup_logger
from matchbot.utils.time_utils import utc_now

if TYPE_CHECKING:
    from matchbot.services.matchmaking import Matchmaking

logger = setup_logger(__name__)

DEADLINE_TIMER = 'ready_check_deadline'
REFRESH_TIMER = 'ready_check_refresh'

# Confirmed members get joined_at values from here on, ahead of any real join time
FRONT_OF_QUEUE = datetime(1970, 1, 1)


class ReadyCheckOperations:
    """Coordinates the single pending ready-check."""

    def __init__(self, matchmaking: 'Matchmaking'):
        self.mm = matchmaking
        self.db = matchmaking.db
        self.config_service = matchmaking.config_service
        self.timers = matchmaking.timers
        self.logger = logger

    # ============================================================================
    # Queries
    # ============================================================================

    async def get(self, ready_check_id: int) -> Optional[ReadyCheck]:
        async with self.db.get_session() as session:
            return await session.get(ReadyCheck, ready_check_id)

    async def pending(self) -> Optional[ReadyCheck]:
        async with self.db.get_session() as session:
            return (await session.execute(
                select(ReadyCheck).where(ReadyCheck.status == ReadyCheckStatus.PENDING)
                .order_by(ReadyCheck.id).limit(1)
            )).scalar_one_or_none()

    async def members(self, ready_check_id: int) -> List[ReadyCheckMember]:
        async with self.db.get_session() as session:
            return list((await session.execute(
                select(ReadyCheckMember).where(ReadyCheckMember.ready_check_id == ready_check_id)
                .order_by(ReadyCheckMember.position)
            )).scalars().all())

    async def snapshot(self, ready_check_id: int) -> Optional[ReadyCheckSnapshot]:
        ready_check = await self.get(ready_check_id)
        if ready_check is None:
            return None
        members = await self.members(ready_check_id)
        return ReadyCheckSnapshot(
            ready_check_id=ready_check.id,
            status=ready_check.status.value,
            deadline=ready_check.deadline,
            members=[(member.player_id, member.confirmed) for member in members],
        )

    # ============================================================================
    # Start
    # ============================================================================

    async def start(self) -> Optional[int]:
        """
        Start a ready-check for the first QUEUE_SIZE players.

        Returns the pending ready-check id when one already exists, or None
        when the queue is not full.
        """
        async with self.mm.lock:
            existing = await self.pending()
            if existing is not None:
                return existing.id
            ready_check_id = await self.create_locked()

        if ready_check_id is not None:
            await self.activate(ready_check_id)
        return ready_check_id

    async def create_locked(self) -> Optional[int]:
        """Persist a pending ready-check. Callers must hold mm.lock."""
        entries = await self.mm.queue.entries(MatchConstants.QUEUE_SIZE)
        if len(entries) < MatchConstants.QUEUE_SIZE:
            return None

        settings = self.config_service.queue_settings()
        async with self.db.transaction() as session:
            ready_check = ReadyCheck(
                status=ReadyCheckStatus.PENDING,
                deadline=utc_now() + timedelta(seconds=settings.ready_seconds),
            )
            session.add(ready_check)
            await session.flush()

            session.add_all([
                ReadyCheckMember(ready_check_id=ready_check.id, player_id=entry.player_id,
                                 position=position, confirmed=False)
                for position, entry in enumerate(entries)
            ])
            ready_check_id = ready_check.id

        self.logger.info(
            f"Ready-check {ready_check_id} started for {[entry.player_id for entry in entries]} "
            f"({settings.ready_seconds}s)"
        )
        return ready_check_id

    async def activate(self, ready_check_id: int):
        """Schedule timers, show the status and notify members."""
        ready_check = await self.get(ready_check_id)
        if ready_check is None or not ready_check.is_pending:
            return

        delay = (ready_check.deadline - utc_now()).total_seconds()
        self.timers.schedule((DEADLINE_TIMER, ready_check_id), delay, self.on_timeout, ready_check_id)
        self.timers.schedule_periodic(
            (REFRESH_TIMER, ready_check_id), Config.DISPLAY_REFRESH_SECONDS, self.refresh_status, ready_check_id
        )

        await self.refresh_status(ready_check_id)
        await self.mm.queue.refresh_panel()

        snapshot = await self.snapshot(ready_check_id)
        for player_id in await self._real_player_ids(ready_check_id):
            delivered = await safely(
                self.mm.gateway.notify_ready_check(player_id, snapshot),
                f"ready-check DM to {player_id}"
            )
            if not delivered:
                self.logger.info(f"Could not notify {player_id} about ready-check {ready_check_id}")

    async def _real_player_ids(self, ready_check_id: int) -> List[int]:
        async with self.db.get_session() as session:
            result = await session.execute(
                select(ReadyCheckMember.player_id)
                .join(Player, Player.discord_id == ReadyCheckMember.player_id)
                .where(ReadyCheckMember.ready_check_id == ready_check_id, Player.synthetic.is_(False))
                .order_by(ReadyCheckMember.position)
            )
            return list(result.scalars().all())

    # ============================================================================
    # Confirm
    # ============================================================================

    async def confirm(self, ready_check_id: int, player_id: int) -> bool:
        """
        Mark a member as ready.

        Returns:
            True if this confirmation completed the ready-check

        Raises:
            ReadyCheckNotFoundError, CheckNotPendingError, NotInThisCheckError, AlreadyConfirmedError
        """
        async with self.db.transaction() as session:
            ready_check = await session.get(ReadyCheck, ready_check_id)
            if ready_check is None:
                raise ReadyCheckNotFoundError(ready_check_id)
            if ready_check.status != ReadyCheckStatus.PENDING:
                raise CheckNotPendingError(ready_check_id, ready_check.status.value)

            member = (await session.execute(
                select(ReadyCheckMember).where(
                    ReadyCheckMember.ready_check_id == ready_check_id,
                    ReadyCheckMember.player_id == player_id
                )
            )).scalar_one_or_none()
            if member is None:
                raise NotInThisCheckError(ready_check_id, player_id)
            if member.confirmed:
                raise AlreadyConfirmedError(ready_check_id, player_id)

            still_pending = (
                select(ReadyCheck.id)
                .where(ReadyCheck.id == ready_check_id, ReadyCheck.status == ReadyCheckStatus.PENDING)
                .exists()
            )
            result = await session.execute(
                update(ReadyCheckMember)
                .where(ReadyCheckMember.id == member.id, ReadyCheckMember.confirmed.is_(False), still_pending)
                .values(confirmed=True, confirmed_at=utc_now())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                await session.refresh(ready_check)
                if ready_check.status != ReadyCheckStatus.PENDING:
                    raise CheckNotPendingError(ready_check_id, ready_check.status.value)
                raise AlreadyConfirmedError(ready_check_id, player_id)

            unconfirmed = await session.scalar(
                select(func.count(ReadyCheckMember.id)).where(
                    ReadyCheckMember.ready_check_id == ready_check_id,
                    ReadyCheckMember.confirmed.is_(False)
                )
            )

        self.logger.info(f"Player {player_id} confirmed ready-check {ready_check_id} ({unconfirmed} left)")
        if unconfirmed == 0:
            await self.on_complete(ready_check_id)
            return True

        await self.refresh_status(ready_check_id)
        return False

    async def confirm_many(self, ready_check_id: int, player_ids: Iterable[int]) -> int:
        """Confirm several members, skipping ones that are already confirmed or absent."""
        confirmed = 0
        for player_id in player_ids:
            try:
                completed = await self.confirm(ready_check_id, player_id)
            except (AlreadyConfirmedError, NotInThisCheckError):
                continue
            except CheckNotPendingError:
                break
            confirmed += 1
            if completed:
                break
        return confirmed

    # ============================================================================
    # Transitions
    # ============================================================================

    async def on_complete(self, ready_check_id: int) -> Optional[int]:
        """
        Everyone confirmed: move the members to the front and start the match.

        Returns:
            The claimed match id, or None if the check was no longer pending
        """
        async with self.mm.lock:
            async with self.db.transaction() as session:
                result = await session.execute(
                    update(ReadyCheck)
                    .where(ReadyCheck.id == ready_check_id, ReadyCheck.status == ReadyCheckStatus.PENDING)
                    .values(status=ReadyCheckStatus.COMPLETE, ended_at=utc_now())
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    return None

                members = (await session.execute(
                    select(ReadyCheckMember).where(ReadyCheckMember.ready_check_id == ready_check_id)
                    .order_by(ReadyCheckMember.position)
                )).scalars().all()
                member_ids = [member.player_id for member in members]

                queued = {
                    entry.player_id: entry
                    for entry in (await session.execute(
                        select(QueueEntry).where(QueueEntry.player_id.in_(member_ids))
                    )).scalars().all()
                }
                for position, player_id in enumerate(member_ids):
                    joined_at = FRONT_OF_QUEUE + timedelta(microseconds=position)
                    if player_id in queued:
                        queued[player_id].joined_at = joined_at
                    else:
                        # Left during the window; a confirmed player keeps their seat
                        session.add(QueueEntry(player_id=player_id, joined_at=joined_at))

            match_id = await self.mm.matches.claim_match_locked()

        self.timers.cancel((DEADLINE_TIMER, ready_check_id), (REFRESH_TIMER, ready_check_id))
        self.logger.info(f"Ready-check {ready_check_id} complete, match {match_id}")
        await self._delete_status(ready_check_id)

        if match_id is not None:
            await self.mm.matches.setup_match(match_id)
        await self.mm.queue.refresh_panel()
        await self.mm.queue.trigger()
        return match_id

    async def on_timeout(self, ready_check_id: int) -> List[int]:
        """
        Deadline passed: evict unconfirmed members and record the misses.

        A check whose last confirmation landed before completion ran is
        completed instead of expired.

        Returns:
            The evicted player ids; empty if the check was no longer pending
        """
        fully_confirmed = False
        async with self.mm.lock:
            async with self.db.transaction() as session:
                has_unconfirmed = (
                    select(ReadyCheckMember.id)
                    .where(ReadyCheckMember.ready_check_id == ready_check_id,
                           ReadyCheckMember.confirmed.is_(False))
                    .exists()
                )
                result = await session.execute(
                    update(ReadyCheck)
                    .where(ReadyCheck.id == ready_check_id, ReadyCheck.status == ReadyCheckStatus.PENDING,
                           has_unconfirmed)
                    .values(status=ReadyCheckStatus.EXPIRED, ended_at=utc_now())
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    ready_check = await session.get(ReadyCheck, ready_check_id)
                    fully_confirmed = ready_check is not None and ready_check.is_pending
                    evicted = []
                else:
                    evicted = list((await session.execute(
                        select(ReadyCheckMember.player_id).where(
                            ReadyCheckMember.ready_check_id == ready_check_id,
                            ReadyCheckMember.confirmed.is_(False)
                        ).order_by(ReadyCheckMember.position)
                    )).scalars().all())

                    await session.execute(delete(QueueEntry).where(QueueEntry.player_id.in_(evicted)))
                    await self.mm.boards.record_missed_ready_checks(evicted, ready_check_id, session=session)

        if fully_confirmed:
            self.logger.info(f"Ready-check {ready_check_id} deadline hit after the last confirmation, completing")
            await self.on_complete(ready_check_id)
            return []
        if not evicted:
            return []

        self.timers.cancel((DEADLINE_TIMER, ready_check_id), (REFRESH_TIMER, ready_check_id))
        self.logger.info(f"Ready-check {ready_check_id} expired, evicted {evicted}")

        await self._delete_status(ready_check_id)
        await self.mm.boards.refresh_cancel_board()
        await self.mm.queue.refresh_panel()
        await self.mm.queue.trigger()
        return evicted

    async def expire_without_eviction(self, ready_check_id: int) -> bool:
        """Expire a pending check without touching the queue (settings change, /clearqueue)."""
        async with self.db.transaction() as session:
            result = await session.execute(
                update(ReadyCheck)
                .where(ReadyCheck.id == ready_check_id, ReadyCheck.status == ReadyCheckStatus.PENDING)
                .values(status=ReadyCheckStatus.EXPIRED, ended_at=utc_now())
                .execution_options(synchronize_session=False)
            )
            expired = result.rowcount > 0

        self.timers.cancel((DEADLINE_TIMER, ready_check_id), (REFRESH_TIMER, ready_check_id))
        if expired:
            self.logger.info(f"Ready-check {ready_check_id} expired without eviction")
            await self._delete_status(ready_check_id)
            await self.mm.queue.refresh_panel()
        return expired

    # ============================================================================
    # Display
    # ============================================================================

    async def refresh_status(self, ready_check_id: int):
        """Upsert the status display while the check is pending."""
        ready_check = await self.get(ready_check_id)
        if ready_check is None or not ready_check.is_pending:
            return

        channel_id = self.mm.queue.panel_channel_id() or ready_check.status_channel_id
        if channel_id is None:
            return

        ref = MessageRef.from_ids(ready_check.status_channel_id, ready_check.status_message_id)
        new_ref = await safely(
            self.mm.gateway.upsert_ready_check(channel_id, ref, await self.snapshot(ready_check_id)),
            f"ready-check {ready_check_id} status"
        )
        if new_ref is not None and new_ref != ref:
            async with self.db.transaction() as session:
                await session.execute(
                    update(ReadyCheck).where(ReadyCheck.id == ready_check_id).values(
                        status_channel_id=new_ref.channel_id,
                        status_message_id=new_ref.message_id
                    ).execution_options(synchronize_session=False)
                )

    async def _delete_status(self, ready_check_id: int):
        ready_check = await self.get(ready_check_id)
        if ready_check is None:
            return
        ref = MessageRef.from_ids(ready_check.status_channel_id, ready_check.status_message_id)
        if ref is not None:
            await safely(self.mm.gateway.delete_message(ref), f"delete ready-check {ready_check_id} status")
