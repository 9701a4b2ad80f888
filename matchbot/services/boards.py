"""
Leaderboard, match-history and missed ready-check boards.

BoardService builds the board data from the database and hands it to the
MatchGateway for rendering. Where each board lives is remembered in the
configuration table under display.* so boards survive restarts:

- display.leaderboard:   {"channel_id": ..., "message_ids": [...]}
- display.match_history: {"channel_id": ...}; per-match message ids live on Match
- display.cancel_board:  {"channel_id": ..., "message_id": ...}

Boards that were never installed are silently skipped.
"""

from typing import Dict, List, Optional

from sqlalchemy import select, func, update

from matchbot.constants import MatchConstants, UIConstants
from matchbot.data_models.displays import CancelRow, HistoryEntry, LeaderboardRow, MessageRef
from matchbot.database.models import (
    CancelEvent, CancelReason, Match, MatchPlayer, MatchStatus, Player, RatingHistory, VetoState
)
from matchbot.services.base import BaseService
from matchbot.services.gateway import safely
from matchbot.utils.exceptions import InvalidSettingError

LEADERBOARD_KEY = 'display.leaderboard'
MATCH_HISTORY_KEY = 'display.match_history'
CANCEL_BOARD_KEY = 'display.cancel_board'

# Entries posted when the match-history channel is (re)installed
HISTORY_BACKFILL = 25


class BoardService(BaseService):
    """Builds and refreshes the persistent boards."""

    def __init__(self, database, config_service, gateway):
        super().__init__(database)
        self.config_service = config_service
        self.gateway = gateway

    # ============================================================================
    # Leaderboard
    # ============================================================================

    async def leaderboard_rows(self) -> List[LeaderboardRow]:
        """All real players ranked by rating, then win rate."""
        async with self.get_session() as session:
            players = (await session.execute(
                select(Player).where(Player.synthetic.is_(False)).order_by(Player.id)
            )).scalars().all()

            wins_result = await session.execute(
                select(RatingHistory.player_id, func.count(RatingHistory.id))
                .where(RatingHistory.won.is_(True), RatingHistory.reverted.is_(False))
                .group_by(RatingHistory.player_id)
            )
            wins: Dict[int, int] = dict(wins_result.all())

        unranked = [
            LeaderboardRow(
                rank=0,
                player_id=player.discord_id,
                display_name=player.display_name,
                rating=player.rating,
                games=player.games_played,
                wins=wins.get(player.discord_id, 0),
            )
            for player in players
        ]
        unranked.sort(key=lambda row: (-row.rating, -row.win_rate))

        return [
            LeaderboardRow(rank=index, player_id=row.player_id, display_name=row.display_name,
                           rating=row.rating, games=row.games, wins=row.wins)
            for index, row in enumerate(unranked, start=1)
        ]

    @staticmethod
    def paginate(rows: List, page_size: int = UIConstants.LEADERBOARD_PAGE_SIZE) -> List[List]:
        """Split rows into pages; an empty board is one empty page."""
        if not rows:
            return [[]]
        return [rows[i:i + page_size] for i in range(0, len(rows), page_size)]

    async def install_leaderboard(self, channel_id: int, user_id: Optional[int] = None):
        """Point the leaderboard at a channel and render it there."""
        await self.config_service.set(LEADERBOARD_KEY, {'channel_id': channel_id, 'message_ids': []}, user_id)
        await self.refresh_leaderboard()

    async def refresh_leaderboard(self):
        refs = self.config_service.get(LEADERBOARD_KEY)
        if not refs:
            return

        pages = self.paginate(await self.leaderboard_rows())
        message_ids = await safely(
            self.gateway.render_leaderboard(refs['channel_id'], refs.get('message_ids', []), pages),
            "render leaderboard"
        )
        if message_ids is not None and list(message_ids) != refs.get('message_ids'):
            await self.config_service.set(
                LEADERBOARD_KEY, {'channel_id': refs['channel_id'], 'message_ids': list(message_ids)}
            )

    # ============================================================================
    # Match history
    # ============================================================================

    async def match_history_entry(self, match_id: int) -> Optional[HistoryEntry]:
        async with self.get_session() as session:
            match = await session.get(Match, match_id)
            if match is None:
                return None

            players = (await session.execute(
                select(MatchPlayer).where(MatchPlayer.match_id == match_id).order_by(MatchPlayer.id)
            )).scalars().all()
            veto = (await session.execute(
                select(VetoState).where(VetoState.match_id == match_id)
            )).scalar_one_or_none()

            deltas: Dict[str, int] = {}
            if match.status == MatchStatus.CLOSED:
                history = (await session.execute(
                    select(RatingHistory.team, RatingHistory.delta)
                    .where(RatingHistory.match_id == match_id, RatingHistory.reverted.is_(False))
                )).all()
                for team, delta in history:
                    deltas.setdefault(team, delta)

        return HistoryEntry(
            match_id=match.id,
            status=match.status.value,
            winner=match.winner,
            picked_map=match.picked_map,
            captain_a=veto.captain_a if veto else None,
            captain_b=veto.captain_b if veto else None,
            team_a=[mp.player_id for mp in players if mp.team == MatchConstants.TEAM_A],
            team_b=[mp.player_id for mp in players if mp.team == MatchConstants.TEAM_B],
            created_at=match.created_at,
            closed_at=match.closed_at,
            delta_a=deltas.get(MatchConstants.TEAM_A),
            delta_b=deltas.get(MatchConstants.TEAM_B),
        )

    async def upsert_match_history(self, match_id: int):
        """Create or update the history entry for one match."""
        settings = self.config_service.get(MATCH_HISTORY_KEY)
        if not settings:
            return

        entry = await self.match_history_entry(match_id)
        if entry is None:
            return

        channel_id = settings['channel_id']
        async with self.get_session() as session:
            match = await session.get(Match, match_id)
            ref = MessageRef.from_ids(match.history_channel_id, match.history_message_id)
        if ref is not None and ref.channel_id != channel_id:
            # Channel changed since this entry was posted
            ref = None

        new_ref = await safely(
            self.gateway.upsert_match_history(channel_id, ref, entry),
            f"match history #{match_id}"
        )
        if new_ref is not None and new_ref != ref:
            async with self.get_session() as session:
                await session.execute(
                    update(Match).where(Match.id == match_id).values(
                        history_channel_id=new_ref.channel_id,
                        history_message_id=new_ref.message_id
                    ).execution_options(synchronize_session=False)
                )

    async def install_match_history(self, channel_id: int, user_id: Optional[int] = None) -> int:
        """Point match history at a channel and backfill the most recent matches."""
        await self.config_service.set(MATCH_HISTORY_KEY, {'channel_id': channel_id}, user_id)

        async with self.get_session() as session:
            recent = (await session.execute(
                select(Match.id).order_by(Match.id.desc()).limit(HISTORY_BACKFILL)
            )).scalars().all()

        for match_id in reversed(recent):
            await self.upsert_match_history(match_id)
        return len(recent)

    # ============================================================================
    # Missed ready-checks
    # ============================================================================

    async def missed_ready_check_rows(self) -> List[CancelRow]:
        """Players with a positive missed ready-check total, highest first."""
        total = func.sum(CancelEvent.weight)
        async with self.get_session() as session:
            result = await session.execute(
                select(CancelEvent.player_id, total)
                .group_by(CancelEvent.player_id)
                .having(total > 0)
                .order_by(total.desc(), CancelEvent.player_id)
            )
            rows = result.all()

        return [
            CancelRow(rank=index, player_id=player_id, total=int(count))
            for index, (player_id, count) in enumerate(rows, start=1)
        ]

    async def missed_ready_checks(self, player_id: int) -> int:
        async with self.get_session() as session:
            total = await session.scalar(
                select(func.coalesce(func.sum(CancelEvent.weight), 0))
                .where(CancelEvent.player_id == player_id)
            )
        return int(total or 0)

    async def record_missed_ready_checks(self, player_ids: List[int], ready_check_id: int, session=None):
        """One weight-1 event per player evicted by an expired ready-check."""
        events = [
            CancelEvent(player_id=player_id, ready_check_id=ready_check_id,
                        reason=CancelReason.READY_CHECK_EXPIRED, weight=1)
            for player_id in player_ids
        ]
        if session is not None:
            session.add_all(events)
            return
        async with self.get_session() as own_session:
            own_session.add_all(events)

    async def adjust_missed_ready_checks(self, player_id: int, amount: int, mode: str,
                                         admin_id: int) -> int:
        """
        Adjust a player's missed ready-check total.

        Args:
            player_id: Discord id of the player
            amount: Value to add (mode='add', may be negative) or the new total (mode='set')
            mode: 'add' or 'set'
            admin_id: Admin making the change

        Returns:
            The player's new total
        """
        if mode not in ('add', 'set'):
            raise InvalidSettingError("Mode must be 'add' or 'set'.")
        if mode == 'set' and amount < 0:
            raise InvalidSettingError("The total cannot be negative.")

        current = await self.missed_ready_checks(player_id)
        if mode == 'add':
            weight, reason = amount, CancelReason.MANUAL_ADJUST
        else:
            weight, reason = amount - current, CancelReason.MANUAL_SET

        if weight != 0:
            async with self.get_session() as session:
                session.add(CancelEvent(player_id=player_id, reason=reason, weight=weight, created_by=admin_id))

        await self.refresh_cancel_board()
        return current + weight

    async def install_cancel_board(self, channel_id: int, user_id: Optional[int] = None):
        await self.config_service.set(CANCEL_BOARD_KEY, {'channel_id': channel_id}, user_id)
        await self.refresh_cancel_board()

    async def refresh_cancel_board(self):
        settings = self.config_service.get(CANCEL_BOARD_KEY)
        if not settings:
            return

        ref = MessageRef.from_dict(settings)
        rows = await self.missed_ready_check_rows()
        new_ref = await safely(
            self.gateway.upsert_cancel_board(settings['channel_id'], ref, rows),
            "missed ready-check board"
        )
        if new_ref is not None and new_ref != ref:
            await self.config_service.set(CANCEL_BOARD_KEY, new_ref.to_dict())

    # ============================================================================
    # Refresh helpers
    # ============================================================================

    async def refresh_after_result(self, match_id: int):
        """Refresh everything a finalize or reversal changes."""
        await self.refresh_leaderboard()
        await self.upsert_match_history(match_id)
