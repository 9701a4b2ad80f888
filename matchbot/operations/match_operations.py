"""
Match Operations - match lifecycle from team assignment to final result

Status flow:

    pending -> voting -> closed
                      -> review -> closed
    pending/voting/review/reversed -> abandoned      (cancel)
    closed -> reversed -> closed                     (reverse, set-winner)

Every transition is a conditional UPDATE on Match.status; the caller that
changes a row wins and everyone else sees a no-op or an InvalidMatchStateError.
Discord side effects run after the commit through `safely`, so a deleted
message or a missing permission never blocks a transition.

Result protocol: the two captains vote once the veto has picked a map.
Agreement finalizes the match; disagreement moves it to review where an
admin decides.
"""

import random
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence, Tuple, TYPE_CHECKING

from sqlalchemy import select, update, delete

from matchbot.config import Config
from matchbot.constants import MatchConstants, VetoConstants
from matchbot.data_models.displays import (
    FinalizeResult, MatchRecap, MessageRef, RatingChange, ReverseResult, ReviewRequest, VotePrompt
)
from matchbot.database.models import (
    Match, MatchPlayer, MatchStatus, Player, QueueEntry, RatingHistory, VetoState, Vote
)
from matchbot.services.gateway import safely
from matchbot.utils.elo import EloCalculator
from matchbot.utils.exceptions import (
    AlreadyReversedError, InvalidMatchStateError, InvalidSettingError, MatchAlreadyClosedError,
    MatchNotFoundError, NotACaptainError, VetoInProgressError
)
from matchbot.utils.logger import setup_logger
from matchbot.utils.time_utils import utc_now

if TYPE_CHECKING:
    from matchbot.services.matchmaking import Matchmaking

logger = setup_logger(__name__)

MATCH_SEQUENCE = 'match_id'

# Statuses finalize() may close from
FINALIZABLE = [MatchStatus.PENDING, MatchStatus.VOTING, MatchStatus.REVIEW, MatchStatus.REVERSED]


class VoteOutcome(Enum):
    RECORDED = "recorded"      # Waiting for the other captain
    FINALIZED = "finalized"    # Captains agreed
    ESCALATED = "escalated"    # Captains disagreed, sent to review


@dataclass(frozen=True)
class VoteReceipt:
    outcome: VoteOutcome
    result: Optional[FinalizeResult] = None


def _check_team(team: str) -> str:
    if team not in MatchConstants.TEAMS:
        raise InvalidSettingError(f"Team must be one of {', '.join(MatchConstants.TEAMS)}.")
    return team


class MatchOperations:
    """Match creation, captain votes and result bookkeeping."""

    def __init__(self, matchmaking: 'Matchmaking'):
        self.mm = matchmaking
        self.db = matchmaking.db
        self.config_service = matchmaking.config_service
        self.logger = logger

    # ============================================================================
    # Queries
    # ============================================================================

    async def get_match(self, match_id: int) -> Match:
        async with self.db.get_session() as session:
            match = await session.get(Match, match_id)
        if match is None:
            raise MatchNotFoundError(match_id)
        return match

    async def get_match_players(self, match_id: int) -> List[MatchPlayer]:
        async with self.db.get_session() as session:
            return list((await session.execute(
                select(MatchPlayer).where(MatchPlayer.match_id == match_id).order_by(MatchPlayer.id)
            )).scalars().all())

    async def teams(self, match_id: int) -> Tuple[List[Tuple[int, int]], List[Tuple[int, int]]]:
        """(player_id, rating at start) per team, in balancing order."""
        players = await self.get_match_players(match_id)
        team_a = [(mp.player_id, mp.rating_at_start) for mp in players if mp.team == MatchConstants.TEAM_A]
        team_b = [(mp.player_id, mp.rating_at_start) for mp in players if mp.team == MatchConstants.TEAM_B]
        return team_a, team_b

    # ============================================================================
    # Match start
    # ============================================================================

    async def claim_match_locked(self) -> Optional[int]:
        """
        Persist a new match for the first QUEUE_SIZE queue entries.

        Match row, participants and queue removal commit together. Callers must
        hold mm.lock.

        Returns:
            The new match id, or None if the queue is not full
        """
        async with self.db.transaction() as session:
            entries = (await session.execute(
                select(QueueEntry).order_by(QueueEntry.joined_at, QueueEntry.id)
                .limit(MatchConstants.QUEUE_SIZE)
            )).scalars().all()
            if len(entries) < MatchConstants.QUEUE_SIZE:
                return None

            player_ids = [entry.player_id for entry in entries]
            ratings = {}
            for player_id in player_ids:
                player = await self.mm.queue.ensure_player(session, player_id)
                ratings[player_id] = player.rating

            split = EloCalculator.balance_teams([(player_id, ratings[player_id]) for player_id in player_ids])
            match_id = await self.db.next_sequence(MATCH_SEQUENCE, session)

            session.add(Match(id=match_id, status=MatchStatus.PENDING, created_at=utc_now()))
            await session.flush()
            for team, roster in ((MatchConstants.TEAM_A, split.team_a), (MatchConstants.TEAM_B, split.team_b)):
                session.add_all([
                    MatchPlayer(match_id=match_id, player_id=player_id, team=team,
                                rating_at_start=ratings[player_id])
                    for player_id in roster
                ])
            await session.execute(delete(QueueEntry).where(QueueEntry.player_id.in_(player_ids)))

        self.logger.info(
            f"Match {match_id} created: A={split.team_a} ({split.sum_a}) "
            f"B={split.team_b} ({split.sum_b}) diff={split.diff}"
        )
        return match_id

    def select_captains(self, team_a: Sequence[Tuple[int, int]], team_b: Sequence[Tuple[int, int]],
                        mode: str, rng: Optional[random.Random] = None) -> Tuple[int, int]:
        """
        Pick one captain per team.

        Args:
            team_a, team_b: (player_id, rating) pairs
            mode: 'random' (uniform within the team) or 'highest' (top rating,
                first in stable sorted order on ties)
            rng: Random source, defaults to the coordinator's
        """
        if mode not in VetoConstants.CAPTAIN_MODES:
            raise InvalidSettingError(f"Captain mode must be one of {', '.join(VetoConstants.CAPTAIN_MODES)}.")
        rng = rng or self.mm.rng

        def pick(team):
            if mode == 'highest':
                return sorted(team, key=lambda p: p[1], reverse=True)[0][0]
            return rng.choice([player_id for player_id, _ in team])

        return pick(team_a), pick(team_b)

    async def setup_match(self, match_id: int):
        """Create the coordination space, pick captains and start the veto."""
        match = await self.get_match(match_id)
        if match.status != MatchStatus.PENDING:
            return

        team_a, team_b = await self.teams(match_id)
        ids_a = [player_id for player_id, _ in team_a]
        ids_b = [player_id for player_id, _ in team_b]
        settings = self.config_service.veto_settings()
        captain_a, captain_b = self.select_captains(team_a, team_b, settings.captain_mode)

        thread_id = None
        voice = None
        channel_id = self.mm.queue.panel_channel_id()
        if channel_id is not None:
            thread_id = await safely(
                self.mm.gateway.create_match_space(channel_id, match_id, ids_a + ids_b),
                f"match {match_id} thread"
            )
            voice = await safely(
                self.mm.gateway.create_voice_rooms(channel_id, match_id, ids_a, ids_b),
                f"match {match_id} voice rooms"
            )

        async with self.db.transaction() as session:
            result = await session.execute(
                update(Match).where(Match.id == match_id, Match.status == MatchStatus.PENDING).values(
                    status=MatchStatus.VOTING,
                    thread_id=thread_id,
                    voice_a_channel_id=voice[0] if voice else None,
                    voice_b_channel_id=voice[1] if voice else None,
                ).execution_options(synchronize_session=False)
            )
        if result.rowcount == 0:
            # Cancelled or forced while the space was being created
            await self._release_space(thread_id, voice)
            return

        state = await self.mm.veto.start_veto(match_id, ids_a, ids_b, captain_a, captain_b, settings)
        await self.refresh_recap(match_id)
        await self.mm.veto.refresh_board(match_id)
        if state.is_finished:
            await self.open_vote(match_id)

        await self.mm.boards.upsert_match_history(match_id)
        self.logger.info(f"Match {match_id} started: captains A={captain_a} B={captain_b}, thread={thread_id}")

    async def recap(self, match_id: int) -> Optional[MatchRecap]:
        state = await self.mm.veto.get_state(match_id)
        if state is None:
            return None
        team_a, team_b = await self.teams(match_id)
        return MatchRecap(match_id=match_id, team_a=team_a, team_b=team_b,
                          captain_a=state.captain_a, captain_b=state.captain_b)

    async def refresh_recap(self, match_id: int):
        match = await self.get_match(match_id)
        recap = await self.recap(match_id)
        if match.thread_id is None or recap is None:
            return

        ref = MessageRef.from_ids(match.thread_id, match.recap_message_id)
        new_ref = await safely(self.mm.gateway.upsert_recap(match.thread_id, ref, recap), f"match {match_id} recap")
        if new_ref is not None and new_ref != ref:
            await self._set_fields(match_id, recap_message_id=new_ref.message_id)

    # ============================================================================
    # Captain vote and review
    # ============================================================================

    async def open_vote(self, match_id: int):
        """Post the captain vote once the veto has picked a map."""
        match = await self.get_match(match_id)
        state = await self.mm.veto.get_state(match_id)
        if match.status != MatchStatus.VOTING or state is None or not state.is_finished:
            return
        if match.thread_id is None or match.vote_message_id is not None:
            return

        prompt = VotePrompt(match_id=match_id, captain_a=state.captain_a, captain_b=state.captain_b,
                            picked_map=state.picked)
        ref = await safely(self.mm.gateway.post_vote_prompt(match.thread_id, prompt), f"match {match_id} vote")
        if ref is not None:
            await self._set_fields(match_id, vote_message_id=ref.message_id)

    async def cast_vote(self, match_id: int, player_id: int, team: str) -> VoteReceipt:
        """
        Record a captain's result vote.

        Raises:
            MatchNotFoundError, InvalidMatchStateError, VetoInProgressError, NotACaptainError
        """
        _check_team(team)
        async with self.db.transaction() as session:
            match = await session.get(Match, match_id)
            if match is None:
                raise MatchNotFoundError(match_id)
            if match.status != MatchStatus.VOTING:
                raise InvalidMatchStateError(match_id, match.status.value, "vote on")

            state = (await session.execute(
                select(VetoState).where(VetoState.match_id == match_id)
            )).scalar_one_or_none()
            if state is None or not state.is_finished:
                raise VetoInProgressError(match_id)
            if player_id not in (state.captain_a, state.captain_b):
                raise NotACaptainError(match_id, player_id)

            vote = (await session.execute(
                select(Vote).where(Vote.match_id == match_id, Vote.player_id == player_id)
            )).scalar_one_or_none()
            if vote is None:
                session.add(Vote(match_id=match_id, player_id=player_id, team=team))
            else:
                vote.team = team
            await session.flush()

            votes = dict((await session.execute(
                select(Vote.player_id, Vote.team).where(
                    Vote.match_id == match_id, Vote.player_id.in_([state.captain_a, state.captain_b])
                )
            )).all())
            vote_a = votes.get(state.captain_a)
            vote_b = votes.get(state.captain_b)

        self.logger.info(f"Match {match_id}: captain {player_id} voted {team}")
        if vote_a is None or vote_b is None:
            return VoteReceipt(VoteOutcome.RECORDED)

        if vote_a == vote_b:
            result = await self.finalize(match_id, vote_a)
            if result is None:
                return VoteReceipt(VoteOutcome.RECORDED)
            return VoteReceipt(VoteOutcome.FINALIZED, result)

        await self._escalate(match_id, state.captain_a, state.captain_b, vote_a, vote_b)
        return VoteReceipt(VoteOutcome.ESCALATED)

    async def _escalate(self, match_id: int, captain_a: int, captain_b: int, vote_a: str, vote_b: str):
        async with self.db.transaction() as session:
            result = await session.execute(
                update(Match).where(Match.id == match_id, Match.status == MatchStatus.VOTING)
                .values(status=MatchStatus.REVIEW)
                .execution_options(synchronize_session=False)
            )
        if result.rowcount == 0:
            return

        match = await self.get_match(match_id)
        self.logger.info(f"Match {match_id} disputed: A voted {vote_a}, B voted {vote_b}")

        vote_ref = MessageRef.from_ids(match.thread_id, match.vote_message_id)
        if vote_ref is not None:
            await safely(self.mm.gateway.disable_components([vote_ref]), f"match {match_id} vote buttons")

        request = ReviewRequest(match_id=match_id, thread_id=match.thread_id, captain_a=captain_a,
                                captain_b=captain_b, vote_a=vote_a, vote_b=vote_b)
        ref = await safely(self.mm.gateway.post_review_request(request), f"match {match_id} review request")
        if ref is not None:
            await self._set_fields(match_id, review_channel_id=ref.channel_id, review_message_id=ref.message_id)
        await self.mm.boards.upsert_match_history(match_id)

    async def resolve_review(self, match_id: int, team: str, admin_id: int) -> FinalizeResult:
        """Admin decision on a disputed result."""
        _check_team(team)
        match = await self.get_match(match_id)
        if match.status != MatchStatus.REVIEW:
            raise InvalidMatchStateError(match_id, match.status.value, "review")

        result = await self.finalize(match_id, team, decided_by=admin_id)
        if result is None:
            latest = await self.get_match(match_id)
            raise InvalidMatchStateError(match_id, latest.status.value, "review")
        return result

    # ============================================================================
    # Finalize
    # ============================================================================

    async def finalize(self, match_id: int, winner: str, decided_by: Optional[int] = None) -> Optional[FinalizeResult]:
        """
        Close a match with a winner and apply ratings exactly once.

        The status change and every rating update commit together. A match
        that is already closed or abandoned is left alone.

        Returns:
            FinalizeResult, or None when the match was not finalizable
        """
        _check_team(winner)
        async with self.db.transaction() as session:
            result = await session.execute(
                update(Match).where(Match.id == match_id, Match.status.in_(FINALIZABLE)).values(
                    status=MatchStatus.CLOSED,
                    winner=winner,
                    closed_at=utc_now(),
                    decided_by=decided_by,
                ).execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                self.logger.info(f"Finalize of match {match_id} skipped: not finalizable")
                return None

            participants = (await session.execute(
                select(MatchPlayer).where(MatchPlayer.match_id == match_id).order_by(MatchPlayer.id)
            )).scalars().all()

            ratings = {}
            for participant in participants:
                player = await self.mm.queue.ensure_player(session, participant.player_id)
                ratings[participant.player_id] = player.rating

            avg_a = EloCalculator.team_average(
                [ratings[p.player_id] for p in participants if p.team == MatchConstants.TEAM_A])
            avg_b = EloCalculator.team_average(
                [ratings[p.player_id] for p in participants if p.team == MatchConstants.TEAM_B])
            k_factor = int(self.config_service.get('elo.k_factor', Config.ELO_K_FACTOR))
            deltas = EloCalculator.compute_team_deltas(avg_a, avg_b, winner, k_factor)

            changes = []
            for participant in participants:
                delta = deltas.for_team(participant.team)
                old_rating = ratings[participant.player_id]
                await session.execute(
                    update(Player).where(Player.discord_id == participant.player_id).values(
                        rating=Player.rating + delta,
                        games_played=Player.games_played + 1,
                    ).execution_options(synchronize_session=False)
                )
                session.add(RatingHistory(
                    player_id=participant.player_id,
                    match_id=match_id,
                    team=participant.team,
                    old_rating=old_rating,
                    new_rating=old_rating + delta,
                    delta=delta,
                    won=participant.team == winner,
                ))
                changes.append(RatingChange(player_id=participant.player_id, team=participant.team,
                                            old_rating=old_rating, new_rating=old_rating + delta, delta=delta))

            picked_map = (await session.execute(
                select(Match.picked_map).where(Match.id == match_id)
            )).scalar_one_or_none()

        outcome = FinalizeResult(
            match_id=match_id, winner=winner, avg_a=avg_a, avg_b=avg_b,
            delta_a=deltas.delta_a, delta_b=deltas.delta_b, changes=changes,
            picked_map=picked_map, decided_by=decided_by,
        )
        self.logger.info(
            f"Match {match_id} finalized: winner {winner}, avg A={avg_a} B={avg_b}, "
            f"delta A={EloCalculator.format_elo_change(deltas.delta_a)} "
            f"B={EloCalculator.format_elo_change(deltas.delta_b)}"
        )

        match = await self.get_match(match_id)
        if match.thread_id is not None:
            await safely(self.mm.gateway.announce_result(match.thread_id, outcome), f"match {match_id} result")
        await self._release(match)
        await self.mm.boards.refresh_after_result(match_id)
        return outcome

    # ============================================================================
    # Admin transitions
    # ============================================================================

    async def reverse(self, match_id: int) -> ReverseResult:
        """
        Undo a finalized match's rating effects.

        Raises:
            MatchNotFoundError, AlreadyReversedError, InvalidMatchStateError
        """
        async with self.db.transaction() as session:
            match = await session.get(Match, match_id)
            if match is None:
                raise MatchNotFoundError(match_id)
            if match.status == MatchStatus.REVERSED:
                raise AlreadyReversedError(match_id)
            if match.status != MatchStatus.CLOSED:
                raise InvalidMatchStateError(match_id, match.status.value, "reverse")
            previous_winner = match.winner

            result = await session.execute(
                update(Match).where(Match.id == match_id, Match.status == MatchStatus.CLOSED).values(
                    status=MatchStatus.REVERSED,
                    previous_winner=previous_winner,
                    winner=None,
                    reversed_at=utc_now(),
                ).execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise AlreadyReversedError(match_id)

            history = (await session.execute(
                select(RatingHistory).where(RatingHistory.match_id == match_id, RatingHistory.reverted.is_(False))
            )).scalars().all()

            reverted = []
            for row in history:
                await session.execute(
                    update(Player).where(Player.discord_id == row.player_id).values(
                        rating=Player.rating - row.delta,
                        games_played=Player.games_played - 1,
                    ).execution_options(synchronize_session=False)
                )
                reverted.append((row.player_id, row.delta))

            await session.execute(
                update(RatingHistory)
                .where(RatingHistory.match_id == match_id, RatingHistory.reverted.is_(False))
                .values(reverted=True, reverted_at=utc_now())
                .execution_options(synchronize_session=False)
            )

        self.logger.info(f"Match {match_id} reversed (was {previous_winner}), {len(reverted)} ratings restored")
        await self.mm.boards.refresh_after_result(match_id)
        return ReverseResult(match_id=match_id, previous_winner=previous_winner, reverted=reverted)

    async def set_winner(self, match_id: int, team: str, admin_id: int) -> FinalizeResult:
        """Correct the winner of a closed match: reverse, then finalize again."""
        _check_team(team)
        match = await self.get_match(match_id)
        if match.status != MatchStatus.CLOSED:
            raise InvalidMatchStateError(match_id, match.status.value, "set the winner of")

        await self.reverse(match_id)
        result = await self.finalize(match_id, team, decided_by=admin_id)
        if result is None:
            latest = await self.get_match(match_id)
            raise InvalidMatchStateError(match_id, latest.status.value, "set the winner of")
        return result

    async def force_win(self, match_id: int, team: str, admin_id: int) -> FinalizeResult:
        """
        Finalize an unfinished match with an admin-chosen winner.

        Raises:
            MatchNotFoundError, MatchAlreadyClosedError, InvalidMatchStateError, VetoInProgressError
        """
        _check_team(team)
        match = await self.get_match(match_id)
        if match.status == MatchStatus.CLOSED:
            raise MatchAlreadyClosedError(match_id)
        if match.status == MatchStatus.ABANDONED:
            raise InvalidMatchStateError(match_id, match.status.value, "force a winner for")

        state = await self.mm.veto.get_state(match_id)
        if state is not None and state.is_active:
            raise VetoInProgressError(match_id)

        result = await self.finalize(match_id, team, decided_by=admin_id)
        if result is None:
            raise MatchAlreadyClosedError(match_id)
        return result

    async def cancel(self, match_id: int) -> Match:
        """
        Abandon an unfinished match without rating effects.

        Rejected for closed or abandoned matches and while the veto still has
        more than one map left.
        """
        match = await self.get_match(match_id)
        if match.status in (MatchStatus.CLOSED, MatchStatus.ABANDONED):
            raise InvalidMatchStateError(match_id, match.status.value, "cancel")

        state = await self.mm.veto.get_state(match_id)
        if state is not None and state.is_active:
            raise VetoInProgressError(match_id)

        async with self.db.transaction() as session:
            result = await session.execute(
                update(Match)
                .where(Match.id == match_id,
                       Match.status.notin_([MatchStatus.CLOSED, MatchStatus.ABANDONED]))
                .values(status=MatchStatus.ABANDONED, abandoned_at=utc_now())
                .execution_options(synchronize_session=False)
            )
        if result.rowcount == 0:
            latest = await self.get_match(match_id)
            raise InvalidMatchStateError(match_id, latest.status.value, "cancel")

        self.logger.info(f"Match {match_id} abandoned")
        match = await self.get_match(match_id)
        await self._release(match)
        await self.mm.boards.upsert_match_history(match_id)
        return match

    # ============================================================================
    # Helpers
    # ============================================================================

    async def _release(self, match: Match):
        """Stop timers, disable buttons, archive the thread and drop voice rooms."""
        self.mm.veto.cancel_timers(match.id)

        refs = [
            MessageRef.from_ids(match.thread_id, match.vote_message_id),
            MessageRef.from_ids(match.review_channel_id, match.review_message_id),
        ]
        state = await self.mm.veto.get_state(match.id)
        if state is not None:
            refs.append(MessageRef.from_ids(state.channel_id, state.message_id))
        refs = [ref for ref in refs if ref is not None]
        if refs:
            await safely(self.mm.gateway.disable_components(refs), f"match {match.id} buttons")

        voice = None
        if match.voice_a_channel_id or match.voice_b_channel_id:
            voice = (match.voice_a_channel_id, match.voice_b_channel_id)
        await self._release_space(match.thread_id, voice)

    async def _release_space(self, thread_id: Optional[int], voice: Optional[Tuple[Optional[int], Optional[int]]]):
        if thread_id is not None:
            await safely(self.mm.gateway.archive_match_space(thread_id), f"archive thread {thread_id}")
        if voice:
            channel_ids = [channel_id for channel_id in voice if channel_id]
            if channel_ids:
                await safely(self.mm.gateway.destroy_voice_rooms(channel_ids), "destroy voice rooms")

    async def _set_fields(self, match_id: int, **values):
        async with self.db.transaction() as session:
            await session.execute(
                update(Match).where(Match.id == match_id).values(**values)
                .execution_options(synchronize_session=False)
            )
