"""Captain votes, review, finalize and the admin match transitions."""

import pytest
from sqlalchemy import select

from matchbot.database.models import MatchStatus, Player, RatingHistory
from matchbot.operations.match_operations import VoteOutcome
from matchbot.utils.exceptions import (
    AlreadyReversedError, InvalidMatchStateError, InvalidSettingError, MatchAlreadyClosedError,
    MatchNotFoundError, NotACaptainError, VetoInProgressError
)

TEAM_A = [1, 3, 5, 7, 9]
TEAM_B = [2, 4, 6, 8, 10]


async def ratings(database, player_ids):
    async with database.get_session() as session:
        players = (await session.execute(
            select(Player).where(Player.discord_id.in_(player_ids))
        )).scalars().all()
    return {player.discord_id: (player.rating, player.games_played) for player in players}


async def history(database, match_id):
    async with database.get_session() as session:
        return list((await session.execute(
            select(RatingHistory).where(RatingHistory.match_id == match_id).order_by(RatingHistory.id)
        )).scalars().all())


@pytest.fixture
def voting_match(mm, start_match, finish_veto):
    """A match with the veto done, captains 1 (A) and 2 (B)."""
    async def _voting():
        match_id = await start_match()
        await finish_veto(match_id)
        return match_id
    return _voting


class TestCaptainVote:
    async def test_agreement_finalizes_with_elo(self, mm, database, voting_match, gateway):
        match_id = await voting_match()

        receipt = await mm.matches.cast_vote(match_id, 1, 'A')
        assert receipt.outcome == VoteOutcome.RECORDED

        receipt = await mm.matches.cast_vote(match_id, 2, 'A')
        assert receipt.outcome == VoteOutcome.FINALIZED
        assert (receipt.result.delta_a, receipt.result.delta_b) == (12, -12)

        current = await ratings(database, TEAM_A + TEAM_B)
        assert all(current[player_id] == (1012, 1) for player_id in TEAM_A)
        assert all(current[player_id] == (988, 1) for player_id in TEAM_B)

        match = await mm.matches.get_match(match_id)
        assert match.status == MatchStatus.CLOSED
        assert match.winner == 'A'
        assert match.closed_at is not None
        assert gateway.called('announce_result')
        assert gateway.called('archive_match_space') == [(match.thread_id,)]

        # Released players can queue again
        await mm.queue.join(1)

    async def test_vote_can_change_before_the_other_captain(self, mm, voting_match):
        match_id = await voting_match()

        await mm.matches.cast_vote(match_id, 1, 'B')
        await mm.matches.cast_vote(match_id, 1, 'A')
        receipt = await mm.matches.cast_vote(match_id, 2, 'A')

        assert receipt.outcome == VoteOutcome.FINALIZED
        assert receipt.result.winner == 'A'

    async def test_only_captains_vote_after_veto(self, mm, start_match, finish_veto):
        match_id = await start_match()

        with pytest.raises(VetoInProgressError):
            await mm.matches.cast_vote(match_id, 1, 'A')

        await finish_veto(match_id)
        with pytest.raises(NotACaptainError):
            await mm.matches.cast_vote(match_id, 3, 'A')
        with pytest.raises(InvalidSettingError):
            await mm.matches.cast_vote(match_id, 1, 'C')
        with pytest.raises(MatchNotFoundError):
            await mm.matches.cast_vote(match_id + 100, 1, 'A')

    async def test_disagreement_goes_to_review(self, mm, database, voting_match, gateway):
        match_id = await voting_match()

        await mm.matches.cast_vote(match_id, 1, 'A')
        receipt = await mm.matches.cast_vote(match_id, 2, 'B')

        assert receipt.outcome == VoteOutcome.ESCALATED
        match = await mm.matches.get_match(match_id)
        assert match.status == MatchStatus.REVIEW
        request = gateway.called('post_review_request')[-1][0]
        assert (request.vote_a, request.vote_b) == ('A', 'B')
        assert match.review_message_id is not None

        # Captains cannot vote any more
        with pytest.raises(InvalidMatchStateError):
            await mm.matches.cast_vote(match_id, 1, 'B')

        result = await mm.matches.resolve_review(match_id, 'B', admin_id=99)

        assert result.winner == 'B'
        assert result.decided_by == 99
        current = await ratings(database, [1, 2])
        assert current[1] == (988, 1)
        assert current[2] == (1012, 1)

        with pytest.raises(InvalidMatchStateError):
            await mm.matches.resolve_review(match_id, 'A', admin_id=99)


class TestFinalize:
    async def test_finalize_applies_once(self, mm, database, voting_match):
        match_id = await voting_match()

        assert await mm.matches.finalize(match_id, 'A') is not None
        assert await mm.matches.finalize(match_id, 'B') is None

        assert len(await history(database, match_id)) == 10
        assert (await ratings(database, [1]))[1] == (1012, 1)
        assert (await mm.matches.get_match(match_id)).winner == 'A'

    async def test_history_rows(self, mm, database, voting_match):
        match_id = await voting_match()
        await mm.matches.finalize(match_id, 'B')

        rows = await history(database, match_id)
        winners = {row.player_id for row in rows if row.won}
        assert winners == set(TEAM_B)
        assert all(row.new_rating - row.old_rating == row.delta for row in rows)
        assert not any(row.reverted for row in rows)


class TestReverse:
    async def test_reverse_restores_ratings_once(self, mm, database, voting_match):
        match_id = await voting_match()
        await mm.matches.finalize(match_id, 'A')

        result = await mm.matches.reverse(match_id)

        assert result.previous_winner == 'A'
        assert len(result.reverted) == 10
        current = await ratings(database, TEAM_A + TEAM_B)
        assert set(current.values()) == {(1000, 0)}

        match = await mm.matches.get_match(match_id)
        assert match.status == MatchStatus.REVERSED
        assert match.winner is None
        assert match.previous_winner == 'A'
        assert all(row.reverted for row in await history(database, match_id))

        with pytest.raises(AlreadyReversedError):
            await mm.matches.reverse(match_id)
        assert set((await ratings(database, TEAM_A)).values()) == {(1000, 0)}

    async def test_only_closed_matches_reverse(self, mm, voting_match):
        match_id = await voting_match()
        with pytest.raises(InvalidMatchStateError):
            await mm.matches.reverse(match_id)

    async def test_force_win_refinalizes_reversed_match(self, mm, database, voting_match):
        match_id = await voting_match()
        await mm.matches.finalize(match_id, 'A')
        await mm.matches.reverse(match_id)

        result = await mm.matches.force_win(match_id, 'B', admin_id=99)

        assert result.winner == 'B'
        current = await ratings(database, [1, 2])
        assert current[1] == (988, 1)
        assert current[2] == (1012, 1)
        assert len(await history(database, match_id)) == 20

    async def test_reverse_then_same_winner_matches_never_reversing(self, mm, database, voting_match):
        match_id = await voting_match()
        await mm.matches.finalize(match_id, 'A')
        before = await ratings(database, TEAM_A + TEAM_B)

        await mm.matches.reverse(match_id)
        await mm.matches.force_win(match_id, 'A', admin_id=99)

        current = await ratings(database, TEAM_A + TEAM_B)
        assert current == before
        assert all(current[player_id] == (1012, 1) for player_id in TEAM_A)
        assert all(current[player_id] == (988, 1) for player_id in TEAM_B)
        live_rows = [row for row in await history(database, match_id) if not row.reverted]
        assert len(live_rows) == 10
        assert (await mm.matches.get_match(match_id)).status == MatchStatus.CLOSED

    async def test_set_winner(self, mm, database, voting_match):
        match_id = await voting_match()
        await mm.matches.finalize(match_id, 'A')

        result = await mm.matches.set_winner(match_id, 'B', admin_id=99)

        assert result.winner == 'B'
        match = await mm.matches.get_match(match_id)
        assert match.status == MatchStatus.CLOSED
        assert match.previous_winner == 'A'
        current = await ratings(database, [1, 2])
        assert current[1] == (988, 1)
        assert current[2] == (1012, 1)

    async def test_set_winner_needs_closed_match(self, mm, voting_match):
        match_id = await voting_match()
        with pytest.raises(InvalidMatchStateError):
            await mm.matches.set_winner(match_id, 'A', admin_id=99)


class TestForceWinAndCancel:
    async def test_force_win_waits_for_veto(self, mm, start_match, finish_veto):
        match_id = await start_match()

        with pytest.raises(VetoInProgressError):
            await mm.matches.force_win(match_id, 'A', admin_id=99)

        await finish_veto(match_id)
        result = await mm.matches.force_win(match_id, 'A', admin_id=99)
        assert result.decided_by == 99

        with pytest.raises(MatchAlreadyClosedError):
            await mm.matches.force_win(match_id, 'B', admin_id=99)

    async def test_force_win_on_review(self, mm, voting_match):
        match_id = await voting_match()
        await mm.matches.cast_vote(match_id, 1, 'A')
        await mm.matches.cast_vote(match_id, 2, 'B')

        result = await mm.matches.force_win(match_id, 'A', admin_id=99)
        assert result.winner == 'A'

    async def test_cancel(self, mm, database, start_match, finish_veto, gateway):
        match_id = await start_match()

        with pytest.raises(VetoInProgressError):
            await mm.matches.cancel(match_id)

        await finish_veto(match_id)
        match = await mm.matches.cancel(match_id)

        assert match.status == MatchStatus.ABANDONED
        assert match.abandoned_at is not None
        assert set((await ratings(database, TEAM_A + TEAM_B)).values()) == {(1000, 0)}
        assert gateway.called('destroy_voice_rooms') == [([match.voice_a_channel_id, match.voice_b_channel_id],)]
        assert await mm.queue.active_match_id(1) is None

        with pytest.raises(InvalidMatchStateError):
            await mm.matches.cancel(match_id)
        with pytest.raises(InvalidMatchStateError):
            await mm.matches.force_win(match_id, 'A', admin_id=99)

    async def test_cancel_with_three_maps_left_then_after_pick(self, mm, start_match):
        match_id = await start_match()
        state = await mm.veto.get_state(match_id)
        while len(state.remaining) > 3:
            state = await mm.veto.ban_map(match_id, state.captain_for(state.current_team), state.remaining[0])

        with pytest.raises(VetoInProgressError):
            await mm.matches.cancel(match_id)

        while state.is_active:
            state = await mm.veto.ban_map(match_id, state.captain_for(state.current_team), state.remaining[0])
        assert len(state.remaining) == 1
        assert (await mm.matches.get_match(match_id)).status == MatchStatus.VOTING

        match = await mm.matches.cancel(match_id)
        assert match.status == MatchStatus.ABANDONED

    async def test_cancel_closed_match_rejected(self, mm, voting_match):
        match_id = await voting_match()
        await mm.matches.finalize(match_id, 'A')

        with pytest.raises(InvalidMatchStateError):
            await mm.matches.cancel(match_id)

    async def test_cancel_reversed_match(self, mm, database, voting_match):
        match_id = await voting_match()
        await mm.matches.finalize(match_id, 'A')
        await mm.matches.reverse(match_id)

        match = await mm.matches.cancel(match_id)
        assert match.status == MatchStatus.ABANDONED
        assert (await ratings(database, [1]))[1] == (1000, 0)

    async def test_unknown_match(self, mm):
        with pytest.raises(MatchNotFoundError):
            await mm.matches.cancel(404)
