"""Leaderboard, match history and the missed ready-check board."""

import pytest

from matchbot.data_models.displays import LeaderboardRow
from matchbot.services.boards import BoardService, CANCEL_BOARD_KEY, LEADERBOARD_KEY
from matchbot.utils.exceptions import InvalidSettingError

LEADERBOARD_CHANNEL = 700
HISTORY_CHANNEL = 800
CANCEL_CHANNEL = 900


@pytest.fixture
def closed_match(mm, start_match, finish_veto):
    async def _closed(winner='A'):
        match_id = await start_match()
        await finish_veto(match_id)
        await mm.matches.finalize(match_id, winner)
        return match_id
    return _closed


class TestLeaderboard:
    async def test_ordered_by_rating_then_win_rate(self, mm, closed_match):
        await closed_match('A')
        await mm.queue.join(11, "newcomer")

        rows = await mm.boards.leaderboard_rows()

        assert [row.rank for row in rows] == list(range(1, 12))
        assert {row.player_id for row in rows[:5]} == {1, 3, 5, 7, 9}
        assert rows[0].rating == 1012
        assert rows[0].wins == 1 and rows[0].games == 1
        assert rows[5].player_id == 11
        assert rows[5].rating == 1000
        assert rows[5].display_name == "newcomer"
        assert rows[-1].rating == 988

    async def test_reversed_wins_do_not_count(self, mm, closed_match):
        match_id = await closed_match('A')
        await mm.matches.reverse(match_id)

        rows = await mm.boards.leaderboard_rows()
        assert all(row.wins == 0 and row.games == 0 and row.rating == 1000 for row in rows)

    def test_paginate(self):
        rows = list(range(65))

        pages = BoardService.paginate(rows)

        assert [len(page) for page in pages] == [30, 30, 5]
        assert BoardService.paginate([]) == [[]]

    def test_win_rate(self):
        assert LeaderboardRow(1, 1, None, 1000, 4, 1).win_rate == 25.0
        assert LeaderboardRow(1, 1, None, 1000, 0, 0).win_rate == 0.0

    async def test_install_and_refresh(self, mm, config_service, gateway, closed_match):
        await mm.boards.install_leaderboard(LEADERBOARD_CHANNEL, user_id=99)

        stored = config_service.get(LEADERBOARD_KEY)
        assert stored['channel_id'] == LEADERBOARD_CHANNEL
        assert len(stored['message_ids']) == 1

        await closed_match()

        channel_id, message_ids, pages = gateway.called('render_leaderboard')[-1]
        assert channel_id == LEADERBOARD_CHANNEL
        assert message_ids == stored['message_ids']
        assert len(pages[0]) == 10


class TestMatchHistory:
    async def test_entry_follows_the_match(self, mm, gateway, closed_match):
        match_id = await closed_match('B')

        assert await mm.boards.install_match_history(HISTORY_CHANNEL) == 1

        channel_id, ref, entry = gateway.called('upsert_match_history')[-1]
        assert channel_id == HISTORY_CHANNEL
        assert ref is None
        assert entry.match_id == match_id
        assert entry.status == 'closed'
        assert entry.winner == 'B'
        assert (entry.delta_a, entry.delta_b) == (-12, 12)
        assert entry.team_a == [1, 3, 5, 7, 9]
        assert (entry.captain_a, entry.captain_b) == (1, 2)

        await mm.matches.reverse(match_id)
        channel_id, ref, entry = gateway.called('upsert_match_history')[-1]
        # Edited in place
        assert ref is not None and ref.channel_id == HISTORY_CHANNEL
        assert entry.status == 'reversed'
        assert entry.delta_a is None

    async def test_new_matches_are_posted(self, mm, gateway, start_match):
        await mm.boards.install_match_history(HISTORY_CHANNEL)

        match_id = await start_match()

        entries = [args[2] for args in gateway.called('upsert_match_history')]
        assert entries[-1].match_id == match_id
        assert entries[-1].status == 'voting'


class TestMissedReadyChecks:
    async def test_adjust(self, mm):
        assert await mm.boards.adjust_missed_ready_checks(1, 2, 'add', admin_id=99) == 2
        assert await mm.boards.adjust_missed_ready_checks(1, 5, 'set', admin_id=99) == 5
        assert await mm.boards.adjust_missed_ready_checks(1, -5, 'add', admin_id=99) == 0
        assert await mm.boards.missed_ready_checks(1) == 0
        assert await mm.boards.missed_ready_check_rows() == []

    async def test_adjust_validation(self, mm):
        with pytest.raises(InvalidSettingError):
            await mm.boards.adjust_missed_ready_checks(1, -1, 'set', admin_id=99)
        with pytest.raises(InvalidSettingError):
            await mm.boards.adjust_missed_ready_checks(1, 1, 'double', admin_id=99)

    async def test_rows_ranked_by_total(self, mm):
        await mm.boards.record_missed_ready_checks([3, 4], ready_check_id=1)
        await mm.boards.record_missed_ready_checks([4], ready_check_id=2)

        rows = await mm.boards.missed_ready_check_rows()
        assert [(row.rank, row.player_id, row.total) for row in rows] == [(1, 4, 2), (2, 3, 1)]

    async def test_board_refreshes_after_timeout(self, mm, config_service, gateway, join_all):
        await mm.boards.install_cancel_board(CANCEL_CHANNEL)
        assert config_service.get(CANCEL_BOARD_KEY)['message_id'] is not None

        await config_service.set('queue.ready_enabled', True)
        await join_all(range(1, 11))
        pending = await mm.ready_checks.pending()
        await mm.ready_checks.confirm_many(pending.id, range(1, 10))
        await mm.ready_checks.on_timeout(pending.id)

        channel_id, ref, rows = gateway.called('upsert_cancel_board')[-1]
        assert channel_id == CANCEL_CHANNEL
        assert ref is not None
        assert [(row.player_id, row.total) for row in rows] == [(10, 1)]
