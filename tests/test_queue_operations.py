"""Queue join/leave and the start trigger."""

import pytest
from sqlalchemy import update

from matchbot.database.models import Player
from matchbot.utils.exceptions import (
    AlreadyInActiveMatchError, AlreadyQueuedError, InvalidSettingError,
    NotQueuedError, NothingToUpdateError, PlayerBannedError
)


class TestJoinLeave:
    async def test_join_returns_count_in_order(self, mm):
        assert await mm.queue.join(11, "eleven") == 1
        assert await mm.queue.join(5, "five") == 2
        assert await mm.queue.player_ids() == [11, 5]

    async def test_join_creates_player_with_baseline_rating(self, mm, database):
        await mm.queue.join(11, "eleven")

        async with database.get_session() as session:
            player = await mm.queue.ensure_player(session, 11)
        assert player.rating == 1000
        assert player.display_name == "eleven"
        assert player.games_played == 0

    async def test_double_join(self, mm):
        await mm.queue.join(1)
        with pytest.raises(AlreadyQueuedError):
            await mm.queue.join(1)
        assert await mm.queue.count() == 1

    async def test_leave(self, mm):
        await mm.queue.join(1)
        await mm.queue.join(2)

        assert await mm.queue.leave(1) == 1
        assert await mm.queue.player_ids() == [2]
        with pytest.raises(NotQueuedError):
            await mm.queue.leave(1)

    async def test_banned_player_cannot_join(self, mm, database):
        async with database.transaction() as session:
            await mm.queue.ensure_player(session, 1)
            await session.execute(update(Player).where(Player.discord_id == 1).values(banned=True))

        with pytest.raises(PlayerBannedError):
            await mm.queue.join(1)
        assert await mm.queue.count() == 0

    async def test_player_in_active_match_cannot_join(self, mm, start_match):
        match_id = await start_match()

        with pytest.raises(AlreadyInActiveMatchError) as exc_info:
            await mm.queue.join(3)
        assert exc_info.value.match_id == match_id

    async def test_panel_follows_the_queue(self, mm, gateway):
        await mm.queue.join(1)
        await mm.queue.join(2)

        snapshot = gateway.called('upsert_queue_panel')[-1][2]
        assert snapshot.player_ids == [1, 2]
        assert snapshot.queue_size == 10


class TestTrigger:
    async def test_nothing_below_ten(self, mm, config_service, join_all):
        await config_service.set('queue.ready_enabled', True)
        await join_all(range(1, 10))

        assert await mm.ready_checks.pending() is None
        assert await mm.queue.trigger() == (None, [])

    async def test_ten_players_start_a_ready_check(self, mm, config_service, join_all):
        await config_service.set('queue.ready_enabled', True)
        await join_all(range(1, 11))

        pending = await mm.ready_checks.pending()
        assert pending is not None
        assert [member.player_id for member in await mm.ready_checks.members(pending.id)] == list(range(1, 11))
        # Players stay queued until the check completes
        assert await mm.queue.count() == 10

    async def test_ready_check_off_starts_match_directly(self, mm, start_match):
        match_id = await start_match()

        team_a, team_b = await mm.matches.teams(match_id)
        assert [player_id for player_id, _ in team_a] == [1, 3, 5, 7, 9]
        assert [player_id for player_id, _ in team_b] == [2, 4, 6, 8, 10]
        assert await mm.queue.count() == 0
        assert await mm.ready_checks.pending() is None

    async def test_twenty_players_make_two_matches(self, mm, start_match):
        first = await start_match(range(1, 11))
        second = await start_match(range(11, 21))

        assert second == first + 1
        assert await mm.queue.active_match_id(20) == second
        assert await mm.queue.count() == 0

    async def test_eleventh_player_waits(self, mm, config_service, join_all):
        await config_service.set('queue.ready_enabled', False)
        await join_all(range(1, 12))

        assert await mm.queue.player_ids() == [11]
        assert await mm.queue.active_match_id(11) is None


class TestConfigure:
    async def test_validation(self, mm):
        with pytest.raises(NothingToUpdateError):
            await mm.queue.configure()
        with pytest.raises(InvalidSettingError):
            await mm.queue.configure(ready_seconds=5)
        with pytest.raises(InvalidSettingError):
            await mm.queue.configure(ready_seconds=601)

    async def test_change_seconds(self, mm, config_service):
        settings = await mm.queue.configure(ready_seconds=30, user_id=99)
        assert settings.ready_seconds == 30
        assert config_service.get('queue.ready_seconds') == 30

    async def test_disabling_expires_pending_check_and_starts_match(self, mm, config_service, join_all):
        await config_service.set('queue.ready_enabled', True)
        await join_all(range(1, 11))
        pending = await mm.ready_checks.pending()

        await mm.queue.configure(ready_enabled=False, user_id=99)

        assert (await mm.ready_checks.get(pending.id)).status.value == 'expired'
        assert await mm.queue.active_match_id(1) is not None
        # Nobody is penalized for the settings change
        assert await mm.boards.missed_ready_check_rows() == []

    async def test_clear(self, mm, config_service, join_all):
        await config_service.set('queue.ready_enabled', True)
        await join_all(range(1, 11))
        pending = await mm.ready_checks.pending()

        assert await mm.queue.clear(admin_id=99) == 10
        assert await mm.queue.count() == 0
        assert await mm.ready_checks.pending() is None
        assert (await mm.ready_checks.get(pending.id)).status.value == 'expired'
