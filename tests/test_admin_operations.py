"""Admin overrides, queue fill, role allow-lists and the player wipe."""

import json

import pytest
from sqlalchemy import func, select

from matchbot.config import Config
from matchbot.database.models import AuditLog, Match, MatchStatus, Player
from matchbot.utils.exceptions import ConfirmationRequiredError, InvalidKeyError, InvalidSettingError

ADMIN = 99


async def audit_actions(database):
    async with database.get_session() as session:
        rows = (await session.execute(select(AuditLog).order_by(AuditLog.id))).scalars().all()
    return [(row.action, json.loads(row.details)) for row in rows]


class TestOverrides:
    async def test_force_win_is_audited_and_logged(self, mm, database, start_match, finish_veto, gateway):
        match_id = await start_match()
        await finish_veto(match_id)

        await mm.admin.force_win(match_id, 'B', ADMIN)

        actions = dict(await audit_actions(database))
        assert actions['force_win']['target_id'] == match_id
        assert actions['force_win']['winner'] == 'B'
        assert any(f"match #{match_id}" in args[0] for args in gateway.called('log_admin_action'))

    async def test_reverse_and_set_winner(self, mm, database, start_match, finish_veto):
        match_id = await start_match()
        await finish_veto(match_id)
        await mm.matches.finalize(match_id, 'A')

        await mm.admin.set_winner(match_id, 'B', ADMIN)
        await mm.admin.reverse_match(match_id, ADMIN)

        actions = await audit_actions(database)
        assert [action for action, _ in actions if action.startswith('match_')] == [
            'match_set_winner', 'match_reverse'
        ]
        assert dict(actions)['match_set_winner']['previous_winner'] == 'A'
        assert dict(actions)['match_reverse']['previous_winner'] == 'B'

    async def test_cancel_and_captain(self, mm, database, start_match, finish_veto):
        match_id = await start_match()

        await mm.admin.set_captain(match_id, 'B', 4, ADMIN)
        assert (await mm.veto.get_state(match_id)).captain_b == 4

        await finish_veto(match_id)
        match = await mm.admin.cancel_match(match_id, ADMIN)

        assert match.status == MatchStatus.ABANDONED
        actions = [action for action, _ in await audit_actions(database)]
        assert 'veto_set_captain' in actions
        assert 'match_cancel' in actions

    async def test_resolve_review(self, mm, start_match, finish_veto):
        match_id = await start_match()
        await finish_veto(match_id)
        await mm.matches.cast_vote(match_id, 1, 'A')
        await mm.matches.cast_vote(match_id, 2, 'B')

        result = await mm.admin.resolve_review(match_id, 'A', ADMIN)
        assert result.decided_by == ADMIN


class TestFill:
    async def test_synthetic_fill_auto_confirms(self, mm, database, config_service, gateway):
        await config_service.set('queue.ready_enabled', True)

        outcome = await mm.admin.fill_queue(ADMIN)

        assert len(outcome['synthetic']) == 10
        assert all(player_id < 0 for player_id in outcome['synthetic'])
        assert outcome['auto_confirmed'] == 10
        assert outcome['queue_count'] == 0
        assert outcome['ready_check_id'] is not None
        assert await mm.queue.active_match_id(outcome['synthetic'][0]) is not None
        # Synthetic players are never messaged
        assert gateway.called('notify_ready_check') == []

        async with database.get_session() as session:
            names = (await session.execute(
                select(Player.display_name).where(Player.synthetic.is_(True)).order_by(Player.id)
            )).scalars().all()
        assert names[0] == "Test Player 1"

    async def test_members_first_then_synthetic(self, mm, config_service, join_all):
        await config_service.set('queue.ready_enabled', True)
        await join_all([5])

        outcome = await mm.admin.fill_queue(ADMIN, count=3, member_ids=[5, 1, 2])

        # 5 is already queued
        assert outcome['added'] == [1, 2, -1]
        assert outcome['queue_count'] == 4

    async def test_partial_ready_check_stays_pending_for_real_players(self, mm, config_service, join_all, gateway):
        await config_service.set('queue.ready_enabled', True)
        await join_all([1, 2])

        outcome = await mm.admin.fill_queue(ADMIN)

        assert len(outcome['synthetic']) == 8
        assert outcome['auto_confirmed'] == 8
        pending = await mm.ready_checks.pending()
        assert pending is not None
        unconfirmed = [m.player_id for m in await mm.ready_checks.members(pending.id) if not m.confirmed]
        assert unconfirmed == [1, 2]
        assert [args[0] for args in gateway.called('notify_ready_check')] == [1, 2]

    async def test_without_synthetic(self, mm):
        outcome = await mm.admin.fill_queue(ADMIN, count=5, member_ids=[1], use_synthetic=False)
        assert outcome['added'] == [1]
        assert outcome['synthetic'] == []

    async def test_invalid_count(self, mm):
        with pytest.raises(InvalidSettingError):
            await mm.admin.fill_queue(ADMIN, count=0)

    async def test_synthetic_players_stay_off_the_leaderboard(self, mm, config_service):
        await config_service.set('queue.ready_enabled', False)
        await mm.queue.join(1)
        outcome = await mm.admin.fill_queue(ADMIN)

        match_id = outcome['match_ids'][0]
        await mm.matches.finalize(match_id, 'A')

        rows = await mm.boards.leaderboard_rows()
        assert [row.player_id for row in rows] == [1]

    async def test_clear_queue(self, mm, database, join_all):
        await join_all([1, 2, 3])
        assert await mm.admin.clear_queue(ADMIN) == 3
        assert dict(await audit_actions(database))['clearqueue'] == {'removed': 3}


class TestRoles:
    async def test_set_and_clear_roles(self, mm, config_service):
        assert await mm.admin.set_command_roles('forcewin', [5, 6], ADMIN) == [5, 6]
        assert mm.admin.command_roles()['forcewin'] == [5, 6]
        assert config_service.get('roles.forcewin') == [5, 6]

        await mm.admin.set_command_roles('forcewin', [], ADMIN)
        assert mm.admin.command_roles()['forcewin'] == []
        assert config_service.get('roles.forcewin') is None

    async def test_unknown_command(self, mm):
        with pytest.raises(InvalidSettingError):
            await mm.admin.set_command_roles('join', [5], ADMIN)


class TestWipe:
    async def test_key_and_confirmation(self, mm, monkeypatch):
        with pytest.raises(InvalidKeyError):
            await mm.admin.wipe_players(True, '', ADMIN)

        monkeypatch.setattr(Config, 'ADMIN_KEY', 'hunter2')
        with pytest.raises(InvalidKeyError):
            await mm.admin.wipe_players(True, 'wrong', ADMIN)
        with pytest.raises(ConfirmationRequiredError):
            await mm.admin.wipe_players(False, 'hunter2', ADMIN)

    async def test_wipe_keeps_settings_and_counters(self, mm, database, config_service, start_match,
                                                    join_all, monkeypatch):
        monkeypatch.setattr(Config, 'ADMIN_KEY', 'hunter2')
        first = await start_match()
        await config_service.set('queue.ready_enabled', True)
        await join_all([11, 12])

        counts = await mm.admin.wipe_players(True, 'hunter2', ADMIN)

        assert counts['players'] == 12
        assert counts['matches'] == 1
        assert counts['queue'] == 2
        async with database.get_session() as session:
            assert await session.scalar(select(func.count(Player.id))) == 0
            assert await session.scalar(select(func.count(Match.id))) == 0
        assert config_service.get('veto.captain_mode') == 'highest'
        assert len(mm.timers) == 0
        assert 'wipe_players' in [action for action, _ in await audit_actions(database)]

        second = await start_match(range(21, 31))
        assert second == first + 1
