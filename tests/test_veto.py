"""Captain selection and the map veto."""

import random

import pytest

from matchbot.constants import VetoConstants
from matchbot.database.models import MatchStatus
from matchbot.operations.veto_operations import TURN_TIMER, parse_map_list
from matchbot.utils.exceptions import (
    InvalidSettingError, MapUnavailableError, NotOnTeamError, NotYourTurnError,
    NothingToUpdateError, VetoFinishedError
)


class TestCaptains:
    async def test_highest_mode_takes_first_on_ties(self, mm, start_match):
        match_id = await start_match()

        state = await mm.veto.get_state(match_id)
        assert (state.captain_a, state.captain_b) == (1, 2)

    async def test_highest_mode_prefers_rating(self, mm):
        captains = mm.matches.select_captains(
            [(1, 1000), (3, 1100), (5, 900)], [(2, 950), (4, 950), (6, 1200)], 'highest'
        )
        assert captains == (3, 6)

    async def test_random_mode_picks_within_team(self, mm):
        team_a = [(1, 1000), (3, 1000), (5, 1000)]
        team_b = [(2, 1000), (4, 1000), (6, 1000)]
        for seed in range(20):
            captain_a, captain_b = mm.matches.select_captains(team_a, team_b, 'random', random.Random(seed))
            assert captain_a in (1, 3, 5)
            assert captain_b in (2, 4, 6)

    async def test_unknown_mode(self, mm):
        with pytest.raises(InvalidSettingError):
            mm.matches.select_captains([(1, 1000)], [(2, 1000)], 'loudest')

    async def test_set_captain(self, mm, start_match, gateway):
        match_id = await start_match()

        state = await mm.veto.set_captain(match_id, 'A', 3)
        assert state.captain_a == 3
        # The new captain bans for Team A from now on
        with pytest.raises(NotYourTurnError):
            await mm.veto.ban_map(match_id, 1, state.remaining[0])
        await mm.veto.ban_map(match_id, 3, state.remaining[0])

        with pytest.raises(NotOnTeamError):
            await mm.veto.set_captain(match_id, 'B', 3)
        recap = gateway.called('upsert_recap')[-1][2]
        assert recap.captain_a == 3


class TestVeto:
    async def test_starts_with_team_a_and_full_pool(self, mm, start_match, gateway):
        match_id = await start_match()

        state = await mm.veto.get_state(match_id)
        assert state.current_team == 'A'
        assert state.remaining == state.all_maps == list(VetoConstants.DEFAULT_MAPS)
        assert state.is_active
        assert mm.timers.is_scheduled((TURN_TIMER, match_id))
        assert gateway.called('upsert_veto_board')
        assert (await mm.matches.get_match(match_id)).status == MatchStatus.VOTING

    async def test_turn_and_map_checks(self, mm, start_match):
        match_id = await start_match()

        with pytest.raises(NotYourTurnError):
            await mm.veto.ban_map(match_id, 2, "Bind")
        with pytest.raises(NotYourTurnError):
            await mm.veto.ban_map(match_id, 3, "Bind")
        with pytest.raises(MapUnavailableError):
            await mm.veto.ban_map(match_id, 1, "Dust2")

        state = await mm.veto.ban_map(match_id, 1, "Bind")
        assert state.current_team == 'B'
        with pytest.raises(MapUnavailableError):
            await mm.veto.ban_map(match_id, 2, "Bind")

    async def test_alternating_bans_until_one_map(self, mm, start_match, finish_veto, gateway):
        match_id = await start_match()

        state = await finish_veto(match_id)

        assert [ban['team'] for ban in state.bans] == ['A', 'B'] * 4 + ['A']
        assert state.remaining == [VetoConstants.DEFAULT_MAPS[-1]]
        assert state.picked == VetoConstants.DEFAULT_MAPS[-1]
        assert state.is_finished
        assert not mm.timers.is_scheduled((TURN_TIMER, match_id))

        match = await mm.matches.get_match(match_id)
        assert match.picked_map == state.picked
        assert match.vote_message_id is not None
        prompt = gateway.called('post_vote_prompt')[-1][1]
        assert prompt.picked_map == state.picked

        with pytest.raises(VetoFinishedError):
            await mm.veto.ban_map(match_id, 2, state.picked)

    async def test_auto_ban_for_current_version_only(self, mm, start_match):
        match_id = await start_match()
        state = await mm.veto.get_state(match_id)

        assert await mm.veto.auto_ban(match_id, state.version - 1) is None

        after = await mm.veto.auto_ban(match_id, state.version)
        assert after is not None
        assert after.bans == [{'team': 'A', 'map': after.bans[0]['map'], 'auto': True}]
        assert after.current_team == 'B'
        assert len(after.remaining) == len(state.remaining) - 1

        # The same timer firing twice does nothing the second time
        assert await mm.veto.auto_ban(match_id, state.version) is None

    async def test_two_map_pool_is_one_ban(self, mm, start_match, config_service):
        await mm.veto.configure(maps="Ascent, Bind")
        match_id = await start_match()

        state = await mm.veto.ban_map(match_id, 1, "Ascent")

        assert state.picked == "Bind"
        assert (await mm.matches.get_match(match_id)).picked_map == "Bind"


class TestConfigure:
    async def test_validation(self, mm):
        with pytest.raises(NothingToUpdateError):
            await mm.veto.configure()
        with pytest.raises(InvalidSettingError):
            await mm.veto.configure(captain_mode='loudest')
        with pytest.raises(InvalidSettingError):
            await mm.veto.configure(turn_seconds=5)
        with pytest.raises(InvalidSettingError):
            await mm.veto.configure(maps="Ascent, Ascent")
        with pytest.raises(InvalidSettingError):
            await mm.veto.configure(maps=",".join(f"Map{i}" for i in range(26)))
        with pytest.raises(InvalidSettingError):
            await mm.veto.configure(maps="Ascent," + "x" * 51)

    async def test_maps_and_reset(self, mm, config_service):
        settings = await mm.veto.configure(maps=" Ascent ,Bind,,Haven,Bind", turn_seconds=30, user_id=99)
        assert settings.maps == ["Ascent", "Bind", "Haven"]
        assert settings.turn_seconds == 30

        settings = await mm.veto.configure(maps="", user_id=99)
        assert settings.maps == list(VetoConstants.DEFAULT_MAPS)
        assert config_service.get('veto.maps') is None
        assert settings.turn_seconds == 30

    def test_parse_map_list(self):
        assert parse_map_list("a, b ,a,,c") == ["a", "b", "c"]
