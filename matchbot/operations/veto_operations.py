"""
Veto Operations - captain map veto

Team A's captain bans first, then the captains alternate until one map is
left. That map is the pick. A captain who lets the turn clock run out gets
a random remaining map banned for them (one ban, never a pass).

Every write to VetoState bumps `version` and is applied with
UPDATE ... WHERE version = <version read>, so two concurrent clicks cannot
both ban on the same turn. The turn timer carries the version it was
scheduled for and does nothing once the state has moved past it.
"""

from datetime import timedelta
from typing import List, Optional, TYPE_CHECKING

from sqlalchemy import select, update

from matchbot.config import Config
from matchbot.constants import MatchConstants, VetoConstants
from matchbot.data_models.displays import MessageRef, VetoSnapshot
from matchbot.database.models import Match, VetoState
from matchbot.services.configuration import VetoSettings
from matchbot.services.gateway import safely
from matchbot.utils.exceptions import (
    InvalidSettingError, MapUnavailableError, MatchmakingError, NotOnTeamError,
    NotYourTurnError, NothingToUpdateError, VetoFinishedError, VetoNotFoundError
)
from matchbot.utils.logger import setup_logger
from matchbot.utils.time_utils import utc_now

if TYPE_CHECKING:
    from matchbot.services.matchmaking import Matchmaking

logger = setup_logger(__name__)

TURN_TIMER = 'veto_turn'
REFRESH_TIMER = 'veto_refresh'


def other_team(team: str) -> str:
    return MatchConstants.TEAM_B if team == MatchConstants.TEAM_A else MatchConstants.TEAM_A


def parse_map_list(raw: str) -> List[str]:
    """Comma-separated map names, trimmed, duplicates dropped (first wins)."""
    maps: List[str] = []
    for name in raw.split(','):
        name = name.strip()
        if name and name not in maps:
            maps.append(name)
    return maps


class VetoOperations:
    """Turn-based map veto for one match at a time per match id."""

    def __init__(self, matchmaking: 'Matchmaking'):
        self.mm = matchmaking
        self.db = matchmaking.db
        self.config_service = matchmaking.config_service
        self.timers = matchmaking.timers
        self.logger = logger

    # ============================================================================
    # Settings
    # ============================================================================

    def get_settings(self) -> VetoSettings:
        return self.config_service.veto_settings()

    async def configure(self, captain_mode: Optional[str] = None, maps: Optional[str] = None,
                        turn_seconds: Optional[int] = None, user_id: Optional[int] = None) -> VetoSettings:
        """
        Change veto settings. Only the values provided are changed; an empty
        maps string restores the default pool. Running vetoes keep their pool.
        """
        if captain_mode is None and maps is None and turn_seconds is None:
            raise NothingToUpdateError()

        if captain_mode is not None and captain_mode not in VetoConstants.CAPTAIN_MODES:
            raise InvalidSettingError(f"Captain mode must be one of {', '.join(VetoConstants.CAPTAIN_MODES)}.")
        if turn_seconds is not None and not (
            VetoConstants.MIN_TURN_SECONDS <= turn_seconds <= VetoConstants.MAX_TURN_SECONDS
        ):
            raise InvalidSettingError(
                f"Turn seconds must be between {VetoConstants.MIN_TURN_SECONDS} "
                f"and {VetoConstants.MAX_TURN_SECONDS}."
            )

        map_list = None
        if maps is not None and maps.strip():
            map_list = parse_map_list(maps)
            if len(map_list) < 2:
                raise InvalidSettingError("The map pool needs at least 2 different maps.")
            if len(map_list) > VetoConstants.MAX_MAPS:
                raise InvalidSettingError(f"The map pool can hold at most {VetoConstants.MAX_MAPS} maps.")
            too_long = [name for name in map_list if len(name) > VetoConstants.MAX_MAP_NAME_LENGTH]
            if too_long:
                raise InvalidSettingError(
                    f"Map names can be at most {VetoConstants.MAX_MAP_NAME_LENGTH} characters: {too_long[0]}"
                )

        if captain_mode is not None:
            await self.config_service.set('veto.captain_mode', captain_mode, user_id)
        if turn_seconds is not None:
            await self.config_service.set('veto.turn_seconds', turn_seconds, user_id)
        if map_list is not None:
            await self.config_service.set('veto.maps', map_list, user_id)
        elif maps is not None:
            await self.config_service.unset('veto.maps', user_id)

        settings = self.get_settings()
        self.logger.info(f"Veto settings changed by {user_id}: {settings}")
        return settings

    # ============================================================================
    # Queries
    # ============================================================================

    async def get_state(self, match_id: int) -> Optional[VetoState]:
        async with self.db.get_session() as session:
            return (await session.execute(
                select(VetoState).where(VetoState.match_id == match_id)
            )).scalar_one_or_none()

    @staticmethod
    def snapshot(state: VetoState) -> VetoSnapshot:
        return VetoSnapshot(
            match_id=state.match_id,
            all_maps=list(state.all_maps),
            remaining=list(state.remaining),
            bans=list(state.bans or []),
            current_team=state.current_team,
            captain_a=state.captain_a,
            captain_b=state.captain_b,
            turn_ends_at=state.turn_ends_at,
            picked=state.picked,
        )

    # ============================================================================
    # Protocol
    # ============================================================================

    async def start_veto(self, match_id: int, team_a: List[int], team_b: List[int], captain_a: int,
                         captain_b: int, settings: Optional[VetoSettings] = None) -> VetoState:
        """Persist the veto with Team A to ban first and start its clock."""
        settings = settings or self.get_settings()
        maps = list(settings.maps)
        single = len(maps) == 1

        async with self.db.transaction() as session:
            state = VetoState(
                match_id=match_id,
                team_a=list(team_a),
                team_b=list(team_b),
                captain_a=captain_a,
                captain_b=captain_b,
                all_maps=maps,
                remaining=list(maps),
                bans=[],
                current_team=None if single else MatchConstants.TEAM_A,
                turn_ends_at=None if single else utc_now() + timedelta(seconds=settings.turn_seconds),
                picked=maps[0] if single else None,
                version=1,
            )
            session.add(state)
            if single:
                await session.execute(
                    update(Match).where(Match.id == match_id).values(picked_map=maps[0])
                    .execution_options(synchronize_session=False)
                )

        if state.is_active:
            self._schedule_turn(state)
            self.timers.schedule_periodic(
                (REFRESH_TIMER, match_id), Config.DISPLAY_REFRESH_SECONDS, self.refresh_board, match_id
            )
        self.logger.info(f"Veto for match {match_id} started with {len(maps)} maps")
        return state

    async def ban_map(self, match_id: int, player_id: int, map_name: str) -> VetoState:
        """
        Ban a map on behalf of the captain whose turn it is.

        Raises:
            VetoNotFoundError, VetoFinishedError, NotYourTurnError, MapUnavailableError
        """
        return await self._apply_ban(match_id, player_id, map_name)

    async def auto_ban(self, match_id: int, expected_version: int) -> Optional[VetoState]:
        """Turn clock ran out: ban a random remaining map if the turn is still the same one."""
        state = await self.get_state(match_id)
        if state is None or state.version != expected_version or not state.is_active:
            return None

        map_name = self.mm.rng.choice(list(state.remaining))
        try:
            return await self._apply_ban(match_id, state.captain_for(state.current_team), map_name,
                                         auto=True, expected_version=expected_version)
        except MatchmakingError as e:
            self.logger.debug(f"Auto-ban for match {match_id} skipped: {e}")
            return None

    async def _apply_ban(self, match_id: int, player_id: int, map_name: str, auto: bool = False,
                         expected_version: Optional[int] = None) -> Optional[VetoState]:
        turn_seconds = self.get_settings().turn_seconds
        while True:
            async with self.db.transaction() as session:
                state = (await session.execute(
                    select(VetoState).where(VetoState.match_id == match_id)
                )).scalar_one_or_none()
                if state is None:
                    raise VetoNotFoundError(match_id)
                if expected_version is not None and state.version != expected_version:
                    return None
                if not state.is_active:
                    raise VetoFinishedError(match_id)
                if player_id != state.captain_for(state.current_team):
                    raise NotYourTurnError(player_id, state.current_team)
                if map_name not in state.remaining:
                    raise MapUnavailableError(map_name)

                team = state.current_team
                remaining = [name for name in state.remaining if name != map_name]
                values = {
                    'remaining': remaining,
                    'bans': list(state.bans or []) + [{'team': team, 'map': map_name, 'auto': auto}],
                    'version': state.version + 1,
                }
                if len(remaining) == 1:
                    values.update(current_team=None, turn_ends_at=None, picked=remaining[0])
                else:
                    values.update(current_team=other_team(team),
                                  turn_ends_at=utc_now() + timedelta(seconds=turn_seconds))

                result = await session.execute(
                    update(VetoState)
                    .where(VetoState.id == state.id, VetoState.version == state.version)
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 1:
                    if len(remaining) == 1:
                        await session.execute(
                            update(Match).where(Match.id == match_id).values(picked_map=remaining[0])
                            .execution_options(synchronize_session=False)
                        )
                    break

            # Another ban landed first; re-read and re-validate
            if expected_version is not None:
                return None

        self.logger.info(
            f"Match {match_id}: team {team} {'auto-' if auto else ''}banned {map_name}, "
            f"{len(remaining)} left"
        )
        state = await self.get_state(match_id)
        if state.is_finished:
            await self._finish(state)
        else:
            self._schedule_turn(state)
            await self.refresh_board(match_id)
        return state

    async def _finish(self, state: VetoState):
        self.cancel_timers(state.match_id)
        self.logger.info(f"Veto for match {state.match_id} picked {state.picked}")
        await self.refresh_board(state.match_id)
        await self.mm.matches.open_vote(state.match_id)

    def _schedule_turn(self, state: VetoState):
        delay = (state.turn_ends_at - utc_now()).total_seconds()
        self.timers.schedule((TURN_TIMER, state.match_id), delay, self.auto_ban, state.match_id, state.version)

    def cancel_timers(self, match_id: int):
        self.timers.cancel((TURN_TIMER, match_id), (REFRESH_TIMER, match_id))

    # ============================================================================
    # Captains
    # ============================================================================

    async def set_captain(self, match_id: int, team: str, player_id: int) -> VetoState:
        """Replace a team's captain with another member of that team."""
        if team not in MatchConstants.TEAMS:
            raise InvalidSettingError(f"Team must be one of {', '.join(MatchConstants.TEAMS)}.")

        state = await self.get_state(match_id)
        if state is None:
            raise VetoNotFoundError(match_id)
        if state.team_of(player_id) != team:
            raise NotOnTeamError(player_id, team)

        column = 'captain_a' if team == MatchConstants.TEAM_A else 'captain_b'
        async with self.db.transaction() as session:
            await session.execute(
                update(VetoState).where(VetoState.id == state.id)
                .values(**{column: player_id, 'version': VetoState.version + 1})
                .execution_options(synchronize_session=False)
            )

        state = await self.get_state(match_id)
        if state.is_active:
            # The pending auto-ban was scheduled for the previous version
            self._schedule_turn(state)
        self.logger.info(f"Match {match_id}: team {team} captain is now {player_id}")

        await self.mm.matches.refresh_recap(match_id)
        await self.refresh_board(match_id)
        return state

    # ============================================================================
    # Display
    # ============================================================================

    async def refresh_board(self, match_id: int):
        """Upsert the veto board in the match thread."""
        state = await self.get_state(match_id)
        if state is None:
            return
        async with self.db.get_session() as session:
            thread_id = await session.scalar(select(Match.thread_id).where(Match.id == match_id))
        if thread_id is None:
            return

        ref = MessageRef.from_ids(state.channel_id, state.message_id)
        new_ref = await safely(
            self.mm.gateway.upsert_veto_board(thread_id, ref, self.snapshot(state)),
            f"match {match_id} veto board"
        )
        if new_ref is not None and new_ref != ref:
            async with self.db.transaction() as session:
                await session.execute(
                    update(VetoState).where(VetoState.id == state.id).values(
                        channel_id=new_ref.channel_id,
                        message_id=new_ref.message_id
                    ).execution_options(synchronize_session=False)
                )
