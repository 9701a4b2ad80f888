"""Shared fixtures: a temporary SQLite database and a recording gateway."""

import itertools
import random
from typing import List, Optional, Sequence, Tuple

import pytest

from matchbot.config import Config
from matchbot.data_models.displays import MessageRef
from matchbot.database.database import Database
from matchbot.services.configuration import ConfigurationService
from matchbot.services.gateway import MatchGateway
from matchbot.services.matchmaking import Matchmaking

PANEL_CHANNEL = 500
REVIEW_CHANNEL = 600


class FakeGateway(MatchGateway):
    """Records every call and hands out predictable ids."""

    def __init__(self):
        self.calls: List[Tuple[str, tuple]] = []
        self._ids = itertools.count(10_000)
        self.fail: set = set()

    def _record(self, name: str, *args):
        self.calls.append((name, args))
        if name in self.fail:
            raise RuntimeError(f"{name} failed")

    def called(self, name: str) -> List[tuple]:
        return [args for call, args in self.calls if call == name]

    def _upsert(self, channel_id: int, ref: Optional[MessageRef]) -> MessageRef:
        if ref is not None and ref.channel_id == channel_id:
            return ref
        return MessageRef(channel_id=channel_id, message_id=next(self._ids))

    async def upsert_queue_panel(self, channel_id, ref, snapshot):
        self._record('upsert_queue_panel', channel_id, ref, snapshot)
        return self._upsert(channel_id, ref)

    async def upsert_ready_check(self, channel_id, ref, snapshot):
        self._record('upsert_ready_check', channel_id, ref, snapshot)
        return self._upsert(channel_id, ref)

    async def delete_message(self, ref):
        self._record('delete_message', ref)

    async def notify_ready_check(self, player_id, snapshot):
        self._record('notify_ready_check', player_id, snapshot)
        return True

    async def create_match_space(self, channel_id, match_id, player_ids):
        self._record('create_match_space', channel_id, match_id, list(player_ids))
        return next(self._ids)

    async def archive_match_space(self, thread_id):
        self._record('archive_match_space', thread_id)

    async def create_voice_rooms(self, channel_id, match_id, team_a, team_b):
        self._record('create_voice_rooms', channel_id, match_id, list(team_a), list(team_b))
        return next(self._ids), next(self._ids)

    async def destroy_voice_rooms(self, channel_ids):
        self._record('destroy_voice_rooms', list(channel_ids))

    async def upsert_recap(self, thread_id, ref, recap):
        self._record('upsert_recap', thread_id, ref, recap)
        return self._upsert(thread_id, ref)

    async def upsert_veto_board(self, thread_id, ref, snapshot):
        self._record('upsert_veto_board', thread_id, ref, snapshot)
        return self._upsert(thread_id, ref)

    async def post_vote_prompt(self, thread_id, prompt):
        self._record('post_vote_prompt', thread_id, prompt)
        return MessageRef(thread_id, next(self._ids))

    async def post_review_request(self, request):
        self._record('post_review_request', request)
        return MessageRef(REVIEW_CHANNEL, next(self._ids))

    async def disable_components(self, refs: Sequence[MessageRef]):
        self._record('disable_components', list(refs))

    async def announce_result(self, thread_id, result):
        self._record('announce_result', thread_id, result)

    async def render_leaderboard(self, channel_id, message_ids, pages):
        self._record('render_leaderboard', channel_id, list(message_ids), pages)
        ids = list(message_ids[:len(pages)])
        while len(ids) < len(pages):
            ids.append(next(self._ids))
        return ids

    async def upsert_match_history(self, channel_id, ref, entry):
        self._record('upsert_match_history', channel_id, ref, entry)
        return self._upsert(channel_id, ref)

    async def upsert_cancel_board(self, channel_id, ref, rows):
        self._record('upsert_cancel_board', channel_id, ref, rows)
        return self._upsert(channel_id, ref)

    async def log_admin_action(self, text):
        self._record('log_admin_action', text)


@pytest.fixture(autouse=True)
def stable_config(monkeypatch):
    """Fixed defaults regardless of the environment; periodic refresh kept out of the way."""
    monkeypatch.setattr(Config, 'DISPLAY_REFRESH_SECONDS', 3600)
    monkeypatch.setattr(Config, 'STARTING_RATING', 1000)
    monkeypatch.setattr(Config, 'ELO_K_FACTOR', 24)
    monkeypatch.setattr(Config, 'READY_CHECK_ENABLED', True)
    monkeypatch.setattr(Config, 'READY_CHECK_SECONDS', 60)
    monkeypatch.setattr(Config, 'VETO_TURN_SECONDS', 90)
    monkeypatch.setattr(Config, 'CAPTAIN_MODE', 'random')
    monkeypatch.setattr(Config, 'MAP_POOL', '')
    monkeypatch.setattr(Config, 'ADMIN_KEY', '')
    monkeypatch.setattr(Config, 'VOICE_REGION', None)


@pytest.fixture
async def database(tmp_path):
    db = Database(f"sqlite:///{tmp_path / 'matchbot.db'}")
    await db.initialize()
    yield db
    await db.close()


@pytest.fixture
async def config_service(database):
    service = ConfigurationService(database)
    await service.load_all()
    return service


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
async def mm(database, config_service, gateway):
    matchmaking = Matchmaking(database, config_service, gateway, rng=random.Random(7))
    await matchmaking.queue.install_panel(PANEL_CHANNEL)
    yield matchmaking
    await matchmaking.shutdown()


@pytest.fixture
def join_all(mm):
    """Join players one by one, in order."""
    async def _join(player_ids):
        for player_id in player_ids:
            await mm.queue.join(player_id, f"player{player_id}")
    return _join


@pytest.fixture
def start_match(mm, config_service, join_all):
    """Start a match for players 1..10 without a ready-check and return its id."""
    async def _start(player_ids=range(1, 11), captain_mode='highest'):
        await config_service.set('queue.ready_enabled', False)
        await config_service.set('veto.captain_mode', captain_mode)
        await join_all(player_ids)
        match_id = await mm.queue.active_match_id(list(player_ids)[0])
        assert match_id is not None
        return match_id
    return _start


@pytest.fixture
def finish_veto(mm):
    """Ban maps in pool order for whichever captain is up until one map is left."""
    async def _finish(match_id):
        state = await mm.veto.get_state(match_id)
        while state.is_active:
            captain = state.captain_for(state.current_team)
            state = await mm.veto.ban_map(match_id, captain, state.remaining[0])
        return state
    return _finish
