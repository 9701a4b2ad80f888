"""
Button actions and their custom_id encoding.

Every persistent button the bot posts carries a custom_id that encodes one
of the actions below, so a click can be routed after a restart without any
in-memory view state. Format: ``mm:<verb>[:<arg>...]``.
"""

from dataclasses import dataclass
from typing import Union

from matchbot.constants import MatchConstants
from matchbot.utils.exceptions import UnknownActionError

PREFIX = 'mm'


@dataclass(frozen=True)
class JoinQueue:
    @property
    def custom_id(self) -> str:
        return f"{PREFIX}:join"


@dataclass(frozen=True)
class LeaveQueue:
    @property
    def custom_id(self) -> str:
        return f"{PREFIX}:leave"


@dataclass(frozen=True)
class ConfirmReady:
    ready_check_id: int

    @property
    def custom_id(self) -> str:
        return f"{PREFIX}:ready:{self.ready_check_id}"


@dataclass(frozen=True)
class BanMap:
    match_id: int
    map_name: str

    @property
    def custom_id(self) -> str:
        # Map names may contain ':'; it is the last field so split stops before it
        return f"{PREFIX}:ban:{self.match_id}:{self.map_name}"


@dataclass(frozen=True)
class CaptainVote:
    match_id: int
    team: str

    @property
    def custom_id(self) -> str:
        return f"{PREFIX}:vote:{self.match_id}:{self.team}"


@dataclass(frozen=True)
class ReviewDecision:
    match_id: int
    team: str

    @property
    def custom_id(self) -> str:
        return f"{PREFIX}:review:{self.match_id}:{self.team}"


Action = Union[JoinQueue, LeaveQueue, ConfirmReady, BanMap, CaptainVote, ReviewDecision]


def is_matchmaking_action(custom_id: str) -> bool:
    return bool(custom_id) and custom_id.startswith(f"{PREFIX}:")


def _int(value: str, custom_id: str) -> int:
    try:
        return int(value)
    except ValueError:
        raise UnknownActionError(custom_id)


def _team(value: str, custom_id: str) -> str:
    if value not in MatchConstants.TEAMS:
        raise UnknownActionError(custom_id)
    return value


def decode_action(custom_id: str) -> Action:
    """
    Parse a custom_id back into its action.

    Raises:
        UnknownActionError: The id is not one of ours or is malformed
    """
    if not is_matchmaking_action(custom_id):
        raise UnknownActionError(custom_id)

    parts = custom_id.split(':', 3)
    verb = parts[1]
    args = parts[2:]

    if verb == 'join' and not args:
        return JoinQueue()
    if verb == 'leave' and not args:
        return LeaveQueue()
    if verb == 'ready' and len(args) == 1:
        return ConfirmReady(_int(args[0], custom_id))
    if verb == 'ban' and len(args) == 2 and args[1]:
        return BanMap(_int(args[0], custom_id), args[1])
    if verb == 'vote' and len(args) == 2:
        return CaptainVote(_int(args[0], custom_id), _team(args[1], custom_id))
    if verb == 'review' and len(args) == 2:
        return ReviewDecision(_int(args[0], custom_id), _team(args[1], custom_id))

    raise UnknownActionError(custom_id)
