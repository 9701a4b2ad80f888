"""
Display data models for the matchmaking bot.

Immutable snapshots passed from the operations layer to the MatchGateway.
Renderers in matchbot.ui.embeds turn them into Discord payloads; nothing in
here touches the database or Discord.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Tuple


@dataclass(frozen=True)
class MessageRef:
    """Remembered location of a message the bot keeps up to date."""
    channel_id: int
    message_id: int

    def to_dict(self) -> dict:
        return {'channel_id': self.channel_id, 'message_id': self.message_id}

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional['MessageRef']:
        if not data or not data.get('channel_id') or not data.get('message_id'):
            return None
        return cls(channel_id=int(data['channel_id']), message_id=int(data['message_id']))

    @classmethod
    def from_ids(cls, channel_id: Optional[int], message_id: Optional[int]) -> Optional['MessageRef']:
        if not channel_id or not message_id:
            return None
        return cls(channel_id=channel_id, message_id=message_id)


@dataclass(frozen=True)
class QueueSnapshot:
    """Queue panel contents."""
    player_ids: List[int]
    queue_size: int
    ready_enabled: bool
    ready_seconds: int
    pending_ready_check_id: Optional[int] = None


@dataclass(frozen=True)
class ReadyCheckSnapshot:
    """Ready-check status contents."""
    ready_check_id: int
    status: str
    deadline: datetime
    members: List[Tuple[int, bool]]  # (player_id, confirmed) in queue order

    @property
    def confirmed_count(self) -> int:
        return sum(1 for _, confirmed in self.members if confirmed)


@dataclass(frozen=True)
class MatchRecap:
    """Teams and captains posted when a match starts."""
    match_id: int
    team_a: List[Tuple[int, int]]  # (player_id, rating)
    team_b: List[Tuple[int, int]]
    captain_a: int
    captain_b: int

    @property
    def sum_a(self) -> int:
        return sum(rating for _, rating in self.team_a)

    @property
    def sum_b(self) -> int:
        return sum(rating for _, rating in self.team_b)


@dataclass(frozen=True)
class VetoSnapshot:
    """Veto board contents."""
    match_id: int
    all_maps: List[str]
    remaining: List[str]
    bans: List[dict]
    current_team: Optional[str]
    captain_a: int
    captain_b: int
    turn_ends_at: Optional[datetime]
    picked: Optional[str]

    @property
    def active_captain(self) -> Optional[int]:
        if self.current_team == 'A':
            return self.captain_a
        if self.current_team == 'B':
            return self.captain_b
        return None


@dataclass(frozen=True)
class VotePrompt:
    """Captain result vote posted once the map is picked."""
    match_id: int
    captain_a: int
    captain_b: int
    picked_map: str


@dataclass(frozen=True)
class ReviewRequest:
    """Disputed result sent to the admin review channel."""
    match_id: int
    thread_id: Optional[int]
    captain_a: int
    captain_b: int
    vote_a: str  # Team captain A voted for
    vote_b: str


@dataclass(frozen=True)
class RatingChange:
    """One participant's rating movement in a finalized match."""
    player_id: int
    team: str
    old_rating: int
    new_rating: int
    delta: int


@dataclass(frozen=True)
class FinalizeResult:
    """Outcome of finalizing a match."""
    match_id: int
    winner: str
    avg_a: int
    avg_b: int
    delta_a: int
    delta_b: int
    changes: List[RatingChange]
    picked_map: Optional[str] = None
    decided_by: Optional[int] = None

    def change_for(self, player_id: int) -> Optional[RatingChange]:
        for change in self.changes:
            if change.player_id == player_id:
                return change
        return None


@dataclass(frozen=True)
class ReverseResult:
    """Outcome of reversing a finalized match."""
    match_id: int
    previous_winner: Optional[str]
    reverted: List[Tuple[int, int]]  # (player_id, delta undone)


@dataclass(frozen=True)
class LeaderboardRow:
    """Single leaderboard row."""
    rank: int
    player_id: int
    display_name: Optional[str]
    rating: int
    games: int
    wins: int

    @property
    def win_rate(self) -> float:
        if self.games == 0:
            return 0.0
        return (self.wins / self.games) * 100


@dataclass(frozen=True)
class HistoryEntry:
    """One match in the match-history channel."""
    match_id: int
    status: str
    winner: Optional[str]
    picked_map: Optional[str]
    captain_a: Optional[int]
    captain_b: Optional[int]
    team_a: List[int]
    team_b: List[int]
    created_at: Optional[datetime]
    closed_at: Optional[datetime] = None
    delta_a: Optional[int] = None
    delta_b: Optional[int] = None


@dataclass(frozen=True)
class CancelRow:
    """Missed ready-check standing for one player."""
    rank: int
    player_id: int
    total: int

