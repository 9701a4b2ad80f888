"""
Database models for the matchmaking bot.

Table names follow the collections of the match lifecycle: players, queue,
ready_checks, matches, match_players, veto, votes, rating_history, counters
and cancel_events, plus configurations/audit_logs for runtime settings.

Foreign keys are declared for documentation; invariants that span rows are
maintained by the operations layer through conditional updates.
"""

from sqlalchemy import (
    Column, Integer, String, DateTime, Boolean, Text, JSON,
    ForeignKey, BigInteger, Enum as SQLEnum, UniqueConstraint, Index
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func
from enum import Enum
from typing import List, Optional

from matchbot.constants import MatchConstants

Base = declarative_base()

class ReadyCheckStatus(Enum):
    PENDING = "pending"
    COMPLETE = "complete"
    EXPIRED = "expired"

class MatchStatus(Enum):
    """Status of a match from creation to completion"""
    PENDING = "pending"        # Created, teams assigned, veto not yet posted
    VOTING = "voting"          # Recap, veto and captain vote sub-phases
    REVIEW = "review"          # Captains disagreed, waiting for an admin decision
    CLOSED = "closed"          # Finalized with a winner
    ABANDONED = "abandoned"    # Cancelled by an admin, no rating effect
    REVERSED = "reversed"      # Rating effect undone by an admin

    @classmethod
    def active(cls) -> List['MatchStatus']:
        return [cls.PENDING, cls.VOTING, cls.REVIEW]

    @classmethod
    def terminal(cls) -> List['MatchStatus']:
        return [cls.CLOSED, cls.ABANDONED, cls.REVERSED]

class CancelReason(Enum):
    READY_CHECK_EXPIRED = "ready-check-expired"
    MANUAL_ADJUST = "manual-adjust"
    MANUAL_SET = "manual-set"

class Player(Base):
    __tablename__ = 'players'

    id = Column(Integer, primary_key=True)
    discord_id = Column(BigInteger, unique=True, nullable=False, index=True)  # Negative for synthetic players
    display_name = Column(String(100))

    rating = Column(Integer, nullable=False, default=1000)
    games_played = Column(Integer, nullable=False, default=0)
    banned = Column(Boolean, nullable=False, default=False)
    synthetic = Column(Boolean, nullable=False, default=False)  # Created by /fill, never notified

    # Metadata
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<Player(discord_id={self.discord_id}, rating={self.rating}, games={self.games_played})>"

class QueueEntry(Base):
    __tablename__ = 'queue'

    id = Column(Integer, primary_key=True)
    player_id = Column(BigInteger, nullable=False, unique=True)  # Discord id
    joined_at = Column(DateTime, nullable=False)

    __table_args__ = (Index('ix_queue_order', 'joined_at', 'id'),)

    def __repr__(self):
        return f"<QueueEntry(player_id={self.player_id}, joined_at={self.joined_at})>"

class ReadyCheck(Base):
    __tablename__ = 'ready_checks'

    id = Column(Integer, primary_key=True)
    status = Column(SQLEnum(ReadyCheckStatus), nullable=False, default=ReadyCheckStatus.PENDING, index=True)
    deadline = Column(DateTime, nullable=False)
    ended_at = Column(DateTime, nullable=True)

    # Status display
    status_channel_id = Column(BigInteger, nullable=True)
    status_message_id = Column(BigInteger, nullable=True)

    created_at = Column(DateTime, default=func.now())

    @property
    def is_pending(self) -> bool:
        return self.status == ReadyCheckStatus.PENDING

    def __repr__(self):
        return f"<ReadyCheck(id={self.id}, status={self.status.value})>"

class ReadyCheckMember(Base):
    __tablename__ = 'ready_check_members'

    id = Column(Integer, primary_key=True)
    ready_check_id = Column(Integer, ForeignKey('ready_checks.id'), nullable=False, index=True)
    player_id = Column(BigInteger, nullable=False)
    position = Column(Integer, nullable=False)  # Queue order at snapshot time
    confirmed = Column(Boolean, nullable=False, default=False)
    confirmed_at = Column(DateTime, nullable=True)

    __table_args__ = (UniqueConstraint('ready_check_id', 'player_id'),)

    def __repr__(self):
        return f"<ReadyCheckMember(rc={self.ready_check_id}, player={self.player_id}, confirmed={self.confirmed})>"

class Match(Base):
    """
    A 5v5 match from team assignment to its final result.

    The id comes from the 'match_id' counter, not from autoincrement, so ids
    stay monotonic across wipes of the matches table.
    """
    __tablename__ = 'matches'

    id = Column(Integer, primary_key=True, autoincrement=False)
    status = Column(SQLEnum(MatchStatus), nullable=False, default=MatchStatus.PENDING, index=True)
    winner = Column(String(1), nullable=True)
    previous_winner = Column(String(1), nullable=True)  # Winner before the last reversal
    picked_map = Column(String(50), nullable=True)
    decided_by = Column(BigInteger, nullable=True)  # Admin who forced or reviewed the result

    # Coordination space
    thread_id = Column(BigInteger, nullable=True)
    voice_a_channel_id = Column(BigInteger, nullable=True)
    voice_b_channel_id = Column(BigInteger, nullable=True)

    # Message references
    recap_message_id = Column(BigInteger, nullable=True)
    vote_message_id = Column(BigInteger, nullable=True)
    review_channel_id = Column(BigInteger, nullable=True)
    review_message_id = Column(BigInteger, nullable=True)
    history_channel_id = Column(BigInteger, nullable=True)
    history_message_id = Column(BigInteger, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=func.now())
    closed_at = Column(DateTime, nullable=True)
    reversed_at = Column(DateTime, nullable=True)
    abandoned_at = Column(DateTime, nullable=True)

    @property
    def is_active(self) -> bool:
        return self.status in MatchStatus.active()

    def __repr__(self):
        return f"<Match(id={self.id}, status={self.status.value}, winner={self.winner})>"

class MatchPlayer(Base):
    __tablename__ = 'match_players'

    id = Column(Integer, primary_key=True)
    match_id = Column(Integer, ForeignKey('matches.id'), nullable=False, index=True)
    player_id = Column(BigInteger, nullable=False, index=True)
    team = Column(String(1), nullable=False)
    rating_at_start = Column(Integer, nullable=False)  # Used for captain selection and the recap

    __table_args__ = (UniqueConstraint('match_id', 'player_id'),)

    def __repr__(self):
        return f"<MatchPlayer(match={self.match_id}, player={self.player_id}, team={self.team})>"

class VetoState(Base):
    __tablename__ = 'veto'

    id = Column(Integer, primary_key=True)
    match_id = Column(Integer, ForeignKey('matches.id'), nullable=False, unique=True)

    team_a = Column(JSON, nullable=False)       # [player_id, ...]
    team_b = Column(JSON, nullable=False)
    captain_a = Column(BigInteger, nullable=False)
    captain_b = Column(BigInteger, nullable=False)

    all_maps = Column(JSON, nullable=False)
    remaining = Column(JSON, nullable=False)
    bans = Column(JSON, nullable=False, default=list)  # [{"team": "A", "map": "Bind", "auto": false}, ...]
    current_team = Column(String(1), nullable=True)  # None before start and after the pick
    turn_ends_at = Column(DateTime, nullable=True)
    picked = Column(String(50), nullable=True)

    # Veto board display
    channel_id = Column(BigInteger, nullable=True)
    message_id = Column(BigInteger, nullable=True)

    # Bumped on every write, compared on every conditional update
    version = Column(Integer, nullable=False, default=0)

    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    @property
    def is_active(self) -> bool:
        return self.current_team is not None and len(self.remaining) > 1

    @property
    def is_finished(self) -> bool:
        return self.current_team is None and self.picked is not None

    def captain_for(self, team: str) -> int:
        return self.captain_a if team == MatchConstants.TEAM_A else self.captain_b

    def team_of(self, player_id: int) -> Optional[str]:
        if player_id in self.team_a:
            return MatchConstants.TEAM_A
        if player_id in self.team_b:
            return MatchConstants.TEAM_B
        return None

    def __repr__(self):
        return f"<VetoState(match={self.match_id}, turn={self.current_team}, remaining={len(self.remaining)})>"

class Vote(Base):
    """A captain's opinion of the match result"""
    __tablename__ = 'votes'

    id = Column(Integer, primary_key=True)
    match_id = Column(Integer, ForeignKey('matches.id'), nullable=False, index=True)
    player_id = Column(BigInteger, nullable=False)
    team = Column(String(1), nullable=False)
    created_at = Column(DateTime, default=func.now())

    __table_args__ = (UniqueConstraint('match_id', 'player_id'),)

    def __repr__(self):
        return f"<Vote(match={self.match_id}, player={self.player_id}, team={self.team})>"

class RatingHistory(Base):
    """Append-only ledger of rating changes. Reversal flips `reverted`, never deletes."""
    __tablename__ = 'rating_history'

    id = Column(Integer, primary_key=True)
    player_id = Column(BigInteger, nullable=False, index=True)
    match_id = Column(Integer, ForeignKey('matches.id'), nullable=False, index=True)
    team = Column(String(1), nullable=False)
    old_rating = Column(Integer, nullable=False)
    new_rating = Column(Integer, nullable=False)
    delta = Column(Integer, nullable=False)
    won = Column(Boolean, nullable=False)
    reverted = Column(Boolean, nullable=False, default=False)
    reverted_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=func.now())

    def __repr__(self):
        return f"<RatingHistory(player={self.player_id}, match={self.match_id}, delta={self.delta}, reverted={self.reverted})>"

class Counter(Base):
    __tablename__ = 'counters'

    name = Column(String(50), primary_key=True)
    seq = Column(Integer, nullable=False, default=0)

    def __repr__(self):
        return f"<Counter(name='{self.name}', seq={self.seq})>"

class CancelEvent(Base):
    """Missed ready-checks and admin adjustments, summed per player for the board"""
    __tablename__ = 'cancel_events'

    id = Column(Integer, primary_key=True)
    player_id = Column(BigInteger, nullable=False, index=True)
    ready_check_id = Column(Integer, nullable=True)
    reason = Column(SQLEnum(CancelReason), nullable=False)
    weight = Column(Integer, nullable=False, default=1)
    created_by = Column(BigInteger, nullable=True)  # Admin for manual adjustments
    created_at = Column(DateTime, default=func.now())

    def __repr__(self):
        return f"<CancelEvent(player={self.player_id}, reason={self.reason.value}, weight={self.weight})>"

class Configuration(Base):
    __tablename__ = 'configurations'

    id = Column(Integer, primary_key=True)
    key = Column(String(100), nullable=False, unique=True)
    value = Column(Text, nullable=False)  # JSON-encoded
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<Configuration(key='{self.key}')>"

class AuditLog(Base):
    __tablename__ = 'audit_logs'

    id = Column(Integer, primary_key=True)
    user_id = Column(BigInteger, nullable=False)
    action = Column(String(50), nullable=False)
    details = Column(Text)  # JSON-encoded
    created_at = Column(DateTime, default=func.now())

    def __repr__(self):
        return f"<AuditLog(user_id={self.user_id}, action='{self.action}')>"
