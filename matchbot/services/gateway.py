"""
Outbound interface from the match lifecycle to the chat platform.

The operations layer never touches discord.py directly. It persists state
first, then asks a MatchGateway to show it. Upsert methods receive the
remembered MessageRef (or None) and return the reference that now holds the
content, which may be a freshly posted message when the old one was deleted.
The caller stores whatever comes back.

Display failures must never undo a committed transition: every call from the
operations layer goes through `safely`, which logs and returns None.
"""

from abc import ABC, abstractmethod
from typing import Awaitable, List, Optional, Sequence, Tuple, TypeVar

from matchbot.data_models.displays import (
    CancelRow, FinalizeResult, HistoryEntry, LeaderboardRow, MatchRecap,
    MessageRef, QueueSnapshot, ReadyCheckSnapshot, ReviewRequest, VetoSnapshot, VotePrompt
)
from matchbot.utils.logger import setup_logger

logger = setup_logger(__name__)

T = TypeVar('T')


async def safely(awaitable: Awaitable[T], description: str) -> Optional[T]:
    """Await a gateway call, logging and swallowing any failure."""
    try:
        return await awaitable
    except Exception as e:
        logger.warning(f"Display operation '{description}' failed: {e}", exc_info=True)
        return None


class MatchGateway(ABC):
    """Everything the lifecycle needs from the chat platform."""

    # ------------------------------------------------------------------
    # Queue and ready-check
    # ------------------------------------------------------------------

    @abstractmethod
    async def upsert_queue_panel(self, channel_id: int, ref: Optional[MessageRef],
                                 snapshot: QueueSnapshot) -> Optional[MessageRef]:
        """Edit the queue panel in place or post it to channel_id."""

    @abstractmethod
    async def upsert_ready_check(self, channel_id: int, ref: Optional[MessageRef],
                                 snapshot: ReadyCheckSnapshot) -> Optional[MessageRef]:
        """Show the ready-check status with its confirm button."""

    @abstractmethod
    async def delete_message(self, ref: MessageRef) -> None:
        """Delete a message, ignoring one that is already gone."""

    @abstractmethod
    async def notify_ready_check(self, player_id: int, snapshot: ReadyCheckSnapshot) -> bool:
        """Direct-message a participant with a confirm button. False when undeliverable."""

    # ------------------------------------------------------------------
    # Coordination space and voice rooms
    # ------------------------------------------------------------------

    @abstractmethod
    async def create_match_space(self, channel_id: int, match_id: int,
                                 player_ids: Sequence[int]) -> Optional[int]:
        """Create a private thread under channel_id, add the players, return its id."""

    @abstractmethod
    async def archive_match_space(self, thread_id: int) -> None:
        """Lock and archive the match thread."""

    @abstractmethod
    async def create_voice_rooms(self, channel_id: int, match_id: int, team_a: Sequence[int],
                                 team_b: Sequence[int]) -> Optional[Tuple[int, int]]:
        """Create one voice room per team, visible only to its members."""

    @abstractmethod
    async def destroy_voice_rooms(self, channel_ids: Sequence[int]) -> None:
        """Delete the team voice rooms of a match."""

    # ------------------------------------------------------------------
    # Match messages
    # ------------------------------------------------------------------

    @abstractmethod
    async def upsert_recap(self, thread_id: int, ref: Optional[MessageRef],
                           recap: MatchRecap) -> Optional[MessageRef]:
        """Show teams and captains in the match thread."""

    @abstractmethod
    async def upsert_veto_board(self, thread_id: int, ref: Optional[MessageRef],
                                snapshot: VetoSnapshot) -> Optional[MessageRef]:
        """Show the veto board with one button per map."""

    @abstractmethod
    async def post_vote_prompt(self, thread_id: int, prompt: VotePrompt) -> Optional[MessageRef]:
        """Post the captain result vote buttons."""

    @abstractmethod
    async def post_review_request(self, request: ReviewRequest) -> Optional[MessageRef]:
        """Post a disputed result with admin decision buttons to the review channel."""

    @abstractmethod
    async def disable_components(self, refs: Sequence[MessageRef]) -> None:
        """Remove or disable the buttons on the given messages."""

    @abstractmethod
    async def announce_result(self, thread_id: int, result: FinalizeResult) -> None:
        """Post the final result and rating changes in the match thread."""

    # ------------------------------------------------------------------
    # Boards
    # ------------------------------------------------------------------

    @abstractmethod
    async def render_leaderboard(self, channel_id: int, message_ids: Sequence[int],
                                 pages: List[List[LeaderboardRow]]) -> List[int]:
        """Render leaderboard pages, reusing message_ids in order. Returns the ids in use."""

    @abstractmethod
    async def upsert_match_history(self, channel_id: int, ref: Optional[MessageRef],
                                   entry: HistoryEntry) -> Optional[MessageRef]:
        """Show one match in the match-history channel."""

    @abstractmethod
    async def upsert_cancel_board(self, channel_id: int, ref: Optional[MessageRef],
                                  rows: List[CancelRow]) -> Optional[MessageRef]:
        """Show the missed ready-check standings."""

    @abstractmethod
    async def log_admin_action(self, text: str) -> None:
        """Write a line to the admin log channel."""
