"""
Custom exceptions for the matchmaking bot with user-friendly error messages.

Every error a user can trigger derives from MatchmakingError and carries a
user_message that the cogs send back ephemerally.
"""

class MatchmakingError(Exception):
    """Base exception for matchmaking errors."""
    def __init__(self, message: str, user_message: str = None):
        super().__init__(message)
        self.user_message = user_message or message

# ============================================================================
# Queue
# ============================================================================

class AlreadyQueuedError(MatchmakingError):
    """Raised when a player joins a queue they are already in."""
    def __init__(self, player_id: int):
        super().__init__(
            f"Player {player_id} is already queued",
            "❌ You are already in the queue."
        )

class AlreadyInActiveMatchError(MatchmakingError):
    """Raised when a player still belongs to an unfinished match."""
    def __init__(self, player_id: int, match_id: int):
        self.match_id = match_id
        super().__init__(
            f"Player {player_id} is in active match #{match_id}",
            f"❌ You are still in match #{match_id}. Finish it before queueing again."
        )

class PlayerBannedError(MatchmakingError):
    """Raised when a banned player tries to queue."""
    def __init__(self, player_id: int):
        super().__init__(
            f"Player {player_id} is banned from queueing",
            "❌ You are not allowed to join the queue."
        )

class NotQueuedError(MatchmakingError):
    """Raised when a player leaves a queue they are not in."""
    def __init__(self, player_id: int):
        super().__init__(
            f"Player {player_id} is not queued",
            "❌ You are not in the queue."
        )

# ============================================================================
# Ready-check
# ============================================================================

class ReadyCheckNotFoundError(MatchmakingError):
    """Raised when a ready-check id does not exist."""
    def __init__(self, ready_check_id: int):
        super().__init__(
            f"Ready-check {ready_check_id} not found",
            "❌ This ready-check no longer exists."
        )

class CheckNotPendingError(MatchmakingError):
    """Raised when confirming a ready-check that already completed or expired."""
    def __init__(self, ready_check_id: int, status: str):
        super().__init__(
            f"Ready-check {ready_check_id} is {status}",
            "❌ This ready-check is already over."
        )

class NotInThisCheckError(MatchmakingError):
    """Raised when a player confirms a ready-check they are not part of."""
    def __init__(self, ready_check_id: int, player_id: int):
        super().__init__(
            f"Player {player_id} is not part of ready-check {ready_check_id}",
            "❌ You are not part of this ready-check."
        )

class AlreadyConfirmedError(MatchmakingError):
    """Raised when a player confirms twice."""
    def __init__(self, ready_check_id: int, player_id: int):
        super().__init__(
            f"Player {player_id} already confirmed ready-check {ready_check_id}",
            "✅ You are already marked as ready."
        )

# ============================================================================
# Veto
# ============================================================================

class VetoNotFoundError(MatchmakingError):
    """Raised when a match has no veto state."""
    def __init__(self, match_id: int):
        super().__init__(
            f"No veto for match {match_id}",
            f"❌ Match #{match_id} has no map veto."
        )

class VetoFinishedError(MatchmakingError):
    """Raised when banning after the veto already picked a map."""
    def __init__(self, match_id: int):
        super().__init__(
            f"Veto for match {match_id} is finished",
            "❌ The map veto is already finished."
        )

class NotYourTurnError(MatchmakingError):
    """Raised when someone other than the active captain bans."""
    def __init__(self, player_id: int, current_team: str):
        super().__init__(
            f"Player {player_id} acted out of turn (team {current_team} to ban)",
            f"❌ It is Team {current_team}'s captain's turn to ban."
        )

class MapUnavailableError(MatchmakingError):
    """Raised when banning a map that is not in the remaining pool."""
    def __init__(self, map_name: str):
        super().__init__(
            f"Map '{map_name}' is not available",
            f"❌ {map_name} is not available to ban."
        )

class VetoInProgressError(MatchmakingError):
    """Raised when an action requires the veto to be finished."""
    def __init__(self, match_id: int):
        super().__init__(
            f"Veto for match {match_id} is still in progress",
            f"❌ The map veto for match #{match_id} is still in progress."
        )

class NotOnTeamError(MatchmakingError):
    """Raised when assigning a captain who does not play on that team."""
    def __init__(self, player_id: int, team: str):
        super().__init__(
            f"Player {player_id} is not on team {team}",
            f"❌ That player is not on Team {team}."
        )

# ============================================================================
# Match
# ============================================================================

class MatchNotFoundError(MatchmakingError):
    """Raised when a match id does not exist."""
    def __init__(self, match_id: int):
        super().__init__(
            f"Match {match_id} not found",
            f"❌ Match #{match_id} not found."
        )

class InvalidMatchStateError(MatchmakingError):
    """Raised when a match is in the wrong status for an operation."""
    def __init__(self, match_id: int, status: str, action: str):
        self.status = status
        super().__init__(
            f"Cannot {action} match {match_id} in status {status}",
            f"❌ Match #{match_id} is {status}; cannot {action} it."
        )

class MatchAlreadyClosedError(InvalidMatchStateError):
    """Raised when forcing a result on a match that already has one."""
    def __init__(self, match_id: int):
        super().__init__(match_id, "closed", "force a winner for")

class AlreadyReversedError(InvalidMatchStateError):
    """Raised when reversing a match twice."""
    def __init__(self, match_id: int):
        super().__init__(match_id, "reversed", "reverse")

class NotACaptainError(MatchmakingError):
    """Raised when a non-captain votes on a match result."""
    def __init__(self, match_id: int, player_id: int):
        super().__init__(
            f"Player {player_id} is not a captain of match {match_id}",
            "❌ Only the two captains can vote on the result."
        )

# ============================================================================
# Admin & configuration
# ============================================================================

class PermissionDeniedError(MatchmakingError):
    """Raised when a member lacks the role required for an admin command."""
    def __init__(self, command: str):
        super().__init__(
            f"Permission denied for /{command}",
            f"❌ You don't have permission to use /{command}."
        )

class InvalidSettingError(MatchmakingError):
    """Raised when a setting value is out of range."""
    def __init__(self, reason: str):
        super().__init__(f"Invalid setting: {reason}", f"❌ {reason}")

class NothingToUpdateError(MatchmakingError):
    """Raised when a settings command is called without any values."""
    def __init__(self):
        super().__init__(
            "No settings provided",
            "❌ Provide at least one setting to change."
        )

class InvalidKeyError(MatchmakingError):
    """Raised when the admin key for a destructive command is wrong."""
    def __init__(self):
        super().__init__(
            "Invalid admin key",
            "❌ Invalid admin key."
        )

class ConfirmationRequiredError(MatchmakingError):
    """Raised when a destructive command is run without confirm=True."""
    def __init__(self, command: str):
        super().__init__(
            f"/{command} requires confirmation",
            f"❌ Run /{command} again with confirm set to True."
        )

class UnknownActionError(MatchmakingError):
    """Raised when a component custom_id does not belong to this bot."""
    def __init__(self, custom_id: str):
        super().__init__(
            f"Unknown action '{custom_id}'",
            "❌ This button is no longer supported."
        )
