"""
Bot-wide constants for the matchmaking bot.

This module contains the fixed numbers of the 5v5 format and the values used
by the Discord presentation layer.
"""

class MatchConstants:
    """Constants describing the match format."""

    QUEUE_SIZE = 10
    TEAM_SIZE = 5

    TEAM_A = "A"
    TEAM_B = "B"
    TEAMS = (TEAM_A, TEAM_B)

class QueueConstants:
    """Constants for the queue and ready-check."""

    MIN_READY_SECONDS = 10
    MAX_READY_SECONDS = 600

class VetoConstants:
    """Constants for the captain map veto."""

    DEFAULT_MAPS = (
        "Ascent", "Bind", "Haven", "Split", "Icebox",
        "Breeze", "Lotus", "Sunset", "Fracture", "Pearl",
    )

    CAPTAIN_MODES = ("random", "highest")

    MIN_TURN_SECONDS = 10
    MAX_TURN_SECONDS = 600

    # Discord allows 5 buttons per action row and 5 rows per message
    MAPS_PER_ROW = 5
    MAX_MAPS = 25

    # Keeps ban button custom_ids under Discord's 100 character limit
    MAX_MAP_NAME_LENGTH = 50

class UIConstants:
    """Constants for Discord UI elements."""

    # Embed colors
    DEFAULT_EMBED_COLOR = 0x3498db  # Blue
    GOLD_RANK_COLOR = 0xffd700     # Gold for #1 ranked players
    ERROR_COLOR = 0xe74c3c         # Red for errors
    SUCCESS_COLOR = 0x2ecc71       # Green for success
    WARNING_COLOR = 0xf39c12       # Orange for pending / review
    NEUTRAL_COLOR = 0x95a5a6       # Grey for abandoned / reversed

    # Emoji for UI elements
    TROPHY_EMOJI = "🏆"
    MAP_EMOJI = "🗺️"
    CAPTAIN_EMOJI = "👑"
    READY_EMOJI = "✅"
    WAITING_EMOJI = "⏳"

    LEADERBOARD_PAGE_SIZE = 30

    # Channels created on demand by the gateway
    LEADERBOARD_CHANNEL = "leaderboard"
    MATCH_HISTORY_CHANNEL = "match-history"
    MATCH_REVIEW_CHANNEL = "match-review"
    CANCEL_LOG_CHANNEL = "missed-ready-checks"
    ADMIN_LOG_CHANNEL = "logs-bot"
