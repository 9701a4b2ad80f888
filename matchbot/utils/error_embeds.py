"""
Centralized error embeds for consistent error handling across the matchmaking bot.

Provides standardized error messages and formatting so every cog and button
handler reports failures the same way.
"""

import discord

from matchbot.utils.exceptions import MatchmakingError, PermissionDeniedError


class ErrorEmbeds:
    """Centralized error embed factory for consistent error handling."""

    @staticmethod
    def from_error(error: MatchmakingError) -> discord.Embed:
        """Create embed carrying a MatchmakingError's user message."""
        if isinstance(error, PermissionDeniedError):
            title = "Permission Denied"
        else:
            title = "Action Not Possible"
        return discord.Embed(
            title=title,
            description=error.user_message,
            color=discord.Color.red()
        )

    @staticmethod
    def command_error(error: str) -> discord.Embed:
        """Create embed for general command errors."""
        return discord.Embed(
            title="Command Error",
            description=f"An error occurred: {error}\n\nPlease try again or contact an administrator.",
            color=discord.Color.red()
        )
