"""
Queue Cog - player-facing queue commands and button routing

Slash commands for joining and leaving the queue plus the admin commands that
place the queue panel and change queue settings. Every matchmaking button
(join, leave, ready, map ban, captain vote, review) is routed from here by
decoding its custom_id.
"""

from typing import Optional

import discord
from discord import app_commands
from discord.ext import commands

from matchbot.constants import MatchConstants
from matchbot.operations.match_operations import VoteOutcome
from matchbot.services.rate_limiter import rate_limit
from matchbot.ui.actions import (
    BanMap, CaptainVote, ConfirmReady, JoinQueue, LeaveQueue, ReviewDecision,
    decode_action, is_matchmaking_action
)
from matchbot.utils.error_embeds import ErrorEmbeds
from matchbot.utils.exceptions import MatchmakingError
from matchbot.utils.logger import setup_logger
from matchbot.utils.permissions import ensure_command_access

logger = setup_logger(__name__)

# Clicks allowed per user on the join/leave buttons
BUTTON_LIMIT = 5
BUTTON_WINDOW = 30


class QueueCog(commands.Cog):
    """Queue commands and matchmaking button handling"""

    def __init__(self, bot):
        self.bot = bot
        self.mm = bot.matchmaking
        self.logger = logger

        self._handlers = {
            JoinQueue: self._on_join,
            LeaveQueue: self._on_leave,
            ConfirmReady: self._on_ready,
            BanMap: self._on_ban,
            CaptainVote: self._on_vote,
            ReviewDecision: self._on_review,
        }

    async def _reply(self, interaction: discord.Interaction, content: Optional[str] = None,
                     embed: Optional[discord.Embed] = None):
        if interaction.response.is_done():
            await interaction.followup.send(content=content, embed=embed, ephemeral=True)
        else:
            await interaction.response.send_message(content=content, embed=embed, ephemeral=True)

    # ============================================================================
    # Slash commands
    # ============================================================================

    @app_commands.command(name="join", description="Join the 5v5 queue")
    @rate_limit("join", limit=BUTTON_LIMIT, window=BUTTON_WINDOW)
    async def join(self, interaction: discord.Interaction):
        await interaction.response.defer(ephemeral=True)
        try:
            await self._reply(interaction, await self._on_join(interaction, JoinQueue()))
        except MatchmakingError as e:
            await self._reply(interaction, embed=ErrorEmbeds.from_error(e))
        except Exception as e:
            self.logger.error(f"Error in /join: {e}", exc_info=True)
            await self._reply(interaction, embed=ErrorEmbeds.command_error("Could not join the queue."))

    @app_commands.command(name="leave", description="Leave the 5v5 queue")
    @rate_limit("leave", limit=BUTTON_LIMIT, window=BUTTON_WINDOW)
    async def leave(self, interaction: discord.Interaction):
        await interaction.response.defer(ephemeral=True)
        try:
            await self._reply(interaction, await self._on_leave(interaction, LeaveQueue()))
        except MatchmakingError as e:
            await self._reply(interaction, embed=ErrorEmbeds.from_error(e))
        except Exception as e:
            self.logger.error(f"Error in /leave: {e}", exc_info=True)
            await self._reply(interaction, embed=ErrorEmbeds.command_error("Could not leave the queue."))

    @app_commands.command(name="setup", description="Post the queue panel in this channel (Admin)")
    @app_commands.describe(channel="Channel for the queue panel; defaults to this one")
    async def setup_panel(self, interaction: discord.Interaction, channel: Optional[discord.TextChannel] = None):
        await interaction.response.defer(ephemeral=True)
        try:
            ensure_command_access(interaction.user, 'setup', self.bot.config_service)
            target = channel or interaction.channel
            await self.mm.queue.install_panel(target.id, interaction.user.id)
            await self.mm.queue.trigger()
            await self._reply(interaction, f"✅ Queue panel installed in {target.mention}.")
        except MatchmakingError as e:
            await self._reply(interaction, embed=ErrorEmbeds.from_error(e))
        except Exception as e:
            self.logger.error(f"Error in /setup: {e}", exc_info=True)
            await self._reply(interaction, embed=ErrorEmbeds.command_error("Could not install the queue panel."))

    @app_commands.command(name="queue_settings", description="Change ready-check settings (Admin)")
    @app_commands.describe(
        ready_check="Require players to confirm before a match starts",
        seconds="Seconds players have to confirm (10-600)"
    )
    async def queue_settings(self, interaction: discord.Interaction, ready_check: Optional[bool] = None,
                             seconds: Optional[int] = None):
        await interaction.response.defer(ephemeral=True)
        try:
            ensure_command_access(interaction.user, 'queue_settings', self.bot.config_service)
            settings = await self.mm.admin.configure_queue(interaction.user.id, ready_check, seconds)
            embed = discord.Embed(title="Queue settings", color=discord.Color.green())
            embed.add_field(name="Ready-check", value="On" if settings.ready_enabled else "Off")
            embed.add_field(name="Seconds", value=str(settings.ready_seconds))
            await self._reply(interaction, embed=embed)
        except MatchmakingError as e:
            await self._reply(interaction, embed=ErrorEmbeds.from_error(e))
        except Exception as e:
            self.logger.error(f"Error in /queue_settings: {e}", exc_info=True)
            await self._reply(interaction, embed=ErrorEmbeds.command_error("Could not change queue settings."))

    # ============================================================================
    # Buttons
    # ============================================================================

    @commands.Cog.listener()
    async def on_interaction(self, interaction: discord.Interaction):
        """Route matchmaking button clicks by custom_id."""
        if interaction.type != discord.InteractionType.component:
            return
        custom_id = (interaction.data or {}).get('custom_id', '')
        if not is_matchmaking_action(custom_id):
            return

        try:
            action = decode_action(custom_id)
            if isinstance(action, (JoinQueue, LeaveQueue)):
                verb = 'join' if isinstance(action, JoinQueue) else 'leave'
                if not await self.bot.rate_limiter.is_allowed(interaction.user.id, verb, BUTTON_LIMIT, BUTTON_WINDOW):
                    await self._reply(interaction, "⏰ Slow down, try again in a few seconds.")
                    return

            await interaction.response.defer(ephemeral=True)
            message = await self._handlers[type(action)](interaction, action)
            if message:
                await self._reply(interaction, message)
        except MatchmakingError as e:
            self.logger.debug(f"Button {custom_id} by {interaction.user.id} rejected: {e}")
            await self._reply(interaction, embed=ErrorEmbeds.from_error(e))
        except Exception as e:
            self.logger.error(f"Error handling button {custom_id}: {e}", exc_info=True)
            await self._reply(interaction, embed=ErrorEmbeds.command_error("Something went wrong with that button."))

    async def _on_join(self, interaction: discord.Interaction, action: JoinQueue) -> str:
        count = await self.mm.queue.join(interaction.user.id, interaction.user.display_name)
        return f"✅ You joined the queue ({count}/{MatchConstants.QUEUE_SIZE})."

    async def _on_leave(self, interaction: discord.Interaction, action: LeaveQueue) -> str:
        count = await self.mm.queue.leave(interaction.user.id)
        return f"👋 You left the queue ({count}/{MatchConstants.QUEUE_SIZE})."

    async def _on_ready(self, interaction: discord.Interaction, action: ConfirmReady) -> str:
        completed = await self.mm.ready_checks.confirm(action.ready_check_id, interaction.user.id)
        if completed:
            return "✅ Everyone is ready, the match is starting."
        return "✅ You are ready. Waiting for the others."

    async def _on_ban(self, interaction: discord.Interaction, action: BanMap) -> str:
        state = await self.mm.veto.ban_map(action.match_id, interaction.user.id, action.map_name)
        if state.is_finished:
            return f"🚫 You banned {action.map_name}. **{state.picked}** will be played."
        return f"🚫 You banned {action.map_name}."

    async def _on_vote(self, interaction: discord.Interaction, action: CaptainVote) -> str:
        receipt = await self.mm.matches.cast_vote(action.match_id, interaction.user.id, action.team)
        if receipt.outcome == VoteOutcome.FINALIZED:
            return f"🏆 Both captains agree: Team {action.team} wins."
        if receipt.outcome == VoteOutcome.ESCALATED:
            return "⚠️ The captains disagree. An admin will review the result."
        return f"🗳️ Vote for Team {action.team} recorded. Waiting for the other captain."

    async def _on_review(self, interaction: discord.Interaction, action: ReviewDecision) -> str:
        ensure_command_access(interaction.user, 'match_review', self.bot.config_service)
        await self.mm.admin.resolve_review(action.match_id, action.team, interaction.user.id)
        return f"✅ Match #{action.match_id} resolved: Team {action.team} wins."


async def setup(bot):
    await bot.add_cog(QueueCog(bot))
