"""
discord.py implementation of the MatchGateway.

Messages the bot keeps up to date are edited in place when their remembered
reference still resolves and re-posted otherwise; the new reference is
returned so the caller can store it. Channels the bot owns (match review,
admin log) are looked up by name in the home guild and created on demand.
"""

from typing import List, Optional, Sequence, Tuple

import discord

from matchbot.config import Config
from matchbot.constants import UIConstants
from matchbot.data_models.displays import (
    CancelRow, FinalizeResult, HistoryEntry, LeaderboardRow, MatchRecap,
    MessageRef, QueueSnapshot, ReadyCheckSnapshot, ReviewRequest, VetoSnapshot, VotePrompt
)
from matchbot.services.gateway import MatchGateway
from matchbot.ui import embeds
from matchbot.ui.views import CaptainVoteView, QueuePanelView, ReadyCheckView, ReviewView, VetoBoardView
from matchbot.utils.logger import setup_logger

logger = setup_logger(__name__)

NO_MENTIONS = discord.AllowedMentions.none()


class DiscordGateway(MatchGateway):
    """Renders matchmaking state into a Discord guild."""

    def __init__(self, bot):
        self.bot = bot
        self.home_guild_id: Optional[int] = None
        self.logger = logger

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def _channel(self, channel_id: int):
        channel = self.bot.get_channel(channel_id)
        if channel is None:
            channel = await self.bot.fetch_channel(channel_id)
        return channel

    def _home_guild(self) -> Optional[discord.Guild]:
        for guild_id in [self.home_guild_id] + Config.get_guild_ids():
            if guild_id:
                guild = self.bot.get_guild(guild_id)
                if guild is not None:
                    return guild
        return self.bot.guilds[0] if self.bot.guilds else None

    async def _named_channel(self, guild: Optional[discord.Guild], name: str) -> Optional[discord.TextChannel]:
        """Find a text channel by name, creating it hidden from @everyone if missing."""
        if guild is None:
            return None
        channel = discord.utils.get(guild.text_channels, name=name)
        if channel is None:
            overwrites = {
                guild.default_role: discord.PermissionOverwrite(view_channel=False),
                guild.me: discord.PermissionOverwrite(view_channel=True, send_messages=True),
            }
            channel = await guild.create_text_channel(name, overwrites=overwrites, reason="Matchmaking bot channel")
            self.logger.info(f"Created #{name} in guild {guild.id}")
        return channel

    async def _upsert(self, channel, ref: Optional[MessageRef], **content) -> MessageRef:
        if ref is not None and ref.channel_id == channel.id:
            try:
                await channel.get_partial_message(ref.message_id).edit(**content)
                return ref
            except discord.NotFound:
                self.logger.info(f"Message {ref.message_id} is gone, posting a new one in {channel.id}")
        message = await channel.send(allowed_mentions=NO_MENTIONS, **content)
        return MessageRef(channel_id=channel.id, message_id=message.id)

    # ------------------------------------------------------------------
    # Queue and ready-check
    # ------------------------------------------------------------------

    async def upsert_queue_panel(self, channel_id: int, ref: Optional[MessageRef],
                                 snapshot: QueueSnapshot) -> Optional[MessageRef]:
        channel = await self._channel(channel_id)
        self.home_guild_id = channel.guild.id
        return await self._upsert(channel, ref, embed=embeds.build_queue_panel_embed(snapshot), view=QueuePanelView())

    async def upsert_ready_check(self, channel_id: int, ref: Optional[MessageRef],
                                 snapshot: ReadyCheckSnapshot) -> Optional[MessageRef]:
        channel = await self._channel(channel_id)
        return await self._upsert(
            channel, ref,
            embed=embeds.build_ready_check_embed(snapshot),
            view=ReadyCheckView(snapshot.ready_check_id)
        )

    async def delete_message(self, ref: MessageRef) -> None:
        channel = await self._channel(ref.channel_id)
        try:
            await channel.get_partial_message(ref.message_id).delete()
        except discord.NotFound:
            pass

    async def notify_ready_check(self, player_id: int, snapshot: ReadyCheckSnapshot) -> bool:
        user = self.bot.get_user(player_id) or await self.bot.fetch_user(player_id)
        try:
            await user.send(
                content="Your 5v5 match is ready. Confirm before the deadline to keep your spot.",
                embed=embeds.build_ready_check_embed(snapshot),
                view=ReadyCheckView(snapshot.ready_check_id)
            )
        except discord.Forbidden:
            self.logger.info(f"Player {player_id} does not accept direct messages")
            return False
        return True

    # ------------------------------------------------------------------
    # Coordination space and voice rooms
    # ------------------------------------------------------------------

    async def create_match_space(self, channel_id: int, match_id: int,
                                 player_ids: Sequence[int]) -> Optional[int]:
        channel = await self._channel(channel_id)
        thread = await channel.create_thread(
            name=f"match-{match_id}",
            type=discord.ChannelType.private_thread,
            invitable=False,
            reason=f"Match #{match_id}"
        )
        for player_id in player_ids:
            if player_id < 0:
                continue
            try:
                await thread.add_user(discord.Object(id=player_id))
            except discord.HTTPException as e:
                self.logger.warning(f"Could not add {player_id} to match thread {thread.id}: {e}")
        self.logger.info(f"Created thread {thread.id} for match {match_id}")
        return thread.id

    async def archive_match_space(self, thread_id: int) -> None:
        thread = await self._channel(thread_id)
        await thread.edit(archived=True, locked=True)

    async def create_voice_rooms(self, channel_id: int, match_id: int, team_a: Sequence[int],
                                 team_b: Sequence[int]) -> Optional[Tuple[int, int]]:
        channel = await self._channel(channel_id)
        guild = channel.guild
        rooms = []
        try:
            for label, team in (('A', team_a), ('B', team_b)):
                overwrites = {
                    guild.default_role: discord.PermissionOverwrite(view_channel=True, connect=False),
                    guild.me: discord.PermissionOverwrite(view_channel=True, connect=True, manage_channels=True),
                }
                for player_id in team:
                    if player_id > 0:
                        overwrites[discord.Object(id=player_id)] = discord.PermissionOverwrite(
                            view_channel=True, connect=True, speak=True
                        )
                rooms.append(await guild.create_voice_channel(
                    f"Match {match_id} - Team {label}",
                    category=channel.category,
                    rtc_region=Config.VOICE_REGION,
                    overwrites=overwrites,
                    reason=f"Match #{match_id}"
                ))
        except Exception:
            # Nothing is stored for a half-built pair, so remove it here
            for room in rooms:
                try:
                    await room.delete(reason=f"Match #{match_id} voice setup failed")
                except discord.HTTPException as e:
                    self.logger.warning(f"Could not delete voice room {room.id}: {e}")
            raise
        return rooms[0].id, rooms[1].id

    async def destroy_voice_rooms(self, channel_ids: Sequence[int]) -> None:
        for channel_id in channel_ids:
            try:
                room = await self._channel(channel_id)
                await room.delete(reason="Match finished")
            except discord.NotFound:
                continue

    # ------------------------------------------------------------------
    # Match messages
    # ------------------------------------------------------------------

    async def upsert_recap(self, thread_id: int, ref: Optional[MessageRef],
                           recap: MatchRecap) -> Optional[MessageRef]:
        thread = await self._channel(thread_id)
        return await self._upsert(thread, ref, embed=embeds.build_recap_embed(recap))

    async def upsert_veto_board(self, thread_id: int, ref: Optional[MessageRef],
                                snapshot: VetoSnapshot) -> Optional[MessageRef]:
        thread = await self._channel(thread_id)
        return await self._upsert(thread, ref, embed=embeds.build_veto_embed(snapshot),
                                  view=VetoBoardView(snapshot))

    async def post_vote_prompt(self, thread_id: int, prompt: VotePrompt) -> Optional[MessageRef]:
        thread = await self._channel(thread_id)
        message = await thread.send(
            content=f"{embeds.player_label(prompt.captain_a)} {embeds.player_label(prompt.captain_b)}",
            embed=embeds.build_vote_prompt_embed(prompt),
            view=CaptainVoteView(prompt.match_id)
        )
        return MessageRef(channel_id=thread.id, message_id=message.id)

    async def post_review_request(self, request: ReviewRequest) -> Optional[MessageRef]:
        guild = None
        if request.thread_id:
            guild = (await self._channel(request.thread_id)).guild
        channel = await self._named_channel(guild or self._home_guild(), UIConstants.MATCH_REVIEW_CHANNEL)
        if channel is None:
            return None
        message = await channel.send(
            embed=embeds.build_review_embed(request),
            view=ReviewView(request.match_id),
            allowed_mentions=NO_MENTIONS
        )
        return MessageRef(channel_id=channel.id, message_id=message.id)

    async def disable_components(self, refs: Sequence[MessageRef]) -> None:
        for ref in refs:
            channel = await self._channel(ref.channel_id)
            try:
                message = await channel.fetch_message(ref.message_id)
            except discord.NotFound:
                continue
            view = discord.ui.View.from_message(message, timeout=None)
            for item in view.children:
                item.disabled = True
            await message.edit(view=view)

    async def announce_result(self, thread_id: int, result: FinalizeResult) -> None:
        thread = await self._channel(thread_id)
        await thread.send(embed=embeds.build_result_embed(result), allowed_mentions=NO_MENTIONS)

    # ------------------------------------------------------------------
    # Boards
    # ------------------------------------------------------------------

    async def render_leaderboard(self, channel_id: int, message_ids: Sequence[int],
                                 pages: List[List[LeaderboardRow]]) -> List[int]:
        channel = await self._channel(channel_id)
        in_use: List[int] = []
        for index, rows in enumerate(pages):
            embed = embeds.build_leaderboard_embed(rows, index + 1, len(pages))
            ref = MessageRef(channel_id, message_ids[index]) if index < len(message_ids) else None
            new_ref = await self._upsert(channel, ref, embed=embed)
            in_use.append(new_ref.message_id)

        for stale_id in message_ids[len(pages):]:
            try:
                await channel.get_partial_message(stale_id).delete()
            except discord.NotFound:
                pass
        return in_use

    async def upsert_match_history(self, channel_id: int, ref: Optional[MessageRef],
                                   entry: HistoryEntry) -> Optional[MessageRef]:
        channel = await self._channel(channel_id)
        return await self._upsert(channel, ref, embed=embeds.build_history_embed(entry))

    async def upsert_cancel_board(self, channel_id: int, ref: Optional[MessageRef],
                                  rows: List[CancelRow]) -> Optional[MessageRef]:
        channel = await self._channel(channel_id)
        return await self._upsert(channel, ref, embed=embeds.build_cancel_board_embed(rows))

    async def log_admin_action(self, text: str) -> None:
        channel = await self._named_channel(self._home_guild(), UIConstants.ADMIN_LOG_CHANNEL)
        if channel is not None:
            await channel.send(text[:2000], allowed_mentions=NO_MENTIONS)
