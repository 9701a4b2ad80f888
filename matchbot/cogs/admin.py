"""
Admin Cog - match overrides, veto settings, boards and maintenance

Every command checks its role allow-list (see matchbot.utils.permissions)
before doing anything, then delegates to AdminOperations so each action is
audited and posted to the admin log channel.
"""

from typing import Literal, Optional

import discord
from discord import app_commands
from discord.ext import commands

from matchbot.constants import MatchConstants
from matchbot.utils.elo import EloCalculator
from matchbot.utils.error_embeds import ErrorEmbeds
from matchbot.utils.exceptions import MatchmakingError
from matchbot.utils.logger import setup_logger
from matchbot.utils.permissions import ADMIN_COMMANDS, ensure_command_access, parse_role_ids

logger = setup_logger(__name__)

Team = Literal['A', 'B']
CaptainMode = Literal['random', 'highest']


class AdminCog(commands.Cog):
    """Admin commands for running the matchmaking system"""

    def __init__(self, bot):
        self.bot = bot
        self.mm = bot.matchmaking
        self.admin_ops = bot.matchmaking.admin
        self.logger = logger

    async def _run(self, interaction: discord.Interaction, command: str, action, failure: str):
        """
        Defer, check access, run the action and send what it returns.

        Args:
            interaction: The slash command interaction
            command: Admin command name for the permission check
            action: Coroutine function returning an embed or a string
            failure: Message shown on an unexpected error
        """
        await interaction.response.defer(ephemeral=True)
        try:
            ensure_command_access(interaction.user, command, self.bot.config_service)
            reply = await action()
            if isinstance(reply, discord.Embed):
                await interaction.followup.send(embed=reply, ephemeral=True)
            else:
                await interaction.followup.send(reply, ephemeral=True)
        except MatchmakingError as e:
            self.logger.info(f"/{command} by {interaction.user.id} rejected: {e}")
            await interaction.followup.send(embed=ErrorEmbeds.from_error(e), ephemeral=True)
        except Exception as e:
            self.logger.error(f"Error in /{command}: {e}", exc_info=True)
            await interaction.followup.send(embed=ErrorEmbeds.command_error(failure), ephemeral=True)

    # ============================================================================
    # Match overrides
    # ============================================================================

    @app_commands.command(name="forcewin", description="Force the winner of an unfinished match (Admin)")
    @app_commands.describe(match_id="Match number", team="Winning team")
    async def forcewin(self, interaction: discord.Interaction, match_id: int, team: Team):
        async def action():
            result = await self.admin_ops.force_win(match_id, team, interaction.user.id)
            return (f"✅ Match #{match_id}: Team {team} wins "
                    f"(A {EloCalculator.format_elo_change(result.delta_a)}, "
                    f"B {EloCalculator.format_elo_change(result.delta_b)}).")
        await self._run(interaction, 'forcewin', action, "Could not force the result.")

    @app_commands.command(name="match_reverse", description="Undo the rating changes of a finished match (Admin)")
    @app_commands.describe(match_id="Match number")
    async def match_reverse(self, interaction: discord.Interaction, match_id: int):
        async def action():
            result = await self.admin_ops.reverse_match(match_id, interaction.user.id)
            return (f"↩️ Match #{match_id} reversed; {len(result.reverted)} ratings restored. "
                    f"Use /forcewin to record a new result.")
        await self._run(interaction, 'match_reverse', action, "Could not reverse the match.")

    @app_commands.command(name="match_cancel", description="Cancel an unfinished match without rating changes (Admin)")
    @app_commands.describe(match_id="Match number")
    async def match_cancel(self, interaction: discord.Interaction, match_id: int):
        async def action():
            await self.admin_ops.cancel_match(match_id, interaction.user.id)
            return f"🛑 Match #{match_id} cancelled."
        await self._run(interaction, 'match_cancel', action, "Could not cancel the match.")

    @app_commands.command(name="match_set_winner", description="Correct the winner of a finished match (Admin)")
    @app_commands.describe(match_id="Match number", team="Correct winning team")
    async def match_set_winner(self, interaction: discord.Interaction, match_id: int, team: Team):
        async def action():
            result = await self.admin_ops.set_winner(match_id, team, interaction.user.id)
            return (f"✅ Match #{match_id} now won by Team {team} "
                    f"(A {EloCalculator.format_elo_change(result.delta_a)}, "
                    f"B {EloCalculator.format_elo_change(result.delta_b)}).")
        await self._run(interaction, 'match_set_winner', action, "Could not change the winner.")

    # ============================================================================
    # Veto
    # ============================================================================

    @app_commands.command(name="veto_config", description="Change map veto settings (Admin)")
    @app_commands.describe(
        captain_mode="How captains are chosen",
        maps="Comma-separated map pool, or 'default' to restore the default pool",
        turn_seconds="Seconds per ban before a random map is banned (10-600)"
    )
    async def veto_config(self, interaction: discord.Interaction, captain_mode: Optional[CaptainMode] = None,
                          maps: Optional[str] = None, turn_seconds: Optional[int] = None):
        async def action():
            pool = '' if maps is not None and maps.strip().lower() == 'default' else maps
            settings = await self.admin_ops.configure_veto(interaction.user.id, captain_mode, pool, turn_seconds)
            return self._veto_embed(settings, "Veto settings updated")
        await self._run(interaction, 'veto_config', action, "Could not change veto settings.")

    @app_commands.command(name="veto_show_config", description="Show the map veto settings")
    async def veto_show_config(self, interaction: discord.Interaction):
        embed = self._veto_embed(self.mm.veto.get_settings(), "Veto settings")
        await interaction.response.send_message(embed=embed, ephemeral=True)

    def _veto_embed(self, settings, title: str) -> discord.Embed:
        embed = discord.Embed(title=title, color=discord.Color.blue())
        embed.add_field(name="Captains", value=settings.captain_mode)
        embed.add_field(name="Turn", value=f"{settings.turn_seconds}s")
        embed.add_field(name=f"Maps ({len(settings.maps)})", value=", ".join(settings.maps), inline=False)
        return embed

    @app_commands.command(name="veto_set_captain", description="Replace a team captain in a match (Admin)")
    @app_commands.describe(match_id="Match number", team="Team", member="New captain, a member of that team")
    async def veto_set_captain(self, interaction: discord.Interaction, match_id: int, team: Team,
                               member: discord.User):
        async def action():
            await self.admin_ops.set_captain(match_id, team, member.id, interaction.user.id)
            return f"👑 {member.mention} is now captain of Team {team} in match #{match_id}."
        await self._run(interaction, 'veto_set_captain', action, "Could not change the captain.")

    # ============================================================================
    # Queue tools
    # ============================================================================

    @app_commands.command(name="fill", description="Fill the queue with members or test players (Admin)")
    @app_commands.describe(
        count="Players to add; defaults to filling the queue",
        members="Mentions of members to add first",
        synthetic="Add test players for the remainder",
        auto_confirm="Confirm test players on the ready-check"
    )
    async def fill(self, interaction: discord.Interaction, count: Optional[app_commands.Range[int, 1, 50]] = None,
                   members: Optional[str] = None, synthetic: bool = True, auto_confirm: bool = True):
        async def action():
            member_ids = [int(raw) for raw in _mention_ids(members)] if members else []
            result = await self.admin_ops.fill_queue(
                interaction.user.id, count=count, member_ids=member_ids,
                use_synthetic=synthetic, auto_confirm_synthetic=auto_confirm
            )
            text = (f"✅ Added {len(result['added'])} players ({len(result['synthetic'])} test players). "
                    f"Queue: {result['queue_count']}/{MatchConstants.QUEUE_SIZE}.")
            if result['match_ids']:
                text += f" Started match {', '.join('#' + str(mid) for mid in result['match_ids'])}."
            elif result['ready_check_id'] is not None:
                text += f" Ready-check running, {result['auto_confirmed']} test players confirmed."
            return text
        await self._run(interaction, 'fill', action, "Could not fill the queue.")

    @app_commands.command(name="clearqueue", description="Remove everyone from the queue (Admin)")
    async def clearqueue(self, interaction: discord.Interaction):
        async def action():
            removed = await self.admin_ops.clear_queue(interaction.user.id)
            return f"🧹 Queue cleared, {removed} players removed."
        await self._run(interaction, 'clearqueue', action, "Could not clear the queue.")

    # ============================================================================
    # Boards
    # ============================================================================

    @app_commands.command(name="setup_leaderboard", description="Show the leaderboard in a channel (Admin)")
    @app_commands.describe(channel="Channel for the leaderboard")
    async def setup_leaderboard(self, interaction: discord.Interaction, channel: discord.TextChannel):
        async def action():
            await self.mm.boards.install_leaderboard(channel.id, interaction.user.id)
            return f"✅ Leaderboard installed in {channel.mention}."
        await self._run(interaction, 'setup_leaderboard', action, "Could not install the leaderboard.")

    @app_commands.command(name="setup_match_history", description="Post match history in a channel (Admin)")
    @app_commands.describe(channel="Channel for match history")
    async def setup_match_history(self, interaction: discord.Interaction, channel: discord.TextChannel):
        async def action():
            posted = await self.mm.boards.install_match_history(channel.id, interaction.user.id)
            return f"✅ Match history installed in {channel.mention} ({posted} recent matches posted)."
        await self._run(interaction, 'setup_match_history', action, "Could not install match history.")

    @app_commands.command(name="setup_cancel_log", description="Show missed ready-checks in a channel (Admin)")
    @app_commands.describe(channel="Channel for the missed ready-check board")
    async def setup_cancel_log(self, interaction: discord.Interaction, channel: discord.TextChannel):
        async def action():
            await self.mm.boards.install_cancel_board(channel.id, interaction.user.id)
            return f"✅ Missed ready-check board installed in {channel.mention}."
        await self._run(interaction, 'setup_cancel_log', action, "Could not install the board.")

    @app_commands.command(name="cancel_adjust", description="Adjust a player's missed ready-checks (Admin)")
    @app_commands.describe(member="Player", amount="Amount to add, or the new total", mode="add or set")
    async def cancel_adjust(self, interaction: discord.Interaction, member: discord.User, amount: int,
                            mode: Literal['add', 'set'] = 'add'):
        async def action():
            total = await self.admin_ops.adjust_missed_ready_checks(member.id, amount, mode, interaction.user.id)
            return f"✅ {member.mention} now has {total} missed ready-checks."
        await self._run(interaction, 'cancel_adjust', action, "Could not adjust missed ready-checks.")

    # ============================================================================
    # Roles and maintenance
    # ============================================================================

    @app_commands.command(name="admin_roles_set", description="Choose which roles may use an admin command (Admin)")
    @app_commands.describe(command="Admin command", roles="Role mentions; leave empty for Administrator only")
    async def admin_roles_set(self, interaction: discord.Interaction, command: str, roles: Optional[str] = None):
        async def action():
            role_ids = parse_role_ids(_mention_ids(roles)) if roles else []
            await self.admin_ops.set_command_roles(command, role_ids, interaction.user.id)
            if not role_ids:
                return f"✅ /{command} is now limited to Administrators."
            return f"✅ /{command} allowed for {', '.join(f'<@&{role_id}>' for role_id in role_ids)}."
        await self._run(interaction, 'admin_roles_set', action, "Could not update command roles.")

    @admin_roles_set.autocomplete('command')
    async def command_autocomplete(self, interaction: discord.Interaction,
                                   current: str) -> list[app_commands.Choice[str]]:
        return [
            app_commands.Choice(name=command, value=command)
            for command in ADMIN_COMMANDS
            if current.lower() in command
        ][:25]

    @app_commands.command(name="admin_roles_show", description="Show which roles may use each admin command")
    async def admin_roles_show(self, interaction: discord.Interaction):
        lines = []
        for command, role_ids in self.admin_ops.command_roles().items():
            allowed = ', '.join(f"<@&{role_id}>" for role_id in role_ids) or "Administrator"
            lines.append(f"`/{command}`: {allowed}")
        embed = discord.Embed(title="Admin command roles", description="\n".join(lines), color=discord.Color.blue())
        await interaction.response.send_message(embed=embed, ephemeral=True)

    @app_commands.command(name="wipe_players", description="Delete all players and matches (Admin)")
    @app_commands.describe(confirm="Must be True", key="The ADMIN_KEY configured for this bot")
    async def wipe_players(self, interaction: discord.Interaction, confirm: bool, key: str):
        async def action():
            counts = await self.admin_ops.wipe_players(confirm, key, interaction.user.id)
            return (f"🗑️ Wiped {counts.get('players', 0)} players and {counts.get('matches', 0)} matches. "
                    f"Settings were kept.")
        await self._run(interaction, 'wipe_players', action, "Could not wipe players.")


def _mention_ids(raw: str) -> list:
    """Numbers out of a string of user or role mentions."""
    return [part.strip('<@!&>') for part in raw.replace(',', ' ').split() if part.strip('<@!&>').isdigit()]


async def setup(bot):
    await bot.add_cog(AdminCog(bot))
