import asyncio
import logging
import traceback
from typing import Optional

import discord
from discord.ext import commands
from discord import app_commands

from matchbot.config import Config
from matchbot.database.database import Database
from matchbot.services.configuration import ConfigurationService
from matchbot.services.matchmaking import Matchmaking
from matchbot.services.rate_limiter import SimpleRateLimiter
from matchbot.ui.discord_gateway import DiscordGateway
from matchbot.utils.logger import setup_logger


class MatchmakingBot(commands.Bot):
    def __init__(self):
        intents = discord.Intents.default()
        intents.guilds = True
        intents.members = True

        super().__init__(
            command_prefix=Config.COMMAND_PREFIX,
            intents=intents,
            help_command=None
        )

        # Attach app command error handler
        self.tree.on_error = self.on_app_command_error

        self.db: Optional[Database] = None
        self.rate_limiter = SimpleRateLimiter()
        self.config_service: Optional[ConfigurationService] = None
        self.matchmaking: Optional[Matchmaking] = None
        self._started = False
        self.logger = setup_logger(__name__)

    async def setup_hook(self):
        """Called when the bot is starting up"""
        self.logger.info("Setting up Matchmaking Bot...")

        # The bot cannot run without its store
        self.db = Database()
        await self.db.initialize()

        self.config_service = ConfigurationService(self.db)
        await self.config_service.load_all()
        self.logger.info("Configuration service initialized")

        self.matchmaking = Matchmaking(self.db, self.config_service, DiscordGateway(self))

        await self.load_cogs()
        await self._sync_commands()

        self.logger.info("Matchmaking Bot setup complete!")

    async def load_cogs(self):
        """Load all cogs"""
        cogs_to_load = [
            'matchbot.cogs.queue',
            'matchbot.cogs.admin',
        ]

        for cog in cogs_to_load:
            try:
                await self.load_extension(cog)
                self.logger.info(f"Loaded cog: {cog}")
            except Exception as e:
                self.logger.error(f"Failed to load cog {cog}: {e}", exc_info=True)

    async def _sync_commands(self):
        """Sync slash commands with Discord"""
        if not self.tree.get_commands():
            self.logger.warning("No application commands found to sync. Check for cog loading errors.")
            return

        try:
            guild_ids = Config.get_guild_ids()

            if guild_ids:
                # Guild-specific sync (instant updates)
                self.logger.info(f"Syncing commands to {len(guild_ids)} guild(s): {guild_ids}...")
                for guild_id in guild_ids:
                    try:
                        guild = discord.Object(id=guild_id)
                        self.tree.copy_global_to(guild=guild)
                        synced = await self.tree.sync(guild=guild)
                        self.logger.info(f"Synced {len(synced)} command(s) to guild {guild_id}")
                    except discord.errors.Forbidden:
                        self.logger.error(
                            f"Permission error syncing to guild {guild_id}. Ensure the bot has the "
                            f"'applications.commands' scope and is in the guild.", exc_info=True
                        )
                    except discord.errors.HTTPException as e:
                        self.logger.error(
                            f"HTTP error syncing to guild {guild_id}. Status: {e.status}, Response: {e.text}",
                            exc_info=True
                        )
            else:
                # Global sync (can take up to 1 hour)
                self.logger.info("Syncing commands globally... (This can take up to an hour to propagate)")
                synced = await self.tree.sync()
                self.logger.info(f"Synced {len(synced)} command(s) globally")
        except Exception as e:
            self.logger.error(f"Failed to sync commands: {e}", exc_info=True)

    async def on_ready(self):
        """Called when the bot is ready; may fire again after reconnects"""
        self.logger.info(f'{self.user} has connected to Discord!')
        self.logger.info(f'Bot is in {len(self.guilds)} guilds')

        await self.change_presence(activity=discord.Game(name="5v5 queue | /join"))

        if not self._started:
            self._started = True
            await self.matchmaking.startup()

    async def on_app_command_error(self, interaction: discord.Interaction, error: app_commands.AppCommandError):
        """Global error handler for slash commands"""
        command_name = interaction.command.name if interaction.command else 'Unknown'
        if isinstance(error, app_commands.CheckFailure):
            self.logger.info(f"Permission denied for command '{command_name}' by user {interaction.user}")
        else:
            self.logger.error(f"Error in app command '{command_name}': {error}", exc_info=True)

        if isinstance(error, app_commands.CommandOnCooldown):
            error_message = f"❌ Command is on cooldown. Try again in {error.retry_after:.2f} seconds."
        elif isinstance(error, (app_commands.CheckFailure, app_commands.MissingPermissions)):
            error_message = "❌ You don't have permission to use this command."
        elif isinstance(error, app_commands.BotMissingPermissions):
            error_message = "❌ I don't have the required permissions to execute this command."
        else:
            error_message = "❌ An unexpected error occurred while processing your command."

        try:
            error_embed = discord.Embed(title=error_message, color=discord.Color.red())
            if interaction.response.is_done():
                await interaction.followup.send(embed=error_embed, ephemeral=True)
            else:
                await interaction.response.send_message(embed=error_embed, ephemeral=True)
        except discord.HTTPException as e:
            self.logger.error(f"Failed to send error response: {e}")

    async def close(self):
        """Cleanup when bot is shutting down"""
        self.logger.info("Shutting down Matchmaking Bot...")

        if self.matchmaking:
            await self.matchmaking.shutdown()
        if self.db:
            await self.db.close()

        await super().close()


async def main():
    """Main entry point"""
    Config.validate()

    bot = MatchmakingBot()

    try:
        await bot.start(Config.DISCORD_TOKEN)
    except KeyboardInterrupt:
        await bot.close()
    except Exception as e:
        logging.error(f"Fatal error: {e}")
        traceback.print_exc()
    finally:
        await bot.close()


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
