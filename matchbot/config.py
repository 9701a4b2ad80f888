import os
from dotenv import load_dotenv

load_dotenv()

class Config:
    """Bot configuration settings"""

    # Discord settings
    DISCORD_TOKEN = os.getenv('DISCORD_TOKEN')
    DISCORD_GUILD_ID = int(os.getenv('DISCORD_GUILD_ID', 0))
    DISCORD_GUILD_IDS = os.getenv('DISCORD_GUILD_IDS', '')  # Comma-separated for multi-guild support
    OWNER_DISCORD_ID = int(os.getenv('OWNER_DISCORD_ID', 0))

    # Database settings
    DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///matchbot.db')

    # Bot settings
    COMMAND_PREFIX = os.getenv('COMMAND_PREFIX', '!')
    DEBUG = os.getenv('DEBUG', 'False').lower() == 'true'
    LOG_DIR = os.getenv('LOG_DIR', 'logs')
    ADMIN_KEY = os.getenv('ADMIN_KEY', '')  # Required by /wipe_players

    # Rating settings
    STARTING_RATING = int(os.getenv('STARTING_RATING', 1000))
    ELO_K_FACTOR = int(os.getenv('ELO_K_FACTOR', 24))

    # Queue settings (defaults, overridable at runtime via /queue_settings)
    READY_CHECK_ENABLED = os.getenv('READY_CHECK_ENABLED', 'True').lower() == 'true'
    READY_CHECK_SECONDS = int(os.getenv('READY_CHECK_SECONDS', 60))
    DISPLAY_REFRESH_SECONDS = int(os.getenv('DISPLAY_REFRESH_SECONDS', 5))

    # Veto settings (defaults, overridable at runtime via /veto_config)
    VETO_TURN_SECONDS = int(os.getenv('VETO_TURN_SECONDS', 90))
    CAPTAIN_MODE = os.getenv('CAPTAIN_MODE', 'random')
    MAP_POOL = os.getenv('MAP_POOL', '')  # Comma-separated, empty means default pool

    # Voice room settings
    VOICE_REGION = os.getenv('VOICE_REGION') or None  # e.g. rotterdam; unset lets Discord pick

    @classmethod
    def get_guild_ids(cls):
        """Get list of guild IDs for command syncing"""
        if cls.DISCORD_GUILD_IDS:
            try:
                return [int(guild_id.strip()) for guild_id in cls.DISCORD_GUILD_IDS.split(',') if guild_id.strip()]
            except ValueError:
                raise ValueError("DISCORD_GUILD_IDS must be comma-separated integers")
        elif cls.DISCORD_GUILD_ID:
            return [cls.DISCORD_GUILD_ID]
        else:
            # Global sync
            return []

    @classmethod
    def get_map_pool(cls):
        """Get the configured default map pool"""
        from matchbot.constants import VetoConstants

        maps = [name.strip() for name in cls.MAP_POOL.split(',') if name.strip()]
        return maps or list(VetoConstants.DEFAULT_MAPS)

    @classmethod
    def validate(cls):
        """Validate that required configuration is present"""
        from matchbot.constants import QueueConstants, VetoConstants

        if not cls.DISCORD_TOKEN:
            raise ValueError("DISCORD_TOKEN is required")
        if cls.STARTING_RATING <= 0:
            raise ValueError("STARTING_RATING must be positive")
        if cls.ELO_K_FACTOR <= 0:
            raise ValueError("ELO_K_FACTOR must be positive")
        if not QueueConstants.MIN_READY_SECONDS <= cls.READY_CHECK_SECONDS <= QueueConstants.MAX_READY_SECONDS:
            raise ValueError(
                f"READY_CHECK_SECONDS must be between {QueueConstants.MIN_READY_SECONDS} "
                f"and {QueueConstants.MAX_READY_SECONDS}"
            )
        if not VetoConstants.MIN_TURN_SECONDS <= cls.VETO_TURN_SECONDS <= VetoConstants.MAX_TURN_SECONDS:
            raise ValueError(
                f"VETO_TURN_SECONDS must be between {VetoConstants.MIN_TURN_SECONDS} "
                f"and {VetoConstants.MAX_TURN_SECONDS}"
            )
        if cls.CAPTAIN_MODE not in VetoConstants.CAPTAIN_MODES:
            raise ValueError(f"CAPTAIN_MODE must be one of {', '.join(VetoConstants.CAPTAIN_MODES)}")
