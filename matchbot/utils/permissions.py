"""
Role-based access for admin commands.

Each admin command can be opened to specific roles with /admin_roles_set,
stored as `roles.<command>` in the configuration. A command with no roles
configured falls back to the Discord Administrator permission. The bot owner
is always allowed.
"""

from typing import Iterable, List

from matchbot.config import Config
from matchbot.utils.exceptions import InvalidSettingError, PermissionDeniedError

ADMIN_COMMANDS = (
    'setup',
    'queue_settings',
    'veto_config',
    'veto_set_captain',
    'forcewin',
    'match_reverse',
    'match_cancel',
    'match_set_winner',
    'match_review',
    'fill',
    'clearqueue',
    'setup_leaderboard',
    'setup_match_history',
    'setup_cancel_log',
    'cancel_adjust',
    'admin_roles_set',
    'wipe_players',
)


def role_key(command: str) -> str:
    return f"roles.{command}"


def validate_command(command: str) -> str:
    if command not in ADMIN_COMMANDS:
        raise InvalidSettingError(f"Unknown admin command '{command}'.")
    return command


def allowed_role_ids(config_service, command: str) -> List[int]:
    return [int(role_id) for role_id in config_service.get(role_key(command), []) or []]


def has_command_access(member, command: str, config_service) -> bool:
    """
    Check whether a guild member may run an admin command.

    Args:
        member: discord.Member (anything with id, roles and guild_permissions)
        command: Admin command name
        config_service: ConfigurationService holding roles.* keys
    """
    if member.id == Config.OWNER_DISCORD_ID:
        return True

    allowed = allowed_role_ids(config_service, command)
    if allowed:
        member_roles = {role.id for role in getattr(member, 'roles', [])}
        return bool(member_roles.intersection(allowed))

    permissions = getattr(member, 'guild_permissions', None)
    return bool(permissions and permissions.administrator)


def ensure_command_access(member, command: str, config_service):
    if not has_command_access(member, command, config_service):
        raise PermissionDeniedError(command)


def parse_role_ids(raw: Iterable) -> List[int]:
    """Role ids from mentions or raw numbers, order kept, duplicates dropped."""
    role_ids: List[int] = []
    for item in raw:
        text = str(item).strip().strip('<@&>')
        if not text:
            continue
        if not text.isdigit():
            raise InvalidSettingError(f"'{item}' is not a role.")
        role_id = int(text)
        if role_id not in role_ids:
            role_ids.append(role_id)
    return role_ids
