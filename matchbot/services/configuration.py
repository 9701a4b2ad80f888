"""
Configuration management service for the matchmaking bot.

Runtime settings live in the configurations table as JSON values, cached in
memory and reloaded after every write. Keys are dotted by category:

- queue.ready_enabled / queue.ready_seconds
- veto.captain_mode / veto.maps / veto.turn_seconds
- roles.<command>: role ids allowed to run an admin command
- display.*: remembered message references for persistent boards

Changes made by a user are recorded in the audit log; display references the
bot remembers for itself are not.
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from sqlalchemy import select, delete

from matchbot.config import Config
from matchbot.services.base import BaseService
from matchbot.database.models import Configuration, AuditLog


@dataclass(frozen=True)
class QueueSettings:
    ready_enabled: bool
    ready_seconds: int


@dataclass(frozen=True)
class VetoSettings:
    captain_mode: str
    maps: List[str]
    turn_seconds: int


class ConfigurationService(BaseService):
    """Manages bot configuration with simple caching and audit trail."""

    def __init__(self, database):
        super().__init__(database)
        self._cache: Dict[str, Any] = {}

    async def load_all(self):
        """Load all configurations from database into memory."""
        async def _load():
            new_cache = {}
            async with self.get_session() as session:
                result = await session.execute(select(Configuration))
                for config in result.scalars().all():
                    try:
                        new_cache[config.key] = json.loads(config.value)
                    except json.JSONDecodeError:
                        self.logger.warning(f"Invalid JSON for config key '{config.key}', skipping")
            return new_cache

        self._cache = await self.execute_with_retry(_load)
        self.logger.info(f"Loaded {len(self._cache)} configuration parameters")

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value by key.

        Args:
            key: Configuration key (e.g., 'veto.turn_seconds')
            default: Default value if key not found
        """
        return self._cache.get(key, default)

    async def set(self, key: str, value: Any, user_id: Optional[int] = None):
        """
        Set configuration value and persist it.

        Args:
            key: Configuration key
            value: Configuration value (will be JSON-encoded)
            user_id: Discord user ID for the audit trail, None for bot-owned keys
        """
        async with self.get_session() as session:
            result = await session.execute(
                select(Configuration).where(Configuration.key == key)
            )
            config = result.scalar_one_or_none()

            old_value = None
            if config:
                old_value = self._decode(config.value)
                config.value = json.dumps(value)
            else:
                session.add(Configuration(key=key, value=json.dumps(value)))

            if user_id is not None:
                session.add(AuditLog(
                    user_id=user_id,
                    action='config_set',
                    details=json.dumps({'key': key, 'old_value': old_value, 'new_value': value})
                ))

        await self.load_all()

    async def unset(self, key: str, user_id: Optional[int] = None):
        """Remove a key so its default applies again."""
        async with self.get_session() as session:
            result = await session.execute(delete(Configuration).where(Configuration.key == key))
            if result.rowcount and user_id is not None:
                session.add(AuditLog(
                    user_id=user_id,
                    action='config_unset',
                    details=json.dumps({'key': key})
                ))

        await self.load_all()

    def list_all(self) -> Dict[str, Any]:
        """Return all configuration values."""
        return self._cache.copy()

    def get_by_category(self, category: str) -> Dict[str, Any]:
        """
        Get all configuration values for a category, keyed without the prefix.

        Args:
            category: Configuration category (e.g., 'queue', 'roles')
        """
        prefix = f"{category}."
        return {
            key[len(prefix):]: value
            for key, value in self._cache.items()
            if key.startswith(prefix)
        }

    def queue_settings(self) -> QueueSettings:
        """Effective queue settings: runtime overrides over Config defaults."""
        return QueueSettings(
            ready_enabled=bool(self.get('queue.ready_enabled', Config.READY_CHECK_ENABLED)),
            ready_seconds=int(self.get('queue.ready_seconds', Config.READY_CHECK_SECONDS)),
        )

    def veto_settings(self) -> VetoSettings:
        """Effective veto settings: runtime overrides over Config defaults."""
        maps = self.get('veto.maps') or Config.get_map_pool()
        return VetoSettings(
            captain_mode=self.get('veto.captain_mode', Config.CAPTAIN_MODE),
            maps=list(maps),
            turn_seconds=int(self.get('veto.turn_seconds', Config.VETO_TURN_SECONDS)),
        )

    @staticmethod
    def _decode(raw: str) -> Any:
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            return {"error": "invalid JSON", "raw": raw}
