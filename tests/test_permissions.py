"""Per-command role allow-lists."""

from types import SimpleNamespace

import pytest

from matchbot.config import Config
from matchbot.utils.exceptions import InvalidSettingError, PermissionDeniedError
from matchbot.utils.permissions import (
    ADMIN_COMMANDS, ensure_command_access, has_command_access, parse_role_ids, role_key, validate_command
)

OWNER_ID = 42


def make_member(member_id, role_ids=(), administrator=False):
    return SimpleNamespace(
        id=member_id,
        roles=[SimpleNamespace(id=role_id) for role_id in role_ids],
        guild_permissions=SimpleNamespace(administrator=administrator),
    )


@pytest.fixture(autouse=True)
def owner(monkeypatch):
    monkeypatch.setattr(Config, 'OWNER_DISCORD_ID', OWNER_ID)


class TestAccess:
    async def test_administrator_without_allow_list(self, config_service):
        assert has_command_access(make_member(1, administrator=True), 'forcewin', config_service)
        assert not has_command_access(make_member(2), 'forcewin', config_service)

    async def test_allow_list_replaces_administrator(self, config_service):
        await config_service.set(role_key('forcewin'), [10, 11])

        assert has_command_access(make_member(1, role_ids=[11]), 'forcewin', config_service)
        assert not has_command_access(make_member(2, administrator=True), 'forcewin', config_service)
        # Other commands keep the Administrator fallback
        assert has_command_access(make_member(2, administrator=True), 'fill', config_service)

    async def test_owner_is_always_allowed(self, config_service):
        await config_service.set(role_key('wipe_players'), [10])
        assert has_command_access(make_member(OWNER_ID), 'wipe_players', config_service)

    async def test_member_without_permissions_attribute(self, config_service):
        user = SimpleNamespace(id=5)
        assert not has_command_access(user, 'setup', config_service)

    async def test_ensure_raises(self, config_service):
        with pytest.raises(PermissionDeniedError) as exc_info:
            ensure_command_access(make_member(3), 'match_cancel', config_service)
        assert "/match_cancel" in exc_info.value.user_message


class TestParsing:
    def test_parse_mentions_and_numbers(self):
        assert parse_role_ids(["<@&123>", "456", " 123 ", ""]) == [123, 456]

    def test_parse_rejects_garbage(self):
        with pytest.raises(InvalidSettingError):
            parse_role_ids(["admins"])

    def test_validate_command(self):
        for command in ADMIN_COMMANDS:
            assert validate_command(command) == command
        with pytest.raises(InvalidSettingError):
            validate_command('join')
