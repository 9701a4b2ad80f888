"""
Administrative Operations Module

Business logic behind the admin slash commands. Each method delegates the
state change to the owning operations class, then records an audit log row
and posts a line to the admin log channel.

Key functionality:
- force_win() / reverse_match() / set_winner() / cancel_match(): match overrides
- resolve_review(): admin decision on a disputed captain vote
- set_captain(): replace a team captain during a match
- configure_queue() / configure_veto(): runtime settings
- fill_queue(): top up the queue with chosen members or synthetic players
- clear_queue() / wipe_players(): destructive resets
- set_command_roles() / command_roles(): per-command role allow-lists
- adjust_missed_ready_checks(): correct a player's missed ready-check total
"""

import json
import secrets
from typing import Any, Dict, List, Optional, Sequence, TYPE_CHECKING

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from matchbot.config import Config
from matchbot.constants import MatchConstants
from matchbot.data_models.displays import FinalizeResult, ReverseResult
from matchbot.database.models import (
    AuditLog, CancelEvent, Match, MatchPlayer, MatchStatus, Player, QueueEntry,
    RatingHistory, ReadyCheck, ReadyCheckMember, VetoState, Vote
)
from matchbot.services.gateway import safely
from matchbot.utils.exceptions import ConfirmationRequiredError, InvalidKeyError, InvalidSettingError
from matchbot.utils.logger import setup_logger
from matchbot.utils.permissions import ADMIN_COMMANDS, allowed_role_ids, role_key, validate_command
from matchbot.utils.time_utils import utc_now

if TYPE_CHECKING:
    from matchbot.services.matchmaking import Matchmaking

logger = setup_logger(__name__)

SYNTHETIC_SEQUENCE = 'synthetic_player'


class AdminOperations:
    """
    Business logic operations for administrative match management.

    State changes go through the owning operations class so admin overrides
    follow the same transitions as the normal flow.
    """

    def __init__(self, matchmaking: 'Matchmaking'):
        """Initialize with the shared matchmaking coordinator"""
        self.mm = matchmaking
        self.db = matchmaking.db
        self.config_service = matchmaking.config_service
        self.logger = logger

    async def _create_audit_log(
        self,
        session: AsyncSession,
        admin_discord_id: int,
        action_type: str,
        target_id: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None
    ) -> None:
        """
        Create audit log entry for an administrative action.

        Args:
            session: Database session
            admin_discord_id: Discord ID of performing admin
            action_type: Type of action (e.g., "force_win", "match_reverse")
            target_id: Match or player the action applies to
            details: Additional details as JSON
        """
        payload = dict(details or {})
        if target_id is not None:
            payload['target_id'] = target_id
        session.add(AuditLog(
            user_id=admin_discord_id,
            action=action_type,
            details=json.dumps(payload)
        ))
        self.logger.info(f"Admin audit log created: {action_type} by {admin_discord_id} on {target_id}")

    async def _record(self, admin_discord_id: int, action_type: str, summary: str,
                      target_id: Optional[int] = None, details: Optional[Dict[str, Any]] = None):
        async with self.db.transaction() as session:
            await self._create_audit_log(session, admin_discord_id, action_type, target_id, details)
        await safely(
            self.mm.gateway.log_admin_action(f"<@{admin_discord_id}> {summary}"),
            f"admin log {action_type}"
        )

    # ============================================================================
    # Match overrides
    # ============================================================================

    async def force_win(self, match_id: int, team: str, admin_discord_id: int) -> FinalizeResult:
        """Finalize an unfinished (or reversed) match with the given winner."""
        result = await self.mm.matches.force_win(match_id, team, admin_discord_id)
        await self._record(
            admin_discord_id, 'force_win', f"forced Team {team} as winner of match #{match_id}",
            target_id=match_id, details={'winner': team, 'delta_a': result.delta_a, 'delta_b': result.delta_b}
        )
        return result

    async def reverse_match(self, match_id: int, admin_discord_id: int) -> ReverseResult:
        """Undo the rating effects of a closed match."""
        result = await self.mm.matches.reverse(match_id)
        await self._record(
            admin_discord_id, 'match_reverse', f"reversed match #{match_id}",
            target_id=match_id,
            details={'previous_winner': result.previous_winner, 'reverted': len(result.reverted)}
        )
        return result

    async def set_winner(self, match_id: int, team: str, admin_discord_id: int) -> FinalizeResult:
        """Correct the winner of a closed match."""
        match = await self.mm.matches.get_match(match_id)
        previous_winner = match.winner
        result = await self.mm.matches.set_winner(match_id, team, admin_discord_id)
        await self._record(
            admin_discord_id, 'match_set_winner',
            f"set Team {team} as winner of match #{match_id} (was Team {previous_winner})",
            target_id=match_id, details={'previous_winner': previous_winner, 'winner': team}
        )
        return result

    async def cancel_match(self, match_id: int, admin_discord_id: int) -> Match:
        """Abandon an unfinished match without rating effects."""
        match = await self.mm.matches.cancel(match_id)
        await self._record(admin_discord_id, 'match_cancel', f"cancelled match #{match_id}", target_id=match_id)
        return match

    async def resolve_review(self, match_id: int, team: str, admin_discord_id: int) -> FinalizeResult:
        """Decide a disputed result."""
        result = await self.mm.matches.resolve_review(match_id, team, admin_discord_id)
        await self._record(
            admin_discord_id, 'match_review', f"resolved the dispute on match #{match_id} for Team {team}",
            target_id=match_id, details={'winner': team}
        )
        return result

    async def set_captain(self, match_id: int, team: str, player_id: int, admin_discord_id: int) -> VetoState:
        state = await self.mm.veto.set_captain(match_id, team, player_id)
        await self._record(
            admin_discord_id, 'veto_set_captain', f"made <@{player_id}> captain of Team {team} in match #{match_id}",
            target_id=match_id, details={'team': team, 'captain': player_id}
        )
        return state

    # ============================================================================
    # Settings
    # ============================================================================

    async def configure_queue(self, admin_discord_id: int, ready_enabled: Optional[bool] = None,
                              ready_seconds: Optional[int] = None):
        settings = await self.mm.queue.configure(ready_enabled, ready_seconds, user_id=admin_discord_id)
        await safely(
            self.mm.gateway.log_admin_action(
                f"<@{admin_discord_id}> changed queue settings: ready-check "
                f"{'on' if settings.ready_enabled else 'off'}, {settings.ready_seconds}s"
            ),
            "admin log queue_settings"
        )
        return settings

    async def configure_veto(self, admin_discord_id: int, captain_mode: Optional[str] = None,
                             maps: Optional[str] = None, turn_seconds: Optional[int] = None):
        settings = await self.mm.veto.configure(captain_mode, maps, turn_seconds, user_id=admin_discord_id)
        await safely(
            self.mm.gateway.log_admin_action(
                f"<@{admin_discord_id}> changed veto settings: captains {settings.captain_mode}, "
                f"{len(settings.maps)} maps, {settings.turn_seconds}s per turn"
            ),
            "admin log veto_config"
        )
        return settings

    async def set_command_roles(self, command: str, role_ids: Sequence[int], admin_discord_id: int) -> List[int]:
        """
        Replace the role allow-list of an admin command.

        An empty list removes the allow-list so the Administrator permission
        applies again.
        """
        validate_command(command)
        role_ids = list(role_ids)
        if role_ids:
            await self.config_service.set(role_key(command), role_ids, admin_discord_id)
        else:
            await self.config_service.unset(role_key(command), admin_discord_id)

        mentions = ', '.join(f"<@&{role_id}>" for role_id in role_ids) or 'Administrator only'
        await safely(
            self.mm.gateway.log_admin_action(f"<@{admin_discord_id}> set /{command} roles: {mentions}"),
            "admin log admin_roles_set"
        )
        return role_ids

    def command_roles(self) -> Dict[str, List[int]]:
        """Allow-list per admin command; an empty list means Administrator only."""
        return {command: allowed_role_ids(self.config_service, command) for command in ADMIN_COMMANDS}

    async def adjust_missed_ready_checks(self, player_id: int, amount: int, mode: str,
                                         admin_discord_id: int) -> int:
        total = await self.mm.boards.adjust_missed_ready_checks(player_id, amount, mode, admin_discord_id)
        await self._record(
            admin_discord_id, 'cancel_adjust',
            f"{'added ' + str(amount) + ' to' if mode == 'add' else 'set'} the missed ready-checks of "
            f"<@{player_id}> (now {total})",
            target_id=player_id, details={'mode': mode, 'amount': amount, 'total': total}
        )
        return total

    # ============================================================================
    # Queue tools
    # ============================================================================

    async def fill_queue(self, admin_discord_id: int, count: Optional[int] = None,
                         member_ids: Optional[Sequence[int]] = None, use_synthetic: bool = True,
                         auto_confirm_synthetic: bool = True) -> Dict[str, Any]:
        """
        Add players to the queue for testing.

        Chosen members are added first, in the order given, skipping anyone
        already queued or in an unfinished match. Synthetic players with
        negative ids make up the rest when use_synthetic is set.

        Args:
            admin_discord_id: Admin running /fill
            count: Players to add; defaults to whatever fills the queue
            member_ids: Real members to add
            use_synthetic: Create synthetic players for the remainder
            auto_confirm_synthetic: Confirm synthetic players on a resulting ready-check

        Returns:
            Dict with added ids, queue count, ready_check_id and match_ids
        """
        current = await self.mm.queue.count()
        if count is None:
            count = max(MatchConstants.QUEUE_SIZE - current, 0)
        if count < 1:
            raise InvalidSettingError("Nothing to fill: the queue is already full.")

        added: List[int] = []
        synthetic: List[int] = []
        async with self.db.transaction() as session:
            for player_id in member_ids or []:
                if len(added) >= count:
                    break
                if player_id in added or await self._unavailable(session, player_id):
                    continue
                player = await self.mm.queue.ensure_player(session, player_id)
                if player.banned:
                    continue
                session.add(QueueEntry(player_id=player_id, joined_at=utc_now()))
                added.append(player_id)

            while use_synthetic and len(added) < count:
                sequence = await self.db.next_sequence(SYNTHETIC_SEQUENCE, session)
                player_id = -sequence
                await self.mm.queue.ensure_player(session, player_id, f"Test Player {sequence}", synthetic=True)
                session.add(QueueEntry(player_id=player_id, joined_at=utc_now()))
                added.append(player_id)
                synthetic.append(player_id)

        self.logger.info(f"Queue filled by {admin_discord_id}: {len(added)} added ({len(synthetic)} synthetic)")
        await self.mm.queue.refresh_panel()
        ready_check_id, match_ids = await self.mm.queue.trigger()

        auto_confirmed = 0
        if auto_confirm_synthetic and synthetic:
            pending = await self.mm.ready_checks.pending()
            if pending is not None:
                auto_confirmed = await self.mm.ready_checks.confirm_many(pending.id, synthetic)
                ready_check_id = pending.id

        await self._record(
            admin_discord_id, 'fill', f"filled the queue with {len(added)} players ({len(synthetic)} synthetic)",
            details={'added': added, 'auto_confirmed': auto_confirmed}
        )
        return {
            'added': added,
            'synthetic': synthetic,
            'auto_confirmed': auto_confirmed,
            'queue_count': await self.mm.queue.count(),
            'ready_check_id': ready_check_id,
            'match_ids': match_ids,
        }

    async def _unavailable(self, session: AsyncSession, player_id: int) -> bool:
        queued = await session.scalar(select(QueueEntry.id).where(QueueEntry.player_id == player_id))
        if queued is not None:
            return True
        return await self.mm.queue.active_match_id(player_id, session) is not None

    async def clear_queue(self, admin_discord_id: int) -> int:
        removed = await self.mm.queue.clear(admin_discord_id)
        await self._record(admin_discord_id, 'clearqueue', f"cleared the queue ({removed} removed)",
                           details={'removed': removed})
        return removed

    async def wipe_players(self, confirm: bool, key: str, admin_discord_id: int) -> Dict[str, int]:
        """
        Delete every player, queue entry, ready-check, match and missed
        ready-check record. Settings, board locations and id counters are kept.

        Raises:
            InvalidKeyError: ADMIN_KEY is unset or does not match
            ConfirmationRequiredError: confirm is not True
        """
        if not Config.ADMIN_KEY or not secrets.compare_digest(str(key or ''), Config.ADMIN_KEY):
            raise InvalidKeyError()
        if confirm is not True:
            raise ConfirmationRequiredError('wipe_players')

        async with self.db.get_session() as session:
            active = (await session.execute(
                select(Match).where(Match.status.in_(MatchStatus.active()))
            )).scalars().all()
        for match in active:
            await self.mm.matches._release(match)
        pending = await self.mm.ready_checks.pending()
        if pending is not None:
            await self.mm.ready_checks.expire_without_eviction(pending.id)
        self.mm.timers.cancel_all()

        counts = {}
        async with self.mm.lock:
            async with self.db.transaction() as session:
                # Children before parents
                for model in (QueueEntry, ReadyCheckMember, ReadyCheck, Vote, RatingHistory,
                              VetoState, MatchPlayer, Match, CancelEvent, Player):
                    result = await session.execute(delete(model))
                    counts[model.__tablename__] = result.rowcount
                await self._create_audit_log(session, admin_discord_id, 'wipe_players', details=counts)

        self.logger.warning(f"All player data wiped by {admin_discord_id}: {counts}")
        await safely(
            self.mm.gateway.log_admin_action(
                f"<@{admin_discord_id}> wiped all player data ({counts.get('players', 0)} players, "
                f"{counts.get('matches', 0)} matches)"
            ),
            "admin log wipe_players"
        )

        await self.mm.queue.refresh_panel()
        await self.mm.boards.refresh_leaderboard()
        await self.mm.boards.refresh_cancel_board()
        return counts
