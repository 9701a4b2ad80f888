"""
Embed builders for every message the matchmaking bot keeps up to date.

Pure functions from display snapshots to discord.Embed objects; they never
fetch anything, so the gateway can re-render a board from a snapshot alone.
"""

from typing import List, Sequence, Tuple

import discord

from matchbot.constants import MatchConstants, UIConstants
from matchbot.data_models.displays import (
    CancelRow, FinalizeResult, HistoryEntry, LeaderboardRow, MatchRecap,
    QueueSnapshot, ReadyCheckSnapshot, ReviewRequest, VetoSnapshot, VotePrompt
)
from matchbot.utils.elo import EloCalculator
from matchbot.utils.time_utils import discord_timestamp

# Embed description limit with some headroom
MAX_DESCRIPTION = 4000


def player_label(player_id: int) -> str:
    """Mention for real players; synthetic players have negative ids."""
    if player_id < 0:
        return f"Test Player {-player_id}"
    return f"<@{player_id}>"


def _roster(players: Sequence[Tuple[int, int]], captain: int) -> str:
    lines = []
    for player_id, rating in players:
        crown = f" {UIConstants.CAPTAIN_EMOJI}" if player_id == captain else ""
        lines.append(f"{player_label(player_id)} ({rating}){crown}")
    return "\n".join(lines) or "-"


def build_queue_panel_embed(snapshot: QueueSnapshot) -> discord.Embed:
    embed = discord.Embed(
        title=f"5v5 Queue ({len(snapshot.player_ids)}/{snapshot.queue_size})",
        color=UIConstants.DEFAULT_EMBED_COLOR
    )
    if snapshot.player_ids:
        embed.description = "\n".join(
            f"{index}. {player_label(player_id)}"
            for index, player_id in enumerate(snapshot.player_ids, start=1)
        )[:MAX_DESCRIPTION]
    else:
        embed.description = "The queue is empty. Press **Join** to play."

    if snapshot.ready_enabled:
        ready_text = f"On ({snapshot.ready_seconds}s to confirm)"
    else:
        ready_text = "Off"
    embed.add_field(name="Ready-check", value=ready_text, inline=True)

    if snapshot.pending_ready_check_id is not None:
        embed.add_field(
            name=f"{UIConstants.WAITING_EMOJI} Status",
            value="Waiting for players to confirm the ready-check",
            inline=True
        )
    return embed


def build_ready_check_embed(snapshot: ReadyCheckSnapshot) -> discord.Embed:
    """
    Ready-check status with each member's confirmation.

    Args:
        snapshot: Current members and deadline
    """
    lines = [
        f"{UIConstants.READY_EMOJI if confirmed else UIConstants.WAITING_EMOJI} {player_label(player_id)}"
        for player_id, confirmed in snapshot.members
    ]
    embed = discord.Embed(
        title=f"Ready-check ({snapshot.confirmed_count}/{len(snapshot.members)})",
        description="\n".join(lines),
        color=UIConstants.WARNING_COLOR
    )
    embed.add_field(name="Deadline", value=discord_timestamp(snapshot.deadline), inline=False)
    embed.set_footer(text="Players who do not confirm in time are removed from the queue.")
    return embed


def build_recap_embed(recap: MatchRecap) -> discord.Embed:
    embed = discord.Embed(
        title=f"Match #{recap.match_id}",
        description=f"Rating difference: {abs(recap.sum_a - recap.sum_b)}",
        color=UIConstants.DEFAULT_EMBED_COLOR
    )
    embed.add_field(
        name=f"Team {MatchConstants.TEAM_A} ({recap.sum_a})",
        value=_roster(recap.team_a, recap.captain_a),
        inline=True
    )
    embed.add_field(
        name=f"Team {MatchConstants.TEAM_B} ({recap.sum_b})",
        value=_roster(recap.team_b, recap.captain_b),
        inline=True
    )
    return embed


def build_veto_embed(snapshot: VetoSnapshot) -> discord.Embed:
    """Veto board: remaining pool, bans so far and whose turn it is."""
    if snapshot.picked:
        embed = discord.Embed(
            title=f"{UIConstants.MAP_EMOJI} Map veto: {snapshot.picked}",
            description=f"**{snapshot.picked}** will be played.",
            color=UIConstants.SUCCESS_COLOR
        )
    else:
        embed = discord.Embed(
            title=f"{UIConstants.MAP_EMOJI} Map veto",
            description=(
                f"Team {snapshot.current_team} captain {player_label(snapshot.active_captain)}, "
                f"ban a map.\nAuto-ban {discord_timestamp(snapshot.turn_ends_at)}"
            ),
            color=UIConstants.WARNING_COLOR
        )

    embed.add_field(name="Remaining", value=", ".join(snapshot.remaining) or "-", inline=False)
    if snapshot.bans:
        ban_lines = [
            f"Team {ban['team']}: {ban['map']}{' (auto)' if ban.get('auto') else ''}"
            for ban in snapshot.bans
        ]
        embed.add_field(name="Bans", value="\n".join(ban_lines)[:1024], inline=False)
    return embed


def build_vote_prompt_embed(prompt: VotePrompt) -> discord.Embed:
    return discord.Embed(
        title=f"Match #{prompt.match_id}: report the winner",
        description=(
            f"Map: **{prompt.picked_map}**\n\n"
            f"Captains {player_label(prompt.captain_a)} and {player_label(prompt.captain_b)}, "
            "vote for the team that won. When both votes agree the result is final; "
            "otherwise an admin reviews it."
        ),
        color=UIConstants.DEFAULT_EMBED_COLOR
    )


def build_review_embed(request: ReviewRequest) -> discord.Embed:
    embed = discord.Embed(
        title=f"Match #{request.match_id}: disputed result",
        description="The captains voted for different winners. Pick the real winner.",
        color=UIConstants.WARNING_COLOR
    )
    embed.add_field(name="Team A captain", value=f"{player_label(request.captain_a)} voted **{request.vote_a}**")
    embed.add_field(name="Team B captain", value=f"{player_label(request.captain_b)} voted **{request.vote_b}**")
    if request.thread_id:
        embed.add_field(name="Thread", value=f"<#{request.thread_id}>", inline=False)
    return embed


def build_result_embed(result: FinalizeResult) -> discord.Embed:
    """Final result with every participant's rating change."""
    embed = discord.Embed(
        title=f"{UIConstants.TROPHY_EMOJI} Match #{result.match_id}: Team {result.winner} wins",
        color=UIConstants.SUCCESS_COLOR
    )
    if result.picked_map:
        embed.description = f"Map: **{result.picked_map}**"

    for team, average, delta in (
        (MatchConstants.TEAM_A, result.avg_a, result.delta_a),
        (MatchConstants.TEAM_B, result.avg_b, result.delta_b),
    ):
        lines = [
            f"{player_label(change.player_id)}: {change.old_rating} → {change.new_rating}"
            for change in result.changes if change.team == team
        ]
        embed.add_field(
            name=f"Team {team} (avg {average}, {EloCalculator.format_elo_change(delta)})",
            value="\n".join(lines) or "-",
            inline=True
        )
    if result.decided_by:
        embed.set_footer(text="Result set by an admin")
    return embed


def build_leaderboard_embed(rows: List[LeaderboardRow], page: int, page_count: int) -> discord.Embed:
    embed = discord.Embed(
        title=f"{UIConstants.TROPHY_EMOJI} Leaderboard",
        color=UIConstants.GOLD_RANK_COLOR if page == 1 else UIConstants.DEFAULT_EMBED_COLOR
    )
    if not rows:
        embed.description = "No players yet."
        return embed

    lines = []
    for row in rows:
        name = row.display_name or f"Player {row.player_id}"
        lines.append(
            f"**#{row.rank}** {name[:24]}: {row.rating} "
            f"({row.wins}W/{row.games - row.wins}L, {row.win_rate:.0f}%)"
        )
    embed.description = "\n".join(lines)[:MAX_DESCRIPTION]
    embed.set_footer(text=f"Page {page}/{page_count}")
    return embed


_STATUS_COLORS = {
    'pending': UIConstants.DEFAULT_EMBED_COLOR,
    'voting': UIConstants.DEFAULT_EMBED_COLOR,
    'review': UIConstants.WARNING_COLOR,
    'closed': UIConstants.SUCCESS_COLOR,
    'abandoned': UIConstants.NEUTRAL_COLOR,
    'reversed': UIConstants.NEUTRAL_COLOR,
}


def build_history_embed(entry: HistoryEntry) -> discord.Embed:
    """One match-history message; edited in place as the match changes status."""
    if entry.status == 'closed' and entry.winner:
        title = f"Match #{entry.match_id}: Team {entry.winner} won"
    else:
        title = f"Match #{entry.match_id}: {entry.status}"

    embed = discord.Embed(title=title, color=_STATUS_COLORS.get(entry.status, UIConstants.DEFAULT_EMBED_COLOR))
    if entry.picked_map:
        embed.add_field(name="Map", value=entry.picked_map, inline=False)

    for team, players, captain, delta in (
        (MatchConstants.TEAM_A, entry.team_a, entry.captain_a, entry.delta_a),
        (MatchConstants.TEAM_B, entry.team_b, entry.captain_b, entry.delta_b),
    ):
        name = f"Team {team}"
        if delta is not None:
            name += f" ({EloCalculator.format_elo_change(delta)})"
        value = "\n".join(
            f"{player_label(player_id)}{' ' + UIConstants.CAPTAIN_EMOJI if player_id == captain else ''}"
            for player_id in players
        )
        embed.add_field(name=name, value=value or "-", inline=True)

    if entry.created_at:
        started = discord_timestamp(entry.created_at, "f")
        embed.add_field(name="Started", value=started, inline=False)
    return embed


def build_cancel_board_embed(rows: List[CancelRow]) -> discord.Embed:
    embed = discord.Embed(title="Missed ready-checks", color=UIConstants.WARNING_COLOR)
    if not rows:
        embed.description = "Nobody has missed a ready-check."
        return embed
    embed.description = "\n".join(
        f"**#{row.rank}** {player_label(row.player_id)}: {row.total}" for row in rows
    )[:MAX_DESCRIPTION]
    return embed
