"""Embed builders and button views."""

import discord

from matchbot.data_models.displays import (
    FinalizeResult, HistoryEntry, QueueSnapshot, RatingChange, VetoSnapshot
)
from matchbot.ui.embeds import (
    build_history_embed, build_leaderboard_embed, build_queue_panel_embed, build_result_embed, player_label
)
from matchbot.ui.views import CaptainVoteView, ReadyCheckView, VetoBoardView
from matchbot.utils.error_embeds import ErrorEmbeds
from matchbot.utils.exceptions import NotYourTurnError, PermissionDeniedError


def veto_snapshot(remaining, picked=None, current_team='A'):
    return VetoSnapshot(
        match_id=4,
        all_maps=["Ascent", "Bind", "Haven", "Split", "Icebox", "Breeze"],
        remaining=remaining,
        bans=[],
        current_team=None if picked else current_team,
        captain_a=1,
        captain_b=2,
        turn_ends_at=None,
        picked=picked,
    )


def test_player_label():
    assert player_label(123) == "<@123>"
    assert player_label(-3) == "Test Player 3"


def test_queue_panel_embed():
    embed = build_queue_panel_embed(QueueSnapshot(
        player_ids=[1, -2], queue_size=10, ready_enabled=True, ready_seconds=60, pending_ready_check_id=5
    ))
    assert embed.title == "5v5 Queue (2/10)"
    assert "Test Player 2" in embed.description
    assert len(embed.fields) == 2


def test_result_embed_lists_changes():
    result = FinalizeResult(
        match_id=9, winner='A', avg_a=1000, avg_b=1000, delta_a=12, delta_b=-12,
        changes=[RatingChange(1, 'A', 1000, 1012, 12), RatingChange(2, 'B', 1000, 988, -12)],
        picked_map="Bind",
    )
    embed = build_result_embed(result)
    assert "Team A wins" in embed.title
    assert "+12" in embed.fields[0].name
    assert "1000 → 988" in embed.fields[1].value


def test_history_embed_titles():
    entry = HistoryEntry(match_id=3, status='abandoned', winner=None, picked_map=None,
                         captain_a=1, captain_b=2, team_a=[1], team_b=[2], created_at=None)
    assert build_history_embed(entry).title == "Match #3: abandoned"


def test_empty_leaderboard():
    assert build_leaderboard_embed([], 1, 1).description == "No players yet."


def test_error_embeds():
    assert ErrorEmbeds.from_error(PermissionDeniedError('fill')).title == "Permission Denied"
    embed = ErrorEmbeds.from_error(NotYourTurnError(5, 'B'))
    assert embed.title == "Action Not Possible"
    assert "Team B" in embed.description


async def test_veto_board_buttons():
    view = VetoBoardView(veto_snapshot(["Bind", "Haven", "Split", "Icebox", "Breeze"]))

    buttons = {button.label: button for button in view.children}
    assert buttons["Ascent"].disabled
    assert buttons["Ascent"].style == discord.ButtonStyle.red
    assert not buttons["Bind"].disabled
    assert buttons["Bind"].custom_id == "mm:ban:4:Bind"
    assert buttons["Breeze"].row == 1
    assert view.timeout is None


async def test_finished_veto_board_is_disabled():
    view = VetoBoardView(veto_snapshot(["Breeze"], picked="Breeze"))

    assert all(button.disabled for button in view.children)
    picked = [button for button in view.children if button.label == "Breeze"][0]
    assert picked.style == discord.ButtonStyle.blurple


async def test_vote_and_ready_views():
    vote = CaptainVoteView(7)
    assert [button.custom_id for button in vote.children] == ["mm:vote:7:A", "mm:vote:7:B"]
    assert all(button.disabled for button in CaptainVoteView(7, disabled=True).children)
    assert ReadyCheckView(3).children[0].custom_id == "mm:ready:3"
