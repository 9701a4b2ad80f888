"""
Discord UI Views for the matchmaking bot

Every view here is persistent (timeout=None) and carries only buttons whose
custom_id encodes a matchmaking action. Clicks are routed by the queue cog's
interaction listener through matchbot.ui.actions, so the views themselves
hold no state and survive restarts.

Components:
- QueuePanelView: Join / Leave buttons under the queue panel
- ReadyCheckView: "Ready" button for a ready-check
- VetoBoardView: one button per map, banned maps red and disabled
- CaptainVoteView: Team A / Team B result vote for the captains
- ReviewView: admin decision on a disputed result
"""

import discord

from matchbot.constants import MatchConstants, UIConstants, VetoConstants
from matchbot.data_models.displays import VetoSnapshot
from matchbot.ui.actions import BanMap, CaptainVote, ConfirmReady, JoinQueue, LeaveQueue, ReviewDecision


class QueuePanelView(discord.ui.View):
    def __init__(self, disabled: bool = False):
        super().__init__(timeout=None)
        self.add_item(discord.ui.Button(
            label="Join", style=discord.ButtonStyle.green, custom_id=JoinQueue().custom_id, disabled=disabled
        ))
        self.add_item(discord.ui.Button(
            label="Leave", style=discord.ButtonStyle.red, custom_id=LeaveQueue().custom_id, disabled=disabled
        ))


class ReadyCheckView(discord.ui.View):
    def __init__(self, ready_check_id: int, disabled: bool = False):
        super().__init__(timeout=None)
        self.add_item(discord.ui.Button(
            label="Ready",
            emoji=UIConstants.READY_EMOJI,
            style=discord.ButtonStyle.green,
            custom_id=ConfirmReady(ready_check_id).custom_id,
            disabled=disabled
        ))


class VetoBoardView(discord.ui.View):
    """
    Map buttons in pool order, MAPS_PER_ROW per row.

    Available maps are green; banned maps are red and disabled. Once the veto
    has picked a map every button is disabled and the pick is shown blue.
    """

    def __init__(self, snapshot: VetoSnapshot):
        super().__init__(timeout=None)
        finished = snapshot.picked is not None
        remaining = set(snapshot.remaining)

        for index, map_name in enumerate(snapshot.all_maps[:VetoConstants.MAX_MAPS]):
            if finished and map_name == snapshot.picked:
                style = discord.ButtonStyle.blurple
            elif map_name in remaining:
                style = discord.ButtonStyle.green
            else:
                style = discord.ButtonStyle.red

            self.add_item(discord.ui.Button(
                label=map_name,
                style=style,
                custom_id=BanMap(snapshot.match_id, map_name).custom_id,
                disabled=finished or map_name not in remaining,
                row=index // VetoConstants.MAPS_PER_ROW
            ))


class CaptainVoteView(discord.ui.View):
    def __init__(self, match_id: int, disabled: bool = False):
        super().__init__(timeout=None)
        for team in MatchConstants.TEAMS:
            self.add_item(discord.ui.Button(
                label=f"Team {team} won",
                style=discord.ButtonStyle.blurple,
                custom_id=CaptainVote(match_id, team).custom_id,
                disabled=disabled
            ))


class ReviewView(discord.ui.View):
    def __init__(self, match_id: int, disabled: bool = False):
        super().__init__(timeout=None)
        for team in MatchConstants.TEAMS:
            self.add_item(discord.ui.Button(
                label=f"Team {team} won",
                style=discord.ButtonStyle.gray,
                custom_id=ReviewDecision(match_id, team).custom_id,
                disabled=disabled
            ))
