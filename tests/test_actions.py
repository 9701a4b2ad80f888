"""custom_id encoding of button actions."""

import pytest

from matchbot.ui.actions import (
    BanMap, CaptainVote, ConfirmReady, JoinQueue, LeaveQueue, ReviewDecision,
    decode_action, is_matchmaking_action
)
from matchbot.utils.exceptions import UnknownActionError


@pytest.mark.parametrize("action, custom_id", [
    (JoinQueue(), "mm:join"),
    (LeaveQueue(), "mm:leave"),
    (ConfirmReady(12), "mm:ready:12"),
    (BanMap(7, "Bind"), "mm:ban:7:Bind"),
    (CaptainVote(7, "B"), "mm:vote:7:B"),
    (ReviewDecision(7, "A"), "mm:review:7:A"),
])
def test_custom_id_format(action, custom_id):
    assert action.custom_id == custom_id
    assert decode_action(custom_id) == action


def test_map_name_with_separator_survives():
    action = BanMap(3, "Tokyo: Night")
    assert decode_action(action.custom_id) == action


@pytest.mark.parametrize("custom_id", [
    "",
    "other:join",
    "mm:",
    "mm:join:extra",
    "mm:ready",
    "mm:ready:abc",
    "mm:ban:1",
    "mm:ban:1:",
    "mm:vote:1:C",
    "mm:review:x:A",
    "mm:explode:1",
])
def test_rejects_unknown_or_malformed(custom_id):
    with pytest.raises(UnknownActionError):
        decode_action(custom_id)


def test_is_matchmaking_action():
    assert is_matchmaking_action("mm:join")
    assert not is_matchmaking_action("tournament:join")
    assert not is_matchmaking_action(None)
