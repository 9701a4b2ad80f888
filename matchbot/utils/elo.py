import math
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from matchbot.config import Config
from matchbot.constants import MatchConstants


@dataclass(frozen=True)
class TeamSplit:
    """Result of balancing a lobby into two teams"""
    team_a: List[int]
    team_b: List[int]
    sum_a: int
    sum_b: int

    @property
    def diff(self) -> int:
        return abs(self.sum_a - self.sum_b)


@dataclass(frozen=True)
class TeamDeltas:
    """Rating change applied to every member of each team"""
    delta_a: int
    delta_b: int
    expected_a: float

    def for_team(self, team: str) -> int:
        return self.delta_a if team == MatchConstants.TEAM_A else self.delta_b


class EloCalculator:
    """Handles team balancing and Elo rating calculations for 5v5 matches"""

    @staticmethod
    def balance_teams(participants: Sequence[Tuple[int, int]],
                      team_size: int = MatchConstants.TEAM_SIZE) -> TeamSplit:
        """
        Split participants into two teams of at most team_size each

        Participants are sorted by rating (highest first, ties keep input
        order) and each one goes to A while A has room and is not ahead of
        B, otherwise to B.

        Args:
            participants: (player_id, rating) pairs
            team_size: Maximum players per team

        Returns:
            TeamSplit with both rosters and rating sums
        """
        ordered = sorted(participants, key=lambda p: p[1], reverse=True)

        team_a: List[int] = []
        team_b: List[int] = []
        sum_a = 0
        sum_b = 0
        for player_id, rating in ordered:
            if len(team_a) < team_size and (sum_a <= sum_b or len(team_b) >= team_size):
                team_a.append(player_id)
                sum_a += rating
            else:
                team_b.append(player_id)
                sum_b += rating

        return TeamSplit(team_a=team_a, team_b=team_b, sum_a=sum_a, sum_b=sum_b)

    @staticmethod
    def team_average(ratings: Sequence[int]) -> int:
        """Average team rating rounded to the nearest integer"""
        if not ratings:
            raise ValueError("Cannot average an empty team")
        return round(sum(ratings) / len(ratings))

    @staticmethod
    def calculate_expected_score(rating_a: float, rating_b: float) -> float:
        """
        Calculate the expected score for side A against side B

        Args:
            rating_a: Side A's (average) rating
            rating_b: Side B's (average) rating

        Returns:
            Expected score (0.0 to 1.0) for side A
        """
        return 1 / (1 + math.pow(10, (rating_b - rating_a) / 400))

    @staticmethod
    def compute_team_deltas(avg_a: int, avg_b: int, winner: Optional[str],
                            k_factor: int = None) -> TeamDeltas:
        """
        Calculate the per-member rating change for both teams

        Args:
            avg_a: Team A average rating
            avg_b: Team B average rating
            winner: 'A', 'B', or None for a draw
            k_factor: K-factor, defaults to Config.ELO_K_FACTOR

        Returns:
            TeamDeltas where delta_b == -delta_a
        """
        if k_factor is None:
            k_factor = Config.ELO_K_FACTOR

        if winner is None:
            score_a = 0.5
        elif winner == MatchConstants.TEAM_A:
            score_a = 1.0
        elif winner == MatchConstants.TEAM_B:
            score_a = 0.0
        else:
            raise ValueError(f"Unknown team '{winner}'")

        expected_a = EloCalculator.calculate_expected_score(avg_a, avg_b)
        # Zero-sum: team B always moves by the opposite amount
        delta_a = round(k_factor * (score_a - expected_a))
        return TeamDeltas(delta_a=delta_a, delta_b=-delta_a, expected_a=expected_a)

    @staticmethod
    def format_elo_change(elo_change: int) -> str:
        """
        Format Elo change for display

        Args:
            elo_change: The Elo change value

        Returns:
            Formatted string with an explicit sign
        """
        if elo_change > 0:
            return f"+{elo_change}"
        elif elo_change < 0:
            return str(elo_change)
        else:
            return "±0"
