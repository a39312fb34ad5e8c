"""
Tests for the team split rules and result outcome helpers.
"""

import random

import pytest

from cancha.services import result_service, team_service
from cancha.utils.errors import ErrorCode


class TestRandomSplit:
    def test_even_count_splits_in_half(self):
        assignments = team_service.split_randomly([1, 2, 3, 4], rng=random.Random(7))

        assert set(assignments) == {1, 2, 3, 4}
        assert sorted(assignments.values()) == ["team_a", "team_a", "team_b", "team_b"]

    def test_odd_count_gives_team_a_the_extra_player(self):
        assignments = team_service.split_randomly([1, 2, 3, 4, 5], rng=random.Random(7))

        assert list(assignments.values()).count("team_a") == 3
        assert team_service.is_balanced(assignments)

    def test_split_depends_on_shuffle(self):
        ids = list(range(1, 11))
        splits = {
            tuple(sorted(team_service.split_randomly(ids, rng=random.Random(seed)).items()))
            for seed in range(5)
        }
        assert len(splits) > 1


class TestManualAssignments:
    def test_unknown_registration(self):
        result = team_service.check_manual_assignments({1: "team_a", 99: "team_b"}, [1, 2])
        assert result.error_code == ErrorCode.VALIDATION_ERROR
        assert "99" in result.message

    def test_missing_registration(self):
        result = team_service.check_manual_assignments({1: "team_a"}, [1, 2])
        assert result.error_code == ErrorCode.VALIDATION_ERROR

    def test_complete_assignments(self):
        assert team_service.check_manual_assignments({1: "team_a", 2: "team_b"}, [1, 2]) is None

    @pytest.mark.parametrize(
        "teams,balanced",
        [
            (["team_a", "team_a"], True),
            (["team_a", "team_a", "team_a"], True),
            (["team_a", "team_a", "team_b", "team_b"], True),
            (["team_a", "team_a", "team_a", "team_b"], False),
            (["team_a", "team_a", "team_a", "team_b", "team_b"], True),
        ],
    )
    def test_balance_applies_from_four_players(self, teams, balanced):
        assignments = dict(enumerate(teams))
        assert team_service.is_balanced(assignments) is balanced


@pytest.mark.parametrize(
    "score_a,score_b,winner",
    [(3, 1, "team_a"), (0, 2, "team_b"), (2, 2, "draw"), (0, 0, "draw")],
)
def test_winning_team(score_a, score_b, winner):
    assert result_service.winning_team(score_a, score_b) == winner
