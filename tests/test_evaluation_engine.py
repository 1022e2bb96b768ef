from __future__ import annotations

import uuid

import pytest

from app.evaluation.engine import evaluate
from app.tips.model import Match, TipSelection


def _sel(prediction_type: str, value: str) -> TipSelection:
    return TipSelection(
        id=uuid.uuid4(),
        tip_id=uuid.uuid4(),
        match_id=uuid.uuid4(),
        prediction_type=prediction_type,
        prediction_value=value,
    )


def _finished(home: int, away: int) -> Match:
    return Match(id=uuid.uuid4(), status="finished", home_score=home, away_score=away)


def test_finished_two_one_scores_home_win_over_and_btts():
    match = _finished(2, 1)

    assert evaluate(_sel("match_result", "home_win"), match).is_correct is True
    assert evaluate(_sel("over_under", "over_2.5"), match).is_correct is True
    assert evaluate(_sel("both_teams_to_score", "btts_no"), match).is_correct is False


@pytest.mark.parametrize(
    "prediction_type,value,home,away,expected",
    [
        ("match_result", "draw", 1, 1, True),
        ("match_result", "away_win", 1, 1, False),
        ("over_under", "under_2.5", 1, 1, True),
        ("over_under", "over_3.5", 2, 2, True),
        ("both_teams_to_score", "btts_yes", 0, 3, False),
        ("double_chance", "home_draw", 0, 0, True),
        ("double_chance", "away_draw", 2, 0, False),
        ("double_chance", "home_away", 0, 1, True),
        ("handicap", "handicap_-1.5", 2, 0, True),
        ("handicap", "handicap_-1.5", 1, 0, False),
        ("handicap", "handicap_+1", 0, 0, True),
        ("correct_score", "2-1", 2, 1, True),
        ("correct_score", "1-2", 2, 1, False),
    ],
)
def test_prediction_types(prediction_type, value, home, away, expected):
    result = evaluate(_sel(prediction_type, value), _finished(home, away))
    assert result.is_void is False
    assert result.is_correct is expected


def test_not_finished_is_undecided():
    match = Match(id=uuid.uuid4(), status="live", home_score=1, away_score=0)
    result = evaluate(_sel("match_result", "home_win"), match)
    assert result.is_correct is None
    assert result.is_void is False
    assert result.decided is False


def test_finished_without_scores_is_undecided():
    match = Match(id=uuid.uuid4(), status="finished", home_score=2, away_score=None)
    result = evaluate(_sel("match_result", "home_win"), match)
    assert result.decided is False


@pytest.mark.parametrize("status", ["cancelled", "postponed", "CANCELLED"])
def test_cancelled_or_postponed_match_voids(status):
    match = Match(id=uuid.uuid4(), status=status)
    result = evaluate(_sel("match_result", "home_win"), match)
    assert result.is_void is True
    assert result.decided is True


def test_malformed_correct_score_voids_with_reason():
    result = evaluate(_sel("correct_score", "two-one"), _finished(2, 1))
    assert result.is_void is True
    assert "Invalid correct score" in result.reason

    result = evaluate(_sel("correct_score", "2:1"), _finished(2, 1))
    assert result.is_void is True


def test_first_goal_scorer_and_custom_are_void():
    for prediction_type in ("first_goal_scorer", "any_other"):
        result = evaluate(_sel(prediction_type, "someone"), _finished(1, 0))
        assert result.is_void is True
        assert "not modeled" in result.reason


def test_unknown_type_voids():
    result = evaluate(_sel("corners", "over_9.5"), _finished(1, 0))
    assert result.is_void is True


def test_evaluate_is_pure():
    sel = _sel("over_under", "over_1.5")
    match = _finished(1, 1)
    first = evaluate(sel, match)
    for _ in range(3):
        assert evaluate(sel, match) == first
    assert sel.is_correct is None
