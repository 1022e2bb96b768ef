# app/evaluation/engine.py
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Callable, Optional

from app.tips.model import Match, TipSelection, MATCH_CANCELLED, MATCH_FINISHED, MATCH_POSTPONED

logger = logging.getLogger("tipsettle.evaluation")

MATCH_RESULT = "match_result"
OVER_UNDER = "over_under"
BOTH_TEAMS_TO_SCORE = "both_teams_to_score"
DOUBLE_CHANCE = "double_chance"
HANDICAP = "handicap"
CORRECT_SCORE = "correct_score"
FIRST_GOAL_SCORER = "first_goal_scorer"
ANY_OTHER = "any_other"

_OVER_UNDER_RE = re.compile(r"(over|under)_(\d+\.?\d*)")
_HANDICAP_RE = re.compile(r"handicap_([+-]?\d+\.?\d*)")


@dataclass(frozen=True)
class EvaluationResult:
    """
    is_correct=None means "not decidable yet" (unless is_void).
    """
    is_correct: Optional[bool]
    is_void: bool = False
    reason: Optional[str] = None

    @property
    def decided(self) -> bool:
        return self.is_void or self.is_correct is not None


UNDECIDED_NOT_FINISHED = EvaluationResult(is_correct=None, reason="Match not finished yet")
UNDECIDED_NO_SCORES = EvaluationResult(is_correct=None, reason="Match scores not available")


def _void(reason: str) -> EvaluationResult:
    return EvaluationResult(is_correct=None, is_void=True, reason=reason)


def _result(correct: bool, detail: str) -> EvaluationResult:
    label = "Correct" if correct else "Incorrect"
    return EvaluationResult(is_correct=bool(correct), reason=f"{label}: {detail}")


def _actual_outcome(home: int, away: int) -> str:
    if home > away:
        return "home_win"
    if away > home:
        return "away_win"
    return "draw"


def _match_result(value: str, home: int, away: int) -> EvaluationResult:
    actual = _actual_outcome(home, away)
    return _result(value == actual, f"predicted {value}, actual {actual}")


def _over_under(value: str, home: int, away: int) -> EvaluationResult:
    m = _OVER_UNDER_RE.search(value)
    if not m:
        return _void(f"Invalid over/under prediction value: {value}")
    direction, threshold = m.group(1), float(m.group(2))
    total = home + away
    if direction == "over":
        return _result(total > threshold, f"{total} goals vs over {threshold}")
    return _result(total < threshold, f"{total} goals vs under {threshold}")


def _both_teams_to_score(value: str, home: int, away: int) -> EvaluationResult:
    predicted_yes = value in ("btts_yes", "yes")
    both_scored = home > 0 and away > 0
    return _result(predicted_yes == both_scored, f"both teams scored={both_scored}")


_DOUBLE_CHANCE = {
    "home_draw": {"home_win", "draw"},
    "home_away": {"home_win", "away_win"},
    "away_draw": {"away_win", "draw"},
}


def _double_chance(value: str, home: int, away: int) -> EvaluationResult:
    covered = _DOUBLE_CHANCE.get(value)
    actual = _actual_outcome(home, away)
    if covered is None:
        return _result(False, f"unknown double chance {value}")
    return _result(actual in covered, f"{value} vs {actual}")


def _handicap(value: str, home: int, away: int) -> EvaluationResult:
    m = _HANDICAP_RE.search(value)
    if not m:
        return _void(f"Invalid handicap prediction value: {value}")
    handicap = float(m.group(1))
    return _result(home + handicap > away, f"{home}{handicap:+g} vs {away}")


def _correct_score(value: str, home: int, away: int) -> EvaluationResult:
    parts = value.split("-")
    if len(parts) != 2:
        return _void(f"Invalid correct score format: {value}")
    try:
        predicted_home, predicted_away = int(parts[0].strip()), int(parts[1].strip())
    except ValueError:
        return _void(f"Invalid correct score values: {value}")
    return _result(
        predicted_home == home and predicted_away == away,
        f"predicted {predicted_home}-{predicted_away}, actual {home}-{away}",
    )


def _unsupported(value: str, home: int, away: int) -> EvaluationResult:
    return _void("Prediction type requires data not modeled here")


_EVALUATORS: dict[str, Callable[[str, int, int], EvaluationResult]] = {
    MATCH_RESULT: _match_result,
    OVER_UNDER: _over_under,
    BOTH_TEAMS_TO_SCORE: _both_teams_to_score,
    DOUBLE_CHANCE: _double_chance,
    HANDICAP: _handicap,
    CORRECT_SCORE: _correct_score,
    FIRST_GOAL_SCORER: _unsupported,
    ANY_OTHER: _unsupported,
}


def evaluate(selection: TipSelection, match: Match) -> EvaluationResult:
    """
    Score one selection against its match. Pure: no I/O, no clock.

    Cancelled/postponed matches void the selection before the finished check,
    since such matches never reach "finished".
    """
    status = match.normalized_status
    if status in (MATCH_CANCELLED, MATCH_POSTPONED):
        return _void(f"Match {status}")

    if status != MATCH_FINISHED:
        return UNDECIDED_NOT_FINISHED

    if match.home_score is None or match.away_score is None:
        return UNDECIDED_NO_SCORES

    prediction_type = (selection.prediction_type or "").strip().lower()
    evaluator = _EVALUATORS.get(prediction_type)
    if evaluator is None:
        return _void(f"Unknown prediction type: {selection.prediction_type}")

    value = (selection.prediction_value or "").strip().lower()
    try:
        return evaluator(value, int(match.home_score), int(match.away_score))
    except Exception as exc:
        logger.warning(
            "evaluation error selection_id=%s type=%s value=%s error=%s",
            selection.id,
            prediction_type,
            value,
            exc,
        )
        return _void(f"Evaluation error: {exc}")
