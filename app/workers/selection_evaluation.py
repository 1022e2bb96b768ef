# app/workers/selection_evaluation.py
from __future__ import annotations

import logging
from typing import Any

from app.clock import Clock, utcnow
from app.evaluation.engine import evaluate
from app.store.base import Store
from app.tips.model import TipSelection

logger = logging.getLogger("tipsettle.evaluation")


class SelectionEvaluator:
    """
    Scores unevaluated selections whose match can be decided. Each selection is
    written in its own transaction so one bad row never blocks the rest.
    """

    def __init__(self, store: Store, *, clock: Clock = utcnow, batch_size: int = 200):
        self.store = store
        self.clock = clock
        self.batch_size = batch_size

    def run(self) -> dict[str, Any]:
        summary = {"evaluated": 0, "voided": 0, "skipped": 0, "errors": 0}

        cursor = None
        while True:
            with self.store.session() as s:
                selections = s.list_unevaluated_selections(limit=self.batch_size, after=cursor)
            if not selections:
                break

            logger.info("selection evaluation: %s unevaluated selection(s)", len(selections))
            for selection in selections:
                try:
                    outcome = self._evaluate_one(selection)
                except Exception:
                    logger.exception("selection evaluation failed selection_id=%s", selection.id)
                    summary["errors"] += 1
                    continue
                summary[outcome] += 1

            # selections on unfinished matches stay unevaluated; resume after the last one seen
            cursor = selections[-1].id

        logger.info("selection evaluation done %s", summary)
        return summary

    def _evaluate_one(self, selection: TipSelection) -> str:
        with self.store.session() as s:
            match = s.get_match(selection.match_id)
            if match is None:
                logger.warning("match not found selection_id=%s match_id=%s", selection.id, selection.match_id)
                return "skipped"

            result = evaluate(selection, match)
            if not result.decided:
                return "skipped"

            selection.is_void = result.is_void
            selection.is_correct = None if result.is_void else result.is_correct
            selection.evaluation_reason = result.reason
            selection.evaluated_at = self.clock()
            s.save_selection(selection)

        logger.debug(
            "selection evaluated selection_id=%s correct=%s void=%s reason=%s",
            selection.id,
            selection.is_correct,
            selection.is_void,
            selection.evaluation_reason,
        )
        return "voided" if selection.is_void else "evaluated"

    def stats(self) -> dict[str, Any]:
        with self.store.session() as s:
            raw = s.selection_stats()
        return {
            "pending": int(raw.get("pending") or 0),
            "evaluated": int(raw.get("evaluated") or 0),
            "void": int(raw.get("void") or 0),
        }
