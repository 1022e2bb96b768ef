# app/workers/tip_outcome.py
from __future__ import annotations

import logging
from typing import Any, Mapping, Optional, Sequence
from uuid import UUID

from app.clock import Clock, utcnow
from app.payments.state_machine import can_transition
from app.store.base import Store, cursor_of
from app.tips.model import (
    MATCH_CANCELLED,
    MATCH_FINISHED,
    MATCH_POSTPONED,
    TIP_LOST,
    TIP_PENDING,
    TIP_VOID,
    TIP_WON,
    Match,
    TipSelection,
)

logger = logging.getLogger("tipsettle.tips")

# a selection on a cancelled or postponed match is voided, so the match no longer blocks the tip
_CONCLUDED_MATCH_STATUSES = (MATCH_FINISHED, MATCH_CANCELLED, MATCH_POSTPONED)


def determine_outcome(selections: Sequence[TipSelection], matches: Mapping[UUID, Match]) -> Optional[str]:
    """
    WON / LOST / VOID for a tip, or None while it cannot be decided yet.
    Any void leg voids the whole tip.
    """
    if not selections:
        return TIP_LOST

    for sel in selections:
        match = matches.get(sel.match_id)
        if match is None or match.normalized_status not in _CONCLUDED_MATCH_STATUSES:
            return None

    if not all(sel.is_resolved() for sel in selections):
        return None

    if any(sel.is_void for sel in selections):
        return TIP_VOID
    if all(sel.is_correct is True for sel in selections):
        return TIP_WON
    return TIP_LOST


class TipOutcomeDeterminer:
    def __init__(self, store: Store, *, clock: Clock = utcnow, batch_size: int = 200):
        self.store = store
        self.clock = clock
        self.batch_size = batch_size

    def run(self) -> dict[str, Any]:
        summary = {"determined": 0, "won": 0, "lost": 0, "void": 0, "skipped": 0, "errors": 0}

        cursor = None
        while True:
            with self.store.session() as s:
                tips = s.list_pending_tips(limit=self.batch_size, after=cursor)
            if not tips:
                break

            for tip in tips:
                try:
                    outcome = self._determine_one(tip.id)
                except Exception:
                    logger.exception("tip outcome failed tip_id=%s", tip.id)
                    summary["errors"] += 1
                    continue

                if outcome is None:
                    summary["skipped"] += 1
                    continue
                summary["determined"] += 1
                summary[outcome.lower()] += 1

            # undecided tips stay PENDING; resume after the last one seen
            cursor = cursor_of(tips[-1])

        logger.info("tip outcome done %s", summary)
        return summary

    def _determine_one(self, tip_id: UUID) -> Optional[str]:
        with self.store.session() as s:
            tip = s.get_tip(tip_id, for_update=True)
            if tip is None or tip.status != TIP_PENDING:
                return None

            selections = s.list_selections(tip.id)
            matches = {}
            for sel in selections:
                if sel.match_id not in matches:
                    match = s.get_match(sel.match_id)
                    if match is not None:
                        matches[sel.match_id] = match

            outcome = determine_outcome(selections, matches)
            if outcome is None:
                return None
            if not selections:
                logger.warning("tip has no selections tip_id=%s -> %s", tip.id, outcome)

            if not can_transition(tip.status, outcome, entity="tip"):
                logger.warning("invalid tip transition ignored tip_id=%s %s -> %s", tip.id, tip.status, outcome)
                return None

            now = self.clock()
            tip.status = outcome
            tip.updated_at = now
            s.save_tip(tip)

            purchases = s.list_purchases_for_tip(tip.id, for_update=True)
            for purchase in purchases:
                purchase.tip_outcome = outcome
                purchase.updated_at = now
                s.save_purchase(purchase)

        logger.info("tip outcome determined tip_id=%s outcome=%s purchases=%s", tip_id, outcome, len(purchases))
        return outcome

    def stats(self) -> dict[str, Any]:
        with self.store.session() as s:
            raw = s.tip_stats()
        return {k: int(raw.get(k) or 0) for k in ("pending", "won", "lost", "void")}
