# app/workers/payment_reconciliation.py
from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Optional

from app.clock import Clock, utcnow
from app.gateways.base import GatewayConfigError, PaymentStatusResult
from app.gateways.registry import GatewayNotFound, GatewayRegistry
from app.payments.completion import PaymentNotifier, apply_payment_status
from app.payments.model import Payment
from app.payments.state_machine import COMPLETED, FAILED, PENDING
from app.store.base import Store, cursor_of

logger = logging.getLogger("tipsettle.reconcile")

TIMEOUT_REASON = "Payment timeout - exceeded maximum age"


class PaymentReconciler:
    """
    Backstop for missed webhooks.

    status sweep: poll the gateway for recent PENDING purchase payments.
    cleanup: fail PENDING purchase payments older than the cleanup age.

    Gateway calls happen outside any transaction; each mutation re-reads the
    payment under lock and only proceeds if it is still PENDING.
    """

    def __init__(
        self,
        registry: GatewayRegistry,
        store: Store,
        notifier: PaymentNotifier,
        *,
        clock: Clock = utcnow,
        max_age_minutes: int = 30,
        cleanup_age_hours: int = 24,
        batch_size: int = 200,
    ):
        self.registry = registry
        self.store = store
        self.notifier = notifier
        self.clock = clock
        self.max_age = timedelta(minutes=max_age_minutes)
        self.cleanup_age = timedelta(hours=cleanup_age_hours)
        self.batch_size = batch_size

    # -------- status sweep --------

    def run_status_sweep(self) -> dict[str, Any]:
        summary = {"checked": 0, "completed": 0, "failed": 0, "unchanged": 0, "skipped": 0, "errors": 0}
        now = self.clock()

        cursor = None
        while True:
            with self.store.session() as s:
                payments = s.list_pending_purchase_payments(
                    created_after=now - self.max_age, limit=self.batch_size, after=cursor
                )
            if not payments:
                break

            logger.info("status sweep: checking %s pending payment(s)", len(payments))
            for payment in payments:
                try:
                    outcome = self._check_one(payment)
                except Exception:
                    logger.exception("status sweep failed payment_id=%s", payment.id)
                    summary["errors"] += 1
                    continue
                summary[outcome] += 1
                if outcome != "skipped":
                    summary["checked"] += 1

            # unanswered payments stay PENDING; resume after the last one seen
            cursor = cursor_of(payments[-1])

        logger.info("status sweep done %s", summary)
        return summary

    def _check_one(self, payment: Payment) -> str:
        if not payment.gateway_id or not payment.provider_transaction_id:
            logger.warning("payment missing gateway or transaction id, skipping payment_id=%s", payment.id)
            return "skipped"

        if not self.registry.is_available(payment.gateway_id):
            logger.warning("gateway unavailable, skipping payment_id=%s gateway=%s", payment.id, payment.gateway_id)
            return "skipped"

        try:
            result = self.registry.check_payment_status(
                payment.gateway_id,
                payment.provider_transaction_id,
                order_id=payment.order_number,
                currency=payment.currency,
            )
        except (GatewayNotFound, GatewayConfigError) as exc:
            logger.warning("status check not possible payment_id=%s error=%s", payment.id, exc)
            return "skipped"

        if result.inconclusive or result.not_found or not result.success:
            logger.info(
                "status check gave no answer payment_id=%s not_found=%s inconclusive=%s message=%s",
                payment.id,
                result.not_found,
                result.inconclusive,
                result.message,
            )
            return "unchanged"

        if result.status == "completed":
            return self._apply(payment, COMPLETED, result)
        if result.status in ("failed", "cancelled"):
            return self._apply(payment, FAILED, result, reason=f"Payment {result.status} by gateway")
        return "unchanged"

    def _apply(
        self,
        payment: Payment,
        new_status: str,
        result: PaymentStatusResult,
        *,
        reason: Optional[str] = None,
    ) -> str:
        now = self.clock()
        with self.store.session() as s:
            fresh = s.get_payment(payment.id, for_update=True)
            if fresh is None or fresh.status != PENDING:
                logger.info(
                    "payment already settled by another path payment_id=%s status=%s",
                    payment.id,
                    fresh.status if fresh else None,
                )
                return "skipped"

            if new_status == COMPLETED and result.amount is not None and result.amount != fresh.amount:
                logger.error(
                    "gateway amount mismatch payment_id=%s expected=%s reported=%s",
                    fresh.id,
                    fresh.amount,
                    result.amount,
                )
                return "unchanged"

            fresh.provider_status = result.status
            transition = apply_payment_status(s, fresh, new_status, now=now, reason=reason)

        if not transition.changed:
            return "unchanged"
        self.notifier.notify(self.store, payment.id)
        return "completed" if new_status == COMPLETED else "failed"

    # -------- cleanup --------

    def run_cleanup(self) -> dict[str, Any]:
        summary = {"expired": 0, "errors": 0}
        now = self.clock()

        cursor = None
        while True:
            with self.store.session() as s:
                payments = s.list_expired_purchase_payments(
                    created_before=now - self.cleanup_age, limit=self.batch_size, after=cursor
                )
            if not payments:
                break

            logger.info("cleanup: expiring %s old pending payment(s)", len(payments))
            for payment in payments:
                try:
                    with self.store.session() as s:
                        fresh = s.get_payment(payment.id, for_update=True)
                        if fresh is None or fresh.status != PENDING:
                            continue
                        transition = apply_payment_status(s, fresh, FAILED, now=now, reason=TIMEOUT_REASON)
                except Exception:
                    logger.exception("cleanup failed payment_id=%s", payment.id)
                    summary["errors"] += 1
                    continue

                if transition.changed:
                    summary["expired"] += 1
                    logger.info(
                        "payment expired payment_id=%s purchase_id=%s",
                        payment.id,
                        payment.purchase_id,
                    )
                    self.notifier.notify(self.store, payment.id)

            cursor = cursor_of(payments[-1])

        if not (summary["expired"] or summary["errors"]):
            logger.info("cleanup: no old pending payments")

        logger.info("cleanup done %s", summary)
        return summary

    # -------- stats --------

    def stats(self) -> dict[str, Any]:
        now = self.clock()
        with self.store.session() as s:
            raw = s.payment_stats(window_start=now - self.max_age, cleanup_before=now - self.cleanup_age)
        return {
            "total_pending": int(raw.get("total_pending") or 0),
            "pending_in_window": int(raw.get("pending_in_window") or 0),
            "pending_expired": int(raw.get("pending_expired") or 0),
            "max_age_minutes": int(self.max_age.total_seconds() // 60),
            "cleanup_age_hours": int(self.cleanup_age.total_seconds() // 3600),
        }
