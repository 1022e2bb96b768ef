# app/pipeline.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from app.clock import Clock, utcnow
from app.gateways.registry import GatewayRegistry, build_registry
from app.payments.completion import PaymentNotifier
from app.store.base import Store
from app.webhooks.processor import WebhookProcessor
from app.workers.escrow_settlement import EscrowSettler
from app.workers.payment_reconciliation import PaymentReconciler
from app.workers.selection_evaluation import SelectionEvaluator
from app.workers.tip_outcome import TipOutcomeDeterminer
from services.admin_webhook import send_order_notification
from services.notifications import LoggingNotificationSender, NotificationSender
from settings import settings

logger = logging.getLogger("tipsettle")


@dataclass
class Pipeline:
    store: Store
    registry: GatewayRegistry
    notifier: PaymentNotifier
    webhooks: WebhookProcessor
    reconciler: PaymentReconciler
    selections: SelectionEvaluator
    outcomes: TipOutcomeDeterminer
    settlement: EscrowSettler


def build_pipeline(
    store: Optional[Store] = None,
    registry: Optional[GatewayRegistry] = None,
    *,
    clock: Clock = utcnow,
    sender: Optional[NotificationSender] = None,
    relay: Callable[[dict[str, Any]], bool] = send_order_notification,
) -> Pipeline:
    if store is None:
        from app.store.postgres import PostgresStore

        store = PostgresStore()
    if registry is None:
        registry = build_registry(store)

    batch = settings.JOB_BATCH_SIZE
    notifier = PaymentNotifier(sender or LoggingNotificationSender(), relay, clock=clock)

    pipeline = Pipeline(
        store=store,
        registry=registry,
        notifier=notifier,
        webhooks=WebhookProcessor(
            registry,
            store,
            notifier,
            clock=clock,
            stale_hours=settings.WEBHOOK_STALE_HOURS,
        ),
        reconciler=PaymentReconciler(
            registry,
            store,
            notifier,
            clock=clock,
            max_age_minutes=settings.PAYMENT_STATUS_CHECK_MAX_AGE_MINUTES,
            cleanup_age_hours=settings.PAYMENT_STATUS_CLEANUP_AGE_HOURS,
            batch_size=batch,
        ),
        selections=SelectionEvaluator(store, clock=clock, batch_size=batch),
        outcomes=TipOutcomeDeterminer(store, clock=clock, batch_size=batch),
        settlement=EscrowSettler(store, registry, clock=clock, app_url=settings.APP_URL, batch_size=batch),
    )
    logger.info("pipeline ready gateways=%s", ",".join(registry.available_gateways()) or "<none>")
    return pipeline
