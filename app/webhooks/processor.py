# app/webhooks/processor.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Optional

from app.clock import Clock, utcnow
from app.gateways.base import (
    GatewayAdapter,
    SignatureCheck,
    WebhookAck,
    WebhookEvent,
    WebhookRequest,
    WebhookValidationError,
)
from app.gateways.config import is_production
from app.gateways.registry import GatewayNotFound, GatewayRegistry
from app.payments.completion import PaymentNotifier, apply_payment_status
from app.payments.model import Payment
from app.payments.state_machine import is_terminal, payment_status_from_gateway
from app.store.base import Store, StoreSession
from services.fingerprint import webhook_fingerprint

logger = logging.getLogger("tipsettle.webhooks")

ACK_PROCESSED = "processed"
ACK_DUPLICATE = "duplicate"
ACK_IGNORED = "ignored"
ACK_REJECTED = "rejected"
ACK_ERROR = "error"

_REDACT_KEYS = {"sign", "signature"}


class _Rejected(Exception):
    def __init__(self, message: str, *, code: str, http_status: int = 400):
        super().__init__(message)
        self.code = code
        self.http_status = http_status


def _reject(message: str, code: str, http_status: int = 400, transaction_id: Optional[str] = None) -> WebhookAck:
    return WebhookAck(
        success=False,
        status=ACK_REJECTED,
        message=message,
        transaction_id=transaction_id,
        errors=(code,),
        http_status=http_status,
    )


@dataclass(frozen=True)
class _Applied:
    ack: WebhookAck
    notify_payment: Optional[Payment] = None


class WebhookProcessor:
    """
    Shared inbound webhook path for every gateway: parse, authenticate, locate,
    cross-check, de-duplicate, then apply in one transaction.

    Never raises to the caller; every outcome is a WebhookAck.
    """

    def __init__(
        self,
        registry: GatewayRegistry,
        store: Store,
        notifier: PaymentNotifier,
        *,
        clock: Clock = utcnow,
        production: Callable[[], bool] = is_production,
        stale_hours: int = 24,
    ):
        self.registry = registry
        self.store = store
        self.notifier = notifier
        self.clock = clock
        self.production = production
        self.stale_window = timedelta(hours=stale_hours)

    def handle_webhook(self, gateway_id: str, request: WebhookRequest) -> WebhookAck:
        try:
            adapter = self.registry.get(gateway_id)
        except GatewayNotFound as exc:
            return _reject(str(exc), "GATEWAY_NOT_FOUND", 404)

        try:
            event = adapter.parse_webhook(request)
        except WebhookValidationError as exc:
            logger.warning("webhook rejected gateway=%s code=%s error=%s", adapter.gateway_id, exc.code, exc)
            return _reject(str(exc), exc.code, 400)

        auth_error = self._authenticate(adapter, request, event)
        if auth_error is not None:
            return auth_error

        try:
            applied = self._apply(adapter, event)
        except _Rejected as exc:
            logger.warning(
                "webhook rejected gateway=%s reference=%s provider_tx=%s code=%s error=%s",
                adapter.gateway_id,
                event.reference,
                event.provider_transaction_id,
                exc.code,
                exc,
            )
            return _reject(str(exc), exc.code, exc.http_status, event.provider_transaction_id)
        except Exception as exc:
            logger.exception(
                "webhook processing failed gateway=%s reference=%s provider_tx=%s",
                adapter.gateway_id,
                event.reference,
                event.provider_transaction_id,
            )
            return WebhookAck(
                success=False,
                status=ACK_ERROR,
                message="Webhook processing failed",
                transaction_id=event.provider_transaction_id,
                errors=(type(exc).__name__,),
                http_status=500,
            )

        if applied.notify_payment is not None:
            self.notifier.notify(self.store, applied.notify_payment.id)
        return applied.ack

    # -------- authentication --------

    def _authenticate(
        self, adapter: GatewayAdapter, request: WebhookRequest, event: WebhookEvent
    ) -> Optional[WebhookAck]:
        check: SignatureCheck = adapter.verify_webhook_signature(request)
        if check.valid:
            return None

        strict = self.production()
        ctx = (adapter.gateway_id, event.reference, check.error)

        if not strict:
            logger.warning(
                "webhook signature not verified (allowed outside production) gateway=%s reference=%s error=%s",
                *ctx,
            )
            return None

        if not check.present:
            if check.key_configured:
                logger.error("unsigned webhook rejected gateway=%s reference=%s error=%s", *ctx)
                return _reject("Webhook signature missing", check.error or "MISSING_SIGNATURE", 401)
            logger.warning("unsigned webhook accepted: no verification key gateway=%s reference=%s error=%s", *ctx)
            return None

        if not check.key_configured:
            logger.warning("webhook signature not verifiable: no key gateway=%s reference=%s error=%s", *ctx)
            return None

        logger.error("webhook signature verification failed gateway=%s reference=%s error=%s", *ctx)
        return _reject("Webhook signature verification failed", check.error or "INVALID_SIGNATURE", 401)

    # -------- apply --------

    def _locate(self, s: StoreSession, adapter: GatewayAdapter, event: WebhookEvent) -> Payment:
        payment = None
        if event.reference:
            payment = s.find_payment_by_reference(event.reference, for_update=True)
        if payment is None and event.provider_transaction_id:
            payment = s.find_payment_by_provider_tx(
                event.provider_transaction_id, gateway_id=adapter.gateway_id, for_update=True
            )
        if payment is None:
            raise _Rejected(
                f"Payment not found for reference {event.reference} or transaction {event.provider_transaction_id}",
                code="PAYMENT_NOT_FOUND",
                http_status=404,
            )
        return payment

    def _cross_check(self, adapter: GatewayAdapter, event: WebhookEvent, payment: Payment) -> None:
        expected_app_id = adapter.expected_app_id()
        if event.app_id and expected_app_id and event.app_id != expected_app_id:
            raise _Rejected(
                f"Webhook appId mismatch: received {event.app_id}, expected {expected_app_id}",
                code="APP_ID_MISMATCH",
            )

        if event.currency and event.currency.strip().upper() != (payment.currency or "").upper():
            raise _Rejected(
                f"Currency mismatch: expected {payment.currency}, received {event.currency}",
                code="CURRENCY_MISMATCH",
            )

        if event.amount is None or event.amount != payment.amount:
            raise _Rejected(
                f"Payment amount mismatch: expected {payment.amount} {payment.currency}, received {event.amount}",
                code="AMOUNT_MISMATCH",
            )

        if event.completed_at is not None:
            now = self.clock()
            if now - event.completed_at > self.stale_window:
                hours = int((now - event.completed_at).total_seconds() // 3600)
                raise _Rejected(
                    f"Webhook timestamp is too old ({hours} hours). Rejecting potential replay.",
                    code="STALE_WEBHOOK",
                )
            if payment.created_at and event.completed_at < payment.created_at:
                logger.warning(
                    "webhook completion time before payment creation payment_id=%s completed_at=%s created_at=%s",
                    payment.id,
                    event.completed_at.isoformat(),
                    payment.created_at.isoformat(),
                )

    def _apply(self, adapter: GatewayAdapter, event: WebhookEvent) -> _Applied:
        with self.store.session() as s:
            payment = self._locate(s, adapter, event)
            self._cross_check(adapter, event, payment)

            fingerprint = webhook_fingerprint(
                provider_transaction_id=event.provider_transaction_id,
                provider_status_code=event.provider_status_code,
                amount=event.amount,
                completed_at=event.completed_at,
            )
            new_status = payment_status_from_gateway(event.status)

            if payment.webhook_fingerprint == fingerprint and payment.status == new_status:
                logger.info("duplicate webhook payment_id=%s status=%s", payment.id, payment.status)
                return _Applied(
                    WebhookAck(
                        success=True,
                        status=ACK_DUPLICATE,
                        message="Webhook already processed (idempotent)",
                        transaction_id=event.provider_transaction_id,
                    )
                )

            if is_terminal(payment.status) and payment.status != new_status:
                logger.warning(
                    "webhook for terminal payment ignored payment_id=%s current=%s incoming=%s provider_status=%s",
                    payment.id,
                    payment.status,
                    new_status,
                    event.provider_status_code,
                )
                return _Applied(
                    WebhookAck(
                        success=True,
                        status=ACK_IGNORED,
                        message=f"Payment already {payment.status.lower()}; transition to {new_status.lower()} ignored",
                        transaction_id=event.provider_transaction_id,
                    )
                )

            now = self.clock()
            if event.provider_transaction_id and not payment.provider_transaction_id:
                payment.provider_transaction_id = event.provider_transaction_id
            payment.provider_status = event.provider_status_code
            payment.webhook_fingerprint = fingerprint
            payment.response_data = {
                "source": "webhook",
                "gateway": adapter.gateway_id,
                "payload": {k: v for k, v in event.raw.items() if k not in _REDACT_KEYS},
            }
            if event.account_name:
                payment.account_name = event.account_name
            if event.account_number:
                payment.account_number = event.account_number
            if event.network:
                payment.network = event.network
            if event.completed_at and is_terminal(new_status):
                payment.provider_processed_at = event.completed_at
            payment.updated_at = now
            s.save_payment(payment)

            result = apply_payment_status(s, payment, new_status, now=now, reason=f"provider status {event.provider_status_code}")

        logger.info(
            "webhook applied gateway=%s payment_id=%s %s -> %s changed=%s",
            adapter.gateway_id,
            payment.id,
            result.previous_status,
            result.status,
            result.changed,
        )
        return _Applied(
            WebhookAck(
                success=True,
                status=ACK_PROCESSED,
                message="Webhook processed successfully",
                transaction_id=event.provider_transaction_id,
            ),
            notify_payment=payment if result.changed and is_terminal(result.status) else None,
        )
