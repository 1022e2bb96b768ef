# app/payments/completion.py
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional
from uuid import UUID

from app.escrow.service import create_escrow_for_purchase
from app.payments.model import Payment
from app.payments.state_machine import (
    CANCELLED,
    COMPLETED,
    FAILED,
    can_transition,
    is_terminal,
)
from app.store.base import Store, StoreSession
from services.admin_webhook import retry_webhook, send_order_notification
from services.notifications import NotificationSender

logger = logging.getLogger("tipsettle.payments")


@dataclass(frozen=True)
class TransitionResult:
    payment_id: UUID
    previous_status: str
    status: str
    changed: bool
    escrow_created: bool = False
    reason: Optional[str] = None


def apply_payment_status(
    s: StoreSession,
    payment: Payment,
    new_status: str,
    *,
    now: datetime,
    reason: Optional[str] = None,
) -> TransitionResult:
    """
    Move a purchase payment to new_status and cascade to its purchase (and escrow on completion).
    The caller owns the session; everything here commits or rolls back with it.

    Terminal payments are never moved again: the call is a logged no-op.
    """
    previous = payment.status

    if previous == new_status:
        return TransitionResult(payment.id, previous, previous, changed=False, reason="unchanged")

    if not can_transition(previous, new_status):
        logger.warning(
            "invalid payment transition ignored payment_id=%s %s -> %s",
            payment.id,
            previous,
            new_status,
        )
        return TransitionResult(payment.id, previous, previous, changed=False, reason="invalid_transition")

    purchase = s.get_purchase(payment.purchase_id, for_update=True) if payment.purchase_id else None

    if new_status == COMPLETED and purchase is not None:
        others = [
            p for p in s.list_payments_for_purchase(purchase.id) if p.id != payment.id and p.status == COMPLETED
        ]
        if others:
            # money arrived twice for one purchase; leave it for manual review
            logger.error(
                "purchase already paid by another payment purchase_id=%s payment_id=%s completed_by=%s",
                purchase.id,
                payment.id,
                others[0].id,
            )
            payment.error_message = f"Purchase already paid by payment {others[0].id}"
            payment.updated_at = now
            s.save_payment(payment)
            return TransitionResult(payment.id, previous, previous, changed=False, reason="purchase_already_paid")

    payment.status = new_status
    payment.updated_at = now
    if is_terminal(new_status) and payment.provider_processed_at is None:
        payment.provider_processed_at = now
    if new_status in (FAILED, CANCELLED) and reason:
        payment.error_message = reason
    s.save_payment(payment)

    escrow_created = False
    if purchase is not None:
        if can_transition(purchase.status, new_status, entity="purchase"):
            purchase.status = new_status
            purchase.updated_at = now
            s.save_purchase(purchase)
        else:
            logger.warning(
                "purchase transition skipped purchase_id=%s %s -> %s",
                purchase.id,
                purchase.status,
                new_status,
            )

        if new_status == COMPLETED and purchase.status == COMPLETED:
            existed = s.get_escrow_for_purchase(purchase.id) is not None
            create_escrow_for_purchase(s, purchase, now=now)
            escrow_created = not existed

    logger.info(
        "payment transition payment_id=%s purchase_id=%s %s -> %s escrow_created=%s",
        payment.id,
        payment.purchase_id,
        previous,
        new_status,
        escrow_created,
    )
    return TransitionResult(payment.id, previous, new_status, changed=True, escrow_created=escrow_created)


@dataclass(frozen=True)
class _Outbox:
    payment_id: UUID
    mail_to: Optional[str]
    mail_details: Optional[dict[str, Any]]
    mail_success: bool
    relay_payload: Optional[dict[str, Any]]


class PaymentNotifier:
    """
    Buyer mail and admin relay for a payment that reached a terminal state.

    Each channel has its own persisted sent flag. Flags are read first, the
    mail and relay go out with no transaction open, and the flags that were
    sent are then set in a short follow-up transaction. Only the caller that
    won the payment's transition invokes notify, so the unlocked read is safe.
    """

    def __init__(
        self,
        sender: NotificationSender,
        relay: Callable[[dict[str, Any]], bool] = send_order_notification,
        *,
        relay_retries: int = 3,
        relay_base_delay_s: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime],
    ):
        self.sender = sender
        self.relay = relay
        self.relay_retries = relay_retries
        self.relay_base_delay_s = relay_base_delay_s
        self.sleep = sleep
        self.clock = clock

    def notify(self, store: Store, payment_id: UUID) -> None:
        try:
            with store.session() as s:
                outbox = self._collect(s, payment_id)
            if outbox is None:
                return

            mailed = self._send_mail(outbox)
            relayed = self._send_relay(outbox)
            if mailed or relayed:
                with store.session() as s:
                    self._mark_sent(s, payment_id, mailed=mailed, relayed=relayed)
        except Exception:
            logger.exception("payment notifications failed payment_id=%s", payment_id)

    def _collect(self, s: StoreSession, payment_id: UUID) -> Optional[_Outbox]:
        payment = s.get_payment(payment_id)
        if payment is None or not is_terminal(payment.status):
            return None

        purchase = s.get_purchase(payment.purchase_id) if payment.purchase_id else None
        if purchase is None:
            logger.error("notification skipped: purchase not found payment_id=%s", payment.id)
            return None

        buyer = s.get_user_contact(purchase.buyer_id)
        tip = s.get_tip(purchase.tip_id)
        buyer_name = (buyer.display_name if buyer else None) or "Customer"
        reference = payment.order_number or payment.payment_reference or str(payment.id)

        mail_to = None
        details = None
        if not payment.email_notification_sent and buyer and buyer.email:
            mail_to = buyer.email
            details = {
                "reference": reference,
                "amount": str(payment.amount),
                "currency": payment.currency,
                "method": payment.network or payment.gateway_id or "Payment",
                "name": buyer_name,
            }
            if payment.status != COMPLETED:
                details["errorMessage"] = "Payment was not successful. Please try again."

        payload = None
        if payment.status == COMPLETED and not payment.webhook_notification_sent:
            payload = {
                "orderId": str(purchase.id),
                "customerId": str(purchase.buyer_id),
                "totalAmount": float(purchase.amount),
                "currency": payment.currency,
                "status": purchase.status.lower(),
                "paymentStatus": "paid",
                "items": [
                    {
                        "productId": str(purchase.tip_id),
                        "productName": (tip.title if tip else None) or "Tip",
                        "quantity": 1,
                        "unitPrice": float(purchase.amount),
                        "totalPrice": float(purchase.amount),
                    }
                ],
                "orderDate": purchase.created_at.isoformat() if purchase.created_at else None,
                "customerEmail": buyer.email if buyer else None,
                "customerName": buyer.display_name if buyer else None,
                "notes": f"Payment completed - Transaction: {payment.provider_transaction_id}",
            }

        if mail_to is None and payload is None:
            return None
        return _Outbox(
            payment_id=payment.id,
            mail_to=mail_to,
            mail_details=details,
            mail_success=payment.status == COMPLETED,
            relay_payload=payload,
        )

    def _send_mail(self, outbox: _Outbox) -> bool:
        if outbox.mail_to is None:
            return False
        try:
            if outbox.mail_success:
                self.sender.send_payment_success(outbox.mail_to, outbox.mail_details)
            else:
                self.sender.send_payment_failure(outbox.mail_to, outbox.mail_details)
        except Exception:
            logger.exception("buyer notification failed payment_id=%s", outbox.payment_id)
            return False
        return True

    def _send_relay(self, outbox: _Outbox) -> bool:
        if outbox.relay_payload is None:
            return False
        payload = outbox.relay_payload
        sent = retry_webhook(
            lambda: self.relay(payload),
            self.relay_retries,
            self.relay_base_delay_s,
            sleep=self.sleep,
        )
        if not sent:
            logger.error(
                "admin relay failed after retries payment_id=%s purchase_id=%s",
                outbox.payment_id,
                payload["orderId"],
            )
        return sent

    def _mark_sent(self, s: StoreSession, payment_id: UUID, *, mailed: bool, relayed: bool) -> None:
        payment = s.get_payment(payment_id, for_update=True)
        if payment is None:
            return
        if mailed:
            payment.email_notification_sent = True
        if relayed:
            payment.webhook_notification_sent = True
        payment.last_notification_sent_at = self.clock()
        s.save_payment(payment)
