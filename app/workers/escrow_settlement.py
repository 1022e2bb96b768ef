# app/workers/escrow_settlement.py
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional

from app.clock import Clock, utcnow
from app.escrow.model import (
    ESCROW_RELEASED,
    ESCROW_REFUNDED,
    RELEASE_BUYER_REFUND,
    RELEASE_PLATFORM_REVENUE,
    RELEASE_TIPSTER_PAYOUT,
    Escrow,
)
from app.gateways.base import GatewayAdapter, PayoutRequest
from app.gateways.registry import GatewayRegistry
from app.payments.model import (
    ESCROW_REFUND,
    PLATFORM_REVENUE,
    TIPSTER_PAYOUT,
    Contact,
    Payment,
    Purchase,
)
from app.payments.state_machine import COMPLETED, PENDING, can_transition, is_terminal
from app.store.base import Store, StoreSession, cursor_of
from app.tips.model import TIP_CANCELLED, TIP_LOST, TIP_PENDING, TIP_VOID, TIP_WON, Tip

logger = logging.getLogger("tipsettle.escrow")

CENTS = Decimal("0.01")
HUNDRED = Decimal("100")

_REFUND_OUTCOMES = (TIP_LOST, TIP_VOID, TIP_CANCELLED)


def _money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENTS, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class FeeSplit:
    platform_fee: Decimal
    platform_fee_percentage: Decimal
    tipster_earnings: Decimal


def split_fees(amount: Decimal, commission_rate: Decimal) -> FeeSplit:
    """
    platform_fee + tipster_earnings == amount, always; the fee carries the rounding.
    """
    amount = _money(amount)
    fee = _money(amount * Decimal(commission_rate))
    return FeeSplit(
        platform_fee=fee,
        platform_fee_percentage=_money(Decimal(commission_rate) * HUNDRED),
        tipster_earnings=amount - fee,
    )


def ledger_reference(prefix: str, escrow_id: uuid.UUID) -> str:
    # payment_reference is unique and doubles as the gateway orderId
    return f"{prefix}-{escrow_id.hex}"


@dataclass(frozen=True)
class _Transfer:
    payment: Payment
    recipient: Optional[Contact]
    description: str


class EscrowSettler:
    """
    Releases or refunds escrows whose purchase is COMPLETED and whose tip is decided.

    One transaction per escrow: the escrow's terminal status and its ledger
    Payment commit together. The payout/refund transfer is attempted after that
    commit, so no row lock is held over gateway I/O and a rolled-back settlement
    never moves money. A failed transfer only leaves the ledger Payment PENDING.
    """

    def __init__(
        self,
        store: Store,
        registry: GatewayRegistry,
        *,
        clock: Clock = utcnow,
        app_url: str = "",
        batch_size: int = 200,
        payout_gateway: Optional[str] = None,
    ):
        self.store = store
        self.registry = registry
        self.clock = clock
        self.app_url = (app_url or "").rstrip("/")
        self.batch_size = batch_size
        self.payout_gateway = payout_gateway

    def run(self) -> dict[str, Any]:
        summary = {"settled": 0, "released": 0, "refunded": 0, "skipped": 0, "errors": 0}

        with self.store.session() as s:
            escrows = s.list_settleable_escrows(limit=self.batch_size)
            rate = s.get_platform_commission_rate() if escrows else None

        if not escrows:
            logger.debug("escrow settlement: nothing ready")
            return summary

        if rate is None:
            logger.error("escrow settlement: no active app settings, cannot calculate fees")
            summary["skipped"] = len(escrows)
            return summary

        logger.info("escrow settlement: commission_rate=%s", rate)
        while escrows:
            for escrow in escrows:
                try:
                    status = self._settle_one(escrow.id, rate)
                except Exception:
                    logger.exception("escrow settlement failed escrow_id=%s", escrow.id)
                    summary["errors"] += 1
                    continue

                if status is None:
                    summary["skipped"] += 1
                else:
                    summary["settled"] += 1
                    summary["released" if status == ESCROW_RELEASED else "refunded"] += 1

            # a failing escrow stays HELD; resume after the last one seen
            with self.store.session() as s:
                escrows = s.list_settleable_escrows(limit=self.batch_size, after=cursor_of(escrows[-1]))

        logger.info("escrow settlement done %s", summary)
        return summary

    # -------- one escrow --------

    def _settle_one(self, escrow_id: uuid.UUID, rate: Decimal) -> Optional[str]:
        with self.store.session() as s:
            escrow = s.get_escrow(escrow_id, for_update=True)
            if escrow is None or is_terminal(escrow.status, entity="escrow"):
                logger.debug("escrow already settled escrow_id=%s", escrow_id)
                return None

            purchase = s.get_purchase(escrow.purchase_id)
            if purchase is None or purchase.status != COMPLETED:
                return None
            tip = s.get_tip(purchase.tip_id)
            if tip is None or tip.status == TIP_PENDING:
                return None

            currency = self._currency(s, purchase)
            now = self.clock()

            transfer: Optional[_Transfer] = None
            if tip.status == TIP_WON:
                if tip.is_ai or escrow.is_ai_tip:
                    self._platform_revenue(s, escrow, tip, currency)
                else:
                    transfer = self._tipster_payout(s, escrow, tip, rate, currency)
                new_status = ESCROW_RELEASED
            elif tip.status in _REFUND_OUTCOMES:
                transfer = self._buyer_refund(s, escrow, purchase, tip, currency)
                new_status = ESCROW_REFUNDED
            else:
                logger.warning("unknown tip outcome escrow_id=%s tip_status=%s", escrow.id, tip.status)
                return None

            if not can_transition(escrow.status, new_status, entity="escrow"):
                raise RuntimeError(f"Illegal escrow transition {escrow.status} -> {new_status}")

            escrow.status = new_status
            escrow.released_at = now
            escrow.updated_at = now
            if escrow.held_at is None:
                escrow.held_at = now
            s.save_escrow(escrow)

        logger.info(
            "escrow settled escrow_id=%s status=%s release_type=%s platform_fee=%s tipster_earnings=%s",
            escrow.id,
            escrow.status,
            escrow.release_type,
            escrow.platform_fee,
            escrow.tipster_earnings,
        )
        if transfer is not None:
            self._initiate_transfer(transfer)
        return new_status

    @staticmethod
    def _currency(s: StoreSession, purchase: Purchase) -> str:
        original = s.latest_purchase_payment(purchase.id)
        if original and original.currency:
            return original.currency
        return "GHS" if (purchase.payment_gateway or "").lower() == "palmpay" else "USD"

    def _platform_revenue(self, s: StoreSession, escrow: Escrow, tip: Tip, currency: str) -> None:
        amount = _money(escrow.amount)
        escrow.release_type = RELEASE_PLATFORM_REVENUE
        escrow.released_to = None
        escrow.platform_fee = amount
        escrow.platform_fee_percentage = HUNDRED
        escrow.tipster_earnings = Decimal("0")

        s.insert_payment(
            self._ledger_payment(
                escrow,
                payment_type=PLATFORM_REVENUE,
                status=COMPLETED,
                amount=amount,
                currency=currency,
                is_payout=False,
                reference=ledger_reference("PLATFORM-REV", escrow.id),
                description=f"Platform revenue from AI tip {tip.id} (escrow {escrow.id})",
            )
        )
        logger.info("AI tip won escrow_id=%s platform keeps %s %s", escrow.id, amount, currency)

    def _tipster_payout(self, s: StoreSession, escrow: Escrow, tip: Tip, rate: Decimal, currency: str) -> _Transfer:
        if tip.tipster_user_id is None:
            raise RuntimeError(f"Tip {tip.id} has no tipster to pay")

        split = split_fees(escrow.amount, rate)
        escrow.release_type = RELEASE_TIPSTER_PAYOUT
        escrow.released_to = tip.tipster_user_id
        escrow.platform_fee = split.platform_fee
        escrow.platform_fee_percentage = split.platform_fee_percentage
        escrow.tipster_earnings = split.tipster_earnings

        payout = self._ledger_payment(
            escrow,
            payment_type=TIPSTER_PAYOUT,
            status=PENDING,
            amount=split.tipster_earnings,
            currency=currency,
            is_payout=True,
            reference=ledger_reference("TIPSTER-PAYOUT", escrow.id),
            description=f"Tipster payout for tip {tip.id} (escrow {escrow.id})",
            recipient_user_id=tip.tipster_user_id,
        )
        s.insert_payment(payout)
        logger.info(
            "tip won escrow_id=%s tipster earns %s platform fee %s",
            escrow.id,
            split.tipster_earnings,
            split.platform_fee,
        )
        return _Transfer(payout, s.get_user_contact(tip.tipster_user_id), f"Tipster payout for tip {tip.id}")

    def _buyer_refund(
        self, s: StoreSession, escrow: Escrow, purchase: Purchase, tip: Tip, currency: str
    ) -> _Transfer:
        amount = _money(escrow.amount)
        escrow.release_type = RELEASE_BUYER_REFUND
        escrow.released_to = purchase.buyer_id
        escrow.platform_fee = Decimal("0")
        escrow.platform_fee_percentage = Decimal("0")
        escrow.tipster_earnings = Decimal("0")

        refund = self._ledger_payment(
            escrow,
            payment_type=ESCROW_REFUND,
            status=PENDING,
            amount=amount,
            currency=currency,
            is_payout=True,
            reference=ledger_reference("ESCROW-REFUND", escrow.id),
            description=f"Escrow refund for tip {tip.id} ({tip.status}) - escrow {escrow.id}",
            recipient_user_id=purchase.buyer_id,
            purchase_id=purchase.id,
        )
        s.insert_payment(refund)
        logger.info("tip %s escrow_id=%s refunding %s %s to buyer", tip.status, escrow.id, amount, currency)
        return _Transfer(
            refund, s.get_user_contact(purchase.buyer_id), f"Escrow refund for tip {tip.id} ({tip.status})"
        )

    def _ledger_payment(
        self,
        escrow: Escrow,
        *,
        payment_type: str,
        status: str,
        amount: Decimal,
        currency: str,
        is_payout: bool,
        reference: str,
        description: str,
        recipient_user_id: Optional[uuid.UUID] = None,
        purchase_id: Optional[uuid.UUID] = None,
    ) -> Payment:
        now = self.clock()
        return Payment(
            id=uuid.uuid4(),
            amount=amount,
            currency=currency,
            status=status,
            payment_type=payment_type,
            purchase_id=purchase_id,
            escrow_id=escrow.id,
            recipient_user_id=recipient_user_id,
            is_payout=is_payout,
            payment_reference=reference,
            description=description,
            provider_processed_at=now if status == COMPLETED else None,
            created_at=now,
            updated_at=now,
        )

    # -------- transfers --------

    def _payout_adapter(self) -> Optional[GatewayAdapter]:
        if self.payout_gateway:
            return self.registry.get(self.payout_gateway)
        for gid in self.registry.available_gateways():
            adapter = self.registry.get(gid)
            if adapter.supports_payouts():
                return adapter
        return None

    def _initiate_transfer(self, transfer: _Transfer) -> None:
        payment, recipient = transfer.payment, transfer.recipient
        if recipient is None or not recipient.has_payout_destination():
            logger.warning(
                "cannot initiate transfer: missing bank account details payment_id=%s recipient=%s",
                payment.id,
                payment.recipient_user_id,
            )
            return

        result = None
        try:
            adapter = self._payout_adapter()
            if adapter is None:
                logger.warning("no payout-capable gateway available payment_id=%s", payment.id)
                return

            result = adapter.initiate_payout(
                PayoutRequest(
                    order_id=payment.payment_reference or str(payment.id),
                    amount=payment.amount,
                    currency=payment.currency,
                    recipient=recipient,
                    description=transfer.description,
                    notify_url=f"{self.app_url}/v1/webhooks/{adapter.gateway_id}/payout",
                )
            )
        except Exception:
            # payment stays PENDING for the payout reconciliation path
            logger.exception("transfer initiation raised payment_id=%s", payment.id)

        if result is not None and (not result.success or not result.order_no):
            logger.error("transfer initiation failed payment_id=%s message=%s", payment.id, result.message)
            result = None

        try:
            self._record_attempt(payment.id, adapter.gateway_id if result else None, result.order_no if result else None)
        except Exception:
            logger.exception("could not record transfer attempt payment_id=%s", payment.id)

    def _record_attempt(self, payment_id: uuid.UUID, gateway_id: Optional[str], order_no: Optional[str]) -> None:
        now = self.clock()
        with self.store.session() as s:
            fresh = s.get_payment(payment_id, for_update=True)
            if fresh is None:
                return
            fresh.retry_count = (fresh.retry_count or 0) + 1
            fresh.last_retry_at = now
            fresh.updated_at = now
            if order_no:
                fresh.gateway_id = gateway_id
                fresh.provider_transaction_id = order_no
                fresh.provider_status = "pending"
            s.save_payment(fresh)

        if order_no:
            logger.info("transfer initiated payment_id=%s order_no=%s", payment_id, order_no)

    # -------- stats --------

    def stats(self) -> dict[str, Any]:
        with self.store.session() as s:
            raw = s.escrow_stats()
        out: dict[str, Any] = {k: int(raw.get(k) or 0) for k in ("held", "released", "refunded")}
        for k in ("held_amount", "platform_fees", "tipster_earnings", "refunded_amount"):
            out[k] = str(_money(Decimal(str(raw.get(k) or 0))))
        return out
