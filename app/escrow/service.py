# app/escrow/service.py
from __future__ import annotations

import logging
import uuid
from datetime import datetime
from decimal import Decimal

from app.escrow.model import ESCROW_HELD, Escrow
from app.payments.model import Purchase
from app.payments.state_machine import COMPLETED
from app.store.base import StoreSession

logger = logging.getLogger("tipsettle.escrow")


class EscrowError(RuntimeError):
    pass


def create_escrow_for_purchase(s: StoreSession, purchase: Purchase, *, now: datetime) -> Escrow:
    """
    Idempotent: a purchase has at most one escrow, so an existing one is returned as is.
    Must run in the same session that completed the purchase.
    """
    existing = s.get_escrow_for_purchase(purchase.id, for_update=True)
    if existing is not None:
        logger.info("escrow already exists purchase_id=%s escrow_id=%s", purchase.id, existing.id)
        return existing

    if purchase.status != COMPLETED:
        raise EscrowError(f"Cannot create escrow for purchase {purchase.id} in status {purchase.status}")

    tip = s.get_tip(purchase.tip_id)
    escrow = Escrow(
        id=uuid.uuid4(),
        purchase_id=purchase.id,
        amount=Decimal(purchase.amount),
        status=ESCROW_HELD,
        is_ai_tip=bool(tip.is_ai) if tip else False,
        held_at=now,
        created_at=now,
        updated_at=now,
    )
    s.insert_escrow(escrow)
    logger.info(
        "escrow created purchase_id=%s escrow_id=%s amount=%s is_ai_tip=%s",
        purchase.id,
        escrow.id,
        escrow.amount,
        escrow.is_ai_tip,
    )
    return escrow
