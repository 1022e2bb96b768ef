from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

ESCROW_PENDING = "PENDING"
ESCROW_HELD = "HELD"
ESCROW_RELEASED = "RELEASED"
ESCROW_REFUNDED = "REFUNDED"

RELEASE_PLATFORM_REVENUE = "PLATFORM_REVENUE"
RELEASE_TIPSTER_PAYOUT = "TIPSTER_PAYOUT"
RELEASE_BUYER_REFUND = "BUYER_REFUND"


@dataclass
class Escrow:
    id: UUID
    purchase_id: UUID
    amount: Decimal
    status: str
    is_ai_tip: bool = False
    held_at: Optional[datetime] = None
    released_at: Optional[datetime] = None
    released_to: Optional[UUID] = None
    release_type: Optional[str] = None
    platform_fee: Decimal = Decimal("0")
    platform_fee_percentage: Decimal = Decimal("0")
    tipster_earnings: Decimal = Decimal("0")
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
