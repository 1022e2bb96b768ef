from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional, Any
from uuid import UUID

TIP_PURCHASE = "TIP_PURCHASE"
TIPSTER_PAYOUT = "TIPSTER_PAYOUT"
ESCROW_REFUND = "ESCROW_REFUND"
PLATFORM_REVENUE = "PLATFORM_REVENUE"


@dataclass
class Payment:
    id: UUID
    amount: Decimal
    currency: str
    status: str
    payment_type: str = TIP_PURCHASE
    purchase_id: Optional[UUID] = None
    escrow_id: Optional[UUID] = None
    recipient_user_id: Optional[UUID] = None
    is_payout: bool = False
    gateway_id: Optional[str] = None
    order_number: Optional[str] = None
    payment_reference: Optional[str] = None
    provider_transaction_id: Optional[str] = None
    provider_status: Optional[str] = None
    provider_reference: Optional[str] = None
    checkout_url: Optional[str] = None
    network: Optional[str] = None
    account_name: Optional[str] = None
    account_number: Optional[str] = None
    response_data: Optional[dict[str, Any]] = None
    webhook_fingerprint: Optional[str] = None
    error_message: Optional[str] = None
    description: Optional[str] = None
    provider_processed_at: Optional[datetime] = None
    email_notification_sent: bool = False
    webhook_notification_sent: bool = False
    last_notification_sent_at: Optional[datetime] = None
    retry_count: int = 0
    last_retry_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class Purchase:
    id: UUID
    tip_id: UUID
    buyer_id: UUID
    amount: Decimal
    status: str
    payment_gateway: Optional[str] = None
    tip_outcome: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class Contact:
    """
    Who money or mail goes to. Bank fields are empty for users without payout details.
    """
    user_id: UUID
    email: Optional[str] = None
    display_name: Optional[str] = None
    phone_number: Optional[str] = None
    account_number: Optional[str] = None
    account_name: Optional[str] = None
    bank_code: Optional[str] = None
    bank_name: Optional[str] = None
    extra: dict[str, Any] = field(default_factory=dict)

    def has_payout_destination(self) -> bool:
        return bool(
            (self.account_number or "").strip()
            and (self.account_name or "").strip()
            and ((self.bank_code or "").strip() or (self.bank_name or "").strip())
        )
