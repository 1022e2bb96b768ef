# app/gateways/base.py
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Literal, Mapping, Optional

from app.payments.model import Contact

logger = logging.getLogger("tipsettle.gateways")

GatewayStatus = Literal["pending", "completed", "failed", "cancelled"]

HANDLING_CHECKOUT_URL = "checkout_url"
HANDLING_DIRECT = "direct"
HANDLING_MODES = (HANDLING_CHECKOUT_URL, HANDLING_DIRECT)

CENTS = Decimal("0.01")


class GatewayConfigError(RuntimeError):
    pass


class GatewayTransportError(Exception):
    """Timeout / network failure talking to a gateway. Always inconclusive."""


class WebhookValidationError(ValueError):
    def __init__(self, message: str, *, code: str = "INVALID_PAYLOAD"):
        super().__init__(message)
        self.code = code


@dataclass(frozen=True)
class PaymentRequest:
    payment_id: str
    amount: Decimal
    currency: str
    order_number: str
    payment_reference: str
    payment_method: str
    additional_data: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PaymentResponse:
    success: bool
    transaction_id: Optional[str] = None
    reference: Optional[str] = None
    status: str = "pending"
    checkout_url: Optional[str] = None
    provider_reference: Optional[str] = None
    message: Optional[str] = None
    errors: tuple[str, ...] = ()
    data: Optional[dict[str, Any]] = None


@dataclass(frozen=True)
class PaymentStatusResult:
    success: bool
    status: GatewayStatus = "pending"
    transaction_id: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    message: Optional[str] = None
    errors: tuple[str, ...] = ()
    data: Optional[dict[str, Any]] = None

    # provider answered "no such transaction"
    not_found: bool = False
    # timeout / transport error: neither success nor failure
    inconclusive: bool = False


@dataclass(frozen=True)
class WebhookRequest:
    headers: Mapping[str, str]
    body: Any
    raw_body: bytes = b""
    query: Mapping[str, str] = field(default_factory=dict)

    def header(self, name: str) -> Optional[str]:
        wanted = name.lower()
        for k, v in (self.headers or {}).items():
            if k.lower() == wanted:
                return v
        return None


@dataclass(frozen=True)
class WebhookEvent:
    """
    Provider webhook reduced to what the shared processor needs.
    Amounts are major units.
    """
    reference: Optional[str]
    provider_transaction_id: Optional[str]
    provider_status_code: str
    status: GatewayStatus
    amount: Optional[Decimal]
    currency: Optional[str]
    completed_at: Optional[datetime] = None
    app_id: Optional[str] = None
    account_name: Optional[str] = None
    account_number: Optional[str] = None
    network: Optional[str] = None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SignatureCheck:
    present: bool
    valid: bool
    key_configured: bool
    error: Optional[str] = None


@dataclass(frozen=True)
class WebhookAck:
    success: bool
    status: str
    message: str
    transaction_id: Optional[str] = None
    errors: tuple[str, ...] = ()
    http_status: int = 200

    def as_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "success": self.success,
            "status": self.status,
            "message": self.message,
        }
        if self.transaction_id:
            out["transactionId"] = self.transaction_id
        if self.errors:
            out["errors"] = list(self.errors)
        return out


@dataclass(frozen=True)
class PayoutRequest:
    order_id: str
    amount: Decimal
    currency: str
    recipient: Contact
    description: str
    notify_url: str


@dataclass(frozen=True)
class PayoutResponse:
    success: bool
    order_no: Optional[str] = None
    status: GatewayStatus = "pending"
    message: Optional[str] = None
    data: Optional[dict[str, Any]] = None


def to_minor_units(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(value: Any) -> Decimal:
    return Decimal(str(value)) / 100


def map_gateway_status(table: Mapping[Any, str], raw: Any, *, gateway: str) -> GatewayStatus:
    """
    Provider status -> pending/completed/failed/cancelled.
    Unknown values fall back to pending (never to a terminal state).
    """
    key = raw.strip().upper() if isinstance(raw, str) else raw
    mapped = table.get(key)
    if mapped is None:
        logger.warning("unmapped provider status gateway=%s status=%r -> pending", gateway, raw)
        return "pending"
    return mapped  # type: ignore[return-value]


class GatewayAdapter(ABC):
    """
    One per external payment provider. Provider wire shapes stay inside the adapter.
    """

    gateway_id: str = ""
    gateway_name: str = ""

    @abstractmethod
    def supported_methods(self) -> tuple[str, ...]: ...

    @abstractmethod
    def supported_currencies(self) -> tuple[str, ...]: ...

    @abstractmethod
    def missing_configuration(self) -> list[str]:
        """Names of required settings that are empty."""

    @abstractmethod
    def initiate_payment(self, request: PaymentRequest) -> PaymentResponse: ...

    @abstractmethod
    def check_payment_status(
        self,
        transaction_id: str,
        *,
        order_id: Optional[str] = None,
        currency: Optional[str] = None,
    ) -> PaymentStatusResult:
        """
        order_id and currency are hints some providers need; others ignore them.
        """

    @abstractmethod
    def parse_webhook(self, request: WebhookRequest) -> WebhookEvent:
        """Raise WebhookValidationError on structurally invalid payloads."""

    @abstractmethod
    def verify_webhook_signature(self, request: WebhookRequest) -> SignatureCheck: ...

    def expected_app_id(self) -> Optional[str]:
        return None

    def initiate_payout(self, request: PayoutRequest) -> PayoutResponse:
        return PayoutResponse(success=False, message=f"{self.gateway_id} does not support payouts")

    def supports_payouts(self) -> bool:
        return False

    # -------- shared helpers --------

    def validate_configuration(self) -> bool:
        return not self.missing_configuration()

    def is_available(self) -> bool:
        return self.validate_configuration()

    def supports_method(self, method: str) -> bool:
        return (method or "").strip().lower() in self.supported_methods()

    def supports_currency(self, currency: str) -> bool:
        return (currency or "").strip().upper() in self.supported_currencies()

    def default_handling_mode(self, method: str) -> str:
        return HANDLING_DIRECT
