# app/gateways/ogateway.py
from __future__ import annotations

import hashlib
import hmac
import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from app.gateways.base import (
    GatewayAdapter,
    GatewayConfigError,
    GatewayTransportError,
    PaymentRequest,
    PaymentResponse,
    PaymentStatusResult,
    SignatureCheck,
    WebhookEvent,
    WebhookRequest,
    WebhookValidationError,
    map_gateway_status,
)
from app.gateways.config import OGatewayConfig, ogateway_config
from app.gateways.http import HttpClient, HttpResponse

logger = logging.getLogger("tipsettle.gateways.ogateway")

MOBILE_MONEY_PATH = "/collections/mobilemoney"
VIRTUAL_ACCOUNT_PATH = "/virtual-accounts"
PAYMENT_PATH = "/payments/{transaction_id}"

SIGNATURE_HEADER = "X-OGateway-Signature"

STATUS_MAP = {
    "PENDING": "pending",
    "INITIATED": "pending",
    "PROCESSING": "pending",
    "COMPLETED": "completed",
    "SUCCESS": "completed",
    "FAILED": "failed",
    "REJECTED": "failed",
    "EXPIRED": "failed",
    "CANCELLED": "cancelled",
}

_MOBILE_MONEY_FIELDS = ("accountName", "accountNumber", "network")
_BANK_TRANSFER_FIELDS = ("phone_number", "email", "first_name", "last_name")


def _missing(data: dict[str, Any], names: tuple[str, ...]) -> list[str]:
    return [n for n in names if not str(data.get(n) or "").strip()]


def _parse_iso(value: Any) -> Optional[datetime]:
    if not value:
        return None
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def body_signature(raw: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), raw, hashlib.sha256).hexdigest()


class OGatewayGateway(GatewayAdapter):
    """
    OGateway mobile-money collections and bank-transfer virtual accounts.
    Amounts on the wire are major units.
    """

    gateway_id = "ogateway"
    gateway_name = "OGateway"

    def __init__(self, config: OGatewayConfig | None = None, http: HttpClient | None = None):
        self.config = config or ogateway_config()
        self.http = http or HttpClient(timeout_s=self.config.timeout_s)

    def supported_methods(self) -> tuple[str, ...]:
        return ("mobile_money", "bank_transfer")

    def supported_currencies(self) -> tuple[str, ...]:
        return ("GHS", "NGN", "USD")

    def missing_configuration(self) -> list[str]:
        missing = []
        if not self.config.api_key:
            missing.append("OGATEWAY_API_KEY")
        if not self.config.base_url:
            missing.append("OGATEWAY_BASE_URL")
        return missing

    @staticmethod
    def map_ogateway_status(status: Any) -> str:
        return map_gateway_status(STATUS_MAP, status or "", gateway="ogateway")

    # -------- wire --------

    def _headers(self) -> dict[str, str]:
        if self.missing_configuration():
            raise GatewayConfigError(
                "ogateway not configured: missing " + ", ".join(self.missing_configuration())
            )
        return {
            "Authorization": self.config.api_key,
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": "TipSettle/1.0",
        }

    @staticmethod
    def _error_message(resp: HttpResponse, fallback: str) -> str:
        payload = resp.json if isinstance(resp.json, dict) else {}
        return str(payload.get("message") or payload.get("error") or fallback)

    @staticmethod
    def _transaction_id(data: dict[str, Any], fallback: Optional[str]) -> Optional[str]:
        for key in ("id", "transactionId", "transaction_id", "reference"):
            value = data.get(key)
            if value:
                return str(value)
        return fallback

    # -------- collections --------

    def initiate_payment(self, request: PaymentRequest) -> PaymentResponse:
        method = (request.payment_method or "").strip().lower()
        if method == "mobile_money":
            return self._initiate_mobile_money(request)
        if method == "bank_transfer":
            return self._initiate_bank_transfer(request)
        msg = f"Unsupported payment method: {request.payment_method}"
        return PaymentResponse(success=False, status="failed", message=msg, errors=(msg,))

    def _initiate_mobile_money(self, request: PaymentRequest) -> PaymentResponse:
        extra = request.additional_data or {}
        missing = _missing(extra, _MOBILE_MONEY_FIELDS)
        if missing:
            msg = "Mobile money payment requires accountName, accountNumber, and network"
            return PaymentResponse(success=False, status="failed", message=msg, errors=tuple(missing))

        body = {
            "amount": float(request.amount),
            "reason": f"Payment for order {request.order_number}",
            "currency": request.currency,
            "network": extra["network"],
            "accountName": extra["accountName"],
            "accountNumber": extra["accountNumber"],
            "reference": request.payment_reference,
            "callbackURL": f"{self.config.app_url}/v1/webhooks/ogateway",
        }
        resp = self.http.post(self.config.base_url + MOBILE_MONEY_PATH, headers=self._headers(), json_body=body)
        logger.info(
            "ogateway mobilemoney http_status=%s reference=%s",
            resp.status_code,
            request.payment_reference,
        )
        if not resp.ok:
            msg = self._error_message(resp, "Mobile money payment failed")
            return PaymentResponse(
                success=False,
                status="failed",
                message=msg,
                errors=(msg,),
                data={"http_status": resp.status_code, "body": resp.json},
            )

        data = resp.json if isinstance(resp.json, dict) else {}
        return PaymentResponse(
            success=True,
            transaction_id=self._transaction_id(data, request.payment_reference),
            reference=request.payment_reference,
            status=self.map_ogateway_status(data.get("status") or "PENDING"),
            provider_reference=request.payment_reference,
            message=data.get("message") or "Mobile money payment initiated successfully",
            data={
                "paymentMethod": "mobile_money",
                "amount": str(request.amount),
                "currency": request.currency,
                "accountName": extra["accountName"],
                "accountNumber": extra["accountNumber"],
                "network": extra["network"],
            },
        )

    def _initiate_bank_transfer(self, request: PaymentRequest) -> PaymentResponse:
        extra = request.additional_data or {}
        missing = _missing(extra, _BANK_TRANSFER_FIELDS)
        if missing:
            msg = "Bank transfer payment requires phone_number, email, first_name, and last_name"
            return PaymentResponse(success=False, status="failed", message=msg, errors=tuple(missing))

        body = {
            "currency": request.currency,
            "reference": request.payment_reference,
            "phone_number": extra["phone_number"],
            "email": extra["email"],
            "first_name": extra["first_name"],
            "last_name": extra["last_name"],
            "amount": float(request.amount),
        }
        resp = self.http.post(self.config.base_url + VIRTUAL_ACCOUNT_PATH, headers=self._headers(), json_body=body)
        logger.info(
            "ogateway virtual-account http_status=%s reference=%s",
            resp.status_code,
            request.payment_reference,
        )
        if not resp.ok:
            msg = self._error_message(resp, "Bank transfer payment failed")
            return PaymentResponse(
                success=False,
                status="failed",
                message=msg,
                errors=(msg,),
                data={"http_status": resp.status_code, "body": resp.json},
            )

        data = resp.json if isinstance(resp.json, dict) else {}
        return PaymentResponse(
            success=True,
            transaction_id=self._transaction_id(data, request.order_number),
            reference=request.payment_reference,
            status=self.map_ogateway_status(data.get("status") or "PENDING"),
            provider_reference=request.payment_reference,
            message=data.get("message") or "Bank transfer virtual account created successfully",
            data={
                "paymentMethod": "bank_transfer",
                "amount": str(request.amount),
                "currency": request.currency,
                "bankDetails": {
                    "bankCode": data.get("bank_code"),
                    "bankName": data.get("bank_name"),
                    "accountName": data.get("account_name"),
                    "accountNumber": data.get("account_number"),
                },
            },
        )

    def check_payment_status(
        self,
        transaction_id: str,
        *,
        order_id: Optional[str] = None,
        currency: Optional[str] = None,
    ) -> PaymentStatusResult:
        url = self.config.base_url + PAYMENT_PATH.format(transaction_id=transaction_id)
        try:
            resp = self.http.get(url, headers=self._headers())
        except GatewayTransportError as exc:
            logger.warning("ogateway status inconclusive id=%s error=%s", transaction_id, exc)
            return PaymentStatusResult(
                success=False, transaction_id=transaction_id, message=str(exc), inconclusive=True
            )

        if resp.status_code == 404:
            return PaymentStatusResult(
                success=False,
                transaction_id=transaction_id,
                message=self._error_message(resp, "Payment not found"),
                not_found=True,
            )

        if not resp.ok:
            msg = self._error_message(resp, "Failed to check payment status")
            return PaymentStatusResult(
                success=False,
                transaction_id=transaction_id,
                message=msg,
                errors=(msg,),
                inconclusive=resp.status_code >= 500,
            )

        data = resp.json if isinstance(resp.json, dict) else {}
        if not data:
            return PaymentStatusResult(
                success=False,
                transaction_id=transaction_id,
                message="Empty data in OGateway API response",
                inconclusive=True,
            )

        amount = None
        if data.get("amount") is not None:
            try:
                amount = Decimal(str(data["amount"]))
            except InvalidOperation:
                amount = None

        return PaymentStatusResult(
            success=True,
            status=self.map_ogateway_status(data.get("status")),  # type: ignore[arg-type]
            transaction_id=transaction_id,
            amount=amount,
            currency=data.get("currency"),
            message=data.get("message") or "Payment status retrieved successfully",
            data=data,
        )

    # -------- webhooks --------

    def parse_webhook(self, request: WebhookRequest) -> WebhookEvent:
        payload = request.body
        if not isinstance(payload, dict) or not payload:
            raise WebhookValidationError("Invalid webhook payload: empty body", code="EMPTY_BODY")
        if not payload.get("reference_business"):
            raise WebhookValidationError(
                "Invalid webhook payload: missing reference_business", code="MISSING_REFERENCE_BUSINESS"
            )
        if not payload.get("id"):
            raise WebhookValidationError("Invalid webhook payload: missing id", code="MISSING_ID")
        if not payload.get("status"):
            raise WebhookValidationError("Invalid webhook payload: missing status", code="MISSING_STATUS")

        amount = None
        if payload.get("amount") is not None:
            try:
                amount = Decimal(str(payload["amount"]))
            except InvalidOperation as exc:
                raise WebhookValidationError(
                    f"Invalid webhook payload: bad amount {payload['amount']!r}", code="INVALID_AMOUNT"
                ) from exc

        try:
            completed_at = _parse_iso(payload.get("updated_at"))
        except ValueError as exc:
            raise WebhookValidationError(
                f"Invalid webhook payload: bad updated_at {payload.get('updated_at')!r}",
                code="INVALID_UPDATED_AT",
            ) from exc

        customer = payload.get("customer") if isinstance(payload.get("customer"), dict) else {}
        status_code = str(payload["status"]).strip().upper()
        return WebhookEvent(
            reference=str(payload["reference_business"]),
            provider_transaction_id=str(payload["id"]),
            provider_status_code=status_code,
            status=self.map_ogateway_status(status_code),  # type: ignore[arg-type]
            amount=amount,
            currency=payload.get("currency") or None,
            completed_at=completed_at,
            account_name=customer.get("accountName") or None,
            account_number=customer.get("accountNumber") or None,
            network=payload.get("network") or None,
            raw=dict(payload),
        )

    def verify_webhook_signature(self, request: WebhookRequest) -> SignatureCheck:
        secret = self.config.webhook_secret
        header = (request.header(SIGNATURE_HEADER) or "").strip()

        if not header:
            return SignatureCheck(present=False, valid=False, key_configured=bool(secret), error="MISSING_SIGNATURE")
        if not secret:
            return SignatureCheck(
                present=True, valid=False, key_configured=False, error="WEBHOOK_SECRET_NOT_CONFIGURED"
            )

        sig = header
        if sig.lower().startswith("sha256="):
            sig = sig.split("=", 1)[1].strip()

        expected = body_signature(request.raw_body or b"", secret)
        if not hmac.compare_digest(expected, sig):
            return SignatureCheck(present=True, valid=False, key_configured=True, error="INVALID_SIGNATURE")
        return SignatureCheck(present=True, valid=True, key_configured=True)
