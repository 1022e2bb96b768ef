# app/gateways/palmpay.py
from __future__ import annotations

import base64
import hashlib
import logging
import secrets
import string
import textwrap
import time
from datetime import datetime, timezone
from typing import Any, Optional
from urllib.parse import unquote

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding

from app.gateways.base import (
    HANDLING_CHECKOUT_URL,
    GatewayAdapter,
    GatewayConfigError,
    GatewayTransportError,
    PaymentRequest,
    PaymentResponse,
    PaymentStatusResult,
    PayoutRequest,
    PayoutResponse,
    SignatureCheck,
    WebhookEvent,
    WebhookRequest,
    WebhookValidationError,
    from_minor_units,
    map_gateway_status,
    to_minor_units,
)
from app.gateways.config import PalmPayConfig, palmpay_config
from app.gateways.http import HttpClient, HttpResponse

logger = logging.getLogger("tipsettle.gateways.palmpay")

CREATE_ORDER_PATH = "/api/v2/payment/merchant/createorder"
QUERY_STATUS_PATH = "/api/v2/payment/merchant/order/queryStatus"
PAYOUT_PATH = "/api/v2/merchant/payment/payout"

SUCCESS_CODES = ("00000", "00000000")

# orderStatus: 0 unpaid, 1 paying, 2 success, 3 fail, 4 close
STATUS_MAP = {
    0: "pending",
    1: "pending",
    2: "completed",
    3: "failed",
    4: "cancelled",
}

COUNTRY_BY_CURRENCY = {
    "GHS": "GH",
    "NGN": "NG",
    "KES": "KE",
    "TZS": "TZ",
}

_NONCE_ALPHABET = string.ascii_letters + string.digits


def _nonce(length: int = 32) -> str:
    return "".join(secrets.choice(_NONCE_ALPHABET) for _ in range(length))


def _now_ms() -> int:
    return int(time.time() * 1000)


def country_code(currency: Optional[str]) -> str:
    return COUNTRY_BY_CURRENCY.get((currency or "").strip().upper(), "GH")


def _format_pem(key: str, kind: str) -> bytes:
    """
    Accept either a full PEM or the bare base64 body (as usually pasted in env vars).
    """
    begin = f"-----BEGIN {kind}-----"
    end = f"-----END {kind}-----"
    body = key.replace(begin, "").replace(end, "").replace("\\n", "")
    body = "".join(body.split())
    return (begin + "\n" + "\n".join(textwrap.wrap(body, 64)) + "\n" + end + "\n").encode("ascii")


def canonical_string(params: dict[str, Any], *, skip_empty: bool = False) -> str:
    items = []
    for k in sorted(params):
        if k == "sign":
            continue
        v = params[k]
        if skip_empty and (v is None or str(v).strip() == ""):
            continue
        items.append(f"{k}={v}")
    return "&".join(items)


def md5_upper(text: str) -> str:
    return hashlib.md5(text.encode("utf-8")).hexdigest().upper().strip()


def sign_params(params: dict[str, Any], private_key_pem: str) -> str:
    key = serialization.load_pem_private_key(_format_pem(private_key_pem, "PRIVATE KEY"), password=None)
    digest = md5_upper(canonical_string(params))
    signature = key.sign(digest.encode("utf-8"), padding.PKCS1v15(), hashes.SHA1())
    return base64.b64encode(signature).decode("ascii")


def verify_params(params: dict[str, Any], signature_b64: str, public_key_pem: str) -> bool:
    key = serialization.load_pem_public_key(_format_pem(public_key_pem, "PUBLIC KEY"))
    digest = md5_upper(canonical_string(params, skip_empty=True))
    try:
        key.verify(
            base64.b64decode(unquote(signature_b64)),
            digest.encode("utf-8"),
            padding.PKCS1v15(),
            hashes.SHA1(),
        )
    except (InvalidSignature, ValueError):
        return False
    return True


def _order_status(value: Any) -> Any:
    try:
        return int(value)
    except (TypeError, ValueError):
        return value


class PalmPayGateway(GatewayAdapter):
    """
    PalmPay mobile-money collections (redirect checkout) and bank/MoMo payouts.
    Amounts on the wire are minor units.
    """

    gateway_id = "palmpay"
    gateway_name = "Palmpay"

    def __init__(self, config: PalmPayConfig | None = None, http: HttpClient | None = None):
        self.config = config or palmpay_config()
        self.http = http or HttpClient(timeout_s=self.config.timeout_s)

    def supported_methods(self) -> tuple[str, ...]:
        return ("mobile_money",)

    def supported_currencies(self) -> tuple[str, ...]:
        return ("GHS", "TZS", "KES", "NGN")

    def missing_configuration(self) -> list[str]:
        missing = []
        if not self.config.app_id:
            missing.append("PALMPAY_APP_ID")
        if not self.config.base_url:
            missing.append("PALMPAY_BASE_URL")
        if not self.config.private_key:
            missing.append("PALMPAY_PRIVATE_KEY")
        return missing

    def expected_app_id(self) -> Optional[str]:
        return self.config.app_id or None

    def supports_payouts(self) -> bool:
        return True

    def default_handling_mode(self, method: str) -> str:
        # buyer approves on the hosted PalmPay page
        return HANDLING_CHECKOUT_URL

    @staticmethod
    def map_palmpay_status(order_status: Any) -> str:
        return map_gateway_status(STATUS_MAP, _order_status(order_status), gateway="palmpay")

    # -------- wire --------

    def _post(self, path: str, body: dict[str, Any], *, currency: Optional[str]) -> HttpResponse:
        if self.missing_configuration():
            raise GatewayConfigError(
                "palmpay not configured: missing " + ", ".join(self.missing_configuration())
            )
        headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "countryCode": country_code(currency),
            "Authorization": f"Bearer {self.config.app_id}",
            "Signature": sign_params(body, self.config.private_key),
        }
        return self.http.post(self.config.base_url + path, headers=headers, json_body=body)

    @staticmethod
    def _unwrap(resp: HttpResponse) -> tuple[Optional[str], Optional[str], dict[str, Any]]:
        payload = resp.json if isinstance(resp.json, dict) else {}
        data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
        resp_code = payload.get("respCode") or data.get("respCode")
        resp_msg = payload.get("respMsg") or data.get("respMsg")
        return (str(resp_code) if resp_code is not None else None), resp_msg, data

    # -------- collections --------

    def initiate_payment(self, request: PaymentRequest) -> PaymentResponse:
        if request.payment_method != "mobile_money":
            msg = f"Unsupported payment method: {request.payment_method}. Palmpay only supports mobile_money"
            return PaymentResponse(success=False, status="failed", message=msg, errors=(msg,))

        extra = request.additional_data or {}
        order_id = str(extra.get("purchaseId") or request.order_number)
        tip_id = extra.get("tipId")
        if tip_id:
            callback_url = f"{self.config.frontend_url}/tips/{tip_id}/purchase/success?purchaseId={order_id}"
        else:
            callback_url = f"{self.config.frontend_url}/orders"

        body: dict[str, Any] = {
            "requestTime": _now_ms(),
            "version": "V2.0",
            "nonceStr": _nonce(),
            "orderId": order_id,
            "amount": to_minor_units(request.amount),
            "callBackUrl": callback_url,
            "notifyUrl": f"{self.config.app_url}/v1/webhooks/palmpay",
            "productType": "mmo",
        }
        mobile = extra.get("userMobileNo") or extra.get("phoneNumber") or extra.get("accountNumber")
        if mobile:
            body["userMobileNo"] = str(mobile)

        resp = self._post(CREATE_ORDER_PATH, body, currency=request.currency)
        resp_code, resp_msg, data = self._unwrap(resp)

        logger.info(
            "palmpay createorder http_status=%s resp_code=%s order_id=%s",
            resp.status_code,
            resp_code,
            order_id,
        )

        if not resp.ok or (resp_code and resp_code not in SUCCESS_CODES):
            msg = resp_msg or f"Palmpay API error: {resp_code or resp.status_code}"
            return PaymentResponse(
                success=False,
                status="failed",
                message=msg,
                errors=(resp_code or str(resp.status_code),),
                data={"http_status": resp.status_code, "body": resp.json},
            )

        order_no = str(data.get("orderNo") or "").strip()
        if not order_no:
            msg = "Palmpay API did not return a valid order number"
            return PaymentResponse(success=False, status="failed", message=msg, errors=(msg,))

        return PaymentResponse(
            success=True,
            transaction_id=order_no,
            reference=request.payment_reference,
            status=self.map_palmpay_status(data.get("orderStatus", 0)),
            checkout_url=data.get("checkoutUrl") or None,
            provider_reference=order_id,
            message=data.get("message") or "Mobile money payment initiated successfully",
            data={
                "paymentMethod": "mobile_money",
                "amountMinor": body["amount"],
                "currency": request.currency,
                "palmpayOrderNo": order_no,
                "palmpayOrderStatus": data.get("orderStatus"),
            },
        )

    def check_payment_status(
        self,
        transaction_id: str,
        *,
        order_id: Optional[str] = None,
        currency: Optional[str] = None,
    ) -> PaymentStatusResult:
        body: dict[str, Any] = {
            "requestTime": _now_ms(),
            "version": "V1.1",
            "nonceStr": _nonce(),
            "orderNo": transaction_id,
        }
        if order_id:
            body["orderId"] = order_id

        try:
            resp = self._post(QUERY_STATUS_PATH, body, currency=currency)
        except GatewayTransportError as exc:
            logger.warning("palmpay status inconclusive order_no=%s error=%s", transaction_id, exc)
            return PaymentStatusResult(
                success=False, transaction_id=transaction_id, message=str(exc), inconclusive=True
            )

        resp_code, resp_msg, data = self._unwrap(resp)

        if resp.status_code == 404 or "not exist" in (resp_msg or "").lower():
            return PaymentStatusResult(
                success=False,
                transaction_id=transaction_id,
                message=resp_msg or "Order not found",
                not_found=True,
            )

        if not resp.ok or (resp_code and resp_code not in SUCCESS_CODES):
            return PaymentStatusResult(
                success=False,
                transaction_id=transaction_id,
                message=resp_msg or f"Palmpay API error: {resp_code or resp.status_code}",
                errors=(resp_code or str(resp.status_code),),
                inconclusive=resp.status_code >= 500,
            )

        if not data:
            return PaymentStatusResult(
                success=False,
                transaction_id=transaction_id,
                message="Empty data in Palmpay API response",
                inconclusive=True,
            )

        amount = from_minor_units(data["amount"]) if data.get("amount") is not None else None
        return PaymentStatusResult(
            success=True,
            status=self.map_palmpay_status(data.get("orderStatus")),  # type: ignore[arg-type]
            transaction_id=str(data.get("orderNo") or transaction_id),
            amount=amount,
            currency=data.get("currency") or currency,
            message=data.get("remark") or resp_msg or "Payment status retrieved successfully",
            data={
                "orderId": data.get("orderId"),
                "orderNo": data.get("orderNo"),
                "orderStatus": data.get("orderStatus"),
                "completedTime": data.get("completedTime"),
                "respCode": resp_code,
            },
        )

    # -------- payouts --------

    def initiate_payout(self, request: PayoutRequest) -> PayoutResponse:
        recipient = request.recipient
        body: dict[str, Any] = {
            "requestTime": _now_ms(),
            "version": "V1.1",
            "nonceStr": _nonce(),
            "orderId": request.order_id,
            "description": request.description,
            "payeeName": recipient.account_name or "unknown",
            "payeeBankAccNo": "".join(ch for ch in (recipient.account_number or "") if ch.isdigit()),
            "amount": to_minor_units(request.amount),
            "currency": request.currency,
            "notifyUrl": request.notify_url,
            "remark": request.description,
        }
        if recipient.bank_code:
            body["payeeBankCode"] = recipient.bank_code
        if recipient.phone_number:
            body["payeePhoneNo"] = recipient.phone_number

        resp = self._post(PAYOUT_PATH, body, currency=request.currency)
        resp_code, resp_msg, data = self._unwrap(resp)

        logger.info(
            "palmpay payout http_status=%s resp_code=%s order_id=%s",
            resp.status_code,
            resp_code,
            request.order_id,
        )

        order_no = str(data.get("orderNo") or "").strip()
        if not resp.ok or (resp_code and resp_code not in SUCCESS_CODES) or not order_no:
            return PayoutResponse(
                success=False,
                message=resp_msg or data.get("errorMsg") or f"Palmpay payout failed: {resp_code or resp.status_code}",
                data={"http_status": resp.status_code, "body": resp.json},
            )

        return PayoutResponse(
            success=True,
            order_no=order_no,
            status=self.map_palmpay_status(data.get("orderStatus", 0)),  # type: ignore[arg-type]
            message=data.get("message") or resp_msg,
            data=data,
        )

    # -------- webhooks --------

    def parse_webhook(self, request: WebhookRequest) -> WebhookEvent:
        payload = request.body
        if not isinstance(payload, dict) or not payload:
            raise WebhookValidationError("Invalid webhook payload: empty body", code="EMPTY_BODY")
        for field_name in ("orderId", "orderNo"):
            if not payload.get(field_name):
                raise WebhookValidationError(
                    f"Invalid webhook payload: missing {field_name}", code=f"MISSING_{field_name.upper()}"
                )
        if payload.get("orderStatus") is None:
            raise WebhookValidationError(
                "Invalid webhook payload: missing orderStatus", code="MISSING_ORDERSTATUS"
            )

        completed_at = None
        if payload.get("completeTime"):
            try:
                completed_at = datetime.fromtimestamp(int(payload["completeTime"]) / 1000, tz=timezone.utc)
            except (TypeError, ValueError, OverflowError) as exc:
                raise WebhookValidationError(
                    f"Invalid webhook payload: bad completeTime {payload['completeTime']!r}",
                    code="INVALID_COMPLETE_TIME",
                ) from exc

        amount = None
        if payload.get("amount") is not None:
            try:
                amount = from_minor_units(payload["amount"])
            except (ArithmeticError, ValueError) as exc:
                raise WebhookValidationError(
                    f"Invalid webhook payload: bad amount {payload['amount']!r}", code="INVALID_AMOUNT"
                ) from exc

        order_status = _order_status(payload["orderStatus"])
        return WebhookEvent(
            reference=str(payload["orderId"]),
            provider_transaction_id=str(payload["orderNo"]),
            provider_status_code=str(order_status),
            status=self.map_palmpay_status(order_status),  # type: ignore[arg-type]
            amount=amount,
            currency=(payload.get("currency") or None),
            completed_at=completed_at,
            app_id=payload.get("appId") or None,
            raw=dict(payload),
        )

    def verify_webhook_signature(self, request: WebhookRequest) -> SignatureCheck:
        payload = request.body if isinstance(request.body, dict) else {}
        sign = payload.get("sign")
        key_configured = bool(self.config.public_key)

        if not sign:
            return SignatureCheck(present=False, valid=False, key_configured=key_configured, error="MISSING_SIGNATURE")
        if not key_configured:
            return SignatureCheck(
                present=True, valid=False, key_configured=False, error="PUBLIC_KEY_NOT_CONFIGURED"
            )

        try:
            ok = verify_params(payload, str(sign), self.config.public_key)
        except ValueError as exc:
            # unreadable public key
            logger.error("palmpay public key could not be loaded: %s", exc)
            return SignatureCheck(present=True, valid=False, key_configured=True, error="PUBLIC_KEY_INVALID")

        return SignatureCheck(
            present=True,
            valid=ok,
            key_configured=True,
            error=None if ok else "INVALID_SIGNATURE",
        )

