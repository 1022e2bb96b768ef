from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from app.gateways.base import (
    GatewayConfigError,
    GatewayTransportError,
    PaymentRequest,
    PayoutRequest,
    WebhookRequest,
    WebhookValidationError,
)
from app.gateways.config import PalmPayConfig
from app.gateways.http import HttpResponse
from app.gateways.palmpay import PalmPayGateway, canonical_string, sign_params, verify_params
from app.payments.model import Contact


@pytest.fixture(scope="module")
def keypair():
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private_pem = key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ).decode("ascii")
    public_pem = key.public_key().public_bytes(
        serialization.Encoding.PEM,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("ascii")
    return private_pem, public_pem


class _FakeHttp:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def post(self, url, *, headers, json_body=None, debug=False):
        self.calls.append({"url": url, "headers": headers, "body": json_body})
        resp = self.responses.pop(0)
        if isinstance(resp, Exception):
            raise resp
        return resp


def _ok(data, status_code=200):
    return HttpResponse(status_code=status_code, json={"respCode": "00000000", "respMsg": "success", "data": data}, text="")


def _gateway(keypair, *responses, public=True, private=True):
    private_pem, public_pem = keypair
    config = PalmPayConfig(
        app_id="L240927",
        base_url="https://open-gw.palmpay.test",
        private_key=private_pem if private else "",
        public_key=public_pem if public else "",
        app_url="https://api.example.com",
        frontend_url="https://tips.example.com",
        timeout_s=5,
    )
    http = _FakeHttp(*responses)
    return PalmPayGateway(config, http=http), http


def _request(**kwargs):
    defaults = dict(
        payment_id="p-1",
        amount=Decimal("25.50"),
        currency="GHS",
        order_number="ORD-1",
        payment_reference="PAY-1",
        payment_method="mobile_money",
        additional_data={"purchaseId": "pur-1", "tipId": "tip-9", "phoneNumber": "0241234567"},
    )
    defaults.update(kwargs)
    return PaymentRequest(**defaults)


# ---------------------------
# Signing
# ---------------------------

def test_canonical_string_sorts_and_skips_sign():
    params = {"b": 2, "a": "x", "sign": "zzz", "c": ""}
    assert canonical_string(params) == "a=x&b=2&c="
    assert canonical_string(params, skip_empty=True) == "a=x&b=2"


def test_sign_then_verify(keypair):
    private_pem, public_pem = keypair
    params = {"orderId": "pur-1", "orderNo": "PP123", "orderStatus": 2, "amount": 2550}
    sig = sign_params(params, private_pem)

    assert verify_params(dict(params, sign=sig), sig, public_pem) is True
    assert verify_params(dict(params, amount=1), sig, public_pem) is False


def test_bare_base64_keys_are_accepted(keypair):
    private_pem, public_pem = keypair
    bare_private = "".join(private_pem.strip().splitlines()[1:-1])
    bare_public = "".join(public_pem.strip().splitlines()[1:-1])
    params = {"orderId": "x"}
    assert verify_params(params, sign_params(params, bare_private), bare_public) is True


# ---------------------------
# Collections
# ---------------------------

def test_initiate_sends_minor_units_and_returns_checkout_url(keypair):
    gw, http = _gateway(keypair, _ok({"orderNo": "PP123", "orderStatus": 1, "checkoutUrl": "https://pay.palmpay/x"}))

    resp = gw.initiate_payment(_request())

    assert resp.success is True
    assert resp.transaction_id == "PP123"
    assert resp.checkout_url == "https://pay.palmpay/x"
    assert resp.status == "pending"

    call = http.calls[0]
    assert call["url"].endswith("/api/v2/payment/merchant/createorder")
    assert call["body"]["amount"] == 2550
    assert call["body"]["orderId"] == "pur-1"
    assert call["body"]["notifyUrl"] == "https://api.example.com/v1/webhooks/palmpay"
    assert call["body"]["callBackUrl"] == "https://tips.example.com/tips/tip-9/purchase/success?purchaseId=pur-1"
    assert call["body"]["userMobileNo"] == "0241234567"
    assert call["headers"]["countryCode"] == "GH"
    assert call["headers"]["Authorization"] == "Bearer L240927"
    assert verify_params(call["body"], call["headers"]["Signature"], keypair[1]) is True


def test_initiate_rejects_non_mobile_money_without_http(keypair):
    gw, http = _gateway(keypair)
    resp = gw.initiate_payment(_request(payment_method="card"))
    assert resp.success is False
    assert "only supports mobile_money" in resp.message
    assert http.calls == []


def test_initiate_error_code_is_failure(keypair):
    body = {"respCode": "OPEN_GW_000008", "respMsg": "sign error", "data": {}}
    gw, _ = _gateway(keypair, HttpResponse(status_code=200, json=body, text=""))

    resp = gw.initiate_payment(_request())
    assert resp.success is False
    assert resp.message == "sign error"
    assert resp.errors == ("OPEN_GW_000008",)


def test_initiate_without_order_no_is_failure(keypair):
    gw, _ = _gateway(keypair, _ok({"orderStatus": 1}))
    assert gw.initiate_payment(_request()).success is False


def test_missing_config_raises(keypair):
    gw, _ = _gateway(keypair, private=False)
    assert gw.is_available() is False
    with pytest.raises(GatewayConfigError):
        gw.initiate_payment(_request())


# ---------------------------
# Status
# ---------------------------

@pytest.mark.parametrize(
    "order_status,expected",
    [(0, "pending"), (1, "pending"), (2, "completed"), (3, "failed"), (4, "cancelled"), (9, "pending")],
)
def test_status_mapping(keypair, order_status, expected):
    gw, _ = _gateway(keypair, _ok({"orderNo": "PP1", "orderStatus": order_status, "amount": 2550}))
    result = gw.check_payment_status("PP1", order_id="pur-1", currency="GHS")
    assert result.success is True
    assert result.status == expected
    assert result.amount == Decimal("25.50")


def test_status_not_found(keypair):
    body = {"respCode": "OPEN_GW_000012", "respMsg": "order not exist", "data": None}
    gw, _ = _gateway(keypair, HttpResponse(status_code=200, json=body, text=""))
    result = gw.check_payment_status("PP1")
    assert result.not_found is True
    assert result.success is False


def test_status_transport_error_is_inconclusive(keypair):
    gw, _ = _gateway(keypair, GatewayTransportError("timeout"))
    result = gw.check_payment_status("PP1")
    assert result.inconclusive is True


def test_status_empty_data_is_inconclusive(keypair):
    gw, _ = _gateway(keypair, _ok({}))
    assert gw.check_payment_status("PP1").inconclusive is True


# ---------------------------
# Payouts
# ---------------------------

def test_payout_sends_digits_only_account(keypair):
    gw, http = _gateway(keypair, _ok({"orderNo": "PO-77", "orderStatus": 1}))
    recipient = Contact(user_id="u-1", account_number="024-123 4567", account_name="Kwame", bank_code="MTN")

    resp = gw.initiate_payout(
        PayoutRequest(
            order_id="TIPSTER-PAYOUT-abcd1234",
            amount=Decimal("90.00"),
            currency="GHS",
            recipient=recipient,
            description="Tipster payout",
            notify_url="https://api.example.com/v1/webhooks/palmpay/payout",
        )
    )

    assert resp.success is True
    assert resp.order_no == "PO-77"
    body = http.calls[0]["body"]
    assert body["payeeBankAccNo"] == "0241234567"
    assert body["payeeBankCode"] == "MTN"
    assert body["amount"] == 9000
    assert gw.supports_payouts() is True


def test_payout_failure(keypair):
    gw, _ = _gateway(keypair, HttpResponse(status_code=500, json=None, text="boom"))
    recipient = Contact(user_id="u-1", account_number="1", account_name="K", bank_code="X")
    resp = gw.initiate_payout(
        PayoutRequest("o", Decimal("1.00"), "GHS", recipient, "d", "https://api.example.com/n")
    )
    assert resp.success is False
    assert resp.order_no is None


# ---------------------------
# Webhooks
# ---------------------------

def test_parse_webhook(keypair):
    gw, _ = _gateway(keypair)
    body = {
        "orderId": "pur-1",
        "orderNo": "PP123",
        "orderStatus": "2",
        "amount": 2550,
        "currency": "GHS",
        "completeTime": 1772366400000,
        "appId": "L240927",
    }
    event = gw.parse_webhook(WebhookRequest(headers={}, body=body))

    assert event.reference == "pur-1"
    assert event.provider_transaction_id == "PP123"
    assert event.status == "completed"
    assert event.provider_status_code == "2"
    assert event.amount == Decimal("25.50")
    assert event.completed_at == datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
    assert event.app_id == "L240927"


@pytest.mark.parametrize(
    "body",
    [
        {},
        {"orderNo": "PP1", "orderStatus": 2},
        {"orderId": "x", "orderStatus": 2},
        {"orderId": "x", "orderNo": "PP1"},
        {"orderId": "x", "orderNo": "PP1", "orderStatus": 2, "completeTime": "soon"},
    ],
)
def test_parse_webhook_rejects_bad_payloads(keypair, body):
    gw, _ = _gateway(keypair)
    with pytest.raises(WebhookValidationError):
        gw.parse_webhook(WebhookRequest(headers={}, body=body))


def test_webhook_signature_checks(keypair):
    private_pem, _ = keypair
    gw, _ = _gateway(keypair)
    body = {"orderId": "pur-1", "orderNo": "PP123", "orderStatus": 2, "amount": 2550}
    signed = dict(body, sign=sign_params(body, private_pem))

    assert gw.verify_webhook_signature(WebhookRequest(headers={}, body=signed)).valid is True

    tampered = dict(signed, amount=1)
    check = gw.verify_webhook_signature(WebhookRequest(headers={}, body=tampered))
    assert check.valid is False
    assert check.error == "INVALID_SIGNATURE"

    unsigned = gw.verify_webhook_signature(WebhookRequest(headers={}, body=body))
    assert unsigned.present is False
    assert unsigned.key_configured is True


def test_webhook_signature_without_public_key(keypair):
    gw, _ = _gateway(keypair, public=False)
    check = gw.verify_webhook_signature(WebhookRequest(headers={}, body={"sign": "abc"}))
    assert check.present is True
    assert check.key_configured is False
    assert check.error == "PUBLIC_KEY_NOT_CONFIGURED"
