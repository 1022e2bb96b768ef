# routes/payments.py
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from app.gateways.base import GatewayConfigError, PaymentRequest
from app.gateways.registry import GatewayNotFound, GatewayRegistry, UnsupportedPaymentOption
from deps.pipeline import get_registry
from schemas import PaymentInitiateRequest, PaymentInitiateResponse, PaymentStatusResponse

router = APIRouter(prefix="/v1/payments", tags=["payments"])
logger = logging.getLogger("tipsettle.gateways")


def map_gateway_error(e: Exception) -> HTTPException:
    if isinstance(e, GatewayNotFound):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, UnsupportedPaymentOption):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, GatewayConfigError):
        return HTTPException(status_code=503, detail="GATEWAY_NOT_CONFIGURED")
    return HTTPException(status_code=500, detail="INTERNAL_ERROR")


@router.post("/{gateway_id}/initiate", response_model=PaymentInitiateResponse)
def initiate_payment(
    gateway_id: str,
    body: PaymentInitiateRequest,
    registry: GatewayRegistry = Depends(get_registry),
):
    request = PaymentRequest(
        payment_id=body.payment_id,
        amount=body.amount,
        currency=body.currency.upper(),
        order_number=body.order_number,
        payment_reference=body.payment_reference,
        payment_method=body.payment_method,
        additional_data=dict(body.additional_data),
    )
    try:
        resp = registry.initiate_payment(gateway_id, request)
        mode = registry.handling_mode(gateway_id, body.payment_method)
    except (GatewayNotFound, UnsupportedPaymentOption, GatewayConfigError) as e:
        raise map_gateway_error(e)

    return PaymentInitiateResponse(
        success=resp.success,
        transaction_id=resp.transaction_id,
        reference=resp.reference,
        status=resp.status,
        checkout_url=resp.checkout_url,
        provider_reference=resp.provider_reference,
        handling_mode=mode,
        message=resp.message,
        errors=list(resp.errors),
    )


@router.get("/{gateway_id}/status/{transaction_id}", response_model=PaymentStatusResponse)
def payment_status(
    gateway_id: str,
    transaction_id: str,
    order_id: str | None = Query(default=None),
    currency: str | None = Query(default=None),
    registry: GatewayRegistry = Depends(get_registry),
):
    try:
        result = registry.check_payment_status(gateway_id, transaction_id, order_id=order_id, currency=currency)
    except (GatewayNotFound, GatewayConfigError) as e:
        raise map_gateway_error(e)

    return PaymentStatusResponse(
        success=result.success,
        status=result.status,
        transaction_id=result.transaction_id,
        amount=result.amount,
        currency=result.currency,
        not_found=result.not_found,
        inconclusive=result.inconclusive,
        message=result.message,
        errors=list(result.errors),
    )
