# routes/webhooks.py
from __future__ import annotations

import json
import logging
from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from app.gateways.base import WebhookRequest
from app.pipeline import Pipeline
from deps.pipeline import get_pipeline

router = APIRouter(prefix="/v1/webhooks", tags=["webhooks"])
logger = logging.getLogger("tipsettle.webhooks")


def _decode_body(raw: bytes) -> Any:
    if not raw:
        return None
    try:
        return json.loads(raw)
    except (ValueError, UnicodeDecodeError):
        # the adapter rejects non-object bodies with EMPTY_BODY
        return None


async def _webhook_request(req: Request) -> WebhookRequest:
    raw = await req.body()
    return WebhookRequest(
        headers=dict(req.headers),
        body=_decode_body(raw),
        raw_body=raw,
        query=dict(req.query_params),
    )


@router.post("/palmpay/payout")
async def palmpay_payout_webhook(req: Request):
    """
    Payout status notifications. Acknowledged and logged; payout Payments are
    reconciled outside the purchase webhook path.
    """
    wr = await _webhook_request(req)
    body = wr.body if isinstance(wr.body, dict) else {}
    logger.info(
        "palmpay payout notification order_id=%s order_no=%s order_status=%s",
        body.get("orderId"),
        body.get("orderNo"),
        body.get("orderStatus"),
    )
    return {"success": True, "status": "acknowledged", "message": "Payout notification received"}


@router.post("/{gateway_id}")
async def gateway_webhook(gateway_id: str, req: Request, pipeline: Pipeline = Depends(get_pipeline)):
    wr = await _webhook_request(req)
    ack = await run_in_threadpool(pipeline.webhooks.handle_webhook, gateway_id, wr)
    return JSONResponse(status_code=ack.http_status, content=ack.as_dict())
