# deps/pipeline.py
from __future__ import annotations

import hmac

from fastapi import Depends, Header, HTTPException, Request, status

from app.gateways.registry import GatewayRegistry
from app.pipeline import Pipeline
from settings import settings


def get_pipeline(request: Request) -> Pipeline:
    pipeline = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="PIPELINE_NOT_READY")
    return pipeline


def get_registry(pipeline: Pipeline = Depends(get_pipeline)) -> GatewayRegistry:
    return pipeline.registry


def require_ops_key(x_ops_key: str | None = Header(default=None, alias="X-Ops-Key")) -> None:
    expected = (settings.OPS_API_KEY or "").strip()
    if not expected:
        return
    if not x_ops_key or not hmac.compare_digest(x_ops_key.strip(), expected):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="OPS_KEY_REQUIRED")
