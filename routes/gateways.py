# routes/gateways.py
from __future__ import annotations

from fastapi import APIRouter, Depends

from app.gateways.registry import GatewayRegistry
from deps.pipeline import get_registry
from schemas import GatewayOut

router = APIRouter(prefix="/v1/gateways", tags=["gateways"])


@router.get("", response_model=list[GatewayOut])
def list_gateways(registry: GatewayRegistry = Depends(get_registry)):
    return registry.describe()
