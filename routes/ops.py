# routes/ops.py
from __future__ import annotations

from fastapi import APIRouter, Depends

from app.pipeline import Pipeline
from app.workers.jobs import collect_stats, refresh_gateways
from deps.pipeline import get_pipeline, require_ops_key

router = APIRouter(prefix="/v1/ops", tags=["ops"], dependencies=[Depends(require_ops_key)])


@router.get("/stats")
def pipeline_stats(pipeline: Pipeline = Depends(get_pipeline)):
    return collect_stats(pipeline)


@router.post("/gateways/refresh")
def reload_gateway_configs(pipeline: Pipeline = Depends(get_pipeline)):
    # picks up status / method changes made in the gateway config table without a restart
    return refresh_gateways(pipeline)
