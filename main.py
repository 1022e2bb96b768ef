#main.py
import logging
from contextlib import asynccontextmanager

from apscheduler.schedulers.background import BackgroundScheduler
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.gateways.config import KNOWN_GATEWAYS, is_production, validate_gateway_startup
from app.pipeline import build_pipeline
from app.workers.scheduler import register_jobs
from db import close_pool
from middleware import RequestContextMiddleware
from routes.gateways import router as gateways_router
from routes.health import router as health_router
from routes.ops import router as ops_router
from routes.payments import router as payments_router
from routes.webhooks import router as webhooks_router
from services.observability import configure_logging
from settings import settings

logger = logging.getLogger("tipsettle")


def _active_gateways(pipeline) -> list[str]:
    active = []
    for gid in sorted(KNOWN_GATEWAYS):
        cfg = pipeline.registry.config_for(gid)
        if cfg is not None and cfg.enabled:
            active.append(gid)
    return active


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()

    pipeline = getattr(app.state, "pipeline", None)
    if pipeline is None:
        pipeline = build_pipeline()
        app.state.pipeline = pipeline

    if is_production():
        validate_gateway_startup(_active_gateways(pipeline))

    scheduler = None
    if settings.SCHEDULER_IN_API and settings.JOBS_ENABLED:
        scheduler = BackgroundScheduler(timezone="UTC")
        register_jobs(scheduler, pipeline)
        scheduler.start()
        logger.info("job scheduler started in api process")
    app.state.scheduler = scheduler

    try:
        yield
    finally:
        if scheduler is not None and scheduler.running:
            scheduler.shutdown(wait=False)
            logger.info("job scheduler stopped")
        close_pool()


app = FastAPI(title="TipSettle API", version="1.0.0", lifespan=lifespan)
app.add_middleware(RequestContextMiddleware)

# -----------------------------
# ROUTERS
# -----------------------------

app.include_router(health_router)
app.include_router(webhooks_router)
app.include_router(payments_router)
app.include_router(gateways_router)
app.include_router(ops_router)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("unhandled error path=%s", request.url.path)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )
