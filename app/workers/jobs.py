# app/workers/jobs.py
from __future__ import annotations

import logging
import time
from typing import Any, Callable

from app.pipeline import Pipeline
from settings import settings

logger = logging.getLogger("tipsettle.jobs")

JOB_PAYMENT_STATUS = "payment-status"
JOB_PAYMENT_CLEANUP = "payment-cleanup"
JOB_SELECTION_EVALUATION = "selection-evaluation"
JOB_TIP_OUTCOME = "tip-outcome"
JOB_ESCROW_SETTLEMENT = "escrow-settlement"
JOB_GATEWAY_REFRESH = "gateway-refresh"


def _job_flag(name: str) -> tuple[bool, str]:
    flags = {
        JOB_PAYMENT_STATUS: ("PAYMENT_STATUS_CHECK_ENABLED", settings.PAYMENT_STATUS_CHECK_ENABLED),
        JOB_PAYMENT_CLEANUP: ("PAYMENT_STATUS_CLEANUP_ENABLED", settings.PAYMENT_STATUS_CLEANUP_ENABLED),
        JOB_SELECTION_EVALUATION: ("TIP_SELECTION_EVALUATION_ENABLED", settings.TIP_SELECTION_EVALUATION_ENABLED),
        JOB_TIP_OUTCOME: ("TIP_OUTCOME_DETERMINATION_ENABLED", settings.TIP_OUTCOME_DETERMINATION_ENABLED),
        JOB_ESCROW_SETTLEMENT: ("ESCROW_SETTLEMENT_ENABLED", settings.ESCROW_SETTLEMENT_ENABLED),
        JOB_GATEWAY_REFRESH: ("GATEWAY_REFRESH_ENABLED", settings.GATEWAY_REFRESH_ENABLED),
    }
    flag, enabled = flags[name]
    return bool(enabled), flag


def disabled_reason(name: str) -> str | None:
    if not settings.JOBS_ENABLED:
        return "JOBS_ENABLED is false"
    enabled, flag = _job_flag(name)
    if not enabled:
        return f"{flag} is false"
    return None


def _run(name: str, body: Callable[[], dict[str, Any]], *, force: bool) -> dict[str, Any]:
    reason = None if force else disabled_reason(name)
    if reason:
        logger.debug("job skipped job=%s reason=%s", name, reason)
        return {"skipped": True, "reason": reason}

    started = time.monotonic()
    logger.info("job start job=%s", name)
    summary = body()
    logger.info("job done job=%s duration_ms=%s", name, int((time.monotonic() - started) * 1000))
    return summary


def refresh_gateways(pipeline: Pipeline) -> dict[str, Any]:
    loaded = pipeline.registry.refresh_from_store(pipeline.store)
    return {"configs": loaded, "gateways": pipeline.registry.available_gateways()}


def run_gateway_refresh(pipeline: Pipeline, *, force: bool = False) -> dict[str, Any]:
    return _run(JOB_GATEWAY_REFRESH, lambda: refresh_gateways(pipeline), force=force)


def run_payment_status(pipeline: Pipeline, *, force: bool = False) -> dict[str, Any]:
    return _run(JOB_PAYMENT_STATUS, pipeline.reconciler.run_status_sweep, force=force)


def run_payment_cleanup(pipeline: Pipeline, *, force: bool = False) -> dict[str, Any]:
    return _run(JOB_PAYMENT_CLEANUP, pipeline.reconciler.run_cleanup, force=force)


def run_selection_evaluation(pipeline: Pipeline, *, force: bool = False) -> dict[str, Any]:
    return _run(JOB_SELECTION_EVALUATION, pipeline.selections.run, force=force)


def run_tip_outcome(pipeline: Pipeline, *, force: bool = False) -> dict[str, Any]:
    return _run(JOB_TIP_OUTCOME, pipeline.outcomes.run, force=force)


def run_escrow_settlement(pipeline: Pipeline, *, force: bool = False) -> dict[str, Any]:
    return _run(JOB_ESCROW_SETTLEMENT, pipeline.settlement.run, force=force)


JOBS: dict[str, Callable[..., dict[str, Any]]] = {
    JOB_GATEWAY_REFRESH: run_gateway_refresh,
    JOB_PAYMENT_STATUS: run_payment_status,
    JOB_PAYMENT_CLEANUP: run_payment_cleanup,
    JOB_SELECTION_EVALUATION: run_selection_evaluation,
    JOB_TIP_OUTCOME: run_tip_outcome,
    JOB_ESCROW_SETTLEMENT: run_escrow_settlement,
}


def run_all(pipeline: Pipeline, *, force: bool = False) -> dict[str, dict[str, Any]]:
    """
    Every job once, in pipeline order, so one run carries a purchase as far as it can go.
    """
    return {name: job(pipeline, force=force) for name, job in JOBS.items()}


def collect_stats(pipeline: Pipeline) -> dict[str, Any]:
    return {
        "payments": pipeline.reconciler.stats(),
        "selections": pipeline.selections.stats(),
        "tips": pipeline.outcomes.stats(),
        "escrows": pipeline.settlement.stats(),
    }
