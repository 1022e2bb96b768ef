# app/workers/scheduler.py
from __future__ import annotations

import logging
from typing import Any, Callable

from apscheduler.schedulers.base import BaseScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from app.pipeline import Pipeline
from app.workers import jobs
from settings import settings

logger = logging.getLogger("tipsettle.jobs")


def _guarded(name: str, job: Callable[..., dict[str, Any]], pipeline: Pipeline) -> Callable[[], None]:
    def run() -> None:
        try:
            summary = job(pipeline)
        except Exception:
            logger.exception("scheduled job failed job=%s", name)
            return
        logger.info("scheduled job finished job=%s summary=%s", name, summary)

    return run


def register_jobs(scheduler: BaseScheduler, pipeline: Pipeline) -> list[str]:
    """
    Add every timed job to the scheduler. Returns the job ids.

    A job never overlaps itself (max_instances=1) and missed runs collapse into one.
    """
    schedule = [
        (
            jobs.JOB_PAYMENT_STATUS,
            "Payment status check",
            IntervalTrigger(hours=settings.PAYMENT_STATUS_CHECK_INTERVAL_HOURS),
            jobs.run_payment_status,
        ),
        (
            jobs.JOB_PAYMENT_CLEANUP,
            "Payment cleanup (daily 02:00)",
            CronTrigger(hour=2, minute=0),
            jobs.run_payment_cleanup,
        ),
        (
            jobs.JOB_SELECTION_EVALUATION,
            "Tip selection evaluation",
            IntervalTrigger(minutes=settings.TIP_EVALUATION_INTERVAL_MINUTES),
            jobs.run_selection_evaluation,
        ),
        (
            jobs.JOB_TIP_OUTCOME,
            "Tip outcome determination",
            IntervalTrigger(minutes=settings.TIP_EVALUATION_INTERVAL_MINUTES),
            jobs.run_tip_outcome,
        ),
        (
            jobs.JOB_ESCROW_SETTLEMENT,
            "Escrow settlement",
            IntervalTrigger(minutes=settings.ESCROW_SETTLEMENT_INTERVAL_MINUTES),
            jobs.run_escrow_settlement,
        ),
        (
            jobs.JOB_GATEWAY_REFRESH,
            "Gateway config refresh",
            IntervalTrigger(minutes=settings.GATEWAY_REFRESH_INTERVAL_MINUTES),
            jobs.run_gateway_refresh,
        ),
    ]

    ids = []
    for job_id, name, trigger, body in schedule:
        if jobs.disabled_reason(job_id):
            logger.info("job not scheduled job=%s reason=%s", job_id, jobs.disabled_reason(job_id))
            continue
        scheduler.add_job(
            _guarded(job_id, body, pipeline),
            trigger=trigger,
            id=job_id,
            name=name,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        ids.append(job_id)

    logger.info("jobs scheduled %s", ",".join(ids) or "<none>")
    return ids
