# scripts/jobs_daemon.py
from __future__ import annotations

import logging

from apscheduler.schedulers.blocking import BlockingScheduler

from app.pipeline import build_pipeline
from app.workers.scheduler import register_jobs
from settings import settings


logger = logging.getLogger("jobs_daemon")


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    if not settings.JOBS_ENABLED:
        logger.warning("JOBS_ENABLED is false; nothing to schedule")
        return

    pipeline = build_pipeline()
    scheduler = BlockingScheduler(timezone="UTC")
    job_ids = register_jobs(scheduler, pipeline)
    if not job_ids:
        logger.warning("every job is disabled; exiting")
        return

    logger.info("Jobs daemon starting; jobs=%s", ",".join(job_ids))
    try:
        scheduler.start()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Jobs daemon exiting")


if __name__ == "__main__":
    main()
