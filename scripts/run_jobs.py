from __future__ import annotations

import argparse
import json
import logging

from app.pipeline import build_pipeline
from app.workers.jobs import JOBS, run_all


def main() -> None:
    parser = argparse.ArgumentParser(description="Run settlement pipeline jobs once.")
    parser.add_argument("--job", choices=sorted(JOBS) + ["all"], default="all")
    parser.add_argument(
        "--force",
        action="store_true",
        help="run even when JOBS_ENABLED or the job's own flag is false",
    )
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    pipeline = build_pipeline()

    if args.job == "all":
        result = run_all(pipeline, force=args.force)
    else:
        result = {args.job: JOBS[args.job](pipeline, force=args.force)}

    for name, summary in result.items():
        print(f"{name}:", json.dumps(summary, default=str, sort_keys=True))


if __name__ == "__main__":
    main()
