#!/usr/bin/env python3
"""Remove expired BLAST/Foldseek job directories; meant for cron or a systemd timer."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

from ecodsearch.config import load_config
from ecodsearch.reaper import cleanup_old_jobs


def _build_argparser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Delete job directories older than the retention horizon.")
    p.add_argument("--job-root", default=None, help="Job root directory (default: paths.job_root from config)")
    p.add_argument(
        "--max-age-days",
        type=float,
        default=None,
        help="Retention horizon in days (default: retention.max_age_days from config)",
    )
    p.add_argument("--json", action="store_true", help="Print the sweep result as JSON")
    return p


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _build_argparser().parse_args(argv)
    cfg = load_config()
    logging.basicConfig(level=cfg.log_level, format="%(message)s")

    root = Path(args.job_root).expanduser() if args.job_root else cfg.paths.job_root
    max_age = args.max_age_days if args.max_age_days is not None else cfg.retention.max_age_days
    result = cleanup_old_jobs(root, max_age)

    if args.json:
        print(json.dumps({
            "jobs_scanned": result.scanned,
            "jobs_removed": len(result.removed),
            "removed": result.removed,
            "errors": result.errors,
        }, indent=2))
    else:
        print(f"[reaper] scanned={result.scanned} removed={len(result.removed)} errors={len(result.errors)}")
        for err in result.errors:
            print(f"[warn] {err}")
    return 1 if result.errors and not result.scanned else 0


if __name__ == "__main__":
    sys.exit(main())
