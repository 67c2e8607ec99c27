#!/usr/bin/env python3
"""bloomium.worker

Worker CLI: turn an AOI job file into bloom/anomaly tile pyramids.

Design goals:
- One entrypoint for the raster pipeline only
- Config-driven defaults via YAML (config/worker.yaml), env overrides on top
- Dry-run mode prints the plan without touching the network or storage

The AOI file is JSON:
  {"aoi_id": "...", "bbox": [minLon, minLat, maxLon, maxLat],
   "dates": ["YYYY-MM-DD", ...], "force": false}

Examples:
  # Process every date in the AOI file
  python -m bloomium.worker run --aoi fixtures/demo-aoi.json

  # Reprocess two specific dates
  python -m bloomium.worker run --aoi fixtures/demo-aoi.json --dates 2025-09-01,2025-09-08 --force

  # Show what would be searched and rendered
  python -m bloomium.worker run --aoi fixtures/demo-aoi.json --dry-run
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import List, Optional

from bloomium.config import DEFAULT_CONFIG_YAML, WorkerConfig, format_bbox, load_config
from bloomium.storage import LocalStorage
from bloomium.tiles.mercator import enumerate_tiles
from bloomium.worker.job import JobInput, JobOrchestrator, search_window


def setup_logging(level: str = "INFO") -> None:
    """Console logging for the CLI; library modules only create loggers."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )


def load_job(path: Path, dates: Optional[str], force: bool) -> JobInput:
    """Read the AOI JSON file and apply CLI overrides.

    Raises SystemExit on a missing, unparsable, or invalid file.
    """
    if not path.exists():
        raise SystemExit(f"AOI file not found: {path}")
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except ValueError as e:
        raise SystemExit(f"Failed to parse AOI file {path}: {e}") from e
    if not isinstance(raw, dict):
        raise SystemExit(f"Expected a JSON object in {path}")

    if dates:
        raw["dates"] = [d.strip() for d in dates.split(",") if d.strip()]
    if force:
        raw["force"] = True

    try:
        return JobInput.from_dict(raw)
    except ValueError as e:
        raise SystemExit(f"Invalid AOI file {path}: {e}") from e


def print_plan(job: JobInput, config: WorkerConfig) -> None:
    print(f"[dry-run] AOI {job.aoi_id} bbox={format_bbox(job.bbox)} force={job.force}")
    if job.name:
        print(f"  name:    {job.name}")
    print(f"  storage: {config.storage_path}")
    print(f"  stac:    {config.stac.endpoint} ({config.stac.collection})")
    for date in job.dates:
        start, end = search_window(date, config.processing.search_window_days)
        print(f"  - {date}: search {start}..{end}")
    total = 0
    for z in config.tiles.zoom_levels:
        n = len(enumerate_tiles(job.bbox, z))
        total += n
        print(f"  z={z}: {n} tiles per layer")
    print(f"  total: {total * 2 * len(job.dates)} tiles ({len(job.dates)} dates x 2 layers)")


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="bloomium.worker", description="Bloom tile worker")

    # Global args (available for all subcommands)
    ap.add_argument("--config", type=Path, default=None, help=f"Path to worker YAML (default: {DEFAULT_CONFIG_YAML} if present)")
    ap.add_argument("--storage", type=Path, default=None, help="Override the storage root directory")
    ap.add_argument("--log-level", default="INFO", help="Logging level (default: INFO)")

    sub = ap.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Process an AOI job file")
    run.add_argument("--aoi", type=Path, required=True, help="Path to AOI JSON file")
    run.add_argument("--dates", default=None, help="Comma-separated dates (YYYY-MM-DD), overrides the file")
    run.add_argument("--force", action="store_true", help="Reprocess dates that already have meta.json")
    run.add_argument("--dry-run", action="store_true", help="Print planned actions without searching/writing")

    return ap


def main(argv: Optional[List[str]] = None) -> int:
    ap = build_parser()
    args = ap.parse_args(argv)
    setup_logging(args.log_level)

    config = load_config(args.config)
    if args.storage is not None:
        config = replace(config, storage_path=args.storage)

    if args.command == "run":
        job = load_job(args.aoi, args.dates, args.force)
        if args.dry_run:
            print_plan(job, config)
            return 0

        orchestrator = JobOrchestrator(config, LocalStorage(config.storage_path))
        try:
            orchestrator.run(job)
        except Exception as e:
            logging.getLogger("bloomium.worker").exception("Job failed: %s", e)
            return 1
        return 0

    raise SystemExit(f"Unknown command: {args.command}")


if __name__ == "__main__":
    raise SystemExit(main())
