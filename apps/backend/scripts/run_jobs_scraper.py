"""
Run the jobs scraper from the command line.

Usage:
    python scripts/run_jobs_scraper.py [--sources config/job_sources.yaml] [--lookback-days 10]
                                       [--dry-run] [--cancel-file /tmp/stop-scrape] [--verbose]
                                       [--trigger auto|manual] [--state-file jobs-scrape-state.json] [--ignore-lock]
"""

import os
import sys
import json
import asyncio
import logging
import argparse
from pathlib import Path

# Add backend to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv
import psycopg2

from crawler.models import JobsScraperRuntimeOptions, SourceLifecycleEvent
from crawler.orchestrator import run_jobs_scraper, scrape_jobs_from_sources
from crawler.run_state import RunStateStore, run_jobs_scrape_with_scheduling
from crawler.schedule import TRIGGERS
from crawler.source_registry import load_sources_file

logger = logging.getLogger(__name__)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Scrape Meghalaya job sources and save them")
    parser.add_argument("--sources", type=Path, default=None, help="YAML file with a top-level `sources:` list")
    parser.add_argument("--lookback-days", type=int, default=None, help="Override JOBS_SCRAPE_LOOKBACK_DAYS")
    parser.add_argument("--dry-run", action="store_true", help="Scrape only, do not write to the database")
    parser.add_argument("--cancel-file", type=Path, default=None, help="Stop after the current source once this file exists")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    parser.add_argument("--trigger", choices=TRIGGERS, default=None,
                        help="Run through the schedule (lock, due time, progress and history)")
    parser.add_argument("--state-file", type=Path, default=None, help="Override JOBS_SCRAPE_STATE_PATH")
    parser.add_argument("--ignore-lock", action="store_true", help="Let a manual run ignore an unexpired lock")
    return parser.parse_args(argv)


def build_options(args) -> JobsScraperRuntimeOptions:
    cancel_file = args.cancel_file

    def should_cancel() -> bool:
        return bool(cancel_file and cancel_file.exists())

    def on_source_start(event: SourceLifecycleEvent):
        print(f"[{event.source_index + 1}/{event.total_sources}] {event.source.name} ...")

    def on_source_complete(event: SourceLifecycleEvent):
        stats = event.stats
        status = f"error: {stats.error_message}" if stats.error_message else f"{stats.extracted} jobs"
        print(f"[{event.source_index + 1}/{event.total_sources}] {event.source.name}: {status}")

    return JobsScraperRuntimeOptions(
        lookback_days=args.lookback_days,
        should_cancel=should_cancel,
        on_source_start=on_source_start,
        on_source_complete=on_source_complete,
    )


async def main(argv=None) -> int:
    args = parse_args(argv)

    env_path = Path(__file__).resolve().parent.parent / '.env'
    if env_path.exists():
        load_dotenv(env_path)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    resolution = load_sources_file(args.sources)
    if resolution.used_fallback:
        print("No enabled sources configured, using default LinkedIn sources")
    options = build_options(args)

    if args.dry_run:
        result = await scrape_jobs_from_sources(resolution.scraper_sources, options)
        print(json.dumps(result.summary.to_dict(), indent=2))
        return 0

    if args.trigger:
        store = RunStateStore(str(args.state_file) if args.state_file else None)
        scheduled = await run_jobs_scrape_with_scheduling(
            resolution.scraper_sources,
            args.trigger,
            store=store,
            options=options,
            ignore_lock=args.ignore_lock,
        )
        if scheduled.skipped:
            next_due = scheduled.next_due_at.isoformat() if scheduled.next_due_at else "n/a"
            print(f"Skipped: {scheduled.skip_reason} (next due {next_due})")
            return 0
        if not scheduled.ok:
            print(f"Scrape failed: {scheduled.error_message}")
            return 1
        result = scheduled.run_result
        print(json.dumps(result.summary.to_dict(), indent=2))
        print(
            f"Saved: attempted={result.persisted.attempted} inserted={result.persisted.inserted} "
            f"updated={result.persisted.updated} skipped={result.persisted.skipped_duplicate}"
        )
        return 0

    try:
        result = await run_jobs_scraper(resolution.scraper_sources, options)
    except (psycopg2.Error, ValueError) as e:
        logger.error(f"Failed to persist jobs: {e}", exc_info=True)
        return 1

    print(json.dumps(result.summary.to_dict(), indent=2))
    print(
        f"Saved: attempted={result.persisted.attempted} inserted={result.persisted.inserted} "
        f"updated={result.persisted.updated} skipped={result.persisted.skipped_duplicate}"
    )
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
