"""
AirSync — Pipeline Main Entry Point

Modes:
  python -m pipeline.main                   APScheduler loop, one sync per
                                            POLL_INTERVAL_SECONDS (first run
                                            immediately)
  python -m pipeline.main --once            a single partitioned sync, then exit
  python -m pipeline.main --populate-sites  mirror the upstream location
                                            catalogue into sites/sensors

Each scheduled run covers one partition (MAX_STATIONS_PER_RUN sites) and
resumes where the previous run's checkpoint left off.
"""

import argparse
import json
import logging
import signal
import sys
import time
from datetime import datetime, timezone

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [PIPELINE] %(levelname)s %(name)s — %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%S",
    stream=sys.stdout,
)
logger = logging.getLogger("pipeline.main")

# ── Graceful shutdown flag ─────────────────────────────────────────────────────
_running = True


def _shutdown(sig, frame):
    global _running
    logger.info("Shutdown signal (%s) — stopping scheduler.", sig)
    _running = False


def _build_client(config):
    from pipeline.ingestion.openaq_client import OpenAQClient

    return OpenAQClient.from_config(config)


def _sync_job(config, session_factory) -> None:
    """APScheduler calls this every POLL_INTERVAL seconds."""
    from pipeline.sync.job import run_sync

    logger.info("── Sync cycle starting ──")
    try:
        with _build_client(config) as client:
            summary = run_sync(config, session_factory, client)
    except Exception as exc:
        # The scheduler keeps running; the next cycle resumes from the checkpoint.
        logger.exception("Sync cycle failed: %s", exc)
        return
    logger.info("── Sync cycle complete — %s ──", json.dumps(summary.to_dict()["paging"]))


def run_once(config, session_factory) -> dict:
    from pipeline.sync.job import run_sync

    with _build_client(config) as client:
        summary = run_sync(config, session_factory, client)
    return summary.to_dict()


def populate_sites(config, session_factory) -> dict:
    from pipeline.ingestion.site_sync import sync_sites

    with _build_client(config) as client:
        result = sync_sites(session_factory, client, country=config.country)
    return result.as_dict()


def run_scheduler(config, session_factory) -> None:
    from apscheduler.schedulers.background import BackgroundScheduler

    signal.signal(signal.SIGINT,  _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    scheduler = BackgroundScheduler()
    scheduler.add_job(
        func=_sync_job,
        args=[config, session_factory],
        trigger="interval",
        seconds=config.poll_interval,
        next_run_time=datetime.now(timezone.utc),  # run immediately on start
        id="hourly_sync",
        name="Hourly Sync",
        max_instances=1,
        coalesce=True,
    )
    scheduler.start()
    logger.info("Scheduler started — syncing every %ds", config.poll_interval)

    logger.info("AirSync pipeline running. Press Ctrl+C or send SIGTERM to stop.")
    try:
        while _running:
            time.sleep(1)
    finally:
        logger.info("Stopping scheduler…")
        scheduler.shutdown(wait=False)


def main(argv=None) -> int:
    from sqlalchemy import create_engine
    from pipeline.config import load_config
    from pipeline.errors import ConfigurationError
    from pipeline.sync.job import make_session_factory

    parser = argparse.ArgumentParser(prog="pipeline.main", description="Hourly air-quality sync")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--once", action="store_true", help="run a single sync and exit")
    mode.add_argument(
        "--populate-sites", action="store_true",
        help="sync the site population from the upstream catalogue and exit",
    )
    args = parser.parse_args(argv)

    try:
        config = load_config()
    except ConfigurationError as exc:
        logger.error("Configuration error: %s", exc)
        return 1

    sql_engine = create_engine(config.database_url, pool_pre_ping=True, pool_recycle=300)
    session_factory = make_session_factory(sql_engine)
    try:
        if args.populate_sites:
            print(json.dumps(populate_sites(config, session_factory), indent=2))
        elif args.once:
            print(json.dumps(run_once(config, session_factory), indent=2))
        else:
            run_scheduler(config, session_factory)
    finally:
        sql_engine.dispose()
        logger.info("Pipeline stopped cleanly.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
