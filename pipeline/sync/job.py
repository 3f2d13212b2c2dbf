"""
Hourly sync job — one invocation over one partition of the site population.

Flow:
    load sites -> read checkpoint -> plan slice -> (match ids) ->
    batch runner (fetch + idempotent write per site) -> checkpoint per batch

Everything the run needs (config, session factory, upstream client) is passed
in; there is no module-level job state.
"""

import logging
import random
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session, sessionmaker

from api.models.db_models import Site
from pipeline.config import SyncConfig
from pipeline.ingestion.openaq_client import OpenAQClient
from pipeline.ingestion.site_matcher import check_external_ids, match_sites, repair_site_ids
from pipeline.sync.batch_runner import BatchRunner, RunTotals
from pipeline.sync.checkpoint import CheckpointStore
from pipeline.sync.partition import PartitionPlan, plan_partition, resolve_offset
from pipeline.sync.site_processor import OUTCOMES, SiteProcessor
from pipeline.sync.writer import align_to_hour

logger = logging.getLogger(__name__)

UNMATCHED_REASON = "no upstream location matches this site's id or name"


def make_session_factory(engine) -> sessionmaker:
    """Sessions for the pipeline; objects stay readable after commit/close."""
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@dataclass
class SyncSummary:
    job_id: str
    plan: PartitionPlan
    totals: RunTotals
    aligned_hour: datetime
    execution_seconds: float = 0.0
    ids_repaired: int = 0
    unmatched: int = 0
    api_key_fingerprint: str = ""
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        outcome_counts = {name: self.totals.outcomes.get(name, 0) for name in OUTCOMES}
        return {
            "job_id": self.job_id,
            "hour": self.aligned_hour.isoformat(),
            "execution_time": f"{self.execution_seconds:.2f} seconds",
            "api_key": self.api_key_fingerprint,
            "total": self.plan.size,
            "successful": self.totals.successful,
            "failed": self.totals.failed,
            "outcomes": outcome_counts,
            "failure_reasons": dict(self.totals.failure_reasons),
            "failure_messages": {k: list(v) for k, v in self.totals.failure_messages.items()},
            "sensors_processed": self.totals.sensors_processed,
            "records_created": self.totals.records_created,
            "ids_repaired": self.ids_repaired,
            "unmatched_sites": self.unmatched,
            "paging": self.plan.as_dict(),
            **self.extra,
        }


def load_sites(
    session_factory: Callable[[], Session],
    bounds: Optional[Tuple[float, float, float, float]] = None,
) -> List[Site]:
    """
    All sites in a stable order, optionally restricted to a lat/lng box.

    The order (created_at, id) must not change between invocations or the
    offsets stored in the checkpoint would point at different sites.
    """
    with session_factory() as db:
        query = db.query(Site)
        if bounds is not None:
            min_lat, max_lat, min_lng, max_lng = bounds
            query = query.filter(
                Site.latitude >= min_lat,
                Site.latitude <= max_lat,
                Site.longitude >= min_lng,
                Site.longitude <= max_lng,
            )
        return query.order_by(Site.created_at, Site.id).all()


def _match_slice(
    config: SyncConfig,
    session_factory: Callable[[], Session],
    client: OpenAQClient,
    sites: List[Site],
) -> Tuple[int, Dict[str, str]]:
    """Repair drifted ids in the slice. Returns (repaired, skip_reasons)."""
    check_external_ids(sites)
    catalogue = client.fetch_locations(country=config.country)
    if not catalogue:
        logger.warning("Upstream catalogue is empty; using stored site ids as-is")
        return 0, {}

    result = match_sites(sites, catalogue)
    with session_factory() as db:
        repaired = repair_site_ids(db, result.matched)
    return repaired, {site.id: UNMATCHED_REASON for site in result.unmatched}


def run_sync(
    config: SyncConfig,
    session_factory: Callable[[], Session],
    client: OpenAQClient,
    sleep: Callable[[float], None] = time.sleep,
    now: Optional[datetime] = None,
    rng: Optional[random.Random] = None,
) -> SyncSummary:
    """
    Run one partitioned sync invocation.

    Raises:
        SQLAlchemyError: the site population or the checkpoint could not be
            read or written. Per-site failures never propagate.
    """
    started = time.monotonic()
    now = now or datetime.now(timezone.utc)
    aligned_hour = align_to_hour(now)
    store = CheckpointStore(session_factory)

    logger.info(
        "Starting sync job=%s hour=%s api_key=%s",
        config.job_id, aligned_hour.isoformat(), config.masked_api_key(),
    )

    sites = load_sites(session_factory, config.bounds)
    logger.info("Found %d sites%s", len(sites), " inside bounds" if config.bounds else "")

    previous = store.read(config.job_id)
    offset = resolve_offset(config.offset, previous)
    plan = plan_partition(len(sites), offset, config.max_sites_per_run)
    batch_slice = sites[plan.start:plan.end]
    total_batches = plan.total_batches(config.batch_size)

    logger.info(
        "Processing sites %d to %d of %d (offset source: %s)",
        plan.start + 1 if plan.size else plan.start, plan.end, plan.total_sites,
        "config" if config.offset is not None else ("checkpoint" if previous else "default"),
    )

    repaired, skip_reasons = 0, {}
    if config.match_sites and batch_slice:
        repaired, skip_reasons = _match_slice(config, session_factory, client, batch_slice)

    summary = SyncSummary(
        job_id=config.job_id,
        plan=plan,
        totals=RunTotals(),
        aligned_hour=aligned_hour,
        ids_repaired=repaired,
        unmatched=len(skip_reasons),
        api_key_fingerprint=config.masked_api_key(),
    )

    def save_checkpoint(batches_completed: int, totals: RunTotals) -> None:
        summary.totals = totals
        summary.execution_seconds = time.monotonic() - started
        store.upsert(
            config.job_id,
            last_run_time=now,
            last_offset=plan.start,
            next_offset=plan.next_offset,
            total_sites=plan.total_sites,
            batches_completed=batches_completed,
            total_batches=total_batches,
            is_fully_complete=plan.is_complete and batches_completed >= total_batches,
            stats=summary.to_dict(),
        )

    if not batch_slice:
        logger.warning(
            "Offset %d is past the end of %d sites; resetting checkpoint to 0",
            plan.start, plan.total_sites,
        )
        save_checkpoint(0, summary.totals)
        return summary

    processor = SiteProcessor(
        client, session_factory, aligned_hour, skip_reasons=skip_reasons, rng=rng,
    )
    runner = BatchRunner(
        processor,
        batch_size=config.batch_size,
        site_delay=config.site_delay,
        batch_delay=config.batch_delay,
        max_workers=config.max_workers,
        on_batch_complete=lambda number, _total, totals: save_checkpoint(number, totals),
        sleep=sleep,
    )
    summary.totals = runner.run(batch_slice)
    summary.execution_seconds = time.monotonic() - started

    logger.info(
        "Sync complete: success=%d failed=%d sensors=%d new records=%d in %.2fs",
        summary.totals.successful, summary.totals.failed,
        summary.totals.sensors_processed, summary.totals.records_created,
        summary.execution_seconds,
    )
    if summary.totals.failed:
        logger.info("Failure reasons: %s", dict(summary.totals.failure_reasons))
    if plan.remaining:
        logger.info("%d sites remain; next run starts at offset %d", plan.remaining, plan.next_offset)
    else:
        logger.info("All sites processed; next run starts from the beginning")
    return summary
