"""
Batch Runner — drives one slice of sites through the per-site routine.

Batches run one after another with a pause between them. Inside a batch the
sites run in order with a short pause (max_workers == 1) or on a bounded
thread pool (max_workers > 1). Every site yields exactly one SiteOutcome.
"""

import logging
import math
import time
from collections import Counter
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

from api.models.db_models import Site
from pipeline.sync.site_processor import ERROR, SiteOutcome

logger = logging.getLogger(__name__)

BatchCallback = Callable[[int, int, "RunTotals"], None]


@dataclass
class RunTotals:
    successful: int = 0
    failed: int = 0
    sensors_processed: int = 0
    records_created: int = 0
    outcomes: Counter = field(default_factory=Counter)
    failure_reasons: Counter = field(default_factory=Counter)
    failure_messages: Dict[str, List[str]] = field(default_factory=dict)
    results: List[SiteOutcome] = field(default_factory=list)

    def record(self, outcome: SiteOutcome) -> None:
        self.results.append(outcome)
        self.outcomes[outcome.status] += 1
        if outcome.succeeded:
            self.successful += 1
            self.sensors_processed += outcome.sensors_processed
            self.records_created += outcome.records_created
            return
        self.failed += 1
        self.failure_reasons[outcome.status] += 1
        if outcome.error:
            self.failure_messages.setdefault(outcome.status, []).append(
                f"{outcome.label()}: {outcome.error}"
            )


class BatchRunner:
    """
    Args:
        process_site: Callable(site) -> SiteOutcome.
        batch_size: Sites per batch.
        site_delay: Seconds between sites of a sequential batch.
        batch_delay: Seconds between batches.
        max_workers: 1 for sequential, >1 for a bounded thread pool.
        on_batch_complete: Called as (batch_number, total_batches, totals)
            after each batch.
        sleep: Injectable for tests.
    """

    def __init__(
        self,
        process_site: Callable[[Site], SiteOutcome],
        batch_size: int = 3,
        site_delay: float = 1.0,
        batch_delay: float = 8.0,
        max_workers: int = 1,
        on_batch_complete: Optional[BatchCallback] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.process_site = process_site
        self.batch_size = batch_size
        self.site_delay = site_delay
        self.batch_delay = batch_delay
        self.max_workers = max(1, max_workers)
        self.on_batch_complete = on_batch_complete
        self.sleep = sleep

    def _safe_process(self, site: Site) -> SiteOutcome:
        try:
            return self.process_site(site)
        except Exception as exc:
            logger.exception("Site %s failed", site.name or site.id)
            return SiteOutcome(site.id, site.name, ERROR, error=str(exc))

    def _run_sequential(self, batch: Sequence[Site]) -> List[SiteOutcome]:
        outcomes = []
        for index, site in enumerate(batch):
            if index > 0 and self.site_delay > 0:
                self.sleep(self.site_delay)
            outcomes.append(self._safe_process(site))
        return outcomes

    def _run_parallel(self, batch: Sequence[Site]) -> List[SiteOutcome]:
        outcomes: List[Optional[SiteOutcome]] = [None] * len(batch)
        workers = min(self.max_workers, len(batch))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = {
                pool.submit(self._safe_process, site): index
                for index, site in enumerate(batch)
            }
            for fut in as_completed(futures):
                index = futures[fut]
                try:
                    outcomes[index] = fut.result()
                except Exception as exc:
                    site = batch[index]
                    logger.error("batch_site_failed site=%s err=%s", site.id, exc)
                    outcomes[index] = SiteOutcome(site.id, site.name, ERROR, error=str(exc))
        return outcomes

    def run(self, sites: Sequence[Site]) -> RunTotals:
        sites = list(sites)
        totals = RunTotals()
        total_batches = math.ceil(len(sites) / self.batch_size) if sites else 0

        for batch_index in range(total_batches):
            start = batch_index * self.batch_size
            batch = sites[start:start + self.batch_size]
            batch_number = batch_index + 1
            logger.info(
                "Processing batch %d/%d (%d sites)", batch_number, total_batches, len(batch)
            )

            t0 = time.monotonic()
            if self.max_workers > 1:
                outcomes = self._run_parallel(batch)
            else:
                outcomes = self._run_sequential(batch)
            for outcome in outcomes:
                totals.record(outcome)

            logger.info(
                "batch_done n=%d/%d ms=%.1f ok=%d fail=%d",
                batch_number, total_batches, (time.monotonic() - t0) * 1000,
                sum(1 for o in outcomes if o.succeeded),
                sum(1 for o in outcomes if not o.succeeded),
            )

            if self.on_batch_complete is not None:
                self.on_batch_complete(batch_number, total_batches, totals)

            if batch_number < total_batches and self.batch_delay > 0:
                logger.info("Waiting %.1f seconds before next batch", self.batch_delay)
                self.sleep(self.batch_delay)

        return totals
