"""
Per-site fetch-and-persist routine.

process_site() never raises. Every failure becomes a classified SiteOutcome
and the batch carries on with the next site.
"""

import logging
import random
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from api.models.db_models import Sensor, Site
from pipeline.errors import UpstreamError
from pipeline.ingestion.openaq_client import OpenAQClient
from pipeline.ingestion.site_matcher import is_valid_external_id
from pipeline.sync.writer import resolve_value, write_measurement

logger = logging.getLogger(__name__)

SUCCESS = "success"
NO_NEW_DATA = "no_new_data"
NO_DATA = "no_data"
NO_SENSORS = "no_sensors"
MISSING_ID = "missing_id"
ERROR = "error"

OUTCOMES = (SUCCESS, NO_NEW_DATA, NO_DATA, NO_SENSORS, MISSING_ID, ERROR)


@dataclass
class SiteOutcome:
    site_id: str
    site_name: Optional[str]
    status: str
    sensors_processed: int = 0
    records_created: int = 0
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        """success and no_new_data both count as a processed site."""
        return self.status in (SUCCESS, NO_NEW_DATA)

    def label(self) -> str:
        return self.site_name or self.site_id


def _sensor_key(sensor: Sensor) -> Optional[str]:
    return str(sensor.external_sensor_id) if sensor.external_sensor_id is not None else None


class SiteProcessor:
    """
    Callable used by the BatchRunner for each site of a slice.

    Args:
        client: Upstream client (shared; it is thread-safe).
        session_factory: Opens one session per site.
        aligned_hour: Hour bucket applied to every write of this run.
        skip_reasons: site id -> message for sites the matcher could not
            place; those are reported as missing_id without any fetch.
        rng: Random source for synthetic values.
    """

    def __init__(
        self,
        client: OpenAQClient,
        session_factory: Callable[[], Session],
        aligned_hour: datetime,
        skip_reasons: Optional[Dict[str, str]] = None,
        rng: Optional[random.Random] = None,
    ):
        self.client = client
        self.session_factory = session_factory
        self.aligned_hour = aligned_hour
        self.skip_reasons = skip_reasons or {}
        self.rng = rng or random.Random()

    def __call__(self, site: Site) -> SiteOutcome:
        return self.process(site)

    def process(self, site: Site) -> SiteOutcome:
        try:
            return self._process(site)
        except Exception as exc:
            logger.exception("Unexpected error processing site %s", site.name or site.id)
            return SiteOutcome(site.id, site.name, ERROR, error=str(exc))

    def _process(self, site: Site) -> SiteOutcome:
        label = site.name or site.id

        if site.id in self.skip_reasons:
            logger.warning("Site %s skipped: %s", label, self.skip_reasons[site.id])
            return SiteOutcome(site.id, site.name, MISSING_ID, error=self.skip_reasons[site.id])

        if not is_valid_external_id(site.external_id):
            if site.external_id in (None, ""):
                message = "site has no external id"
            else:
                message = f"malformed external id of type {type(site.external_id).__name__}"
            logger.error("Site %s: %s", label, message)
            return SiteOutcome(site.id, site.name, MISSING_ID, error=message)

        try:
            readings = self.client.get_latest_measurements(site.external_id)
        except UpstreamError as exc:
            logger.error("Site %s: upstream fetch failed: %s", label, exc)
            return SiteOutcome(site.id, site.name, ERROR, error=str(exc))

        if not readings:
            logger.warning("Site %s (%s) has no latest data", site.external_id, label)
            return SiteOutcome(site.id, site.name, NO_DATA)

        by_sensor = {str(r.sensors_id): r for r in readings}

        with self.session_factory() as db:
            try:
                sensors = (
                    db.query(Sensor)
                    .filter(Sensor.site_id == site.id)
                    .order_by(Sensor.position)
                    .all()
                )
                if not sensors:
                    logger.warning("Site %s (%s) has no associated sensors", site.external_id, label)
                    return SiteOutcome(site.id, site.name, NO_SENSORS)

                processed = 0
                created = 0
                for sensor in sensors:
                    reading = by_sensor.get(_sensor_key(sensor))
                    value, is_simulated = resolve_value(sensor, reading, self.rng)
                    result = write_measurement(
                        db, site, sensor, value, is_simulated, self.aligned_hour
                    )
                    db.commit()
                    processed += 1
                    if result.created:
                        created += 1

                if created:
                    stored = db.get(Site, site.id)
                    if stored is not None:
                        stored.last_data_update = datetime.now(timezone.utc)
                        db.commit()
            except SQLAlchemyError as exc:
                db.rollback()
                logger.error("Site %s: store error: %s", label, exc)
                return SiteOutcome(site.id, site.name, ERROR, error=f"store error: {exc}")

        status = SUCCESS if created else NO_NEW_DATA
        logger.info(
            "Site %s: %s (sensors=%d, new records=%d)", label, status, processed, created
        )
        return SiteOutcome(
            site.id, site.name, status,
            sensors_processed=processed, records_created=created,
        )


def process_site(
    site: Site,
    client: OpenAQClient,
    session_factory: Callable[[], Session],
    aligned_hour: datetime,
    rng: Optional[random.Random] = None,
    skip_reason: Optional[str] = None,
) -> SiteOutcome:
    """One-off form of SiteProcessor for a single site."""
    skip_reasons = {site.id: skip_reason} if skip_reason else None
    processor = SiteProcessor(client, session_factory, aligned_hour, skip_reasons, rng)
    return processor.process(site)
