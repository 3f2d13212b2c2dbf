"""
Site population sync.

Pages through the upstream location catalogue and mirrors it into the local
sites/sensors tables: existing sites (matched by external id, then by name)
are updated, unknown locations are inserted, and each site gets one Sensor
row per upstream sensor it does not already have.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from api.models.db_models import Sensor, Site
from pipeline.ingestion.openaq_client import OpenAQClient
from pipeline.ingestion.schemas import UpstreamLocation
from pipeline.ingestion.site_matcher import normalize_external_id

logger = logging.getLogger(__name__)


@dataclass
class SiteSyncResult:
    fetched: int = 0
    inserted: int = 0
    updated: int = 0
    sensors_created: int = 0
    failed: int = 0

    def as_dict(self) -> dict:
        return {
            "fetched": self.fetched,
            "inserted": self.inserted,
            "updated": self.updated,
            "sensors_created": self.sensors_created,
            "failed": self.failed,
        }


def _apply_location(site: Site, location: UpstreamLocation) -> None:
    site.external_id = location.id
    if location.name:
        site.name = location.name
    if location.locality:
        site.city = location.locality
    if location.country and location.country.code:
        site.country = location.country.code
    if location.coordinates:
        site.latitude = location.coordinates.latitude
        site.longitude = location.coordinates.longitude
    site.upstream_snapshot = location.snapshot()


def _add_missing_sensors(db: Session, site: Site, location: UpstreamLocation) -> int:
    existing = {
        s.external_sensor_id
        for s in db.query(Sensor).filter(Sensor.site_id == site.id).all()
    }
    created = 0
    for position, upstream in enumerate(location.sensors):
        key = str(upstream.id)
        if key in existing:
            continue
        db.add(Sensor(
            site_id=site.id,
            external_sensor_id=key,
            name=upstream.name,
            parameter_id=upstream.parameter.id,
            parameter_name=upstream.parameter.name,
            parameter_units=upstream.parameter.units,
            parameter_display_name=upstream.parameter.display_name,
            position=position,
        ))
        existing.add(key)
        created += 1
    return created


def sync_sites(
    session_factory: Callable[[], Session],
    client: OpenAQClient,
    country: Optional[str] = None,
    max_pages: Optional[int] = None,
) -> SiteSyncResult:
    """
    Mirror the upstream catalogue into the local site population.

    Each location is committed on its own; a failing one is rolled back,
    logged and counted, and the rest continue. Sites are never deleted.
    """
    result = SiteSyncResult()
    locations = client.fetch_locations(country=country, max_pages=max_pages)
    result.fetched = len(locations)
    if not locations:
        logger.error("No upstream locations fetched; site sync skipped")
        return result

    with session_factory() as db:
        by_id: Dict[str, Site] = {}
        by_name: Dict[str, Site] = {}
        existing = db.query(Site).order_by(Site.created_at, Site.id).all()
        for site in existing:
            key = normalize_external_id(site.external_id)
            if key is not None:
                by_id.setdefault(key, site)
            if site.name:
                by_name.setdefault(site.name.strip().lower(), site)
        logger.info("Database has %d sites", len(existing))

        for location in locations:
            site = by_id.get(str(location.id))
            if site is None and location.name:
                site = by_name.get(location.name.strip().lower())
            is_new = site is None

            try:
                if is_new:
                    site = Site()
                    db.add(site)
                _apply_location(site, location)
                site.updated_at = datetime.now(timezone.utc)
                db.flush()
                added = _add_missing_sensors(db, site, location)
                db.commit()
            except SQLAlchemyError as exc:
                db.rollback()
                result.failed += 1
                logger.error("Failed to sync location %s (%s): %s", location.id, location.name, exc)
                continue

            result.sensors_created += added
            by_id[str(location.id)] = site
            if site.name:
                by_name.setdefault(site.name.strip().lower(), site)
            if is_new:
                result.inserted += 1
            else:
                result.updated += 1

    logger.info(
        "Site sync complete: fetched=%d inserted=%d updated=%d sensors=%d failed=%d",
        result.fetched, result.inserted, result.updated, result.sensors_created, result.failed,
    )
    return result
