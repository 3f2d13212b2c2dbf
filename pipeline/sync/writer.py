"""
Idempotent Writer — hourly Measurement persistence.

Idempotency key: (site, parameter name, aligned hour). A second write for the
same key creates nothing but still refreshes the sensor's last-known value.
The check-then-insert pair is not wrapped in a transaction; two writers
racing on the same key can still both insert.
"""

import logging
import random
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Optional, Tuple

from sqlalchemy.orm import Session

from api.models.db_models import Measurement, Sensor, Site

logger = logging.getLogger(__name__)

# Bounds used when a sensor has no real reading this hour: (min, max)
SIMULATED_RANGES: Dict[str, Tuple[float, float]] = {
    "pm25": (5.0, 45.0),
    "pm10": (10.0, 60.0),
    "o3":   (10.0, 70.0),
    "no2":  (5.0, 55.0),
    "so2":  (1.0, 21.0),
    "co":   (0.2, 5.2),
}
DEFAULT_SIMULATED_RANGE: Tuple[float, float] = (5.0, 35.0)


@dataclass
class WriteResult:
    created: bool
    value: float
    is_simulated: bool


def align_to_hour(moment: Optional[datetime] = None) -> datetime:
    """
    Truncate to the start of the hour, in UTC.

    This is the only time-bucketing rule: use it both when writing and when
    querying a point in time.
    """
    if moment is None:
        moment = datetime.now(timezone.utc)
    elif moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    else:
        moment = moment.astimezone(timezone.utc)
    return moment.replace(minute=0, second=0, microsecond=0)


def simulated_range(parameter_name: Optional[str]) -> Tuple[float, float]:
    return SIMULATED_RANGES.get((parameter_name or "").lower(), DEFAULT_SIMULATED_RANGE)


def synthesize_value(parameter_name: Optional[str], rng: Optional[random.Random] = None) -> float:
    """Uniform draw inside the parameter's documented range."""
    low, high = simulated_range(parameter_name)
    rng = rng or random
    return min(high, max(low, rng.uniform(low, high)))


def resolve_value(sensor: Sensor, reading, rng: Optional[random.Random] = None) -> Tuple[float, bool]:
    """
    Pick the value to store for a sensor.

    Returns:
        (value, is_simulated). The real reading wins when it carries a value;
        otherwise a bounded synthetic value is generated.
    """
    if reading is not None and getattr(reading, "value", None) is not None:
        return float(reading.value), False
    return synthesize_value(sensor.parameter_name, rng), True


def measurement_exists(db: Session, site_id: str, parameter_name: str, aligned_hour: datetime) -> bool:
    row = (
        db.query(Measurement.id)
        .filter(
            Measurement.site_id == site_id,
            Measurement.parameter_name == parameter_name,
            Measurement.timestamp == aligned_hour,
        )
        .first()
    )
    return row is not None


def write_measurement(
    db: Session,
    site: Site,
    sensor: Sensor,
    value: float,
    is_simulated: bool,
    aligned_hour: datetime,
) -> WriteResult:
    """
    Insert the hourly Measurement unless one already exists, then refresh
    the sensor's cached value.

    The caller owns the transaction (commit / rollback).
    """
    now = datetime.now(timezone.utc)
    site_label = site.name or site.external_id or site.id

    if measurement_exists(db, site.id, sensor.parameter_name, aligned_hour):
        created = False
        logger.debug(
            "Site %s %s @ %s already stored, skipping insert",
            site_label, sensor.parameter_name, aligned_hour.isoformat(),
        )
    else:
        db.add(Measurement(
            site_id=site.id,
            parameter_id=sensor.parameter_id,
            parameter_name=sensor.parameter_name,
            parameter_units=sensor.parameter_units,
            parameter_display_name=sensor.parameter_display_name,
            value=value,
            is_simulated=is_simulated,
            timestamp=aligned_hour,
            created_at=now,
        ))
        created = True
        logger.info(
            "Saved %s for site %s: %.3f (%s)",
            sensor.parameter_name, site_label, value, "simulated" if is_simulated else "real",
        )

    sensor.value = value
    sensor.last_updated = now
    sensor.is_simulated = is_simulated
    db.add(sensor)
    db.flush()

    return WriteResult(created=created, value=value, is_simulated=is_simulated)
