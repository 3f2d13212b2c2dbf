"""
Tests for Module 05 — Idempotent Writer.
Tests hour alignment, synthetic fallback values, and idempotent inserts.
"""

import random
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from api.models.db_models import Measurement, Sensor
from pipeline.ingestion.schemas import LatestReading
from pipeline.sync.writer import (
    DEFAULT_SIMULATED_RANGE,
    SIMULATED_RANGES,
    align_to_hour,
    measurement_exists,
    resolve_value,
    simulated_range,
    synthesize_value,
    write_measurement,
)


# ============================================================
# Hour alignment
# ============================================================

class TestAlignToHour:
    def test_truncates_minutes_seconds_micros(self):
        moment = datetime(2024, 1, 15, 10, 37, 12, 123456, tzinfo=timezone.utc)
        assert align_to_hour(moment) == datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)

    def test_idempotent(self):
        moment = datetime(2024, 1, 15, 10, 37, tzinfo=timezone.utc)
        assert align_to_hour(align_to_hour(moment)) == align_to_hour(moment)

    def test_converts_to_utc(self):
        pst = timezone(timedelta(hours=-8))
        moment = datetime(2024, 1, 15, 2, 45, tzinfo=pst)
        aligned = align_to_hour(moment)
        assert aligned == datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)
        assert aligned.utcoffset() == timedelta(0)

    def test_naive_treated_as_utc(self):
        aligned = align_to_hour(datetime(2024, 1, 15, 10, 5))
        assert aligned.tzinfo is not None
        assert aligned.hour == 10

    def test_default_is_current_hour(self):
        aligned = align_to_hour()
        assert aligned.minute == 0 and aligned.second == 0


# ============================================================
# Synthetic fallback
# ============================================================

class TestSynthesizeValue:
    @pytest.mark.parametrize("parameter", sorted(SIMULATED_RANGES) + ["bc", None])
    def test_thousand_draws_stay_in_range(self, parameter):
        low, high = simulated_range(parameter)
        rng = random.Random(42)
        for _ in range(1000):
            assert low <= synthesize_value(parameter, rng) <= high

    def test_known_ranges(self):
        assert simulated_range("pm25") == (5.0, 45.0)
        assert simulated_range("PM10") == (10.0, 60.0)
        assert simulated_range("co") == (0.2, 5.2)
        assert simulated_range("unknown") == DEFAULT_SIMULATED_RANGE == (5.0, 35.0)


class TestResolveValue:
    def _sensor(self, parameter="pm25"):
        sensor = MagicMock()
        sensor.parameter_name = parameter
        return sensor

    def test_real_reading_wins(self):
        reading = LatestReading.model_validate({"sensorsId": 1, "value": 18.2})
        assert resolve_value(self._sensor(), reading) == (18.2, False)

    def test_null_value_is_synthesized(self):
        reading = LatestReading.model_validate({"sensorsId": 1, "value": None})
        value, simulated = resolve_value(self._sensor(), reading, random.Random(0))
        assert simulated is True
        assert 5.0 <= value <= 45.0

    def test_missing_reading_is_synthesized(self):
        value, simulated = resolve_value(self._sensor("so2"), None, random.Random(0))
        assert simulated is True
        assert 1.0 <= value <= 21.0

    def test_zero_is_a_real_value(self):
        reading = LatestReading.model_validate({"sensorsId": 1, "value": 0.0})
        assert resolve_value(self._sensor(), reading) == (0.0, False)


# ============================================================
# Idempotent write
# ============================================================

class TestWriteMeasurement:
    HOUR = datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)

    def _load(self, db, site):
        return db.query(Sensor).filter(Sensor.site_id == site.id).one()

    def test_first_write_inserts(self, make_site, db_session):
        site = make_site(external_id=1, sensors=[(11, "pm25")])
        sensor = self._load(db_session, site)

        result = write_measurement(db_session, site, sensor, 18.2, False, self.HOUR)
        db_session.commit()

        assert result.created is True
        row = db_session.query(Measurement).one()
        assert row.value == 18.2
        assert row.parameter_name == "pm25"
        assert row.parameter_units == "µg/m³"
        assert row.is_simulated is False
        assert measurement_exists(db_session, site.id, "pm25", self.HOUR)

    def test_second_write_same_hour_is_skipped_but_sensor_refreshed(self, make_site, db_session):
        site = make_site(external_id=1, sensors=[(11, "pm25")])
        sensor = self._load(db_session, site)

        write_measurement(db_session, site, sensor, 18.2, False, self.HOUR)
        db_session.commit()
        result = write_measurement(db_session, site, sensor, 30.0, True, self.HOUR)
        db_session.commit()

        assert result.created is False
        assert db_session.query(Measurement).count() == 1
        assert db_session.query(Measurement).one().value == 18.2
        refreshed = self._load(db_session, site)
        assert refreshed.value == 30.0
        assert refreshed.is_simulated is True
        assert refreshed.last_updated is not None

    def test_next_hour_inserts_again(self, make_site, db_session):
        site = make_site(external_id=1, sensors=[(11, "pm25")])
        sensor = self._load(db_session, site)
        write_measurement(db_session, site, sensor, 1.0, False, self.HOUR)
        result = write_measurement(db_session, site, sensor, 2.0, False, self.HOUR + timedelta(hours=1))
        db_session.commit()
        assert result.created is True
        assert db_session.query(Measurement).count() == 2

    def test_key_is_per_parameter(self, make_site, db_session):
        site = make_site(external_id=1, sensors=[(11, "pm25"), (12, "o3")])
        sensors = db_session.query(Sensor).filter(Sensor.site_id == site.id).order_by(Sensor.position).all()
        for sensor in sensors:
            assert write_measurement(db_session, site, sensor, 5.0, False, self.HOUR).created
        db_session.commit()
        assert db_session.query(Measurement).count() == 2

    def test_pm25_scenario_in_hour(self, make_site, db_session):
        """A pm25 sensor polled at 10:37 with no reading gets one simulated row at 10:00."""
        site = make_site(external_id=1, sensors=[(11, "pm25")])
        sensor = self._load(db_session, site)
        hour = align_to_hour(datetime(2024, 1, 15, 10, 37, tzinfo=timezone.utc))
        value, simulated = resolve_value(sensor, None, random.Random(7))

        write_measurement(db_session, site, sensor, value, simulated, hour)
        write_measurement(db_session, site, sensor, value, simulated, hour)
        db_session.commit()

        row = db_session.query(Measurement).one()
        assert row.is_simulated is True
        assert 5.0 <= row.value <= 45.0
        assert measurement_exists(db_session, site.id, "pm25", self.HOUR)
