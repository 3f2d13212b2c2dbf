"""
Tests for Module 02 — Site Matcher and site population sync.
"""

from unittest.mock import MagicMock

from sqlalchemy.exc import SQLAlchemyError

from api.models.db_models import Sensor, Site
from pipeline.ingestion.schemas import UpstreamLocation
from pipeline.ingestion.site_matcher import (
    MATCH_BY_ID,
    MATCH_BY_NAME,
    check_external_ids,
    is_valid_external_id,
    match_sites,
    normalize_external_id,
    repair_site_ids,
)
from pipeline.ingestion.site_sync import sync_sites


def _loc(loc_id, name=None, sensors=()):
    return UpstreamLocation.model_validate({
        "id": loc_id,
        "name": name,
        "locality": "Los Angeles",
        "country": {"code": "US", "name": "United States"},
        "coordinates": {"latitude": 34.05, "longitude": -118.25},
        "datetimeLast": {"utc": "2024-01-15T10:00:00Z"},
        "sensors": [
            {"id": sid, "name": f"{param} µg/m³", "parameter": {"id": i + 1, "name": param, "units": "µg/m³"}}
            for i, (sid, param) in enumerate(sensors)
        ],
    })


# ============================================================
# External id validation
# ============================================================

class TestExternalIdValidation:
    def test_int_and_string_are_valid(self):
        assert is_valid_external_id(1001)
        assert is_valid_external_id("1001")

    def test_missing_and_malformed(self):
        assert not is_valid_external_id(None)
        assert not is_valid_external_id("")
        assert not is_valid_external_id("   ")
        assert not is_valid_external_id(True)
        assert not is_valid_external_id({"id": 1})
        assert not is_valid_external_id([1])
        assert not is_valid_external_id(1.5)

    def test_normalize(self):
        assert normalize_external_id(1001) == "1001"
        assert normalize_external_id(" 1001 ") == "1001"
        assert normalize_external_id(None) is None

    def test_audit_counts(self, make_site):
        sites = [
            make_site(external_id=1),
            make_site(external_id="2"),
            make_site(external_id=None, name="No id"),
            make_site(external_id={"bad": True}, name="Dict id"),
        ]
        audit = check_external_ids(sites)
        assert audit.valid == 2
        assert audit.missing == 1
        assert audit.malformed == 1
        assert audit.types == {"int": 1, "str": 1, "dict": 1}


# ============================================================
# Matching
# ============================================================

class TestMatchSites:
    def test_match_by_id(self, make_site):
        site = make_site(external_id=1001, name="Downtown")
        result = match_sites([site], [_loc(1001, "Somewhere else")])
        assert len(result.matched) == 1
        assert result.matched[0].match_type == MATCH_BY_ID
        assert not result.matched[0].id_changed
        assert result.unmatched == []

    def test_string_id_matches_int_upstream(self, make_site):
        site = make_site(external_id="1001")
        result = match_sites([site], [_loc(1001)])
        assert result.matched[0].match_type == MATCH_BY_ID

    def test_fallback_to_name_case_insensitive(self, make_site):
        site = make_site(external_id=999, name="Downtown LA")
        result = match_sites([site], [_loc(1001, "downtown la")])
        match = result.matched[0]
        assert match.match_type == MATCH_BY_NAME
        assert match.id_changed

    def test_unmatched(self, make_site):
        site = make_site(external_id=5, name="Nowhere")
        result = match_sites([site], [_loc(1001, "Downtown")])
        assert result.matched == []
        assert result.unmatched == [site]

    def test_first_duplicate_name_wins(self, make_site):
        site = make_site(external_id=None, name="Twin")
        result = match_sites([site], [_loc(1, "Twin"), _loc(2, "Twin")])
        assert result.matched[0].upstream.id == 1


class TestRepairSiteIds:
    def test_repairs_only_changed_ids(self, make_site, session_factory):
        same = make_site(external_id=1001, name="Same")
        drifted = make_site(external_id=555, name="Drifted")
        result = match_sites([same, drifted], [_loc(1001, "Same"), _loc(2002, "Drifted")])

        with session_factory() as db:
            updated = repair_site_ids(db, result.matched)
        assert updated == 1

        with session_factory() as db:
            stored = db.get(Site, drifted.id)
            assert stored.external_id == 2002
            assert stored.upstream_snapshot["name"] == "Drifted"
            assert db.get(Site, same.id).upstream_snapshot is None

    def test_failed_update_is_rolled_back_and_skipped(self, make_site):
        site = make_site(external_id=1, name="A")
        result = match_sites([site], [_loc(2, "A")])
        db = MagicMock()
        db.commit.side_effect = SQLAlchemyError("locked")
        assert repair_site_ids(db, result.matched) == 0
        db.rollback.assert_called_once()


# ============================================================
# Site population sync
# ============================================================

class TestSyncSites:
    def test_inserts_and_updates(self, make_site, session_factory):
        existing = make_site(external_id=None, name="Pasadena")
        client = MagicMock()
        client.fetch_locations.return_value = [
            _loc(10, "Pasadena", sensors=[(100, "pm25")]),
            _loc(20, "Long Beach", sensors=[(200, "pm25"), (201, "o3")]),
        ]

        result = sync_sites(session_factory, client, country="US")

        assert result.fetched == 2
        assert result.updated == 1
        assert result.inserted == 1
        assert result.sensors_created == 3
        client.fetch_locations.assert_called_once_with(country="US", max_pages=None)

        with session_factory() as db:
            assert db.get(Site, existing.id).external_id == 10
            long_beach = db.query(Site).filter(Site.name == "Long Beach").one()
            sensors = (
                db.query(Sensor)
                .filter(Sensor.site_id == long_beach.id)
                .order_by(Sensor.position)
                .all()
            )
            assert [s.external_sensor_id for s in sensors] == ["200", "201"]
            assert [s.parameter_name for s in sensors] == ["pm25", "o3"]
            assert long_beach.country == "US"

    def test_rerun_creates_no_duplicate_sensors(self, session_factory):
        client = MagicMock()
        client.fetch_locations.return_value = [_loc(10, "Pasadena", sensors=[(100, "pm25")])]
        sync_sites(session_factory, client)
        second = sync_sites(session_factory, client)
        assert second.inserted == 0
        assert second.updated == 1
        assert second.sensors_created == 0
        with session_factory() as db:
            assert db.query(Sensor).count() == 1

    def test_empty_catalogue_is_noop(self, make_site, session_factory):
        make_site(external_id=1)
        client = MagicMock()
        client.fetch_locations.return_value = []
        result = sync_sites(session_factory, client)
        assert result.as_dict() == {
            "fetched": 0, "inserted": 0, "updated": 0, "sensors_created": 0, "failed": 0,
        }
