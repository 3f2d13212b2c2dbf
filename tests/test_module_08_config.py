"""
Tests for Module 08 — Configuration and the pipeline entry point.
"""

from unittest.mock import patch

import pytest

from pipeline import main as pipeline_main
from pipeline.config import SyncConfig, load_config, load_database_url
from pipeline.errors import ConfigurationError

BASE_ENV = {
    "DATABASE_URL": "postgres://u:p@db:5432/air",
    "OPENAQ_API_KEY": "abcd1234wxyz5678",
}

SYNC_VARS = (
    "STATIONS_OFFSET", "MAX_STATIONS_PER_RUN", "SYNC_BATCH_SIZE", "SYNC_MAX_WORKERS",
    "SYNC_BOUNDS", "SYNC_MATCH_SITES", "SYNC_COUNTRY", "SYNC_JOB_ID", "OPENAQ_BASE_URL",
    "FETCH_MAX_ATTEMPTS", "FETCH_BASE_DELAY_SECONDS", "SYNC_SITE_DELAY_SECONDS",
    "SYNC_BATCH_DELAY_SECONDS", "REQUEST_TIMEOUT_SECONDS", "POLL_INTERVAL_SECONDS",
)


@pytest.fixture()
def env(monkeypatch):
    for name in SYNC_VARS:
        monkeypatch.delenv(name, raising=False)
    for name, value in BASE_ENV.items():
        monkeypatch.setenv(name, value)
    return monkeypatch


class TestLoadConfig:
    def test_defaults(self, env):
        config = load_config()
        assert config.database_url == "postgresql://u:p@db:5432/air"
        assert config.job_id == "LA_HOURLY_SYNC"
        assert config.max_sites_per_run == 50
        assert config.offset is None
        assert config.batch_size == 3
        assert config.site_delay == 1.0
        assert config.batch_delay == 8.0
        assert config.max_workers == 1
        assert config.max_attempts == 3
        assert config.match_sites is True
        assert config.bounds is None

    def test_overrides(self, env):
        env.setenv("STATIONS_OFFSET", "100")
        env.setenv("MAX_STATIONS_PER_RUN", "25")
        env.setenv("SYNC_MAX_WORKERS", "4")
        env.setenv("SYNC_MATCH_SITES", "false")
        env.setenv("SYNC_BOUNDS", "33.6, 34.8, -118.9, -117.5")
        config = load_config()
        assert config.offset == 100
        assert config.max_sites_per_run == 25
        assert config.max_workers == 4
        assert config.match_sites is False
        assert config.bounds == (33.6, 34.8, -118.9, -117.5)

    def test_missing_api_key(self, env):
        env.delenv("OPENAQ_API_KEY")
        with pytest.raises(ConfigurationError, match="OPENAQ_API_KEY"):
            load_config()

    def test_missing_database_url(self, env):
        env.delenv("DATABASE_URL")
        with pytest.raises(ConfigurationError, match="DATABASE_URL"):
            load_database_url()

    @pytest.mark.parametrize("name,value", [
        ("MAX_STATIONS_PER_RUN", "fifty"),
        ("MAX_STATIONS_PER_RUN", "0"),
        ("STATIONS_OFFSET", "-5"),
        ("SYNC_BATCH_SIZE", "0"),
        ("SYNC_BOUNDS", "1,2,3"),
        ("FETCH_BASE_DELAY_SECONDS", "soon"),
    ])
    def test_invalid_values(self, env, name, value):
        env.setenv(name, value)
        with pytest.raises(ConfigurationError):
            load_config()

    def test_masked_api_key(self):
        assert SyncConfig(database_url="x", api_key="abcd1234wxyz5678").masked_api_key() == "abcd...5678"
        assert SyncConfig(database_url="x", api_key="short").masked_api_key() == "****"


class TestPipelineMain:
    def test_configuration_error_exits_nonzero(self, env):
        env.delenv("OPENAQ_API_KEY")
        with patch("sqlalchemy.create_engine") as mock_engine:
            assert pipeline_main.main(["--once"]) == 1
        mock_engine.assert_not_called()

    def test_once_runs_single_sync(self, env):
        with patch("sqlalchemy.create_engine"), \
             patch.object(pipeline_main, "run_once", return_value={"successful": 1}) as mock_once, \
             patch.object(pipeline_main, "run_scheduler") as mock_sched:
            assert pipeline_main.main(["--once"]) == 0
        mock_once.assert_called_once()
        mock_sched.assert_not_called()

    def test_populate_sites(self, env):
        with patch("sqlalchemy.create_engine"), \
             patch.object(pipeline_main, "populate_sites", return_value={"inserted": 2}) as mock_pop:
            assert pipeline_main.main(["--populate-sites"]) == 0
        mock_pop.assert_called_once()

    def test_default_mode_starts_scheduler(self, env):
        with patch("sqlalchemy.create_engine"), \
             patch.object(pipeline_main, "run_scheduler") as mock_sched:
            assert pipeline_main.main([]) == 0
        mock_sched.assert_called_once()
