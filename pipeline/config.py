"""
Runtime configuration for the hourly sync job.

Everything is read from the environment (a local .env file is honoured).
Missing credentials raise ConfigurationError before any work is done.
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional, Tuple

from dotenv import load_dotenv

from pipeline.errors import ConfigurationError

load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.openaq.org/v3"
DEFAULT_JOB_ID = "LA_HOURLY_SYNC"


@dataclass(frozen=True)
class SyncConfig:
    database_url: str
    api_key: str
    base_url: str = DEFAULT_BASE_URL
    job_id: str = DEFAULT_JOB_ID

    # Partitioning
    max_sites_per_run: int = 50
    offset: Optional[int] = None          # None -> resume from checkpoint

    # Batching / rate limiting
    batch_size: int = 3
    site_delay: float = 1.0               # seconds between sites in a batch
    batch_delay: float = 8.0              # seconds between batches
    max_workers: int = 1                  # 1 = strictly sequential

    # Fetch client
    max_attempts: int = 3
    base_delay: float = 2.0
    request_timeout: float = 10.0

    # Site selection / matching
    match_sites: bool = True
    country: Optional[str] = "US"
    bounds: Optional[Tuple[float, float, float, float]] = None  # minLat, maxLat, minLng, maxLng

    # Scheduler
    poll_interval: int = 3600

    def masked_api_key(self) -> str:
        """Short fingerprint of the API key, safe to log."""
        if len(self.api_key) <= 8:
            return "****"
        return f"{self.api_key[:4]}...{self.api_key[-4:]}"


def _int_env(name: str, default: Optional[int]) -> Optional[int]:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}")


def _float_env(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}")


def _bool_env(name: str, default: bool) -> bool:
    raw = os.environ.get(name, "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "on")


def _bounds_env(name: str) -> Optional[Tuple[float, float, float, float]]:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return None
    parts = [p.strip() for p in raw.split(",")]
    if len(parts) != 4:
        raise ConfigurationError(f"{name} must be 'minLat,maxLat,minLng,maxLng', got {raw!r}")
    try:
        min_lat, max_lat, min_lng, max_lng = (float(p) for p in parts)
    except ValueError:
        raise ConfigurationError(f"{name} contains a non-numeric bound: {raw!r}")
    return min_lat, max_lat, min_lng, max_lng


def load_database_url() -> str:
    """Resolve DATABASE_URL, normalising Heroku-style postgres:// URLs."""
    url = os.environ.get("DATABASE_URL", "").strip()
    if not url:
        raise ConfigurationError("DATABASE_URL is not set")
    return url.replace("postgres://", "postgresql://", 1) if url.startswith("postgres://") else url


def load_config() -> SyncConfig:
    """
    Build a SyncConfig from the environment.

    Raises:
        ConfigurationError: DATABASE_URL or OPENAQ_API_KEY missing, or a
            numeric setting that does not parse / is out of range.
    """
    database_url = load_database_url()
    api_key = os.environ.get("OPENAQ_API_KEY", "").strip()
    if not api_key:
        raise ConfigurationError("OPENAQ_API_KEY is not set")

    country = os.environ.get("SYNC_COUNTRY", "US").strip() or None

    config = SyncConfig(
        database_url=database_url,
        api_key=api_key,
        base_url=os.environ.get("OPENAQ_BASE_URL", DEFAULT_BASE_URL).rstrip("/"),
        job_id=os.environ.get("SYNC_JOB_ID", DEFAULT_JOB_ID),
        max_sites_per_run=_int_env("MAX_STATIONS_PER_RUN", 50),
        offset=_int_env("STATIONS_OFFSET", None),
        batch_size=_int_env("SYNC_BATCH_SIZE", 3),
        site_delay=_float_env("SYNC_SITE_DELAY_SECONDS", 1.0),
        batch_delay=_float_env("SYNC_BATCH_DELAY_SECONDS", 8.0),
        max_workers=_int_env("SYNC_MAX_WORKERS", 1),
        max_attempts=_int_env("FETCH_MAX_ATTEMPTS", 3),
        base_delay=_float_env("FETCH_BASE_DELAY_SECONDS", 2.0),
        request_timeout=_float_env("REQUEST_TIMEOUT_SECONDS", 10.0),
        match_sites=_bool_env("SYNC_MATCH_SITES", True),
        country=country,
        bounds=_bounds_env("SYNC_BOUNDS"),
        poll_interval=_int_env("POLL_INTERVAL_SECONDS", 3600),
    )

    if config.max_sites_per_run <= 0:
        raise ConfigurationError("MAX_STATIONS_PER_RUN must be positive")
    if config.offset is not None and config.offset < 0:
        raise ConfigurationError("STATIONS_OFFSET must not be negative")
    if config.batch_size <= 0:
        raise ConfigurationError("SYNC_BATCH_SIZE must be positive")
    if config.max_workers <= 0:
        raise ConfigurationError("SYNC_MAX_WORKERS must be positive")
    if config.max_attempts <= 0:
        raise ConfigurationError("FETCH_MAX_ATTEMPTS must be positive")

    logger.info(
        "Config loaded: job=%s window=%d offset=%s batch=%d workers=%d",
        config.job_id,
        config.max_sites_per_run,
        "checkpoint" if config.offset is None else config.offset,
        config.batch_size,
        config.max_workers,
    )
    return config
