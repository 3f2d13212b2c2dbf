"""
OpenAQ v3 API client.

Fetches the site (location) catalogue and the latest readings per site.
Transient failures (network errors, non-2xx statuses) are retried with
exponential backoff; a body that is valid but empty is a normal outcome.
"""

import logging
import time
from typing import Any, Callable, List, Optional

import httpx

from pipeline.errors import MalformedPayloadError, UpstreamError
from pipeline.ingestion.retry import retry_with_backoff
from pipeline.ingestion.schemas import LatestReading, UpstreamLocation, parse_results

logger = logging.getLogger(__name__)

OPENAQ_BASE_URL = "https://api.openaq.org/v3"
REQUEST_TIMEOUT = 10  # seconds
PAGE_DELAY = 0.5      # seconds between catalogue pages


class OpenAQClient:
    """
    Thin, thread-safe wrapper around one httpx.Client.

    Args:
        api_key: Value for the X-API-Key header.
        base_url: API root, without trailing slash.
        max_attempts: Attempts per request before the error is surfaced.
        base_delay: Backoff base in seconds (waits base*2, base*4, ...).
        timeout: Per-request timeout in seconds.
        http_client: Optional pre-built httpx.Client (tests inject a
            MockTransport-backed one).
        sleep: Sleep function used for backoff and paging delays.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = OPENAQ_BASE_URL,
        max_attempts: int = 3,
        base_delay: float = 2.0,
        timeout: float = REQUEST_TIMEOUT,
        http_client: Optional[httpx.Client] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.base_url = base_url.rstrip("/")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self._sleep = sleep
        self._headers = {"X-API-Key": api_key, "Accept": "application/json"}
        self._owns_client = http_client is None
        self._http = http_client or httpx.Client(timeout=timeout)

    @classmethod
    def from_config(cls, config, **kwargs) -> "OpenAQClient":
        """Client configured from a SyncConfig."""
        return cls(
            api_key=config.api_key,
            base_url=config.base_url,
            max_attempts=config.max_attempts,
            base_delay=config.base_delay,
            timeout=config.request_timeout,
            **kwargs,
        )

    def close(self) -> None:
        if self._owns_client:
            self._http.close()

    def __enter__(self) -> "OpenAQClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # ── Low level ────────────────────────────────────────────────────────────

    def _get_once(self, url: str, params: Optional[dict]) -> Any:
        try:
            resp = self._http.get(url, params=params, headers=self._headers)
            resp.raise_for_status()
        except httpx.TimeoutException as e:
            raise UpstreamError(f"timeout calling {url}: {e}", url=url) from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            body = e.response.text[:200]
            raise UpstreamError(f"HTTP {status} from {url}: {body}", status_code=status, url=url) from e
        except httpx.RequestError as e:
            raise UpstreamError(f"network error calling {url}: {e}", url=url) from e

        try:
            return resp.json()
        except ValueError as e:
            raise MalformedPayloadError(
                f"malformed JSON from {url}", status_code=resp.status_code, url=url
            ) from e

    def fetch_json(self, url: str, params: Optional[dict] = None) -> Any:
        """
        GET url and decode JSON, retrying transient failures.

        Raises:
            UpstreamError: all attempts failed on network/status errors.
            MalformedPayloadError: a 2xx response carried a non-JSON body
                (not retried).
        """
        return retry_with_backoff(
            lambda: self._get_once(url, params),
            max_attempts=self.max_attempts,
            base_delay=self.base_delay,
            retry_on=(UpstreamError,),
            give_up_on=(MalformedPayloadError,),
            sleep=self._sleep,
            label=f"GET {url}",
        )

    # ── Endpoints ────────────────────────────────────────────────────────────

    def get_latest_measurements(self, location_id) -> List[LatestReading]:
        """
        Latest reading per sensor for one location.

        Returns [] when upstream has nothing or the payload has an
        unexpected shape. Exhausted transient errors propagate as
        UpstreamError.
        """
        url = f"{self.base_url}/locations/{location_id}/latest"
        logger.debug("Requesting latest data for location %s", location_id)
        try:
            payload = self.fetch_json(url)
        except MalformedPayloadError as e:
            logger.warning("Location %s: %s", location_id, e)
            return []

        readings = parse_results(payload, LatestReading, label=f"location {location_id} latest")
        logger.info("Location %s: %d latest readings", location_id, len(readings))
        return readings

    def fetch_locations(
        self,
        country: Optional[str] = None,
        limit: int = 1000,
        max_pages: Optional[int] = None,
    ) -> List[UpstreamLocation]:
        """
        Page through GET /locations.

        Stops on a short page, an empty page, max_pages, or a failed page
        (what was collected so far is returned).
        """
        url = f"{self.base_url}/locations"
        locations: List[UpstreamLocation] = []
        page = 1
        while max_pages is None or page <= max_pages:
            params = {"limit": limit, "page": page, "sort": "desc", "order_by": "id"}
            if country:
                params["iso"] = country
            try:
                payload = self.fetch_json(url, params=params)
            except UpstreamError as e:
                logger.error("Location catalogue page %d failed: %s", page, e)
                break

            batch = parse_results(payload, UpstreamLocation, label=f"locations page {page}")
            raw = payload.get("results") if isinstance(payload, dict) else None
            raw_count = len(raw) if isinstance(raw, list) else 0
            if raw_count == 0:
                break
            locations.extend(batch)
            logger.info("Fetched locations page %d (%d total)", page, len(locations))
            if raw_count < limit:
                break
            page += 1
            self._sleep(PAGE_DELAY)

        logger.info("Upstream catalogue: %d locations", len(locations))
        return locations
