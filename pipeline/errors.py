"""
Exception types raised by the ingestion pipeline.

Only ConfigurationError is meant to reach the top of an invocation.
Upstream errors are converted into per-site outcomes by the site processor.
"""

from typing import Optional


class ConfigurationError(Exception):
    """Required settings are missing or malformed. Fatal at job start."""


class UpstreamError(Exception):
    """An upstream HTTP call failed (network error or non-2xx status)."""

    def __init__(self, message: str, status_code: Optional[int] = None, url: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.url = url


class MalformedPayloadError(UpstreamError):
    """Upstream answered 2xx but the body is not usable JSON."""
