"""
Typed shapes of the OpenAQ v3 payloads consumed by the sync.

Validation happens once, at the client boundary. Anything that does not fit
these models is dropped there, so downstream code never sees raw dicts.
"""

import logging
from datetime import datetime
from typing import Any, List, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


class _Upstream(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class Coordinates(_Upstream):
    latitude: Optional[float] = None
    longitude: Optional[float] = None


class DatetimeBlock(_Upstream):
    utc: Optional[datetime] = None
    local: Optional[str] = None


class Parameter(_Upstream):
    id: int
    name: str
    units: Optional[str] = None
    display_name: Optional[str] = Field(default=None, alias="displayName")


class UpstreamSensor(_Upstream):
    id: int
    name: Optional[str] = None
    parameter: Parameter


class Country(_Upstream):
    code: Optional[str] = None
    name: Optional[str] = None


class UpstreamLocation(_Upstream):
    """One record of GET /locations."""
    id: int
    name: Optional[str] = None
    locality: Optional[str] = None
    country: Optional[Country] = None
    coordinates: Optional[Coordinates] = None
    datetime_last: Optional[DatetimeBlock] = Field(default=None, alias="datetimeLast")
    sensors: List[UpstreamSensor] = Field(default_factory=list)

    def snapshot(self) -> dict:
        """Descriptive fields copied onto a local site when its id is repaired."""
        return {
            "name": self.name,
            "coordinates": self.coordinates.model_dump() if self.coordinates else None,
            "lastUpdated": (
                self.datetime_last.utc.isoformat()
                if self.datetime_last and self.datetime_last.utc else None
            ),
        }


class LatestReading(_Upstream):
    """One record of GET /locations/{id}/latest."""
    sensors_id: int = Field(alias="sensorsId")
    locations_id: Optional[int] = Field(default=None, alias="locationsId")
    value: Optional[float] = None
    observed: Optional[DatetimeBlock] = Field(default=None, alias="datetime")
    coordinates: Optional[Coordinates] = None


class ResultsEnvelope(_Upstream):
    results: List[Any]


def parse_results(payload: Any, model: Type[M], label: str = "payload") -> List[M]:
    """
    Validate a {"results": [...]} envelope into a list of `model`.

    Fails closed: an unusable envelope returns []; items that do not
    validate are skipped with a warning.
    """
    try:
        envelope = ResultsEnvelope.model_validate(payload)
    except ValidationError as exc:
        logger.warning("%s: unexpected envelope shape (%d errors)", label, exc.error_count())
        return []

    items: List[M] = []
    skipped = 0
    for raw in envelope.results:
        try:
            items.append(model.model_validate(raw))
        except ValidationError:
            skipped += 1
    if skipped:
        logger.warning("%s: skipped %d malformed %s record(s)", label, skipped, model.__name__)
    return items
