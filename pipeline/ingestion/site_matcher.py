"""
Site Matcher — reconciles local sites with the upstream location catalogue.

Lookup order: external id first, then lower-cased name. The first candidate
wins; duplicate names upstream are not disambiguated. A match whose upstream
id differs from the stored one is repaired in place. Sites are never deleted.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from api.models.db_models import Site
from pipeline.ingestion.schemas import UpstreamLocation

logger = logging.getLogger(__name__)

MATCH_BY_ID = "id"
MATCH_BY_NAME = "name"


@dataclass
class SiteMatch:
    local: Site
    upstream: UpstreamLocation
    match_type: str            # "id" | "name"

    @property
    def id_changed(self) -> bool:
        return normalize_external_id(self.local.external_id) != str(self.upstream.id)


@dataclass
class MatchResult:
    matched: List[SiteMatch] = field(default_factory=list)
    unmatched: List[Site] = field(default_factory=list)


@dataclass
class IdAudit:
    """Shape statistics of local external ids."""
    valid: int = 0
    missing: int = 0
    malformed: int = 0
    types: Dict[str, int] = field(default_factory=dict)


def is_valid_external_id(value: Any) -> bool:
    """An external id must be a non-empty string or an integer (bool excluded)."""
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    if isinstance(value, str):
        return value.strip() != ""
    return False


def normalize_external_id(value: Any) -> Optional[str]:
    """Canonical string key for an external id, or None when unusable."""
    if not is_valid_external_id(value):
        return None
    return str(value).strip()


def check_external_ids(sites: Iterable[Site]) -> IdAudit:
    """Count and log missing or malformed external ids. Never raises."""
    audit = IdAudit()
    types: Counter = Counter()
    for site in sites:
        value = site.external_id
        if value is None or value == "":
            audit.missing += 1
            logger.warning("Site %s (%s) has no external id", site.id, site.name or "unnamed")
            continue
        types[type(value).__name__] += 1
        if not is_valid_external_id(value):
            audit.malformed += 1
            logger.warning(
                "Site %s (%s) has a malformed external id of type %s: %r",
                site.id, site.name or "unnamed", type(value).__name__, value,
            )
            continue
        audit.valid += 1
    audit.types = dict(types)
    logger.info(
        "External id audit: valid=%d missing=%d malformed=%d types=%s",
        audit.valid, audit.missing, audit.malformed, audit.types,
    )
    return audit


def _build_lookup(upstream_sites: Iterable[UpstreamLocation]):
    by_id: Dict[str, UpstreamLocation] = {}
    by_name: Dict[str, UpstreamLocation] = {}
    for location in upstream_sites:
        by_id.setdefault(str(location.id), location)
        if location.name:
            by_name.setdefault(location.name.strip().lower(), location)
    return by_id, by_name


def match_sites(
    local_sites: Iterable[Site],
    upstream_sites: Iterable[UpstreamLocation],
) -> MatchResult:
    """
    Pair each local site with an upstream location.

    Returns:
        MatchResult with (local, upstream, match_type) triples and the list
        of local sites that found no counterpart.
    """
    local_sites = list(local_sites)
    by_id, by_name = _build_lookup(upstream_sites)
    result = MatchResult()

    for site in local_sites:
        key = normalize_external_id(site.external_id)
        if key is not None and key in by_id:
            result.matched.append(SiteMatch(site, by_id[key], MATCH_BY_ID))
            continue

        name_key = (site.name or "").strip().lower()
        if name_key and name_key in by_name:
            result.matched.append(SiteMatch(site, by_name[name_key], MATCH_BY_NAME))
            continue

        logger.warning(
            "No upstream match for site %s (%s, external_id=%r)",
            site.id, site.name or "unnamed", site.external_id,
        )
        result.unmatched.append(site)

    logger.info(
        "Site matching: local=%d upstream=%d matched=%d unmatched=%d",
        len(local_sites), len(by_id), len(result.matched), len(result.unmatched),
    )
    return result


def repair_site_ids(db: Session, matches: Iterable[SiteMatch]) -> int:
    """
    Persist corrected external ids and an upstream snapshot for drifted sites.

    Each repair is committed on its own; a failing update is rolled back and
    logged without stopping the others.

    Returns:
        Number of sites whose id was updated.
    """
    updated = 0
    for match in matches:
        if not match.id_changed:
            continue
        site = match.local
        old_id = site.external_id
        try:
            db.add(site)
            site.external_id = match.upstream.id
            site.upstream_snapshot = match.upstream.snapshot()
            site.updated_at = datetime.now(timezone.utc)
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("Failed to repair external id of site %s: %s", site.id, exc)
            continue
        updated += 1
        logger.info(
            "Site %s (%s): external id %r -> %r (matched by %s)",
            site.id, site.name or "unnamed", old_id, match.upstream.id, match.match_type,
        )

    logger.info("External id repair complete: %d site(s) updated", updated)
    return updated
