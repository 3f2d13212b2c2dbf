"""
Checkpoint Store — cross-invocation progress for a partitioned job.

One row per job id. upsert() overwrites (last write wins, no merge, no
compare-and-swap). The row is advisory: it tells the next invocation where
to resume, while the writer's idempotency key keeps duplicates out.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from sqlalchemy.orm import Session

from api.models.db_models import JobCheckpoint

logger = logging.getLogger(__name__)

CHECKPOINT_FIELDS = (
    "last_run_time",
    "last_offset",
    "next_offset",
    "total_sites",
    "batches_completed",
    "total_batches",
    "is_fully_complete",
    "stats",
)


@dataclass
class Checkpoint:
    job_id: str
    last_run_time: Optional[datetime] = None
    last_offset: int = 0
    next_offset: int = 0
    total_sites: int = 0
    batches_completed: int = 0
    total_batches: int = 0
    is_fully_complete: bool = False
    stats: Dict[str, Any] = field(default_factory=dict)

    @property
    def state(self) -> str:
        """NOT_STARTED / IN_PROGRESS / COMPLETE, derived from the stored fields."""
        if self.last_run_time is None:
            return "NOT_STARTED"
        return "COMPLETE" if self.is_fully_complete else "IN_PROGRESS"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "state": self.state,
            "last_run_time": self.last_run_time.isoformat() if self.last_run_time else None,
            "last_offset": self.last_offset,
            "next_offset": self.next_offset,
            "total_sites": self.total_sites,
            "batches_completed": self.batches_completed,
            "total_batches": self.total_batches,
            "is_fully_complete": self.is_fully_complete,
            "stats": self.stats,
        }

    @classmethod
    def from_row(cls, row: JobCheckpoint) -> "Checkpoint":
        return cls(
            job_id=row.job_id,
            last_run_time=row.last_run_time,
            last_offset=row.last_offset or 0,
            next_offset=row.next_offset or 0,
            total_sites=row.total_sites or 0,
            batches_completed=row.batches_completed or 0,
            total_batches=row.total_batches or 0,
            is_fully_complete=bool(row.is_fully_complete),
            stats=dict(row.stats or {}),
        )


def read_checkpoint(db: Session, job_id: str) -> Optional[Checkpoint]:
    row = db.get(JobCheckpoint, job_id)
    return Checkpoint.from_row(row) if row is not None else None


def upsert_checkpoint(db: Session, job_id: str, **fields) -> Checkpoint:
    """Overwrite the given fields of the job's row, creating it if absent."""
    unknown = set(fields) - set(CHECKPOINT_FIELDS)
    if unknown:
        raise ValueError(f"Unknown checkpoint field(s): {sorted(unknown)}")

    row = db.get(JobCheckpoint, job_id)
    if row is None:
        row = JobCheckpoint(job_id=job_id)
        db.add(row)
    for name, value in fields.items():
        setattr(row, name, value)
    row.updated_at = datetime.now(timezone.utc)
    db.commit()
    return Checkpoint.from_row(row)


class CheckpointStore:
    """Session-per-call wrapper around read_checkpoint / upsert_checkpoint."""

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def read(self, job_id: str) -> Optional[Checkpoint]:
        with self._session_factory() as db:
            return read_checkpoint(db, job_id)

    def upsert(self, job_id: str, **fields) -> Checkpoint:
        with self._session_factory() as db:
            checkpoint = upsert_checkpoint(db, job_id, **fields)
        logger.debug(
            "Checkpoint %s: next_offset=%s batches=%s/%s complete=%s",
            job_id, checkpoint.next_offset, checkpoint.batches_completed,
            checkpoint.total_batches, checkpoint.is_fully_complete,
        )
        return checkpoint
