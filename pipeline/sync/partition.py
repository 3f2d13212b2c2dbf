"""
Partition Planner — which slice of the site population one invocation owns.

Pure functions over integers; no I/O.
"""

import math
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class PartitionPlan:
    total_sites: int
    start: int
    end: int
    remaining: int
    is_complete: bool
    next_offset: int

    @property
    def size(self) -> int:
        return self.end - self.start

    def total_batches(self, batch_size: int) -> int:
        return math.ceil(self.size / batch_size) if self.size else 0

    def as_dict(self) -> dict:
        return {
            "total_sites": self.total_sites,
            "processed_offset": self.start,
            "processed_count": self.size,
            "remaining_sites": self.remaining,
            "is_complete": self.is_complete,
            "next_offset": self.next_offset,
        }


def plan_partition(total_sites: int, offset: int, max_per_run: int) -> PartitionPlan:
    """
    Slice [offset, min(offset + max_per_run, total_sites)).

    When the slice reaches the end of the population the plan is complete and
    the next invocation wraps back to offset 0. An offset at or past the end
    yields an empty, complete slice.
    """
    if total_sites < 0:
        raise ValueError("total_sites must not be negative")
    if offset < 0:
        raise ValueError("offset must not be negative")
    if max_per_run <= 0:
        raise ValueError("max_per_run must be positive")

    if offset >= total_sites:
        return PartitionPlan(
            total_sites=total_sites,
            start=total_sites,
            end=total_sites,
            remaining=0,
            is_complete=True,
            next_offset=0,
        )

    end = min(offset + max_per_run, total_sites)
    is_complete = end >= total_sites
    return PartitionPlan(
        total_sites=total_sites,
        start=offset,
        end=end,
        remaining=total_sites - end,
        is_complete=is_complete,
        next_offset=0 if is_complete else end,
    )


def resolve_offset(configured_offset: Optional[int], checkpoint=None) -> int:
    """Explicit offset wins; else the checkpoint's next_offset; else 0."""
    if configured_offset is not None:
        return configured_offset
    if checkpoint is not None and checkpoint.next_offset is not None:
        return max(0, int(checkpoint.next_offset))
    return 0
