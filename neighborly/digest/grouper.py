"""
Collapses near-duplicate activities into groups.

Records by the same actor with the same kind whose timestamps are within the
merge threshold of a seed record are merged into one GroupedActivity. Matching
is relative to the seed only and happens in a single pass, so A~B and B~C
does not pull C into A's group when A and C are further apart.

Key: ActivityGrouper.group() walks records in order, each unprocessed record
becoming a seed.
"""

from __future__ import annotations

from datetime import datetime

from neighborly.config import GROUPING_MERGE_THRESHOLD_SECONDS
from neighborly.contracts.models import (
    ActivityGroup,
    ActivityRecord,
    GroupedActivity,
    SingleActivity,
)
from neighborly.observability.logging import get_logger
from neighborly.observability.structured import EventType, RunLogger

logger = get_logger(__name__)


class ActivityGrouper:
    def __init__(self, merge_threshold_seconds: float = GROUPING_MERGE_THRESHOLD_SECONDS):
        self.merge_threshold_seconds = merge_threshold_seconds

    def _matches(self, seed: ActivityRecord, other: ActivityRecord) -> bool:
        if other.actor_id != seed.actor_id or other.kind is not seed.kind:
            return False
        delta = abs((other.created_at - seed.created_at).total_seconds())
        return delta <= self.merge_threshold_seconds

    def group(
        self,
        records: list[ActivityRecord],
        start: datetime | None = None,
        end: datetime | None = None,
        run_log: RunLogger | None = None,
    ) -> list[ActivityGroup]:
        """
        Group records, optionally restricted to created_at in [start, end).

        Output order follows the seeds' input order; grouped records keep
        their input order with the seed first.
        """
        in_window = [
            r
            for r in records
            if (start is None or r.created_at >= start) and (end is None or r.created_at < end)
        ]

        processed: set[int] = set()
        groups: list[ActivityGroup] = []

        for i, seed in enumerate(in_window):
            if i in processed:
                continue
            processed.add(i)

            matches: list[ActivityRecord] = []
            for j in range(len(in_window)):
                if j in processed:
                    continue
                if self._matches(seed, in_window[j]):
                    matches.append(in_window[j])
                    processed.add(j)

            if matches:
                groups.append(GroupedActivity(records=[seed, *matches]))
            else:
                groups.append(SingleActivity(record=seed))

        grouped_count = sum(1 for g in groups if isinstance(g, GroupedActivity))
        logger.debug(
            "Grouped %d records into %d groups (%d merged)",
            len(in_window),
            len(groups),
            grouped_count,
        )
        if run_log is not None:
            run_log.log_event(
                EventType.GROUPING_DONE,
                records=len(in_window),
                groups=len(groups),
                merged=grouped_count,
            )
        return groups
