"""
Activity aggregation for one community week.

Fetches the five activity kinds from the activity source, normalizes each raw
row into an ActivityRecord and merges them into one sequence ordered by
created_at (newest first). Every ActivityKind has exactly one normalizer;
adding a kind without one fails at import time.

Windows:
    - event_created, skill_listed, group_created, member_joined use the
      creation timestamp within [start, end)
    - event_upcoming uses the scheduled start within [end, end + window)
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

from neighborly.config import DIGEST_WINDOW_DAYS
from neighborly.contracts.collaborators import ActivitySource
from neighborly.contracts.models import (
    ActivityKind,
    ActivityRecord,
    AggregatedActivity,
    ensure_utc,
)
from neighborly.digest.errors import AggregationError
from neighborly.observability.logging import get_logger
from neighborly.observability.structured import EventType, RunLogger
from neighborly.observability.telemetry import counter, time_block

logger = get_logger(__name__)


def parse_timestamp(value: Any) -> datetime:
    """Accept datetimes or ISO-8601 strings; always return aware UTC."""
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, str) and value:
        return ensure_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
    raise ValueError(f"Not a timestamp: {value!r}")


def member_fallback_name(user_id: str) -> str:
    return f"New Neighbor ({user_id[:8]})"


def owner_fallback_name(user_id: str) -> str:
    return f"Neighbor {user_id[:8]}"


def _is_deleted(row: dict[str, Any]) -> bool:
    return bool(row.get("deleted") or row.get("is_deleted") or row.get("deleted_at"))


def _event_metadata(row: dict[str, Any]) -> dict[str, Any]:
    actor_id = str(row["created_by"])
    return {
        "title": row.get("title") or "Untitled event",
        "starts_at": parse_timestamp(row["start_time"]),
        "attendee_count": int(row.get("attendee_count") or 0),
        "description": row.get("description"),
        "actor_name": row.get("creator_name") or owner_fallback_name(actor_id),
        "deleted": _is_deleted(row),
    }


def _normalize_event_created(row: dict[str, Any]) -> ActivityRecord:
    return ActivityRecord(
        id=f"{ActivityKind.EVENT_CREATED.value}:{row['id']}",
        actor_id=str(row["created_by"]),
        kind=ActivityKind.EVENT_CREATED,
        content_id=str(row["id"]),
        created_at=parse_timestamp(row["created_at"]),
        metadata=_event_metadata(row),
    )


def _normalize_event_upcoming(row: dict[str, Any]) -> ActivityRecord:
    return ActivityRecord(
        id=f"{ActivityKind.EVENT_UPCOMING.value}:{row['id']}",
        actor_id=str(row["created_by"]),
        kind=ActivityKind.EVENT_UPCOMING,
        content_id=str(row["id"]),
        created_at=parse_timestamp(row["created_at"]),
        metadata=_event_metadata(row),
    )


def _normalize_skill_listed(row: dict[str, Any]) -> ActivityRecord:
    owner_id = str(row["user_id"])
    return ActivityRecord(
        id=f"{ActivityKind.SKILL_LISTED.value}:{row['id']}",
        actor_id=owner_id,
        kind=ActivityKind.SKILL_LISTED,
        content_id=str(row["id"]),
        created_at=parse_timestamp(row["created_at"]),
        metadata={
            "title": row.get("title") or "Untitled skill",
            "category": row.get("category"),
            "request_type": row.get("request_type") or "offer",
            "description": row.get("description"),
            "actor_name": row.get("owner_name") or owner_fallback_name(owner_id),
            "deleted": _is_deleted(row),
        },
    )


def _normalize_group_created(row: dict[str, Any]) -> ActivityRecord:
    creator_id = str(row["created_by"])
    return ActivityRecord(
        id=f"{ActivityKind.GROUP_CREATED.value}:{row['id']}",
        actor_id=creator_id,
        kind=ActivityKind.GROUP_CREATED,
        content_id=str(row["id"]),
        created_at=parse_timestamp(row["created_at"]),
        metadata={
            "title": row.get("name") or "Untitled group",
            "group_type": row.get("group_type"),
            "unit": row.get("unit"),
            "description": row.get("description"),
            "actor_name": row.get("creator_name") or owner_fallback_name(creator_id),
            "deleted": _is_deleted(row),
        },
    )


def _normalize_member_joined(row: dict[str, Any]) -> ActivityRecord:
    user_id = str(row["user_id"])
    name = row.get("name") or row.get("display_name") or member_fallback_name(user_id)
    return ActivityRecord(
        id=f"{ActivityKind.MEMBER_JOINED.value}:{user_id}",
        actor_id=user_id,
        kind=ActivityKind.MEMBER_JOINED,
        content_id=user_id,
        created_at=parse_timestamp(row.get("joined_at") or row["created_at"]),
        metadata={"title": name, "actor_name": name, "deleted": _is_deleted(row)},
    )


NORMALIZERS: dict[ActivityKind, Callable[[dict[str, Any]], ActivityRecord]] = {
    ActivityKind.EVENT_CREATED: _normalize_event_created,
    ActivityKind.EVENT_UPCOMING: _normalize_event_upcoming,
    ActivityKind.SKILL_LISTED: _normalize_skill_listed,
    ActivityKind.GROUP_CREATED: _normalize_group_created,
    ActivityKind.MEMBER_JOINED: _normalize_member_joined,
}

_missing = set(ActivityKind) - set(NORMALIZERS)
if _missing:
    raise RuntimeError(f"Activity kinds without a normalizer: {sorted(k.value for k in _missing)}")


def normalize(kind: ActivityKind, row: dict[str, Any]) -> ActivityRecord:
    """Normalize one raw row of the given kind."""
    return NORMALIZERS[kind](row)


class ActivityAggregator:
    """Collects and normalizes a trailing week of activity for one community."""

    def __init__(self, source: ActivitySource, window_days: int = DIGEST_WINDOW_DAYS):
        self.source = source
        self.window = timedelta(days=window_days)

    def window_for(self, end: datetime) -> tuple[datetime, datetime]:
        end = ensure_utc(end)
        return end - self.window, end

    def aggregate(
        self, community_id: str, end: datetime, run_log: RunLogger
    ) -> AggregatedActivity:
        """
        Fetch and normalize all activity kinds for the week ending at `end`.

        Raises:
            AggregationError: If every source fails
        """
        start, end = self.window_for(end)
        result = AggregatedActivity(community_id=community_id, window_start=start, window_end=end)

        with time_block("digest.aggregate.latency"):
            for kind in ActivityKind:
                fetch_start, fetch_end = self._fetch_window(kind, start, end)
                try:
                    rows = self.source.fetch(community_id, kind, fetch_start, fetch_end)
                except Exception as e:
                    logger.exception("Activity source failed for %s (%s)", kind.value, community_id)
                    counter(f"digest.source.{kind.value}.error")
                    run_log.log_event(EventType.SOURCE_FETCH_ERROR, kind=kind.value, error=str(e))
                    result.failed_kinds.append(kind)
                    continue

                records = self._normalize_rows(kind, rows, fetch_start, fetch_end)
                run_log.log_event(EventType.SOURCE_FETCH_OK, kind=kind.value, count=len(records))
                result.records.extend(records)

            if len(result.failed_kinds) == len(ActivityKind):
                raise AggregationError(f"All activity sources failed for community {community_id}")

            result.records.sort(key=lambda r: r.created_at, reverse=True)
            result.roster = self._fetch_roster(community_id, run_log)

        run_log.log_event(
            EventType.AGGREGATION_DONE,
            records=len(result.records),
            roster=len(result.roster),
            failed_kinds=[k.value for k in result.failed_kinds],
        )
        return result

    def _fetch_window(
        self, kind: ActivityKind, start: datetime, end: datetime
    ) -> tuple[datetime, datetime]:
        if kind is ActivityKind.EVENT_UPCOMING:
            return end, end + self.window
        return start, end

    def _normalize_rows(
        self,
        kind: ActivityKind,
        rows: list[dict[str, Any]],
        start: datetime,
        end: datetime,
    ) -> list[ActivityRecord]:
        records: list[ActivityRecord] = []
        for row in rows:
            try:
                record = normalize(kind, row)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping malformed %s row: %s", kind.value, e)
                counter(f"digest.source.{kind.value}.malformed")
                continue

            if record.metadata.get("deleted"):
                continue

            moment = (
                record.metadata["starts_at"]
                if kind is ActivityKind.EVENT_UPCOMING
                else record.created_at
            )
            if not start <= moment < end:
                continue
            records.append(record)
        return records

    def _fetch_roster(self, community_id: str, run_log: RunLogger) -> list[ActivityRecord]:
        """Active skill listings; a failure yields an empty roster."""
        try:
            rows = self.source.active_skills(community_id)
        except Exception as e:
            logger.warning("Active skills fetch failed for %s: %s", community_id, e)
            run_log.log_event(EventType.ROSTER_FETCH_ERROR, error=str(e))
            return []

        roster: list[ActivityRecord] = []
        for row in rows:
            try:
                record = normalize(ActivityKind.SKILL_LISTED, row)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping malformed skill listing: %s", e)
                continue
            if not record.metadata.get("deleted"):
                roster.append(record)
        return roster
