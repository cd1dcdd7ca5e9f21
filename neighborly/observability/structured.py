"""
Per-run structured event logging for digest runs.

A RunLogger is created by the scheduler (or the direct-invocation service)
for one community run and handed explicitly to every stage. Each event is a
one-line JSON record correlated by run id and community id.

Usage:
    from neighborly.observability.structured import EventType, RunLogger

    run_log = RunLogger(run_id="20261018_090000", community_id="c-1")
    run_log.log_event(EventType.SOURCE_FETCH_ERROR, kind="skill_listed", error="timeout")

Output:
    {"ts":"2026-10-18T09:00:00.123+00:00","level":"ERROR","run":"20261018_090000","community":"c-1","event":"source_fetch_error","kind":"skill_listed","error":"timeout"}
"""

from __future__ import annotations

import json
import logging
import uuid
from datetime import UTC, date, datetime
from enum import Enum
from typing import Any

logger = logging.getLogger("neighborly.structured")


class EventType(str, Enum):
    """Event taxonomy across the digest stages"""

    # 1. Scheduling
    RUN_START = "run_start"
    RUN_SKIPPED = "run_skipped"
    RUN_OK = "run_ok"
    RUN_ERROR = "run_error"
    MARKER_SAVED = "marker_saved"
    MARKER_SAVE_ERROR = "marker_save_error"

    # 2. Aggregation
    SOURCE_FETCH_OK = "source_fetch_ok"
    SOURCE_FETCH_ERROR = "source_fetch_error"
    ROSTER_FETCH_ERROR = "roster_fetch_error"
    AGGREGATION_DONE = "aggregation_done"

    # 3. Grouping
    GROUPING_DONE = "grouping_done"

    # 4. Synthesis
    LLM_CALL_START = "llm_call_start"
    LLM_CALL_OK = "llm_call_ok"
    LLM_CALL_ERROR = "llm_call_error"
    LLM_PARSE_ERROR = "llm_parse_error"
    LLM_SKIPPED = "llm_skipped"
    LLM_FALLBACK_INVOKED = "llm_fallback_invoked"

    # 5. Linking
    LINK_UNRESOLVED = "link_unresolved"
    LINK_UNKNOWN_KIND = "link_unknown_kind"

    # 6. Dispatch
    DISPATCH_START = "dispatch_start"
    SEND_OK = "send_ok"
    SEND_ERROR = "send_error"
    DISPATCH_DONE = "dispatch_done"


EVENT_SEVERITY = {
    EventType.RUN_START: logging.INFO,
    EventType.RUN_SKIPPED: logging.INFO,
    EventType.RUN_OK: logging.INFO,
    EventType.RUN_ERROR: logging.ERROR,
    EventType.MARKER_SAVED: logging.INFO,
    EventType.MARKER_SAVE_ERROR: logging.WARNING,
    EventType.SOURCE_FETCH_OK: logging.DEBUG,
    EventType.SOURCE_FETCH_ERROR: logging.ERROR,
    EventType.ROSTER_FETCH_ERROR: logging.WARNING,
    EventType.AGGREGATION_DONE: logging.INFO,
    EventType.GROUPING_DONE: logging.DEBUG,
    EventType.LLM_CALL_START: logging.DEBUG,
    EventType.LLM_CALL_OK: logging.INFO,
    EventType.LLM_CALL_ERROR: logging.ERROR,
    EventType.LLM_PARSE_ERROR: logging.WARNING,
    EventType.LLM_SKIPPED: logging.INFO,
    EventType.LLM_FALLBACK_INVOKED: logging.WARNING,
    EventType.LINK_UNRESOLVED: logging.DEBUG,
    EventType.LINK_UNKNOWN_KIND: logging.WARNING,
    EventType.DISPATCH_START: logging.INFO,
    EventType.SEND_OK: logging.DEBUG,
    EventType.SEND_ERROR: logging.ERROR,
    EventType.DISPATCH_DONE: logging.INFO,
}


class SafeJSONEncoder(json.JSONEncoder):
    """JSON encoder that handles common non-serializable types."""

    def default(self, obj: Any) -> Any:
        if isinstance(obj, (datetime, date)):
            return obj.isoformat()
        if isinstance(obj, Enum):
            return obj.value
        if hasattr(obj, "__dict__"):
            return str(obj)
        return super().default(obj)


def new_run_id() -> str:
    """Generate run ID: YYYYMMDD_HHMMSS_<6 hex>"""
    return f"{datetime.now(UTC).strftime('%Y%m%d_%H%M%S')}_{uuid.uuid4().hex[:6]}"


class RunLogger:
    """
    Structured event logger scoped to one community run.

    Events are also kept in memory (``events``) so the caller can inspect
    what happened without parsing log output.
    """

    def __init__(self, community_id: str, run_id: str | None = None):
        self.run_id = run_id or new_run_id()
        self.community_id = community_id
        self.events: list[dict[str, Any]] = []

    def log_event(self, event_type: EventType, **kwargs: Any) -> None:
        """
        Log a structured event

        Side Effects:
            - Writes one-line JSON entry to the "neighborly.structured" logger
            - Appends the event payload to self.events
        """
        severity = EVENT_SEVERITY.get(event_type, logging.INFO)

        event: dict[str, Any] = {
            "ts": datetime.now(UTC).isoformat(),
            "level": logging.getLevelName(severity),
            "run": self.run_id,
            "community": self.community_id,
            "event": event_type.value,
        }

        for key, value in kwargs.items():
            if isinstance(value, str) and len(value) > 200:
                event[key] = value[:200] + "..."
            else:
                event[key] = value

        self.events.append(event)

        try:
            json_line = json.dumps(event, separators=(",", ":"), cls=SafeJSONEncoder)
            logger.log(severity, json_line)
        except Exception as e:
            logger.error(
                f"structured_log_error: failed to serialize event type={event_type} error={e}"
            )

    def events_of(self, event_type: EventType) -> list[dict[str, Any]]:
        return [e for e in self.events if e["event"] == event_type.value]
