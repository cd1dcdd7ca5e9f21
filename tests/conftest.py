"""
Pytest configuration for digest tests

Provides in-memory collaborators (activity source, recipient directory,
community store, synthesis service, email sender) and row builders shared
across unit and integration tests.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from neighborly.contracts.models import (
    ActivityKind,
    Community,
    DigestBrief,
    DigestStats,
    EventSummary,
    GroupSummary,
    NeighborRef,
    PersonSkills,
    Recipient,
    RenderedMessage,
    SkillSummary,
)
from neighborly.digest.urls import DigestLinkBuilder
from neighborly.observability import telemetry
from neighborly.observability.structured import RunLogger

BASE_URL = "https://neighborhoodos.com"

# Sunday Oct 18 2026, 09:00 UTC
NOW = datetime(2026, 10, 18, 9, 0, tzinfo=UTC)


# ============================================================================
# Row builders
# ============================================================================


def iso(moment: datetime) -> str:
    return moment.isoformat()


def event_row(
    event_id: str,
    created_by: str,
    created_at: datetime,
    start_time: datetime,
    title: str = "Block party",
    attendee_count: int = 0,
    creator_name: str | None = "Maria Lopez",
    **extra: Any,
) -> dict[str, Any]:
    return {
        "id": event_id,
        "created_by": created_by,
        "created_at": iso(created_at),
        "start_time": iso(start_time),
        "title": title,
        "attendee_count": attendee_count,
        "creator_name": creator_name,
        **extra,
    }


def skill_row(
    skill_id: str,
    user_id: str,
    created_at: datetime,
    title: str = "Guitar lessons",
    owner_name: str | None = "Sam Okafor",
    request_type: str = "offer",
    category: str | None = "music",
    **extra: Any,
) -> dict[str, Any]:
    return {
        "id": skill_id,
        "user_id": user_id,
        "created_at": iso(created_at),
        "title": title,
        "owner_name": owner_name,
        "request_type": request_type,
        "category": category,
        **extra,
    }


def group_row(
    group_id: str,
    created_by: str,
    created_at: datetime,
    name: str = "Garden Club",
    creator_name: str | None = "Priya Shah",
    **extra: Any,
) -> dict[str, Any]:
    return {
        "id": group_id,
        "created_by": created_by,
        "created_at": iso(created_at),
        "name": name,
        "group_type": "interest",
        "creator_name": creator_name,
        **extra,
    }


def member_row(
    user_id: str, joined_at: datetime, name: str | None = "Alex Kim", **extra: Any
) -> dict[str, Any]:
    return {"user_id": user_id, "joined_at": iso(joined_at), "name": name, **extra}


# ============================================================================
# Fake collaborators
# ============================================================================

# Raw row timestamp field the fake filters on, per kind
_FETCH_FIELD = {
    ActivityKind.EVENT_CREATED: "created_at",
    ActivityKind.EVENT_UPCOMING: "start_time",
    ActivityKind.SKILL_LISTED: "created_at",
    ActivityKind.GROUP_CREATED: "created_at",
    ActivityKind.MEMBER_JOINED: "joined_at",
}


@dataclass
class FakeActivitySource:
    """ActivitySource over in-memory rows; can fail per kind."""

    events: list[dict[str, Any]] = field(default_factory=list)
    skills: list[dict[str, Any]] = field(default_factory=list)
    groups: list[dict[str, Any]] = field(default_factory=list)
    members: list[dict[str, Any]] = field(default_factory=list)
    roster: list[dict[str, Any]] | None = None
    failing_kinds: set[ActivityKind] = field(default_factory=set)
    roster_fails: bool = False
    unfiltered: bool = False
    calls: list[tuple[ActivityKind, datetime, datetime]] = field(default_factory=list)

    def _rows(self, kind: ActivityKind) -> list[dict[str, Any]]:
        if kind in (ActivityKind.EVENT_CREATED, ActivityKind.EVENT_UPCOMING):
            return self.events
        if kind is ActivityKind.SKILL_LISTED:
            return self.skills
        if kind is ActivityKind.GROUP_CREATED:
            return self.groups
        return self.members

    def fetch(
        self, community_id: str, kind: ActivityKind, start: datetime, end: datetime
    ) -> list[dict[str, Any]]:
        self.calls.append((kind, start, end))
        if kind in self.failing_kinds:
            raise ConnectionError(f"{kind.value} source unavailable")
        rows = [dict(r) for r in self._rows(kind)]
        if self.unfiltered:
            return rows
        key = _FETCH_FIELD[kind]
        return [
            r for r in rows if start <= datetime.fromisoformat(r.get(key) or r["created_at"]) < end
        ]

    def active_skills(self, community_id: str) -> list[dict[str, Any]]:
        if self.roster_fails:
            raise ConnectionError("skills roster unavailable")
        rows = self.skills if self.roster is None else self.roster
        return [dict(r) for r in rows]


@dataclass
class FakeRecipientDirectory:
    by_community: dict[str, list[Recipient]] = field(default_factory=dict)
    fails: bool = False

    def recipients(self, community_id: str) -> list[Recipient]:
        if self.fails:
            raise ConnectionError("directory unavailable")
        return list(self.by_community.get(community_id, []))


@dataclass
class FakeCommunityStore:
    communities: list[Community] = field(default_factory=list)
    mark_fails: bool = False
    marks: list[tuple[str, datetime]] = field(default_factory=list)

    def list_communities(self) -> list[Community]:
        return list(self.communities)

    def get(self, community_id: str) -> Community | None:
        for community in self.communities:
            if community.id == community_id:
                return community
        return None

    def mark_digest_sent(self, community_id: str, sent_at: datetime) -> None:
        if self.mark_fails:
            raise OSError("marker write failed")
        self.marks.append((community_id, sent_at))
        for community in self.communities:
            if community.id == community_id:
                community.last_digest_sent = sent_at


@dataclass
class FakeSynthesisService:
    """Returns scripted replies in order; raises when the script holds an exception."""

    replies: list[Any] = field(default_factory=list)
    prompts: list[str] = field(default_factory=list)

    def synthesize(self, prompt: str) -> str:
        self.prompts.append(prompt)
        reply = self.replies.pop(0) if self.replies else "{}"
        if isinstance(reply, Exception):
            raise reply
        return reply


@dataclass
class FakeEmailSender:
    """Records sends; fails on the given 0-based call indexes."""

    fail_on: set[int] = field(default_factory=set)
    missing_id_on: set[int] = field(default_factory=set)
    sent: list[tuple[str, RenderedMessage]] = field(default_factory=list)
    attempts: int = 0

    def send(self, recipient: Recipient, message: RenderedMessage) -> str | None:
        index = self.attempts
        self.attempts += 1
        if index in self.fail_on:
            raise ConnectionError(f"provider refused {recipient.email}")
        self.sent.append((recipient.email, message))
        if index in self.missing_id_on:
            return None
        return f"msg_{index}"


class TimestampingSender(FakeEmailSender):
    """Records the monotonic start of every send and whether two sends overlapped."""

    def __init__(self):
        super().__init__()
        self.started: list[float] = []
        self.in_flight = 0
        self.overlapped = False
        self._guard = threading.Lock()

    def send(self, recipient: Recipient, message: RenderedMessage) -> str | None:
        with self._guard:
            self.in_flight += 1
            self.overlapped = self.overlapped or self.in_flight > 1
            self.started.append(time.monotonic())
        try:
            time.sleep(0.001)
            return super().send(recipient, message)
        finally:
            with self._guard:
                self.in_flight -= 1


def min_gap(timestamps: list[float]) -> float:
    ordered = sorted(timestamps)
    return min(b - a for a, b in zip(ordered, ordered[1:], strict=False))


@dataclass
class SleepRecorder:
    """Fake sleep that advances its own clock; pass `clock` as the clock_fn."""

    calls: list[float] = field(default_factory=list)
    now: float = 0.0

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        self.now += seconds

    def clock(self) -> float:
        return self.now


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture(autouse=True)
def reset_telemetry():
    """Counters are process-global; start every test from zero."""
    telemetry.reset()
    yield
    telemetry.reset()


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def links() -> DigestLinkBuilder:
    return DigestLinkBuilder(BASE_URL)


@pytest.fixture
def run_log() -> RunLogger:
    return RunLogger(community_id="c-1", run_id="test_run")


@pytest.fixture
def community() -> Community:
    return Community(id="c-1", name="Maple Heights", timezone="UTC", digest_weekday=6)


@pytest.fixture
def recipients() -> list[Recipient]:
    return [
        Recipient(email="ana@example.com", name="Ana"),
        Recipient(email="ben@example.com", name="Ben"),
        Recipient(email="cy@example.com", name="Cy"),
    ]


@pytest.fixture
def busy_source(now: datetime) -> FakeActivitySource:
    """A week with a new member, a new group, an event and two skills."""
    return FakeActivitySource(
        events=[
            event_row(
                "e-1",
                "u-maria",
                created_at=now - timedelta(days=2),
                start_time=now + timedelta(days=3),
                title="Fall potluck",
                attendee_count=3,
            ),
        ],
        skills=[
            skill_row("s-1", "u-sam", now - timedelta(days=1), title="Guitar lessons"),
            skill_row(
                "s-2",
                "u-sam",
                now - timedelta(days=1) + timedelta(seconds=20),
                title="Ukulele basics",
            ),
        ],
        groups=[group_row("g-1", "u-priya", now - timedelta(days=4))],
        members=[member_row("u-alex", now - timedelta(days=5))],
    )


def make_brief(**overrides: Any) -> DigestBrief:
    """Brief for Maple Heights with one neighbor, one group, one event and a skills roster."""
    data: dict[str, Any] = {
        "community_id": "c-1",
        "community_name": "Maple Heights",
        "timezone": "UTC",
        "week_start": NOW - timedelta(days=7),
        "week_end": NOW,
        "new_neighbors": [NeighborRef(id="u-alex", name="Alex Kim")],
        "new_groups": [
            GroupSummary(
                id="g-1", name="Garden Club", creator_id="u-priya", creator_name="Priya Shah"
            )
        ],
        "recent_events": [
            EventSummary(id="e-1", title="Fall potluck", date_label="Wed, Oct 21 at 9:00 AM")
        ],
        "upcoming_events": [
            EventSummary(
                id="e-1",
                title="Fall potluck",
                date_label="Wed, Oct 21 at 9:00 AM",
                attendee_count=3,
            )
        ],
        "skills_by_person": [
            PersonSkills(
                id="u-sam",
                name="Sam Okafor",
                skills=[SkillSummary(id="s-1", title="Guitar lessons", category="music")],
            )
        ],
        "stats": DigestStats(
            new_members=1, new_groups=1, upcoming_events=1, recent_events=1, active_skills=1
        ),
    }
    data.update(overrides)
    return DigestBrief(**data)


@pytest.fixture
def brief() -> DigestBrief:
    return make_brief()


@pytest.fixture
def quiet_brief() -> DigestBrief:
    """No new neighbors, groups or events; skills still listed."""
    return make_brief(
        new_neighbors=[],
        new_groups=[],
        recent_events=[],
        upcoming_events=[],
        stats=DigestStats(active_skills=1),
    )
