"""
Digest domain models.

Community and Recipient are long-lived and owned by collaborators. Everything
from ActivityRecord to DispatchResult lives within a single digest run.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from neighborly.config import DIGEST_DEFAULT_WEEKDAY


def utc_now() -> datetime:
    """Return current UTC time as a timezone-aware datetime."""
    return datetime.now(UTC)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


# ============================================================================
# Long-lived entities
# ============================================================================


class Community(BaseModel):
    """A neighborhood that receives a weekly digest."""

    model_config = ConfigDict(frozen=False)

    id: str = Field(..., description="Community identifier")
    name: str = Field(..., description="Display name used in the subject and header")
    timezone: str = Field(default="UTC", description="IANA timezone name")
    digest_weekday: int = Field(
        default=DIGEST_DEFAULT_WEEKDAY,
        description="Local weekday the digest goes out (0=Monday ... 6=Sunday)",
    )
    last_digest_sent: datetime | None = Field(
        default=None, description="Dedup marker: instant of the last scheduled send"
    )

    @field_validator("digest_weekday")
    @classmethod
    def _weekday_in_range(cls, value: int) -> int:
        if not 0 <= value <= 6:
            raise ValueError(f"digest_weekday must be 0-6, got {value}")
        return value

    @field_validator("last_digest_sent")
    @classmethod
    def _marker_is_utc(cls, value: datetime | None) -> datetime | None:
        return ensure_utc(value) if value is not None else None


class Recipient(BaseModel):
    """A subscriber of a community digest."""

    email: str = Field(default="", description="Destination address")
    name: str = Field(default="Neighbor", description="Greeting name")
    digest_opt_in: bool = Field(default=True, description="Weekly digest preference")

    @property
    def is_eligible(self) -> bool:
        return self.digest_opt_in and bool(self.email and self.email.strip())


# ============================================================================
# Activity
# ============================================================================


class ActivityKind(str, Enum):
    """Closed set of activity kinds the digest understands."""

    EVENT_CREATED = "event_created"
    EVENT_UPCOMING = "event_upcoming"
    SKILL_LISTED = "skill_listed"
    GROUP_CREATED = "group_created"
    MEMBER_JOINED = "member_joined"


class ActivityRecord(BaseModel):
    """One normalized activity row."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description='"<kind>:<content_id>"')
    actor_id: str = Field(..., description="User who performed the activity")
    kind: ActivityKind
    content_id: str = Field(..., description="Identifier of the event/skill/group/member")
    created_at: datetime = Field(..., description="Aware UTC timestamp")
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("created_at")
    @classmethod
    def _created_at_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @property
    def title(self) -> str:
        return str(self.metadata.get("title") or "")

    @property
    def actor_name(self) -> str:
        return str(self.metadata.get("actor_name") or "")


def activity_group_id(actor_id: str, kind: ActivityKind) -> str:
    """Stable id for a grouped activity; depends only on actor and kind."""
    digest = hashlib.sha256(f"{actor_id}:{kind.value}".encode()).hexdigest()
    return f"grp_{digest[:16]}"


# Singular phrase (with title) and plural verb/noun per kind
_SUMMARY_PHRASES: dict[ActivityKind, tuple[str, str]] = {
    ActivityKind.EVENT_CREATED: ("created an event", "created {n} events"),
    ActivityKind.EVENT_UPCOMING: ("has an upcoming event", "has {n} upcoming events"),
    ActivityKind.SKILL_LISTED: ("listed a skill", "listed {n} skills"),
    ActivityKind.GROUP_CREATED: ("started a group", "started {n} groups"),
    ActivityKind.MEMBER_JOINED: ("joined the community", "joined the community"),
}

_missing_phrases = set(ActivityKind) - set(_SUMMARY_PHRASES)
if _missing_phrases:
    raise RuntimeError(f"Activity kinds without summary phrases: {sorted(_missing_phrases)}")


@dataclass(frozen=True)
class SingleActivity:
    """An activity that did not merge with any other."""

    record: ActivityRecord

    @property
    def kind(self) -> ActivityKind:
        return self.record.kind

    @property
    def actor_id(self) -> str:
        return self.record.actor_id

    @property
    def records(self) -> list[ActivityRecord]:
        return [self.record]

    @property
    def primary(self) -> ActivityRecord:
        return self.record

    @property
    def summary(self) -> str:
        phrase, _ = _SUMMARY_PHRASES[self.kind]
        actor = self.record.actor_name or "A neighbor"
        if self.record.title and self.kind is not ActivityKind.MEMBER_JOINED:
            return f"{actor} {phrase}: {self.record.title}"
        return f"{actor} {phrase}"


@dataclass(frozen=True)
class GroupedActivity:
    """Two or more activities by the same actor and kind, close together in time."""

    records: list[ActivityRecord]

    def __post_init__(self) -> None:
        if len(self.records) < 2:
            raise ValueError("GroupedActivity needs at least two records")

    @property
    def kind(self) -> ActivityKind:
        return self.records[0].kind

    @property
    def actor_id(self) -> str:
        return self.records[0].actor_id

    @property
    def primary(self) -> ActivityRecord:
        return self.records[0]

    @property
    def group_id(self) -> str:
        return activity_group_id(self.actor_id, self.kind)

    @property
    def summary(self) -> str:
        _, phrase = _SUMMARY_PHRASES[self.kind]
        actor = self.primary.actor_name or "A neighbor"
        return f"{actor} {phrase.format(n=len(self.records))}"


ActivityGroup = SingleActivity | GroupedActivity


@dataclass
class AggregatedActivity:
    """Output of the aggregator for one community and window."""

    community_id: str
    window_start: datetime
    window_end: datetime
    records: list[ActivityRecord] = field(default_factory=list)
    roster: list[ActivityRecord] = field(default_factory=list)
    failed_kinds: list[ActivityKind] = field(default_factory=list)

    def of_kind(self, kind: ActivityKind) -> list[ActivityRecord]:
        return [r for r in self.records if r.kind is kind]


# ============================================================================
# Digest brief
# ============================================================================


class NeighborRef(BaseModel):
    id: str
    name: str


class GroupSummary(BaseModel):
    id: str
    name: str
    group_type: str | None = None
    creator_id: str | None = None
    creator_name: str | None = None
    unit: str | None = None
    description: str | None = None


class EventSummary(BaseModel):
    id: str
    title: str
    date_label: str
    attendee_count: int = 0


class SkillSummary(BaseModel):
    id: str
    title: str
    category: str | None = None
    request_type: str = "offer"


class PersonSkills(BaseModel):
    id: str
    name: str
    skills: list[SkillSummary] = Field(default_factory=list)


class Highlight(BaseModel):
    """A grouped activity surfaced to the synthesizer and linker."""

    group_id: str
    actor_id: str
    actor_name: str
    kind: ActivityKind
    count: int
    summary: str


class DigestStats(BaseModel):
    new_members: int = 0
    new_groups: int = 0
    upcoming_events: int = 0
    skill_offers: int = 0
    skill_requests: int = 0
    active_skills: int = 0
    recent_events: int = 0

    @property
    def total_activity(self) -> int:
        return (
            self.new_members
            + self.new_groups
            + self.upcoming_events
            + self.recent_events
            + self.skill_offers
            + self.skill_requests
        )


class DigestBrief(BaseModel):
    """Everything the synthesizer and linker know about one community week."""

    community_id: str
    community_name: str
    timezone: str = "UTC"
    week_start: datetime
    week_end: datetime
    new_neighbors: list[NeighborRef] = Field(default_factory=list)
    new_groups: list[GroupSummary] = Field(default_factory=list)
    recent_events: list[EventSummary] = Field(default_factory=list)
    upcoming_events: list[EventSummary] = Field(default_factory=list)
    skills_by_person: list[PersonSkills] = Field(default_factory=list)
    highlights: list[Highlight] = Field(default_factory=list)
    stats: DigestStats = Field(default_factory=DigestStats)

    @property
    def has_new_activity(self) -> bool:
        return bool(self.new_neighbors or self.new_groups or self.recent_events)

    def known_people(self) -> list[NeighborRef]:
        """Every named person in the brief, first occurrence wins."""
        people: dict[str, NeighborRef] = {}
        for neighbor in self.new_neighbors:
            people.setdefault(neighbor.id, neighbor)
        for person in self.skills_by_person:
            people.setdefault(person.id, NeighborRef(id=person.id, name=person.name))
        for group in self.new_groups:
            if group.creator_id and group.creator_name:
                people.setdefault(
                    group.creator_id, NeighborRef(id=group.creator_id, name=group.creator_name)
                )
        for highlight in self.highlights:
            people.setdefault(
                highlight.actor_id, NeighborRef(id=highlight.actor_id, name=highlight.actor_name)
            )
        return list(people.values())


# ============================================================================
# Synthesis and rendering
# ============================================================================


class SynthesizedContent(BaseModel):
    this_week: str | None = None
    week_ahead: str | None = None
    suggestions: list[str] = Field(default_factory=list)
    used_fallback: bool = False


class RenderedMessage(BaseModel):
    subject: str
    html: str
    text: str


# ============================================================================
# Dispatch and reporting
# ============================================================================


class DispatchStatus(str, Enum):
    SENT = "sent"
    FAILED = "failed"


class DispatchResult(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    recipient: str
    status: DispatchStatus
    message_id: str | None = None
    reason: str | None = None


class DispatchSummary(BaseModel):
    sent: int = 0
    failed: int = 0
    results: list[DispatchResult] = Field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"sent": self.sent, "failed": self.failed}


class CommunityStatus(str, Enum):
    SENT = "sent"
    SKIPPED = "skipped"
    ERROR = "error"


class CommunityOutcome(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    community_id: str
    community_name: str
    status: CommunityStatus
    recipient_count: int = 0
    sent: int = 0
    failed: int = 0
    reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "communityId": self.community_id,
            "communityName": self.community_name,
            "status": self.status,
            "recipientCount": self.recipient_count,
            "sent": self.sent,
            "failed": self.failed,
        }
        if self.reason:
            data["reason"] = self.reason
        return data


class RunReport(BaseModel):
    """Result of one scheduler tick."""

    run_id: str
    started_at: datetime = Field(default_factory=utc_now)
    outcomes: list[CommunityOutcome] = Field(default_factory=list)

    @property
    def sent(self) -> int:
        return sum(o.sent for o in self.outcomes)

    @property
    def failed(self) -> int:
        return sum(o.failed for o in self.outcomes)

    @property
    def errors(self) -> dict[str, str]:
        return {
            o.community_id: o.reason or "unknown error"
            for o in self.outcomes
            if o.status == CommunityStatus.ERROR
        }

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"sent": self.sent, "failed": self.failed}
        if self.errors:
            data["perCommunityErrors"] = self.errors
        data["communities"] = [o.to_dict() for o in self.outcomes]
        return data


# ============================================================================
# Direct invocation
# ============================================================================


class DigestMode(str, Enum):
    NORMAL = "normal"
    PREVIEW = "preview"
    DEBUG = "debug"


class DigestRequest(BaseModel):
    """Direct invocation of the digest for one community."""

    model_config = ConfigDict(populate_by_name=True)

    community_id: str = Field(
        ..., validation_alias=AliasChoices("communityId", "community_id"), min_length=1
    )
    test_recipient: str | None = Field(
        default=None, validation_alias=AliasChoices("testRecipient", "test_recipient")
    )
    preview_only: bool = Field(
        default=False, validation_alias=AliasChoices("previewOnly", "preview_only")
    )
    debug: bool = False

    @property
    def mode(self) -> DigestMode:
        if self.debug:
            return DigestMode.DEBUG
        if self.preview_only:
            return DigestMode.PREVIEW
        return DigestMode.NORMAL
