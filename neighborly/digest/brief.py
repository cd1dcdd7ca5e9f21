"""
Reduces aggregated and grouped activity into a DigestBrief.

The brief is the only view of the week the synthesizer and the markup linker
see: names and ids for people, groups, events and skills, plus counts.
"""

from __future__ import annotations

from collections import OrderedDict
from datetime import datetime, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from neighborly.config import BRIEF_MAX_PEOPLE, BRIEF_MAX_SKILLS_PER_PERSON
from neighborly.contracts.models import (
    ActivityGroup,
    ActivityKind,
    ActivityRecord,
    AggregatedActivity,
    Community,
    DigestBrief,
    DigestStats,
    EventSummary,
    GroupedActivity,
    GroupSummary,
    Highlight,
    NeighborRef,
    PersonSkills,
    SkillSummary,
)
from neighborly.observability.logging import get_logger

logger = get_logger(__name__)


def community_zone(name: str) -> tzinfo:
    """Resolve an IANA timezone name; raises ZoneInfoNotFoundError for unknown names."""
    return ZoneInfo(name)


def format_event_date(moment: datetime, zone: tzinfo) -> str:
    """Format like "Sat, Oct 24 at 3:00 PM" in the community's timezone."""
    local = moment.astimezone(zone)
    hour = local.hour % 12 or 12
    meridiem = "AM" if local.hour < 12 else "PM"
    return f"{local.strftime('%a, %b')} {local.day} at {hour}:{local.minute:02d} {meridiem}"


def _event_summary(record: ActivityRecord, zone: tzinfo) -> EventSummary:
    starts_at = record.metadata.get("starts_at") or record.created_at
    return EventSummary(
        id=record.content_id,
        title=record.title,
        date_label=format_event_date(starts_at, zone),
        attendee_count=int(record.metadata.get("attendee_count") or 0),
    )


def _skills_by_person(
    roster: list[ActivityRecord], max_people: int, max_skills: int
) -> list[PersonSkills]:
    by_person: OrderedDict[str, list[ActivityRecord]] = OrderedDict()
    for record in roster:
        by_person.setdefault(record.actor_id, []).append(record)

    ranked = sorted(by_person.items(), key=lambda item: len(item[1]), reverse=True)

    people: list[PersonSkills] = []
    for person_id, records in ranked[:max_people]:
        people.append(
            PersonSkills(
                id=person_id,
                name=records[0].actor_name,
                skills=[
                    SkillSummary(
                        id=r.content_id,
                        title=r.title,
                        category=r.metadata.get("category"),
                        request_type=r.metadata.get("request_type") or "offer",
                    )
                    for r in records[:max_skills]
                ],
            )
        )
    return people


def build_brief(
    community: Community,
    aggregated: AggregatedActivity,
    groups: list[ActivityGroup],
    max_people: int = BRIEF_MAX_PEOPLE,
    max_skills: int = BRIEF_MAX_SKILLS_PER_PERSON,
) -> DigestBrief:
    """Build the brief for one community week."""
    try:
        zone = community_zone(community.timezone)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %r for %s, using UTC", community.timezone, community.id)
        zone = ZoneInfo("UTC")

    start, end = aggregated.window_start, aggregated.window_end
    this_week = [r for r in aggregated.records if start <= r.created_at < end]

    def week_of(kind: ActivityKind) -> list[ActivityRecord]:
        return [r for r in this_week if r.kind is kind]

    new_neighbors: dict[str, NeighborRef] = {}
    for record in week_of(ActivityKind.MEMBER_JOINED):
        new_neighbors.setdefault(
            record.actor_id, NeighborRef(id=record.actor_id, name=record.actor_name)
        )

    new_groups = [
        GroupSummary(
            id=r.content_id,
            name=r.title,
            group_type=r.metadata.get("group_type"),
            creator_id=r.actor_id,
            creator_name=r.actor_name,
            unit=r.metadata.get("unit"),
            description=r.metadata.get("description"),
        )
        for r in week_of(ActivityKind.GROUP_CREATED)
    ]

    recent_events = [_event_summary(r, zone) for r in week_of(ActivityKind.EVENT_CREATED)]

    upcoming_records = sorted(
        aggregated.of_kind(ActivityKind.EVENT_UPCOMING),
        key=lambda r: r.metadata.get("starts_at") or r.created_at,
    )
    upcoming_events = [_event_summary(r, zone) for r in upcoming_records]

    highlights = [
        Highlight(
            group_id=g.group_id,
            actor_id=g.actor_id,
            actor_name=g.primary.actor_name,
            kind=g.kind,
            count=len(g.records),
            summary=g.summary,
        )
        for g in groups
        if isinstance(g, GroupedActivity)
    ]

    skills_this_week = week_of(ActivityKind.SKILL_LISTED)
    requests = sum(1 for r in skills_this_week if r.metadata.get("request_type") == "request")

    stats = DigestStats(
        new_members=len(new_neighbors),
        new_groups=len(new_groups),
        upcoming_events=len(upcoming_events),
        skill_offers=len(skills_this_week) - requests,
        skill_requests=requests,
        active_skills=len(aggregated.roster),
        recent_events=len(recent_events),
    )

    return DigestBrief(
        community_id=community.id,
        community_name=community.name,
        timezone=community.timezone,
        week_start=start,
        week_end=end,
        new_neighbors=list(new_neighbors.values()),
        new_groups=new_groups,
        recent_events=recent_events,
        upcoming_events=upcoming_events,
        skills_by_person=_skills_by_person(aggregated.roster, max_people, max_skills),
        highlights=highlights,
        stats=stats,
    )
