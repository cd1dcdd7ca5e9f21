"""
Content synthesis for the weekly digest.

Builds one prompt from the DigestBrief, sends it to the generative-text
service and parses the JSON reply into SynthesizedContent. Any failure along
the way (service disabled, service error, unparsable or invalid reply) falls
back to fixed content, so synthesize() always returns exactly
SUGGESTION_COUNT suggestions and never raises.
"""

from __future__ import annotations

import json
import re

from pydantic import AliasChoices, BaseModel, Field, ValidationError

from neighborly.config import (
    LOW_ACTIVITY_THRESHOLD,
    MAX_SUGGESTION_COUNT,
    SUGGESTION_COUNT,
    SYNTHESIS_ENABLED,
)
from neighborly.contracts.collaborators import TextSynthesisService
from neighborly.contracts.models import DigestBrief, SynthesizedContent
from neighborly.digest.errors import SynthesisError
from neighborly.digest.markup import LinkCategory, render_anchor
from neighborly.digest.urls import DigestLinkBuilder
from neighborly.observability.logging import get_logger
from neighborly.observability.structured import EventType, RunLogger
from neighborly.observability.telemetry import counter, log_event, time_block

logger = get_logger(__name__)

FALLBACK_THIS_WEEK = (
    "This past week brought new connections and community activity. "
    "Thank you to everyone who participated in making our neighborhood more vibrant."
)


class SynthesisReply(BaseModel):
    """Schema for LLM reply validation."""

    this_week: str | None = Field(
        default=None,
        validation_alias=AliasChoices("thisWeek", "this_week"),
        description="Recap of the past week",
    )
    week_ahead: str | None = Field(
        default=None,
        validation_alias=AliasChoices("weekAhead", "week_ahead"),
        description="Preview of the coming week",
    )
    suggestions: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("suggestions", "getInvolved", "get_involved"),
        description="Ways to get involved",
    )


DIGEST_PROMPT_TEMPLATE = """You write the weekly community digest email for {community_name}.

Tone: warm, specific and brief. Write about real neighbors and real activity
from the data below. Never invent people, groups, events or skills.

Activity level this week: {activity_level}
{activity_hint}

## Markup
- Mention a person or group by wrapping their exact name: {{{{Jane Doe}}}}, {{{{Garden Club}}}}
- Link a skill or event with [[description:kind:id]] where kind is "skills" or "event"
  and id is copied from the data, e.g. [[guitar lessons:skills:abc123]]
- Use only ids that appear in the data.

## Data
{data}

## Output format
Return ONLY a JSON object:
{{"thisWeek": "...", "weekAhead": "...", "suggestions": ["...", "...", "..."]}}

- thisWeek: 2-3 sentences welcoming new neighbors and new groups and recapping events
  created this week. Use null if there were no new neighbors, groups or events.
- weekAhead: 1-2 sentences about upcoming events, including how many neighbors
  are attending ("3 neighbors").
- suggestions: exactly {suggestion_count} short suggestions for getting involved. Base them on
  the skills people listed. A suggestion may start with an action verb
  (Host, Organize, Start, Offer, Schedule, Plan, Launch, Create)."""


def _sanitize(text: str | None, max_length: int = 200) -> str:
    """Collapse whitespace and strip markup delimiters from user-provided text."""
    if not text:
        return ""
    cleaned = re.sub(r"\s+", " ", str(text))
    cleaned = cleaned.replace("{{", "").replace("}}", "").replace("[[", "").replace("]]", "")
    return cleaned.strip()[:max_length]


def format_brief_for_prompt(brief: DigestBrief) -> str:
    """Render the brief as the prompt's data section."""
    lines: list[str] = []

    lines.append("### New neighbors")
    if brief.new_neighbors:
        lines.extend(f"- {_sanitize(n.name, 80)} (id: {n.id})" for n in brief.new_neighbors)
    else:
        lines.append("(none)")

    lines.append("\n### New groups")
    if brief.new_groups:
        for g in brief.new_groups:
            details = ", ".join(
                part
                for part in (
                    _sanitize(g.group_type, 40),
                    f"created by {_sanitize(g.creator_name, 80)}" if g.creator_name else "",
                    _sanitize(g.description, 150),
                )
                if part
            )
            lines.append(f"- {_sanitize(g.name, 100)} (id: {g.id}) {details}".rstrip())
    else:
        lines.append("(none)")

    lines.append("\n### Events created this week")
    if brief.recent_events:
        lines.extend(
            f"- {_sanitize(e.title, 100)} on {e.date_label} (id: {e.id})"
            for e in brief.recent_events
        )
    else:
        lines.append("(none)")

    lines.append("\n### Upcoming events (next 7 days)")
    if brief.upcoming_events:
        lines.extend(
            f"- {_sanitize(e.title, 100)} on {e.date_label}, "
            f"{e.attendee_count} neighbors attending (id: {e.id})"
            for e in brief.upcoming_events
        )
    else:
        lines.append("(none - the calendar is empty)")

    lines.append("\n### Skills by person")
    if brief.skills_by_person:
        for person in brief.skills_by_person:
            skills = "; ".join(
                f"{_sanitize(s.title, 80)} [{s.request_type}"
                + (f", {_sanitize(s.category, 40)}" if s.category else "")
                + f"] (id: {s.id})"
                for s in person.skills
            )
            lines.append(f"- {_sanitize(person.name, 80)} (id: {person.id}): {skills}")
    else:
        lines.append("(none)")

    if brief.highlights:
        lines.append("\n### Highlights")
        lines.extend(f"- {_sanitize(h.summary, 120)} (id: {h.group_id})" for h in brief.highlights)

    s = brief.stats
    lines.append(
        "\n### Stats\n"
        f"new members: {s.new_members}, new groups: {s.new_groups}, "
        f"events created: {s.recent_events}, upcoming events: {s.upcoming_events}, "
        f"skill offers: {s.skill_offers}, skill requests: {s.skill_requests}, "
        f"active skills: {s.active_skills}"
    )
    return "\n".join(lines)


def extract_json(response_text: str) -> dict:
    """
    Pull the JSON object out of a model reply.

    Tolerates markdown code fences and text before or after the object.

    Raises:
        SynthesisError: If no JSON object can be decoded
    """
    text = (response_text or "").strip()
    if text.startswith("```"):
        counter("digest.synthesis.code_fence")
        text = re.sub(r"^```(?:json)?\s*", "", text)
        text = re.sub(r"\s*```$", "", text)

    if not text.startswith("{"):
        start, end = text.find("{"), text.rfind("}")
        if start == -1 or end <= start:
            raise SynthesisError("No JSON object in reply")
        text = text[start : end + 1]

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise SynthesisError(f"Invalid JSON in reply: {e}") from e
    if not isinstance(data, dict):
        raise SynthesisError("Reply JSON is not an object")
    return data


class ContentSynthesizer:
    """
    Turns a DigestBrief into SynthesizedContent.

    The service is optional: without one (or with SYNTHESIS_ENABLED=false)
    every digest uses the fallback content.
    """

    def __init__(
        self,
        service: TextSynthesisService | None,
        links: DigestLinkBuilder | None = None,
        enabled: bool | None = None,
        suggestion_count: int = SUGGESTION_COUNT,
    ):
        self.service = service
        self.links = links or DigestLinkBuilder()
        self.enabled = SYNTHESIS_ENABLED if enabled is None else enabled
        if not 1 <= suggestion_count <= MAX_SUGGESTION_COUNT:
            raise ValueError(f"suggestion_count must be between 1 and {MAX_SUGGESTION_COUNT}")
        self.suggestion_count = suggestion_count

    # ------------------------------------------------------------------
    # Fallback content
    # ------------------------------------------------------------------

    def default_suggestions(self, community_id: str) -> list[str]:
        links = self.links
        return [
            render_anchor(
                links.section(community_id, "skills"),
                "Browse the skills exchange",
                LinkCategory.SKILL,
            )
            + " to see what your neighbors can teach, lend or help with.",
            render_anchor(
                links.section(community_id, "groups"), "Find a group", LinkCategory.GROUP
            )
            + " that matches your interests, or see who is organizing nearby.",
            render_anchor(
                links.section(community_id, "calendar"),
                "See the community calendar",
                LinkCategory.EVENT,
            )
            + " for gatherings coming up this month.",
        ]

    def fallback_week_ahead(self, community_id: str) -> str:
        anchor = render_anchor(
            self.links.create(community_id, "calendar"), "add an event", LinkCategory.ACTION
        )
        return (
            "The calendar is wide open for the week ahead. "
            f"Be the first to {anchor} and invite your neighbors to join you."
        )

    @staticmethod
    def fallback_this_week(brief: DigestBrief) -> str:
        names = [f"{{{{{n.name}}}}}" for n in brief.new_neighbors]
        if not names:
            return FALLBACK_THIS_WEEK
        if len(names) == 1:
            welcome = f"Please welcome our newest neighbor, {names[0]}."
        else:
            listed = f"{', '.join(names[:-1])} and {names[-1]}"
            welcome = f"Please welcome our newest neighbors: {listed}."
        return f"{FALLBACK_THIS_WEEK} {welcome}"

    def fallback(self, brief: DigestBrief) -> SynthesizedContent:
        """Deterministic content used whenever synthesis is unavailable."""
        return SynthesizedContent(
            this_week=self.fallback_this_week(brief),
            week_ahead=self.fallback_week_ahead(brief.community_id),
            suggestions=self.default_suggestions(brief.community_id)[: self.suggestion_count],
            used_fallback=True,
        )

    # ------------------------------------------------------------------
    # Prompt and reply
    # ------------------------------------------------------------------

    def build_prompt(self, brief: DigestBrief) -> str:
        total = brief.stats.total_activity
        low = total <= LOW_ACTIVITY_THRESHOLD
        hint = (
            "It was a quiet week. Keep it short and invite neighbors to start something."
            if low
            else "It was an active week. Highlight the most interesting activity."
        )
        return DIGEST_PROMPT_TEMPLATE.format(
            community_name=_sanitize(brief.community_name, 100),
            activity_level="low" if low else "normal",
            activity_hint=hint,
            data=format_brief_for_prompt(brief),
            suggestion_count=self.suggestion_count,
        )

    def parse_reply(self, response_text: str, brief: DigestBrief) -> SynthesizedContent:
        """
        Validate a model reply and apply the post-parse rules.

        Raises:
            SynthesisError: If the reply cannot be parsed or validated
        """
        data = extract_json(response_text)
        try:
            reply = SynthesisReply.model_validate(data)
        except ValidationError as e:
            raise SynthesisError(f"Reply failed validation: {e}") from e

        suggestions = [s.strip() for s in reply.suggestions if s and s.strip()]
        suggestions = suggestions[: self.suggestion_count]
        for default in self.default_suggestions(brief.community_id):
            if len(suggestions) >= self.suggestion_count:
                break
            if default not in suggestions:
                suggestions.append(default)

        this_week = (reply.this_week or "").strip() or None
        if not brief.has_new_activity:
            this_week = None

        return SynthesizedContent(
            this_week=this_week,
            week_ahead=(reply.week_ahead or "").strip() or None,
            suggestions=suggestions,
            used_fallback=False,
        )

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def synthesize(self, brief: DigestBrief, run_log: RunLogger) -> SynthesizedContent:
        """
        Produce digest content for the brief. Never raises.

        Side Effects:
            - Calls the generative-text service (at most once)
            - Logs LLM events and increments telemetry counters
        """
        if not self.enabled or self.service is None:
            counter("digest.synthesis.disabled")
            run_log.log_event(EventType.LLM_SKIPPED, reason="synthesis disabled")
            return self.fallback(brief)

        if brief.stats.active_skills == 0 and not brief.new_groups:
            counter("digest.synthesis.skipped")
            run_log.log_event(EventType.LLM_SKIPPED, reason="no active skills or new groups")
            return self.fallback(brief)

        prompt = self.build_prompt(brief)
        run_log.log_event(EventType.LLM_CALL_START, prompt_chars=len(prompt))

        try:
            with time_block("digest.synthesis.latency"):
                response_text = self.service.synthesize(prompt)
        except Exception as e:
            counter("digest.synthesis.error")
            logger.error("Digest synthesis failed for %s: %s", brief.community_id, e)
            run_log.log_event(EventType.LLM_CALL_ERROR, error=str(e))
            run_log.log_event(EventType.LLM_FALLBACK_INVOKED, reason="service error")
            return self.fallback(brief)

        try:
            content = self.parse_reply(response_text, brief)
        except SynthesisError as e:
            counter("digest.synthesis.parse_error")
            logger.warning("Failed to parse digest synthesis reply: %s", e)
            run_log.log_event(EventType.LLM_PARSE_ERROR, error=str(e))
            run_log.log_event(EventType.LLM_FALLBACK_INVOKED, reason="parse error")
            return self.fallback(brief)

        counter("digest.synthesis.success")
        run_log.log_event(
            EventType.LLM_CALL_OK,
            has_this_week=content.this_week is not None,
            has_week_ahead=content.week_ahead is not None,
        )
        log_event("digest.synthesis.result", community=brief.community_id, fallback=False)
        return content
