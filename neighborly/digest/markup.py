"""
Markup linker for synthesized digest text.

Synthesized strings carry a small inline markup language:

    {{Name}}                     mention of a person or group
    [[description:kind:id]]      deep link to a skill or event
    Host/Organize/Start/...      leading action verb, linked to a create page

Linking is two-phase. tokenize() turns text into a typed stream of
PlainText, Mention, DeepLink and Anchor tokens; Anchor covers an existing
<a ...>...</a> span and is passed through untouched when its href is an
absolute http(s) URL; otherwise only its label text is kept. resolve() then
renders the stream against the brief. Because resolved links come back as Anchor
tokens on a second pass, linking already-linked text is a no-op.

Only anchor labels and hrefs are escaped; surrounding text is left as-is.
"""

from __future__ import annotations

import html
import re
from dataclasses import dataclass
from enum import Enum

from neighborly.config import MENTION_GROUP_MIN_LENGTH
from neighborly.contracts.models import DigestBrief, NeighborRef, SynthesizedContent
from neighborly.digest.urls import DigestLinkBuilder
from neighborly.observability.logging import get_logger
from neighborly.observability.structured import EventType, RunLogger

logger = get_logger(__name__)


class LinkCategory(str, Enum):
    PERSON = "person"
    GROUP = "group"
    SKILL = "skill"
    EVENT = "event"
    ACTION = "action"
    DIRECTORY = "directory"


LINK_COLORS: dict[LinkCategory, str] = {
    LinkCategory.PERSON: "#7c3aed",
    LinkCategory.GROUP: "#7c3aed",
    LinkCategory.SKILL: "#059669",
    LinkCategory.EVENT: "#2563eb",
    LinkCategory.ACTION: "#2563eb",
    LinkCategory.DIRECTORY: "#2563eb",
}

GROUP_WORDS = ("committee", "group", "club", "circle", "association", "society", "team", "council")

ACTION_VERBS = ("Host", "Organize", "Start", "Offer", "Schedule", "Plan", "Launch", "Create")

# Checked in order; first match wins
ACTION_CONTEXTS: list[tuple[str, re.Pattern[str]]] = [
    (
        "calendar",
        re.compile(r"\b(events?|part(?:y|ies)|meetings?|meetups?|potlucks?|gatherings?)\b", re.I),
    ),
    ("groups", re.compile(r"\b(groups?|circles?|committees?|clubs?)\b", re.I)),
    ("skills", re.compile(r"\b(skills?|help|services?|lessons?|class(?:es)?)\b", re.I)),
]

SKILL_KINDS = ("skills", "skill")
EVENT_KINDS = ("event", "events")

_TAG_PATTERN = re.compile(r"<[^>]+>")
_ANCHOR_OPEN = re.compile(r"<a[\s>]", re.I)
_ANCHOR_CLOSE = "</a>"
_HREF_PATTERN = re.compile(r"""(?<=\s)href\s*=\s*(?:"([^"]*)"|'([^']*)'|([^\s>]+))""", re.I)
SAFE_SCHEMES = ("http://", "https://")
_VERB_PATTERN = re.compile(r"^(\s*)(" + "|".join(ACTION_VERBS) + r")\b")
_SENTENCE_END = re.compile(r"[.!?](\s|$)")


def strip_tags(text: str) -> str:
    return _TAG_PATTERN.sub("", text)


def render_anchor(href: str, label: str, category: LinkCategory) -> str:
    """Styled anchor; label and href are escaped."""
    color = LINK_COLORS[category]
    return (
        f'<a href="{html.escape(href)}" '
        f'style="color: {color}; text-decoration: none; font-weight: 600;">'
        f"{html.escape(label, quote=False)}</a>"
    )


# ============================================================================
# Tokens
# ============================================================================


@dataclass(frozen=True)
class PlainText:
    text: str


@dataclass(frozen=True)
class Mention:
    raw: str
    name: str


@dataclass(frozen=True)
class DeepLink:
    raw: str
    description: str
    kind: str
    target_id: str


@dataclass(frozen=True)
class Anchor:
    raw: str

    @property
    def href(self) -> str | None:
        match = _HREF_PATTERN.search(self.raw)
        if match is None:
            return None
        return html.unescape(next(g for g in match.groups() if g is not None)).strip()

    @property
    def is_safe(self) -> bool:
        """Only absolute http(s) links survive into the email."""
        href = self.href
        return href is not None and href.lower().startswith(SAFE_SCHEMES)

    def render(self) -> str:
        if self.is_safe:
            return self.raw
        return html.escape(html.unescape(strip_tags(self.raw)), quote=False)


Token = PlainText | Mention | DeepLink | Anchor


@dataclass(frozen=True)
class LinkToken:
    """One resolved markup occurrence."""

    source: str
    label: str
    url: str | None
    category: LinkCategory | None
    fallback: bool = False


def tokenize(text: str) -> list[Token]:
    """Split text into a typed token stream. Unclosed markup stays plain text."""
    tokens: list[Token] = []
    buffer: list[str] = []
    i = 0
    n = len(text)

    def flush() -> None:
        if buffer:
            tokens.append(PlainText("".join(buffer)))
            buffer.clear()

    while i < n:
        if text[i] == "<" and _ANCHOR_OPEN.match(text, i):
            close = text.lower().find(_ANCHOR_CLOSE, i)
            if close != -1:
                flush()
                end = close + len(_ANCHOR_CLOSE)
                tokens.append(Anchor(text[i:end]))
                i = end
                continue

        if text.startswith("{{", i):
            close = text.find("}}", i + 2)
            if close != -1:
                name = text[i + 2 : close].strip()
                if name:
                    flush()
                    tokens.append(Mention(raw=text[i : close + 2], name=name))
                    i = close + 2
                    continue

        if text.startswith("[[", i):
            close = text.find("]]", i + 2)
            if close != -1:
                parts = text[i + 2 : close].rsplit(":", 2)
                if len(parts) == 3 and all(p.strip() for p in parts):
                    flush()
                    description, kind, target_id = (p.strip() for p in parts)
                    tokens.append(
                        DeepLink(
                            raw=text[i : close + 2],
                            description=description,
                            kind=kind.lower(),
                            target_id=target_id,
                        )
                    )
                    i = close + 2
                    continue

        buffer.append(text[i])
        i += 1

    flush()
    return tokens


# ============================================================================
# Resolution
# ============================================================================


class MarkupLinker:
    """Resolves mentions, deep links and a leading action verb into anchors."""

    def __init__(self, links: DigestLinkBuilder | None = None):
        self.links = links or DigestLinkBuilder()

    # ------------------------------------------------------------------
    # Entity matching
    # ------------------------------------------------------------------

    @staticmethod
    def is_group_reference(name: str) -> bool:
        lowered = name.lower()
        if len(name) > MENTION_GROUP_MIN_LENGTH:
            return True
        return any(re.search(rf"\b{word}", lowered) for word in GROUP_WORDS)

    @staticmethod
    def match_person(name: str, people: list[NeighborRef]) -> NeighborRef | None:
        """Exact, then substring either way, then first name (all case-insensitive)."""
        wanted = name.casefold().strip()
        for person in people:
            if person.name.casefold() == wanted:
                return person
        for person in people:
            candidate = person.name.casefold()
            if candidate and (wanted in candidate or candidate in wanted):
                return person
        first = wanted.split()[0] if wanted.split() else ""
        for person in people:
            parts = person.name.casefold().split()
            if first and parts and parts[0] == first:
                return person
        return None

    def _resolve_mention(self, token: Mention, brief: DigestBrief) -> LinkToken:
        community_id = brief.community_id
        if self.is_group_reference(token.name):
            wanted = token.name.casefold()
            for group in brief.new_groups:
                candidate = group.name.casefold()
                if wanted in candidate or candidate in wanted:
                    return LinkToken(
                        token.raw,
                        token.name,
                        self.links.group(community_id, group.id),
                        LinkCategory.GROUP,
                    )
            return LinkToken(
                token.raw,
                token.name,
                self.links.section(community_id, "groups"),
                LinkCategory.DIRECTORY,
                fallback=True,
            )

        person = self.match_person(token.name, brief.known_people())
        if person is not None:
            return LinkToken(
                token.raw,
                token.name,
                self.links.profile(community_id, person.id),
                LinkCategory.PERSON,
            )
        return LinkToken(
            token.raw,
            token.name,
            self.links.neighbor_directory(community_id),
            LinkCategory.DIRECTORY,
            fallback=True,
        )

    def _resolve_deep_link(self, token: DeepLink, brief: DigestBrief) -> LinkToken:
        community_id = brief.community_id
        if token.kind in SKILL_KINDS:
            for highlight in brief.highlights:
                if highlight.group_id == token.target_id:
                    return LinkToken(
                        token.raw,
                        token.description,
                        self.links.person_skills(community_id, highlight.actor_id),
                        LinkCategory.SKILL,
                    )
            return LinkToken(
                token.raw,
                token.description,
                self.links.skill(community_id, token.target_id),
                LinkCategory.SKILL,
            )
        if token.kind in EVENT_KINDS:
            return LinkToken(
                token.raw,
                token.description,
                self.links.event(community_id, token.target_id),
                LinkCategory.EVENT,
            )
        return LinkToken(token.raw, token.description, None, None, fallback=True)

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def resolve(
        self,
        tokens: list[Token],
        brief: DigestBrief,
        run_log: RunLogger | None = None,
    ) -> tuple[str, list[LinkToken]]:
        """Render a token stream; returns the text and every link resolved."""
        parts: list[str] = []
        resolved: list[LinkToken] = []

        for token in tokens:
            if isinstance(token, PlainText):
                parts.append(token.text)
                continue
            if isinstance(token, Anchor):
                if not token.is_safe:
                    logger.warning("Dropping link with unsafe href %r", token.href)
                parts.append(token.render())
                continue

            if isinstance(token, Mention):
                link = self._resolve_mention(token, brief)
                if link.fallback and run_log is not None:
                    run_log.log_event(EventType.LINK_UNRESOLVED, mention=token.name)
            else:
                link = self._resolve_deep_link(token, brief)
                if link.url is None:
                    logger.warning("Unknown deep link kind %r in %r", token.kind, token.raw)
                    if run_log is not None:
                        run_log.log_event(EventType.LINK_UNKNOWN_KIND, kind=token.kind)

            resolved.append(link)
            if link.url is None or link.category is None:
                parts.append(link.label)
            else:
                parts.append(render_anchor(link.url, link.label, link.category))

        return "".join(parts), resolved

    def _link_action_verb(self, text: str, community_id: str) -> str:
        tokens = tokenize(text)
        if not tokens or not isinstance(tokens[0], PlainText):
            return text

        match = _VERB_PATTERN.match(tokens[0].text)
        if match is None:
            return text

        rest = strip_tags(text[match.end() :])
        sentence_end = _SENTENCE_END.search(rest)
        first_sentence = rest[: sentence_end.start()] if sentence_end else rest

        for section, pattern in ACTION_CONTEXTS:
            if pattern.search(first_sentence):
                anchor = render_anchor(
                    self.links.create(community_id, section), match.group(2), LinkCategory.ACTION
                )
                return f"{match.group(1)}{anchor}{text[match.end():]}"
        return text

    def link(
        self, text: str | None, brief: DigestBrief, run_log: RunLogger | None = None
    ) -> str | None:
        """Resolve all markup in one string. Never raises."""
        if not text:
            return text
        try:
            rendered, _ = self.resolve(tokenize(text), brief, run_log)
            return self._link_action_verb(rendered, brief.community_id)
        except Exception:
            logger.exception("Markup linking failed; leaving text unlinked")
            return text

    def link_content(
        self,
        content: SynthesizedContent,
        brief: DigestBrief,
        run_log: RunLogger | None = None,
    ) -> SynthesizedContent:
        """Apply linking to every field of synthesized content."""
        return content.model_copy(
            update={
                "this_week": self.link(content.this_week, brief, run_log),
                "week_ahead": self.link(content.week_ahead, brief, run_log),
                "suggestions": [self.link(s, brief, run_log) or "" for s in content.suggestions],
            }
        )
