"""
Digest Renderer - weekly digest email body, plaintext alternative and subject

Renders:
- Header with community name and week range
- THIS WEEK (when present), THE WEEK AHEAD, WAYS TO GET INVOLVED
- Footer linking to the community dashboard and email settings

Synthesized text arrives already linked (trusted markup) and is inserted
verbatim; everything else is escaped.
"""

from __future__ import annotations

import html
import re
from datetime import datetime, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from neighborly.contracts.models import DigestBrief, RenderedMessage, SynthesizedContent
from neighborly.digest.urls import DigestLinkBuilder
from neighborly.observability.logging import get_logger

logger = get_logger(__name__)

HTML_TEMPLATE = """<!DOCTYPE html>
<html>
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <style>
        body {{
            font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;
            max-width: 600px;
            margin: 20px auto;
            padding: 20px;
            background-color: #f5f5f5;
        }}

        .digest-card {{
            background: white;
            border-radius: 12px;
            padding: 24px;
            box-shadow: 0 2px 8px rgba(0,0,0,0.1);
        }}

        .header {{
            font-size: 20px;
            font-weight: 600;
            color: #333;
        }}

        .week-range {{
            font-size: 14px;
            color: #777;
            margin-bottom: 20px;
            border-bottom: 2px solid #f0f0f0;
            padding-bottom: 12px;
        }}

        .section-title {{
            font-size: 13px;
            font-weight: 700;
            letter-spacing: 0.06em;
            margin: 24px 0 8px;
        }}

        .section-content {{
            font-size: 15px;
            line-height: 1.6;
            color: #444;
        }}

        .section-content li {{
            margin-bottom: 8px;
        }}

        .footer {{
            margin-top: 28px;
            padding-top: 16px;
            border-top: 1px solid #f0f0f0;
            font-size: 13px;
            color: #888;
        }}

        .footer a {{
            color: #2563eb;
            text-decoration: none;
        }}
    </style>
</head>
<body>
    <div class="digest-card">
        <div class="header">{header_title}</div>
        <div class="week-range">{week_range}</div>
{sections}
        <div class="footer">
            <a href="{dashboard_url}">Visit {community_name}</a> &middot;
            <a href="{settings_url}">Email settings</a>
        </div>
    </div>
</body>
</html>
"""

SECTION_TEMPLATE = """        <div class="section">
            <div class="section-title" style="color: {color};">{title}</div>
            <div class="section-content">{body}</div>
        </div>
"""

SECTION_COLORS = {
    "THIS WEEK": "#7c3aed",
    "THE WEEK AHEAD": "#2563eb",
    "WAYS TO GET INVOLVED": "#059669",
}


def format_week_range(start: datetime, end: datetime, zone: tzinfo) -> str:
    """Format like "Oct 11 - Oct 18" in the community's timezone."""
    local_start = start.astimezone(zone)
    local_end = end.astimezone(zone)
    return (
        f"{local_start.strftime('%b')} {local_start.day} - "
        f"{local_end.strftime('%b')} {local_end.day}"
    )


class DigestRenderer:
    """Render linked digest content as an email message"""

    def __init__(self, links: DigestLinkBuilder | None = None):
        self.links = links or DigestLinkBuilder()

    @staticmethod
    def subject_for(community_name: str) -> str:
        return f"Your {community_name} weekly summary"

    @staticmethod
    def _zone(name: str) -> tzinfo:
        try:
            return ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning("Unknown timezone %r, rendering in UTC", name)
            return ZoneInfo("UTC")

    def _section(self, title: str, body: str) -> str:
        return SECTION_TEMPLATE.format(color=SECTION_COLORS[title], title=title, body=body)

    def render(self, brief: DigestBrief, content: SynthesizedContent) -> RenderedMessage:
        """
        Render the digest for one community.

        Args:
            brief: Brief for the week (community identity and window)
            content: Synthesized content with markup already resolved

        Returns:
            RenderedMessage with subject, html and text
        """
        week_range = format_week_range(brief.week_start, brief.week_end, self._zone(brief.timezone))

        sections: list[str] = []
        if content.this_week:
            sections.append(self._section("THIS WEEK", content.this_week))
        if content.week_ahead:
            sections.append(self._section("THE WEEK AHEAD", content.week_ahead))
        if content.suggestions:
            items = "\n".join(f"<li>{s}</li>" for s in content.suggestions)
            sections.append(self._section("WAYS TO GET INVOLVED", f"<ul>\n{items}\n</ul>"))

        community_name = html.escape(brief.community_name)
        body = HTML_TEMPLATE.format(
            header_title=f"{community_name} weekly digest",
            week_range=html.escape(week_range),
            sections="".join(sections),
            dashboard_url=html.escape(self.links.dashboard(brief.community_id)),
            settings_url=html.escape(self.links.settings(brief.community_id)),
            community_name=community_name,
        )

        return RenderedMessage(
            subject=self.subject_for(brief.community_name),
            html=body,
            text=self.render_text(brief, content, week_range),
        )

    def render_text(self, brief: DigestBrief, content: SynthesizedContent, week_range: str) -> str:
        """Plaintext alternative body."""
        lines = [f"{brief.community_name} weekly digest", week_range, ""]
        if content.this_week:
            lines += ["THIS WEEK", html_to_plaintext(content.this_week), ""]
        if content.week_ahead:
            lines += ["THE WEEK AHEAD", html_to_plaintext(content.week_ahead), ""]
        if content.suggestions:
            lines.append("WAYS TO GET INVOLVED")
            lines += [f"- {html_to_plaintext(s)}" for s in content.suggestions]
            lines.append("")
        lines.append(f"Visit {brief.community_name}: {self.links.dashboard(brief.community_id)}")
        lines.append(f"Email settings: {self.links.settings(brief.community_id)}")
        return "\n".join(lines)


def html_to_plaintext(content: str) -> str:
    """
    Simple HTML to plaintext conversion
    """
    text = re.sub(r"<style[^>]*>.*?</style>", "", content, flags=re.DOTALL)
    text = re.sub(r"<br\s*/?>", "\n", text)
    text = re.sub(r"</?(p|div|ul|li)[^>]*>", "\n", text)
    text = re.sub(r"<[^>]+>", "", text)
    text = html.unescape(text)
    text = re.sub(r"\n\s*\n", "\n\n", text)
    return text.strip()
