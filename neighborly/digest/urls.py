"""
Digest Link Builder - absolute URLs for every link in a digest

Every URL lives under the community path (/n/<community_id>/...) and carries
email tracking params:
    utm_source=email, utm_medium=email, utm_campaign=weekly_summary_<target>

Ids are URL-encoded so they are safe to embed in an href.
"""

from __future__ import annotations

from urllib.parse import quote_plus, urlencode

from neighborly.infrastructure.settings import DIGEST_BASE_URL


class DigestLinkBuilder:
    """Build tracked site URLs for one deployment"""

    SECTIONS: dict[str, str] = {
        "calendar": "calendar",
        "skills": "skills",
        "groups": "groups",
        "settings": "settings",
    }

    def __init__(self, base_url: str | None = None):
        self.base_url = (base_url or DIGEST_BASE_URL).rstrip("/")

    def _url(self, path: str, campaign: str, params: list[tuple[str, str]] | None = None) -> str:
        query = list(params or [])
        query += [
            ("utm_source", "email"),
            ("utm_medium", "email"),
            ("utm_campaign", f"weekly_summary_{campaign}"),
        ]
        return f"{self.base_url}{path}?{urlencode(query)}"

    @staticmethod
    def _community_path(community_id: str) -> str:
        return f"/n/{quote_plus(community_id)}"

    # ------------------------------------------------------------------
    # Item pages
    # ------------------------------------------------------------------

    def profile(self, community_id: str, user_id: str) -> str:
        """Neighbor profile, highlighted in the groups directory view."""
        return self._url(
            f"{self._community_path(community_id)}/groups",
            "profile",
            [("view", "directory"), ("highlight", "profile"), ("type", "profile"), ("id", user_id)],
        )

    def event(self, community_id: str, event_id: str) -> str:
        return self._url(
            f"{self._community_path(community_id)}/calendar",
            "event",
            [("highlight", "event"), ("type", "event"), ("id", event_id)],
        )

    def group(self, community_id: str, group_id: str) -> str:
        return self._url(
            f"{self._community_path(community_id)}/groups",
            "group",
            [("highlight", "group"), ("type", "group"), ("id", group_id)],
        )

    def skill(self, community_id: str, skill_id: str) -> str:
        return self._url(
            f"{self._community_path(community_id)}/skills",
            "skill",
            [("highlight", "skill"), ("type", "skills_exchange"), ("id", skill_id)],
        )

    def person_skills(self, community_id: str, user_id: str) -> str:
        """One person's "see all" skills view."""
        return self._url(
            f"{self._community_path(community_id)}/skills",
            "person_skills",
            [("view", "provider"), ("highlight", "profile"), ("type", "profile"), ("id", user_id)],
        )

    # ------------------------------------------------------------------
    # Sections
    # ------------------------------------------------------------------

    def section(self, community_id: str, name: str) -> str:
        """Section landing page (calendar, skills, groups, settings)."""
        if name not in self.SECTIONS:
            raise ValueError(f"Unknown section: {name}")
        return self._url(f"{self._community_path(community_id)}/{self.SECTIONS[name]}", name)

    def create(self, community_id: str, name: str) -> str:
        """Section page with the create form open."""
        if name not in ("calendar", "skills", "groups"):
            raise ValueError(f"Nothing to create in section: {name}")
        return self._url(
            f"{self._community_path(community_id)}/{self.SECTIONS[name]}",
            f"create_{name}",
            [("create", "true")],
        )

    def neighbor_directory(self, community_id: str) -> str:
        return self._url(
            f"{self._community_path(community_id)}/groups",
            "directory",
            [("view", "directory")],
        )

    def dashboard(self, community_id: str) -> str:
        return self._url(self._community_path(community_id), "dashboard")

    def settings(self, community_id: str) -> str:
        return self.section(community_id, "settings")
