"""Tests for digest link builder"""

from __future__ import annotations

from urllib.parse import parse_qs, urlparse

import pytest

from neighborly.digest.urls import DigestLinkBuilder


def query(url: str) -> dict[str, list[str]]:
    return parse_qs(urlparse(url).query)


class TestDigestLinkBuilder:
    """Tests for DigestLinkBuilder"""

    def test_every_url_carries_tracking_params(self, links):
        """Every link is tagged with email utm params"""
        urls = [
            links.profile("c-1", "u-1"),
            links.event("c-1", "e-1"),
            links.group("c-1", "g-1"),
            links.skill("c-1", "s-1"),
            links.person_skills("c-1", "u-1"),
            links.section("c-1", "calendar"),
            links.create("c-1", "groups"),
            links.neighbor_directory("c-1"),
            links.dashboard("c-1"),
            links.settings("c-1"),
        ]
        for url in urls:
            params = query(url)
            assert params["utm_source"] == ["email"]
            assert params["utm_medium"] == ["email"]
            assert params["utm_campaign"][0].startswith("weekly_summary_")

    def test_profile_url(self, links):
        url = links.profile("c-1", "u-42")
        parsed = urlparse(url)
        assert url.startswith("https://neighborhoodos.com/n/c-1/groups?")
        assert parsed.path == "/n/c-1/groups"
        params = query(url)
        assert params["view"] == ["directory"]
        assert params["highlight"] == ["profile"]
        assert params["type"] == ["profile"]
        assert params["id"] == ["u-42"]

    def test_event_url(self, links):
        url = links.event("c-1", "e-7")
        assert urlparse(url).path == "/n/c-1/calendar"
        assert query(url)["id"] == ["e-7"]
        assert query(url)["utm_campaign"] == ["weekly_summary_event"]

    def test_skill_url_uses_skills_exchange_type(self, links):
        params = query(links.skill("c-1", "s-3"))
        assert params["type"] == ["skills_exchange"]
        assert params["highlight"] == ["skill"]

    def test_person_skills_url(self, links):
        url = links.person_skills("c-1", "u-9")
        assert urlparse(url).path == "/n/c-1/skills"
        params = query(url)
        assert params["view"] == ["provider"]
        assert params["id"] == ["u-9"]

    def test_ids_are_url_encoded(self, links):
        """Ids with reserved characters cannot break out of the query string"""
        url = links.event("c 1", 'e&id="x"')
        assert " " not in url
        assert '"' not in url
        assert query(url)["id"] == ['e&id="x"']

    def test_create_url_opens_form(self, links):
        url = links.create("c-1", "calendar")
        params = query(url)
        assert params["create"] == ["true"]
        assert params["utm_campaign"] == ["weekly_summary_create_calendar"]

    def test_unknown_section_raises(self, links):
        with pytest.raises(ValueError):
            links.section("c-1", "marketplace")
        with pytest.raises(ValueError):
            links.create("c-1", "settings")

    def test_base_url_trailing_slash_is_trimmed(self):
        builder = DigestLinkBuilder("https://example.org/")
        assert builder.dashboard("c-1").startswith("https://example.org/n/c-1?")
