"""
JSON snapshot store.

Implements ActivitySource, RecipientDirectory and CommunityStore over a single
JSON file, used by the CLI, the API and tests. Layout:

    {
      "communities": [{"id": ..., "name": ..., "timezone": ..., ...}],
      "recipients": {"<community_id>": [{"email": ..., "name": ..., "digest_opt_in": true}]},
      "activity": {
        "<community_id>": {"events": [...], "skills": [...], "groups": [...], "members": [...]}
      }
    }

Only the last-digest-sent marker is ever written back.
"""

from __future__ import annotations

import json
import os
import tempfile
import threading
from datetime import datetime
from pathlib import Path
from typing import Any

from neighborly.contracts.models import ActivityKind, Community, Recipient, ensure_utc
from neighborly.digest.aggregator import parse_timestamp
from neighborly.observability.logging import get_logger

logger = get_logger(__name__)

# Table and timestamp field per activity kind
KIND_TABLES: dict[ActivityKind, tuple[str, str]] = {
    ActivityKind.EVENT_CREATED: ("events", "created_at"),
    ActivityKind.EVENT_UPCOMING: ("events", "start_time"),
    ActivityKind.SKILL_LISTED: ("skills", "created_at"),
    ActivityKind.GROUP_CREATED: ("groups", "created_at"),
    ActivityKind.MEMBER_JOINED: ("members", "joined_at"),
}

_missing_tables = set(ActivityKind) - set(KIND_TABLES)
if _missing_tables:
    raise RuntimeError(f"Activity kinds without a snapshot table: {sorted(_missing_tables)}")


class SnapshotStore:
    """File-backed collaborator for communities, recipients and activity."""

    def __init__(self, path: Path | str):
        self.path = Path(path)
        self._lock = threading.Lock()
        self._data: dict[str, Any] | None = None

    # ------------------------------------------------------------------
    # File handling
    # ------------------------------------------------------------------

    def _load(self) -> dict[str, Any]:
        if self._data is None:
            if not self.path.exists():
                raise FileNotFoundError(f"Snapshot not found: {self.path}")
            with self.path.open(encoding="utf-8") as f:
                self._data = json.load(f)
            logger.info("Loaded snapshot from %s", self.path)
        return self._data

    def _save(self) -> None:
        """Atomically rewrite the snapshot file."""
        data = self._load()
        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_path, self.path)
        except Exception:
            Path(tmp_path).unlink(missing_ok=True)
            raise

    # ------------------------------------------------------------------
    # CommunityStore
    # ------------------------------------------------------------------

    def list_communities(self) -> list[Community]:
        with self._lock:
            rows = list(self._load().get("communities", []))
        return [Community.model_validate(row) for row in rows]

    def get(self, community_id: str) -> Community | None:
        for community in self.list_communities():
            if community.id == community_id:
                return community
        return None

    def mark_digest_sent(self, community_id: str, sent_at: datetime) -> None:
        with self._lock:
            for row in self._load().get("communities", []):
                if row.get("id") == community_id:
                    row["last_digest_sent"] = ensure_utc(sent_at).isoformat()
                    self._save()
                    return
        raise KeyError(f"Unknown community: {community_id}")

    # ------------------------------------------------------------------
    # RecipientDirectory
    # ------------------------------------------------------------------

    def recipients(self, community_id: str) -> list[Recipient]:
        with self._lock:
            rows = list(self._load().get("recipients", {}).get(community_id, []))
        return [Recipient.model_validate(row) for row in rows]

    # ------------------------------------------------------------------
    # ActivitySource
    # ------------------------------------------------------------------

    def _table(self, community_id: str, table: str) -> list[dict[str, Any]]:
        with self._lock:
            activity = self._load().get("activity", {}).get(community_id, {})
            return [dict(row) for row in activity.get(table, [])]

    def fetch(
        self, community_id: str, kind: ActivityKind, start: datetime, end: datetime
    ) -> list[dict[str, Any]]:
        table, field = KIND_TABLES[kind]
        rows = []
        for row in self._table(community_id, table):
            value = row.get(field) or row.get("created_at")
            try:
                moment = parse_timestamp(value)
            except ValueError:
                logger.warning("Skipping %s row without %s: %s", table, field, row.get("id"))
                continue
            if start <= moment < end:
                rows.append(row)
        return rows

    def active_skills(self, community_id: str) -> list[dict[str, Any]]:
        return [
            row
            for row in self._table(community_id, "skills")
            if row.get("is_active", True) and not row.get("deleted")
        ]
