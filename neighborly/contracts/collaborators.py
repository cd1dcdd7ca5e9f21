"""
Collaborator Protocols for the Digest Pipeline

The pipeline owns no storage. Everything it reads or writes goes through one
of these interfaces; adapters (snapshot store, Gemini, Resend) and test fakes
implement them structurally.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from neighborly.contracts.models import (
    ActivityKind,
    Community,
    Recipient,
    RenderedMessage,
)


@runtime_checkable
class ActivitySource(Protocol):
    """Read-only activity feed."""

    def fetch(
        self, community_id: str, kind: ActivityKind, start: datetime, end: datetime
    ) -> list[dict[str, Any]]:
        """Raw rows of one kind whose relevant timestamp falls in [start, end)."""
        ...

    def active_skills(self, community_id: str) -> list[dict[str, Any]]:
        """All currently active skill listings, regardless of age."""
        ...


@runtime_checkable
class RecipientDirectory(Protocol):
    """Digest preference list."""

    def recipients(self, community_id: str) -> list[Recipient]: ...


@runtime_checkable
class CommunityStore(Protocol):
    """Community records and the last-digest-sent marker."""

    def list_communities(self) -> list[Community]: ...

    def get(self, community_id: str) -> Community | None: ...

    def mark_digest_sent(self, community_id: str, sent_at: datetime) -> None: ...


@runtime_checkable
class TextSynthesisService(Protocol):
    """Generative-text service. Returns the raw model reply."""

    def synthesize(self, prompt: str) -> str: ...


@runtime_checkable
class EmailSender(Protocol):
    """Transactional email provider. Returns the provider message id."""

    def send(self, recipient: Recipient, message: RenderedMessage) -> str | None: ...
