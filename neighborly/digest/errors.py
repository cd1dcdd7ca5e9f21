"""
Digest exception hierarchy.

Only AggregationError and CommunityNotFoundError ever leave the pipeline.
SynthesisError is recovered inside the synthesizer, DeliveryError inside the
dispatcher.
"""

from __future__ import annotations


class DigestError(Exception):
    """Base exception for digest failures."""

    pass


class AggregationError(DigestError):
    """Every activity source failed for a community."""

    pass


class CommunityNotFoundError(DigestError):
    """Requested community does not exist."""

    def __init__(self, community_id: str):
        super().__init__(f"Community not found: {community_id}")
        self.community_id = community_id


class SynthesisError(DigestError):
    """Generative-text reply was missing, malformed or failed validation."""

    pass


class DeliveryError(DigestError):
    """Email provider rejected or failed a send."""

    pass
