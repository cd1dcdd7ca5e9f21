"""Neighborly weekly community digest pipeline"""

from __future__ import annotations

__version__ = "0.1.0"


def __getattr__(name: str):
    """
    Lazy imports to avoid loading heavy dependencies when only importing lightweight modules.
    """
    if name == "DigestScheduler":
        from neighborly.digest.scheduler import DigestScheduler

        return DigestScheduler
    if name == "DigestPipeline":
        from neighborly.digest.pipeline import DigestPipeline

        return DigestPipeline
    if name == "DigestService":
        from neighborly.digest.service import DigestService

        return DigestService
    msg = f"module {__name__!r} has no attribute {name!r}"
    raise AttributeError(msg)


__all__ = ["DigestPipeline", "DigestScheduler", "DigestService"]
