"""Centralized configuration for the Neighborly digest pipeline.

Re-exports everything from neighborly.infrastructure.settings, then adds typed
constants for grouping, synthesis, scheduling, dispatch and LLM settings.
Environment variable overrides use safe defaults so the pipeline runs without
extra env configuration.
"""

from __future__ import annotations

import os

from neighborly.infrastructure.settings import *  # noqa: F401, F403  re-export

# --- App ---
APP_VERSION: str = "0.1.0"

# --- Grouping ---
GROUPING_MERGE_THRESHOLD_SECONDS: int = int(
    os.getenv("NEIGHBORLY_GROUPING_MERGE_THRESHOLD_SECONDS", "60")
)

# --- Synthesis ---
# Fallback content has three fixed suggestion links, so more cannot be padded
MAX_SUGGESTION_COUNT: int = 3
SUGGESTION_COUNT: int = max(
    1, min(int(os.getenv("NEIGHBORLY_SUGGESTION_COUNT", "3")), MAX_SUGGESTION_COUNT)
)
BRIEF_MAX_PEOPLE: int = int(os.getenv("NEIGHBORLY_BRIEF_MAX_PEOPLE", "4"))
BRIEF_MAX_SKILLS_PER_PERSON: int = 3
LOW_ACTIVITY_THRESHOLD: int = 3

# --- Markup ---
MENTION_GROUP_MIN_LENGTH: int = 30

# --- Scheduling ---
DIGEST_SEND_HOUR: int = int(os.getenv("NEIGHBORLY_DIGEST_SEND_HOUR", "9"))
DIGEST_DEFAULT_WEEKDAY: int = int(os.getenv("NEIGHBORLY_DIGEST_DEFAULT_WEEKDAY", "6"))
DIGEST_WINDOW_DAYS: int = int(os.getenv("NEIGHBORLY_DIGEST_WINDOW_DAYS", "7"))
SCHEDULER_MAX_WORKERS: int = int(os.getenv("NEIGHBORLY_SCHEDULER_MAX_WORKERS", "1"))

# --- Dispatch ---
DISPATCH_RATE_LIMIT_PER_SECOND: float = float(
    os.getenv("NEIGHBORLY_DISPATCH_RATE_LIMIT_PER_SECOND", "2")
)
DISPATCH_SAFETY_MARGIN_SECONDS: float = float(
    os.getenv("NEIGHBORLY_DISPATCH_SAFETY_MARGIN_SECONDS", "0.1")
)
RESEND_TIMEOUT_SECONDS: float = float(os.getenv("NEIGHBORLY_RESEND_TIMEOUT", "15"))

# --- LLM ---
LLM_TIMEOUT_SECONDS: int = int(os.getenv("NEIGHBORLY_LLM_TIMEOUT", "30"))
LLM_MAX_RETRIES: int = int(os.getenv("NEIGHBORLY_LLM_MAX_RETRIES", "3"))
