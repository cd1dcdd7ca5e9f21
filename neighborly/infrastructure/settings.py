"""
Application-wide settings and environment configuration
"""

from __future__ import annotations

import os
from pathlib import Path

from neighborly.infrastructure.env import ensure_env_loaded

ensure_env_loaded()

# Project root (holds .env and data/)
PROJECT_ROOT = Path(__file__).parent.parent.parent

# Environment
ENV = os.getenv("NEIGHBORLY_ENV", "development")

# API Configuration
API_HOST = os.getenv("API_HOST", "0.0.0.0")
API_PORT = int(os.getenv("API_PORT", "8000"))

# Google Cloud / Gemini
GOOGLE_CLOUD_PROJECT = os.getenv("GOOGLE_CLOUD_PROJECT")
GOOGLE_API_KEY = os.getenv("GOOGLE_API_KEY")
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.0-flash-001")
GEMINI_LOCATION = os.getenv("GEMINI_LOCATION", "us-central1")
GEMINI_MAX_TOKENS = int(os.getenv("GEMINI_MAX_TOKENS", "2048"))
GEMINI_TEMPERATURE = float(os.getenv("GEMINI_TEMPERATURE", "0.7"))

# Email delivery (Resend)
RESEND_API_KEY = os.getenv("RESEND_API_KEY")
RESEND_API_URL = os.getenv("RESEND_API_URL", "https://api.resend.com/emails")
DIGEST_FROM_EMAIL = os.getenv(
    "DIGEST_FROM_EMAIL", "NeighborhoodOS <weekly@updates.neighborhoodos.com>"
)

# Public site used for every link in the digest
DIGEST_BASE_URL = os.getenv("DIGEST_BASE_URL", "https://neighborhoodos.com").rstrip("/")

# Snapshot file consumed by the CLI / API when no live store is wired
SNAPSHOT_PATH = Path(
    os.getenv("NEIGHBORLY_SNAPSHOT_PATH", str(PROJECT_ROOT / "data" / "snapshot.json"))
)

# Feature Flags
SYNTHESIS_ENABLED = os.getenv("SYNTHESIS_ENABLED", "true").lower() == "true"

