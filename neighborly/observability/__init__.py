"""Logging, telemetry and per-run structured events."""
