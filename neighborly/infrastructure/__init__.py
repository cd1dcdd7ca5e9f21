"""Settings, environment loading and retry helpers."""
