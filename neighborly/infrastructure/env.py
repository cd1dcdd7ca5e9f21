"""
Load .env into the process environment before settings are read.

NEIGHBORLY_ENV_FILE points at an explicit file; otherwise the nearest .env
above the package (then above the working directory) is used. Variables
already set in the environment always win.
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import find_dotenv, load_dotenv

_loaded_from: Path | None = None
_done = False


def _locate() -> Path | None:
    explicit = os.getenv("NEIGHBORLY_ENV_FILE")
    if explicit:
        return Path(explicit)

    for parent in Path(__file__).resolve().parents:
        candidate = parent / ".env"
        if candidate.is_file():
            return candidate

    found = find_dotenv(usecwd=True)
    return Path(found) if found else None


def ensure_env_loaded(env_path: Path | None = None) -> Path | None:
    """Load the .env file once and return its path (None when there is none)."""
    global _loaded_from, _done
    if _done:
        return _loaded_from

    path = env_path or _locate()
    if path is not None and path.is_file():
        load_dotenv(path, override=False)
        _loaded_from = path
    _done = True
    return _loaded_from
