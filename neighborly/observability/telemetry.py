"""
In-process digest metrics.

Counters and stage timings are kept in module state guarded by a lock, since
the scheduler may run communities on a small thread pool. Nothing leaves the
process; the health route and tests read the numbers back directly.

Metric names are dotted, e.g. ``digest.dispatch.sent`` or
``digest.synthesis.latency``. Timing names get an ``_ms`` suffix on read.
"""

from __future__ import annotations

import contextlib
import logging
import threading
import time
from collections import defaultdict
from collections.abc import Iterator
from typing import Any

logger = logging.getLogger("neighborly.telemetry")

_lock = threading.Lock()
_counts: defaultdict[str, int] = defaultdict(int)
_timings: defaultdict[str, list[float]] = defaultdict(list)


def _timing_key(name: str) -> str:
    return name if name.endswith("_ms") else f"{name}_ms"


def log_event(event_name: str, **fields: Any) -> None:
    """Log a named event with key/value fields. Never pass recipient emails."""
    detail = " ".join(f"{key}={value}" for key, value in sorted(fields.items()))
    logger.info("event=%s %s", event_name, detail)


def counter(name: str, increment: int = 1) -> int:
    """Add ``increment`` to a counter and return the new value."""
    with _lock:
        _counts[name] += increment
        value = _counts[name]
    logger.debug("counter=%s value=%d", name, value)
    return value


def get_counter(name: str) -> int:
    with _lock:
        return _counts.get(name, 0)


def get_counters() -> dict[str, int]:
    with _lock:
        return dict(_counts)


@contextlib.contextmanager
def time_block(name: str) -> Iterator[None]:
    """Record how long the ``with`` body took, in milliseconds."""
    started = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = (time.perf_counter() - started) * 1000
        key = _timing_key(name)
        with _lock:
            _timings[key].append(elapsed_ms)
        logger.debug("timing=%s ms=%.1f", key, elapsed_ms)


def get_latency_stats(name: str) -> dict[str, float]:
    """
    Summary of recorded timings for ``name``: count, min, max, avg and p95.

    All zeros when nothing was recorded.
    """
    with _lock:
        samples = sorted(_timings.get(_timing_key(name), []))

    if not samples:
        return {"count": 0, "min": 0.0, "max": 0.0, "avg": 0.0, "p95": 0.0}

    count = len(samples)
    return {
        "count": count,
        "min": samples[0],
        "max": samples[-1],
        "avg": sum(samples) / count,
        "p95": samples[min(int(count * 0.95), count - 1)],
    }


def reset() -> None:
    """Drop all counters and timings."""
    with _lock:
        _counts.clear()
        _timings.clear()
