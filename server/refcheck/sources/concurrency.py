from __future__ import annotations

import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager

_REGISTRY_LIMITERS_LOCK = threading.Lock()
_REGISTRY_LIMITERS: dict[tuple[str, int], threading.BoundedSemaphore] = {}
_LAST_CALL_LOCK = threading.Lock()
_LAST_CALL_AT: dict[str, float] = {}


def _global_registry_limiter(source: str, *, limit: int) -> threading.BoundedSemaphore | None:
    limit = int(limit)
    if limit <= 0:
        return None
    key = (str(source or "").strip().lower(), limit)
    with _REGISTRY_LIMITERS_LOCK:
        limiter = _REGISTRY_LIMITERS.get(key)
        if limiter is None:
            limiter = threading.BoundedSemaphore(limit)
            _REGISTRY_LIMITERS[key] = limiter
    return limiter


def _wait_for_interval(source: str, min_interval: float) -> None:
    if min_interval <= 0:
        return
    key = str(source or "").strip().lower()
    with _LAST_CALL_LOCK:
        now = time.monotonic()
        start_at = max(now, _LAST_CALL_AT.get(key, 0.0) + min_interval)
        _LAST_CALL_AT[key] = start_at
    delay = start_at - now
    if delay > 0:
        time.sleep(delay)


@contextmanager
def acquire_registry_slot(
    *,
    source: str,
    limit: int,
    min_interval: float = 0.0,
) -> Iterator[None]:
    """
    Bound concurrent calls to one registry across the process and space their start times.

    ``limit <= 0`` disables the concurrency cap; ``min_interval`` is in seconds.
    """
    limiter = _global_registry_limiter(source, limit=limit)
    if limiter is not None:
        limiter.acquire()
    try:
        _wait_for_interval(source, float(min_interval))
        yield
    finally:
        if limiter is not None:
            limiter.release()
