"""Small per-process TTL cache for read-heavy admin endpoints."""

import threading
import time

DEFAULT_TTL = 15

_entries = {}
_lock = threading.Lock()


def cached_request(key, fetcher, ttl=DEFAULT_TTL, skip_cache=False):
    """Return the cached value for ``key`` or call ``fetcher`` and cache it.

    Exceptions from ``fetcher`` propagate and nothing is stored.
    """
    now = time.monotonic()
    if not skip_cache:
        with _lock:
            entry = _entries.get(key)
        if entry and entry[0] > now:
            return entry[1]

    value = fetcher()
    with _lock:
        _prune(time.monotonic())
        _entries[key] = (time.monotonic() + ttl, value)
    return value


def _prune(now):
    # caller holds _lock
    for key in [k for k, (expires, _) in _entries.items() if expires <= now]:
        del _entries[key]


def invalidate_prefix(prefix):
    with _lock:
        for key in [k for k in _entries if k.startswith(prefix)]:
            _entries.pop(key, None)


def clear():
    with _lock:
        _entries.clear()
