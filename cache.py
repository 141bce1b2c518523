"""
Process-local response cache for read-heavy GET routes.

Entries live until ``now > expires_at``; a read at or past that point
drops the entry. Writes invalidate by key prefix (``"products"`` clears
every ``"products:..."`` key).
"""
import threading
import time

from fastapi import Request
from fastapi.encoders import jsonable_encoder

PRODUCTS = "products"
CATEGORIES = "categories"
SEARCH = "search"


class ResponseCache:
    def __init__(self, default_ttl: float = 300.0, clock=time.monotonic):
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries = {}
        self._lock = threading.Lock()

    def get(self, key: str):
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if self._clock() > expires_at:
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value, ttl: float | None = None):
        ttl = self.default_ttl if ttl is None else ttl
        with self._lock:
            self._entries[key] = (value, self._clock() + ttl)

    def delete(self, key: str):
        with self._lock:
            self._entries.pop(key, None)

    def invalidate_prefix(self, prefix: str) -> int:
        with self._lock:
            doomed = [key for key in self._entries if key.startswith(prefix)]
            for key in doomed:
                del self._entries[key]
            return len(doomed)

    def clear(self):
        with self._lock:
            self._entries.clear()

    def stats(self):
        with self._lock:
            return {"size": len(self._entries), "keys": sorted(self._entries)}

    def remember(self, key: str, ttl: float | None, producer):
        cached = self.get(key)
        if cached is not None:
            return cached
        value = jsonable_encoder(producer())
        self.set(key, value, ttl)
        return value


def request_key(prefix: str, request: Request) -> str:
    query = request.url.query
    return f"{prefix}:{request.url.path}?{query}" if query else f"{prefix}:{request.url.path}"


def get_cache(request: Request) -> ResponseCache:
    return request.app.state.cache


def invalidate_catalog(cache: ResponseCache, *prefixes: str):
    for prefix in prefixes:
        cache.invalidate_prefix(prefix)
