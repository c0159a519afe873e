# storefront/services/token_cache.py
import threading
import time
from dataclasses import dataclass


@dataclass(frozen=True)
class CachedToken:
    token: str
    expires_at: float

    def is_valid(self, now: float) -> bool:
        return now < self.expires_at


class TokenCache:
    """Process-wide bearer tokens keyed by credential.

    Reads are cheap and lock-free for callers holding a valid token. A
    refresh runs under a per-key lock so that concurrent callers who all
    find the token missing wait on one login instead of issuing their own.
    """

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, CachedToken] = {}
        self._refresh_locks: dict[str, threading.Lock] = {}

    def get(self, key: str) -> str | None:
        with self._lock:
            entry = self._entries.get(key)
        if entry and entry.is_valid(self._clock()):
            return entry.token
        return None

    def set(self, key: str, token: str, ttl: float) -> None:
        with self._lock:
            self._entries[key] = CachedToken(token=token, expires_at=self._clock() + ttl)

    def invalidate(self, key: str, token: str | None = None) -> bool:
        """Drop the cached token; with ``token`` given, only if it is still the cached one."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False
            if token is not None and entry.token != token:
                return False
            del self._entries[key]
            return True

    def _refresh_lock(self, key: str) -> threading.Lock:
        with self._lock:
            return self._refresh_locks.setdefault(key, threading.Lock())

    def get_or_refresh(self, key: str, fetch) -> str | None:
        """Return a valid token, calling ``fetch() -> (token, ttl) | None`` at most once per expiry."""
        token = self.get(key)
        if token:
            return token
        with self._refresh_lock(key):
            token = self.get(key)
            if token:
                return token
            fetched = fetch()
            if not fetched:
                return None
            token, ttl = fetched
            self.set(key, token, ttl)
            return token
