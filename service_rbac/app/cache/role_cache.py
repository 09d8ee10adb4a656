"""
In-process TTL cache mapping an identity key to a resolved role.
"""

import hashlib
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Mapping, Optional

from shared.logging import get_logger


USER_ID_HEADER = "X-User-ID"
API_KEY_HEADER = "X-Api-Key"

KEY_PREFIX = "rbac"
IP_KEY_PREFIX = f"{KEY_PREFIX}:ip:"

API_KEY_DIGEST_LENGTH = 32


@dataclass(frozen=True)
class CachedRoleEntry:
    """A cached role and the monotonic instant it stops being valid."""

    role: str
    expires_at: float


def header_value(headers: Optional[Mapping[str, str]], name: str) -> Optional[str]:
    """Case-insensitive header lookup that also works on plain dicts."""
    if not headers:
        return None
    value = headers.get(name)
    if value is None:
        lowered = name.lower()
        for key, candidate in headers.items():
            if key.lower() == lowered:
                value = candidate
                break
    if value is None:
        return None
    value = value.strip()
    return value or None


def identity_key(headers: Optional[Mapping[str, str]], remote_addr: Optional[str] = None) -> Optional[str]:
    """Derive the cache key: user id, then API key, then remote address.

    API keys are credentials, so only a sha256 prefix of one ends up in
    the key (and in any log line the key is bound to).
    """
    user_id = header_value(headers, USER_ID_HEADER)
    if user_id:
        return f"{KEY_PREFIX}:user:{user_id}"

    api_key = header_value(headers, API_KEY_HEADER)
    if api_key:
        digest = hashlib.sha256(api_key.encode("utf-8")).hexdigest()[:API_KEY_DIGEST_LENGTH]
        return f"{KEY_PREFIX}:apikey:{digest}"

    if remote_addr:
        return f"{IP_KEY_PREFIX}{remote_addr}"

    return None


def is_shared_identity(key: Optional[str]) -> bool:
    """Remote-address keys may be shared by many callers behind one NAT or proxy."""
    return bool(key) and key.startswith(IP_KEY_PREFIX)


class RoleCache:
    """Thread-safe TTL cache with lazy expiry and a background sweep.

    The sweep runs every ``ttl / 2`` seconds. A zero or negative TTL
    disables it, leaving expiry entirely to :meth:`get`.
    """

    def __init__(self, ttl_seconds: float, *, clock: Callable[[], float] = time.monotonic):
        self.ttl = float(ttl_seconds)
        self.logger = get_logger("rbac.cache.role")
        self._clock = clock
        self._entries: Dict[str, CachedRoleEntry] = {}
        self._lock = threading.Lock()
        self._stopped = threading.Event()
        self._sweeper: Optional[threading.Thread] = None

        if self.ttl > 0:
            self._sweeper = threading.Thread(
                target=self._sweep_loop,
                name="rbac-role-cache-sweeper",
                daemon=True,
            )
            self._sweeper.start()

    def get(self, key: str) -> Optional[str]:
        """Return the cached role, or ``None`` when absent or expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._clock() > entry.expires_at:
                del self._entries[key]
                return None
            return entry.role

    def set(self, key: str, role: str) -> None:
        entry = CachedRoleEntry(role=role, expires_at=self._clock() + self.ttl)
        with self._lock:
            self._entries[key] = entry

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def sweep(self) -> int:
        """Evict every expired entry in one pass; returns the eviction count."""
        now = self._clock()
        with self._lock:
            expired = [key for key, entry in self._entries.items() if now > entry.expires_at]
            for key in expired:
                del self._entries[key]
        if expired:
            self.logger.debug("Evicted expired roles", count=len(expired))
        return len(expired)

    def stop(self) -> None:
        """Stop the background sweep. Safe to call more than once."""
        self._stopped.set()
        sweeper = self._sweeper
        if sweeper is not None and sweeper.is_alive() and sweeper is not threading.current_thread():
            sweeper.join(timeout=max(self.ttl, 1.0))

    @property
    def running(self) -> bool:
        return self._sweeper is not None and self._sweeper.is_alive()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _sweep_loop(self) -> None:
        interval = self.ttl / 2
        while not self._stopped.wait(interval):
            self.sweep()
