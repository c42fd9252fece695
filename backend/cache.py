"""
Cache Module for provider payloads
Time-windowed in-process cache with lazy expiry
"""
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional


def iso_now() -> str:
    """Returns current UTC timestamp in ISO format."""
    return datetime.now(timezone.utc).isoformat()


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class CachePolicy:
    """
    Cache windows per payload family.

    - news_seconds: news feeds (any provider, any chain filter)
    - image_seconds: icon index used to enrich listings
    - token_list_seconds: Solana token metadata
    """
    news_seconds: int = 120
    image_seconds: int = 300
    token_list_seconds: int = 3600

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "CachePolicy":
        return cls(
            news_seconds=int(config.get('NEWS_CACHE_SECONDS', cls.news_seconds)),
            image_seconds=int(config.get('IMAGE_CACHE_SECONDS', cls.image_seconds)),
            token_list_seconds=int(config.get('TOKEN_LIST_CACHE_SECONDS', cls.token_list_seconds)),
        )


@dataclass(frozen=True)
class CacheEntry:
    key: str
    payload: Any
    fetched_at: int  # epoch millis
    ttl: float  # seconds

    def age_seconds(self, now: Optional[int] = None) -> float:
        now = now_ms() if now is None else now
        return max(0.0, (now - self.fetched_at) / 1000.0)

    def is_fresh(self, now: Optional[int] = None) -> bool:
        return self.age_seconds(now) < self.ttl


class TTLCache:
    """
    Per-key cache: {get(key), set(key, value, ttl), invalidate_all()}.

    Expiry is checked on read (now - fetched_at); there is no sweeper, so
    stale entries stay in memory until read again or until invalidate_all().
    Single dict operations only; no lock is taken.
    """

    def __init__(self, clock=None):
        self._store: Dict[str, CacheEntry] = {}
        self._clock = clock or now_ms
        self.hits = 0
        self.misses = 0

    def entry(self, key: str) -> Optional[CacheEntry]:
        entry = self._store.get(key)
        if entry is None:
            return None
        if not entry.is_fresh(self._clock()):
            self._store.pop(key, None)
            return None
        return entry

    def get(self, key: str) -> Optional[Any]:
        entry = self.entry(key)
        if entry is None:
            self.misses += 1
            return None
        self.hits += 1
        return entry.payload

    def set(self, key: str, value: Any, ttl: float) -> CacheEntry:
        entry = CacheEntry(key=key, payload=value, fetched_at=self._clock(), ttl=float(ttl))
        self._store[key] = entry
        return entry

    def invalidate_all(self) -> None:
        # Swap, not clear(): readers may still hold the old dict
        self._store = {}

    def keys(self):
        return list(self._store.keys())

    def stats(self) -> Dict[str, Any]:
        now = self._clock()
        return {
            'keys': len(self._store),
            'hits': self.hits,
            'misses': self.misses,
            'entries': {
                k: {'age_seconds': round(e.age_seconds(now), 3), 'ttl': e.ttl, 'fresh': e.is_fresh(now)}
                for k, e in list(self._store.items())
            },
        }
