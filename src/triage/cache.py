"""Per-repository cache for finished analyses.

This module defines the AnalysisCache protocol consumed by the HTTP layer
and an in-memory implementation with per-entry expiry. One entry is kept
per repository, keyed case-insensitively by owner and name.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Protocol


logger = logging.getLogger(__name__)


DEFAULT_TTL_HOURS = 24.0


def generate_cache_key(owner: str, repo: str) -> str:
    """Generate the cache key for a repository."""
    return f"repo:{owner.lower()}:{repo.lower()}"


@dataclass(frozen=True)
class CacheEntry:
    """A cached analysis with its storage and expiry times (epoch seconds)."""

    timestamp: float
    expires_at: float
    data: Dict[str, Any]


class AnalysisCache(Protocol):
    """Protocol defining the interface for analysis caching.

    get returns None for absent or expired entries; set overwrites any
    previous entry for the repository.
    """

    async def get(self, owner: str, repo: str) -> Optional[Dict[str, Any]]:
        ...

    async def set(
        self,
        owner: str,
        repo: str,
        result: Dict[str, Any],
        ttl_hours: float = DEFAULT_TTL_HOURS,
    ) -> None:
        ...


class InMemoryAnalysisCache:
    """In-process analysis cache.

    Attributes:
        clock: Callable returning the current time in epoch seconds.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock
        self._entries: Dict[str, CacheEntry] = {}

    async def get(self, owner: str, repo: str) -> Optional[Dict[str, Any]]:
        """Return the cached analysis, or None if absent or expired."""
        key = generate_cache_key(owner, repo)
        entry = self._entries.get(key)
        if entry is None:
            return None

        if self.clock() > entry.expires_at:
            logger.debug("Cache entry expired", extra={"key": key})
            del self._entries[key]
            return None

        return entry.data

    async def set(
        self,
        owner: str,
        repo: str,
        result: Dict[str, Any],
        ttl_hours: float = DEFAULT_TTL_HOURS,
    ) -> None:
        """Store an analysis for ttl_hours, evicting any expired entries."""
        key = generate_cache_key(owner, repo)
        now = self.clock()
        self._purge_expired(now)
        self._entries[key] = CacheEntry(
            timestamp=now,
            expires_at=now + ttl_hours * 3600,
            data=result,
        )
        logger.debug(
            "Cached analysis",
            extra={"key": key, "ttl_hours": ttl_hours},
        )

    def _purge_expired(self, now: float) -> None:
        expired = [key for key, entry in self._entries.items() if now > entry.expires_at]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug("Evicted expired cache entries", extra={"count": len(expired)})

    def __len__(self) -> int:
        return len(self._entries)
