"""
Fingerprint-keyed response cache with per-feature TTL.

Entries are removed lazily when a lookup finds them expired. Capacity is
bounded: a full cache first drops expired entries, then the entry closest
to expiry. ``sweep()`` is there for a hosting process that wants a
periodic cleanup; nothing in here runs on a timer.
"""

import hashlib
import json
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional

from .catalog import FeatureType
from .request import AIRequest, AIResponse, MAX_HISTORY_TURNS

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 3600

FEATURE_TTLS: Dict[FeatureType, int] = {
    FeatureType.QUICK_CHAT: 3600,
    FeatureType.STRATEGIC_BRIEFING: 3600,
    FeatureType.MINDMAP_GENERATION: 3600,
    FeatureType.NOTE_SUMMARY: 86400,
    FeatureType.COMPLETION_SUMMARY: 86400,
    FeatureType.RESEARCH_WITH_SOURCES: 7200,
}

_WHITESPACE = re.compile(r"\s+")


def normalize_message(message: str) -> str:
    """Trim, collapse whitespace and case-fold."""
    return _WHITESPACE.sub(" ", message or "").strip().casefold()


def fingerprint(request: AIRequest) -> str:
    """Deterministic cache key for a request.

    Covers the feature, the normalized message and the context fields that
    change the answer. File payloads contribute a digest, not their bytes.
    """
    ctx = request.context
    payload = {
        "feature": request.feature_type.value,
        "message": normalize_message(request.message),
        "history": [[turn.role, turn.content] for turn in ctx.recent_history(MAX_HISTORY_TURNS)],
        "goals": [[g.term, g.text, g.status] for g in ctx.user_goals],
        "tasks": [[t.title, t.status] for t in ctx.recent_tasks],
        "notes": [[n.title, n.content] for n in ctx.recent_notes],
        "personality": ctx.user_profile.personality_mode if ctx.user_profile else None,
        "files": [
            [f.mime_type, hashlib.sha256(f.base64.encode("utf-8")).hexdigest()]
            for f in request.files
        ],
    }
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    digest = hashlib.sha256(canonical.encode("utf-8")).hexdigest()
    return f"{request.feature_type.value}:{digest}"


@dataclass
class CacheEntry:
    """A cached response with its absolute expiry."""
    key: str
    response: AIResponse
    expires_at: float
    feature: FeatureType
    hit_count: int = 0

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class ResponseCache:
    """In-memory store of computed responses."""

    def __init__(
        self,
        ttls: Optional[Mapping[FeatureType, int]] = None,
        default_ttl_seconds: int = DEFAULT_TTL_SECONDS,
        max_entries: int = 10_000,
        clock: Callable[[], float] = time.time,
    ):
        if max_entries <= 0:
            raise ValueError("max_entries must be > 0")
        self._ttls: Dict[FeatureType, int] = dict(FEATURE_TTLS)
        if ttls:
            self._ttls.update(ttls)
        self._default_ttl = default_ttl_seconds
        self._max_entries = max_entries
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}

        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def __len__(self) -> int:
        return len(self._entries)

    def ttl_for(self, feature: FeatureType) -> int:
        return self._ttls.get(feature, self._default_ttl)

    def get(self, key: str) -> Optional[AIResponse]:
        """Return the stored response, or None on miss or expiry."""
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return None
        if entry.is_expired(self._clock()):
            del self._entries[key]
            self._misses += 1
            return None
        entry.hit_count += 1
        self._hits += 1
        return entry.response

    def put(self, key: str, response: AIResponse, feature: FeatureType) -> CacheEntry:
        """Store a response with the feature's TTL from now."""
        if key not in self._entries and len(self._entries) >= self._max_entries:
            self._make_room()
        entry = CacheEntry(
            key=key,
            response=response,
            expires_at=self._clock() + self.ttl_for(feature),
            feature=feature,
        )
        self._entries[key] = entry
        return entry

    def _make_room(self) -> None:
        if self.sweep():
            return
        soonest = min(self._entries.values(), key=lambda e: e.expires_at)
        del self._entries[soonest.key]
        self._evictions += 1

    def invalidate(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def sweep(self) -> int:
        """Drop every expired entry; returns how many were removed."""
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug("Swept %d expired response cache entries", len(expired))
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()

    def stats(self) -> Dict[str, Any]:
        lookups = self._hits + self._misses
        return {
            "size": len(self._entries),
            "max_entries": self._max_entries,
            "hits": self._hits,
            "misses": self._misses,
            "evictions": self._evictions,
            "hit_rate": round(self._hits / lookups, 4) if lookups else 0.0,
        }
