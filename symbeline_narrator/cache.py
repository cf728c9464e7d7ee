"""Narrative cache: already-generated narration keyed by event signature.

Events that are narratively indistinguishable (same type, same card, same
players, same numbers) share a signature, so repeating one costs no model
call. Storage is a flat list scanned linearly; the cache holds tens of
entries, not thousands.

Eviction is pure LRU on last use; entries older than `ttl_seconds` since
generation are dropped on access (0 disables expiry).
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from pydantic import BaseModel

from symbeline_narrator.narration.events import GameEventType, NarrationEvent

logger = logging.getLogger(__name__)

UNKNOWN = "unknown"


class NarrativeCacheEntry(BaseModel):
    signature: str
    narrative: str
    generated_at: float
    last_used: float
    use_count: int = 0
    access_seq: int = 0  # tie-breaker for entries touched within one clock tick


class CacheStats(BaseModel):
    total_entries: int
    hits: int
    misses: int
    evictions: int
    expirations: int
    hit_rate: float


class NarrativeCache:
    def __init__(self, max_entries: int, ttl_seconds: float = 0,
                 clock: Callable[[], float] = time.monotonic) -> None:
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: list[NarrativeCacheEntry] = []
        self._seq = 0
        self.hits = 0
        self.misses = 0
        self.evictions = 0
        self.expirations = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, signature: object) -> bool:
        return self._find(signature) >= 0

    def _find(self, signature: object) -> int:
        for i, entry in enumerate(self._entries):
            if entry.signature == signature:
                return i
        return -1

    def _next_seq(self) -> int:
        self._seq += 1
        return self._seq

    def _is_expired(self, entry: NarrativeCacheEntry, now: float) -> bool:
        if self.ttl_seconds <= 0:
            return False
        return now - entry.generated_at >= self.ttl_seconds

    def get(self, signature: str) -> str | None:
        idx = self._find(signature)
        if idx < 0:
            self.misses += 1
            logger.debug("cache miss %s", signature)
            return None

        now = self._clock()
        entry = self._entries[idx]
        if self._is_expired(entry, now):
            del self._entries[idx]
            self.expirations += 1
            self.misses += 1
            logger.debug("cache expired %s", signature)
            return None

        entry.last_used = now
        entry.access_seq = self._next_seq()
        entry.use_count += 1
        self.hits += 1
        logger.debug("cache hit %s", signature)
        return entry.narrative

    def set(self, signature: str, narrative: str) -> None:
        now = self._clock()
        idx = self._find(signature)
        if idx >= 0:
            entry = self._entries[idx]
            entry.narrative = narrative
            entry.generated_at = now
            entry.last_used = now
            entry.access_seq = self._next_seq()
            return

        if len(self._entries) >= self.max_entries:
            lru = min(range(len(self._entries)),
                      key=lambda i: (self._entries[i].last_used, self._entries[i].access_seq))
            evicted = self._entries.pop(lru)
            self.evictions += 1
            logger.debug("cache evicted %s", evicted.signature)

        self._entries.append(NarrativeCacheEntry(
            signature=signature, narrative=narrative,
            generated_at=now, last_used=now, access_seq=self._next_seq(),
        ))

    def remove(self, signature: str) -> bool:
        idx = self._find(signature)
        if idx < 0:
            return False
        del self._entries[idx]
        return True

    def clear(self) -> None:
        self._entries.clear()

    def cleanup_expired(self) -> int:
        """Drop every expired entry. Returns the number removed."""
        if self.ttl_seconds <= 0:
            return 0
        now = self._clock()
        kept = [e for e in self._entries if not self._is_expired(e, now)]
        removed = len(self._entries) - len(kept)
        self._entries = kept
        self.expirations += removed
        return removed

    def stats(self) -> CacheStats:
        total = self.hits + self.misses
        return CacheStats(
            total_entries=len(self._entries),
            hits=self.hits,
            misses=self.misses,
            evictions=self.evictions,
            expirations=self.expirations,
            hit_rate=self.hits / total if total else 0.0,
        )

    def reset_stats(self) -> None:
        self.hits = 0
        self.misses = 0
        self.evictions = 0
        self.expirations = 0


# ---------------------------------------------------------------------------
# Signatures
# ---------------------------------------------------------------------------

def _name(player) -> str:
    return player.name if player is not None and player.name else UNKNOWN


def build_signature(event: NarrationEvent) -> str:
    """Deterministic cache key from the event type and its salient fields."""
    kind = event.type.display_name
    actor, target = event.actor, event.target

    match event.type:
        case GameEventType.CARD_PLAYED:
            if actor is None or event.card is None:
                return f"{kind}:{UNKNOWN}:{UNKNOWN}"
            return f"{kind}:{event.card.type.name or UNKNOWN}:{_name(actor)}"
        case GameEventType.CARD_PURCHASED:
            if actor is None or event.card is None:
                return f"{kind}:{UNKNOWN}:{UNKNOWN}:{event.cost}"
            return f"{kind}:{event.card.type.name or UNKNOWN}:{_name(actor)}:{event.cost}"
        case GameEventType.ATTACK_PLAYER:
            if actor is None or target is None:
                return f"{kind}:{UNKNOWN}:{UNKNOWN}:{event.damage}"
            return f"{kind}:{_name(actor)}:{_name(target)}:{event.damage}"
        case GameEventType.ATTACK_BASE:
            if actor is None or event.base is None:
                return f"{kind}:{UNKNOWN}:{UNKNOWN}:{event.damage}"
            return f"{kind}:{_name(actor)}:{event.base.type.name or UNKNOWN}:{event.damage}"
        case GameEventType.BASE_DESTROYED:
            if target is None or event.base is None:
                return f"{kind}:{UNKNOWN}:{UNKNOWN}"
            return f"{kind}:{_name(target)}:{event.base.type.name or UNKNOWN}"
        case GameEventType.TURN_START | GameEventType.TURN_END:
            if actor is None:
                return f"{kind}:{UNKNOWN}:{event.turn}"
            return f"{kind}:{_name(actor)}:{event.turn}"
        case GameEventType.GAME_OVER:
            if actor is None or target is None:
                return f"{kind}:{UNKNOWN}:{UNKNOWN}"
            # final authority travels in `damage`
            return f"{kind}:{_name(actor)}:{_name(target)}:{event.damage}"
        case _:
            return kind
