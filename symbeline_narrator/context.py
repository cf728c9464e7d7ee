"""Token-budgeted context window for model requests.

Entries carry a priority (0 = system prompt, never evicted; 5 = oldest
events, evicted first). Adding an entry evicts lower-priority entries until
it fits; if it still cannot fit, the entry is discarded and `add` returns
False. Callers treat that as "omit this fragment", never as fatal.

Token cost is estimated as ceil(len(text) / 4), a heuristic, not a tokenizer.
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable, Iterable
from enum import IntEnum

from pydantic import BaseModel

logger = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES = 100
CHARS_PER_TOKEN = 4


class ContextPriority(IntEnum):
    SYSTEM = 0          # never evicted
    CURRENT_TURN = 1
    WORLD_STATE = 2
    RECENT_EVENTS = 3
    FORCE_DESC = 4
    OLD_EVENTS = 5      # evicted first


class ContextEntry(BaseModel):
    text: str
    token_count: int
    priority: ContextPriority
    added_at: float
    is_summary: bool = False


class ContextStats(BaseModel):
    total_entries: int
    current_tokens: int
    max_tokens: int
    eviction_count: int
    summary_count: int
    utilization: float


def estimate_tokens(text: str | None) -> int:
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


class ContextManager:
    """Priority-ordered, token-budgeted list of context fragments.

    Invariants: the sum of entry token counts equals `current_tokens`, and
    `current_tokens <= max_tokens` after every `add`.
    """

    def __init__(self, max_tokens: int, max_entries: int = DEFAULT_MAX_ENTRIES,
                 clock: Callable[[], float] = time.monotonic) -> None:
        if max_tokens <= 0:
            raise ValueError("max_tokens must be positive")
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self.max_tokens = max_tokens
        self.max_entries = max_entries
        self._clock = clock
        self.entries: list[ContextEntry] = []
        self.current_tokens = 0
        self.eviction_count = 0
        self.summary_count = 0

    # ── Adding and evicting ───────────────────────────────

    def add(self, text: str, priority: ContextPriority, *, is_summary: bool = False) -> bool:
        cost = estimate_tokens(text)
        if cost > self.max_tokens:
            logger.warning("context entry of %d tokens exceeds budget %d", cost, self.max_tokens)
            return False

        if not self._can_make_room(cost):
            logger.warning(
                "context entry dropped: %d tokens, priority %s, %d/%d in use",
                cost, priority.name, self.current_tokens, self.max_tokens,
            )
            return False

        while self.current_tokens + cost > self.max_tokens or len(self.entries) >= self.max_entries:
            self._evict(self._eviction_victim())

        self.entries.append(ContextEntry(
            text=text, token_count=cost, priority=priority,
            added_at=self._clock(), is_summary=is_summary,
        ))
        self.current_tokens += cost
        return True

    def _can_make_room(self, cost: int, entries: list[ContextEntry] | None = None) -> bool:
        """Whether evicting every non-system entry would leave room for `cost`."""
        entries = self.entries if entries is None else entries
        protected = [e for e in entries if e.priority == ContextPriority.SYSTEM]
        fits_tokens = sum(e.token_count for e in protected) + cost <= self.max_tokens
        fits_slots = len(protected) < self.max_entries
        return fits_tokens and fits_slots

    def _eviction_victim(self) -> int:
        """Index of the lowest-priority, oldest non-system entry."""
        victim = -1
        for i, entry in enumerate(self.entries):
            if entry.priority == ContextPriority.SYSTEM:
                continue
            if victim < 0:
                victim = i
                continue
            current = self.entries[victim]
            if entry.priority > current.priority or (
                entry.priority == current.priority and entry.added_at < current.added_at
            ):
                victim = i
        return victim

    def _evict(self, index: int) -> None:
        entry = self.entries.pop(index)
        self.current_tokens -= entry.token_count
        self.eviction_count += 1
        logger.debug("context evicted priority=%s tokens=%d", entry.priority.name, entry.token_count)

    # ── Assembly ──────────────────────────────────────────

    def build_prompt(self, include_system: bool = True) -> str:
        """Entries ordered by priority, then age, joined by blank lines."""
        ordered = sorted(
            (e for e in self.entries if include_system or e.priority != ContextPriority.SYSTEM),
            key=lambda e: (e.priority, e.added_at),
        )
        return "\n\n".join(e.text for e in ordered)

    # ── Summarization ─────────────────────────────────────

    def needs_summarization(self, threshold: float) -> bool:
        return self.current_tokens / self.max_tokens >= threshold

    def find_summarizable(self) -> list[int]:
        """Indices of non-summary entries at FORCE_DESC priority or lower."""
        return [
            i for i, e in enumerate(self.entries)
            if not e.is_summary and e.priority >= ContextPriority.FORCE_DESC
        ]

    def replace_with_summary(self, indices: Iterable[int], summary: str) -> bool:
        """Replace the given entries with one summary entry.

        The summary takes the most protective priority among the replaced
        entries. Returns False, changing nothing, for an empty or invalid
        index set or a summary that would not fit once they are gone.
        """
        targets = sorted(set(indices))
        if not targets or targets[0] < 0 or targets[-1] >= len(self.entries):
            return False

        kept = [e for i, e in enumerate(self.entries) if i not in targets]
        if not self._can_make_room(estimate_tokens(summary), kept):
            logger.warning("summary of %d entries does not fit, keeping originals", len(targets))
            return False

        priority = min(self.entries[i].priority for i in targets)
        for i in reversed(targets):
            entry = self.entries.pop(i)
            self.current_tokens -= entry.token_count

        if not self.add(summary, priority, is_summary=True):
            return False
        self.summary_count += 1
        return True

    # ── Housekeeping ──────────────────────────────────────

    def stats(self) -> ContextStats:
        return ContextStats(
            total_entries=len(self.entries),
            current_tokens=self.current_tokens,
            max_tokens=self.max_tokens,
            eviction_count=self.eviction_count,
            summary_count=self.summary_count,
            utilization=self.current_tokens / self.max_tokens,
        )

    @property
    def available_tokens(self) -> int:
        return max(0, self.max_tokens - self.current_tokens)

    def is_full(self, threshold: float) -> bool:
        threshold = max(0.0, min(1.0, threshold))
        return self.current_tokens / self.max_tokens >= threshold

    def clear(self) -> None:
        self.entries.clear()
        self.current_tokens = 0

    def clear_priority(self, priority: ContextPriority) -> None:
        kept = [e for e in self.entries if e.priority != priority]
        self.current_tokens = sum(e.token_count for e in kept)
        self.entries = kept
