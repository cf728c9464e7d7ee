"""Text matching shared by the coherence checks and model-response parsing.

Every name/keyword lookup against free-form narrative goes through
`contains_ignore_case`. Matching is plain substring search, so a candidate
whose name is contained in another candidate's name can be misattributed.
"""

from __future__ import annotations


def contains_ignore_case(haystack: str | None, needle: str | None) -> bool:
    if not haystack or not needle:
        return False
    return needle.casefold() in haystack.casefold()


def snippet(text: str | None, limit: int = 200) -> str:
    """First `limit` characters of `text`."""
    if not text:
        return ""
    return text[:limit]
