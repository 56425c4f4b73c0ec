"""
Similarity Engine - Normalized edit-distance matching.

similarity = (maxLen - levenshtein) / maxLen, case-insensitive.
"""

from typing import Iterable, List, Tuple

DEFAULT_THRESHOLD = 0.6


def levenshtein_distance(a: str, b: str) -> int:
    """Classic two-row dynamic-programming edit distance."""
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)
    if len(a) < len(b):
        a, b = b, a

    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            current.append(min(
                previous[j] + 1,         # deletion
                current[j - 1] + 1,      # insertion
                previous[j - 1] + cost,  # substitution
            ))
        previous = current
    return previous[-1]


def similarity(a: str, b: str) -> float:
    """
    Case-insensitive similarity in [0, 1].

    Example:
        >>> similarity("user-email", "user_email")
        0.9
    """
    a = (a or "").lower()
    b = (b or "").lower()
    max_len = max(len(a), len(b))
    if max_len == 0:
        return 1.0
    return (max_len - levenshtein_distance(a, b)) / max_len


def is_similar(a: str, b: str, threshold: float = DEFAULT_THRESHOLD) -> bool:
    return similarity(a, b) >= threshold


def best_matches(
    needle: str,
    haystack: Iterable[str],
    threshold: float = DEFAULT_THRESHOLD,
    limit: int = 5,
) -> List[Tuple[str, float]]:
    """
    Rank ``haystack`` by similarity to ``needle``.

    Returns (candidate, score) pairs at or above ``threshold``, best first.
    Ties keep their input order.
    """
    scored = []
    seen = set()
    for candidate in haystack:
        if not candidate or candidate in seen:
            continue
        seen.add(candidate)
        score = similarity(needle, candidate)
        if score >= threshold:
            scored.append((candidate, score))
    scored.sort(key=lambda pair: pair[1], reverse=True)
    return scored[:limit]
