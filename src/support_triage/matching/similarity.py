from __future__ import annotations


def _normalize(text: str) -> str:
    return (text or "").lower().strip()


def levenshtein(a: str, b: str) -> int:
    """
    Minimum number of single-character insertions, deletions and
    substitutions turning `a` into `b`.
    """
    # Row i of the DP table holds the distances between a[:i] and every b[:j].
    previous = list(range(len(b) + 1))
    for i in range(1, len(a) + 1):
        current = [i] + [0] * len(b)
        for j in range(1, len(b) + 1):
            if a[i - 1] == b[j - 1]:
                current[j] = previous[j - 1]
            else:
                current[j] = 1 + min(
                    previous[j - 1],  # substitution
                    current[j - 1],  # insertion
                    previous[j],  # deletion
                )
        previous = current
    return previous[len(b)]


def similarity(a: str, b: str) -> float:
    """
    Normalized edit-distance similarity in [0, 1].

    Both inputs are lower-cased and trimmed first. Cost is O(len(a) * len(b)),
    so callers truncate long texts before scoring.
    """
    p1 = _normalize(a)
    p2 = _normalize(b)
    if p1 == p2:
        return 1.0

    max_length = max(len(p1), len(p2))
    return 1.0 - levenshtein(p1, p2) / max_length
