"""
Character-bigram Jaccard similarity.

A cheap stand-in for semantic similarity: tolerant of reordering and
small paraphrases, O(n) per comparison, works on any script. Anything with
the ``SimilarityFn`` signature (e.g. an embedding cosine) can replace it.
"""
from __future__ import annotations

import re
from typing import Callable, FrozenSet, Iterable

SimilarityFn = Callable[[str, str], float]

_WHITESPACE = re.compile(r"\s+")


def bigrams(text: str) -> FrozenSet[str]:
    normalized = _WHITESPACE.sub("", text)
    return frozenset(normalized[i : i + 2] for i in range(len(normalized) - 1))


def jaccard(a: FrozenSet[str], b: FrozenSet[str]) -> float:
    if not a and not b:
        return 1.0
    intersection = len(a & b)
    return intersection / (len(a) + len(b) - intersection)


def bigram_similarity(text_a: str, text_b: str) -> float:
    return jaccard(bigrams(text_a.strip()), bigrams(text_b.strip()))


def max_similarity(text: str, others: Iterable[str], similarity: SimilarityFn = bigram_similarity) -> float:
    return max((similarity(text, other) for other in others), default=0.0)
