"""Top-K selection and pagination over scored candidates."""

from __future__ import annotations

import heapq
from typing import Protocol, Sequence, TypeVar


class Scored(Protocol):
    score: float


T = TypeVar("T", bound=Scored)


def select_top_k(candidates: Sequence[T], k: int) -> list[T]:
    """Return the ``k`` highest scoring candidates, best first.

    Ties keep their input order, so the result always equals the first ``k``
    entries of a stable descending sort. When ``k`` is smaller than the input a
    bounded min-heap is used instead of sorting everything.
    """

    if k <= 0 or not candidates:
        return []

    if k >= len(candidates):
        return sorted(candidates, key=lambda candidate: candidate.score, reverse=True)

    # Entries are (score, -position, position); the root is the weakest kept
    # candidate, and among equal scores the one that arrived last.
    heap: list[tuple[float, int, int]] = []
    for position, candidate in enumerate(candidates):
        entry = (candidate.score, -position, position)
        if len(heap) < k:
            heapq.heappush(heap, entry)
        elif candidate.score > heap[0][0]:
            heapq.heapreplace(heap, entry)

    heap.sort(key=lambda entry: (-entry[0], entry[2]))
    return [candidates[position] for _, _, position in heap]


def paginate(candidates: Sequence[T], page: int, limit: int) -> list[T]:
    """Return the ``page``-th window of ``limit`` candidates in score order."""

    if limit <= 0 or page <= 0 or not candidates:
        return []

    start = (page - 1) * limit
    end = page * limit
    if start >= len(candidates):
        return []

    window = select_top_k(candidates, min(end, len(candidates)))
    return window[start : start + limit]


def page_count(total: int, limit: int) -> int:
    if limit <= 0 or total <= 0:
        return 0
    return -(-total // limit)
