from __future__ import annotations

"""Hash tallies over a vote list.

Pure helpers; insertion order is first-seen order, which makes the leader
deterministic when counts tie.
"""

from typing import Dict, Iterable, Optional, Tuple

from .records import Vote


def count_hashes(votes: Iterable[Vote]) -> Dict[bytes, int]:
    counts: Dict[bytes, int] = {}
    for vote in votes:
        counts[vote.result_hash] = counts.get(vote.result_hash, 0) + 1
    return counts


def leading_hash(counts: Dict[bytes, int]) -> Tuple[Optional[bytes], int]:
    """Return ``(hash, count)`` of the leader; the earliest-seen hash wins ties."""
    best: Optional[bytes] = None
    best_count = 0
    for result_hash, n in counts.items():
        if n > best_count:
            best, best_count = result_hash, n
    return best, best_count


def vote_percentage(leading_count: int, total: int) -> int:
    """Floor of ``leading_count * 100 / total``; 0 when nothing was cast."""
    if total <= 0:
        return 0
    return leading_count * 100 // total
