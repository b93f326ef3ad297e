from __future__ import annotations

"""Single-round hash voting for a request record.

Safety: a record resolves at most once, to the hash leading at the vote that
first satisfies both the absolute count (``min_votes``) and the share of all
votes cast so far (``approval_threshold`` percent).
Liveness is not guaranteed: a request that never gathers enough agreeing
votes stays Pending.
"""

from dataclasses import dataclass
import logging
from typing import Optional

from .errors import DuplicateVote, InvalidHash, TooManyVotes, VotingClosed
from .events import VotingCompleted
from .records import RequestRecord, RequestStatus, Vote
from .tally import count_hashes, leading_hash, vote_percentage

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class VoteOutcome:
    leading_hash: Optional[bytes]
    leading_count: int
    total_votes: int
    percentage: int
    completed: Optional[VotingCompleted] = None

    @property
    def resolved(self) -> bool:
        return self.completed is not None


class VotingEngine:
    def __init__(self, max_oracles: int = 32) -> None:
        self.max_oracles = int(max_oracles)

    def apply_vote(
        self, record: RequestRecord, oracle: str, result_hash: bytes
    ) -> VoteOutcome:
        """Append *oracle*'s vote to *record* in place and resolve if possible."""
        if record.status is not RequestStatus.PENDING:
            raise VotingClosed(f"Request {record.id} is {record.status.value}, not Pending")
        if record.has_voted(oracle):
            raise DuplicateVote(f"Oracle {oracle} already voted on {record.id}")
        if len(record.votes) >= self.max_oracles:
            raise TooManyVotes(f"Request {record.id} already has {self.max_oracles} votes")
        if not isinstance(result_hash, (bytes, bytearray)) or len(result_hash) != 32:
            raise InvalidHash()

        record.votes.append(Vote(oracle=oracle, result_hash=bytes(result_hash)))
        record.total_votes_cast = len(record.votes)

        best, best_count = leading_hash(count_hashes(record.votes))
        pct = vote_percentage(best_count, record.total_votes_cast)
        log.debug(
            "Request %s: leader %s with %d/%d votes (%d%%)",
            record.id,
            best.hex()[:12] if best else None,
            best_count,
            record.total_votes_cast,
            pct,
        )

        completed = None
        if best is not None and best_count >= record.min_votes and pct >= record.approval_threshold:
            record.winning_hash = best
            record.advance(RequestStatus.VOTING_COMPLETED)
            completed = VotingCompleted(
                request_id=record.id,
                winning_hash=best,
                vote_count=best_count,
                total_votes=record.total_votes_cast,
            )
        return VoteOutcome(
            leading_hash=best,
            leading_count=best_count,
            total_votes=record.total_votes_cast,
            percentage=pct,
            completed=completed,
        )
