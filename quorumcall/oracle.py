"""Off-chain oracle node: watch requests, answer them, vote, fulfill.

The node subscribes to broker notifications. A ``RequestCreated`` queues the
request for an answer from the node's :class:`CompletionProvider`; the node
hashes the answer, signs the vote and submits it. A ``VotingCompleted`` whose
winning hash matches the node's own answer queues a fulfillment attempt.

To keep the number of competing fulfillers small, every agreeing node
fulfills with probability ``max(1, min(floor(total * fraction), cap)) /
total``; losing the race is harmless since the broker accepts exactly one
fulfillment.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import math
import random
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Protocol, Union

from . import codec
from . import config
from .errors import QuorumCallError, VotingClosed, VotingNotCompleted
from .events import Event, RequestCreated, RequestFulfilled, VotingCompleted
from .lifecycle import RequestBroker
from .records import RequestStatus
from .signer import Signer

logger = logging.getLogger(__name__)

Messages = List[Dict[str, str]]


class CompletionProvider(Protocol):
    async def complete(self, messages: Messages) -> str: ...


class StaticProvider:
    """Answers every request with the same text."""

    def __init__(self, answer: str) -> None:
        self.answer = answer

    async def complete(self, messages: Messages) -> str:
        return self.answer


class CallableProvider:
    """Wraps a sync or async ``fn(messages) -> str``."""

    def __init__(self, fn: Callable[[Messages], Union[str, Awaitable[str]]]) -> None:
        self.fn = fn

    async def complete(self, messages: Messages) -> str:
        result: Any = self.fn(messages)
        if inspect.isawaitable(result):
            result = await result
        return str(result)


@dataclass
class TrackedRequest:
    request_id: str
    messages: Messages
    min_votes: int
    approval_threshold: int
    answer: Optional[str] = None
    answer_hash: Optional[bytes] = None
    winning_hash: Optional[bytes] = None
    vote_count: int = 0
    total_votes: int = 0
    fulfilled: bool = False


class OracleNode:
    def __init__(
        self,
        signer: Signer,
        broker: RequestBroker,
        provider: CompletionProvider,
        *,
        rng: random.Random | None = None,
        max_fulfillers: int | None = None,
        fulfiller_fraction: float | None = None,
    ) -> None:
        self.signer = signer
        self.identity = signer.identity
        self.broker = broker
        self.provider = provider
        self._rand = rng or random.Random()
        self.max_fulfillers = int(
            max_fulfillers if max_fulfillers is not None else config.get("oracle.max_fulfillers", 4)
        )
        self.fulfiller_fraction = float(
            fulfiller_fraction
            if fulfiller_fraction is not None
            else config.get("oracle.fulfiller_fraction", 0.2)
        )
        self.requests: Dict[str, TrackedRequest] = {}
        self._to_vote: Deque[str] = deque()
        self._to_fulfill: Deque[str] = deque()
        self._unsubscribe: Callable[[], None] | None = None
        # counters for metrics
        self.votes_cast: int = 0
        self.fulfillments: int = 0

    # ------------------------------------------------------------------
    # Subscription
    # ------------------------------------------------------------------
    def attach(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self.broker.subscribe(self.on_event)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def on_event(self, event: Event) -> None:
        if isinstance(event, RequestCreated):
            self.requests[event.request_id] = TrackedRequest(
                request_id=event.request_id,
                messages=list(event.messages),
                min_votes=event.min_votes,
                approval_threshold=event.approval_threshold,
            )
            self._to_vote.append(event.request_id)
        elif isinstance(event, VotingCompleted):
            tracked = self.requests.get(event.request_id)
            if tracked is None:
                return
            tracked.winning_hash = event.winning_hash
            tracked.vote_count = event.vote_count
            tracked.total_votes = event.total_votes
            self._to_fulfill.append(event.request_id)
        elif isinstance(event, RequestFulfilled):
            tracked = self.requests.get(event.request_id)
            if tracked is not None:
                tracked.fulfilled = True

    # ------------------------------------------------------------------
    # Work
    # ------------------------------------------------------------------
    def fulfill_probability(self, total_votes: int) -> float:
        if total_votes <= 0:
            return 0.0
        fulfillers = max(
            1, min(math.floor(total_votes * self.fulfiller_fraction), self.max_fulfillers)
        )
        return min(1.0, fulfillers / total_votes)

    async def _vote(self, tracked: TrackedRequest) -> None:
        answer = await self.provider.complete(tracked.messages)
        answer_hash = codec.payload_hash(answer.encode("utf-8"))
        # remember the answer first: our own vote may complete voting synchronously
        tracked.answer, tracked.answer_hash = answer, answer_hash
        signature = self.signer.sign_vote(tracked.request_id, answer_hash)
        try:
            self.broker.submit_vote(tracked.request_id, self.identity, answer_hash, signature)
        except VotingClosed:
            logger.info("Voting on %s closed before our vote", tracked.request_id)
            return
        self.votes_cast += 1

    async def _maybe_fulfill(self, tracked: TrackedRequest, *, force: bool = False) -> bool:
        if tracked.fulfilled or tracked.answer is None:
            return False
        if tracked.answer_hash != tracked.winning_hash:
            logger.info("Our answer for %s lost the vote; not fulfilling", tracked.request_id)
            return False
        if not force and self._rand.random() >= self.fulfill_probability(tracked.total_votes):
            return False
        record = self.broker.get_request(tracked.request_id)
        if record.status is not RequestStatus.VOTING_COMPLETED:
            return False
        try:
            self.broker.fulfill_request(
                tracked.request_id,
                record.requesting_party,
                record.callback_targets,
                tracked.answer.encode("utf-8"),
            )
        except VotingNotCompleted:
            logger.info("Request %s was fulfilled by another node", tracked.request_id)
            return False
        self.fulfillments += 1
        return True

    async def fulfill(self, request_id: str) -> bool:
        """Fulfill *request_id* now if our answer won, skipping the fulfiller lottery."""
        tracked = self.requests.get(request_id)
        if tracked is None:
            return False
        return await self._maybe_fulfill(tracked, force=True)

    async def process_pending(self) -> int:
        """Drain queued votes then fulfillments; returns how many items were handled."""
        handled = 0
        while self._to_vote or self._to_fulfill:
            if self._to_vote:
                request_id, step = self._to_vote.popleft(), self._vote
            else:
                request_id, step = self._to_fulfill.popleft(), self._maybe_fulfill
            tracked = self.requests.get(request_id)
            if tracked is None:
                continue
            handled += 1
            try:
                await step(tracked)
            except QuorumCallError as exc:
                logger.warning("Oracle %s: %s on %s", self.identity[:12], exc.code, request_id)
            except Exception:
                logger.exception("Oracle %s failed on %s", self.identity[:12], request_id)
        return handled

    async def run(self, stop: asyncio.Event, poll_interval: float = 0.1) -> None:
        self.attach()
        try:
            while not stop.is_set():
                await self.process_pending()
                try:
                    await asyncio.wait_for(stop.wait(), timeout=poll_interval)
                except asyncio.TimeoutError:
                    pass
        finally:
            self.detach()
