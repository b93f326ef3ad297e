"""In-process end-to-end run: one consumer, N oracle nodes, M requests.

Honest nodes answer with ``honest_answer``; the first ``dishonest`` nodes
answer with a per-node wrong answer. Nodes are driven round by round until
no node has queued work; requests that completed voting but lost every
fulfiller lottery are then fulfilled by the first node whose answer won.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List

from .consumer import LLMConsumer
from .dispatch import InProcessTransport
from .errors import NoResponse
from .events import AuditLog, EventBus
from .lifecycle import RequestBroker
from .oracle import OracleNode, StaticProvider
from .records import RequestStatus
from .signer import Signer
from .store import RecordStore

logger = logging.getLogger(__name__)


@dataclass
class SimulationResult:
    statuses: Dict[str, str] = field(default_factory=dict)
    responses: Dict[str, str | None] = field(default_factory=dict)
    votes_cast: int = 0
    fulfillments: int = 0
    rounds: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "statuses": self.statuses,
            "responses": self.responses,
            "votes_cast": self.votes_cast,
            "fulfillments": self.fulfillments,
            "rounds": self.rounds,
        }


async def run_simulation(
    *,
    oracles: int = 5,
    dishonest: int = 1,
    requests: int = 1,
    min_votes: int = 3,
    approval_threshold: int = 60,
    prompt: str = "What is the capital of France?",
    honest_answer: str = "Paris",
    seed: int = 42,
    store_root: Path | None = None,
    audit_log: Path | None = None,
    max_rounds: int = 50,
) -> SimulationResult:
    rng = random.Random(seed)
    transport = InProcessTransport()
    bus = EventBus(AuditLog(audit_log) if audit_log else None)
    broker = RequestBroker(RecordStore(store_root), transport=transport, bus=bus)
    consumer = LLMConsumer(Signer.generate().identity, broker, transport)
    authority = Signer.generate().identity

    nodes: List[OracleNode] = []
    for i in range(oracles):
        answer = f"wrong answer #{i}" if i < dishonest else honest_answer
        node = OracleNode(
            Signer.generate(),
            broker,
            StaticProvider(answer),
            rng=random.Random(rng.random()),
        )
        node.attach()
        nodes.append(node)

    accounts: Dict[str, str] = {}
    for n in range(requests):
        request_id = f"req-{seed}-{n}"
        accounts[request_id] = consumer.request_llm_response(
            authority, request_id, prompt, min_votes, approval_threshold
        )

    result = SimulationResult()
    for round_no in range(1, max_rounds + 1):
        result.rounds = round_no
        handled = 0
        for node in nodes:
            handled += await node.process_pending()
        if handled == 0:
            break

    for request_id in accounts:
        if broker.get_request(request_id).status is not RequestStatus.VOTING_COMPLETED:
            continue
        for node in nodes:
            if await node.fulfill(request_id):
                logger.info("Fallback fulfillment of %s by %s", request_id, node.identity[:12])
                break

    for request_id, account in accounts.items():
        result.statuses[request_id] = broker.get_request(request_id).status.value
        try:
            result.responses[request_id] = consumer.get_response(account)
        except NoResponse:
            result.responses[request_id] = None
    result.votes_cast = sum(node.votes_cast for node in nodes)
    result.fulfillments = sum(node.fulfillments for node in nodes)
    for node in nodes:
        node.detach()
    return result
