from __future__ import annotations

import asyncio
from pathlib import Path

from quorumcall.events import AuditLog, RequestFulfilled, ResponseReceived, verify_chain
from quorumcall.simulation import run_simulation


def test_honest_majority_answer_is_delivered(tmp_path: Path):
    audit = tmp_path / "audit.jsonl"
    result = asyncio.run(
        run_simulation(
            oracles=5,
            dishonest=1,
            requests=2,
            min_votes=3,
            approval_threshold=60,
            store_root=tmp_path / "store",
            audit_log=audit,
        )
    )
    assert set(result.statuses.values()) == {"Fulfilled"}
    assert set(result.responses.values()) == {"Paris"}
    assert result.fulfillments == 2

    assert verify_chain(audit)
    events = AuditLog(audit).read()
    assert sum(isinstance(e, RequestFulfilled) for e in events) == 2
    assert sum(isinstance(e, ResponseReceived) for e in events) == 2
    assert len(list((tmp_path / "store").glob("*.json"))) == 2


def test_unanimity_blocks_split_vote():
    result = asyncio.run(
        run_simulation(oracles=3, dishonest=1, min_votes=3, approval_threshold=100)
    )
    assert list(result.statuses.values()) == ["Pending"]
    assert list(result.responses.values()) == [None]
    assert result.votes_cast == 3
    assert result.fulfillments == 0


def test_result_serialises():
    result = asyncio.run(run_simulation(oracles=1, dishonest=0, min_votes=1))
    data = result.to_dict()
    assert data["statuses"] == {"req-42-0": "Fulfilled"}
    assert data["responses"] == {"req-42-0": "Paris"}
    assert data["votes_cast"] == 1
