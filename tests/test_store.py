from __future__ import annotations

from pathlib import Path

import pytest

from quorumcall.errors import RecordTooLarge, RequestAlreadyExists, RequestNotFound
from quorumcall.records import Limits, RequestRecord
from quorumcall.signer import Signer
from quorumcall.store import RecordStore, record_address


def _record(rid: str = "req-1", provider: str = "openai") -> RequestRecord:
    return RequestRecord(
        id=rid,
        requesting_party=Signer.generate().identity,
        provider=provider,
        model_id="gpt-4",
        min_votes=1,
        approval_threshold=100,
    )


def test_failed_transaction_leaves_nothing_behind():
    store = RecordStore()
    with pytest.raises(RuntimeError):
        with store.transaction("req-1") as txn:
            txn.insert(_record())
            raise RuntimeError("boom")
    assert not store.exists("req-1")
    with pytest.raises(RequestNotFound):
        store.get("req-1")


def test_insert_twice_rejected():
    store = RecordStore()
    with store.transaction("req-1") as txn:
        txn.insert(_record())
    with pytest.raises(RequestAlreadyExists):
        with store.transaction("req-1") as txn:
            txn.insert(_record())


def test_get_returns_detached_copy():
    store = RecordStore()
    with store.transaction("req-1") as txn:
        txn.insert(_record())
    copy = store.get("req-1")
    copy.provider = "changed"
    assert store.get("req-1").provider == "openai"


def test_records_persist_under_root(tmp_path: Path):
    store = RecordStore(tmp_path)
    original = _record()
    with store.transaction("req-1") as txn:
        txn.insert(original)
    assert (tmp_path / f"{record_address('req-1')}.json").exists()
    assert not any(p.suffix == ".tmp" for p in tmp_path.iterdir())

    reopened = RecordStore(tmp_path)
    assert reopened.exists("req-1")
    assert reopened.get("req-1").model_dump() == original.model_dump()


def test_address_depends_only_on_id():
    assert record_address("a") == record_address("a")
    assert record_address("a") != record_address("b")
    assert len(record_address("a")) == 64


def test_commit_rejects_record_over_reserved_space():
    tiny = Limits(
        max_id_bytes=8,
        max_provider_len=0,
        max_model_id_len=0,
        max_callback_targets=0,
        max_oracles=0,
    )
    store = RecordStore(limits=tiny)
    with pytest.raises(RecordTooLarge):
        with store.transaction("req-1") as txn:
            txn.insert(_record(provider="x" * 100))
    assert not store.exists("req-1")


def test_commit_rechecks_invariants():
    store = RecordStore()
    with store.transaction("req-1") as txn:
        txn.insert(_record())
    with pytest.raises(ValueError):
        with store.transaction("req-1") as txn:
            rec = txn.require()
            rec.total_votes_cast = 3
            txn.put(rec)
    assert store.get("req-1").total_votes_cast == 0
