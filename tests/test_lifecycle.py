from __future__ import annotations

import threading

import pytest

from quorumcall import codec
from quorumcall.dispatch import InProcessTransport
from quorumcall.errors import (
    CallbackProgramMismatch,
    CallbackRejected,
    CallbackTargetMismatch,
    EmptyRequestId,
    InvalidApprovalThreshold,
    InvalidHash,
    InvalidIdentity,
    InvalidMessage,
    InvalidMinVotes,
    ModelIdTooLong,
    PayloadHashMismatch,
    ProviderTooLong,
    RequestAlreadyExists,
    RequestIdTooLong,
    RequestNotFound,
    TooManyAccounts,
    TooManyMessages,
    UnauthorizedOracle,
    VotingClosed,
    VotingNotCompleted,
)
from quorumcall.events import RequestCreated, RequestFulfilled, VotingCompleted
from quorumcall.lifecycle import RequestBroker
from quorumcall.records import AccountMeta, RequestStatus
from quorumcall.signer import Signer
from quorumcall.store import RecordStore

PROMPT = [{"role": "user", "content": "What is the capital of France?"}]


def _identity() -> str:
    return Signer.generate().identity


def _broker():
    transport = InProcessTransport()
    broker = RequestBroker(RecordStore(), transport=transport)
    program = _identity()
    received: list = []
    transport.register(program, lambda accounts, data: received.append((accounts, data)))
    return broker, transport, program, received


def _create(broker, program, targets=None, rid="req-1", min_votes=2, threshold=60):
    if targets is None:
        targets = [AccountMeta(identity=_identity(), writable=True)]
    return broker.create_request(
        program, rid, "openai", "gpt-4", PROMPT, targets, min_votes, threshold
    )


def _vote(broker, signer: Signer, rid: str, answer: bytes):
    h = codec.payload_hash(answer)
    return broker.submit_vote(rid, signer.identity, h, signer.sign_vote(rid, h))


def _completed(targets=None):
    broker, transport, program, received = _broker()
    _create(broker, program, targets)
    for s in (Signer.generate(), Signer.generate()):
        _vote(broker, s, "req-1", b"Paris")
    return broker, transport, program, received, broker.get_request("req-1")


# ---------------------------------------------------------------------------
# create
# ---------------------------------------------------------------------------


def test_create_initial_state_and_event():
    broker, _, program, _ = _broker()
    record = _create(broker, program)
    assert record.status is RequestStatus.PENDING
    assert record.votes == [] and record.total_votes_cast == 0
    assert record.winning_hash is None
    assert broker.get_request("req-1").model_dump() == record.model_dump()

    (event,) = broker.bus.history
    assert isinstance(event, RequestCreated)
    assert event.messages == PROMPT
    assert (event.min_votes, event.approval_threshold) == (2, 60)


@pytest.mark.parametrize(
    "overrides, error",
    [
        ({"request_id": ""}, EmptyRequestId),
        ({"request_id": "x" * 65}, RequestIdTooLong),
        ({"request_id": "é" * 33}, RequestIdTooLong),
        ({"requesting_party": "not-hex"}, InvalidIdentity),
        ({"provider": "p" * 65}, ProviderTooLong),
        ({"model_id": "m" * 65}, ModelIdTooLong),
        ({"messages": PROMPT * 51}, TooManyMessages),
        ({"messages": [{"role": 1}]}, InvalidMessage),
        ({"callback_targets": "many"}, TooManyAccounts),
        ({"callback_targets": [{"identity": "XYZ", "writable": True}]}, InvalidIdentity),
        ({"callback_targets": [("ab" * 32, True)]}, InvalidIdentity),
        ({"callback_targets": [{"identity": "ab" * 32, "writable": "maybe"}]}, InvalidIdentity),
        ({"min_votes": 0}, InvalidMinVotes),
        ({"min_votes": 33}, InvalidMinVotes),
        ({"approval_threshold": 0}, InvalidApprovalThreshold),
        ({"approval_threshold": 101}, InvalidApprovalThreshold),
    ],
)
def test_create_rejects_out_of_bounds(overrides, error):
    broker, _, program, _ = _broker()
    kwargs = dict(
        requesting_party=program,
        request_id="req-1",
        provider="openai",
        model_id="gpt-4",
        messages=PROMPT,
        callback_targets=[],
        min_votes=1,
        approval_threshold=100,
    )
    kwargs.update(overrides)
    if kwargs["callback_targets"] == "many":
        kwargs["callback_targets"] = [AccountMeta(identity=_identity()) for _ in range(33)]
    with pytest.raises(error):
        broker.create_request(**kwargs)
    assert broker.bus.history == []
    assert not broker.store.exists(kwargs["request_id"])


def test_create_accepts_exact_bounds():
    broker, _, program, _ = _broker()
    targets = [AccountMeta(identity=_identity()) for _ in range(32)]
    record = broker.create_request(
        program, "x" * 64, "p" * 64, "m" * 64, PROMPT * 50, targets, 32, 100
    )
    assert len(record.callback_targets) == 32


def test_duplicate_create_fails():
    broker, _, program, _ = _broker()
    first = _create(broker, program)
    with pytest.raises(RequestAlreadyExists):
        _create(broker, program, min_votes=1)
    assert broker.get_request("req-1").model_dump() == first.model_dump()
    assert len(broker.bus.history) == 1


# ---------------------------------------------------------------------------
# vote
# ---------------------------------------------------------------------------


def test_vote_requires_matching_signature():
    broker, _, program, _ = _broker()
    _create(broker, program)
    oracle, impostor = Signer.generate(), Signer.generate()
    h = codec.payload_hash(b"Paris")
    with pytest.raises(UnauthorizedOracle):
        broker.submit_vote("req-1", oracle.identity, h, impostor.sign_vote("req-1", h))
    # signature over a different request does not transfer
    with pytest.raises(UnauthorizedOracle):
        broker.submit_vote("req-1", oracle.identity, h, oracle.sign_vote("req-2", h))
    assert broker.get_request("req-1").total_votes_cast == 0


def test_vote_on_missing_request_and_bad_hash():
    broker, _, _, _ = _broker()
    oracle = Signer.generate()
    with pytest.raises(RequestNotFound):
        _vote(broker, oracle, "nope", b"Paris")
    with pytest.raises(InvalidHash):
        broker.submit_vote("nope", oracle.identity, b"\x00" * 31, b"")


def test_concurrent_votes_are_serialised_per_request():
    broker, _, program, _ = _broker()
    _create(broker, program, min_votes=32, threshold=100)
    oracles = [Signer.generate() for _ in range(32)]
    barrier = threading.Barrier(len(oracles))
    errors: list = []

    def _cast(signer: Signer) -> None:
        barrier.wait()
        try:
            _vote(broker, signer, "req-1", b"Paris")
        except Exception as exc:
            errors.append(exc)

    threads = [threading.Thread(target=_cast, args=(s,)) for s in oracles]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    record = broker.get_request("req-1")
    assert record.total_votes_cast == 32
    assert {v.oracle for v in record.votes} == {s.identity for s in oracles}
    assert record.status is RequestStatus.VOTING_COMPLETED
    completed = [e for e in broker.bus.history if isinstance(e, VotingCompleted)]
    assert len(completed) == 1 and completed[0].vote_count == 32


def test_voting_completes_and_publishes_once():
    broker, _, program, _ = _broker()
    _create(broker, program)
    o1, o2, o3 = Signer.generate(), Signer.generate(), Signer.generate()
    assert not _vote(broker, o1, "req-1", b"Paris").resolved
    out = _vote(broker, o2, "req-1", b"Paris")
    assert out.resolved
    record = broker.get_request("req-1")
    assert record.status is RequestStatus.VOTING_COMPLETED
    assert record.winning_hash == codec.payload_hash(b"Paris")
    with pytest.raises(VotingClosed):
        _vote(broker, o3, "req-1", b"Lyon")
    completed = [e for e in broker.bus.history if isinstance(e, VotingCompleted)]
    assert len(completed) == 1 and completed[0].vote_count == 2


# ---------------------------------------------------------------------------
# fulfill
# ---------------------------------------------------------------------------


def test_fulfill_before_voting_completes():
    broker, transport, program, _ = _broker()
    record = _create(broker, program)
    with pytest.raises(VotingNotCompleted):
        broker.fulfill_request("req-1", program, record.callback_targets, b"Paris")
    assert transport.invocations == []


def test_fulfill_delivers_payload_to_declared_targets():
    target = AccountMeta(identity=_identity(), writable=True)
    readonly = AccountMeta(identity=_identity())
    broker, transport, program, received, record = _completed([target, readonly])

    inv = broker.fulfill_request("req-1", program, [target, readonly], b"Paris")
    assert inv.program == program
    assert [(a.identity, a.writable) for a in inv.accounts] == [
        (target.identity, True),
        (readonly.identity, False),
    ]
    assert inv.data[:8] == codec.CALLBACK_TAG
    assert codec.decode_callback(inv.data) == ("req-1", b"Paris")
    assert len(received) == 1 and received[0][1] == inv.data

    assert broker.get_request("req-1").status is RequestStatus.FULFILLED
    last = broker.bus.history[-1]
    assert isinstance(last, RequestFulfilled) and last.payload_length == 5


def test_fulfill_is_single_shot():
    broker, transport, program, received, record = _completed()
    broker.fulfill_request("req-1", program, record.callback_targets, "Paris")
    with pytest.raises(VotingNotCompleted):
        broker.fulfill_request("req-1", program, record.callback_targets, "Paris")
    assert len(received) == 1


def test_fulfill_rejects_wrong_payload_without_state_change():
    broker, transport, program, received, record = _completed()
    with pytest.raises(PayloadHashMismatch):
        broker.fulfill_request("req-1", program, record.callback_targets, b"Lyon")
    assert broker.get_request("req-1").status is RequestStatus.VOTING_COMPLETED
    assert transport.invocations == []


def test_fulfill_rejects_wrong_program():
    broker, transport, program, received, record = _completed()
    with pytest.raises(CallbackProgramMismatch):
        broker.fulfill_request("req-1", _identity(), record.callback_targets, b"Paris")
    assert received == []


def test_fulfill_rejects_target_substitution():
    a = AccountMeta(identity=_identity(), writable=True)
    b = AccountMeta(identity=_identity(), writable=True)
    broker, transport, program, received, record = _completed([a, b])
    for accounts in ([a], [a, b, AccountMeta(identity=_identity())], [b, a]):
        with pytest.raises(CallbackTargetMismatch):
            broker.fulfill_request("req-1", program, accounts, b"Paris")
    assert transport.invocations == [] and received == []
    assert broker.get_request("req-1").status is RequestStatus.VOTING_COMPLETED


def test_failed_callback_rolls_back_fulfillment():
    broker, transport, program, received, record = _completed()

    def _reject(accounts, data):
        raise RuntimeError("consumer refused")

    transport.register(program, _reject)
    with pytest.raises(CallbackRejected):
        broker.fulfill_request("req-1", program, record.callback_targets, b"Paris")
    assert broker.get_request("req-1").status is RequestStatus.VOTING_COMPLETED
    assert not any(isinstance(e, RequestFulfilled) for e in broker.bus.history)

    # a later attempt against a working consumer still succeeds
    transport.register(program, lambda accounts, data: received.append(data))
    broker.fulfill_request("req-1", program, record.callback_targets, b"Paris")
    assert broker.get_request("req-1").status is RequestStatus.FULFILLED
