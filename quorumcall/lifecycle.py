from __future__ import annotations

"""quorumcall.lifecycle - the create -> vote -> fulfill state machine.

:class:`RequestBroker` is the single entry point for requesters, oracles and
fulfillers. Each operation:

1. validates its inputs (bounds are checked before anything is read),
2. takes the record's transaction from the :class:`RecordStore`,
3. mutates a detached copy and buffers its notifications (and, for
   fulfillment, the callback target's staged effects),
4. commits on success and only then publishes the notifications.

Any raised :class:`QuorumCallError` leaves the stored record as it was and
publishes nothing. States only move ``Pending -> VotingCompleted ->
Fulfilled``.

Fulfillment is permissionless: anyone may submit the payload once voting has
completed, because the payload is only accepted when its SHA-256 equals the
winning hash and the callback only reaches the accounts the requester
declared at creation.
"""

import logging
import time
from pathlib import Path
from typing import Any, Callable, Iterable, List, Mapping, Sequence, Union

from pydantic import ValidationError

from . import codec
from . import config
from .dispatch import CallbackDispatcher, InProcessTransport, Invocation, Transport
from .errors import (
    CallbackProgramMismatch,
    CallbackTargetMismatch,
    EmptyRequestId,
    InvalidApprovalThreshold,
    InvalidHash,
    InvalidIdentity,
    InvalidMessage,
    InvalidMinVotes,
    ModelIdTooLong,
    NoWinningHash,
    PayloadHashMismatch,
    ProviderTooLong,
    QuorumCallError,
    RequestIdTooLong,
    TooManyAccounts,
    TooManyMessages,
    UnauthorizedOracle,
    VotingNotCompleted,
)
from .events import AuditLog, Event, EventBus, RequestCreated, RequestFulfilled
from .records import AccountMeta, Limits, Message, RequestRecord, RequestStatus
from .signer import Authenticator, Ed25519Authenticator, is_identity, vote_message
from .store import RecordStore
from .voting import VoteOutcome, VotingEngine

log = logging.getLogger(__name__)

MessageLike = Union[Message, Mapping[str, Any]]
AccountLike = Union[AccountMeta, Mapping[str, Any]]


def _as_messages(messages: Iterable[MessageLike]) -> List[Message]:
    out: List[Message] = []
    for m in messages:
        if isinstance(m, Message):
            out.append(m)
            continue
        try:
            out.append(Message.model_validate(m))
        except ValidationError as exc:
            raise InvalidMessage(f"Malformed message {m!r}: {exc.error_count()} errors") from exc
    return out


def _as_accounts(accounts: Iterable[AccountLike]) -> List[AccountMeta]:
    out: List[AccountMeta] = []
    for acc in accounts:
        if not isinstance(acc, (AccountMeta, Mapping)):
            raise InvalidIdentity(f"Account must be an AccountMeta or mapping, got {acc!r}")
        identity = acc.identity if isinstance(acc, AccountMeta) else acc.get("identity")
        if not is_identity(identity):
            raise InvalidIdentity(f"Invalid account identity: {identity!r}")
        if isinstance(acc, AccountMeta):
            out.append(acc)
            continue
        try:
            out.append(AccountMeta.model_validate(acc))
        except ValidationError as exc:
            raise InvalidIdentity(f"Malformed account {acc!r}") from exc
    return out


class RequestBroker:
    def __init__(
        self,
        store: RecordStore | None = None,
        *,
        transport: Transport | None = None,
        authenticator: Authenticator | None = None,
        bus: EventBus | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store or RecordStore(limits=Limits.from_config())
        self.limits = self.store.limits
        self.transport = transport or InProcessTransport()
        self.dispatcher = CallbackDispatcher(self.transport)
        self.authenticator = authenticator or Ed25519Authenticator()
        self.bus = bus or EventBus()
        self.engine = VotingEngine(max_oracles=self.limits.max_oracles)
        self._clock = clock

    @classmethod
    def from_config(cls, **kwargs: Any) -> "RequestBroker":
        """Build a broker whose limits, storage root and audit log come from config."""
        root = config.get("store.root")
        audit = config.get("events.audit_log")
        kwargs.setdefault("store", RecordStore(root, limits=Limits.from_config()))
        kwargs.setdefault("bus", EventBus(AuditLog(Path(audit)) if audit else None))
        return cls(**kwargs)

    def subscribe(self, handler: Callable[[Event], None]) -> Callable[[], None]:
        return self.bus.subscribe(handler)

    def get_request(self, request_id: str) -> RequestRecord:
        return self.store.get(request_id)

    # ------------------------------------------------------------------
    # create
    # ------------------------------------------------------------------
    def _validate_create(
        self,
        requesting_party: str,
        request_id: str,
        provider: str,
        model_id: str,
        messages: Sequence[Message],
        callback_targets: Sequence[Any],
        min_votes: int,
        approval_threshold: int,
    ) -> None:
        lim = self.limits
        if not request_id:
            raise EmptyRequestId()
        if len(request_id.encode("utf-8")) > lim.max_id_bytes:
            raise RequestIdTooLong(f"Request id exceeds {lim.max_id_bytes} bytes")
        if not is_identity(requesting_party):
            raise InvalidIdentity(f"Invalid requesting party: {requesting_party!r}")
        if len(provider.encode("utf-8")) > lim.max_provider_len:
            raise ProviderTooLong(f"Provider exceeds {lim.max_provider_len} characters")
        if len(model_id.encode("utf-8")) > lim.max_model_id_len:
            raise ModelIdTooLong(f"Model ID exceeds {lim.max_model_id_len} characters")
        if len(messages) > lim.max_messages:
            raise TooManyMessages(f"Too many messages (max {lim.max_messages})")
        if len(callback_targets) > lim.max_callback_targets:
            raise TooManyAccounts(
                f"Too many callback accounts (max {lim.max_callback_targets})"
            )
        if not 1 <= min_votes <= lim.max_oracles:
            raise InvalidMinVotes(
                f"min_votes must be between 1 and {lim.max_oracles}, got {min_votes}"
            )
        if not 1 <= approval_threshold <= 100:
            raise InvalidApprovalThreshold(
                f"approval_threshold must be between 1 and 100, got {approval_threshold}"
            )

    def create_request(
        self,
        requesting_party: str,
        request_id: str,
        provider: str,
        model_id: str,
        messages: Iterable[MessageLike],
        callback_targets: Iterable[AccountLike],
        min_votes: int | None = None,
        approval_threshold: int | None = None,
    ) -> RequestRecord:
        """Register a new Pending request; *callback_targets* are fixed from here on."""
        if min_votes is None:
            min_votes = int(config.get("defaults.min_votes", 1))
        if approval_threshold is None:
            approval_threshold = int(config.get("defaults.approval_threshold", 100))
        try:
            msgs = _as_messages(messages)
            targets = list(callback_targets)
            self._validate_create(
                requesting_party,
                request_id,
                provider,
                model_id,
                msgs,
                targets,
                min_votes,
                approval_threshold,
            )
            accounts = _as_accounts(targets)
            with self.store.transaction(request_id) as txn:
                record = RequestRecord(
                    id=request_id,
                    requesting_party=requesting_party,
                    provider=provider,
                    model_id=model_id,
                    callback_targets=accounts,
                    status=RequestStatus.PENDING,
                    created_at=int(self._clock()),
                    min_votes=min_votes,
                    approval_threshold=approval_threshold,
                )
                txn.insert(record)
        except QuorumCallError as exc:
            log.warning("create_request %s rejected: %s", request_id, exc.code)
            raise

        self.bus.publish(
            [
                RequestCreated(
                    request_id=request_id,
                    requesting_party=requesting_party,
                    provider=provider,
                    model_id=model_id,
                    messages=[m.model_dump() for m in msgs],
                    min_votes=min_votes,
                    approval_threshold=approval_threshold,
                )
            ]
        )
        log.info("Request created: %s", request_id)
        return record.model_copy(deep=True)

    # ------------------------------------------------------------------
    # vote
    # ------------------------------------------------------------------
    def submit_vote(
        self, request_id: str, oracle: str, result_hash: bytes, signature: bytes
    ) -> VoteOutcome:
        """Record one oracle's hash attestation; *signature* must verify as *oracle*."""
        try:
            if not isinstance(result_hash, (bytes, bytearray)) or len(result_hash) != 32:
                raise InvalidHash()
            message = vote_message(request_id, bytes(result_hash))
            if not self.authenticator.verify(oracle, message, signature):
                raise UnauthorizedOracle(f"Vote on {request_id} not signed by {oracle}")
            with self.store.transaction(request_id) as txn:
                record = txn.require()
                outcome = self.engine.apply_vote(record, oracle, bytes(result_hash))
                txn.put(record)
        except QuorumCallError as exc:
            log.warning("submit_vote %s by %s rejected: %s", request_id, oracle[:12], exc.code)
            raise

        log.info(
            "Vote recorded on %s: %d/%d for leader (%d%%)",
            request_id,
            outcome.leading_count,
            outcome.total_votes,
            outcome.percentage,
        )
        if outcome.completed is not None:
            self.bus.publish([outcome.completed])
            log.info("Voting completed: %s", request_id)
        return outcome

    # ------------------------------------------------------------------
    # fulfill
    # ------------------------------------------------------------------
    def fulfill_request(
        self,
        request_id: str,
        calling_program: str,
        accounts: Iterable[AccountLike],
        payload: Union[bytes, str],
    ) -> Invocation:
        """Verify *payload* against the winning hash and deliver it to the requester."""
        if isinstance(payload, str):
            payload = payload.encode("utf-8")
        try:
            provided = _as_accounts(accounts)
            with self.store.transaction(request_id) as txn:
                record = txn.require()
                if record.status is not RequestStatus.VOTING_COMPLETED:
                    raise VotingNotCompleted(
                        f"Request {request_id} is {record.status.value}, not VotingCompleted"
                    )
                if record.winning_hash is None:
                    raise NoWinningHash(f"Request {request_id} has no winning hash")
                if codec.payload_hash(payload) != record.winning_hash:
                    raise PayloadHashMismatch(
                        f"Payload for {request_id} does not match winning hash"
                    )
                if calling_program != record.requesting_party:
                    raise CallbackProgramMismatch(
                        f"Callback program {calling_program} does not match request {request_id}"
                    )
                if not record.targets_match(provided):
                    raise CallbackTargetMismatch(
                        f"Expected {len(record.callback_targets)} callback accounts in "
                        f"declared order, got {len(provided)}"
                    )
                delivery = self.dispatcher.dispatch(record, payload)
                record.advance(RequestStatus.FULFILLED)
                txn.put(record)
        except QuorumCallError as exc:
            log.warning("fulfill_request %s rejected: %s", request_id, exc.code)
            raise

        # callback target state lands only after the Fulfilled commit
        delivery.effects.apply()
        self.bus.publish(
            [RequestFulfilled(request_id=request_id, payload_length=len(payload))]
            + delivery.effects.events
        )
        log.info("Request fulfilled: %s", request_id)
        return delivery.invocation
