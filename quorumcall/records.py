from __future__ import annotations

"""quorumcall.records - Pydantic models for persisted request state.

A :class:`RequestRecord` tracks one request from creation through voting to
fulfillment. Models validate their own invariants on construction (and the
store re-checks them on every commit); hashes are held as raw 32-byte values
and serialised as hex so records round-trip through JSON.
"""

from dataclasses import dataclass, fields
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator, model_validator

from . import codec
from . import config
from .errors import InvalidTransition
from .signer import is_identity


# ---------------------------------------------------------------------------
# Bounds
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Limits:
    """Fixed size bounds; storage for a record is reserved from these."""

    max_id_bytes: int = 64
    max_provider_len: int = 64
    max_model_id_len: int = 64
    max_messages: int = 50
    max_callback_targets: int = 32
    max_oracles: int = 32

    def __post_init__(self) -> None:
        # min_votes and total_votes_cast are stored as single bytes
        if not 0 <= self.max_oracles <= 255:
            raise ValueError(f"max_oracles must be between 0 and 255, got {self.max_oracles}")

    @classmethod
    def from_config(cls) -> "Limits":
        section: Dict[str, Any] = config.get("limits", {}) or {}
        names = {f.name for f in fields(cls)}
        return cls(**{k: int(v) for k, v in section.items() if k in names})

    @property
    def record_space(self) -> int:
        return codec.record_space(self)


# ---------------------------------------------------------------------------
# Value types
# ---------------------------------------------------------------------------


def _coerce_hash(value: Any) -> bytes:
    if isinstance(value, str):
        value = bytes.fromhex(value)
    if not isinstance(value, (bytes, bytearray)):
        raise ValueError("hash must be bytes or a hex string")
    if len(value) != codec.HASH_BYTES:
        raise ValueError(f"hash must be {codec.HASH_BYTES} bytes, got {len(value)}")
    return bytes(value)


def _check_identity(value: str) -> str:
    if not is_identity(value):
        raise ValueError(f"not a 64-char lowercase hex identity: {value!r}")
    return value


class RequestStatus(str, Enum):
    PENDING = "Pending"
    VOTING_COMPLETED = "VotingCompleted"
    FULFILLED = "Fulfilled"

    @property
    def code(self) -> int:
        return _STATUS_ORDER.index(self)

    def next(self) -> Optional["RequestStatus"]:
        idx = self.code + 1
        return _STATUS_ORDER[idx] if idx < len(_STATUS_ORDER) else None


_STATUS_ORDER: List[RequestStatus] = [
    RequestStatus.PENDING,
    RequestStatus.VOTING_COMPLETED,
    RequestStatus.FULFILLED,
]


class Message(BaseModel):
    role: str
    content: str


class AccountMeta(BaseModel):
    """One account a callback touches, with its recorded mutability."""

    model_config = ConfigDict(frozen=True)

    identity: str
    writable: bool = False

    @field_validator("identity")
    @classmethod
    def _identity_ok(cls, v: str) -> str:
        return _check_identity(v)


# Accounts declared at creation are the callback targets
CallbackTarget = AccountMeta


class Vote(BaseModel):
    model_config = ConfigDict(frozen=True)

    oracle: str
    result_hash: bytes

    @field_validator("oracle")
    @classmethod
    def _oracle_ok(cls, v: str) -> str:
        return _check_identity(v)

    @field_validator("result_hash", mode="before")
    @classmethod
    def _hash_ok(cls, v: Any) -> bytes:
        return _coerce_hash(v)

    @field_serializer("result_hash")
    def _hash_hex(self, v: bytes) -> str:
        return v.hex()


# ---------------------------------------------------------------------------
# Request record
# ---------------------------------------------------------------------------


class RequestRecord(BaseModel):
    """Full lifecycle state of one request, keyed by ``id``."""

    model_config = ConfigDict(protected_namespaces=())

    id: str
    requesting_party: str
    provider: str
    model_id: str
    callback_targets: List[AccountMeta] = Field(default_factory=list)
    status: RequestStatus = RequestStatus.PENDING
    created_at: int = 0
    min_votes: int = Field(1, ge=1, le=255)
    approval_threshold: int = Field(100, ge=1, le=100)
    votes: List[Vote] = Field(default_factory=list)
    winning_hash: Optional[bytes] = None
    total_votes_cast: int = Field(0, ge=0)

    @field_validator("requesting_party")
    @classmethod
    def _party_ok(cls, v: str) -> str:
        return _check_identity(v)

    @field_validator("winning_hash", mode="before")
    @classmethod
    def _winning_ok(cls, v: Any) -> Optional[bytes]:
        return None if v is None else _coerce_hash(v)

    @field_serializer("winning_hash")
    def _winning_hex(self, v: Optional[bytes]) -> Optional[str]:
        return None if v is None else v.hex()

    @model_validator(mode="after")
    def _check_consistency(self) -> "RequestRecord":
        self.check_invariants()
        return self

    # ------------------------- Invariants ---------------------------------

    def check_invariants(self) -> None:
        oracles = [v.oracle for v in self.votes]
        if len(set(oracles)) != len(oracles):
            raise ValueError(f"request {self.id}: duplicate oracle in votes")
        if self.total_votes_cast != len(self.votes):
            raise ValueError(
                f"request {self.id}: total_votes_cast {self.total_votes_cast} != {len(self.votes)} votes"
            )
        pending = self.status is RequestStatus.PENDING
        if pending and self.winning_hash is not None:
            raise ValueError(f"request {self.id}: winning_hash set while Pending")
        if not pending and self.winning_hash is None:
            raise ValueError(f"request {self.id}: {self.status.value} without winning_hash")

    # ------------------------- Helpers ------------------------------------

    def has_voted(self, oracle: str) -> bool:
        return any(v.oracle == oracle for v in self.votes)

    def advance(self, to: RequestStatus) -> None:
        """Move status exactly one step forward."""
        if self.status.next() is not to:
            raise InvalidTransition(
                f"request {self.id}: cannot move from {self.status.value} to {to.value}"
            )
        self.status = to

    def targets_match(self, accounts: Sequence[AccountMeta]) -> bool:
        """Same length, same identities, same order as the declared targets."""
        if len(accounts) != len(self.callback_targets):
            return False
        return all(
            given.identity == expected.identity
            for given, expected in zip(accounts, self.callback_targets)
        )

    def encoded_size(self) -> int:
        return len(codec.encode_record(self))
