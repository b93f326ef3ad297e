"""Lifecycle notifications, the in-process event bus and the audit chain.

Every notification serialises to one JSON object (``{"type": ..., ...}``),
so the same shape is used for subscribers, the audit log and the CLI.

Notifications are published only after the operation that produced them has
committed; a subscriber that raises is logged and skipped since the state it
reacts to is already persisted.
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Callable, ClassVar, Dict, Iterable, List, Mapping, Union

log = logging.getLogger(__name__)

__all__ = [
    "RequestCreated",
    "VotingCompleted",
    "RequestFulfilled",
    "ResponseReceived",
    "Event",
    "EventBus",
    "AuditLog",
    "decode_event",
    "verify_chain",
]

GENESIS_HASH = "0" * 64


@dataclass(slots=True, frozen=True)
class RequestCreated:
    request_id: str
    requesting_party: str
    provider: str
    model_id: str
    messages: List[Dict[str, str]] = field(default_factory=list)
    min_votes: int = 1
    approval_threshold: int = 100

    EVENT: ClassVar[str] = "RequestCreated"

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.EVENT, **asdict(self)}


@dataclass(slots=True, frozen=True)
class VotingCompleted:
    request_id: str
    winning_hash: bytes
    vote_count: int
    total_votes: int

    EVENT: ClassVar[str] = "VotingCompleted"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.EVENT,
            "request_id": self.request_id,
            "winning_hash": self.winning_hash.hex(),
            "vote_count": self.vote_count,
            "total_votes": self.total_votes,
        }


@dataclass(slots=True, frozen=True)
class RequestFulfilled:
    request_id: str
    payload_length: int

    EVENT: ClassVar[str] = "RequestFulfilled"

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.EVENT, **asdict(self)}


@dataclass(slots=True, frozen=True)
class ResponseReceived:
    """Emitted by the consumer once a callback has been stored."""

    request_id: str
    response_preview: str

    EVENT: ClassVar[str] = "ResponseReceived"

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.EVENT, **asdict(self)}


Event = Union[RequestCreated, VotingCompleted, RequestFulfilled, ResponseReceived]

_EVENT_TYPES = {
    cls.EVENT: cls
    for cls in (RequestCreated, VotingCompleted, RequestFulfilled, ResponseReceived)
}


def encode_event(event: Event) -> str:
    return json.dumps(event.to_dict(), separators=(",", ":"))


def decode_event(raw: Union[str, Mapping[str, Any]]) -> Event:
    data = dict(json.loads(raw)) if isinstance(raw, str) else dict(raw)
    data.pop("prev_hash", None)
    kind = data.pop("type", None)
    cls = _EVENT_TYPES.get(kind)
    if cls is None:
        raise ValueError(f"Unknown event type: {kind!r}")
    if cls is VotingCompleted:
        data["winning_hash"] = bytes.fromhex(data["winning_hash"])
    return cls(**data)


# ---------------------------------------------------------------------------
# Audit chain
# ---------------------------------------------------------------------------


class AuditLog:
    """Append-only JSONL where each line links to the SHA-256 of the previous one."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def _last_hash(self) -> str:
        if not self.path.exists():
            return GENESIS_HASH
        lines = self.path.read_text().splitlines()
        if not lines:
            return GENESIS_HASH
        return hashlib.sha256(lines[-1].encode()).hexdigest()

    def append(self, event: Event) -> None:
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            rec = event.to_dict()
            rec["prev_hash"] = self._last_hash()
            with self.path.open("a") as fh:
                fh.write(json.dumps(rec) + "\n")

    def read(self) -> List[Event]:
        if not self.path.exists():
            return []
        return [decode_event(line) for line in self.path.read_text().splitlines() if line]


def verify_chain(path: Path) -> bool:
    path = Path(path)
    if not path.exists():
        return False
    prev = GENESIS_HASH
    for line in path.read_text().splitlines():
        try:
            rec = json.loads(line)
        except json.JSONDecodeError:
            return False
        if rec.get("prev_hash") != prev:
            return False
        prev = hashlib.sha256(line.encode()).hexdigest()
    return True


# ---------------------------------------------------------------------------
# Bus
# ---------------------------------------------------------------------------

Handler = Callable[[Event], None]


class EventBus:
    def __init__(self, audit: AuditLog | None = None) -> None:
        self.audit = audit
        self.history: List[Event] = []
        self._handlers: List[Handler] = []

    def subscribe(self, handler: Handler) -> Callable[[], None]:
        self._handlers.append(handler)

        def _unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return _unsubscribe

    def publish(self, events: Iterable[Event]) -> None:
        for event in events:
            self.history.append(event)
            if self.audit is not None:
                self.audit.append(event)
            log.debug("event %s", encode_event(event))
            for handler in list(self._handlers):
                try:
                    handler(event)
                except Exception:
                    log.exception("Event handler failed for %s", event.EVENT)
