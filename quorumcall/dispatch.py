from __future__ import annotations

"""Callback dispatch to the program that created a request.

The invocation is built solely from the stored record: the target program is
the record's ``requesting_party`` and the accounts are its declared callback
targets with their recorded mutability. Data is the 8-byte routing tag for
``llm_callback`` followed by the encoded ``(request_id, payload)`` pair.

Any failure of the target surfaces as :class:`CallbackRejected`, which aborts
the surrounding fulfillment before anything is committed.

A target does not mutate its own state or publish while the fulfillment is
open. It validates the delivery and returns :class:`CallbackEffects`: state
changes to apply and notifications to publish once the broker has committed.
If the broker aborts, the effects are dropped.
"""

from dataclasses import dataclass, field
import logging
from typing import Callable, Dict, List, Optional, Protocol, Sequence, Tuple

from . import codec
from .errors import CallbackRejected
from .events import Event
from .records import AccountMeta, RequestRecord

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Invocation:
    program: str
    accounts: Tuple[AccountMeta, ...]
    data: bytes


@dataclass
class CallbackEffects:
    """State changes and notifications a target stages until the caller commits."""

    on_commit: List[Callable[[], None]] = field(default_factory=list)
    events: List[Event] = field(default_factory=list)

    def apply(self) -> None:
        for hook in self.on_commit:
            hook()


@dataclass
class Delivery:
    invocation: Invocation
    effects: CallbackEffects


class Transport(Protocol):
    def invoke(self, invocation: Invocation) -> Optional[CallbackEffects]: ...


ProgramHandler = Callable[[Sequence[AccountMeta], bytes], Optional[CallbackEffects]]


class InProcessTransport:
    """Routes invocations to handlers registered by program identity."""

    def __init__(self) -> None:
        self._programs: Dict[str, ProgramHandler] = {}
        self.invocations: list[Invocation] = []

    def register(self, program: str, handler: ProgramHandler) -> None:
        self._programs[program] = handler

    def invoke(self, invocation: Invocation) -> Optional[CallbackEffects]:
        handler = self._programs.get(invocation.program)
        if handler is None:
            raise CallbackRejected(f"No program registered at {invocation.program}")
        self.invocations.append(invocation)
        return handler(invocation.accounts, invocation.data)


class CallbackDispatcher:
    def __init__(self, transport: Transport) -> None:
        self.transport = transport

    @staticmethod
    def build(record: RequestRecord, payload: bytes) -> Invocation:
        return Invocation(
            program=record.requesting_party,
            accounts=tuple(
                AccountMeta(identity=t.identity, writable=t.writable)
                for t in record.callback_targets
            ),
            data=codec.encode_callback(record.id, payload),
        )

    def dispatch(self, record: RequestRecord, payload: bytes) -> Delivery:
        invocation = self.build(record, payload)
        try:
            effects = self.transport.invoke(invocation)
        except CallbackRejected:
            raise
        except Exception as exc:
            raise CallbackRejected(
                f"Callback to {record.requesting_party} for {record.id} failed: {exc}"
            ) from exc
        log.debug(
            "Dispatched %s to %s with %d accounts",
            record.id,
            record.requesting_party,
            len(invocation.accounts),
        )
        return Delivery(invocation=invocation, effects=effects or CallbackEffects())
