from __future__ import annotations

"""A requester program that asks for one LLM completion per state account.

``request_llm_response`` opens a consumer-state account for ``(authority,
request_id)`` and forwards the request to the broker with that account as the
only (writable) callback target. The broker later delivers the winning
payload to :meth:`LLMConsumer.llm_callback`, which stores it once.
"""

import hashlib
import logging
from typing import Dict, Sequence

from pydantic import BaseModel

from . import codec
from . import config
from .dispatch import CallbackEffects, InProcessTransport
from .errors import (
    CallbackTargetMismatch,
    MalformedCallback,
    NoResponse,
    RequestAlreadyExists,
    RequestIdMismatch,
    RequestNotFound,
    ResponseAlreadyStored,
)
from .events import ResponseReceived
from .lifecycle import RequestBroker
from .records import AccountMeta, Message

log = logging.getLogger(__name__)

PREVIEW_CHARS = 100


def state_account(program_id: str, authority: str, request_id: str) -> str:
    """Identity of the consumer-state account for *authority*'s *request_id*."""
    h = hashlib.sha256()
    h.update(b"consumer_state")
    h.update(bytes.fromhex(program_id))
    h.update(bytes.fromhex(authority))
    h.update(request_id.encode("utf-8"))
    return h.hexdigest()


class ConsumerState(BaseModel):
    request_id: str
    authority: str
    response: str = ""
    has_response: bool = False


class LLMConsumer:
    def __init__(
        self,
        program_id: str,
        broker: RequestBroker,
        transport: InProcessTransport,
    ) -> None:
        self.program_id = program_id
        self.broker = broker
        self.states: Dict[str, ConsumerState] = {}
        transport.register(program_id, self.llm_callback)

    def request_llm_response(
        self,
        authority: str,
        request_id: str,
        prompt: str,
        min_votes: int = 1,
        approval_threshold: int = 100,
        *,
        provider: str | None = None,
        model_id: str | None = None,
    ) -> str:
        """Open a state account and submit the prompt; returns the account identity."""
        account = state_account(self.program_id, authority, request_id)
        if account in self.states:
            raise RequestAlreadyExists(f"Consumer state for {request_id} already exists")
        self.broker.create_request(
            requesting_party=self.program_id,
            request_id=request_id,
            provider=provider or config.get("consumer.provider", "openai"),
            model_id=model_id or config.get("consumer.model_id", "gpt-4"),
            messages=[Message(role="user", content=prompt)],
            callback_targets=[AccountMeta(identity=account, writable=True)],
            min_votes=min_votes,
            approval_threshold=approval_threshold,
        )
        self.states[account] = ConsumerState(request_id=request_id, authority=authority)
        log.info("LLM request created with ID: %s", request_id)
        return account

    def llm_callback(self, accounts: Sequence[AccountMeta], data: bytes) -> CallbackEffects:
        """Entry point invoked by the broker's dispatcher.

        Validates the delivery and stages the stored response; the broker
        applies it (and publishes ``ResponseReceived``) after it commits.
        """
        request_id, payload = codec.decode_callback(data)
        if len(accounts) != 1 or not accounts[0].writable:
            raise CallbackTargetMismatch("Expected exactly one writable consumer-state account")
        state = self.states.get(accounts[0].identity)
        if state is None:
            raise RequestNotFound(f"No consumer state at {accounts[0].identity}")
        if state.request_id != request_id:
            raise RequestIdMismatch(
                f"Callback for {request_id} reached state of {state.request_id}"
            )
        if state.has_response:
            raise ResponseAlreadyStored(f"Response already stored for {request_id}")
        try:
            text = payload.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MalformedCallback(f"Response for {request_id} is not UTF-8") from exc

        account = accounts[0].identity
        answered = state.model_copy(update={"response": text, "has_response": True})

        def _store() -> None:
            self.states[account] = answered
            log.info("LLM response received and stored for %s", request_id)

        return CallbackEffects(
            on_commit=[_store],
            events=[ResponseReceived(request_id=request_id, response_preview=text[:PREVIEW_CHARS])],
        )

    def get_response(self, account: str) -> str:
        state = self.states.get(account)
        if state is None:
            raise RequestNotFound(f"No consumer state at {account}")
        if not state.has_response:
            raise NoResponse()
        return state.response
