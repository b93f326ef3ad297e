from __future__ import annotations

"""quorumcall.errors - distinguishable failure kinds for every operation.

Each failure is its own class with a stable ``code`` so callers (and the
oracle node) can react to the kind without parsing messages. Categories:

- :class:`BoundsError` - input bound violated, rejected before any mutation
- :class:`StateError` - wrong lifecycle state for the attempted operation
- :class:`AuthorizationError` - identity or account-set mismatch
- :class:`IntegrityError` - payload does not match the committed hash
- :class:`DispatchError` - the callback target rejected the delivery
"""


class QuorumCallError(Exception):
    code: str = "quorumcall_error"
    default_message: str = "quorumcall operation failed"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self.args[0])


# ---------------------------------------------------------------------------
# (a) input bounds
# ---------------------------------------------------------------------------


class BoundsError(QuorumCallError, ValueError):
    code = "bounds"


class RequestIdTooLong(BoundsError):
    code = "request_id_too_long"
    default_message = "Request id exceeds maximum length"


class EmptyRequestId(BoundsError):
    code = "empty_request_id"
    default_message = "Request id must not be empty"


class ProviderTooLong(BoundsError):
    code = "provider_too_long"
    default_message = "Provider exceeds maximum length"


class ModelIdTooLong(BoundsError):
    code = "model_id_too_long"
    default_message = "Model id exceeds maximum length"


class TooManyMessages(BoundsError):
    code = "too_many_messages"
    default_message = "Too many messages"


class InvalidMessage(BoundsError):
    code = "invalid_message"
    default_message = "Message must have string role and content"


class TooManyAccounts(BoundsError):
    code = "too_many_accounts"
    default_message = "Too many callback accounts"


class InvalidMinVotes(BoundsError):
    code = "invalid_min_votes"
    default_message = "min_votes must be at least 1 and at most the oracle cap"


class InvalidApprovalThreshold(BoundsError):
    code = "invalid_approval_threshold"
    default_message = "approval_threshold must be between 1 and 100"


class TooManyVotes(BoundsError):
    code = "too_many_votes"
    default_message = "Maximum number of oracle votes reached"


class InvalidHash(BoundsError):
    code = "invalid_hash"
    default_message = "Result hash must be exactly 32 bytes"


class InvalidIdentity(BoundsError):
    code = "invalid_identity"
    default_message = "Identity must be a 32-byte public key in hex"


class RecordTooLarge(BoundsError):
    code = "record_too_large"
    default_message = "Record exceeds its reserved space"


class MalformedCallback(BoundsError):
    code = "malformed_callback"
    default_message = "Callback data could not be decoded"


# ---------------------------------------------------------------------------
# (b) state preconditions
# ---------------------------------------------------------------------------


class StateError(QuorumCallError):
    code = "state"


class RequestAlreadyExists(StateError):
    code = "request_already_exists"
    default_message = "A request with this id already exists"


class RequestNotFound(StateError, LookupError):
    code = "request_not_found"
    default_message = "Request does not exist"


class VotingClosed(StateError):
    code = "voting_closed"
    default_message = "Request is not pending"


class VotingNotCompleted(StateError):
    code = "voting_not_completed"
    default_message = "Request is not in VotingCompleted state"


class NoWinningHash(StateError):
    code = "no_winning_hash"
    default_message = "No winning hash recorded"


class NoResponse(StateError):
    code = "no_response"
    default_message = "No response available yet"


class ResponseAlreadyStored(StateError):
    code = "response_already_stored"
    default_message = "Response already stored for this request"


class InvalidTransition(StateError):
    code = "invalid_transition"
    default_message = "Status may only advance one step forward"


# ---------------------------------------------------------------------------
# (c) identity / authorization
# ---------------------------------------------------------------------------


class AuthorizationError(QuorumCallError, PermissionError):
    code = "authorization"


class UnauthorizedOracle(AuthorizationError):
    code = "unauthorized_oracle"
    default_message = "Oracle identity could not be verified"


class DuplicateVote(AuthorizationError):
    code = "duplicate_vote"
    default_message = "Oracle has already voted on this request"


class CallbackProgramMismatch(AuthorizationError):
    code = "callback_program_mismatch"
    default_message = "Callback program does not match"


class CallbackTargetMismatch(AuthorizationError):
    code = "callback_target_mismatch"
    default_message = "Callback target mismatch"


class RequestIdMismatch(AuthorizationError):
    code = "request_id_mismatch"
    default_message = "Request ID does not match"


# ---------------------------------------------------------------------------
# (d) integrity
# ---------------------------------------------------------------------------


class IntegrityError(QuorumCallError):
    code = "integrity"


class PayloadHashMismatch(IntegrityError):
    code = "payload_hash_mismatch"
    default_message = "Payload does not match winning hash"


# ---------------------------------------------------------------------------
# dispatch
# ---------------------------------------------------------------------------


class DispatchError(QuorumCallError):
    code = "dispatch"


class CallbackRejected(DispatchError):
    code = "callback_rejected"
    default_message = "Callback target rejected the invocation"
