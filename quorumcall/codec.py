from __future__ import annotations

"""quorumcall.codec - compact length-prefixed binary encoding.

Integers are little-endian; strings and byte blobs carry a u32 length prefix;
vectors carry a u32 item count; options a single 0/1 byte. The same encoding
is used for callback payloads and for sizing persisted request records.

Routing tags are the first 8 bytes of ``sha256("<namespace>:<name>")``.
"""

import hashlib
import struct
from typing import TYPE_CHECKING, Callable, Iterable, List, Optional, Tuple, TypeVar

from .errors import MalformedCallback

if TYPE_CHECKING:
    from .records import Limits, RequestRecord

T = TypeVar("T")

CALLBACK_METHOD = "llm_callback"
IDENTITY_BYTES = 32
HASH_BYTES = 32
TAG_BYTES = 8


def routing_tag(name: str, namespace: str = "global") -> bytes:
    return hashlib.sha256(f"{namespace}:{name}".encode()).digest()[:TAG_BYTES]


def payload_hash(payload: bytes) -> bytes:
    """SHA-256 digest oracles vote on and fulfillment re-checks."""
    return hashlib.sha256(payload).digest()


CALLBACK_TAG = routing_tag(CALLBACK_METHOD)
RECORD_TAG = routing_tag("RequestRecord", namespace="account")


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------


def encode_u8(value: int) -> bytes:
    return struct.pack("<B", value)


def encode_bool(value: bool) -> bytes:
    return encode_u8(1 if value else 0)


def encode_u32(value: int) -> bytes:
    return struct.pack("<I", value)


def encode_i64(value: int) -> bytes:
    return struct.pack("<q", value)


def encode_bytes(value: bytes) -> bytes:
    return encode_u32(len(value)) + bytes(value)


def encode_str(value: str) -> bytes:
    return encode_bytes(value.encode("utf-8"))


def encode_fixed(value: bytes, size: int) -> bytes:
    if len(value) != size:
        raise ValueError(f"expected {size} bytes, got {len(value)}")
    return bytes(value)


def encode_identity(identity: str) -> bytes:
    return encode_fixed(bytes.fromhex(identity), IDENTITY_BYTES)


def encode_vec(items: Iterable[T], encode_item: Callable[[T], bytes]) -> bytes:
    items = list(items)
    return encode_u32(len(items)) + b"".join(encode_item(i) for i in items)


def encode_option(value: Optional[T], encode_item: Callable[[T], bytes]) -> bytes:
    if value is None:
        return encode_u8(0)
    return encode_u8(1) + encode_item(value)


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------


class Reader:
    """Sequential reader over an encoded buffer. Raises ``ValueError`` on underrun."""

    def __init__(self, data: bytes) -> None:
        self._data = bytes(data)
        self._offset = 0

    def _take(self, n: int) -> bytes:
        end = self._offset + n
        if end > len(self._data):
            raise ValueError(
                f"buffer underrun: need {n} bytes at offset {self._offset}, "
                f"have {len(self._data) - self._offset}"
            )
        chunk = self._data[self._offset : end]
        self._offset = end
        return chunk

    def read_u8(self) -> int:
        return self._take(1)[0]

    def read_u32(self) -> int:
        return struct.unpack("<I", self._take(4))[0]

    def read_i64(self) -> int:
        return struct.unpack("<q", self._take(8))[0]

    def read_bytes(self) -> bytes:
        return self._take(self.read_u32())

    def read_str(self) -> str:
        return self.read_bytes().decode("utf-8")

    def read_fixed(self, size: int) -> bytes:
        return self._take(size)

    @property
    def remaining(self) -> int:
        return len(self._data) - self._offset

    def expect_end(self) -> None:
        if self.remaining:
            raise ValueError(f"{self.remaining} trailing bytes")


# ---------------------------------------------------------------------------
# Callback payloads
# ---------------------------------------------------------------------------


def encode_callback(request_id: str, payload: bytes) -> bytes:
    """Routing tag followed by the encoded ``(request_id, payload)`` pair."""
    return CALLBACK_TAG + encode_str(request_id) + encode_bytes(payload)


def decode_callback(data: bytes) -> Tuple[str, bytes]:
    if data[:TAG_BYTES] != CALLBACK_TAG:
        raise MalformedCallback("Unknown routing tag")
    reader = Reader(data[TAG_BYTES:])
    try:
        request_id = reader.read_str()
        payload = reader.read_bytes()
        reader.expect_end()
    except (ValueError, UnicodeDecodeError) as exc:
        raise MalformedCallback(f"Malformed callback data: {exc}") from exc
    return request_id, payload


# ---------------------------------------------------------------------------
# Record sizing
# ---------------------------------------------------------------------------


def encode_record(record: "RequestRecord") -> bytes:
    """Fixed-layout encoding used to account for a record's stored size."""
    parts: List[bytes] = [
        RECORD_TAG,
        encode_str(record.id),
        encode_identity(record.requesting_party),
        encode_str(record.provider),
        encode_str(record.model_id),
        encode_vec(
            record.callback_targets,
            lambda t: encode_identity(t.identity) + encode_bool(t.writable),
        ),
        encode_u8(record.status.code),
        encode_i64(record.created_at),
        encode_u8(record.min_votes),
        encode_u8(record.approval_threshold),
        encode_vec(
            record.votes,
            lambda v: encode_identity(v.oracle) + encode_fixed(v.result_hash, HASH_BYTES),
        ),
        encode_option(record.winning_hash, lambda h: encode_fixed(h, HASH_BYTES)),
        encode_u8(record.total_votes_cast),
    ]
    return b"".join(parts)


def record_space(limits: "Limits") -> int:
    """Maximum encoded size of a record under *limits*; reserved at creation."""
    return (
        TAG_BYTES
        + (4 + limits.max_id_bytes)
        + IDENTITY_BYTES
        + (4 + limits.max_provider_len)
        + (4 + limits.max_model_id_len)
        + (4 + limits.max_callback_targets * (IDENTITY_BYTES + 1))
        + 1  # status
        + 8  # created_at
        + 1  # min_votes
        + 1  # approval_threshold
        + (4 + limits.max_oracles * (IDENTITY_BYTES + HASH_BYTES))
        + (1 + HASH_BYTES)
        + 1  # total_votes_cast
    )
