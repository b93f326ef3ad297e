from __future__ import annotations

"""quorumcall.signer - Ed25519 identities, tagged signing and verification.

An identity is the raw 32-byte Ed25519 public key rendered as lowercase hex.
Votes are signed over a domain-separated message (``VOTE_TAG || body``) so a
signature produced for one purpose can never be replayed as another.

The broker only ever asks one question - "did *identity* sign *message*?" -
through the :class:`Authenticator` protocol; :class:`Ed25519Authenticator`
is the default implementation.
"""

from pathlib import Path
import re
from typing import Protocol

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ed25519

from . import codec

VOTE_TAG = b"quorumcall/vote/v1|"

_IDENTITY_RE = re.compile(r"^[0-9a-f]{64}$")


def is_identity(value: str) -> bool:
    return isinstance(value, str) and bool(_IDENTITY_RE.match(value))


def identity_from_public_key(pub: ed25519.Ed25519PublicKey) -> str:
    return pub.public_bytes(
        encoding=serialization.Encoding.Raw, format=serialization.PublicFormat.Raw
    ).hex()


# ---------------------------------------------------------------------------
# Key management helpers
# ---------------------------------------------------------------------------


def generate_keypair(
    private_key_path: Path, public_key_path: Path, passphrase: str | None = None
) -> str:
    """Generate an Ed25519 keypair on disk in PEM format and return its identity.

    The private key is encrypted with *passphrase* if provided, otherwise
    written in plaintext (NOT recommended beyond CI tests).
    """
    private_key_path.parent.mkdir(parents=True, exist_ok=True)
    public_key_path.parent.mkdir(parents=True, exist_ok=True)

    key = ed25519.Ed25519PrivateKey.generate()

    enc_algo: serialization.KeySerializationEncryption
    if passphrase:
        enc_algo = serialization.BestAvailableEncryption(passphrase.encode())
    else:
        enc_algo = serialization.NoEncryption()

    private_key_path.write_bytes(
        key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=enc_algo,
        )
    )
    public_key_path.write_bytes(
        key.public_key().public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
    )
    return identity_from_public_key(key.public_key())


def identity_of(public_key_path: Path) -> str:
    """Return the identity for a PEM public key file."""
    pub = serialization.load_pem_public_key(public_key_path.read_bytes())
    if not isinstance(pub, ed25519.Ed25519PublicKey):
        raise ValueError(f"{public_key_path} is not an Ed25519 public key")
    return identity_from_public_key(pub)


class Signer:
    """Holds one private key; used by oracles to sign their votes."""

    def __init__(self, private_key: ed25519.Ed25519PrivateKey) -> None:
        self._key = private_key
        self.identity = identity_from_public_key(private_key.public_key())

    @classmethod
    def generate(cls) -> "Signer":
        return cls(ed25519.Ed25519PrivateKey.generate())

    @classmethod
    def from_pem(cls, path: Path, passphrase: str | None = None) -> "Signer":
        key = serialization.load_pem_private_key(
            path.read_bytes(),
            password=None if passphrase is None else passphrase.encode(),
        )
        if not isinstance(key, ed25519.Ed25519PrivateKey):
            raise ValueError(f"{path} is not an Ed25519 private key")
        return cls(key)

    def sign(self, message: bytes) -> bytes:
        return self._key.sign(message)

    def sign_with_tag(self, tag: bytes, body: bytes) -> bytes:
        return self._key.sign(tag + body)

    def sign_vote(self, request_id: str, result_hash: bytes) -> bytes:
        return self.sign_with_tag(VOTE_TAG, vote_body(request_id, result_hash))

    def __repr__(self) -> str:
        return f"Signer(identity={self.identity[:12]}...)"


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------


def vote_body(request_id: str, result_hash: bytes) -> bytes:
    """Bytes an oracle signs for a vote: encoded request id followed by the hash."""
    return codec.encode_str(request_id) + bytes(result_hash)


def vote_message(request_id: str, result_hash: bytes) -> bytes:
    return VOTE_TAG + vote_body(request_id, result_hash)


def verify_with_tag(identity: str, body: bytes, signature: bytes, tag: bytes) -> bool:
    """Return **True** iff *signature* is valid for ``tag || body`` under *identity*."""
    return Ed25519Authenticator().verify(identity, tag + body, signature)


class Authenticator(Protocol):
    def verify(self, identity: str, message: bytes, signature: bytes) -> bool: ...


class Ed25519Authenticator:
    """Verifies that *identity* (raw Ed25519 public key hex) signed *message*."""

    def verify(self, identity: str, message: bytes, signature: bytes) -> bool:
        if not is_identity(identity):
            return False
        try:
            pub = ed25519.Ed25519PublicKey.from_public_bytes(bytes.fromhex(identity))
            pub.verify(bytes(signature), message)
        except (InvalidSignature, ValueError):
            return False
        return True
