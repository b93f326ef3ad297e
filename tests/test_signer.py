from __future__ import annotations

from pathlib import Path

from quorumcall.signer import (
    VOTE_TAG,
    Ed25519Authenticator,
    Signer,
    generate_keypair,
    identity_of,
    is_identity,
    verify_with_tag,
    vote_body,
    vote_message,
)

H = bytes(range(32))


def test_keypair_on_disk(tmp_path: Path):
    priv = tmp_path / "keys" / "oracle.pem"
    pub = tmp_path / "keys" / "oracle.pub"
    identity = generate_keypair(priv, pub)
    assert is_identity(identity)
    assert identity_of(pub) == identity

    signer = Signer.from_pem(priv)
    assert signer.identity == identity
    sig = signer.sign_vote("req-1", H)
    assert Ed25519Authenticator().verify(identity, vote_message("req-1", H), sig) is True
    # Negative case
    assert Ed25519Authenticator().verify(identity, vote_message("req-1", H[::-1]), sig) is False


def test_encrypted_private_key(tmp_path: Path):
    priv, pub = tmp_path / "priv.pem", tmp_path / "pub.pem"
    identity = generate_keypair(priv, pub, passphrase="hunter2")
    assert b"ENCRYPTED" in priv.read_bytes()
    assert Signer.from_pem(priv, passphrase="hunter2").identity == identity


def test_tags_separate_signing_domains():
    signer = Signer.generate()
    body = vote_body("req-1", H)
    sig = signer.sign_with_tag(VOTE_TAG, body)
    assert verify_with_tag(signer.identity, body, sig, VOTE_TAG)
    assert not verify_with_tag(signer.identity, body, sig, b"other/v1|")
    # untagged signature over the same body is not a vote
    assert not verify_with_tag(signer.identity, body, signer.sign(body), VOTE_TAG)


def test_malformed_identity_does_not_verify():
    signer = Signer.generate()
    msg = vote_message("req-1", H)
    sig = signer.sign(msg)
    auth = Ed25519Authenticator()
    assert auth.verify(signer.identity.upper(), msg, sig) is False
    assert auth.verify("00" * 31, msg, sig) is False
    assert auth.verify(signer.identity, msg, b"short") is False
