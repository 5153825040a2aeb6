"""
asserts_core.crypto
-------------------
Key identity and signature primitives:

- Ed25519: signing and verification of assertion content
- Canonical public key encoding (DER SubjectPublicKeyInfo) and its
  single-line base64 text form used in headers and account-key bodies
- Key ID: SHA3-384 over the canonical encoding, unpadded urlsafe base64

The same public key always yields the same key id, 64 characters long.
"""

from __future__ import annotations
import binascii
from typing import Tuple

from cryptography.exceptions import InvalidSignature as _CryptoInvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ed25519

from .errors import ParseError
from .utils import b64e, b64d, b64url_nopad, sha3_384


# --------- Ed25519 (sign/verify) ----------
def ed25519_generate() -> Tuple[bytes, bytes]:
    sk = ed25519.Ed25519PrivateKey.generate()
    pk = sk.public_key()
    return sk.private_bytes_raw(), pk.public_bytes_raw()


def ed25519_public(priv_raw: bytes) -> bytes:
    sk = ed25519.Ed25519PrivateKey.from_private_bytes(priv_raw)
    return sk.public_key().public_bytes_raw()


def ed25519_sign(priv_raw: bytes, data: bytes) -> bytes:
    sk = ed25519.Ed25519PrivateKey.from_private_bytes(priv_raw)
    return sk.sign(data)


def ed25519_verify(pub_raw: bytes, sig: bytes, data: bytes) -> bool:
    try:
        ed25519.Ed25519PublicKey.from_public_bytes(pub_raw).verify(sig, data)
        return True
    except (_CryptoInvalidSignature, ValueError):
        return False


# --------- Canonical public key encoding ----------
def public_key_der(pub_raw: bytes) -> bytes:
    pk = ed25519.Ed25519PublicKey.from_public_bytes(pub_raw)
    return pk.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )


def encode_public_key(pub_raw: bytes) -> str:
    return b64e(public_key_der(pub_raw))


def decode_public_key(text: str, field: str = "public-key") -> bytes:
    """Inverse of encode_public_key; returns the raw 32-byte public key."""
    try:
        der = b64d(text.strip())
    except (binascii.Error, ValueError):
        raise ParseError("public key is not valid base64", field=field)
    try:
        pk = serialization.load_der_public_key(der)
    except ValueError:
        raise ParseError("cannot decode public key", field=field)
    if not isinstance(pk, ed25519.Ed25519PublicKey):
        raise ParseError("unsupported public key algorithm, expected ed25519", field=field)
    return pk.public_bytes_raw()


def key_id(pub_raw: bytes) -> str:
    """Stable identifier of a public key used by sign-key headers."""
    return b64url_nopad(sha3_384(public_key_der(pub_raw)))
