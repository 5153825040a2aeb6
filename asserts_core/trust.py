"""
asserts_core.trust
------------------
Statically configured root keys.

TrustedRoots is built once at startup and passed explicitly to the chain
verifier and the trust database. It is immutable: there is no API to add
or drop a root at runtime.
"""

from __future__ import annotations
import os
from dataclasses import dataclass
from types import MappingProxyType
from typing import Iterable, Mapping, Optional, Tuple

from .assertion import Assertion, decode_stream
from .crypto import decode_public_key, ed25519_verify, key_id
from .errors import InvalidSignature, ParseError
from .logger import get_logger

log = get_logger("Asserts.Trust")


@dataclass(frozen=True)
class TrustedKey:
    account_id: str
    key_id: str
    public_key: bytes


class TrustedRoots:
    def __init__(self, keys: Iterable[TrustedKey] = ()):
        by_id = {}
        for k in keys:
            if k.key_id != key_id(k.public_key):
                raise ValueError(f"key id {k.key_id} does not match its public key")
            by_id[k.key_id] = k
        self._keys: Mapping[str, TrustedKey] = MappingProxyType(by_id)

    def get(self, kid: str) -> Optional[TrustedKey]:
        return self._keys.get(kid)

    def __contains__(self, kid: str) -> bool:
        return kid in self._keys

    def __iter__(self):
        return iter(self._keys.values())

    def __len__(self) -> int:
        return len(self._keys)

    @classmethod
    def from_public_keys(cls, pairs: Iterable[Tuple[str, bytes]]) -> "TrustedRoots":
        """Roots from (account-id, raw public key) pairs."""
        return cls(TrustedKey(acct, key_id(pub), pub) for acct, pub in pairs)

    @classmethod
    def from_assertions(cls, assertions: Iterable[Assertion]) -> "TrustedRoots":
        """Roots from self-signed account-key assertions.

        Other assertion types in the input are ignored.
        """
        keys = []
        for a in assertions:
            if a.type != "account-key":
                continue
            pub = decode_public_key(a.body.decode("ascii"), field="body")
            kid = a.header("public-key-sha3-384")
            if a.sign_key_id != kid:
                raise ParseError("trusted account-key must be self-signed", field="sign-key-sha3-384")
            if not ed25519_verify(pub, a.signature, a.content):
                raise InvalidSignature(a.ref, kid)
            keys.append(TrustedKey(a.header("account-id"), kid, pub))
        return cls(keys)


def load_trusted_roots(path: Optional[str] = None) -> TrustedRoots:
    """Load roots from a file of encoded account-key assertions.

    The path defaults to ASSERTS_TRUSTED_ROOTS; no path means no roots.
    """
    path = path or os.getenv("ASSERTS_TRUSTED_ROOTS")
    if not path:
        log.warning("[TRUST] no trusted roots configured")
        return TrustedRoots()
    with open(path, "rb") as f:
        roots = TrustedRoots.from_assertions(decode_stream(f.read()))
    log.info(f"[TRUST] loaded {len(roots)} trusted root key(s) from {path}")
    return roots
