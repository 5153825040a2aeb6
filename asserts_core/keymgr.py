"""
asserts_core.keymgr
-------------------
Private key storage and assertion signing.

Keys are raw Ed25519 private keys addressed by the key id of their public
half. MemoryKeypairManager suits tests and ephemeral devices;
FSKeypairManager keeps one file per key under a directory, readable only by
the owner.
"""

from __future__ import annotations
import os
import threading
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from .assertion import Assertion, assemble, assemble_content, decode
from .constants import SIGN_KEY_HEADER
from .crypto import ed25519_generate, ed25519_public, ed25519_sign, key_id
from .errors import NotFound, ParseError
from .logger import get_logger
from .utils import b64d, b64e

log = get_logger("Asserts.KeyMgr")


class KeypairManager:
    """Interface for private key holders."""

    def put(self, priv_raw: bytes) -> str:
        raise NotImplementedError

    def get(self, kid: str) -> bytes:
        raise NotImplementedError

    def delete(self, kid: str) -> None:
        raise NotImplementedError

    def generate(self) -> str:
        priv, _ = ed25519_generate()
        return self.put(priv)

    def public_key(self, kid: str) -> bytes:
        return ed25519_public(self.get(kid))

    def sign(self, assert_type: str, headers: Mapping[str, Any], body: bytes, kid: str) -> Assertion:
        return sign_assertion(assert_type, headers, body, self.get(kid))


class MemoryKeypairManager(KeypairManager):
    def __init__(self):
        self._keys: Dict[str, bytes] = {}
        self._lock = threading.Lock()

    def put(self, priv_raw: bytes) -> str:
        kid = key_id(ed25519_public(priv_raw))
        with self._lock:
            self._keys[kid] = priv_raw
        return kid

    def get(self, kid: str) -> bytes:
        with self._lock:
            priv = self._keys.get(kid)
        if priv is None:
            raise NotFound("private key", kid)
        return priv

    def delete(self, kid: str) -> None:
        with self._lock:
            if self._keys.pop(kid, None) is None:
                raise NotFound("private key", kid)


class FSKeypairManager(KeypairManager):
    def __init__(self, path: str):
        self.path = Path(path)
        self.path.mkdir(parents=True, exist_ok=True, mode=0o700)

    def _key_path(self, kid: str) -> Path:
        return self.path / kid

    def put(self, priv_raw: bytes) -> str:
        kid = key_id(ed25519_public(priv_raw))
        target = self._key_path(kid)
        tmp = target.with_suffix(".tmp")
        fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="ascii") as f:
            f.write(b64e(priv_raw))
        tmp.replace(target)
        log.info(f"[KEYMGR] stored key {kid}")
        return kid

    def get(self, kid: str) -> bytes:
        try:
            text = self._key_path(kid).read_text(encoding="ascii")
        except FileNotFoundError:
            raise NotFound("private key", kid)
        return b64d(text.strip())

    def delete(self, kid: str) -> None:
        try:
            self._key_path(kid).unlink()
        except FileNotFoundError:
            raise NotFound("private key", kid)


def sign_assertion(assert_type: str, headers: Mapping[str, Any], body: Optional[bytes],
                   priv_raw: bytes) -> Assertion:
    """Assemble, sign and decode an assertion.

    The sign-key header is derived from the private key, body-length from
    the body. Going through decode means a signed assertion is subject to
    exactly the same checks as one received over the wire.
    """
    headers = dict(headers)
    if headers.get("type", assert_type) != assert_type:
        raise ParseError("type header does not match the requested type", field="type")
    headers["type"] = assert_type
    headers[SIGN_KEY_HEADER] = key_id(ed25519_public(priv_raw))
    if headers.get("revision") == 0:
        del headers["revision"]
    content = assemble_content(headers, body or b"")
    sig = ed25519_sign(priv_raw, content)
    return decode(assemble(content, sig))
