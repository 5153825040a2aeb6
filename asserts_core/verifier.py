"""
asserts_core.verifier
---------------------
Chain-of-trust verification.

Starting from a candidate assertion the verifier resolves its sign key to
an account-key assertion, checks the signature, then walks on to the
account-key itself and to the account owning it, until every branch ends
at a statically trusted root key. Links are looked up by identifier in the
source on every call, so a superseding account-key revision takes effect
immediately.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional, Set, Tuple

from .assertion import Assertion
from .constants import MAX_CHAIN_DEPTH
from .crypto import decode_public_key, ed25519_verify
from .errors import (
    BrokenChain, ConsistencyViolation, InvalidSignature, MissingPrerequisite, NotFound,
)
from .logger import get_logger
from .registry import run_consistency_check
from .trust import TrustedKey, TrustedRoots
from .utils import parse_ts, utcnow

log = get_logger("Asserts.Verifier")


@dataclass(frozen=True)
class VerifiedChain:
    # leaf first, each assertion once
    links: Tuple[Assertion, ...]
    # None for self-signed assertions
    root: Optional[TrustedKey]

    @property
    def leaf(self) -> Assertion:
        return self.links[0]


def _signing_time(a: Assertion) -> Optional[datetime]:
    for name in ("timestamp", "since"):
        if a.has_header(name):
            return parse_ts(a.header(name))
    return None


class ChainVerifier:
    def __init__(self, max_depth: int = MAX_CHAIN_DEPTH, clock: Callable[[], datetime] = utcnow):
        self.max_depth = max_depth
        self.clock = clock

    def verify(self, assertion: Assertion, roots: TrustedRoots, database,
               check_leaf: bool = True) -> VerifiedChain:
        """Verify `assertion` up to a trusted root.

        `database` is anything with find(type, headers) raising NotFound.
        The leaf's own consistency check is skipped with check_leaf=False,
        for callers that run it themselves.
        """
        links: List[Assertion] = []
        done: Set[Tuple] = set()
        root = self._walk(assertion, roots, database, (), links, done, check_leaf)
        return VerifiedChain(tuple(links), root)

    def _walk(self, a: Assertion, roots: TrustedRoots, source, path: Tuple,
              links: List[Assertion], done: Set[Tuple], check: bool) -> Optional[TrustedKey]:
        ident = a.ref + (a.revision,)
        if a.ref in path:
            raise BrokenChain("cycle in chain of trust", a.ref)
        if len(path) >= self.max_depth:
            raise BrokenChain(f"chain of trust deeper than {self.max_depth}", a.ref)
        path = path + (a.ref,)
        if ident not in done:
            links.append(a)
            done.add(ident)

        desc = a.descriptor
        if desc.self_signed_key:
            pub = decode_public_key(a.header(desc.self_signed_key), field=desc.self_signed_key)
            self._check_signature(a, pub)
            if check:
                run_consistency_check(desc, a, source)
            return None

        kid = a.sign_key_id
        root = roots.get(kid)
        if root is not None:
            if root.account_id != a.authority_id:
                raise ConsistencyViolation(
                    f"signed with a root key of {root.account_id!r}", a.ref, field="authority-id")
            # a stored account-key for a root key can still revoke it
            try:
                key = source.find("account-key", {"public-key-sha3-384": kid})
            except NotFound:
                key = None
            if key is not None:
                if key.header("account-id") != root.account_id:
                    raise ConsistencyViolation(
                        f"root key is registered to {key.header('account-id')!r}", a.ref,
                        field="authority-id")
                self._check_validity(key, a)
            self._check_signature(a, root.public_key)
            if check:
                run_consistency_check(desc, a, source)
            return root

        try:
            key = source.find("account-key", {"public-key-sha3-384": kid})
        except NotFound:
            raise MissingPrerequisite("account-key", {"public-key-sha3-384": kid}, needed_by=a.ref)
        if key.header("account-id") != a.authority_id:
            raise ConsistencyViolation(
                f"signing key belongs to {key.header('account-id')!r}", a.ref, field="authority-id")
        self._check_validity(key, a)
        self._check_signature(a, decode_public_key(key.body.decode("ascii"), field="body"))
        if check:
            run_consistency_check(desc, a, source)

        root = self._walk(key, roots, source, path, links, done, True)
        try:
            account = source.find("account", {"account-id": key.header("account-id")})
        except NotFound:
            raise MissingPrerequisite("account", {"account-id": key.header("account-id")},
                                      needed_by=key.ref)
        self._walk(account, roots, source, path, links, done, True)
        return root

    def _check_signature(self, a: Assertion, pub: bytes) -> None:
        if not ed25519_verify(pub, a.signature, a.content):
            log.warning(f"[VERIFY] bad signature on {a.ref} key={a.sign_key_id}")
            raise InvalidSignature(a.ref, a.sign_key_id)

    def _check_validity(self, key: Assertion, a: Assertion) -> None:
        at = _signing_time(a) or self.clock()
        since = parse_ts(key.header("since"))
        if at < since:
            raise ConsistencyViolation(
                f"signing key {key.header('public-key-sha3-384')} not valid before {key.header('since')}",
                a.ref, field="since")
        until = key.header("until")
        if until and at >= parse_ts(until):
            raise ConsistencyViolation(
                f"signing key {key.header('public-key-sha3-384')} expired at {until}",
                a.ref, field="until")
