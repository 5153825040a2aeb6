"""
asserts_core.database
---------------------
Trust database: the store of accepted assertions.

- add() verifies the chain of trust, enforces revision monotonicity per
  (type, primary key), runs the type's consistency check and only then
  makes the assertion visible. It never mutates anything on failure.
- find() / find_many() / find_sequence() never mutate.
- One writer at a time; readers share access and see either the state
  before or after an add, never a half-validated assertion.

Revocation is not a primitive: a higher revision of the same primary key
shadows the older one, which moves to the archive for the audit trail.
Batches are not atomic as a whole; see add_batch().
"""

from __future__ import annotations
import json
import threading
from contextlib import contextmanager
from typing import Any, Iterable, List, Mapping, Optional

from .assertion import Assertion, decode, encode
from .errors import AssertsError, ConsistencyViolation, NotFound, RevisionConflict
from .logger import get_logger
from .registry import DEPENDENCY_ORDER, TypeDescriptor, describe, run_consistency_check
from .storage import StorageProvider, AssertionRecord, InMemoryStorage
from .trust import TrustedRoots
from .verifier import ChainVerifier, VerifiedChain

log = get_logger("Asserts.Database")


class RWLock:
    """Writer-preferring readers-writer lock."""

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0

    @contextmanager
    def shared(self):
        with self._cond:
            while self._writer or self._waiting_writers:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if not self._readers:
                    self._cond.notify_all()

    @contextmanager
    def exclusive(self):
        with self._cond:
            self._waiting_writers += 1
            while self._writer or self._readers:
                self._cond.wait()
            self._waiting_writers -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


def _json_key(values) -> str:
    return json.dumps(list(values), separators=(",", ":"))


def _lookup_value(desc: TypeDescriptor, name: str, value: Any) -> Any:
    if desc.header_kind(name) == "int" and isinstance(value, str):
        if not (value.isascii() and value.isdigit()):
            raise ValueError(f"lookup value for {name!r} is not an integer: {value!r}")
        return int(value)
    return value


def _key_of(desc: TypeDescriptor, names, headers: Mapping[str, Any]) -> str:
    missing = [h for h in names if h not in headers]
    if missing:
        raise ValueError(f"lookup is missing key header(s) {missing}")
    return _json_key(_lookup_value(desc, h, headers[h]) for h in names)


class _Reader:
    """Lock-free read view, used while the caller already holds the lock."""

    def __init__(self, storage: StorageProvider):
        self.storage = storage

    def find(self, assert_type: str, headers: Mapping[str, Any]) -> Assertion:
        desc = describe(assert_type)
        rec = self.storage.get_record(assert_type, _key_of(desc, desc.primary_key, headers))
        if rec is None:
            raise NotFound(f"{assert_type} assertion", dict(headers))
        return decode(rec.encoded)


class TrustDatabase:
    def __init__(self, storage: Optional[StorageProvider] = None,
                 roots: Optional[TrustedRoots] = None,
                 verifier: Optional[ChainVerifier] = None):
        self.storage = storage if storage is not None else InMemoryStorage()
        self.roots = roots if roots is not None else TrustedRoots()
        self.verifier = verifier or ChainVerifier()
        self._lock = RWLock()
        self._reader = _Reader(self.storage)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    def _validate(self, a: Assertion) -> Optional[AssertionRecord]:
        desc = a.descriptor
        if not desc.storable:
            raise ConsistencyViolation(f"{desc.name} assertions are not stored", a.ref)
        self.verifier.verify(a, self.roots, self._reader, check_leaf=False)
        current = self.storage.get_record(a.type, _json_key(a.primary_key))
        if current is not None and a.revision <= current.revision:
            raise RevisionConflict(a.ref, current.revision, a.revision)
        run_consistency_check(desc, a, self._reader)
        return current

    def add(self, a: Assertion) -> None:
        """Accept `a` into the database or raise without changing anything."""
        with self._lock.exclusive():
            try:
                current = self._validate(a)
            except AssertsError as e:
                log.warning(f"[DB ADD] rejected {a.ref} rev={a.revision}: {e.kind}: {e}")
                raise
            desc = a.descriptor
            rec = AssertionRecord(
                assert_type=a.type,
                key=_json_key(a.primary_key),
                subject=_json_key(a.header(h) for h in desc.subject_key),
                revision=a.revision,
                encoded=encode(a),
                sequence=a.header("sequence") if desc.sequence_forming else None,
            )
            self.storage.put_record(rec)
            self.storage.log_event("assertion_added", {
                "type": a.type,
                "key": list(a.primary_key),
                "revision": a.revision,
                "superseded": current.revision if current is not None else None,
            })
        log.info(f"[DB ADD] {a.ref} rev={a.revision}")

    def check(self, a: Assertion) -> None:
        """Run every add() check without storing, for batch pre-validation."""
        with self._lock.shared():
            self._validate(a)

    def add_batch(self, assertions: Iterable[Assertion]) -> List[AssertsError]:
        """Add assertions in dependency order, collecting per-assertion errors.

        Earlier adds stay in place when a later one fails; each assertion
        is still all-or-nothing.
        """
        rank = {name: i for i, name in enumerate(DEPENDENCY_ORDER)}
        ordered = sorted(assertions, key=lambda a: rank.get(a.type, len(rank)))
        errors = []
        for a in ordered:
            try:
                self.add(a)
            except AssertsError as e:
                errors.append(e)
        return errors

    def prune_superseded(self) -> int:
        with self._lock.exclusive():
            n = self.storage.prune_archive()
        log.info(f"[DB PRUNE] dropped {n} superseded revision(s)")
        return n

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def find(self, assert_type: str, headers: Mapping[str, Any]) -> Assertion:
        """Exact primary-key lookup; returns the highest stored revision."""
        with self._lock.shared():
            return self._reader.find(assert_type, headers)

    def find_many(self, assert_type: str, **headers) -> List[Assertion]:
        """All stored assertions of a type whose headers match the given ones.

        Header names use underscores in place of dashes.
        """
        wanted = {k.replace("_", "-"): v for k, v in headers.items()}
        describe(assert_type)
        with self._lock.shared():
            records = self.storage.search(assert_type)
        found = [decode(r.encoded) for r in records]
        found = [a for a in found if all(a.header(k) == v for k, v in wanted.items())]
        if not found:
            raise NotFound(f"{assert_type} assertions", wanted)
        return found

    def find_sequence(self, assert_type: str, subject: Mapping[str, Any],
                      after: Optional[int] = None) -> Assertion:
        """Next entry of a sequence-forming type for `subject`.

        Returns the lowest stored sequence number strictly greater than
        `after`, or the latest one when `after` is None.
        """
        desc = describe(assert_type)
        if not desc.sequence_forming:
            raise ValueError(f"{assert_type} is not a sequence-forming type")
        subj = _key_of(desc, desc.subject_key, subject)
        with self._lock.shared():
            records = self.storage.search(assert_type, subject=subj)
        if after is None:
            candidates = records
            pick = max
        else:
            candidates = [r for r in records if r.sequence > after]
            pick = min
        if not candidates:
            raise NotFound(f"{assert_type} sequence entry", {"subject": dict(subject), "after": after})
        return decode(pick(candidates, key=lambda r: r.sequence).encoded)

    def find_trusted(self, assert_type: str, headers: Mapping[str, Any]) -> VerifiedChain:
        """find() plus a fresh chain verification against the current data."""
        with self._lock.shared():
            a = self._reader.find(assert_type, headers)
            return self.verifier.verify(a, self.roots, self._reader)

    def history(self, assert_type: str, headers: Mapping[str, Any]) -> List[Assertion]:
        """Superseded revisions of one primary key, oldest first."""
        desc = describe(assert_type)
        with self._lock.shared():
            records = self.storage.archived(assert_type, _key_of(desc, desc.primary_key, headers))
        return [decode(r.encoded) for r in records]

    def close(self) -> None:
        self.storage.close()
