"""
asserts_core.errors
-------------------
Error kinds raised across the trust subsystem.

Every error carries enough structure (kind plus the offending field or
assertion reference) for callers to produce actionable diagnostics.
"""

from __future__ import annotations
from typing import Any, Optional, Tuple


class AssertsError(Exception):
    kind = "error"


class ParseError(AssertsError):
    """Malformed encoding, missing mandatory header or badly typed value."""
    kind = "parse"

    def __init__(self, reason: str, field: Optional[str] = None):
        self.reason = reason
        self.field = field
        if field:
            super().__init__(f"{field!r} header: {reason}")
        else:
            super().__init__(reason)


class UnknownType(ParseError):
    kind = "unknown-type"

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"unknown assertion type {name!r}", field="type")


class InvalidSignature(AssertsError):
    kind = "invalid-signature"

    def __init__(self, ref: Tuple, key_id: str):
        self.ref = ref
        self.key_id = key_id
        super().__init__(f"signature of {_fmt_ref(ref)} does not verify with key {key_id}")


class MissingPrerequisite(AssertsError):
    kind = "missing-prerequisite"

    def __init__(self, assert_type: str, headers: dict, needed_by: Optional[Tuple] = None):
        self.assert_type = assert_type
        self.headers = dict(headers)
        self.needed_by = needed_by
        msg = f"{assert_type} assertion {self.headers} not found"
        if needed_by:
            msg += f" (needed by {_fmt_ref(needed_by)})"
        super().__init__(msg)


class BrokenChain(AssertsError):
    kind = "broken-chain"

    def __init__(self, reason: str, ref: Optional[Tuple] = None):
        self.reason = reason
        self.ref = ref
        super().__init__(f"{reason}: {_fmt_ref(ref)}" if ref else reason)


class ConsistencyViolation(AssertsError):
    kind = "consistency"

    def __init__(self, reason: str, ref: Optional[Tuple] = None, field: Optional[str] = None):
        self.reason = reason
        self.ref = ref
        self.field = field
        super().__init__(f"{_fmt_ref(ref)}: {reason}" if ref else reason)


class RevisionConflict(AssertsError):
    kind = "revision"

    def __init__(self, ref: Tuple, current: int, attempted: int):
        self.ref = ref
        self.current = current
        self.attempted = attempted
        super().__init__(
            f"{_fmt_ref(ref)}: revision {attempted} is not newer than stored revision {current}"
        )


class NotFound(AssertsError):
    kind = "not-found"

    def __init__(self, what: str, key: Any = None):
        self.what = what
        self.key = key
        super().__init__(f"{what} not found" + (f": {key}" if key is not None else ""))


class RegistrationFailed(AssertsError):
    """Terminal outcome of the device registration flow.

    kind is "terminal" when the authority refused the request and
    "timeout" when the retry budget ran out while the request was pending.
    """

    def __init__(self, kind: str, message: str, status: Optional[int] = None):
        self.kind = kind
        self.message = message
        self.status = status
        super().__init__(message)


class RegistrationCancelled(AssertsError):
    kind = "cancelled"


def _fmt_ref(ref: Optional[Tuple]) -> str:
    if not ref:
        return "<unknown>"
    assert_type, *key = ref
    return f"{assert_type} {'/'.join(str(k) for k in key)}"
