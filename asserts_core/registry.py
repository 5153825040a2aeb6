"""
asserts_core.registry
---------------------
Static metadata for every assertion type.

The table is built once at import time and never mutated. Behaviour that
differs per type is expressed as data (primary key shape, typed headers,
body policy, flags) plus a small set of named check functions:

- decode checks are stateless and run when an assertion is decoded
- consistency checks run against the trust database when adding
"""

from __future__ import annotations
import re
from dataclasses import dataclass
from types import MappingProxyType
from typing import Callable, Dict, Optional, Tuple

from .constants import KEY_ID_LENGTH, SIGN_KEY_HEADER
from .crypto import decode_public_key, key_id
from .errors import ConsistencyViolation, MissingPrerequisite, NotFound, ParseError, UnknownType
from .utils import parse_ts

BODY_OPTIONAL = "optional"
BODY_REQUIRED = "required"
BODY_FORBIDDEN = "forbidden"

COMMON_MANDATORY = ("type", "authority-id", SIGN_KEY_HEADER)
COMMON_INT_HEADERS = ("revision", "body-length")

_KEY_ID = re.compile(r"^[A-Za-z0-9_-]{%d}$" % KEY_ID_LENGTH)


@dataclass(frozen=True)
class TypeDescriptor:
    name: str
    primary_key: Tuple[str, ...]
    mandatory: Tuple[str, ...] = ()
    int_headers: Tuple[str, ...] = ()
    list_headers: Tuple[str, ...] = ()
    ts_headers: Tuple[str, ...] = ()
    body: str = BODY_OPTIONAL
    sequence_forming: bool = False
    # header holding the public key a self-signed assertion is signed with
    self_signed_key: Optional[str] = None
    storable: bool = True
    decode_check: Optional[str] = None
    consistency_check: Optional[str] = None

    @property
    def subject_key(self) -> Tuple[str, ...]:
        """Primary key headers minus the trailing sequence number."""
        if self.sequence_forming:
            return self.primary_key[:-1]
        return self.primary_key

    def all_mandatory(self) -> Tuple[str, ...]:
        seen = dict.fromkeys(COMMON_MANDATORY + self.primary_key + self.mandatory)
        return tuple(seen)

    def header_kind(self, name: str) -> str:
        if name in COMMON_INT_HEADERS or name in self.int_headers:
            return "int"
        if name in self.list_headers:
            return "list"
        return "str"


# --------- decode checks (stateless) ----------
def _check_account_key_body(a) -> None:
    pub = decode_public_key(a.body.decode("utf-8", "replace"), field="body")
    if key_id(pub) != a.header("public-key-sha3-384"):
        raise ParseError("public key in body does not match its sha3-384 header",
                         field="public-key-sha3-384")


def _check_device_key(a) -> None:
    pub = decode_public_key(a.header("device-key"), field="device-key")
    if a.has_header("device-key-sha3-384") and key_id(pub) != a.header("device-key-sha3-384"):
        raise ParseError("does not match device-key", field="device-key-sha3-384")


def _check_serial_request(a) -> None:
    pub = decode_public_key(a.header("device-key"), field="device-key")
    if key_id(pub) != a.sign_key_id:
        raise ParseError("serial-request must be signed by its device key", field=SIGN_KEY_HEADER)
    if a.authority_id != a.header("brand-id"):
        raise ParseError("authority-id and brand-id must match", field="authority-id")


_DECODE_CHECKS: Dict[str, Callable] = {
    "account-key-body": _check_account_key_body,
    "device-key": _check_device_key,
    "serial-request": _check_serial_request,
}


# --------- consistency checks (against the trust database) ----------
def _require(source, assert_type: str, headers: dict, needed_by):
    try:
        return source.find(assert_type, headers)
    except NotFound:
        raise MissingPrerequisite(assert_type, headers, needed_by=needed_by)


def _consistent_account_key(a, source) -> None:
    _require(source, "account", {"account-id": a.header("account-id")}, a.ref)


def _consistent_model(a, source) -> None:
    if a.authority_id != a.header("brand-id"):
        raise ConsistencyViolation("authority-id and brand-id must match", a.ref, field="authority-id")
    _require(source, "account", {"account-id": a.header("brand-id")}, a.ref)


def _consistent_serial(a, source) -> None:
    model = _require(source, "model",
                     {"brand-id": a.header("brand-id"), "model": a.header("model")}, a.ref)
    allowed = [a.header("brand-id")] + list(model.header("serial-authority") or [])
    if a.authority_id not in allowed:
        raise ConsistencyViolation(
            f"authority-id {a.authority_id!r} is not allowed to sign serials for this model",
            a.ref, field="authority-id")


def _consistent_validation_set(a, source) -> None:
    if a.authority_id != a.header("account-id"):
        raise ConsistencyViolation("authority-id and account-id must match", a.ref, field="authority-id")
    _require(source, "account", {"account-id": a.header("account-id")}, a.ref)


_CONSISTENCY_CHECKS: Dict[str, Callable] = {
    "account-key": _consistent_account_key,
    "model": _consistent_model,
    "serial": _consistent_serial,
    "validation-set": _consistent_validation_set,
}


_TABLE = (
    TypeDescriptor(
        name="account",
        primary_key=("account-id",),
        mandatory=("display-name", "validation", "timestamp"),
        ts_headers=("timestamp",),
        body=BODY_FORBIDDEN,
    ),
    TypeDescriptor(
        name="account-key",
        primary_key=("public-key-sha3-384",),
        mandatory=("account-id", "name", "since"),
        ts_headers=("since", "until"),
        body=BODY_REQUIRED,
        decode_check="account-key-body",
        consistency_check="account-key",
    ),
    TypeDescriptor(
        name="model",
        primary_key=("brand-id", "model"),
        mandatory=("architecture", "timestamp"),
        list_headers=("required-snaps", "serial-authority"),
        ts_headers=("timestamp",),
        body=BODY_FORBIDDEN,
        consistency_check="model",
    ),
    TypeDescriptor(
        name="serial",
        primary_key=("brand-id", "model", "serial"),
        mandatory=("device-key", "device-key-sha3-384", "timestamp"),
        ts_headers=("timestamp",),
        decode_check="device-key",
        consistency_check="serial",
    ),
    TypeDescriptor(
        name="serial-request",
        primary_key=("brand-id", "model", "request-id"),
        mandatory=("device-key",),
        self_signed_key="device-key",
        storable=False,
        decode_check="serial-request",
    ),
    TypeDescriptor(
        name="validation-set",
        primary_key=("series", "account-id", "name", "sequence"),
        mandatory=("timestamp",),
        int_headers=("sequence",),
        list_headers=("snaps",),
        ts_headers=("timestamp",),
        body=BODY_FORBIDDEN,
        sequence_forming=True,
        consistency_check="validation-set",
    ),
)

TYPES = MappingProxyType({d.name: d for d in _TABLE})

# Order in which a batch must be added so prerequisites land first.
DEPENDENCY_ORDER = ("account", "account-key", "model", "serial", "validation-set")


def describe(name: str) -> TypeDescriptor:
    try:
        return TYPES[name]
    except KeyError:
        raise UnknownType(name)


def run_decode_check(desc: TypeDescriptor, a) -> None:
    if not _KEY_ID.match(a.sign_key_id):
        raise ParseError("not a valid key id", field=SIGN_KEY_HEADER)
    for name in desc.ts_headers:
        if a.has_header(name) and parse_ts(a.header(name)) is None:
            raise ParseError("not a valid RFC3339 timestamp", field=name)
    if desc.sequence_forming and a.header("sequence") < 1:
        raise ParseError("must be at least 1", field="sequence")
    if desc.decode_check:
        _DECODE_CHECKS[desc.decode_check](a)


def run_consistency_check(desc: TypeDescriptor, a, source) -> None:
    if desc.consistency_check:
        _CONSISTENCY_CHECKS[desc.consistency_check](a, source)
