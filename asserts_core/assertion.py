"""
asserts_core.assertion
----------------------
Defines Assertion, the signed, typed document every trust decision is
expressed with, and its deterministic text encoding.

Encoded form::

    type: <type>
    <name>: <value>            (other headers, lexicographic order)
    <name>:
      - <item>                 (list values)

    <body, only when body-length is present>

    <base64 signature>

The signature covers everything before the blank line that precedes it.
Decoding is strict: headers out of canonical order, a body shorter than its
declared length or a missing or unterminated signature are ParseErrors, so that
encode(decode(b)) reproduces b.
"""

from __future__ import annotations
import binascii
import re
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from .constants import BODY_LENGTH_HEADER, SIGN_KEY_HEADER
from .errors import ParseError
from .registry import BODY_FORBIDDEN, BODY_REQUIRED, describe, run_decode_check, TypeDescriptor
from .utils import b64d, b64e, parse_ts

_HEADER_NAME = re.compile(r"^[a-z](?:-?[a-z0-9])*$")
_INT_VALUE = re.compile(r"^(0|[1-9][0-9]*)$")
_LIST_ITEM_PREFIX = "  - "
_SEP = b"\n\n"


@dataclass(frozen=True)
class Assertion:
    headers: Mapping[str, Any]
    body: bytes = b""
    signature: bytes = b""
    # signed bytes exactly as encoded; assembled from headers and body when not given
    content: bytes = field(default=b"", repr=False, compare=False)

    def __post_init__(self):
        if not self.content:
            object.__setattr__(self, "content", assemble_content(self.headers, self.body))

    @property
    def type(self) -> str:
        return self.headers["type"]

    @property
    def descriptor(self) -> TypeDescriptor:
        return describe(self.type)

    @property
    def authority_id(self) -> str:
        return self.headers["authority-id"]

    @property
    def sign_key_id(self) -> str:
        return self.headers[SIGN_KEY_HEADER]

    @property
    def revision(self) -> int:
        return self.headers.get("revision", 0)

    @property
    def primary_key(self) -> Tuple:
        return tuple(self.headers[h] for h in self.descriptor.primary_key)

    @property
    def ref(self) -> Tuple:
        return (self.type,) + self.primary_key

    @property
    def timestamp(self) -> Optional[datetime]:
        ts = self.headers.get("timestamp")
        return parse_ts(ts) if ts else None

    def header(self, name: str, default: Any = None) -> Any:
        return self.headers.get(name, default)

    def has_header(self, name: str) -> bool:
        return name in self.headers

    def to_bytes(self) -> bytes:
        return encode(self)


# --------- encoding ----------
def _check_scalar(name: str, value: str) -> None:
    if not value or value != value.strip() or "\n" in value:
        raise ParseError("values must be non-empty single-line strings without surrounding blanks",
                         field=name)


def _ordered_names(headers: Mapping[str, Any]) -> List[str]:
    if "type" not in headers:
        raise ParseError("header is mandatory", field="type")
    return ["type"] + sorted(n for n in headers if n != "type")


def encode_headers(headers: Mapping[str, Any]) -> bytes:
    """Canonical header block: type first, the rest in lexicographic order."""
    lines = []
    for name in _ordered_names(headers):
        if not _HEADER_NAME.match(name):
            raise ParseError("invalid header name", field=name)
        value = headers[name]
        if isinstance(value, bool):
            raise ParseError("boolean values are not supported", field=name)
        if isinstance(value, int):
            if value < 0:
                raise ParseError("integers must be non-negative", field=name)
            lines.append(f"{name}: {value}")
        elif isinstance(value, str):
            _check_scalar(name, value)
            lines.append(f"{name}: {value}")
        elif isinstance(value, (list, tuple)):
            lines.append(f"{name}:")
            for item in value:
                if not isinstance(item, str):
                    raise ParseError("list items must be strings", field=name)
                _check_scalar(name, item)
                lines.append(_LIST_ITEM_PREFIX + item)
        else:
            raise ParseError(f"unsupported value type {type(value).__name__}", field=name)
    return "\n".join(lines).encode("utf-8")


def assemble_content(headers: Mapping[str, Any], body: bytes = b"") -> bytes:
    """Signed content for headers and body; sets or clears body-length."""
    headers = dict(headers)
    headers.pop(BODY_LENGTH_HEADER, None)
    if body:
        headers[BODY_LENGTH_HEADER] = len(body)
        return encode_headers(headers) + _SEP + body
    return encode_headers(headers)


def assemble(content: bytes, signature: bytes) -> bytes:
    return content + _SEP + b64e(signature).encode("ascii") + b"\n"


def encode(a: Assertion) -> bytes:
    return assemble(a.content, a.signature)


def encode_stream(assertions: Iterable[Assertion]) -> bytes:
    return b"\n".join(encode(a) for a in assertions)


# --------- decoding ----------
def _parse_header_block(block: bytes) -> Dict[str, Any]:
    try:
        text = block.decode("utf-8")
    except UnicodeDecodeError:
        raise ParseError("header block is not valid UTF-8")
    raw: Dict[str, Any] = {}
    order: List[str] = []
    lines = text.split("\n")
    i = 0
    while i < len(lines):
        line = lines[i]
        i += 1
        if line.startswith(" "):
            raise ParseError(f"unexpected continuation line {line!r}")
        name, sep, rest = line.partition(":")
        if not sep or not _HEADER_NAME.match(name):
            raise ParseError(f"malformed header line {line!r}")
        if name in raw:
            raise ParseError("repeated header", field=name)
        if rest == "":
            items = []
            while i < len(lines) and lines[i].startswith(" "):
                item_line = lines[i]
                if not item_line.startswith(_LIST_ITEM_PREFIX):
                    raise ParseError(f"malformed list item {item_line!r}", field=name)
                item = item_line[len(_LIST_ITEM_PREFIX):]
                _check_scalar(name, item)
                items.append(item)
                i += 1
            raw[name] = tuple(items)
        else:
            if not rest.startswith(" "):
                raise ParseError(f"malformed header line {line!r}")
            value = rest[1:]
            _check_scalar(name, value)
            raw[name] = value
        order.append(name)
    if not order or order[0] != "type":
        raise ParseError("type must be the first header", field="type")
    if order[1:] != sorted(order[1:]):
        raise ParseError("headers are not in canonical order")
    return raw


def _type_headers(desc: TypeDescriptor, raw: Dict[str, Any]) -> Dict[str, Any]:
    typed: Dict[str, Any] = {}
    for name, value in raw.items():
        kind = desc.header_kind(name)
        if kind == "int":
            if not isinstance(value, str) or not _INT_VALUE.match(value):
                raise ParseError("expected a non-negative integer", field=name)
            typed[name] = int(value)
        elif kind == "list":
            if not isinstance(value, tuple):
                raise ParseError("expected a list", field=name)
            typed[name] = value
        else:
            if not isinstance(value, str):
                raise ParseError("expected a string", field=name)
            typed[name] = value
    for name in desc.all_mandatory():
        if name not in typed:
            raise ParseError("header is mandatory", field=name)
    return typed


def _decode_at(data: bytes, start: int) -> Tuple[Assertion, int]:
    idx = data.find(_SEP, start)
    if idx < 0:
        raise ParseError("missing signature: no blank line after the headers")
    block = data[start:idx]
    raw = _parse_header_block(block)
    if not isinstance(raw["type"], str):
        raise ParseError("expected a string", field="type")
    desc = describe(raw["type"])
    headers = _type_headers(desc, raw)

    body_len = headers.get(BODY_LENGTH_HEADER, 0)
    if BODY_LENGTH_HEADER in headers and body_len == 0:
        raise ParseError("must be omitted for an empty body", field=BODY_LENGTH_HEADER)
    pos = idx + len(_SEP)
    body = b""
    if body_len:
        body = data[pos:pos + body_len]
        if len(body) != body_len or data[pos + body_len:pos + body_len + 2] != _SEP:
            raise ParseError("body length mismatch", field=BODY_LENGTH_HEADER)
        content_end = pos + body_len
        pos = content_end + len(_SEP)
    else:
        content_end = idx
    if desc.body == BODY_REQUIRED and not body:
        raise ParseError(f"{desc.name} assertion requires a body", field="body")
    if desc.body == BODY_FORBIDDEN and body:
        raise ParseError(f"{desc.name} assertion cannot have a body", field="body")

    end = data.find(b"\n", pos)
    sig_end = len(data) if end < 0 else end
    sig_text = data[pos:sig_end]
    if not sig_text:
        raise ParseError("missing signature", field="signature")
    if end < 0:
        raise ParseError("signature must end with a newline", field="signature")
    try:
        signature = b64d(sig_text.decode("ascii"))
    except (UnicodeDecodeError, binascii.Error, ValueError):
        raise ParseError("signature is not valid base64", field="signature")

    a = Assertion(
        headers=MappingProxyType(headers),
        body=body,
        signature=signature,
        content=data[start:content_end],
    )
    run_decode_check(desc, a)
    return a, end + 1


def decode(data: bytes) -> Assertion:
    """Decode exactly one assertion; trailing bytes are a ParseError."""
    if not isinstance(data, (bytes, bytearray)):
        raise TypeError("decode expects bytes")
    data = bytes(data)
    a, end = _decode_at(data, 0)
    if end != len(data):
        raise ParseError("unexpected data after the signature", field="signature")
    return a


def decode_stream(data: bytes) -> List[Assertion]:
    """Decode assertions separated by a blank line."""
    data = bytes(data)
    out = []
    pos = 0
    while pos < len(data):
        if data[pos:pos + 1] == b"\n":
            pos += 1
            continue
        a, pos = _decode_at(data, pos)
        out.append(a)
    return out
