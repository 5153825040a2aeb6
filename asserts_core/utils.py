"""
asserts_core.utils
------------------
Small helpers for base64 handling, timestamps and digests.
"""

from __future__ import annotations
import base64, hashlib, time
from datetime import datetime, timezone
from typing import Optional


def b64e(b: bytes) -> str:
    return base64.b64encode(b).decode("ascii")


def b64d(s: str) -> bytes:
    return base64.b64decode(s.encode("ascii"), validate=True)


def b64url_nopad(b: bytes) -> str:
    return base64.urlsafe_b64encode(b).decode("ascii").rstrip("=")


def sha3_384(data: bytes) -> bytes:
    return hashlib.sha3_384(data).digest()


def now_ts() -> str:
    # RFC3339 / ISO 8601 in UTC, second precision
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


def parse_ts(value: str) -> Optional[datetime]:
    """Parse an RFC3339 timestamp, returning None when it is malformed.

    Naive values are taken to be UTC.
    """
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
