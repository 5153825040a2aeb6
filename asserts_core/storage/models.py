# asserts_core/storage/models.py
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Optional

from asserts_core.utils import now_ts


@dataclass
class AssertionRecord:
    """
    Storage-level representation of one accepted assertion.

    `key` and `subject` are the JSON encodings of the primary key and of
    its subject part (primary key minus the sequence number, or the whole
    primary key for other types). Providers never interpret `encoded`.
    """
    assert_type: str
    key: str
    subject: str
    revision: int
    encoded: bytes
    sequence: Optional[int] = None
    added_at: str = field(default_factory=now_ts)
