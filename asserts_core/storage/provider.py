# asserts_core/storage/provider.py
from __future__ import annotations
from typing import Any, Dict, List, Optional

from asserts_core.storage.models import AssertionRecord


class StorageProvider:
    """
    Durable backing store for the trust database, keyed by
    (type, primary key). Exactly one current record is kept per key;
    replacing it moves the previous record to the archive.

    Providers do no validation of their own. Callers serialize writers.
    """

    def get_record(self, assert_type: str, key: str) -> Optional[AssertionRecord]: ...
    def put_record(self, rec: AssertionRecord) -> Optional[AssertionRecord]: ...
    def search(self, assert_type: str, subject: Optional[str] = None) -> List[AssertionRecord]: ...
    def archived(self, assert_type: str, key: str) -> List[AssertionRecord]: ...
    def prune_archive(self) -> int: ...

    # audit
    def log_event(self, event_type: str, payload: Dict[str, Any]) -> None: ...
    def list_events(self) -> List[Dict[str, Any]]: ...

    def close(self) -> None:
        return
