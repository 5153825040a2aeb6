from typing import Optional, Dict, Any, List, Tuple
from dataclasses import replace
from asserts_core.storage.models import AssertionRecord
from asserts_core.storage.provider import StorageProvider
from asserts_core.utils import now_ts


class InMemoryStorage(StorageProvider):
    def __init__(self):
        self.records: Dict[Tuple[str, str], AssertionRecord] = {}
        self.archive: List[AssertionRecord] = []
        self.audit = []

    def get_record(self, assert_type: str, key: str) -> Optional[AssertionRecord]:
        return self.records.get((assert_type, key))

    def put_record(self, rec: AssertionRecord) -> Optional[AssertionRecord]:
        prev = self.records.get((rec.assert_type, rec.key))
        if prev:
            self.archive.append(prev)
        self.records[(rec.assert_type, rec.key)] = replace(rec)
        return prev

    def search(self, assert_type: str, subject: Optional[str] = None) -> List[AssertionRecord]:
        return [
            rec for (t, _), rec in sorted(self.records.items())
            if t == assert_type and (subject is None or rec.subject == subject)
        ]

    def archived(self, assert_type: str, key: str) -> List[AssertionRecord]:
        recs = [r for r in self.archive if r.assert_type == assert_type and r.key == key]
        return sorted(recs, key=lambda r: r.revision)

    def prune_archive(self) -> int:
        n = len(self.archive)
        self.archive = []
        return n

    # audit
    def log_event(self, event_type: str, payload: Dict[str, Any]):
        self.audit.append({"ts": now_ts(), "event_type": event_type, "payload": payload})

    def list_events(self) -> List[Dict[str, Any]]:
        return list(self.audit)
