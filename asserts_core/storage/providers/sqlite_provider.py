from __future__ import annotations
from typing import Optional, Dict, Any, List
import json, sqlite3, os, threading
from asserts_core.storage.provider import StorageProvider
from asserts_core.storage.models import AssertionRecord
from asserts_core.utils import now_ts

_COLUMNS = "assert_type, pkey, subject, revision, encoded, sequence, added_at"


def _to_record(row) -> AssertionRecord:
    assert_type, key, subject, revision, encoded, sequence, added_at = row
    return AssertionRecord(
        assert_type=assert_type,
        key=key,
        subject=subject,
        revision=revision,
        encoded=bytes(encoded),
        sequence=sequence,
        added_at=added_at,
    )


class SQLiteStorage(StorageProvider):
    def __init__(self, path="db/asserts.db"):
        # If no directory, default to current working directory
        dir_path = os.path.dirname(path) or "."
        os.makedirs(dir_path, exist_ok=True)
        self.db = sqlite3.connect(path, check_same_thread=False)
        # one connection shared by reader threads
        self._lock = threading.Lock()

        self._init()

    def _init(self) -> None:
        c = self.db.cursor()
        c.execute("""CREATE TABLE IF NOT EXISTS assertions(
            assert_type TEXT NOT NULL,
            pkey TEXT NOT NULL,
            subject TEXT NOT NULL,
            revision INTEGER NOT NULL,
            encoded BLOB NOT NULL,
            sequence INTEGER,
            added_at TEXT NOT NULL,
            PRIMARY KEY (assert_type, pkey)
        )""")
        c.execute("""CREATE INDEX IF NOT EXISTS assertions_subject
            ON assertions(assert_type, subject, sequence)""")
        c.execute("""CREATE TABLE IF NOT EXISTS archive(
            assert_type TEXT NOT NULL,
            pkey TEXT NOT NULL,
            subject TEXT NOT NULL,
            revision INTEGER NOT NULL,
            encoded BLOB NOT NULL,
            sequence INTEGER,
            added_at TEXT NOT NULL
        )""")
        c.execute("""CREATE TABLE IF NOT EXISTS audit(
            ts TEXT,
            event_type TEXT,
            payload TEXT
        )""")
        self.db.commit()

    def get_record(self, assert_type: str, key: str) -> Optional[AssertionRecord]:
        with self._lock:
            cur = self.db.execute(
                f"SELECT {_COLUMNS} FROM assertions WHERE assert_type=? AND pkey=?",
                (assert_type, key),
            )
            row = cur.fetchone()
        return _to_record(row) if row else None

    def put_record(self, rec: AssertionRecord) -> Optional[AssertionRecord]:
        with self._lock:
            cur = self.db.execute(
                f"SELECT {_COLUMNS} FROM assertions WHERE assert_type=? AND pkey=?",
                (rec.assert_type, rec.key),
            )
            row = cur.fetchone()
            prev = _to_record(row) if row else None
            # archive + replace in one transaction
            with self.db:
                if prev:
                    self.db.execute(
                        f"INSERT INTO archive({_COLUMNS}) "
                        f"SELECT {_COLUMNS} FROM assertions WHERE assert_type=? AND pkey=?",
                        (rec.assert_type, rec.key),
                    )
                self.db.execute(
                    f"INSERT OR REPLACE INTO assertions({_COLUMNS}) VALUES(?,?,?,?,?,?,?)",
                    (rec.assert_type, rec.key, rec.subject, rec.revision,
                     sqlite3.Binary(rec.encoded), rec.sequence, rec.added_at),
                )
        return prev

    def search(self, assert_type: str, subject: Optional[str] = None) -> List[AssertionRecord]:
        sql = f"SELECT {_COLUMNS} FROM assertions WHERE assert_type=?"
        params: tuple = (assert_type,)
        if subject is not None:
            sql += " AND subject=?"
            params += (subject,)
        sql += " ORDER BY pkey"
        with self._lock:
            rows = self.db.execute(sql, params).fetchall()
        return [_to_record(r) for r in rows]

    def archived(self, assert_type: str, key: str) -> List[AssertionRecord]:
        with self._lock:
            rows = self.db.execute(
                f"SELECT {_COLUMNS} FROM archive WHERE assert_type=? AND pkey=? ORDER BY revision",
                (assert_type, key),
            ).fetchall()
        return [_to_record(r) for r in rows]

    def prune_archive(self) -> int:
        with self._lock:
            with self.db:
                cur = self.db.execute("DELETE FROM archive")
        return cur.rowcount

    def log_event(self, event_type: str, payload: Dict[str, Any]) -> None:
        with self._lock:
            self.db.execute("INSERT INTO audit(ts,event_type,payload) VALUES(?,?,?)",
                            (now_ts(), event_type, json.dumps(payload, separators=(",", ":"), sort_keys=True)))
            self.db.commit()

    def list_events(self) -> List[Dict[str, Any]]:
        with self._lock:
            rows = self.db.execute("SELECT ts, event_type, payload FROM audit ORDER BY rowid").fetchall()
        return [{"ts": ts, "event_type": et, "payload": json.loads(p)} for ts, et, p in rows]

    def close(self):
        self.db.close()
