# leafnote/core/storage/sqlite_backend.py
'''
Copyright 2025 Aaron Vose (avose@aaronvose.net)
Licensed under the LGPL v2.1; see the file 'LICENSE' for details.
'''
from __future__ import annotations

import json
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Set

from leafnote.core.errors import IOFailure, NotFound, NotReady, ValidationFailure
from leafnote.core.items import now_iso
from leafnote.core.log import Log
from leafnote.core.schema import SchemaManager
from leafnote.core.storage.records import (
    check_collection, check_references, decode_value, encode_value,
    normalize_record, select, soft_delete_plan, supports_soft_delete, validate_setting_key,
)

__all__ = ["SqliteBackend"]

# Values used for columns a degraded schema does not have.
_MISSING_DEFAULTS = {"content_plaintext": "", "sort_order": 0}

@contextmanager
def _translate(action: str):
    """Map sqlite3 errors onto the store's error taxonomy."""
    try:
        yield
    except sqlite3.IntegrityError as e:
        raise ValidationFailure(f"{action}: {e}") from e
    except sqlite3.Error as e:
        raise IOFailure(f"{action}: {e}") from e

class SqliteBackend:
    """Structured-database backend: one SQLite file, one guarded connection."""

    kind = "structured-database"

    def __init__(self, path: str, seed_defaults: bool = False, timeout: float = 10.0):
        self.path = str(path)
        self.seed_defaults = seed_defaults
        self.timeout = timeout
        self._lock = threading.RLock()
        self._conn: Optional[sqlite3.Connection] = None
        self._columns: Dict[str, Set[str]] = {}
        self.degraded: Set[str] = set()

    # ---------- lifecycle ----------

    def ensure_schema(self) -> None:
        with self._lock:
            if self._conn is None:
                if self.path != ":memory:":
                    Path(self.path).expanduser().parent.mkdir(parents=True, exist_ok=True)
                with _translate(f"Opening {self.path}"):
                    conn = sqlite3.connect(self.path, timeout=self.timeout, check_same_thread=False)
                    conn.row_factory = sqlite3.Row
                    conn.execute("PRAGMA journal_mode=WAL")
                    conn.execute("PRAGMA synchronous=NORMAL")
                    conn.execute("PRAGMA foreign_keys=ON")
                self._conn = conn

            manager = SchemaManager(self._conn, seed=self.seed_defaults)
            manager.ensure_schema()
            self.degraded = set(manager.degraded)
            self._columns = {t: set(manager.table_columns(t)) for t in manager.existing_tables()}
            Log.debug(f"SQLite store ready at {self.path}", 1)

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def _db(self) -> sqlite3.Connection:
        if self._conn is None:
            raise NotReady(f"SQLite store {self.path} is not open")
        return self._conn

    # ---------- row conversion ----------

    def _to_record(self, collection: str, row: sqlite3.Row) -> Dict[str, Any]:
        rec = dict(row)
        if collection == "items":
            rec["metadata"] = json.loads(rec.get("metadata") or "{}")
            for col, default in _MISSING_DEFAULTS.items():
                rec.setdefault(col, default)
        return rec

    def _fetch(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        row = self._db().execute(f"SELECT * FROM {collection} WHERE id = ?", (record_id,)).fetchone()
        return self._to_record(collection, row) if row is not None else None

    def _children_of(self, item_id: str) -> List[Dict[str, Any]]:
        rows = self._db().execute("SELECT * FROM items WHERE parent_id = ?", (item_id,)).fetchall()
        return [self._to_record("items", r) for r in rows]

    # ---------- records ----------

    def get_record(self, collection: str, record_id: str) -> Dict[str, Any]:
        check_collection(collection)
        with self._lock, _translate(f"Reading {collection}/{record_id}"):
            rec = self._fetch(collection, record_id)
        if rec is None:
            raise NotFound(collection, record_id)
        return rec

    def put_record(self, collection: str, record_id: str, record: Mapping[str, Any]) -> Dict[str, Any]:
        check_collection(collection)
        with self._lock, _translate(f"Writing {collection}/{record_id}"):
            existing = self._fetch(collection, record_id)
            rec = normalize_record(collection, record_id, record, existing)
            check_references(collection, rec, self._fetch,
                             self._children_of if collection == "items" and existing else None)

            cols = [c for c in rec if c in self._columns[collection]]
            values = [json.dumps(rec[c]) if c == "metadata" else rec[c] for c in cols]
            updates = ", ".join(f"{c} = excluded.{c}" for c in cols if c not in ("id", "created_at"))
            conn = self._db()
            with conn:
                conn.execute(
                    f"INSERT INTO {collection} ({', '.join(cols)}) VALUES ({', '.join('?' for _ in cols)}) "
                    f"ON CONFLICT(id) DO UPDATE SET {updates}",
                    values,
                )
            return self._fetch(collection, record_id)

    def delete_record(self, collection: str, record_id: str, hard: bool = False) -> None:
        check_collection(collection)
        with self._lock, _translate(f"Deleting {collection}/{record_id}"):
            existing = self._fetch(collection, record_id)
            if existing is None:
                raise NotFound(collection, record_id)
            conn = self._db()
            with conn:
                if not hard and supports_soft_delete(collection):
                    now = now_iso()
                    stamp, ids = soft_delete_plan(existing, self._children_of, now)
                    conn.executemany(
                        f"UPDATE {collection} SET deleted_at = ?, updated_at = ? WHERE id = ?",
                        [(stamp, now, rid) for rid in ids],
                    )
                else:
                    # Foreign keys cascade dependents and null out children.
                    conn.execute(f"DELETE FROM {collection} WHERE id = ?", (record_id,))

    def list_records(self, collection: str, where=None, key=None) -> List[Dict[str, Any]]:
        check_collection(collection)
        with self._lock, _translate(f"Listing {collection}"):
            rows = self._db().execute(f"SELECT * FROM {collection}").fetchall()
            records = [self._to_record(collection, r) for r in rows]
        return select(records, where, key)

    # ---------- settings ----------

    def get_setting(self, key: str, default: Any = None) -> Any:
        validate_setting_key(key)
        with self._lock, _translate(f"Reading setting {key}"):
            row = self._db().execute("SELECT value FROM settings WHERE key = ?", (key,)).fetchone()
        return decode_value(row[0]) if row is not None else default

    def _upsert_setting(self, conn: sqlite3.Connection, key: str, text: str, now: str) -> None:
        conn.execute(
            "INSERT INTO settings (key, value, created_at, updated_at) VALUES (?, ?, ?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at",
            (key, text, now, now),
        )

    def set_setting(self, key: str, value: Any) -> None:
        validate_setting_key(key)
        text = encode_value(value)
        with self._lock, _translate(f"Writing setting {key}"):
            conn = self._db()
            with conn:
                self._upsert_setting(conn, key, text, now_iso())

    def get_multiple_settings(self, defaults: Mapping[str, Any]) -> Dict[str, Any]:
        keys = [validate_setting_key(k) for k in defaults]
        if not keys:
            return {}
        with self._lock, _translate("Reading settings"):
            rows = self._db().execute(
                f"SELECT key, value FROM settings WHERE key IN ({', '.join('?' for _ in keys)})", keys
            ).fetchall()
        stored = {r[0]: decode_value(r[1]) for r in rows}
        return {k: stored.get(k, defaults[k]) for k in keys}

    def set_multiple_settings(self, partial: Mapping[str, Any]) -> None:
        """All keys are written in one transaction: all or nothing."""
        encoded = {validate_setting_key(k): encode_value(v) for k, v in partial.items()}
        if not encoded:
            return
        now = now_iso()
        with self._lock, _translate("Writing settings batch"):
            conn = self._db()
            with conn:
                for key, text in encoded.items():
                    self._upsert_setting(conn, key, text, now)

    def get_all_settings(self) -> Dict[str, Any]:
        with self._lock, _translate("Reading settings"):
            rows = self._db().execute("SELECT key, value FROM settings ORDER BY key").fetchall()
        return {r[0]: decode_value(r[1]) for r in rows}
