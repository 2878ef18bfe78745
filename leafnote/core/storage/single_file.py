# leafnote/core/storage/single_file.py
'''
Copyright 2025 Aaron Vose (avose@aaronvose.net)
Licensed under the LGPL v2.1; see the file 'LICENSE' for details.
'''
from __future__ import annotations

import threading
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from leafnote.core.errors import IOFailure, NotReady, SchemaFailure
from leafnote.core.items import now_iso
from leafnote.core.log import Log
from leafnote.core.storage.document import DocumentState
from leafnote.core.storage.records import COLLECTIONS, DEFAULT_SEED
from leafnote.utils.fs_atomic import atomic_write_json, read_json

__all__ = ["DOCUMENT_FORMAT", "DOCUMENT_VERSION", "SingleFileBackend"]

DOCUMENT_FORMAT = "leafnote-document"
DOCUMENT_VERSION = 1

class SingleFileBackend:
    """
    Single-file-document backend.

    The whole store is one JSON document:
      {"format", "version", "last_modified", "collections": {...}, "settings": {...}}
    rewritten atomically after every mutation.
    """

    kind = "single-file-document"

    def __init__(self, path: str, seed_defaults: bool = False):
        self.path = Path(path).expanduser()
        self.seed_defaults = seed_defaults
        self._lock = threading.RLock()
        self._state: Optional[DocumentState] = None

    # ---------- lifecycle ----------

    def ensure_schema(self) -> None:
        """Create the document or bring an older one up to date."""
        with self._lock:
            try:
                doc = read_json(self.path, None)
            except (ValueError, OSError) as e:
                raise SchemaFailure(f"Cannot read {self.path}: {e}") from e

            if doc is None:
                doc = {"format": DOCUMENT_FORMAT, "version": DOCUMENT_VERSION, "collections": {}, "settings": {}}
                Log.debug(f"Creating document store {self.path}", 0)
            elif not isinstance(doc, dict) or doc.get("format", DOCUMENT_FORMAT) != DOCUMENT_FORMAT:
                raise SchemaFailure(f"{self.path} is not a leafnote document")
            elif int(doc.get("version", 0)) > DOCUMENT_VERSION:
                raise SchemaFailure(f"{self.path} was written by a newer version ({doc.get('version')})")

            collections = doc.get("collections") or {}
            missing = [name for name in COLLECTIONS if name not in collections]
            state = DocumentState(collections, doc.get("settings") or {})

            # Items written before content_plaintext/sort_order existed.
            for rec in state.collections["items"].values():
                rec.setdefault("content_plaintext", "")
                rec.setdefault("sort_order", 0)
                rec.setdefault("metadata", {})

            seeded = 0
            if self.seed_defaults:
                now = now_iso()
                for name, rows in DEFAULT_SEED.items():
                    if not state.collections[name]:
                        for row in rows:
                            state.collections[name][row["id"]] = dict(row, created_at=now, updated_at=now)
                            seeded += 1

            self._state = state
            if missing or seeded or doc.get("version") != DOCUMENT_VERSION:
                if missing:
                    Log.debug(f"Adding collections to {self.path.name}: {', '.join(missing)}", 1)
                self._flush()

    def close(self) -> None:
        with self._lock:
            self._state = None

    def _doc(self) -> DocumentState:
        if self._state is None:
            raise NotReady(f"Document store {self.path} is not open")
        return self._state

    def _flush(self) -> None:
        state = self._doc()
        doc = {
            "format": DOCUMENT_FORMAT,
            "version": DOCUMENT_VERSION,
            "last_modified": now_iso(),
            **state.to_json(),
        }
        try:
            atomic_write_json(self.path, doc)
        except OSError as e:
            raise IOFailure(f"Writing {self.path} failed: {e}") from e

    def _commit(self) -> None:
        """Persist the current state; on failure reload so memory matches disk."""
        try:
            self._flush()
        except IOFailure:
            self._state = None
            self.ensure_schema()
            raise

    # ---------- records ----------

    def get_record(self, collection: str, record_id: str) -> Dict[str, Any]:
        with self._lock:
            return self._doc().get(collection, record_id)

    def put_record(self, collection: str, record_id: str, record: Mapping[str, Any]) -> Dict[str, Any]:
        with self._lock:
            rec, _ = self._doc().put(collection, record_id, record)
            self._commit()
            return rec

    def delete_record(self, collection: str, record_id: str, hard: bool = False) -> None:
        with self._lock:
            self._doc().delete(collection, record_id, hard)
            self._commit()

    def list_records(self, collection: str, where=None, key=None) -> List[Dict[str, Any]]:
        with self._lock:
            return self._doc().list(collection, where, key)

    # ---------- settings ----------

    def get_setting(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._doc().get_setting(key, default)

    def set_setting(self, key: str, value: Any) -> None:
        self.set_multiple_settings({key: value})

    def get_multiple_settings(self, defaults: Mapping[str, Any]) -> Dict[str, Any]:
        with self._lock:
            return self._doc().get_multiple_settings(defaults)

    def set_multiple_settings(self, partial: Mapping[str, Any]) -> None:
        """One document rewrite for the whole batch: all or nothing."""
        if not partial:
            return
        with self._lock:
            self._doc().set_settings(partial)
            self._commit()

    def get_all_settings(self) -> Dict[str, Any]:
        with self._lock:
            return self._doc().all_settings()
