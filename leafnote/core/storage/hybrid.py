# leafnote/core/storage/hybrid.py
'''
Copyright 2025 Aaron Vose (avose@aaronvose.net)
Licensed under the LGPL v2.1; see the file 'LICENSE' for details.
'''
from __future__ import annotations

import shutil
import threading
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from leafnote.core.errors import IOFailure, NotReady, SchemaFailure
from leafnote.core.items import now_iso
from leafnote.core.log import Log
from leafnote.core.storage.document import DocumentState, Touched
from leafnote.core.storage.records import COLLECTIONS, DEFAULT_SEED
from leafnote.utils.fs_atomic import atomic_write_json, atomic_write_text, read_json
from leafnote.utils.paths import (
    collection_path, entry_content_path, entry_dir, entry_json_path, store_paths,
)

__all__ = ["STORE_FORMAT", "STORE_VERSION", "HybridBackend"]

STORE_FORMAT = "leafnote-hybrid"
STORE_VERSION = 1

class HybridBackend:
    """
    Hybrid-file-per-item backend. Diff friendly: structure and content live
    in separate small files.

    <store_dir>/
      notebook.json
      entries/<id[:2]>/<id>/entry.json     item record without content
      entries/<id[:2]>/<id>/content.html   item content
      collections/<name>.json              {id: record} for other collections
      settings.json                        {key: value}
    """

    kind = "hybrid-file-per-item"

    def __init__(self, path: str, seed_defaults: bool = False, history=None):
        """
        Args:
            history: optional HistoryManager told about every change.
        """
        self.root = Path(path).expanduser().resolve()
        self.seed_defaults = seed_defaults
        self.history = history
        self._lock = threading.RLock()
        self._state: Optional[DocumentState] = None

    # ---------- lifecycle ----------

    def ensure_schema(self) -> None:
        with self._lock:
            paths = store_paths(self.root)
            try:
                meta = self._ensure_layout(paths)
                state = self._load(paths)
            except (OSError, ValueError) as e:
                raise SchemaFailure(f"Cannot open store at {self.root}: {e}") from e

            if int(meta.get("version", 0)) > STORE_VERSION:
                raise SchemaFailure(f"{self.root} was written by a newer version ({meta.get('version')})")

            self._state = state
            if self.seed_defaults:
                now = now_iso()
                touched: Touched = set()
                for name, rows in DEFAULT_SEED.items():
                    if not state.collections[name]:
                        for row in rows:
                            state.collections[name][row["id"]] = dict(row, created_at=now, updated_at=now)
                            touched.add((name, row["id"]))
                if touched:
                    self._commit(touched)

            if self.history is not None:
                self.history.start()
            Log.debug(f"Hybrid store ready at {self.root}", 1)

    def _ensure_layout(self, paths: Dict[str, Path]) -> Dict[str, Any]:
        """Create the directory layout, refusing to take over an unrelated directory."""
        root = paths["root"]
        meta = read_json(paths["notebook_json"], None)
        if meta is not None:
            if meta.get("format") != STORE_FORMAT:
                raise ValueError(f"{paths['notebook_json']} is not a leafnote store")
        else:
            if root.exists() and any(p.name != ".git" for p in root.iterdir()):
                raise ValueError(f"Directory exists and is not an empty store dir: {root}")
            root.mkdir(parents=True, exist_ok=True)
            meta = {
                "format": STORE_FORMAT,
                "version": STORE_VERSION,
                "name": root.name,
                "created_at": now_iso(),
            }
            atomic_write_json(paths["notebook_json"], meta)
            Log.debug(f"Created store layout at {root}", 0)

        paths["entries"].mkdir(exist_ok=True)
        paths["collections"].mkdir(exist_ok=True)
        return meta

    def _load(self, paths: Dict[str, Path]) -> DocumentState:
        collections: Dict[str, Dict[str, Any]] = {"items": {}}
        for ej in sorted(paths["entries"].glob("*/*/entry.json")):
            rec = read_json(ej, None)
            if not isinstance(rec, dict) or "id" not in rec:
                raise ValueError(f"Malformed entry {ej}")
            content = ej.parent / "content.html"
            rec["content"] = content.read_text(encoding="utf-8") if content.exists() else ""
            rec.setdefault("content_plaintext", "")
            rec.setdefault("sort_order", 0)
            rec.setdefault("metadata", {})
            collections["items"][rec["id"]] = rec

        for name in COLLECTIONS:
            if name == "items":
                continue
            collections[name] = read_json(collection_path(self.root, name), {}) or {}

        return DocumentState(collections, read_json(paths["settings"], {}) or {})

    def close(self) -> None:
        with self._lock:
            self._state = None

    def _doc(self) -> DocumentState:
        if self._state is None:
            raise NotReady(f"Hybrid store {self.root} is not open")
        return self._state

    # ---------- persistence ----------

    def _write_entry(self, rec: Dict[str, Any]) -> None:
        entry = {k: v for k, v in rec.items() if k != "content"}
        atomic_write_text(entry_content_path(self.root, rec["id"]), rec.get("content") or "")
        atomic_write_json(entry_json_path(self.root, rec["id"]), entry)

    def _remove_entry(self, entry_id: str) -> None:
        d = entry_dir(self.root, entry_id)
        if d.exists():
            shutil.rmtree(d)
        shard = d.parent
        if shard.exists() and not any(shard.iterdir()):
            shard.rmdir()

    def _persist(self, touched: Touched, settings: bool = False) -> None:
        state = self._doc()
        dirty = set()
        for coll, rid in sorted(touched):
            if coll != "items":
                dirty.add(coll)
                continue
            rec = state.lookup("items", rid)
            if rec is None:
                self._remove_entry(rid)
            else:
                self._write_entry(rec)
        for coll in sorted(dirty):
            atomic_write_json(collection_path(self.root, coll), state.collections[coll])
        if settings:
            atomic_write_json(store_paths(self.root)["settings"], state.settings)

    def _commit(self, touched: Touched, settings: bool = False) -> None:
        """Write out what changed; on failure reload so memory matches disk."""
        try:
            self._persist(touched, settings)
        except OSError as e:
            self._state = None
            try:
                self._state = self._load(store_paths(self.root))
            except (OSError, ValueError) as reload_err:
                Log.debug(f"Reload after failed write also failed: {reload_err}", 0)
            raise IOFailure(f"Writing to {self.root} failed: {e}") from e
        if self.history is not None:
            self.history.note_change()

    # ---------- records ----------

    def get_record(self, collection: str, record_id: str) -> Dict[str, Any]:
        with self._lock:
            return self._doc().get(collection, record_id)

    def put_record(self, collection: str, record_id: str, record: Mapping[str, Any]) -> Dict[str, Any]:
        with self._lock:
            rec, touched = self._doc().put(collection, record_id, record)
            self._commit(touched)
            return rec

    def delete_record(self, collection: str, record_id: str, hard: bool = False) -> None:
        with self._lock:
            touched = self._doc().delete(collection, record_id, hard)
            self._commit(touched)

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
        """settings.json is rewritten once per batch: all or nothing."""
        if not partial:
            return
        with self._lock:
            self._doc().set_settings(partial)
            self._commit(set(), settings=True)

    def get_all_settings(self) -> Dict[str, Any]:
        with self._lock:
            return self._doc().all_settings()
