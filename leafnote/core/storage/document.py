# leafnote/core/storage/document.py
'''
Copyright 2025 Aaron Vose (avose@aaronvose.net)
Licensed under the LGPL v2.1; see the file 'LICENSE' for details.
'''
# In-memory record state for the file-based backends.
#
# The single-file and hybrid backends keep every collection in memory and
# differ only in how a change is written out. `DocumentState` applies the
# shared record rules and reports which records each operation touched so
# the owning backend can persist exactly those.
from __future__ import annotations

import copy
from typing import Any, Dict, List, Mapping, Optional, Set, Tuple

from leafnote.core.errors import NotFound
from leafnote.core.items import now_iso
from leafnote.core.storage.records import (
    COLLECTIONS, cascade_plan, check_collection, check_references, decode_value,
    encode_value, normalize_record, select, soft_delete_plan, supports_soft_delete, validate_setting_key,
)

__all__ = ["DocumentState", "Touched"]

# (collection, record id)
Touched = Set[Tuple[str, str]]

def _roundtrip(value: Any) -> Any:
    # Store exactly what a JSON file would give back (tuples become lists).
    return decode_value(encode_value(value))

class DocumentState:

    def __init__(self, collections: Optional[Mapping[str, Mapping[str, Any]]] = None,
                 settings: Optional[Mapping[str, Any]] = None):
        self.collections: Dict[str, Dict[str, Dict[str, Any]]] = {name: {} for name in COLLECTIONS}
        for name, records in (collections or {}).items():
            if name in self.collections:
                self.collections[name] = {rid: dict(rec) for rid, rec in records.items()}
        self.settings: Dict[str, Any] = dict(settings or {})

    def lookup(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        return self.collections[collection].get(record_id)

    def children_of(self, item_id: str) -> List[Dict[str, Any]]:
        return [r for r in self.collections["items"].values() if r.get("parent_id") == item_id]

    # ---------- records ----------

    def get(self, collection: str, record_id: str) -> Dict[str, Any]:
        check_collection(collection)
        rec = self.lookup(collection, record_id)
        if rec is None:
            raise NotFound(collection, record_id)
        return copy.deepcopy(rec)

    def put(self, collection: str, record_id: str, record: Mapping[str, Any]) -> Tuple[Dict[str, Any], Touched]:
        check_collection(collection)
        existing = self.lookup(collection, record_id)
        rec = normalize_record(collection, record_id, record, existing)
        check_references(collection, rec, self.lookup,
                         self.children_of if collection == "items" and existing else None)
        rec = _roundtrip(rec)
        self.collections[collection][record_id] = rec
        return copy.deepcopy(rec), {(collection, record_id)}

    def delete(self, collection: str, record_id: str, hard: bool = False) -> Touched:
        check_collection(collection)
        existing = self.lookup(collection, record_id)
        if existing is None:
            raise NotFound(collection, record_id)

        if not hard and supports_soft_delete(collection):
            now = now_iso()
            stamp, ids = soft_delete_plan(existing, self.children_of, now)
            touched: Touched = {(collection, record_id)}
            for rid in ids:
                rec = self.collections[collection][rid]
                rec["deleted_at"] = stamp
                rec["updated_at"] = now
                touched.add((collection, rid))
            return touched

        deletes, nulls = cascade_plan(collection, record_id, lambda c: list(self.collections[c].values()))
        touched = {(collection, record_id)}
        for coll, rid, field_name in nulls:
            self.collections[coll][rid][field_name] = None
            touched.add((coll, rid))
        for coll, rid in deletes:
            self.collections[coll].pop(rid, None)
            touched.add((coll, rid))
        del self.collections[collection][record_id]
        return touched

    def list(self, collection: str, where=None, key=None) -> List[Dict[str, Any]]:
        check_collection(collection)
        return select(copy.deepcopy(list(self.collections[collection].values())), where, key)

    # ---------- settings ----------

    def get_setting(self, key: str, default: Any = None) -> Any:
        validate_setting_key(key)
        if key in self.settings:
            return copy.deepcopy(self.settings[key])
        return default

    def set_settings(self, partial: Mapping[str, Any]) -> None:
        # Validate everything first so a bad value leaves no partial batch.
        staged = {validate_setting_key(k): _roundtrip(v) for k, v in partial.items()}
        self.settings.update(staged)

    def get_multiple_settings(self, defaults: Mapping[str, Any]) -> Dict[str, Any]:
        return {k: self.get_setting(k, v) for k, v in defaults.items()}

    def all_settings(self) -> Dict[str, Any]:
        return {k: copy.deepcopy(self.settings[k]) for k in sorted(self.settings)}

    def to_json(self) -> Dict[str, Any]:
        return {"collections": self.collections, "settings": self.settings}
