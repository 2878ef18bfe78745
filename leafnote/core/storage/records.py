# leafnote/core/storage/records.py
'''
Copyright 2025 Aaron Vose (avose@aaronvose.net)
Licensed under the LGPL v2.1; see the file 'LICENSE' for details.
'''
# Record rules shared by every backend.
#
# Backends differ only in where bytes end up. Everything observable about a
# record (which fields exist, their types, timestamps, reference checks,
# cascades on hard delete, listing order) is decided here so that switching
# backend is transparent to the layers above.
from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from leafnote.core.errors import CycleDetected, ValidationFailure
from leafnote.core.items import ITEM_TYPES, can_be_child_of, now_iso, validate_move

__all__ = [
    "COLLECTIONS",
    "REFERENCES",
    "DEFAULT_SEED",
    "Lookup",
    "validate_id",
    "check_collection",
    "normalize_record",
    "check_references",
    "select",
    "cascade_plan",
    "soft_delete_plan",
    "supports_soft_delete",
    "encode_value",
    "decode_value",
    "validate_setting_key",
]

ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.:-]*$")

RELATIONSHIP_KINDS = ("reference", "child", "related")

@dataclass(frozen=True)
class Field:
    name: str
    types: tuple
    default: Any = None
    nullable: bool = True

def _fields(*fields: Field) -> Dict[str, Field]:
    return {f.name: f for f in fields}

# Every record additionally carries id, created_at and updated_at.
COLLECTIONS: Dict[str, Dict[str, Field]] = {
    "items": _fields(
        Field("type", (str,), "note", False),
        Field("title", (str,), "Untitled", False),
        Field("content", (str,), "", False),
        Field("content_plaintext", (str,), "", False),
        Field("parent_id", (str,), None),
        Field("sort_order", (int,), 0, False),
        Field("metadata", (dict,), None, False),
        Field("deleted_at", (str,), None),
    ),
    "tags": _fields(
        Field("name", (str,), None, False),
        Field("color", (str,), None),
    ),
    "item_tags": _fields(
        Field("item_id", (str,), None, False),
        Field("tag_id", (str,), None, False),
    ),
    "attachments": _fields(
        Field("item_id", (str,), None, False),
        Field("filename", (str,), None, False),
        Field("mime_type", (str,), "application/octet-stream", False),
        Field("size", (int,), 0, False),
    ),
    "versions": _fields(
        Field("item_id", (str,), None, False),
        Field("title", (str,), "", False),
        Field("content", (str,), "", False),
        Field("comment", (str,), "", False),
    ),
    "relationships": _fields(
        Field("source_id", (str,), None, False),
        Field("target_id", (str,), None, False),
        Field("kind", (str,), "related", False),
    ),
}

# (field, target collection, on hard delete of the target)
REFERENCES: Dict[str, List[Tuple[str, str, str]]] = {
    "items": [("parent_id", "items", "set_null")],
    "item_tags": [("item_id", "items", "cascade"), ("tag_id", "tags", "cascade")],
    "attachments": [("item_id", "items", "cascade")],
    "versions": [("item_id", "items", "cascade")],
    "relationships": [("source_id", "items", "cascade"), ("target_id", "items", "cascade")],
}

# Built-in rows, written only into empty collections.
DEFAULT_SEED: Dict[str, List[Dict[str, Any]]] = {
    "tags": [
        {"id": "tag-pinned", "name": "pinned", "color": "#f59e0b"},
        {"id": "tag-todo", "name": "todo", "color": "#2563eb"},
    ],
}

# lookup(collection, record_id) -> record or None
Lookup = Callable[[str, str], Optional[Dict[str, Any]]]
Where = Union[Mapping[str, Any], Callable[[Dict[str, Any]], bool], None]

# ---------- validation ----------

def validate_id(record_id: Any) -> str:
    if not isinstance(record_id, str) or not ID_RE.match(record_id):
        raise ValidationFailure(f"Invalid record id: {record_id!r}")
    return record_id

def check_collection(collection: str) -> Dict[str, Field]:
    try:
        return COLLECTIONS[collection]
    except KeyError:
        raise ValidationFailure(f"Unknown collection: {collection!r}") from None

def _check_type(collection: str, f: Field, value: Any) -> None:
    if value is None:
        if not f.nullable:
            raise ValidationFailure(f"{collection}.{f.name} may not be null")
        return
    # bool is an int subclass; never accept it for integer columns.
    if isinstance(value, bool) or not isinstance(value, f.types):
        raise ValidationFailure(
            f"{collection}.{f.name} must be {f.types[0].__name__}, got {type(value).__name__}"
        )

def normalize_record(collection: str, record_id: str, record: Mapping[str, Any],
                     existing: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
    """
    Validate `record` for `collection` and return the complete record to store.

    Fields missing from `record` keep their value from `existing` (or their
    default). `created_at` is preserved across updates; `updated_at` is
    always stamped now.
    """
    fields = check_collection(collection)
    validate_id(record_id)
    if not isinstance(record, Mapping):
        raise ValidationFailure(f"{collection} record must be a mapping")

    if "id" in record and record["id"] != record_id:
        raise ValidationFailure(f"Record id {record['id']!r} does not match {record_id!r}")

    unknown = set(record) - set(fields) - {"id", "created_at", "updated_at"}
    if unknown:
        raise ValidationFailure(f"Unknown {collection} fields: {', '.join(sorted(unknown))}")

    base = dict(existing or {})
    out: Dict[str, Any] = {"id": record_id}
    for name, f in fields.items():
        if name in record:
            value = record[name]
        elif name in base:
            value = base[name]
        else:
            value = {} if name == "metadata" else f.default
        _check_type(collection, f, value)
        out[name] = value

    if collection == "items":
        if out["type"] not in ITEM_TYPES:
            raise ValidationFailure(f"Unknown item type: {out['type']!r}")
        out["metadata"] = dict(out["metadata"])
        encode_value(out["metadata"])
    elif collection == "relationships" and out["kind"] not in RELATIONSHIP_KINDS:
        raise ValidationFailure(f"Unknown relationship kind: {out['kind']!r}")
    elif collection == "attachments" and out["size"] < 0:
        raise ValidationFailure("attachments.size must not be negative")

    now = now_iso()
    created = base.get("created_at") or record.get("created_at") or now
    if not isinstance(created, str):
        raise ValidationFailure(f"{collection}.created_at must be str")
    out["created_at"] = created
    out["updated_at"] = now
    return out

def check_references(collection: str, record: Mapping[str, Any], lookup: Lookup,
                     children_of: Optional[Callable[[str], Iterable[Mapping[str, Any]]]] = None) -> None:
    """
    Enforce referential rules before a write.

    All references must exist. For items additionally: a live item's parent
    must not be soft-deleted, the hierarchy rules must hold, the parent chain must
    not loop back to the item, and (when `children_of` is given) existing
    children must still be allowed under the item's type.
    """
    for field_name, target, _ in REFERENCES.get(collection, ()):
        ref = record.get(field_name)
        if ref is None:
            continue
        target_record = lookup(target, ref)
        if target_record is None:
            raise ValidationFailure(f"{collection}.{field_name} references missing {target}/{ref}")

    if collection != "items":
        return

    parent_id = record.get("parent_id")
    parent = lookup("items", parent_id) if parent_id else None
    if parent is not None and parent.get("deleted_at") and not record.get("deleted_at"):
        raise ValidationFailure(f"Parent {parent_id} is deleted")
    validate_move(record["type"], parent["type"] if parent else None)

    # Walk up from the parent; reaching the item itself means a cycle.
    seen = {record["id"]}
    path = [record["id"]]
    current = parent
    while current is not None:
        path.append(current["id"])
        if current["id"] in seen:
            raise CycleDetected(current["id"], path)
        seen.add(current["id"])
        next_id = current.get("parent_id")
        current = lookup("items", next_id) if next_id else None

    if children_of is not None:
        for child in children_of(record["id"]):
            if child.get("deleted_at"):
                continue
            if not can_be_child_of(child["type"], record["type"]):
                raise ValidationFailure(
                    f"{record['type']} {record['id']} cannot contain {child['type']} {child['id']}"
                )

# ---------- listing ----------

def _default_key(record: Mapping[str, Any]):
    return record["id"]

def select(records: Iterable[Dict[str, Any]], where: Where = None,
           key: Optional[Callable[[Dict[str, Any]], Any]] = None) -> List[Dict[str, Any]]:
    """Filter by a field mapping or predicate, then order by `key` (default: id)."""
    if where is None:
        matched = list(records)
    elif callable(where):
        matched = [r for r in records if where(r)]
    else:
        matched = [r for r in records if all(r.get(k) == v for k, v in where.items())]
    matched.sort(key=key or _default_key)
    return matched

def supports_soft_delete(collection: str) -> bool:
    return "deleted_at" in check_collection(collection)

def cascade_plan(collection: str, record_id: str,
                 list_fn: Callable[[str], Iterable[Mapping[str, Any]]]):
    """
    Work out what a hard delete of collection/record_id implies.

    Returns (deletes, nulls): records to remove as (collection, id) pairs in
    dependency order, and (collection, id, field) references to clear.
    """
    deletes: List[Tuple[str, str]] = []
    nulls: List[Tuple[str, str, str]] = []
    seen = {(collection, record_id)}
    pending = [(collection, record_id)]
    while pending:
        coll, rid = pending.pop()
        for dep_coll, refs in REFERENCES.items():
            for field_name, target, action in refs:
                if target != coll:
                    continue
                for dep in list_fn(dep_coll):
                    if dep.get(field_name) != rid:
                        continue
                    key = (dep_coll, dep["id"])
                    if action == "set_null":
                        if key not in seen:
                            nulls.append((dep_coll, dep["id"], field_name))
                    elif key not in seen:
                        seen.add(key)
                        deletes.append(key)
                        pending.append(key)
    return deletes, nulls

def soft_delete_plan(record: Mapping[str, Any],
                     children_of: Callable[[str], Iterable[Mapping[str, Any]]],
                     now: str) -> Tuple[str, List[str]]:
    """
    Work out what a soft delete of the item `record` implies.

    Returns (stamp, ids): the deleted_at value to write and the ids to mark,
    parents first. A subtree shares one stamp so it can be restored as a
    unit. Already deleted items keep their stamp and are not listed.
    """
    stamp = record.get("deleted_at") or now
    ids: List[str] = [] if record.get("deleted_at") else [record["id"]]
    seen = {record["id"]}
    pending = [record["id"]]
    while pending:
        parent_id = pending.pop(0)
        for child in sorted(children_of(parent_id), key=_default_key):
            if child["id"] in seen:
                continue
            seen.add(child["id"])
            pending.append(child["id"])
            if not child.get("deleted_at"):
                ids.append(child["id"])
    return stamp, ids

# ---------- setting values ----------

def validate_setting_key(key: Any) -> str:
    if not isinstance(key, str) or not key:
        raise ValidationFailure(f"Invalid setting key: {key!r}")
    return key

def encode_value(value: Any) -> str:
    try:
        return json.dumps(value, sort_keys=True)
    except (TypeError, ValueError) as e:
        raise ValidationFailure(f"Value is not JSON serializable: {e}") from e

def decode_value(text: str) -> Any:
    return json.loads(text)
