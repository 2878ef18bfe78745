# leafnote/core/items.py
'''
Copyright 2025 Aaron Vose (avose@aaronvose.net)
Licensed under the LGPL v2.1; see the file 'LICENSE' for details.
'''
from __future__ import annotations

import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from leafnote.core.errors import ValidationFailure

__all__ = [
    "ITEM_TYPES",
    "Item",
    "new_id",
    "now_iso",
    "can_be_child_of",
    "valid_parent_types",
    "valid_child_types",
    "validate_move",
]

ITEM_TYPES = ("note", "section", "book")

# Which parent types each item type may live under (None = root level).
HIERARCHY_RULES: Dict[str, tuple] = {
    "book": (None,),
    "section": (None, "book"),
    "note": (None, "book", "section"),
}

def new_id() -> str:
    return uuid.uuid4().hex[:12]

def now_iso() -> str:
    """Current UTC time as an ISO-8601 string with microseconds (sorts lexically)."""
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")

@dataclass(frozen=True)
class Item:
    """
    One node of the notebook tree: a note, a section or a book.

    Instances are immutable snapshots of an `items` record; the tree engine
    only ever reads them.
    """
    id: str
    type: str = "note"
    title: str = "Untitled"
    parent_id: Optional[str] = None
    content: str = ""
    content_plaintext: str = ""
    sort_order: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)
    created_at: str = ""
    updated_at: str = ""
    deleted_at: Optional[str] = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "Item":
        return cls(
            id=record["id"],
            type=record.get("type", "note"),
            title=record.get("title", "Untitled"),
            parent_id=record.get("parent_id"),
            content=record.get("content") or "",
            content_plaintext=record.get("content_plaintext") or "",
            sort_order=int(record.get("sort_order") or 0),
            metadata=dict(record.get("metadata") or {}),
            created_at=record.get("created_at") or "",
            updated_at=record.get("updated_at") or "",
            deleted_at=record.get("deleted_at"),
        )

    def to_record(self) -> Dict[str, Any]:
        return asdict(self)

# ---------- hierarchy rules ----------

def can_be_child_of(child_type: str, parent_type: Optional[str]) -> bool:
    """True if an item of `child_type` may be placed under `parent_type` (None = root)."""
    return parent_type in HIERARCHY_RULES.get(child_type, ())

def valid_parent_types(item_type: str) -> List[Optional[str]]:
    return list(HIERARCHY_RULES.get(item_type, ()))

def valid_child_types(parent_type: Optional[str]) -> List[str]:
    return [child for child, parents in HIERARCHY_RULES.items() if parent_type in parents]

def validate_move(item_type: str, new_parent_type: Optional[str]) -> None:
    """Raise ValidationFailure if `item_type` cannot live under `new_parent_type`."""
    if item_type not in HIERARCHY_RULES:
        raise ValidationFailure(f"Unknown item type: {item_type!r}")
    if can_be_child_of(item_type, new_parent_type):
        return
    allowed = ", ".join(p or "root" for p in valid_parent_types(item_type))
    raise ValidationFailure(
        f"{item_type}s cannot be placed in {new_parent_type or 'root'}. "
        f"Valid locations: {allowed}"
    )
