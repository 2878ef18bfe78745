# leafnote/core/tree_utils.py
'''
Copyright 2025 Aaron Vose (avose@aaronvose.net)
Licensed under the LGPL v2.1; see the file 'LICENSE' for details.
'''
from __future__ import annotations

import html
import re
from typing import Any, Dict, List, Optional, Sequence

from leafnote.core.errors import CycleDetected, NotFound, ValidationFailure
from leafnote.core.items import Item, new_id
from leafnote.core.tree import ItemTree, sort_key

__all__ = [
    "plaintext_from_html",
    "load_items",
    "load_tree",
    "create_item",
    "move_item",
    "reorder_children",
    "rename_item",
    "update_content",
    "soft_delete_item",
    "restore_item",
    "purge_item",
    "snapshot_version",
    "list_versions",
    "restore_version",
]

_TAG_RE = re.compile(r"<[^>]*>")
_SPACE_RE = re.compile(r"\s+")

def plaintext_from_html(content: str) -> str:
    """Text of an HTML fragment with tags dropped and whitespace collapsed."""
    return _SPACE_RE.sub(" ", html.unescape(_TAG_RE.sub(" ", content or ""))).strip()

# ---------- loading ----------

def load_items(backend, include_deleted: bool = False) -> List[Item]:
    records = backend.list_records("items")
    items = [Item.from_record(r) for r in records]
    if not include_deleted:
        items = [i for i in items if not i.is_deleted]
    return items

def load_tree(backend) -> ItemTree:
    return ItemTree(load_items(backend, include_deleted=True))

def _get_item(backend, item_id: str) -> Item:
    return Item.from_record(backend.get_record("items", item_id))

def _siblings(backend, parent_id: Optional[str], exclude: Optional[str] = None) -> List[Item]:
    records = backend.list_records(
        "items", lambda r: r.get("parent_id") == parent_id and r.get("deleted_at") is None
    )
    siblings = [Item.from_record(r) for r in records if r["id"] != exclude]
    siblings.sort(key=sort_key)
    return siblings

def _renumber(backend, ordered: Sequence[Item]) -> None:
    """Give `ordered` the dense sort orders 0..n-1, writing only what changed."""
    for index, item in enumerate(ordered):
        if item.sort_order != index:
            backend.put_record("items", item.id, {"sort_order": index})

# ---------- create / move / reorder ----------

def create_item(backend, item_type: str = "note", title: str = "Untitled", parent_id: Optional[str] = None,
                content: str = "", index: Optional[int] = None, metadata: Optional[Dict[str, Any]] = None,
                item_id: Optional[str] = None) -> Item:
    """
    Create an item under `parent_id` (None = root). Appended by default;
    with `index` it is inserted there and later siblings shift down.
    """
    siblings = _siblings(backend, parent_id)
    if index is None or index < 0 or index > len(siblings):
        index = len(siblings)

    eid = item_id or new_id()
    record = backend.put_record("items", eid, {
        "type": item_type,
        "title": title,
        "parent_id": parent_id,
        "content": content,
        "content_plaintext": plaintext_from_html(content),
        "sort_order": index,
        "metadata": dict(metadata or {}),
    })
    created = Item.from_record(record)

    if index < len(siblings):
        _renumber(backend, siblings[:index] + [created] + siblings[index:])
        created = _get_item(backend, eid)
    return created

def move_item(backend, item_id: str, new_parent_id: Optional[str], index: Optional[int] = None) -> Item:
    """Move an item (and its subtree) under `new_parent_id` at `index` (default: end)."""
    item = _get_item(backend, item_id)
    if new_parent_id is not None:
        if new_parent_id == item_id:
            raise CycleDetected(item_id, [item_id, item_id])
        tree = load_tree(backend)
        if tree.get(new_parent_id) is None:
            raise NotFound("items", new_parent_id)
        chain = tree.get_ancestors(new_parent_id)
        if item_id in chain:
            raise CycleDetected(item_id, [new_parent_id] + chain[:chain.index(item_id) + 1])

    old_parent = item.parent_id
    targets = _siblings(backend, new_parent_id, exclude=item_id)
    if index is None or index < 0 or index > len(targets):
        index = len(targets)

    moved = Item.from_record(backend.put_record("items", item_id, {"parent_id": new_parent_id, "sort_order": index}))
    _renumber(backend, targets[:index] + [moved] + targets[index:])
    if old_parent != new_parent_id:
        _renumber(backend, _siblings(backend, old_parent))
    return _get_item(backend, item_id)

def reorder_children(backend, parent_id: Optional[str], ordered_ids: Sequence[str]) -> List[Item]:
    """Set the sibling order of `parent_id`'s children; ids must be exactly its children."""
    siblings = {i.id: i for i in _siblings(backend, parent_id)}
    if len(ordered_ids) != len(set(ordered_ids)) or set(ordered_ids) != set(siblings):
        raise ValidationFailure(f"Reorder ids do not match the children of {parent_id or 'root'}")
    _renumber(backend, [siblings[i] for i in ordered_ids])
    return _siblings(backend, parent_id)

# ---------- edits ----------

def rename_item(backend, item_id: str, title: str) -> Item:
    return Item.from_record(backend.put_record("items", item_id, {"title": title}))

def update_content(backend, item_id: str, content: str, plaintext: Optional[str] = None) -> Item:
    """Replace the content; content_plaintext follows unless given explicitly."""
    if plaintext is None:
        plaintext = plaintext_from_html(content)
    return Item.from_record(backend.put_record("items", item_id, {
        "content": content,
        "content_plaintext": plaintext,
    }))

# ---------- delete / restore ----------

def soft_delete_item(backend, item_id: str) -> None:
    """Soft-delete an item; its live descendants are deleted along with it."""
    item = _get_item(backend, item_id)
    backend.delete_record("items", item_id)
    _renumber(backend, _siblings(backend, item.parent_id))

def restore_item(backend, item_id: str) -> Item:
    """
    Undo a soft delete; the item goes to the end of its sibling list.
    Descendants deleted in the same operation (same deleted_at) come back
    too, in their old places. Ones deleted earlier on their own stay deleted.
    """
    item = _get_item(backend, item_id)
    if not item.is_deleted:
        return item
    stamp = item.deleted_at
    position = len(_siblings(backend, item.parent_id))
    restored = Item.from_record(backend.put_record("items", item_id, {"deleted_at": None, "sort_order": position}))

    children: Dict[Optional[str], List[Item]] = {}
    for other in load_items(backend, include_deleted=True):
        children.setdefault(other.parent_id, []).append(other)
    pending = [item_id]
    seen = {item_id}
    while pending:
        for child in sorted(children.get(pending.pop(0), []), key=sort_key):
            if child.id in seen or child.deleted_at != stamp:
                continue
            seen.add(child.id)
            backend.put_record("items", child.id, {"deleted_at": None})
            pending.append(child.id)
    return restored

def purge_item(backend, item_id: str) -> None:
    """Delete permanently. Dependents go with it; children move to the root."""
    backend.delete_record("items", item_id, hard=True)

# ---------- versions ----------

def snapshot_version(backend, item_id: str, comment: str = "") -> Dict[str, Any]:
    item = _get_item(backend, item_id)
    return backend.put_record("versions", new_id(), {
        "item_id": item_id,
        "title": item.title,
        "content": item.content,
        "comment": comment,
    })

def list_versions(backend, item_id: str) -> List[Dict[str, Any]]:
    """Versions of `item_id`, newest first."""
    versions = backend.list_records("versions", {"item_id": item_id}, key=lambda r: (r["created_at"], r["id"]))
    versions.reverse()
    return versions

def restore_version(backend, version_id: str) -> Item:
    """Bring back a version's title and content; the current state is snapshotted first."""
    version = backend.get_record("versions", version_id)
    snapshot_version(backend, version["item_id"], comment=f"Before restoring {version_id}")
    return Item.from_record(backend.put_record("items", version["item_id"], {
        "title": version["title"],
        "content": version["content"],
        "content_plaintext": plaintext_from_html(version["content"]),
    }))
