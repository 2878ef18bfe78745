# leafnote/core/tree.py
'''
Copyright 2025 Aaron Vose (avose@aaronvose.net)
Licensed under the LGPL v2.1; see the file 'LICENSE' for details.
'''
# Container views over a flat item collection.
#
# Everything here is a pure read over a snapshot: direct children, the
# pre-order descendant list of a book or section, children grouped by
# section, word counts and display dates. Siblings are ordered by
# (sort_order, created_at, id) since sort_order is only unique within a
# sibling set, and not even reliably there.
from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from leafnote.core.errors import CycleDetected
from leafnote.core.items import Item
from leafnote.core.log import Log

__all__ = [
    "ItemView",
    "ContainerStats",
    "ItemTree",
    "sort_key",
    "compare_sort_order",
    "word_count",
    "format_date",
    "direct_children",
    "all_descendants",
    "group_by_section",
    "container_stats",
    "get_ancestors",
]

ItemLike = Union[Item, Mapping[str, Any]]

_TAG_RE = re.compile(r"<[^>]*>")
_MARKDOWN_RE = re.compile(r"[#*_`\[\]()]")

@dataclass(frozen=True)
class ItemView:
    """What a container view shows for one item."""
    id: str
    title: str
    type: str
    parent_id: Optional[str]
    sort_order: int
    created_at: str
    updated_at: str
    word_count: int
    depth: int = 0

@dataclass(frozen=True)
class ContainerStats:
    sections: int
    notes: int
    words: int

# ---------- helpers ----------

def sort_key(item: Item) -> Tuple[int, str, str]:
    return (item.sort_order, item.created_at, item.id)

def compare_sort_order(a: Item, b: Item) -> int:
    """cmp-style comparator (-1, 0, 1) for use with functools.cmp_to_key."""
    ka, kb = sort_key(a), sort_key(b)
    return (ka > kb) - (ka < kb)

def word_count(plaintext: Optional[str], content: Optional[str] = None) -> int:
    """
    Rough word count. Uses plaintext when present, otherwise raw content
    with HTML tags and markdown punctuation stripped. Best effort only.
    """
    text = plaintext or content or ""
    if not text:
        return 0
    cleaned = _MARKDOWN_RE.sub("", _TAG_RE.sub(" ", text))
    return len(cleaned.split())

def format_date(value: Any) -> str:
    """'2026-10-16T09:30:00+00:00' -> 'Oct 16, 2026'; unparseable input comes back as text ('' for None)."""
    if value is None:
        return ""
    text = str(value)
    try:
        d = datetime.fromisoformat(text[:-1] + "+00:00" if text.endswith("Z") else text)
    except (TypeError, ValueError):
        return text
    return f"{d:%b} {d.day}, {d.year}"

def _as_item(item: ItemLike) -> Item:
    return item if isinstance(item, Item) else Item.from_record(dict(item))

def _view(item: Item, depth: int = 0) -> ItemView:
    return ItemView(
        id=item.id,
        title=item.title,
        type=item.type,
        parent_id=item.parent_id,
        sort_order=item.sort_order,
        created_at=item.created_at,
        updated_at=item.updated_at,
        word_count=word_count(item.content_plaintext, item.content),
        depth=depth,
    )

# ---------- tree ----------

class ItemTree:
    """
    Memoized views over one immutable snapshot of items.

    Build a new ItemTree whenever the collection changes; results for each
    container are computed once per instance.
    """

    def __init__(self, items: Iterable[ItemLike]):
        self.items: Tuple[Item, ...] = tuple(_as_item(i) for i in items)
        self._by_id: Dict[str, Item] = {i.id: i for i in self.items}
        self._children: Dict[Optional[str], List[Item]] = {}
        for item in self.items:
            if item.is_deleted:
                continue
            self._children.setdefault(item.parent_id, []).append(item)
        for siblings in self._children.values():
            siblings.sort(key=sort_key)
        self._cache: Dict[Tuple[str, Optional[str], bool], Any] = {}

    def get(self, item_id: str) -> Optional[Item]:
        return self._by_id.get(item_id)

    def _memo(self, name: str, container_id: Optional[str], fn, strict: bool = True):
        key = (name, container_id, strict)
        if key not in self._cache:
            self._cache[key] = fn()
        return self._cache[key]

    def direct_children(self, container_id: Optional[str]) -> List[ItemView]:
        """Non-deleted items whose parent is `container_id` (None = root level), sorted."""
        return list(self._memo("children", container_id,
                               lambda: [_view(i) for i in self._children.get(container_id, [])]))

    def all_descendants(self, container_id: Optional[str], strict: bool = True) -> List[ItemView]:
        """
        Pre-order walk below `container_id`. Sections are expanded, notes
        are leaves. An item reached twice means the parent chain loops:
        strict mode raises CycleDetected, lenient mode logs and skips it.
        """
        return list(self._memo("descendants", container_id,
                               lambda: self._walk(container_id, strict), strict))

    def _walk(self, container_id: Optional[str], strict: bool) -> List[ItemView]:
        result: List[ItemView] = []
        visited = {container_id}
        path: List[Optional[str]] = [container_id]
        stack = [(child, 0) for child in reversed(self._children.get(container_id, []))]
        while stack:
            item, depth = stack.pop()
            if item.id in visited:
                if strict:
                    raise CycleDetected(item.id, [p for p in path if p is not None] + [item.id])
                Log.debug(f"Cycle at {item.id} below {container_id}; skipping subtree", 0)
                continue
            visited.add(item.id)
            del path[depth + 1:]
            path.append(item.id)
            result.append(_view(item, depth))
            if item.type == "section":
                stack.extend((child, depth + 1) for child in reversed(self._children.get(item.id, [])))
        return result

    def group_by_section(self, container_id: Optional[str]) -> Dict[Optional[str], List[ItemView]]:
        """
        Direct children split into a None bucket (everything that isn't a
        section; only present when non-empty) followed by one bucket per
        child section holding that section's own direct children.
        """
        def build():
            grouped: Dict[Optional[str], List[ItemView]] = {}
            children = self._children.get(container_id, [])
            loose = [_view(c) for c in children if c.type != "section"]
            if loose:
                grouped[None] = loose
            for section in (c for c in children if c.type == "section"):
                grouped[section.id] = [_view(c) for c in self._children.get(section.id, [])]
            return grouped
        return {k: list(v) for k, v in self._memo("sections", container_id, build).items()}

    def sections(self, container_id: Optional[str]) -> List[ItemView]:
        return [v for v in self.direct_children(container_id) if v.type == "section"]

    def container_stats(self, container_id: Optional[str]) -> ContainerStats:
        descendants = self.all_descendants(container_id)
        return ContainerStats(
            sections=sum(1 for v in descendants if v.type == "section"),
            notes=sum(1 for v in descendants if v.type == "note"),
            words=sum(v.word_count for v in descendants),
        )

    def get_ancestors(self, item_id: str) -> List[str]:
        """Parent ids from the direct parent up to the root."""
        ancestors: List[str] = []
        seen = {item_id}
        current = self._by_id.get(item_id)
        while current is not None and current.parent_id:
            if current.parent_id in seen:
                raise CycleDetected(current.parent_id, [item_id] + ancestors + [current.parent_id])
            seen.add(current.parent_id)
            ancestors.append(current.parent_id)
            current = self._by_id.get(current.parent_id)
        return ancestors

# ---------- function surface ----------

def direct_children(items: Iterable[ItemLike], container_id: Optional[str]) -> List[ItemView]:
    return ItemTree(items).direct_children(container_id)

def all_descendants(items: Iterable[ItemLike], container_id: Optional[str], strict: bool = True) -> List[ItemView]:
    return ItemTree(items).all_descendants(container_id, strict)

def group_by_section(items: Iterable[ItemLike], container_id: Optional[str]) -> Dict[Optional[str], List[ItemView]]:
    return ItemTree(items).group_by_section(container_id)

def container_stats(items: Iterable[ItemLike], container_id: Optional[str]) -> ContainerStats:
    return ItemTree(items).container_stats(container_id)

def get_ancestors(items: Iterable[ItemLike], item_id: str) -> List[str]:
    return ItemTree(items).get_ancestors(item_id)
