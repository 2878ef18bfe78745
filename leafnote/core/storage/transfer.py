# leafnote/core/storage/transfer.py
'''
Copyright 2025 Aaron Vose (avose@aaronvose.net)
Licensed under the LGPL v2.1; see the file 'LICENSE' for details.
'''
from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Tuple, Union

import yaml

from leafnote.core.errors import StoreError, ValidationFailure
from leafnote.core.items import Item, now_iso
from leafnote.core.log import Log
from leafnote.core.storage.records import COLLECTIONS
from leafnote.core.tree import sort_key
from leafnote.core.tree_utils import create_item, load_items, plaintext_from_html
from leafnote.utils.fs_atomic import atomic_write_json, atomic_write_text, read_json

__all__ = [
    "EXPORT_VERSION",
    "export_settings",
    "import_settings",
    "copy_store",
    "storage_info",
    "ROOT_FOLDER",
    "CONFLICT_STRATEGIES",
    "ExportResult",
    "ImportResult",
    "sanitize_filename",
    "format_note",
    "parse_note",
    "export_items",
    "import_items",
]

EXPORT_VERSION = 1

# Referenced collections before the ones pointing at them.
COPY_ORDER = ["items", "tags", "item_tags", "attachments", "versions", "relationships"]

def export_settings(backend, path: Union[str, Path]) -> Dict[str, Any]:
    """Write every setting to `path` as {"version", "exported_at", "settings"}."""
    doc = {
        "version": EXPORT_VERSION,
        "exported_at": now_iso(),
        "settings": backend.get_all_settings(),
    }
    atomic_write_json(path, doc)
    Log.debug(f"Exported {len(doc['settings'])} settings to {path}", 0)
    return doc

def import_settings(backend, path: Union[str, Path]) -> List[str]:
    """Load an export document into `backend` in one batch. Returns the keys written."""
    try:
        doc = read_json(path, None)
    except ValueError as e:
        raise ValidationFailure(str(e)) from e
    if not isinstance(doc, dict):
        raise ValidationFailure(f"{path} is not a settings export")
    if doc.get("version") != EXPORT_VERSION:
        raise ValidationFailure(f"Unsupported settings export version: {doc.get('version')!r}")
    settings = doc.get("settings")
    if not isinstance(settings, dict):
        raise ValidationFailure(f"{path} has no settings object")
    backend.set_multiple_settings(settings)
    Log.debug(f"Imported {len(settings)} settings from {path}", 0)
    return sorted(settings)

def _items_parents_first(items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    by_id = {r["id"]: r for r in items}
    ordered: List[Dict[str, Any]] = []
    placed = set()

    def place(rec, seen):
        if rec["id"] in placed or rec["id"] in seen:
            return
        parent = by_id.get(rec.get("parent_id"))
        if parent is not None:
            place(parent, seen | {rec["id"]})
        placed.add(rec["id"])
        ordered.append(rec)

    for rec in items:
        place(rec, frozenset())
    return ordered

def copy_store(src, dst) -> Dict[str, int]:
    """
    Copy every record and setting from `src` into `dst`, parents before
    children. Returns the number of records copied per collection.

    Items are written live first and soft-deleted afterwards, since a child
    may not be written under a parent that is already deleted.
    """
    counts: Dict[str, int] = {}
    deleted: List[Dict[str, Any]] = []
    for collection in COPY_ORDER:
        records = src.list_records(collection)
        if collection == "items":
            records = _items_parents_first(records)
        for rec in records:
            data = {k: v for k, v in rec.items() if k != "updated_at"}
            if collection == "items" and data.get("deleted_at"):
                deleted.append(data)
                data = dict(data, deleted_at=None)
            dst.put_record(collection, rec["id"], data)
        counts[collection] = len(records)

    # Children first, so no live item ends up under a deleted one mid-way.
    for data in reversed(deleted):
        dst.put_record("items", data["id"], {"deleted_at": data["deleted_at"]})

    settings = src.get_all_settings()
    dst.set_multiple_settings(settings)
    counts["settings"] = len(settings)
    Log.debug(f"Copied store {src.kind} -> {dst.kind}: {counts}", 0)
    return counts

def storage_info(backend) -> Dict[str, Any]:
    """Backend kind, record counts per collection and number of settings."""
    info: Dict[str, Any] = {
        "backend": backend.kind,
        "collections": {name: len(backend.list_records(name)) for name in COLLECTIONS},
        "settings": len(backend.get_all_settings()),
    }
    items = backend.list_records("items")
    info["deleted_items"] = sum(1 for r in items if r.get("deleted_at"))
    degraded = getattr(backend, "degraded", None)
    if degraded:
        info["degraded"] = sorted(degraded)
    return info

# ---------- item folders ----------
#
#   <dir>/Book/Section/Note.md   notes inside a section
#   <dir>/Book/Note.md           notes directly in a book
#   <dir>/_root/Note.md          root notes, and notes with no book above them
#
# Each note is markdown with YAML front matter (id, title, created, updated,
# content_type, sort_order, metadata) followed by the HTML content.

ROOT_FOLDER = "_root"
NOTE_SUFFIX = ".md"
CONFLICT_STRATEGIES = ("skip", "overwrite", "rename")

_UNSAFE_RE = re.compile(r'[<>:"/\\|?*\x00-\x1f]')
_SPACE_RE = re.compile(r"\s+")
_FRONT_RE = re.compile(r"\A---\n(.*?)^---\n\n?(.*)\Z", re.S | re.M)

@dataclass
class ExportResult:
    path: str
    exported_count: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors

@dataclass
class ImportResult:
    imported_count: int = 0
    skipped_count: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors

def sanitize_filename(name: str) -> str:
    """A title made safe to use as a single path component."""
    cleaned = _SPACE_RE.sub(" ", _UNSAFE_RE.sub("_", name or "")).strip()[:100].strip()
    if cleaned in ("", ".", ".."):
        return "Untitled"
    return cleaned

def _unique(name: str, used: Set[str], suffix: str = "") -> str:
    # Compared case-insensitively; some filesystems are.
    candidate, n = name, 2
    while (candidate + suffix).lower() in used:
        candidate = f"{name} ({n})"
        n += 1
    used.add((candidate + suffix).lower())
    return candidate + suffix

def format_note(item: Item) -> str:
    front: Dict[str, Any] = {
        "id": item.id,
        "title": item.title,
        "created": item.created_at,
        "updated": item.updated_at,
        "content_type": "html",
        "sort_order": item.sort_order,
    }
    metadata = {k: v for k, v in item.metadata.items() if not k.startswith("_")}
    if metadata:
        front["metadata"] = metadata
    head = yaml.safe_dump(front, sort_keys=False, default_flow_style=False, allow_unicode=True)
    return f"---\n{head}---\n\n{item.content}"

def parse_note(text: str, fallback_title: str = "Imported Note") -> Tuple[Dict[str, Any], str]:
    """
    Split a note file into (front matter, body). A file without front matter
    is all body and gets `fallback_title`. Raises ValidationFailure when the
    front matter is not a YAML mapping.
    """
    match = _FRONT_RE.match(text)
    if match is None:
        return {"title": fallback_title}, text
    try:
        front = yaml.safe_load(match.group(1)) or {}
    except yaml.YAMLError as e:
        raise ValidationFailure(f"Bad front matter: {e}") from e
    if not isinstance(front, dict):
        raise ValidationFailure("Front matter is not a mapping")
    if not front.get("title"):
        front["title"] = fallback_title
    return front, match.group(2)

def export_items(backend, target_dir: Union[str, Path], include_deleted: bool = False) -> ExportResult:
    """
    Write the item tree to `target_dir` as folders and markdown files.
    Failures are collected per item; the rest of the tree is still written.
    """
    root = Path(target_dir)
    root.mkdir(parents=True, exist_ok=True)
    result = ExportResult(str(root))

    items = load_items(backend, include_deleted=include_deleted)
    by_id = {i.id: i for i in items}
    children: Dict[Optional[str], List[Item]] = {}
    for item in items:
        # Orphans (parent filtered out or missing) count as root items.
        parent = item.parent_id if item.parent_id in by_id else None
        children.setdefault(parent, []).append(item)
    for siblings in children.values():
        siblings.sort(key=sort_key)

    def notes_of(container_id: str) -> List[Item]:
        return [c for c in children.get(container_id, []) if c.type == "note"]

    def make_dir(path: Path, item: Item) -> bool:
        try:
            path.mkdir(exist_ok=True)
        except OSError as e:
            result.errors.append(f"Failed to export {item.type} {item.title!r}: {e}")
            return False
        result.exported_count += 1
        return True

    def write_notes(folder: Path, notes: List[Item], used: Set[str]) -> None:
        for note in notes:
            path = folder / _unique(sanitize_filename(note.title), used, NOTE_SUFFIX)
            try:
                atomic_write_text(path, format_note(note))
            except OSError as e:
                result.errors.append(f"Failed to export note {note.title!r}: {e}")
                continue
            result.exported_count += 1

    top_used = {ROOT_FOLDER}
    root_notes: List[Item] = []
    for item in children.get(None, []):
        if item.type == "note":
            root_notes.append(item)
        elif item.type == "section":
            # A section outside a book has no folder; its notes go to the root folder.
            root_notes.extend(notes_of(item.id))
        else:
            book_dir = root / _unique(sanitize_filename(item.title), top_used)
            if not make_dir(book_dir, item):
                continue
            used: Set[str] = set()
            for child in children.get(item.id, []):
                if child.type != "section":
                    continue
                section_dir = book_dir / _unique(sanitize_filename(child.title), used)
                if make_dir(section_dir, child):
                    write_notes(section_dir, notes_of(child.id), set())
            write_notes(book_dir, notes_of(item.id), used)

    if root_notes:
        write_notes(root / ROOT_FOLDER, root_notes, set())

    Log.debug(f"Exported {result.exported_count} items to {root} ({len(result.errors)} errors)", 0)
    return result

def _container(backend, item_type: str, title: str, parent_id: Optional[str], result: ImportResult) -> Optional[str]:
    """Id of the live book/section with this title, created when missing."""
    found = backend.list_records("items", lambda r: (
        r.get("type") == item_type and r.get("title") == title
        and r.get("parent_id") == parent_id and r.get("deleted_at") is None
    ))
    if found:
        return found[0]["id"]
    try:
        created = create_item(backend, item_type, title, parent_id=parent_id)
    except StoreError as e:
        result.errors.append(f"Failed to create {item_type} {title!r}: {e}")
        return None
    result.imported_count += 1
    return created.id

def _import_notes(backend, folder: Path, parent_id: Optional[str], existing: Set[str],
                  conflict: str, result: ImportResult) -> None:
    parsed = []
    for path in sorted(folder.iterdir()):
        if path.name.startswith(".") or path.suffix != NOTE_SUFFIX or not path.is_file():
            continue
        try:
            front, body = parse_note(path.read_text(encoding="utf-8"), path.stem)
        except (OSError, UnicodeDecodeError, ValidationFailure) as e:
            result.errors.append(f"Failed to read note file {path}: {e}")
            continue
        order = front.get("sort_order")
        parsed.append((order if isinstance(order, int) and not isinstance(order, bool) else float("inf"),
                       path.name, front, body))
    parsed.sort(key=lambda p: (p[0], p[1]))

    for _, name, front, body in parsed:
        title = str(front["title"])
        note_id = str(front["id"]) if front.get("id") is not None else None
        metadata = front.get("metadata") if isinstance(front.get("metadata"), dict) else {}
        try:
            if note_id is not None and note_id in existing:
                if conflict == "skip":
                    result.skipped_count += 1
                    continue
                if conflict == "overwrite":
                    backend.put_record("items", note_id, {
                        "title": title,
                        "content": body,
                        "content_plaintext": plaintext_from_html(body),
                        "metadata": metadata,
                    })
                    result.imported_count += 1
                    continue
                note_id = None
            created = create_item(backend, "note", title, parent_id=parent_id, content=body,
                                  metadata=metadata, item_id=note_id)
        except StoreError as e:
            result.errors.append(f"Failed to import note {title!r} ({name}): {e}")
            continue
        existing.add(created.id)
        result.imported_count += 1

def import_items(backend, source_dir: Union[str, Path], conflict: str = "skip") -> ImportResult:
    """
    Read a folder written by export_items back into `backend`.

    Top-level folders are books (`_root` holds root notes), their subfolders
    sections. Books and sections are matched by title and reused when a live
    one already exists. A note whose id is already taken is skipped, updated
    in place ("overwrite") or imported under a new id ("rename").
    """
    if conflict not in CONFLICT_STRATEGIES:
        raise ValidationFailure(f"Unknown conflict strategy: {conflict!r}")
    src = Path(source_dir)
    if not src.is_dir():
        raise ValidationFailure(f"Import folder does not exist: {src}")

    result = ImportResult()
    existing = {i.id for i in load_items(backend, include_deleted=True)}
    for entry in sorted(src.iterdir()):
        if entry.name.startswith(".") or not entry.is_dir():
            continue
        if entry.name == ROOT_FOLDER:
            _import_notes(backend, entry, None, existing, conflict, result)
            continue
        book_id = _container(backend, "book", entry.name, None, result)
        if book_id is None:
            continue
        for child in sorted(entry.iterdir()):
            if child.name.startswith(".") or not child.is_dir():
                continue
            section_id = _container(backend, "section", child.name, book_id, result)
            if section_id is not None:
                _import_notes(backend, child, section_id, existing, conflict, result)
        _import_notes(backend, entry, book_id, existing, conflict, result)

    Log.debug(f"Imported {result.imported_count} items from {src} "
              f"({result.skipped_count} skipped, {len(result.errors)} errors)", 0)
    return result
