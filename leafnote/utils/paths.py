# leafnote/utils/paths.py
'''
Copyright 2025 Aaron Vose (avose@aaronvose.net)
Licensed under the LGPL v2.1; see the file 'LICENSE' for details.
'''
from __future__ import annotations

from pathlib import Path
from typing import Dict, Union

Pathish = Union[str, Path]

__all__ = [
    "store_paths",
    "entries_shard_dir",
    "entry_dir",
    "entry_json_path",
    "entry_content_path",
    "collection_path",
]


def store_paths(store_dir: Pathish) -> Dict[str, Path]:
    root = Path(store_dir).expanduser().resolve()
    return {
        "root": root,
        "notebook_json": root / "notebook.json",
        "entries": root / "entries",
        "collections": root / "collections",
        "settings": root / "settings.json",
    }


def entries_shard_dir(store_dir: Pathish, entry_id: str) -> Path:
    """
    Return the shard directory for an entry id:
      <store_dir>/entries/<entry_id[:2]>
    Does not create it.
    """
    if len(entry_id) < 2:
        # Short ids share one shard padded with '_'.
        return Path(store_dir) / "entries" / entry_id.ljust(2, "_")
    return Path(store_dir) / "entries" / entry_id[:2]


def entry_dir(store_dir: Pathish, entry_id: str) -> Path:
    """
    Return the full entry directory path (not created):
      <store_dir>/entries/<id[:2]>/<id>
    """
    return entries_shard_dir(store_dir, entry_id) / entry_id


def entry_json_path(store_dir: Pathish, entry_id: str) -> Path:
    return entry_dir(store_dir, entry_id) / "entry.json"


def entry_content_path(store_dir: Pathish, entry_id: str) -> Path:
    return entry_dir(store_dir, entry_id) / "content.html"


def collection_path(store_dir: Pathish, collection: str) -> Path:
    return Path(store_dir) / "collections" / f"{collection}.json"
