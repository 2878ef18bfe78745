# leafnote/core/schema.py
'''
Copyright 2025 Aaron Vose (avose@aaronvose.net)
Licensed under the LGPL v2.1; see the file 'LICENSE' for details.
'''
# Schema lifecycle for the structured (SQLite) backend.
#
# The base tables are created with CREATE TABLE IF NOT EXISTS; everything added
# since the first release is an additive column that `migrate()` brings in by
# introspecting `PRAGMA table_info`. No step is ever destructive, and running
# `ensure_schema()` any number of times leaves the same schema behind.
from __future__ import annotations

import sqlite3
from typing import Dict, List, Set, Tuple

from leafnote.core.errors import SchemaFailure
from leafnote.core.items import now_iso
from leafnote.core.log import Log
from leafnote.core.storage.records import DEFAULT_SEED

__all__ = ["SCHEMA_VERSION", "ADDITIVE_COLUMNS", "SchemaManager"]

SCHEMA_VERSION = 2

# First-release tables. items lacks metadata, content_plaintext and
# sort_order; those arrive through migrate().
BASE_SCHEMA = """
CREATE TABLE IF NOT EXISTS items (
    id          TEXT PRIMARY KEY,
    type        TEXT NOT NULL CHECK (type IN ('note', 'section', 'book')),
    title       TEXT NOT NULL DEFAULT 'Untitled',
    content     TEXT NOT NULL DEFAULT '',
    parent_id   TEXT REFERENCES items(id) ON DELETE SET NULL,
    created_at  TEXT NOT NULL,
    updated_at  TEXT NOT NULL,
    deleted_at  TEXT
);

CREATE TABLE IF NOT EXISTS tags (
    id          TEXT PRIMARY KEY,
    name        TEXT NOT NULL,
    color       TEXT,
    created_at  TEXT NOT NULL,
    updated_at  TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS item_tags (
    id          TEXT PRIMARY KEY,
    item_id     TEXT NOT NULL REFERENCES items(id) ON DELETE CASCADE,
    tag_id      TEXT NOT NULL REFERENCES tags(id) ON DELETE CASCADE,
    created_at  TEXT NOT NULL,
    updated_at  TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS attachments (
    id          TEXT PRIMARY KEY,
    item_id     TEXT NOT NULL REFERENCES items(id) ON DELETE CASCADE,
    filename    TEXT NOT NULL,
    mime_type   TEXT NOT NULL DEFAULT 'application/octet-stream',
    size        INTEGER NOT NULL DEFAULT 0,
    created_at  TEXT NOT NULL,
    updated_at  TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS versions (
    id          TEXT PRIMARY KEY,
    item_id     TEXT NOT NULL REFERENCES items(id) ON DELETE CASCADE,
    title       TEXT NOT NULL DEFAULT '',
    content     TEXT NOT NULL DEFAULT '',
    comment     TEXT NOT NULL DEFAULT '',
    created_at  TEXT NOT NULL,
    updated_at  TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS relationships (
    id          TEXT PRIMARY KEY,
    source_id   TEXT NOT NULL REFERENCES items(id) ON DELETE CASCADE,
    target_id   TEXT NOT NULL REFERENCES items(id) ON DELETE CASCADE,
    kind        TEXT NOT NULL CHECK (kind IN ('reference', 'child', 'related')),
    created_at  TEXT NOT NULL,
    updated_at  TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS settings (
    key         TEXT PRIMARY KEY,
    value       TEXT NOT NULL,
    created_at  TEXT NOT NULL,
    updated_at  TEXT NOT NULL
);
"""

# (table, column, declaration, critical, feature lost when it cannot be added)
ADDITIVE_COLUMNS: List[Tuple[str, str, str, bool, str]] = [
    ("items", "metadata", "TEXT NOT NULL DEFAULT '{}'", True, "metadata"),
    ("items", "content_plaintext", "TEXT NOT NULL DEFAULT ''", False, "plaintext"),
    ("items", "sort_order", "INTEGER NOT NULL DEFAULT 0", False, "manual_ordering"),
]

# name -> (table, columns)
INDEXES: Dict[str, Tuple[str, Tuple[str, ...]]] = {
    "idx_items_parent": ("items", ("parent_id",)),
    "idx_items_parent_order": ("items", ("parent_id", "sort_order")),
    "idx_items_deleted": ("items", ("deleted_at",)),
    "idx_item_tags_item": ("item_tags", ("item_id",)),
    "idx_item_tags_tag": ("item_tags", ("tag_id",)),
    "idx_attachments_item": ("attachments", ("item_id",)),
    "idx_versions_item": ("versions", ("item_id",)),
    "idx_relationships_source": ("relationships", ("source_id",)),
    "idx_relationships_target": ("relationships", ("target_id",)),
}

class SchemaManager:
    """
    Creates and upgrades the SQLite schema on one connection.

    `degraded` holds the names of features whose columns could not be
    added; the backend consults it to leave those columns out of reads and
    writes.
    """

    def __init__(self, conn: sqlite3.Connection, seed: bool = False):
        self.conn = conn
        self.seed = seed
        self.degraded: Set[str] = set()

    # ---------- introspection ----------

    def existing_tables(self) -> Set[str]:
        rows = self.conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'").fetchall()
        return {r[0] for r in rows}

    def table_columns(self, table: str) -> List[str]:
        return [r[1] for r in self.conn.execute(f"PRAGMA table_info({table})").fetchall()]

    def schema_version(self) -> int:
        return self.conn.execute("PRAGMA user_version").fetchone()[0] or 0

    # ---------- lifecycle ----------

    def ensure_schema(self) -> None:
        """Base tables -> migrations -> indexes -> seed. Idempotent."""
        try:
            self.conn.execute("PRAGMA foreign_keys = ON")
            self.conn.executescript(BASE_SCHEMA)
            self.conn.commit()
        except sqlite3.Error as e:
            raise SchemaFailure(f"Could not create base tables: {e}") from e

        self.migrate()

        try:
            self._ensure_indexes()
            if self.seed:
                self.seed_defaults()
            if not self.degraded:
                self.conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
            self.conn.commit()
        except sqlite3.Error as e:
            self.conn.rollback()
            raise SchemaFailure(f"Schema setup failed: {e}") from e

        Log.debug(f"Schema ready (version {self.schema_version()}, degraded={sorted(self.degraded)})", 1)

    def migrate(self) -> List[str]:
        """
        Add every missing additive column. Returns the "table.column" names
        added by this call; an already migrated database yields [].
        """
        added: List[str] = []
        for table, col, decl, critical, feature in ADDITIVE_COLUMNS:
            try:
                if self._safe_add_column(table, col, decl):
                    added.append(f"{table}.{col}")
                self.degraded.discard(feature)
            except sqlite3.Error as e:
                if critical:
                    raise SchemaFailure(f"Migration of {table}.{col} failed: {e}") from e
                # Keep going without the column; the feature is disabled.
                Log.debug(f"Migration of {table}.{col} failed, '{feature}' disabled: {e}", 0)
                self.degraded.add(feature)
        if added:
            self.conn.commit()
            Log.debug(f"Migrated columns: {', '.join(added)}", 0)
        return added

    def _safe_add_column(self, table: str, col: str, decl: str) -> bool:
        if col in self.table_columns(table):
            return False
        self.conn.execute(f"ALTER TABLE {table} ADD COLUMN {col} {decl}")
        return True

    def _ensure_indexes(self) -> None:
        for name, (table, cols) in INDEXES.items():
            present = set(self.table_columns(table))
            if not set(cols) <= present:
                Log.debug(f"Skipping index {name}: missing column(s) on {table}", 1)
                continue
            self.conn.execute(f"CREATE INDEX IF NOT EXISTS {name} ON {table}({', '.join(cols)})")

    def seed_defaults(self) -> int:
        """Insert built-in rows into empty tables only. Returns rows inserted."""
        inserted = 0
        now = now_iso()
        for table, rows in DEFAULT_SEED.items():
            if self.conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]:
                continue
            for row in rows:
                data = dict(row, created_at=now, updated_at=now)
                cols = ", ".join(data)
                marks = ", ".join("?" for _ in data)
                self.conn.execute(f"INSERT INTO {table} ({cols}) VALUES ({marks})", tuple(data.values()))
                inserted += 1
        return inserted
