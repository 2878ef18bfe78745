# leafnote/core/history.py
'''
Copyright 2025 Aaron Vose (avose@aaronvose.net)
Licensed under the LGPL v2.1; see the file 'LICENSE' for details.
'''

from __future__ import annotations

import threading
import time
from typing import List, Optional

from leafnote.core.log import Log
from leafnote.core.git import (
    CommitInfo,
    GitError,
    init_repository,
    create_commit,
    get_commit_history,
    has_uncommitted_changes,
    count_dirty_entries,
    is_git_available,
)

__all__ = ["HistoryManager"]

class HistoryManager:
    """
    Git history for one file-based store directory.

    The owning backend calls note_change() after each successful write;
    at most one automatic commit is made per `min_interval` seconds, on the
    IO worker when one is given. History problems are logged and never fail
    the write that triggered them. Manual checkpoints are synchronous and
    raise GitError so the caller can report them.
    """

    def __init__(self, store_dir: str, io_worker=None, min_interval: float = 300.0):
        self.store_dir = str(store_dir)
        self.io_worker = io_worker
        self.min_interval = min_interval
        self.enabled = False
        self.last_commit_time = 0.0
        self.changes_since_commit = 0
        self._lock = threading.Lock()

    def ensure_repository(self) -> None:
        """Raises GitError if git is missing or the repository can't be set up."""
        if not is_git_available():
            raise GitError(
                "Git is not installed or not found in the system path.\n"
                "Please install Git before enabling history."
            )
        init_repository(self.store_dir)

    def start(self) -> bool:
        """Set up the repository; on failure history stays disabled."""
        try:
            self.ensure_repository()
        except GitError as e:
            Log.debug(f"History disabled for {self.store_dir}: {e}", 0)
            self.enabled = False
            return False
        self.enabled = True
        Log.debug(f"History enabled for {self.store_dir}", 1)
        return True

    def note_change(self) -> None:
        """Signal that the store changed; may schedule an auto-commit."""
        if not self.enabled:
            return
        with self._lock:
            self.changes_since_commit += 1
            due = time.time() - self.last_commit_time >= self.min_interval
            if due:
                # Claim the slot now so bursts of writes schedule one commit.
                self.last_commit_time = time.time()
        Log.debug(f"Change noted. (total: {self.changes_since_commit})", 100)
        if not due:
            return
        if self.io_worker is not None:
            self.io_worker.submit(self._auto_commit)
        else:
            self._auto_commit()

    def _auto_commit(self) -> bool:
        try:
            message = self._generate_auto_commit_message()
            if not message:
                Log.debug("Auto-commit skipped (no changes detected)", 1)
                return False
            committed = create_commit(self.store_dir, message)
        except GitError as e:
            Log.debug(f"Auto-commit failed: {e}", 0)
            return False
        with self._lock:
            self.changes_since_commit = 0
        Log.debug(f"Auto-commit: {message}", 1)
        return committed

    def _generate_auto_commit_message(self) -> Optional[str]:
        if not has_uncommitted_changes(self.store_dir):
            return None
        changed = count_dirty_entries(self.store_dir)
        if changed == 0:
            return "Auto-save: changes detected"
        entry_word = "entry" if changed == 1 else "entries"
        return f"Auto-save: {changed} {entry_word} changed"

    def checkpoint(self, message: str) -> bool:
        """
        Commit everything now with `message`.

        Raises:
            GitError: if history is unavailable or the commit fails
            ValueError: if there is nothing to commit
        """
        self.ensure_repository()
        self.enabled = True
        if not has_uncommitted_changes(self.store_dir):
            raise ValueError("No changes to commit")
        committed = create_commit(self.store_dir, f"Checkpoint: {message}")
        with self._lock:
            self.last_commit_time = time.time()
            self.changes_since_commit = 0
        Log.debug(f"Manual checkpoint created: {message}", 1)
        return committed

    def history(self, limit: int = 100) -> List[CommitInfo]:
        if not self.enabled:
            return []
        return get_commit_history(self.store_dir, limit)
