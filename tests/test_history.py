'''
Copyright 2025 Aaron Vose (avose@aaronvose.net)
Licensed under the LGPL v2.1; see the file 'LICENSE' for details.
'''
import threading

import pytest

pytest.importorskip("git")

from leafnote.core import history as history_module
from leafnote.core.config import StorageConfig
from leafnote.core.git import GitError, count_dirty_entries, is_git_available
from leafnote.core.history import HistoryManager
from leafnote.core.storage.factory import create_backend
from leafnote.core.storage.hybrid import HybridBackend

pytestmark = pytest.mark.skipif(not is_git_available(), reason="git executable not available")

def _store(tmp_path, **kwargs):
    root = tmp_path / "store"
    history = HistoryManager(str(root), **kwargs)
    backend = HybridBackend(str(root), history=history)
    backend.ensure_schema()
    return backend, history

def test_start_creates_repository_with_initial_commit(tmp_path):
    backend, history = _store(tmp_path)
    assert history.enabled
    assert (tmp_path / "store" / ".git").is_dir()
    commits = history.history()
    assert [c.message for c in commits] == ["Initial commit"]
    backend.close()

def test_each_change_commits_without_interval(tmp_path):
    backend, history = _store(tmp_path, min_interval=0)
    backend.put_record("items", "ab12", {"type": "note", "title": "T"})
    backend.put_record("items", "cd34", {"type": "note", "title": "U"})

    commits = history.history()
    assert [c.message for c in commits] == [
        "Auto-save: 1 entry changed",
        "Auto-save: 1 entry changed",
        "Initial commit",
    ]
    assert commits[0].changed_entries == 1
    assert history.changes_since_commit == 0
    backend.close()

def test_burst_of_changes_commits_once_per_interval(tmp_path, worker):
    backend, history = _store(tmp_path, io_worker=worker, min_interval=3600)
    gate = threading.Event()
    worker.submit(gate.wait, 5)
    for i in range(5):
        backend.put_record("items", f"n{i}", {"type": "note"})
    assert history.changes_since_commit == 5
    gate.set()
    worker.join()

    commits = history.history()
    assert len(commits) == 2
    assert commits[0].message == "Auto-save: 5 entries changed"
    assert history.changes_since_commit == 0

    backend.put_record("items", "n9", {"type": "note"})
    worker.join()
    assert len(history.history()) == 2
    assert count_dirty_entries(str(tmp_path / "store")) == 1
    backend.close()

def test_checkpoint(tmp_path):
    backend, history = _store(tmp_path, min_interval=3600)
    backend.put_record("items", "n1", {"type": "note"})
    with pytest.raises(ValueError):
        history.checkpoint("nothing new")

    backend.put_record("items", "n2", {"type": "note"})
    assert history.checkpoint("before refactor") is True
    assert history.history(limit=1)[0].message == "Checkpoint: before refactor"
    backend.close()

def test_missing_git_disables_history(tmp_path, monkeypatch):
    monkeypatch.setattr(history_module, "is_git_available", lambda: False)
    backend, history = _store(tmp_path, min_interval=0)
    assert not history.enabled
    backend.put_record("items", "n1", {"type": "note"})
    assert history.history() == []
    assert not (tmp_path / "store" / ".git").exists()
    with pytest.raises(GitError):
        history.checkpoint("x")
    backend.close()

def test_factory_attaches_history(tmp_path):
    config = StorageConfig(backend="hybrid-file-per-item", path=str(tmp_path / "store"), git_history=True)
    backend = create_backend(config)
    assert isinstance(backend.history, HistoryManager)
    backend.ensure_schema()
    assert backend.history.enabled
    backend.close()
