'''
Copyright 2025 Aaron Vose (avose@aaronvose.net)
Licensed under the LGPL v2.1; see the file 'LICENSE' for details.
'''
import json
import threading

import pytest

from conftest import REMOTE_URL
from leafnote.core.config import StorageConfig
from leafnote.core.errors import IOFailure, NotReady, SettingsBatchError, ValidationFailure
from leafnote.core.settings_cache import FastStore, SettingsStore, SyncState
from leafnote.core.storage.factory import BackendSelector, create_backend

WAIT = 5

@pytest.fixture
def selector(tmp_path, worker):
    sel = BackendSelector(worker)
    sel.switch(StorageConfig(backend="structured-database", path=str(tmp_path / "store.db")))
    yield sel
    sel.close()

@pytest.fixture
def store(selector, worker):
    return SettingsStore(selector, worker)

def _gate(worker):
    """Hold the worker until the returned event is set."""
    gate = threading.Event()
    worker.submit(gate.wait, WAIT)
    return gate

def _count_calls(monkeypatch, obj, name):
    calls = []
    original = getattr(obj, name)

    def counting(*args, **kwargs):
        calls.append(args)
        return original(*args, **kwargs)

    monkeypatch.setattr(obj, name, counting)
    return calls

# ---------- fast tier ----------

def test_fast_store_mirrors_to_file(tmp_path):
    path = tmp_path / "cache.json"
    fast = FastStore(path)
    fast.set("theme", "dark")
    assert json.loads(path.read_text(encoding="utf-8")) == {"setting:theme": "dark"}

    reopened = FastStore(path)
    assert "theme" in reopened
    assert reopened.get("theme") == "dark"

def test_fast_store_ignores_unreadable_file(tmp_path):
    path = tmp_path / "cache.json"
    path.write_text("garbage{", encoding="utf-8")
    fast = FastStore(path)
    assert fast.get("theme", "x") == "x"

# ---------- hydration ----------

def test_set_then_get(store):
    store.set("theme", "light")
    assert store.get("theme", "dark") == "light"

def test_hydration_reads_durable_tier_once(store, selector, monkeypatch):
    calls = _count_calls(monkeypatch, selector.active(), "get_setting")
    s = store.setting("theme", "dark")
    for _ in range(5):
        s.get()
    s.hydrate().result(WAIT)
    store.get("theme")
    store.wait()
    assert len(calls) == 1
    assert s.synced

def test_first_read_returns_fast_value_then_durable_value(store, selector, worker):
    selector.active().set_setting("theme", "light")
    seen = []
    s = store.setting("theme", "dark")
    s.subscribe(seen.append)

    gate = _gate(worker)
    assert s.get() == "dark"
    assert s.state is SyncState.HYDRATING
    gate.set()

    assert s.hydrate().result(WAIT) == "light"
    assert s.get() == "light"
    assert seen == ["light"]
    assert s.synced

def test_empty_durable_tier_keeps_default(store, selector, monkeypatch):
    s = store.setting("theme", "dark")
    assert s.get() == "dark"
    assert s.hydrate().result(WAIT) == "dark"
    assert s.synced

    def failing(key, default=None):
        raise IOFailure("offline")

    # A later durable failure is never seen: the key does not hydrate again.
    monkeypatch.setattr(selector.active(), "get_setting", failing)
    assert s.get() == "dark"
    store.wait()
    assert store.last_error() is None

def test_durable_value_replaces_cached_value(tmp_path, selector, worker):
    fast = FastStore(tmp_path / "cache.json")
    fast.set("theme", "cached")
    selector.active().set_setting("theme", "light")

    store = SettingsStore(selector, worker, fast=fast)
    assert store.setting("theme", "dark").hydrate().result(WAIT) == "light"
    assert FastStore(tmp_path / "cache.json").get("theme") == "light"

def test_missing_durable_value_keeps_cached_value(tmp_path, selector, worker):
    fast = FastStore(tmp_path / "cache.json")
    fast.set("theme", "cached")
    store = SettingsStore(selector, worker, fast=fast)
    assert store.setting("theme", "dark").hydrate().result(WAIT) == "cached"

def test_failed_hydration_is_reported_and_not_retried(worker):
    store = SettingsStore(BackendSelector(worker), worker)
    s = store.setting("theme", "dark")

    assert s.hydrate().result(WAIT) == "dark"
    assert s.synced
    err = store.last_error()
    assert (err.key, err.op) == ("theme", "hydrate")
    assert isinstance(err.error, NotReady)

    s.get()
    store.wait()
    assert len(store.errors.errors("theme")) == 1

def test_explicit_write_beats_pending_hydration(store, selector, worker):
    selector.active().set_setting("theme", "light")
    s = store.setting("theme", "dark")

    gate = _gate(worker)
    s.get()
    s.set("blue")
    gate.set()

    assert s.hydrate().result(WAIT) == "blue"
    store.wait()
    assert s.get() == "blue"
    assert selector.active().get_setting("theme") == "blue"

# ---------- writes ----------

def test_updater_function(store, selector):
    s = store.setting("count", 0)
    s.set(lambda v: v + 1)
    s.set(lambda v: v + 1)
    assert s.get() == 2
    store.wait()
    assert selector.active().get_setting("count") == 2

def test_writes_reach_durable_tier_in_order(store, selector):
    for i in range(20):
        store.set("zoom", i)
    store.wait()
    assert selector.active().get_setting("zoom") == 19

def test_unserializable_value_is_rejected_synchronously(store):
    s = store.setting("theme", "dark")
    with pytest.raises(ValidationFailure):
        s.set({1, 2})
    assert s.cell.get() == "dark"

def test_write_failure_keeps_fast_value_and_reports(store, selector, monkeypatch):
    def failing(key, value):
        raise IOFailure("disk full")

    monkeypatch.setattr(selector.active(), "set_setting", failing)
    updates = []
    store.status.subscribe(updates.append)

    fut = store.set("theme", "light")
    with pytest.raises(IOFailure):
        fut.result(WAIT)
    assert store.get("theme") == "light"
    assert store.last_error().op == "write"
    assert updates and updates[-1].key == "theme"

def test_work_queued_before_a_switch_uses_the_previous_backend(tmp_path, store, selector, worker):
    selector.active().set_setting("zoom", 2)
    zoom = store.setting("zoom", 1)

    gate = _gate(worker)
    store.set("theme", "light")
    zoom.get()
    switched = selector.switch_async(
        StorageConfig(backend="single-file-document", path=str(tmp_path / "next.json"))
    )
    gate.set()
    switched.result(WAIT)
    store.set("theme", "dark")
    store.wait()

    assert store.errors.errors() == []
    assert zoom.get() == 2
    assert selector.active().get_setting("theme") == "dark"

    previous = create_backend(StorageConfig(backend="structured-database", path=str(tmp_path / "store.db")))
    previous.ensure_schema()
    try:
        assert previous.get_setting("theme") == "light"
    finally:
        previous.close()

# ---------- bulk ----------

def test_get_many_and_set_many(store, selector):
    store.set_many({"theme": "light", "zoom": 3})
    assert store.get_many({"theme": "dark", "zoom": 1, "font": "mono"}) == {
        "theme": "light", "zoom": 3, "font": "mono",
    }
    store.wait()
    assert selector.active().get_all_settings() == {"theme": "light", "zoom": 3}

def test_load_all_uses_one_durable_read(store, selector, monkeypatch):
    selector.active().set_setting("a", 1)
    bulk = _count_calls(monkeypatch, selector.active(), "get_multiple_settings")
    single = _count_calls(monkeypatch, selector.active(), "get_setting")

    assert store.load_all({"a": 0, "b": 5}).result(WAIT) == {"a": 1, "b": 5}
    assert store.get("a") == 1
    store.wait()
    assert len(bulk) == 1
    assert single == []
    assert store.load_all({"a": 0}).result(WAIT) == {}

def test_save_all_uses_one_durable_write(store, selector, monkeypatch):
    calls = _count_calls(monkeypatch, selector.active(), "set_multiple_settings")
    fut = store.save_all({"theme": "light", "zoom": 2})
    assert store.get("theme") == "light"
    fut.result(WAIT)
    assert len(calls) == 1
    assert selector.active().get_all_settings() == {"theme": "light", "zoom": 2}

def test_save_all_reports_failed_keys(worker, fake_remote):
    fake_remote.settings.update({"a": 1})
    fake_remote.fail_setting_keys = {"b"}
    selector = BackendSelector(
        worker, factory=lambda config, worker=None: create_backend(config, worker, transport=fake_remote.transport())
    )
    selector.switch(StorageConfig(backend="remote", url=REMOTE_URL))
    store = SettingsStore(selector, worker)

    with pytest.raises(SettingsBatchError):
        store.save_all({"a": 2, "b": 3, "c": 4}).result(WAIT)

    assert [(e.key, e.op) for e in store.errors.errors()] == [("b", "write_batch"), ("c", "write_batch")]
    assert store.setting("c").cell.get() == 4
    assert fake_remote.settings == {"a": 1}
    selector.close()
