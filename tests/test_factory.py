'''
Copyright 2025 Aaron Vose (avose@aaronvose.net)
Licensed under the LGPL v2.1; see the file 'LICENSE' for details.
'''
import json
import threading

import pytest

from leafnote.core.config import StorageConfig, default_config, load_config, save_config
from leafnote.core.errors import NotReady, SchemaFailure, UnsupportedBackend, ValidationFailure
from leafnote.core.storage.factory import (
    BackendSelector, available_backends, create_backend, validate_config,
)
from leafnote.core.storage.hybrid import HybridBackend
from leafnote.core.storage.single_file import SingleFileBackend
from leafnote.core.storage.sqlite_backend import SqliteBackend

WAIT = 5

def _sqlite(tmp_path, name="a.db"):
    return StorageConfig(backend="structured-database", path=str(tmp_path / name))

def _document(tmp_path, name="b.json"):
    return StorageConfig(backend="single-file-document", path=str(tmp_path / name))

# ---------- factory ----------

def test_available_backends():
    assert available_backends() == [
        "structured-database", "single-file-document", "hybrid-file-per-item", "remote",
    ]

@pytest.mark.parametrize("config, error", [
    (StorageConfig(backend="cloud-magic", path="x"), UnsupportedBackend),
    (StorageConfig(backend="structured-database"), ValidationFailure),
    (StorageConfig(backend="remote"), ValidationFailure),
    (StorageConfig(backend="single-file-document", path="x", timeout=0), ValidationFailure),
])
def test_validate_config_errors(config, error):
    with pytest.raises(error):
        validate_config(config)

def test_create_backend_builds_without_opening(tmp_path):
    assert isinstance(create_backend(_sqlite(tmp_path)), SqliteBackend)
    assert isinstance(create_backend(_document(tmp_path)), SingleFileBackend)
    hybrid = create_backend(StorageConfig(backend="hybrid-file-per-item", path=str(tmp_path / "h")))
    assert isinstance(hybrid, HybridBackend)
    assert hybrid.history is None
    assert not (tmp_path / "a.db").exists()
    assert not (tmp_path / "h").exists()

# ---------- selector ----------

def test_nothing_active_is_not_ready():
    selector = BackendSelector()
    assert not selector.ready
    with pytest.raises(NotReady):
        selector.active()

def test_switch_activates_and_closes_previous(tmp_path):
    selector = BackendSelector()
    first = selector.switch(_sqlite(tmp_path))
    first.set_setting("theme", "light")

    second = selector.switch(_document(tmp_path))
    assert selector.active() is second
    assert selector.kind == "single-file-document"
    assert selector.config.path == str(tmp_path / "b.json")
    with pytest.raises(NotReady):
        first.get_setting("theme")
    selector.close()

def test_failed_switch_keeps_previous_backend(tmp_path):
    selector = BackendSelector()
    first = selector.switch(_sqlite(tmp_path))

    bad = tmp_path / "bad.json"
    bad.write_text("{{{", encoding="utf-8")
    with pytest.raises(SchemaFailure):
        selector.switch(_document(tmp_path, "bad.json"))

    assert selector.active() is first
    assert isinstance(selector.last_error, SchemaFailure)
    err = selector.errors.last("backend")
    assert err.op == "switch"
    first.set_setting("still", "works")
    selector.close()

def test_async_switch_reports_not_ready_until_done(tmp_path, worker):
    started = threading.Event()
    release = threading.Event()

    def gated_factory(config, worker=None):
        started.set()
        release.wait(WAIT)
        return create_backend(config, worker)

    selector = BackendSelector(worker)
    old = selector.switch(_document(tmp_path))
    old.set_setting("theme", "from-document")

    selector.factory = gated_factory
    fut = selector.switch_async(_sqlite(tmp_path))
    assert started.wait(WAIT)

    assert not selector.ready
    with pytest.raises(NotReady):
        selector.active()
    with pytest.raises(NotReady):
        selector.switch_async(_document(tmp_path))

    release.set()
    backend = fut.result(WAIT)
    assert selector.active() is backend
    assert selector.kind == "structured-database"
    assert selector.active().get_setting("theme") is None
    assert selector.ready
    selector.close()

def test_async_switch_needs_worker(tmp_path):
    with pytest.raises(ValidationFailure):
        BackendSelector().switch_async(_sqlite(tmp_path))

def test_invalid_config_rejected_before_switching(tmp_path):
    selector = BackendSelector()
    first = selector.switch(_sqlite(tmp_path))
    with pytest.raises(UnsupportedBackend):
        selector.switch(StorageConfig(backend="nope", path="x"))
    assert selector.active() is first
    selector.close()

# ---------- config ----------

def test_config_save_and_load(tmp_path):
    path = tmp_path / "config.json"
    config = StorageConfig(backend="remote", url="http://x", timeout=3.5)
    save_config(config, path)
    assert json.loads(path.read_text(encoding="utf-8"))["url"] == "http://x"
    assert load_config(path) == config

def test_missing_config_file_gives_defaults(tmp_path):
    config = load_config(tmp_path / "absent.json")
    assert config.backend == "structured-database"
    assert config.path.endswith("leafnote.db")

def test_default_config_uses_data_dir(tmp_path):
    assert default_config(tmp_path).path == str(tmp_path / "leafnote.db")

@pytest.mark.parametrize("data", [
    {"backend": "remote", "colour": "blue"},
    {"timeout": -1},
    {"timeout": True},
    ["not", "a", "mapping"],
])
def test_bad_config_rejected(data):
    with pytest.raises(ValidationFailure):
        StorageConfig.from_dict(data)

def test_malformed_config_file(tmp_path):
    path = tmp_path / "config.json"
    path.write_text("{", encoding="utf-8")
    with pytest.raises(ValidationFailure):
        load_config(path)
