# leafnote/core/settings_cache.py
'''
Copyright 2025 Aaron Vose (avose@aaronvose.net)
Licensed under the LGPL v2.1; see the file 'LICENSE' for details.
'''
# Two-tier settings persistence.
#
# Every setting lives in a fast tier (an in-memory map, optionally mirrored
# to a small JSON cache file) and in the durable tier (the active storage
# backend). Callers only ever touch the fast tier; durable reads and writes
# run on the IO worker.
#
# Per key:
#
#     UNINITIALIZED --first get()/hydrate()--> HYDRATING --done--> SYNCED
#
# Hydration reads the durable value exactly once per process. It replaces
# the fast-tier value only if no explicit write happened first, and it moves
# the key to SYNCED even when it fails (the failure is reported on the error
# channel, never retried). Writes update the fast tier at once, notify
# subscribers, then queue the durable write; the single worker thread keeps
# durable writes in issue order.
from __future__ import annotations

import threading
from concurrent.futures import Future
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from leafnote.core.cells import ErrorChannel, SyncError, ValueCell
from leafnote.core.errors import SettingsBatchError
from leafnote.core.log import Log
from leafnote.core.storage.records import encode_value, validate_setting_key
from leafnote.utils.fs_atomic import atomic_write_json, read_json

__all__ = ["FastStore", "SyncState", "PersistedSetting", "SettingsStore"]

CACHE_PREFIX = "setting:"

# Marks "no durable value" during hydration.
_ABSENT = object()

def _resolved(value: Any = None) -> Future:
    fut: Future = Future()
    fut.set_result(value)
    return fut

class FastStore:
    """
    The fast tier: a dict, optionally mirrored to a JSON file so values
    survive a restart before the durable tier is reachable.
    """

    def __init__(self, path: Union[str, Path, None] = None):
        self.path = Path(path).expanduser() if path is not None else None
        self._values: Dict[str, Any] = {}
        self._lock = threading.Lock()
        if self.path is not None:
            try:
                data = read_json(self.path, {}) or {}
            except (ValueError, OSError) as e:
                Log.debug(f"Ignoring unreadable settings cache {self.path}: {e}", 0)
                data = {}
            for k, v in data.items():
                if k.startswith(CACHE_PREFIX):
                    self._values[k[len(CACHE_PREFIX):]] = v

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._values

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._values.get(key, default)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._values[key] = value
            if self.path is None:
                return
            snapshot = {CACHE_PREFIX + k: v for k, v in self._values.items()}
            try:
                atomic_write_json(self.path, snapshot)
            except OSError as e:
                # The cache file is an accelerator; the durable tier still gets the write.
                Log.debug(f"Settings cache write failed ({self.path}): {e}", 0)

class SyncState(Enum):
    UNINITIALIZED = "uninitialized"
    HYDRATING = "hydrating"
    SYNCED = "synced"

class PersistedSetting:
    """One settings key: an observable value backed by both tiers."""

    def __init__(self, key: str, default: Any, store: "SettingsStore"):
        self.key = validate_setting_key(key)
        self.default = default
        self._store = store
        self._lock = threading.RLock()
        self._state = SyncState.UNINITIALIZED
        self._explicit_write = False
        self._hydration: Optional[Future] = None
        self.cell: ValueCell = ValueCell(store.fast.get(key, default))

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def synced(self) -> bool:
        return self._state is SyncState.SYNCED

    def subscribe(self, fn: Callable[[Any], None]) -> Callable[[], None]:
        return self.cell.subscribe(fn)

    # ---------- reads ----------

    def get(self) -> Any:
        """Fast-tier value; the first call also starts hydration."""
        self.hydrate()
        return self.cell.get()

    def hydrate(self) -> Future:
        """
        Start the one-time durable read (if not started). The returned Future
        resolves to the value after hydration; it never raises.
        """
        with self._lock:
            if self._state is not SyncState.UNINITIALIZED:
                return self._hydration or _resolved(self.cell.get())
            self._state = SyncState.HYDRATING
            fut: Future = Future()
            self._hydration = fut

        def done(result, err):
            self._finish_hydration(result, err)
            fut.set_result(self.cell.get())

        self._store.worker.submit(self._read_durable, callback=done)
        return fut

    def _claim(self, future: Future) -> bool:
        """Take part in a bulk hydration; False if this key already hydrated or is hydrating."""
        with self._lock:
            if self._state is not SyncState.UNINITIALIZED:
                return False
            self._state = SyncState.HYDRATING
            self._hydration = future
            return True

    def _read_durable(self) -> Any:
        return self._store.selector.active().get_setting(self.key, _ABSENT)

    def _finish_hydration(self, value: Any, err) -> None:
        with self._lock:
            self._state = SyncState.SYNCED
            if err is not None:
                self._store.errors.report(self.key, "hydrate", err[0])
                return
            if value is _ABSENT or self._explicit_write:
                Log.debug(f"Hydration of '{self.key}' kept the fast-tier value", 2)
                return
            self._store.fast.set(self.key, value)
            self.cell.set(value)

    # ---------- writes ----------

    def _apply_local(self, update: Any) -> Any:
        with self._lock:
            value = update(self.cell.get()) if callable(update) else update
            encode_value(value)
            self._explicit_write = True
            self._store.fast.set(self.key, value)
            self.cell.set(value)
            return value

    def set(self, update: Any) -> Future:
        """
        Set a value, or apply update(previous) when `update` is callable.
        Returns the Future of the durable write; callers need not wait on it.
        """
        value = self._apply_local(update)
        return self._store.worker.submit(
            self._write_durable, value,
            callback=lambda result, err: self._finish_write(err),
        )

    def _write_durable(self, value: Any) -> None:
        self._store.selector.active().set_setting(self.key, value)

    def _finish_write(self, err) -> None:
        if err is not None:
            self._store.errors.report(self.key, "write", err[0])

class SettingsStore:
    """
    All persisted settings of the process, sharing one fast tier, one IO
    worker and one error channel. `status` holds the most recent durable
    failure (None while everything has succeeded).
    """

    def __init__(self, selector, worker, fast: Optional[FastStore] = None,
                 errors: Optional[ErrorChannel] = None):
        self.selector = selector
        self.worker = worker
        self.fast = fast or FastStore()
        self.errors = errors or ErrorChannel()
        self.status: ValueCell = ValueCell(None)
        self.errors.subscribe(self.status.set)
        self._settings: Dict[str, PersistedSetting] = {}
        self._lock = threading.Lock()

    def setting(self, key: str, default: Any = None) -> PersistedSetting:
        with self._lock:
            s = self._settings.get(key)
            if s is None:
                s = PersistedSetting(key, default, self)
                self._settings[key] = s
            return s

    def get(self, key: str, default: Any = None) -> Any:
        return self.setting(key, default).get()

    def set(self, key: str, value: Any) -> Future:
        return self.setting(key).set(value)

    def get_many(self, defaults: Mapping[str, Any]) -> Dict[str, Any]:
        return {k: self.get(k, d) for k, d in defaults.items()}

    def set_many(self, partial: Mapping[str, Any]) -> List[Future]:
        """Per-key writes; each key keeps its own durable ordering."""
        return [self.set(k, v) for k, v in partial.items()]

    def load_all(self, defaults: Mapping[str, Any]) -> Future:
        """
        Hydrate every listed key that has not hydrated yet, in one durable
        round trip. Keys already hydrating or synced are left alone.
        """
        fut: Future = Future()
        claimed = [s for s in (self.setting(k, d) for k, d in defaults.items()) if s._claim(fut)]
        if not claimed:
            fut.set_result({})
            return fut

        def read():
            return self.selector.active().get_multiple_settings({s.key: _ABSENT for s in claimed})

        def done(result, err):
            for s in claimed:
                s._finish_hydration(result.get(s.key, _ABSENT) if err is None else None, err)
            fut.set_result({s.key: s.cell.get() for s in claimed})

        self.worker.submit(read, callback=done)
        return fut

    def save_all(self, partial: Mapping[str, Any]) -> Future:
        """Fast-tier writes now, then one batched durable write."""
        values = {k: self.setting(k)._apply_local(v) for k, v in partial.items()}

        def write():
            self.selector.active().set_multiple_settings(values)

        def done(result, err):
            if err is None:
                return
            exc = err[0]
            keys = exc.failed_keys if isinstance(exc, SettingsBatchError) else list(values)
            for key in keys:
                self.errors.report(key, "write_batch", exc)

        return self.worker.submit(write, callback=done)

    def last_error(self) -> Optional[SyncError]:
        return self.status.get()

    def wait(self) -> None:
        """Block until every queued durable read and write has finished."""
        self.worker.join()
