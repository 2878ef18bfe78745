# leafnote/core/storage/factory.py
'''
Copyright 2025 Aaron Vose (avose@aaronvose.net)
Licensed under the LGPL v2.1; see the file 'LICENSE' for details.
'''
from __future__ import annotations

import threading
from concurrent.futures import Future
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from leafnote.core.cells import ErrorChannel
from leafnote.core.config import StorageConfig
from leafnote.core.errors import NotReady, StoreError, UnsupportedBackend, ValidationFailure
from leafnote.core.log import Log
from leafnote.core.storage.hybrid import HybridBackend
from leafnote.core.storage.remote import RemoteBackend
from leafnote.core.storage.single_file import SingleFileBackend
from leafnote.core.storage.sqlite_backend import SqliteBackend

__all__ = [
    "BackendKind",
    "available_backends",
    "validate_config",
    "create_backend",
    "BackendSelector",
]

class BackendKind(str, Enum):
    STRUCTURED_DATABASE = "structured-database"
    SINGLE_FILE_DOCUMENT = "single-file-document"
    HYBRID_FILE_PER_ITEM = "hybrid-file-per-item"
    REMOTE = "remote"

DESCRIPTIONS: Dict[BackendKind, str] = {
    BackendKind.STRUCTURED_DATABASE: "SQLite database with schema migrations",
    BackendKind.SINGLE_FILE_DOCUMENT: "One JSON document, rewritten atomically",
    BackendKind.HYBRID_FILE_PER_ITEM: "Directory with one folder per item (diff and git friendly)",
    BackendKind.REMOTE: "HTTP/JSON service",
}

def available_backends() -> List[str]:
    return [kind.value for kind in BackendKind]

def validate_config(config: StorageConfig) -> BackendKind:
    """Check a configuration before anything is opened."""
    try:
        kind = BackendKind(config.backend)
    except ValueError:
        raise UnsupportedBackend(
            f"Unknown backend {config.backend!r}; available: {', '.join(available_backends())}"
        ) from None
    if kind is BackendKind.REMOTE:
        if not config.url:
            raise ValidationFailure("The remote backend needs a url")
    elif not config.path:
        raise ValidationFailure(f"The {kind.value} backend needs a path")
    if config.timeout <= 0:
        raise ValidationFailure("timeout must be positive")
    return kind

def _make_history(config: StorageConfig, worker):
    try:
        from leafnote.core.history import HistoryManager
    except ImportError as e:
        # GitPython refuses to import without a git executable.
        Log.debug(f"History disabled, GitPython unavailable: {e}", 0)
        return None
    return HistoryManager(config.path, io_worker=worker)

def _sqlite(config: StorageConfig, worker, transport):
    return SqliteBackend(config.path, seed_defaults=config.seed_defaults, timeout=config.timeout)

def _single_file(config: StorageConfig, worker, transport):
    return SingleFileBackend(config.path, seed_defaults=config.seed_defaults)

def _hybrid(config: StorageConfig, worker, transport):
    history = _make_history(config, worker) if config.git_history else None
    return HybridBackend(config.path, seed_defaults=config.seed_defaults, history=history)

def _remote(config: StorageConfig, worker, transport):
    return RemoteBackend(config.url, timeout=config.timeout, transport=transport)

_BUILDERS: Dict[BackendKind, Callable[..., Any]] = {
    BackendKind.STRUCTURED_DATABASE: _sqlite,
    BackendKind.SINGLE_FILE_DOCUMENT: _single_file,
    BackendKind.HYBRID_FILE_PER_ITEM: _hybrid,
    BackendKind.REMOTE: _remote,
}

def create_backend(config: StorageConfig, worker=None, transport=None):
    """
    Build (but don't open) the backend `config` names.

    Args:
        worker: IOWorker used for background git commits (hybrid only).
        transport: httpx transport override (remote only).
    """
    kind = validate_config(config)
    return _BUILDERS[kind](config, worker, transport)

class BackendSelector:
    """
    Owns the active backend and swaps it safely.

    A new backend only starts serving calls after its ensure_schema()
    succeeded. While a switch is running, active() raises NotReady; if the
    readiness check fails, the previous backend stays active and the error
    is reported on `errors` (key "backend"). An asynchronous switch takes
    its place in the worker's queue: work queued before it still runs
    against the previous backend, work queued after it against the new one.
    """

    def __init__(self, worker=None, factory: Callable[..., Any] = create_backend):
        self.worker = worker
        self.factory = factory
        self.errors = ErrorChannel()
        self.last_error: Optional[BaseException] = None
        self._lock = threading.Lock()
        self._backend = None
        self._config: Optional[StorageConfig] = None
        self._queued = False
        self._switching = False

    # ---------- state ----------

    def active(self):
        with self._lock:
            if self._switching:
                raise NotReady("Backend switch in progress")
            if self._backend is None:
                raise NotReady("No backend is active")
            return self._backend

    @property
    def ready(self) -> bool:
        with self._lock:
            return self._backend is not None and not self._switching

    @property
    def kind(self) -> Optional[str]:
        with self._lock:
            return self._backend.kind if self._backend is not None else None

    @property
    def config(self) -> Optional[StorageConfig]:
        return self._config

    # ---------- switching ----------

    def _begin(self, config: StorageConfig) -> None:
        validate_config(config)
        with self._lock:
            if self._switching or self._queued:
                raise NotReady("Backend switch already in progress")
            self._queued = True

    def _activate(self, config: StorageConfig):
        # Work queued on the worker before the switch has already run against
        # the previous backend by the time this starts.
        with self._lock:
            self._queued = False
            self._switching = True
        new_backend = None
        try:
            new_backend = self.factory(config, worker=self.worker)
            new_backend.ensure_schema()
        except StoreError as e:
            if new_backend is not None:
                new_backend.close()
            with self._lock:
                self._switching = False
                self.last_error = e
            self.errors.report("backend", "switch", e)
            Log.debug(f"Switch to {config.backend} failed, keeping {self.kind}", 0)
            raise
        except BaseException:
            with self._lock:
                self._switching = False
            raise

        with self._lock:
            previous = self._backend
            self._backend = new_backend
            self._config = config
            self._switching = False
            self.last_error = None
        if previous is not None and previous is not new_backend:
            previous.close()
        Log.debug(f"Active backend: {new_backend.kind}", 0)
        return new_backend

    def switch(self, config: StorageConfig):
        """Switch synchronously. Returns the new backend or raises."""
        self._begin(config)
        return self._activate(config)

    def switch_async(self, config: StorageConfig) -> Future:
        """
        Queue a switch on the IO worker. While it runs, active() raises
        NotReady. Configuration errors are raised here, synchronously.
        """
        if self.worker is None:
            raise ValidationFailure("switch_async needs an IO worker")
        self._begin(config)
        return self.worker.submit(self._activate, config)

    def close(self) -> None:
        with self._lock:
            backend, self._backend = self._backend, None
        if backend is not None:
            backend.close()
