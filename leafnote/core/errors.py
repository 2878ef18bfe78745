# leafnote/core/errors.py
'''
Copyright 2025 Aaron Vose (avose@aaronvose.net)
Licensed under the LGPL v2.1; see the file 'LICENSE' for details.
'''
from __future__ import annotations

from typing import Iterable, List, Optional

__all__ = [
    "StoreError",
    "SchemaFailure",
    "IOFailure",
    "Timeout",
    "SettingsBatchError",
    "ValidationFailure",
    "NotFound",
    "UnsupportedBackend",
    "CycleDetected",
    "NotReady",
]

class StoreError(Exception):
    """Base class for every error raised by the store"""
    pass

class SchemaFailure(StoreError):
    """Backend structure could not be created or upgraded; the backend is unusable"""
    pass

class IOFailure(StoreError):
    """A durable-tier operation failed"""
    pass

class Timeout(IOFailure):
    """A remote operation timed out; safe to retry"""
    retryable = True

class SettingsBatchError(IOFailure):
    """A non-transactional batch settings write failed part way"""

    def __init__(self, message: str, failed_keys: Iterable[str],
                 rolled_back: Iterable[str] = (), unrestored: Iterable[str] = ()):
        super().__init__(message)
        self.failed_keys: List[str] = list(failed_keys)
        self.rolled_back: List[str] = list(rolled_back)
        self.unrestored: List[str] = list(unrestored)

class ValidationFailure(StoreError, ValueError):
    """A record or configuration was rejected before reaching a backend"""
    pass

class NotFound(StoreError, LookupError):
    """Read or delete miss"""

    def __init__(self, collection: str, record_id: str):
        super().__init__(f"{collection}/{record_id} not found")
        self.collection = collection
        self.record_id = record_id

class UnsupportedBackend(StoreError):
    """Configuration names a backend that is not installed"""
    pass

class CycleDetected(StoreError):
    """The parent chain loops back on itself"""

    def __init__(self, item_id: str, path: Optional[List[str]] = None):
        chain = " -> ".join(path or [])
        super().__init__(f"cycle detected at {item_id}" + (f" ({chain})" if chain else ""))
        self.item_id = item_id
        self.path = list(path or [])

class NotReady(StoreError):
    """The active backend is still switching or failed its readiness check; retry later"""
    pass
