# leafnote/core/cells.py
'''
Copyright 2025 Aaron Vose (avose@aaronvose.net)
Licensed under the LGPL v2.1; see the file 'LICENSE' for details.
'''
from __future__ import annotations

import threading
import traceback
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Generic, List, Optional, TypeVar

from leafnote.core.log import Log

__all__ = ["ValueCell", "SyncError", "ErrorChannel"]

T = TypeVar("T")

def _notify(subscribers, *args) -> None:
    for fn in subscribers:
        try:
            fn(*args)
        except Exception:
            Log.debug(f"Subscriber failed:\n{traceback.format_exc()}", 0)

class ValueCell(Generic[T]):
    """
    Observable value. Subscribers run synchronously on the setting thread,
    after the value has changed, outside the cell's lock.
    """

    def __init__(self, initial: T):
        self._value = initial
        self._lock = threading.Lock()
        self._subscribers: List[Callable[[T], None]] = []

    def get(self) -> T:
        with self._lock:
            return self._value

    def set(self, value: T) -> None:
        with self._lock:
            self._value = value
            subscribers = list(self._subscribers)
        _notify(subscribers, value)

    def update(self, fn: Callable[[T], T]) -> T:
        """Replace the value with fn(current) atomically; returns the new value."""
        with self._lock:
            self._value = fn(self._value)
            value = self._value
            subscribers = list(self._subscribers)
        _notify(subscribers, value)
        return value

    def subscribe(self, fn: Callable[[T], None]) -> Callable[[], None]:
        """Register fn(value); returns a function that unsubscribes it."""
        with self._lock:
            self._subscribers.append(fn)

        def unsubscribe():
            with self._lock:
                if fn in self._subscribers:
                    self._subscribers.remove(fn)
        return unsubscribe

@dataclass(frozen=True)
class SyncError:
    """One durable-tier failure: which key, which operation, what went wrong."""
    key: str
    op: str
    error: BaseException
    when: str = field(default_factory=lambda: datetime.now().strftime("%m/%d/%Y %H:%M:%S"))

class ErrorChannel:
    """Bounded record of durable-tier failures, per key, with subscribers."""

    def __init__(self, limit: int = 100):
        self.limit = limit
        self._errors: List[SyncError] = []
        self._lock = threading.Lock()
        self._subscribers: List[Callable[[SyncError], None]] = []

    def report(self, key: str, op: str, error: BaseException) -> SyncError:
        entry = SyncError(key, op, error)
        Log.debug(f"Durable {op} failed for '{key}': {error}", 0)
        with self._lock:
            self._errors.append(entry)
            del self._errors[:-self.limit]
            subscribers = list(self._subscribers)
        _notify(subscribers, entry)
        return entry

    def errors(self, key: Optional[str] = None) -> List[SyncError]:
        with self._lock:
            return [e for e in self._errors if key is None or e.key == key]

    def last(self, key: Optional[str] = None) -> Optional[SyncError]:
        found = self.errors(key)
        return found[-1] if found else None

    def clear(self) -> None:
        with self._lock:
            self._errors.clear()

    def subscribe(self, fn: Callable[[SyncError], None]) -> Callable[[], None]:
        with self._lock:
            self._subscribers.append(fn)

        def unsubscribe():
            with self._lock:
                if fn in self._subscribers:
                    self._subscribers.remove(fn)
        return unsubscribe
