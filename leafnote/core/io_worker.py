# leafnote/core/io_worker.py
'''
Copyright 2025 Aaron Vose (avose@aaronvose.net)
Licensed under the LGPL v2.1; see the file 'LICENSE' for details.
'''
from __future__ import annotations

import threading
import queue
import traceback
from concurrent.futures import Future
from typing import Any, Callable, Optional

from leafnote.core.log import Log

__all__ = ["IOWorker"]

_STOP = object()

class IOWorker:
    """
    Single background thread for durable-tier tasks (backend reads/writes,
    readiness checks, git commits). Callers never block on it.

    Tasks run strictly in submission order, so two writes for the same
    settings key always reach the backend in the order they were issued.
    """

    def __init__(self, dispatch: Optional[Callable[..., Any]] = None, name: str = "IOWorker"):
        """
        Args:
            dispatch: how callbacks are delivered, e.g. a GUI toolkit's
                call-after function. Defaults to calling them directly on
                the worker thread.
        """
        self._dispatch = dispatch
        self._q: queue.Queue = queue.Queue()
        self._closed = False
        self._t = threading.Thread(target=self._run, name=name, daemon=True)
        self._t.start()

    def submit(self, fn, *args, callback=None, **kwargs) -> Future:
        """
        Queue a task and return a Future for its result.

        callback(result, error) runs after the task; error is None on
        success, otherwise an (exception, traceback_text) tuple.
        """
        fut: Future = Future()
        if self._closed:
            fut.set_exception(RuntimeError("IOWorker has been shut down"))
            return fut
        self._q.put((fn, args, kwargs, callback, fut))
        return fut

    def join(self) -> None:
        """Block until every queued task has finished."""
        self._q.join()

    def shutdown(self, wait: bool = True) -> None:
        """Finish queued work and stop the thread."""
        if self._closed:
            return
        self._closed = True
        self._q.put(_STOP)
        if wait:
            self._t.join()

    @property
    def pending(self) -> int:
        return self._q.unfinished_tasks

    def _deliver(self, cb, result, err):
        try:
            if self._dispatch is not None:
                self._dispatch(cb, result, err)
            else:
                cb(result, err)
        except Exception:
            Log.debug(f"IOWorker callback failed:\n{traceback.format_exc()}", 0)

    def _run(self):
        """Background thread main loop."""
        while True:
            task = self._q.get()
            if task is _STOP:
                self._q.task_done()
                break

            fn, args, kwargs, cb, fut = task
            result = None
            err = None

            try:
                result = fn(*args, **kwargs)
            except Exception as e:
                err = (e, traceback.format_exc())

            if cb:
                self._deliver(cb, result, err)
            elif err is not None:
                # No callback provided; keep the traceback for debugging.
                Log.debug(err[1].rstrip(), 0)

            # Resolve after the callback so waiters observe its effects.
            if err is None:
                fut.set_result(result)
            else:
                fut.set_exception(err[0])

            self._q.task_done()
