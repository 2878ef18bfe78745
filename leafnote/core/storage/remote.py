# leafnote/core/storage/remote.py
'''
Copyright 2025 Aaron Vose (avose@aaronvose.net)
Licensed under the LGPL v2.1; see the file 'LICENSE' for details.
'''
# Remote backend: the store lives behind an HTTP/JSON service.
#
# Wire protocol (all bodies JSON):
#   GET    /health
#   GET    /collections/{collection}              -> [record, ...]
#   GET    /collections/{collection}/{id}         -> record | 404
#   PUT    /collections/{collection}/{id}         record -> record
#   DELETE /collections/{collection}/{id}         -> 204 | 404
#   GET    /settings                              -> {key: value}
#   GET    /settings/{key}                        -> {"value": value} | 404
#   PUT    /settings/{key}                        {"value": value}
#
# The service is a plain record store. Validation, placement checks and
# cascades run here, in the client, so behaviour matches the local backends.
from __future__ import annotations

import threading
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import quote

import httpx

from leafnote.core.errors import (
    IOFailure, NotFound, NotReady, SchemaFailure, SettingsBatchError, Timeout, ValidationFailure,
)
from leafnote.core.items import now_iso
from leafnote.core.log import Log
from leafnote.core.storage.records import (
    cascade_plan, check_collection, check_references, encode_value, normalize_record,
    select, soft_delete_plan, supports_soft_delete, validate_setting_key,
)

__all__ = ["RemoteBackend"]

_MISSING = object()

class RemoteBackend:

    kind = "remote"

    def __init__(self, url: str, timeout: float = 10.0, transport: Optional[httpx.BaseTransport] = None,
                 headers: Optional[Mapping[str, str]] = None):
        self.url = url.rstrip("/")
        self.timeout = timeout
        self._lock = threading.RLock()
        self._client: Optional[httpx.Client] = httpx.Client(
            base_url=self.url,
            timeout=httpx.Timeout(timeout),
            transport=transport,
            headers=dict(headers or {}),
        )

    # ---------- transport ----------

    def _request(self, method: str, path: str, allow_missing: bool = False, **kwargs) -> Any:
        """
        Send one request and decode the JSON reply.
        Returns _MISSING for a 404 when allow_missing is set.
        """
        if self._client is None:
            raise NotReady(f"Remote store {self.url} is closed")
        try:
            resp = self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise Timeout(f"{method} {path} timed out after {self.timeout}s") from e
        except httpx.HTTPError as e:
            raise IOFailure(f"{method} {path} failed: {e}") from e

        if resp.status_code == 404 and allow_missing:
            return _MISSING
        if resp.status_code in (400, 409, 422):
            raise ValidationFailure(f"{method} {path} rejected: {resp.text}")
        if resp.status_code >= 400:
            raise IOFailure(f"{method} {path} returned HTTP {resp.status_code}")
        if resp.status_code == 204 or not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as e:
            raise IOFailure(f"{method} {path} returned invalid JSON") from e

    @staticmethod
    def _record_path(collection: str, record_id: str) -> str:
        return f"/collections/{collection}/{quote(record_id, safe='')}"

    # ---------- lifecycle ----------

    def ensure_schema(self) -> None:
        """Health check; the remote service owns its own schema."""
        with self._lock:
            try:
                self._request("GET", "/health")
            except ValidationFailure as e:
                raise SchemaFailure(f"Remote store {self.url} is not healthy: {e}") from e
            except IOFailure as e:
                if isinstance(e, Timeout):
                    raise
                raise SchemaFailure(f"Remote store {self.url} is not healthy: {e}") from e
            Log.debug(f"Remote store ready at {self.url}", 1)

    def close(self) -> None:
        with self._lock:
            if self._client is not None:
                self._client.close()
                self._client = None

    # ---------- records ----------

    def _lookup(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        rec = self._request("GET", self._record_path(collection, record_id), allow_missing=True)
        return None if rec is _MISSING else rec

    def _children_of(self, item_id: str) -> List[Dict[str, Any]]:
        return [r for r in self._list("items") if r.get("parent_id") == item_id]

    def _list(self, collection: str) -> List[Dict[str, Any]]:
        return list(self._request("GET", f"/collections/{collection}") or [])

    def get_record(self, collection: str, record_id: str) -> Dict[str, Any]:
        check_collection(collection)
        with self._lock:
            rec = self._lookup(collection, record_id)
        if rec is None:
            raise NotFound(collection, record_id)
        return rec

    def _store(self, collection: str, rec: Dict[str, Any]) -> Dict[str, Any]:
        stored = self._request("PUT", self._record_path(collection, rec["id"]), json=rec)
        return stored if isinstance(stored, dict) else rec

    def put_record(self, collection: str, record_id: str, record: Mapping[str, Any]) -> Dict[str, Any]:
        check_collection(collection)
        with self._lock:
            existing = self._lookup(collection, record_id)
            rec = normalize_record(collection, record_id, record, existing)
            check_references(collection, rec, self._lookup,
                             self._children_of if collection == "items" and existing else None)
            return self._store(collection, rec)

    def delete_record(self, collection: str, record_id: str, hard: bool = False) -> None:
        check_collection(collection)
        with self._lock:
            existing = self._lookup(collection, record_id)
            if existing is None:
                raise NotFound(collection, record_id)

            if not hard and supports_soft_delete(collection):
                now = now_iso()
                stamp, ids = soft_delete_plan(existing, self._children_of, now)
                for rid in ids:
                    rec = existing if rid == record_id else self._lookup(collection, rid)
                    if rec is not None:
                        self._store(collection, dict(rec, deleted_at=stamp, updated_at=now))
                return

            cache: Dict[str, List[Dict[str, Any]]] = {}

            def list_fn(coll):
                if coll not in cache:
                    cache[coll] = self._list(coll)
                return cache[coll]

            deletes, nulls = cascade_plan(collection, record_id, list_fn)
            for coll, rid, field_name in nulls:
                child = self._lookup(coll, rid)
                if child is not None:
                    self._store(coll, dict(child, **{field_name: None}))
            for coll, rid in deletes:
                self._request("DELETE", self._record_path(coll, rid), allow_missing=True)
            if self._request("DELETE", self._record_path(collection, record_id), allow_missing=True) is _MISSING:
                raise NotFound(collection, record_id)

    def list_records(self, collection: str, where=None, key=None) -> List[Dict[str, Any]]:
        check_collection(collection)
        with self._lock:
            records = self._list(collection)
        return select(records, where, key)

    # ---------- settings ----------

    def _setting_path(self, key: str) -> str:
        return f"/settings/{quote(key, safe='')}"

    def _read_setting(self, key: str) -> Any:
        body = self._request("GET", self._setting_path(key), allow_missing=True)
        if body is _MISSING:
            return _MISSING
        if not isinstance(body, dict) or "value" not in body:
            raise IOFailure(f"Malformed setting reply for {key!r}")
        return body["value"]

    def get_setting(self, key: str, default: Any = None) -> Any:
        validate_setting_key(key)
        with self._lock:
            value = self._read_setting(key)
        return default if value is _MISSING else value

    def set_setting(self, key: str, value: Any) -> None:
        validate_setting_key(key)
        encode_value(value)
        with self._lock:
            self._request("PUT", self._setting_path(key), json={"value": value})

    def get_multiple_settings(self, defaults: Mapping[str, Any]) -> Dict[str, Any]:
        for key in defaults:
            validate_setting_key(key)
        if not defaults:
            return {}
        with self._lock:
            stored = self._request("GET", "/settings") or {}
        return {k: stored.get(k, v) for k, v in defaults.items()}

    def set_multiple_settings(self, partial: Mapping[str, Any]) -> None:
        """
        Keys are written one by one (the service has no transactions). When
        a write fails, keys already written are put back to their previous
        values and SettingsBatchError reports what happened.
        """
        for key, value in partial.items():
            validate_setting_key(key)
            encode_value(value)
        if not partial:
            return

        with self._lock:
            previous = self._request("GET", "/settings") or {}
            applied: List[str] = []
            keys = list(partial)
            for i, key in enumerate(keys):
                try:
                    self._request("PUT", self._setting_path(key), json={"value": partial[key]})
                except IOFailure as e:
                    rolled_back, unrestored = self._rollback(applied, previous)
                    Log.debug(f"Settings batch failed at {key!r}: {e}", 0)
                    raise SettingsBatchError(
                        f"Batch settings write failed at {key!r}: {e}",
                        failed_keys=keys[i:],
                        rolled_back=rolled_back,
                        unrestored=unrestored,
                    ) from e
                applied.append(key)

    def _rollback(self, applied: List[str], previous: Mapping[str, Any]):
        rolled_back: List[str] = []
        unrestored: List[str] = []
        for key in reversed(applied):
            if key not in previous:
                # Settings are never deleted, so a new key can't be undone.
                unrestored.append(key)
                continue
            try:
                self._request("PUT", self._setting_path(key), json={"value": previous[key]})
                rolled_back.append(key)
            except IOFailure as e:
                Log.debug(f"Rollback of setting {key!r} failed: {e}", 0)
                unrestored.append(key)
        return rolled_back, unrestored

    def get_all_settings(self) -> Dict[str, Any]:
        with self._lock:
            stored = self._request("GET", "/settings") or {}
        return {k: stored[k] for k in sorted(stored)}
