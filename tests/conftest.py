'''
Copyright 2025 Aaron Vose (avose@aaronvose.net)
Licensed under the LGPL v2.1; see the file 'LICENSE' for details.
'''
import json

import httpx
import pytest

from leafnote.core.io_worker import IOWorker
from leafnote.core.storage.hybrid import HybridBackend
from leafnote.core.storage.remote import RemoteBackend
from leafnote.core.storage.single_file import SingleFileBackend
from leafnote.core.storage.sqlite_backend import SqliteBackend

REMOTE_URL = "http://leafnote.test"

class FakeRemoteStore:
    """In-memory stand-in for the remote record service, served through httpx.MockTransport."""

    def __init__(self):
        self.collections = {}
        self.settings = {}
        self.healthy = True
        self.timeout = False
        self.fail_setting_keys = set()
        self.requests = []

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append((request.method, request.url.path))
        if self.timeout:
            raise httpx.ReadTimeout("timed out", request=request)

        parts = request.url.path.strip("/").split("/")
        method = request.method

        if parts == ["health"]:
            return httpx.Response(200 if self.healthy else 503, json={"ok": self.healthy})

        if parts[0] == "collections" and len(parts) in (2, 3):
            store = self.collections.setdefault(parts[1], {})
            if len(parts) == 2:
                return httpx.Response(200, json=list(store.values()))
            rid = parts[2]
            if method == "GET":
                if rid not in store:
                    return httpx.Response(404, json={"error": "not found"})
                return httpx.Response(200, json=store[rid])
            if method == "PUT":
                store[rid] = json.loads(request.content)
                return httpx.Response(200, json=store[rid])
            if method == "DELETE":
                if store.pop(rid, None) is None:
                    return httpx.Response(404, json={"error": "not found"})
                return httpx.Response(204)

        if parts[0] == "settings":
            if len(parts) == 1:
                return httpx.Response(200, json=self.settings)
            key = parts[1]
            if method == "GET":
                if key not in self.settings:
                    return httpx.Response(404, json={"error": "not found"})
                return httpx.Response(200, json={"value": self.settings[key]})
            if method == "PUT":
                if key in self.fail_setting_keys:
                    return httpx.Response(500, json={"error": "boom"})
                self.settings[key] = json.loads(request.content)["value"]
                return httpx.Response(200, json={"value": self.settings[key]})

        return httpx.Response(404, json={"error": "no route"})

@pytest.fixture
def fake_remote():
    return FakeRemoteStore()

def make_backend(kind, tmp_path, fake_remote=None, **kwargs):
    if kind == "structured-database":
        return SqliteBackend(str(tmp_path / "store.db"), **kwargs)
    if kind == "single-file-document":
        return SingleFileBackend(str(tmp_path / "store.json"), **kwargs)
    if kind == "hybrid-file-per-item":
        return HybridBackend(str(tmp_path / "store"), **kwargs)
    if kind == "remote":
        return RemoteBackend(REMOTE_URL, transport=(fake_remote or FakeRemoteStore()).transport())
    raise ValueError(kind)

ALL_KINDS = ["structured-database", "single-file-document", "hybrid-file-per-item", "remote"]
LOCAL_KINDS = ["structured-database", "single-file-document", "hybrid-file-per-item"]

@pytest.fixture(params=ALL_KINDS)
def backend(request, tmp_path, fake_remote):
    b = make_backend(request.param, tmp_path, fake_remote)
    b.ensure_schema()
    yield b
    b.close()

@pytest.fixture(params=LOCAL_KINDS)
def local_backend(request, tmp_path):
    b = make_backend(request.param, tmp_path)
    b.ensure_schema()
    yield b
    b.close()

@pytest.fixture
def sqlite_backend(tmp_path):
    b = SqliteBackend(str(tmp_path / "store.db"))
    b.ensure_schema()
    yield b
    b.close()

@pytest.fixture
def worker():
    w = IOWorker(name="TestIOWorker")
    yield w
    w.shutdown()
