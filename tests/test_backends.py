'''
Copyright 2025 Aaron Vose (avose@aaronvose.net)
Licensed under the LGPL v2.1; see the file 'LICENSE' for details.
'''
import pytest

from conftest import LOCAL_KINDS, make_backend
from leafnote.core.errors import NotFound, StoreError, ValidationFailure

def _strip(rec):
    return {k: v for k, v in rec.items() if k not in ("created_at", "updated_at", "deleted_at")}

def _tree(backend):
    backend.put_record("items", "b1", {"type": "book", "title": "Book"})
    backend.put_record("items", "s1", {"type": "section", "title": "Section", "parent_id": "b1"})
    backend.put_record("items", "n1", {"type": "note", "title": "Note", "parent_id": "s1", "sort_order": 2})

# ---------- records ----------

def test_put_then_get_round_trip(backend):
    rec = backend.put_record("items", "n1", {
        "type": "note",
        "title": "Hello",
        "content": "<p>hi</p>",
        "metadata": {"icon": "star", "tags": ("a", "b")},
    })
    got = backend.get_record("items", "n1")
    assert got == rec
    assert got["title"] == "Hello"
    assert got["metadata"] == {"icon": "star", "tags": ["a", "b"]}
    assert got["sort_order"] == 0
    assert got["parent_id"] is None
    assert got["deleted_at"] is None
    assert got["created_at"] and got["updated_at"]

def test_update_preserves_created_at_and_unspecified_fields(backend):
    first = backend.put_record("items", "n1", {"type": "note", "title": "One", "content": "body"})
    second = backend.put_record("items", "n1", {"title": "Two"})
    assert second["created_at"] == first["created_at"]
    assert second["updated_at"] >= first["updated_at"]
    assert second["content"] == "body"
    assert second["title"] == "Two"

def test_returned_records_are_copies(backend):
    backend.put_record("items", "n1", {"type": "note", "metadata": {"k": 1}})
    got = backend.get_record("items", "n1")
    got["metadata"]["k"] = 99
    assert backend.get_record("items", "n1")["metadata"] == {"k": 1}

def test_get_missing_raises_not_found(backend):
    with pytest.raises(NotFound) as info:
        backend.get_record("items", "nope")
    assert isinstance(info.value, LookupError)
    assert isinstance(info.value, StoreError)
    assert str(info.value) == "items/nope not found"

@pytest.mark.parametrize("collection, record_id, record", [
    ("items", "n1", {"type": "note", "colour": "red"}),
    ("items", "n1", {"type": "note", "sort_order": "1"}),
    ("items", "n1", {"type": "note", "sort_order": True}),
    ("items", "n1", {"type": "widget"}),
    ("items", "n1", {"type": "note", "title": None}),
    ("items", "n1", {"type": "note", "metadata": {"bad": object()}}),
    ("items", "-leading-dash", {"type": "note"}),
    ("items", "n1", {"id": "other", "type": "note"}),
    ("widgets", "w1", {}),
    ("tags", "t1", {"color": "#fff"}),
    ("relationships", "r1", {"source_id": "x", "target_id": "y", "kind": "friend"}),
])
def test_validation_failures(backend, collection, record_id, record):
    with pytest.raises(ValidationFailure):
        backend.put_record(collection, record_id, record)

def test_hierarchy_rules(backend):
    backend.put_record("items", "b1", {"type": "book"})
    backend.put_record("items", "s1", {"type": "section", "parent_id": "b1"})
    backend.put_record("items", "n1", {"type": "note", "parent_id": "s1"})
    backend.put_record("items", "n2", {"type": "note", "parent_id": "b1"})
    backend.put_record("items", "s2", {"type": "section"})

    with pytest.raises(ValidationFailure):
        backend.put_record("items", "b2", {"type": "book", "parent_id": "b1"})
    with pytest.raises(ValidationFailure):
        backend.put_record("items", "s3", {"type": "section", "parent_id": "s1"})
    with pytest.raises(ValidationFailure) as info:
        backend.put_record("items", "n3", {"type": "note", "parent_id": "n1"})
    assert "Valid locations" in str(info.value)

def test_type_change_must_keep_children_valid(backend):
    _tree(backend)
    with pytest.raises(ValidationFailure):
        backend.put_record("items", "s1", {"type": "note"})
    assert backend.get_record("items", "s1")["type"] == "section"

def test_parent_must_exist_and_not_be_deleted(backend):
    with pytest.raises(ValidationFailure):
        backend.put_record("items", "n1", {"type": "note", "parent_id": "ghost"})
    backend.put_record("items", "b1", {"type": "book"})
    backend.delete_record("items", "b1")
    with pytest.raises(ValidationFailure):
        backend.put_record("items", "n1", {"type": "note", "parent_id": "b1"})

def test_references_must_exist(backend):
    backend.put_record("items", "n1", {"type": "note"})
    with pytest.raises(ValidationFailure):
        backend.put_record("item_tags", "it1", {"item_id": "n1", "tag_id": "missing"})
    with pytest.raises(ValidationFailure):
        backend.put_record("attachments", "a1", {"item_id": "missing", "filename": "x.png"})

# ---------- delete ----------

def test_soft_delete_keeps_item(backend):
    backend.put_record("items", "n1", {"type": "note"})
    backend.delete_record("items", "n1")
    rec = backend.get_record("items", "n1")
    assert rec["deleted_at"] is not None

    backend.delete_record("items", "n1")
    assert backend.get_record("items", "n1")["deleted_at"] == rec["deleted_at"]
    assert [r["id"] for r in backend.list_records("items")] == ["n1"]

def test_soft_delete_marks_live_descendants(backend):
    _tree(backend)
    backend.put_record("items", "n2", {"type": "note", "parent_id": "s1"})
    backend.delete_record("items", "b1")

    stamp = backend.get_record("items", "b1")["deleted_at"]
    assert stamp is not None
    assert [r["deleted_at"] for r in backend.list_records("items")] == [stamp] * 4
    assert backend.list_records("items", {"deleted_at": None}) == []

    # Children of a deleted parent are still writable while deleted.
    assert backend.put_record("items", "n1", {"title": "Edited"})["title"] == "Edited"
    with pytest.raises(ValidationFailure):
        backend.put_record("items", "n1", {"deleted_at": None})

def test_collections_without_deleted_at_are_removed(backend):
    backend.put_record("tags", "t1", {"name": "work"})
    backend.delete_record("tags", "t1")
    with pytest.raises(NotFound):
        backend.get_record("tags", "t1")

def test_hard_delete_cascades_and_orphans_children(backend):
    _tree(backend)
    backend.put_record("items", "n2", {"type": "note"})
    backend.put_record("tags", "t1", {"name": "work"})
    backend.put_record("item_tags", "it1", {"item_id": "s1", "tag_id": "t1"})
    backend.put_record("attachments", "a1", {"item_id": "s1", "filename": "x.png", "mime_type": "image/png", "size": 10})
    backend.put_record("versions", "v1", {"item_id": "s1", "title": "old"})
    backend.put_record("relationships", "r1", {"source_id": "n2", "target_id": "s1", "kind": "reference"})
    backend.put_record("relationships", "r2", {"source_id": "n2", "target_id": "n1"})

    backend.delete_record("items", "s1", hard=True)

    with pytest.raises(NotFound):
        backend.get_record("items", "s1")
    assert backend.get_record("items", "n1")["parent_id"] is None
    for collection, rid in [("item_tags", "it1"), ("attachments", "a1"), ("versions", "v1"), ("relationships", "r1")]:
        with pytest.raises(NotFound):
            backend.get_record(collection, rid)
    assert backend.get_record("relationships", "r2")["kind"] == "related"
    assert backend.get_record("tags", "t1")["name"] == "work"

def test_deleting_tag_removes_links(backend):
    backend.put_record("items", "n1", {"type": "note"})
    backend.put_record("tags", "t1", {"name": "work"})
    backend.put_record("item_tags", "it1", {"item_id": "n1", "tag_id": "t1"})
    backend.delete_record("tags", "t1")
    assert backend.list_records("item_tags") == []
    assert backend.get_record("items", "n1")["id"] == "n1"

def test_delete_missing_raises_not_found(backend):
    with pytest.raises(NotFound):
        backend.delete_record("items", "ghost")
    with pytest.raises(NotFound):
        backend.delete_record("tags", "ghost", hard=True)

# ---------- listing ----------

def test_list_records_filter_and_order(backend):
    _tree(backend)
    backend.put_record("items", "a0", {"type": "note", "parent_id": "b1", "sort_order": 5})

    assert [r["id"] for r in backend.list_records("items")] == ["a0", "b1", "n1", "s1"]
    assert [r["id"] for r in backend.list_records("items", {"parent_id": "b1"})] == ["a0", "s1"]
    notes = backend.list_records("items", lambda r: r["type"] == "note", key=lambda r: -r["sort_order"])
    assert [r["id"] for r in notes] == ["a0", "n1"]
    assert backend.list_records("tags") == []

# ---------- settings ----------

def test_settings_round_trip(backend):
    assert backend.get_setting("theme", "dark") == "dark"
    backend.set_setting("theme", "light")
    backend.set_setting("editor", {"font_size": 14, "wrap": True, "rulers": (80, 100)})
    assert backend.get_setting("theme", "dark") == "light"
    assert backend.get_setting("editor") == {"font_size": 14, "wrap": True, "rulers": [80, 100]}

def test_multiple_settings(backend):
    backend.set_multiple_settings({"theme": "light", "layout": {"sidebar": 300}})
    assert backend.get_multiple_settings({"theme": "dark", "layout": {}, "missing": 7}) == {
        "theme": "light",
        "layout": {"sidebar": 300},
        "missing": 7,
    }
    assert backend.get_all_settings() == {"layout": {"sidebar": 300}, "theme": "light"}
    assert list(backend.get_all_settings()) == ["layout", "theme"]

def test_invalid_settings_rejected(backend):
    with pytest.raises(ValidationFailure):
        backend.set_setting("", 1)
    with pytest.raises(ValidationFailure):
        backend.set_setting("bad", {1, 2})
    with pytest.raises(ValidationFailure):
        backend.set_multiple_settings({"ok": 1, "bad": object()})
    assert backend.get_setting("ok") is None

# ---------- parity ----------

def _scenario(backend):
    _tree(backend)
    backend.put_record("items", "n2", {"type": "note", "parent_id": "b1", "sort_order": 1, "metadata": {"pin": True}})
    backend.put_record("tags", "t1", {"name": "todo", "color": "#f00"})
    backend.put_record("item_tags", "it1", {"item_id": "n2", "tag_id": "t1"})
    backend.delete_record("items", "n1")
    backend.delete_record("items", "s1", hard=True)
    backend.set_multiple_settings({"theme": "light", "zoom": 1.25})
    return {
        name: [_strip(r) for r in backend.list_records(name)]
        for name in ("items", "tags", "item_tags")
    }, backend.get_all_settings(), backend.get_record("items", "n1")["deleted_at"] is not None

EXPECTED_SCENARIO = (
    {
        "items": [
            {"id": "b1", "type": "book", "title": "Book", "content": "", "content_plaintext": "",
             "parent_id": None, "sort_order": 0, "metadata": {}},
            {"id": "n1", "type": "note", "title": "Note", "content": "", "content_plaintext": "",
             "parent_id": None, "sort_order": 2, "metadata": {}},
            {"id": "n2", "type": "note", "title": "Untitled", "content": "", "content_plaintext": "",
             "parent_id": "b1", "sort_order": 1, "metadata": {"pin": True}},
        ],
        "tags": [{"id": "t1", "name": "todo", "color": "#f00"}],
        "item_tags": [{"id": "it1", "item_id": "n2", "tag_id": "t1"}],
    },
    {"theme": "light", "zoom": 1.25},
    True,
)

def test_all_backends_behave_identically(backend):
    assert _scenario(backend) == EXPECTED_SCENARIO

@pytest.mark.parametrize("kind", LOCAL_KINDS)
def test_local_backends_persist_across_reopen(kind, tmp_path):
    first = make_backend(kind, tmp_path)
    first.ensure_schema()
    _tree(first)
    first.set_setting("theme", "light")
    first.close()

    second = make_backend(kind, tmp_path)
    second.ensure_schema()
    try:
        assert second.get_record("items", "n1")["parent_id"] == "s1"
        assert second.get_setting("theme") == "light"
        second.ensure_schema()
        assert len(second.list_records("items")) == 3
    finally:
        second.close()
