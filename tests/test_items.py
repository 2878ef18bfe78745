'''
Copyright 2025 Aaron Vose (avose@aaronvose.net)
Licensed under the LGPL v2.1; see the file 'LICENSE' for details.
'''
import pytest

from leafnote.core.errors import ValidationFailure
from leafnote.core.items import (
    Item, can_be_child_of, new_id, now_iso, valid_child_types, valid_parent_types, validate_move,
)

@pytest.mark.parametrize("child, parent, allowed", [
    ("book", None, True),
    ("book", "book", False),
    ("section", None, True),
    ("section", "book", True),
    ("section", "section", False),
    ("note", None, True),
    ("note", "section", True),
    ("note", "note", False),
    ("widget", None, False),
])
def test_hierarchy_rules(child, parent, allowed):
    assert can_be_child_of(child, parent) is allowed

def test_valid_types():
    assert valid_parent_types("section") == [None, "book"]
    assert valid_child_types("book") == ["section", "note"]
    assert valid_child_types("note") == []

def test_validate_move_message():
    with pytest.raises(ValidationFailure) as info:
        validate_move("section", "section")
    assert str(info.value) == "sections cannot be placed in section. Valid locations: root, book"
    with pytest.raises(ValidationFailure):
        validate_move("widget", None)
    validate_move("note", "book")

def test_item_from_record_fills_defaults():
    item = Item.from_record({"id": "x", "sort_order": None, "metadata": None})
    assert item.type == "note"
    assert item.sort_order == 0
    assert item.metadata == {}
    assert not item.is_deleted
    assert item.to_record()["id"] == "x"

def test_ids_and_timestamps():
    assert new_id() != new_id()
    assert len(new_id()) == 12
    a = now_iso()
    b = now_iso()
    assert a <= b
    assert a.endswith("+00:00")
