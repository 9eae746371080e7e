"""
Tests for the document stores.
"""

import json
import pytest
from pathlib import Path

import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from assessment.store import JsonFileStore, MemoryStore, merge_documents, split_key


class TestMergeDocuments:
    def test_nested_maps_merge(self):
        base = {"round1": {"score": 3, "answers": {"m1": "A"}}, "flag": False}
        merged = merge_documents(base, {"round1": {"answers": {"m2": "B"}}, "flag": True})
        assert merged == {"round1": {"score": 3, "answers": {"m1": "A", "m2": "B"}}, "flag": True}

    def test_base_not_mutated(self):
        base = {"a": {"b": 1}}
        merge_documents(base, {"a": {"b": 2}})
        assert base == {"a": {"b": 1}}

    def test_lists_replaced(self):
        assert merge_documents({"x": [1, 2]}, {"x": [3]}) == {"x": [3]}


class TestSplitKey:
    def test_valid(self):
        assert split_key("/responses/u1/round2/q1") == ["responses", "u1", "round2", "q1"]

    @pytest.mark.parametrize("key", ["", "responses//q1", "responses/../etc", "./x"])
    def test_invalid(self, key):
        with pytest.raises(ValueError):
            split_key(key)


@pytest.fixture(params=["memory", "json"])
def store(request, tmp_path):
    if request.param == "memory":
        return MemoryStore()
    return JsonFileStore(tmp_path / "data")


class TestStoreContract:
    """Behavior shared by both stores."""

    def test_get_missing(self, store):
        assert store.get("responses/u1") is None

    def test_set_and_get(self, store):
        store.set("responses/u1", {"round1_submitted": True})
        assert store.get("responses/u1") == {"round1_submitted": True}

    def test_overwrite_without_merge(self, store):
        store.set("responses/u1", {"a": 1})
        store.set("responses/u1", {"b": 2})
        assert store.get("responses/u1") == {"b": 2}

    def test_merge(self, store):
        store.set("responses/u1", {"round1": {"score": 2}})
        store.set("responses/u1", {"round1_rejected": True}, merge=True)
        assert store.get("responses/u1") == {"round1": {"score": 2}, "round1_rejected": True}

    def test_query_direct_children_only(self, store):
        store.set("responses/u1/round2/q1", {"passed": 1})
        store.set("responses/u1/round2/q2", {"passed": 0})
        store.set("responses/u2/round2/q1", {"passed": 3})

        docs = store.query("responses/u1/round2")

        assert docs == {"q1": {"passed": 1}, "q2": {"passed": 0}}

    def test_query_missing_collection(self, store):
        assert store.query("responses/nobody/round2") == {}

    def test_returned_documents_are_copies(self, store):
        store.set("responses/u1", {"round1": {"score": 1}})
        doc = store.get("responses/u1")
        doc["round1"]["score"] = 99
        assert store.get("responses/u1") == {"round1": {"score": 1}}


class TestJsonFileStore:
    def test_file_layout(self, tmp_path):
        store = JsonFileStore(tmp_path)
        store.set("responses/u1/round2/q1", {"result": "Passed"})

        path = tmp_path / "responses" / "u1" / "round2" / "q1.json"
        assert json.loads(path.read_text(encoding="utf-8")) == {"result": "Passed"}

    def test_no_temp_files_left(self, tmp_path):
        store = JsonFileStore(tmp_path)
        store.set("responses/u1", {"a": 1})
        store.set("responses/u1", {"b": 2}, merge=True)
        assert [p.name for p in (tmp_path / "responses").iterdir()] == ["u1.json"]


class TestMemoryStore:
    def test_write_counter(self):
        store = MemoryStore()
        store.set("a/b", {})
        store.set("a/b", {}, merge=True)
        assert store.writes == 2
