# tests/test_local_store.py
import os

from storage.local_store import LocalStore


def test_set_and_get_round_trip(local_store):
    assert local_store.set_item("story_state_http://x/y", {"a": [1, "ữ"]})
    assert local_store.get_item("story_state_http://x/y") == {"a": [1, "ữ"]}


def test_missing_key_is_none(local_store):
    assert local_store.get_item("nope") is None


def test_keys_that_sanitize_alike_do_not_collide(local_store):
    local_store.set_item("a/b", 1)
    local_store.set_item("a:b", 2)
    assert local_store.get_item("a/b") == 1
    assert local_store.get_item("a:b") == 2


def test_remove_item(local_store):
    local_store.set_item("k", "v")
    assert local_store.remove_item("k")
    assert local_store.get_item("k") is None
    assert local_store.remove_item("k")


def test_keys_by_prefix(local_store):
    local_store.set_item("readChapters_s1", ["c1"])
    local_store.set_item("readChapters_s2", [])
    local_store.set_item("story_state_s1", {})
    assert local_store.keys("readChapters_") == ["readChapters_s1", "readChapters_s2"]


def test_unserializable_value_reports_false(local_store):
    assert local_store.set_item("bad", {"x": object()}) is False
    assert local_store.get_item("bad") is None
    assert not [n for n in os.listdir(local_store.base_dir) if n.endswith(".tmp")]


def test_corrupt_file_is_a_miss(local_store):
    local_store.set_item("k", {"a": 1})
    with open(local_store._path("k"), "w", encoding="utf-8") as f:
        f.write("{not json")
    assert local_store.get_item("k") is None


def test_write_failure_is_swallowed(local_store, monkeypatch):
    def fail(*_a, **_k):
        raise OSError("read-only")

    monkeypatch.setattr("storage.local_store.os.replace", fail)
    assert local_store.set_item("k", 1) is False


def test_values_survive_new_instance(tmp_path):
    LocalStore(str(tmp_path)).set_item("k", [1, 2])
    assert LocalStore(str(tmp_path)).get_item("k") == [1, 2]
