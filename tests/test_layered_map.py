import pytest

from layersnap.layered_map import LayeredMap


def _map_with_layer(contents):
    layered = LayeredMap(lambda path: contents[path])
    layered.snapshot()
    for path in contents:
        layered.add(path)
    return layered


@pytest.mark.parametrize(
    "map1, map2, equal",
    [
        (
            {"a": "apple", "b": "bat", "c": "cat", "d": "dog", "e": "egg"},
            {"c": "cat", "d": "dog", "b": "bat", "a": "apple", "e": "egg"},
            True,
        ),
        (
            {"a": "apple", "b": "bat", "c": "cat"},
            {"c": "", "b": "bat", "a": "apple"},
            False,
        ),
    ],
    ids=["maps are the same", "maps are different"],
)
def test_cache_key(map1, map2, equal):
    assert (_map_with_layer(map1).key() == _map_with_layer(map2).key()) is equal


def test_key_reflects_deletes():
    layered = _map_with_layer({"a": "apple"})
    before = layered.key()
    layered.add_delete("b")
    assert layered.key() != before


def test_key_is_hex_sha256():
    key = LayeredMap(str).key()
    assert len(key) == 64
    assert int(key, 16) >= 0


def test_flatten_paths():
    hashes = {}
    layered = LayeredMap(lambda path: hashes[path])

    layered.snapshot()
    hashes.update({"a": "2", "b": "3"})
    layered.add("a")
    layered.add("b")
    layered.add_delete("a")
    paths = layered.get_current_paths()
    assert "a" not in paths
    assert "b" in paths

    layered.snapshot()
    hashes.update({"b": "5", "c": "6"})
    layered.add("b")
    layered.add("c")
    layered.add_delete("b")
    paths = layered.get_current_paths()
    assert "a" not in paths
    assert "b" not in paths
    assert "c" in paths

    layered.snapshot()
    hashes.update({"a": "8"})
    layered.add("a")
    layered.add_delete("c")
    paths = layered.get_current_paths()
    assert "a" in paths
    assert "b" not in paths
    assert "c" not in paths


def test_check_file_change():
    hashes = {"f": "1"}
    layered = LayeredMap(lambda path: hashes[path])
    layered.snapshot()
    assert layered.check_file_change("f") is True
    layered.add("f")
    layered.snapshot()
    assert layered.check_file_change("f") is False
    hashes["f"] = "2"
    assert layered.check_file_change("f") is True


def test_add_reuses_hash_from_check_file_change():
    calls = []

    def hasher(path):
        calls.append(path)
        return "h"

    layered = LayeredMap(hasher)
    layered.snapshot()
    assert layered.check_file_change("x") is True
    layered.add("x")
    layered.snapshot()
    assert layered.get_current_paths() == {"x"}
    assert calls == ["x"]


def test_hash_cache_is_cleared_by_snapshot():
    calls = []

    def hasher(path):
        calls.append(path)
        return "h"

    layered = LayeredMap(hasher)
    layered.snapshot()
    assert layered.check_file_change("x") is True
    layered.snapshot()
    layered.add("x")
    assert calls == ["x", "x"]
    layered.snapshot()
    assert layered.get_current_paths() == {"x"}


def test_add_wraps_hasher_errors():
    def hasher(path):
        raise FileNotFoundError(path)

    layered = LayeredMap(hasher)
    layered.snapshot()
    with pytest.raises(RuntimeError, match="error creating hash for missing"):
        layered.add("missing")


def test_check_file_change_propagates_hasher_errors():
    def hasher(path):
        raise FileNotFoundError(path)

    layered = LayeredMap(hasher)
    layered.snapshot()
    with pytest.raises(FileNotFoundError):
        layered.check_file_change("missing")


def test_modifying_without_layer_raises():
    layered = LayeredMap(str)
    with pytest.raises(RuntimeError):
        layered.add("a")
    with pytest.raises(RuntimeError):
        layered.add_delete("a")


def test_get_current_paths_empty_without_layers():
    assert LayeredMap(str).get_current_paths() == set()