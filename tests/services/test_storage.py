# tests/services/test_storage.py
import pytest

from pageviews.services.local_store import LocalCounterStore
from pageviews.services.storage import JsonFileStorage, MemoryStorage, StorageUnavailableError


def test_memory_storage_round_trip() -> None:
    storage = MemoryStorage({"a": "1"})
    assert storage.get_item("a") == "1"
    storage.set_item("b", "2")
    storage.remove_item("a")
    assert storage.get_item("a") is None
    assert storage.get_item("b") == "2"


def test_json_file_storage_survives_reopen(tmp_path) -> None:
    path = tmp_path / "views.json"
    LocalCounterStore(JsonFileStorage(path)).increment("post")

    reopened = LocalCounterStore(JsonFileStorage(path))
    assert reopened.get("post") == 1


def test_json_file_storage_missing_file_is_empty(tmp_path) -> None:
    assert JsonFileStorage(tmp_path / "absent.json").get_item("x") is None


def test_json_file_storage_ignores_corrupt_file(tmp_path) -> None:
    path = tmp_path / "views.json"
    path.write_text("{not json", encoding="utf-8")
    storage = JsonFileStorage(path)
    assert storage.get_item("x") is None
    storage.set_item("x", "1")
    assert storage.get_item("x") == "1"


def test_json_file_storage_unreadable_path_raises(tmp_path) -> None:
    with pytest.raises(StorageUnavailableError):
        JsonFileStorage(tmp_path).get_item("x")


def test_failed_replace_leaves_no_temp_file(tmp_path, mocker) -> None:
    path = tmp_path / "views.json"
    storage = JsonFileStorage(path)
    mocker.patch("pageviews.services.storage.os.replace", side_effect=OSError("disk full"))

    with pytest.raises(StorageUnavailableError):
        storage.set_item("a", "1")

    assert list(tmp_path.iterdir()) == []
