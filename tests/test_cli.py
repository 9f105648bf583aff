# tests/test_cli.py
import json

from pageviews.scripts.views import main
from pageviews.services.local_store import LocalCounterStore
from pageviews.services.storage import JsonFileStorage


def _seed(path, counts: dict[str, int]) -> None:
    store = LocalCounterStore(JsonFileStorage(path))
    for key, count in counts.items():
        store.merge(key, count)


def test_get_and_popular(tmp_path, capsys) -> None:
    path = tmp_path / "views.json"
    _seed(path, {"a": 5, "b": 1500, "c": 3})

    assert main(["--store", str(path), "get", "b"]) == 0
    assert capsys.readouterr().out.strip() == "1.5k views"

    assert main(["--store", str(path), "popular", "--limit", "2"]) == 0
    lines = capsys.readouterr().out.rstrip().splitlines()
    assert lines == ["  1. b  1.5k views", "  2. a  5 views"]


def test_export_and_clear(tmp_path, capsys) -> None:
    path = tmp_path / "views.json"
    _seed(path, {"a": 2})

    main(["--store", str(path), "export"])
    assert json.loads(capsys.readouterr().out)["a"]["count"] == 2

    main(["--store", str(path), "clear"])
    capsys.readouterr()
    main(["--store", str(path), "get", "a"])
    assert capsys.readouterr().out.strip() == "0 views"


def test_clear_also_forgets_session_flags(tmp_path, capsys) -> None:
    path = tmp_path / "views.json"
    _seed(path, {"a": 2})
    JsonFileStorage(path).set_item("current-session-views", json.dumps(["a"]))

    assert main(["--store", str(path), "clear"]) == 0
    assert "session flags" in capsys.readouterr().out

    storage = JsonFileStorage(path)
    assert storage.get_item("current-session-views") is None
    assert storage.get_item("blog-view-counts") is None


def test_remote_errors_exit_nonzero(capsys) -> None:
    code = main(["--url", "http://127.0.0.1:9/api/v1", "remote-get", "a"])
    assert code == 1
    assert "ERROR" in capsys.readouterr().err
