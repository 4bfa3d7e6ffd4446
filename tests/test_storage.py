import json
import os
from unittest.mock import patch

import pytest

from mapminer.errors import PersistenceError
from mapminer.storage import ResultStore, atomic_write_json


class TestAtomicWrite:
    """Test suite for crash-safe JSON writes."""

    def test_writes_and_creates_parent(self, tmp_path):
        path = tmp_path / "nested" / "out.json"
        atomic_write_json(path, [{"name": "Café"}])
        assert json.loads(path.read_text(encoding="utf-8")) == [{"name": "Café"}]

    def test_failed_rename_keeps_previous_file(self, tmp_path):
        path = tmp_path / "out.json"
        atomic_write_json(path, ["old"])

        with patch("mapminer.storage.os.replace", side_effect=OSError("disk gone")):
            with pytest.raises(PersistenceError) as exc_info:
                atomic_write_json(path, ["new"])

        assert exc_info.value.path == path
        assert json.loads(path.read_text(encoding="utf-8")) == ["old"]
        # No temp file left behind
        assert os.listdir(tmp_path) == ["out.json"]

    def test_unserializable_data(self, tmp_path):
        path = tmp_path / "out.json"
        with pytest.raises(PersistenceError):
            atomic_write_json(path, {"bad": object()})
        assert not path.exists()
        assert os.listdir(tmp_path) == []


class TestResultStore:
    """Test suite for per-term output files."""

    def test_paths_use_sanitized_term(self, tmp_path):
        store = ResultStore(str(tmp_path))
        assert store.results_path("coffee shops in X").name == "coffee_shops_in_X.json"
        assert store.status_path("coffee shops in X").name == "coffee_shops_in_X_urls.json"

    def test_save_and_load(self, tmp_path):
        store = ResultStore(str(tmp_path))
        records = [{"name": "A"}, {"name": "B"}]
        store.save_results("hotels in Y", records)
        store.save_statuses("hotels in Y", [{"url": "u", "status": "SUCCESS"}])

        assert store.load_results("hotels in Y") == records
        statuses = json.loads(store.status_path("hotels in Y").read_text(encoding="utf-8"))
        assert statuses == [{"url": "u", "status": "SUCCESS"}]

    def test_load_missing_term(self, tmp_path):
        assert ResultStore(str(tmp_path)).load_results("nothing") == []
