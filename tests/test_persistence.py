"""
Tests for utils/persistence.py
"""

import pytest

from utils.exceptions import PersistenceError
from utils.persistence import JSONStore


class TestJSONStore:
    def test_missing_file_returns_default(self, tmp_path):
        store = JSONStore(tmp_path / "index.json")
        assert store.load() is None
        assert store.load(default=[]) == []
        assert not store.exists()

    def test_save_and_load(self, tmp_path):
        store = JSONStore(tmp_path / "nested" / "index.json")
        store.save([{"key": "alpha", "version": "1.0.0"}])
        assert store.exists()
        assert store.load() == [{"key": "alpha", "version": "1.0.0"}]

    def test_save_leaves_no_temp_file(self, tmp_path):
        store = JSONStore(tmp_path / "index.json")
        store.save({"a": 1})
        assert [p.name for p in tmp_path.iterdir()] == ["index.json"]

    def test_malformed_json(self, tmp_path):
        path = tmp_path / "index.json"
        path.write_text("{not json")
        with pytest.raises(PersistenceError):
            JSONStore(path).load()

    def test_unserializable_data_keeps_previous_file(self, tmp_path):
        store = JSONStore(tmp_path / "index.json")
        store.save({"a": 1})
        with pytest.raises(PersistenceError):
            store.save({"a": object()})
        assert store.load() == {"a": 1}
        assert not (tmp_path / ".index.json.tmp").exists()
