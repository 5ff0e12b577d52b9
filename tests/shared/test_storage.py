import json

import pytest

from zkattest.shared.storage import InMemoryStorage, JsonFileStorage


class TestInMemoryStorage:
    def test_set_get_remove(self):
        # Arrange
        storage = InMemoryStorage()

        # Act
        storage.set("token:twitter", "abc")

        # Assert
        assert storage.get("token:twitter") == "abc"
        assert storage.remove("token:twitter") is True
        assert storage.get("token:twitter") is None
        assert storage.remove("token:twitter") is False

    def test_keys_filter_by_prefix(self):
        # Arrange
        storage = InMemoryStorage()
        storage.set("proof:1", "a")
        storage.set("proof:2", "b")
        storage.set("token:github", "c")

        # Act & Assert
        assert sorted(storage.keys("proof:")) == ["proof:1", "proof:2"]
        assert len(storage.keys()) == 3


class TestJsonFileStorage:
    def test_values_survive_reopen(self, tmp_path):
        # Arrange
        path = tmp_path / "nested" / "store.json"
        JsonFileStorage(path).set("proof:1", '{"x": 1}')

        # Act
        reopened = JsonFileStorage(path)

        # Assert
        assert reopened.get("proof:1") == '{"x": 1}'
        assert json.loads(path.read_text()) == {"proof:1": '{"x": 1}'}

    def test_remove_is_persisted(self, tmp_path):
        # Arrange
        path = tmp_path / "store.json"
        storage = JsonFileStorage(path)
        storage.set("a", "1")

        # Act
        storage.remove("a")

        # Assert
        assert JsonFileStorage(path).keys() == []

    def test_writes_leave_no_temp_files(self, tmp_path):
        # Arrange
        storage = JsonFileStorage(tmp_path / "store.json")

        # Act
        for n in range(3):
            storage.set(f"k{n}", str(n))

        # Assert
        assert [p.name for p in tmp_path.iterdir()] == ["store.json"]

    def test_invalid_file_is_rejected(self, tmp_path):
        # Arrange
        path = tmp_path / "store.json"
        path.write_text("{not json")

        # Act & Assert
        with pytest.raises(ValueError, match="not valid JSON"):
            JsonFileStorage(path)

    def test_non_string_values_are_rejected(self, tmp_path):
        # Arrange
        path = tmp_path / "store.json"
        path.write_text('{"a": 1}')

        # Act & Assert
        with pytest.raises(ValueError, match="string mapping"):
            JsonFileStorage(path)

    def test_deeply_nested_file_is_rejected(self, tmp_path):
        # Arrange
        path = tmp_path / "store.json"
        path.write_text("[" * 100000 + "]" * 100000)

        # Act & Assert
        with pytest.raises(ValueError, match="not valid JSON"):
            JsonFileStorage(path)
