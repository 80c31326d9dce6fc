import json
import os
import stat

import pytest

from database import DEFAULT_FILE_MODE, SEED_DATA, JsonFileStore, MemoryStore, Store, new_id
from errors import StorageError


def test_missing_file_is_created_from_seed(tmp_path):
    path = tmp_path / "db.json"
    store = JsonFileStore(str(path))

    doc = store.load()

    assert path.exists()
    assert [d["id"] for d in doc["doctors"]] == ["1", "2"]
    assert doc["reviews"] == []


def test_ensure_exists_leaves_existing_file_alone(tmp_path):
    path = tmp_path / "db.json"
    path.write_text(json.dumps({"doctors": [], "patients": []}))
    store = JsonFileStore(str(path))

    assert store.ensure_exists() is False
    doc = store.load()
    assert doc["doctors"] == []
    # collections absent from the file come back empty
    assert doc["prescriptions"] == []


def test_corrupt_file_raises_and_is_not_repaired(tmp_path):
    path = tmp_path / "db.json"
    path.write_text("{not json")
    store = JsonFileStore(str(path))

    with pytest.raises(StorageError):
        store.load()
    assert path.read_text() == "{not json"


def test_non_object_document_is_rejected(tmp_path):
    path = tmp_path / "db.json"
    path.write_text("[]")

    with pytest.raises(StorageError):
        JsonFileStore(str(path)).load()


def test_transaction_writes_whole_document(tmp_path):
    path = tmp_path / "db.json"
    store = JsonFileStore(str(path))

    with store.transaction() as doc:
        doc["patients"].append({"id": "p2", "name": "Liam"})

    saved = json.loads(path.read_text())
    assert [p["id"] for p in saved["patients"]] == ["1", "p2"]
    assert len(saved["doctors"]) == len(SEED_DATA["doctors"])
    assert list(tmp_path.iterdir()) == [path]


def test_transaction_discards_changes_on_error():
    store = MemoryStore(SEED_DATA)

    with pytest.raises(RuntimeError):
        with store.transaction() as doc:
            doc["patients"].clear()
            raise RuntimeError("boom")

    assert len(store.load()["patients"]) == 1
    assert store.saves == 0


def test_memory_store_hands_out_copies():
    store = MemoryStore(SEED_DATA)
    store.load()["doctors"].clear()
    assert len(store.load()["doctors"]) == 2


def test_new_ids_are_unique_hex():
    ids = {new_id() for _ in range(500)}
    assert len(ids) == 500
    assert all(len(i) == 24 for i in ids)


def test_store_interface_is_abstract():
    with pytest.raises(TypeError):
        Store()


def test_save_keeps_file_permissions(tmp_path):
    path = tmp_path / "db.json"
    store = JsonFileStore(str(path))
    store.ensure_exists()
    assert stat.S_IMODE(os.stat(path).st_mode) == DEFAULT_FILE_MODE

    os.chmod(path, 0o640)
    with store.transaction() as doc:
        doc["patients"].append({"id": "p2", "name": "Liam"})

    assert stat.S_IMODE(os.stat(path).st_mode) == 0o640
