from datetime import datetime, timezone
import json
import os

import pytest

from burnlink import tables
from burnlink.datamodels import RecordState
from burnlink.errors import AlreadyConsumed, IOFailure, NotFound
from burnlink.store import OneTimeFileStore
from burnlink.tables import JsonFileTable, MemoryTable


@pytest.fixture
def storage_file(tmp_path):
    return tmp_path / "state" / "file_storage.json"


def test_memory_table_load_returns_a_copy():
    table = MemoryTable()
    records = table.load()
    records["x"] = None

    assert table.load() == {}


def test_missing_file_is_an_empty_table(storage_file):
    assert JsonFileTable(storage_file).load() == {}


def test_empty_file_is_an_empty_table(tmp_path):
    path = tmp_path / "file_storage.json"
    path.write_text("")

    assert JsonFileTable(path).load() == {}


def test_records_survive_a_new_store_instance(storage_file):
    token = OneTimeFileStore(table=JsonFileTable(storage_file)).put(b"\x00\x01binary\xff", "blob.bin", "application/octet-stream")

    reopened = OneTimeFileStore(table=JsonFileTable(storage_file))
    view = reopened.take(token)
    assert view.payload == b"\x00\x01binary\xff"
    assert view.file_name == "blob.bin"

    with pytest.raises(AlreadyConsumed):
        OneTimeFileStore(table=JsonFileTable(storage_file)).take(token)


def test_persisted_layout(storage_file):
    store = OneTimeFileStore(
        table=JsonFileTable(storage_file),
        clock=lambda: datetime(2025, 1, 1, tzinfo=timezone.utc),
    )
    token = store.put(b"hello", "a.txt", "text/plain")

    entry = json.loads(storage_file.read_text())[token]
    assert entry["fileName"] == "a.txt"
    assert entry["fileData"] == "aGVsbG8="
    assert entry["fileSize"] == 5
    assert entry["mimeType"] == "text/plain"
    assert entry["uploadTime"].startswith("2025-01-01T00:00:00")
    assert entry["downloaded"] is False
    assert entry["state"] == "available"

    store.take(token)
    entry = json.loads(storage_file.read_text())[token]
    assert entry["downloaded"] is True
    assert entry["state"] == "consumed"
    # payload is dropped once the file was handed out
    assert entry["fileData"] == ""


def test_failed_write_keeps_previous_file(storage_file, monkeypatch):
    store = OneTimeFileStore(table=JsonFileTable(storage_file))
    token = store.put(b"keep me", "keep.txt", "text/plain")
    before = storage_file.read_bytes()

    def broken_replace(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr(tables.os, "replace", broken_replace)

    with pytest.raises(IOFailure):
        store.put(b"other", "other.txt", "text/plain")
    with pytest.raises(IOFailure):
        store.take(token)

    assert storage_file.read_bytes() == before
    # no temp files left behind
    assert os.listdir(storage_file.parent) == [storage_file.name]

    monkeypatch.undo()
    # the failed take did not mark the record consumed
    assert store.peek_status(token) is RecordState.AVAILABLE
    assert store.take(token).payload == b"keep me"


def test_failed_write_in_memory_is_rolled_back(monkeypatch):
    table = MemoryTable()
    store = OneTimeFileStore(table=table)
    token = store.put(b"data")

    def broken_save(records):
        raise IOFailure("Can't write storage")

    monkeypatch.setattr(table, "save", broken_save)
    with pytest.raises(IOFailure):
        store.take(token)

    monkeypatch.undo()
    assert store.take(token).payload == b"data"


def test_malformed_file_is_io_failure(tmp_path):
    path = tmp_path / "file_storage.json"
    path.write_text("{not json")

    store = OneTimeFileStore(table=JsonFileTable(path))
    with pytest.raises(IOFailure):
        store.take("anything")
    with pytest.raises(IOFailure):
        store.put(b"data")
    # left for someone to inspect
    assert path.read_text() == "{not json"


def test_unknown_token_in_json_store(storage_file):
    with pytest.raises(NotFound):
        OneTimeFileStore(table=JsonFileTable(storage_file)).take("missing")
