import sqlite3
import tempfile
import threading
from pathlib import Path

import pytest

from chat_core.domain.exceptions import StorageError
from chat_core.infrastructure.storage.sqlite_store import SqliteMessageStore


def test_sqlite_store_creates_schema_lazily():
    with tempfile.TemporaryDirectory() as d:
        db = Path(d) / "nested" / "chat.db"
        store = SqliteMessageStore(db_path=db)
        assert not db.exists()
        assert store.list("s1") == []
        assert db.exists()
        with sqlite3.connect(db) as conn:
            tables = {r[0] for r in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
        assert "messages" in tables


def test_sqlite_store_concurrent_initialize():
    with tempfile.TemporaryDirectory() as d:
        db = Path(d) / "chat.db"
        SqliteMessageStore(db_path=db).initialize()
        errors = []

        def init():
            try:
                SqliteMessageStore(db_path=db).initialize()
            except StorageError as e:
                errors.append(e)

        threads = [threading.Thread(target=init) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert errors == []


def test_sqlite_store_separate_instances_share_history():
    with tempfile.TemporaryDirectory() as d:
        db = Path(d) / "chat.db"
        SqliteMessageStore(db_path=db).append("s1", "user", "from instance a")
        msgs = SqliteMessageStore(db_path=db).list("s1")
        assert [m.content for m in msgs] == ["from instance a"]


def test_sqlite_store_ties_broken_by_insertion_order():
    with tempfile.TemporaryDirectory() as d:
        db = Path(d) / "chat.db"
        store = SqliteMessageStore(db_path=db)
        turns = store.extend("s1", [("user", "a"), ("assistant", "b"), ("user", "c")])
        assert len({t.timestamp for t in turns}) == 1
        assert [m.content for m in store.list("s1")] == ["a", "b", "c"]


def test_sqlite_store_unwritable_path_raises_storage_error():
    with tempfile.TemporaryDirectory() as d:
        blocker = Path(d) / "file"
        blocker.write_text("not a directory", encoding="utf-8")
        store = SqliteMessageStore(db_path=blocker / "chat.db")
        with pytest.raises(StorageError):
            store.append("s1", "user", "x")
        with pytest.raises(StorageError):
            store.list("s1")
