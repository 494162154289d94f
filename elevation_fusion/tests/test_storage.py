"""Tests for the SQLite session store."""

import pytest

from elevation_fusion.core.errors import PersistenceFailure
from elevation_fusion.core.types import SessionRecord
from elevation_fusion.storage import SqliteSessionStore


@pytest.fixture
def store(tmp_path):
    """Open store on a temporary database."""
    with SqliteSessionStore(tmp_path / "measurements.db") as s:
        yield s


class TestSqliteSessionStore:
    """Tests for SqliteSessionStore."""

    def test_insert_assigns_id(self, store):
        """Inserted records should get increasing ids."""
        first = store.insert(SessionRecord(id=None, timestamp=10, data_points_csv="1,2,3"))
        second = store.insert(SessionRecord(id=None, timestamp=20, data_points_csv="4,5,6"))

        assert first.id == 1
        assert second.id == 2
        assert second.data_points_csv == "4,5,6"

    def test_list_newest_first(self, store):
        """Listing should order by save time, newest first."""
        store.insert(SessionRecord(id=None, timestamp=20, data_points_csv="a"))
        store.insert(SessionRecord(id=None, timestamp=30, data_points_csv="b"))
        store.insert(SessionRecord(id=None, timestamp=10, data_points_csv="c"))

        assert [r.timestamp for r in store.list_all()] == [30, 20, 10]

    def test_get(self, store):
        """Get should return the stored record or None."""
        stored = store.insert(SessionRecord(id=None, timestamp=10, data_points_csv="1,2,3"))

        assert store.get(stored.id) == stored
        assert store.get(999) is None

    def test_persists_across_connections(self, tmp_path):
        """Records should survive reopening the database."""
        path = tmp_path / "measurements.db"
        with SqliteSessionStore(path) as s:
            s.insert(SessionRecord(id=None, timestamp=10, data_points_csv="1,2,3"))

        with SqliteSessionStore(path) as s:
            assert len(s.list_all()) == 1

    def test_closed_store_raises(self, tmp_path):
        """Using a store that is not open should raise PersistenceFailure."""
        store = SqliteSessionStore(tmp_path / "measurements.db")
        with pytest.raises(PersistenceFailure):
            store.insert(SessionRecord(id=None, timestamp=1, data_points_csv=""))

    def test_unopenable_path(self, tmp_path):
        """A database in a missing directory should raise PersistenceFailure."""
        store = SqliteSessionStore(tmp_path / "missing" / "dir" / "measurements.db")
        with pytest.raises(PersistenceFailure):
            store.open()

    def test_in_memory(self):
        """An in-memory database should work for the lifetime of the store."""
        with SqliteSessionStore(":memory:") as s:
            s.insert(SessionRecord(id=None, timestamp=1, data_points_csv="1,2,3"))
            assert s.list_all()[0].id == 1
