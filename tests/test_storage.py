"""
Tests for storage backends and atomic units
"""

import pytest
from datetime import datetime, date, timezone
from decimal import Decimal
from dataclasses import dataclass

from core_accounting.storage import (
    InMemoryStorage, SQLiteStorage, StorageRecord, next_sequence
)


test_data = {
    "id": "rec_001",
    "name": "Test Record",
    "amount": "100.50",
    "created_at": datetime.now(timezone.utc).isoformat(),
    "updated_at": datetime.now(timezone.utc).isoformat()
}


@pytest.fixture(params=["memory", "sqlite"])
def storage(request, tmp_path):
    if request.param == "memory":
        backend = InMemoryStorage()
    else:
        backend = SQLiteStorage(tmp_path / "ledger.db")
    yield backend
    backend.close()


class TestBasicOperations:
    """CRUD behaviour shared by both backends"""

    def test_save_load_find_delete(self, storage):
        """Test the basic record lifecycle"""
        storage.save("things", "rec_001", test_data)
        assert storage.load("things", "rec_001") == test_data
        assert storage.exists("things", "rec_001")
        assert not storage.exists("things", "missing")

        storage.save("things", "rec_002", {"id": "rec_002", "name": "Other"})
        assert storage.count("things") == 2
        assert len(storage.load_all("things")) == 2

        found = storage.find("things", {"name": "Other"})
        assert [r["id"] for r in found] == ["rec_002"]

        assert storage.delete("things", "rec_001")
        assert not storage.delete("things", "rec_001")
        assert storage.load("things", "rec_001") is None

    def test_loaded_records_are_copies(self, storage):
        """Mutating a loaded dict must not change stored data"""
        storage.save("things", "rec_001", dict(test_data))
        loaded = storage.load("things", "rec_001")
        loaded["name"] = "Changed"
        assert storage.load("things", "rec_001")["name"] == "Test Record"

    def test_load_all_preserves_write_order(self, storage):
        """load_all returns records in the order they were first written"""
        for index in range(5):
            storage.save("ordered", f"r{index}", {"id": f"r{index}", "n": index})
        assert [r["n"] for r in storage.load_all("ordered")] == [0, 1, 2, 3, 4]


class TestAtomic:
    """Atomic units commit together or not at all"""

    def test_commit_keeps_writes(self, storage):
        """Writes inside a successful unit are visible afterwards"""
        with storage.atomic():
            storage.save("things", "a", {"id": "a"})
            storage.save("things", "b", {"id": "b"})
        assert storage.count("things") == 2

    def test_rollback_discards_writes(self, storage):
        """An exception inside the unit discards every write in it"""
        storage.save("things", "kept", {"id": "kept"})
        with pytest.raises(RuntimeError):
            with storage.atomic():
                storage.save("things", "a", {"id": "a"})
                storage.delete("things", "kept")
                raise RuntimeError("boom")

        assert storage.load("things", "a") is None
        assert storage.load("things", "kept") == {"id": "kept"}

    def test_nested_rollback_keeps_outer_writes(self, storage):
        """A failed inner unit rolls back only its own writes"""
        with storage.atomic():
            storage.save("things", "outer", {"id": "outer"})
            with pytest.raises(ValueError):
                with storage.atomic():
                    storage.save("things", "inner", {"id": "inner"})
                    raise ValueError("inner failure")
            storage.save("things", "after", {"id": "after"})

        assert storage.exists("things", "outer")
        assert storage.exists("things", "after")
        assert not storage.exists("things", "inner")

    def test_outer_rollback_discards_committed_inner(self, storage):
        """Inner commits are provisional until the outer unit commits"""
        with pytest.raises(RuntimeError):
            with storage.atomic():
                with storage.atomic():
                    storage.save("things", "inner", {"id": "inner"})
                raise RuntimeError("outer failure")
        assert not storage.exists("things", "inner")

    def test_table_created_in_rolled_back_unit_is_usable(self, storage):
        """A table first touched inside a rolled back unit can be used again"""
        with pytest.raises(RuntimeError):
            with storage.atomic():
                storage.save("fresh", "x", {"id": "x"})
                raise RuntimeError("boom")
        storage.save("fresh", "y", {"id": "y"})
        assert storage.count("fresh") == 1


class TestSequences:
    """Named counters"""

    def test_sequence_increments(self, storage):
        assert next_sequence(storage, "invoice") == 1
        assert next_sequence(storage, "invoice") == 2
        assert next_sequence(storage, "bill") == 1

    def test_sequence_rolls_back_with_unit(self, storage):
        """A number taken inside a failed unit is handed out again"""
        next_sequence(storage, "invoice")
        with pytest.raises(RuntimeError):
            with storage.atomic():
                assert next_sequence(storage, "invoice") == 2
                raise RuntimeError("boom")
        assert next_sequence(storage, "invoice") == 2


class TestSQLitePersistence:
    """Data survives reopening the database file"""

    def test_reopen(self, tmp_path):
        path = tmp_path / "persist.db"
        first = SQLiteStorage(path)
        first.save("things", "a", {"id": "a", "value": "1.00"})
        first.close()

        second = SQLiteStorage(path)
        assert second.load("things", "a") == {"id": "a", "value": "1.00"}
        second.close()


@dataclass
class SampleRecord(StorageRecord):
    amount: Decimal
    booked_on: date


class TestStorageRecord:
    """Serialization of the record base class"""

    def test_to_dict_converts_values(self):
        now = datetime.now(timezone.utc)
        record = SampleRecord(id="r1", created_at=now, updated_at=now,
                              amount=Decimal('12.50'), booked_on=date(2024, 3, 1))
        data = record.to_dict()
        assert data["amount"] == "12.50"
        assert data["booked_on"] == "2024-03-01"
        assert data["created_at"] == now.isoformat()
