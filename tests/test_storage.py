"""
Unit tests for storage layer.

Tests collection files, atomic saves, id generation and record shapes.
"""

import json
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path

import pytest

from quizgen.storage.db import COLLECTIONS, RecordStore, StorageError, new_id
from quizgen.storage.models import Account, QuizAttempt, Role, User, parse_timestamp


class TestRecordStoreLoad:
    """Test reading collections."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()
        self.store = RecordStore(self.temp_dir)

    def teardown_method(self):
        """Clean up test environment."""
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_missing_file_is_empty_collection(self):
        """A collection that was never written loads as empty."""
        assert self.store.load("users") == []

    def test_missing_data_dir_is_empty_collection(self):
        """First run: even the data directory does not exist yet."""
        store = RecordStore(os.path.join(self.temp_dir, "not", "there"))
        assert store.load("quiz-sets") == []

    def test_invalid_json_raises_storage_error(self):
        """A corrupt file is a storage failure, not an empty collection."""
        Path(self.store.path_for("users")).write_text("{not json", encoding="utf-8")

        with pytest.raises(StorageError) as excinfo:
            self.store.load("users")
        assert excinfo.value.collection == "users"

    def test_non_array_document_raises_storage_error(self):
        """Collections must be JSON arrays."""
        Path(self.store.path_for("users")).write_text('{"id": "x"}', encoding="utf-8")

        with pytest.raises(StorageError, match="JSON array"):
            self.store.load("users")


class TestRecordStoreSave:
    """Test writing collections."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()
        self.store = RecordStore(os.path.join(self.temp_dir, "data"))

    def teardown_method(self):
        """Clean up test environment."""
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_save_creates_directory_and_file(self):
        """Saving creates the data directory on demand."""
        self.store.save("users", [{"id": "a"}, {"id": "b"}])

        path = self.store.path_for("users")
        assert path.exists()
        with open(path, encoding="utf-8") as f:
            assert json.load(f) == [{"id": "a"}, {"id": "b"}]

    def test_save_overwrites_previous_content(self):
        """Each save fully replaces the collection."""
        self.store.save("users", [{"id": "a"}, {"id": "b"}])
        self.store.save("users", [{"id": "c"}])

        assert self.store.load("users") == [{"id": "c"}]

    def test_save_leaves_no_temporary_files(self):
        """Only the collection file remains after a save."""
        self.store.save("sessions", [{"id": "a"}])

        assert os.listdir(self.store.data_dir) == ["sessions.json"]

    def test_unwritable_location_raises_storage_error(self):
        """A data directory path that is a file cannot be written to."""
        blocker = os.path.join(self.temp_dir, "blocker")
        Path(blocker).write_text("", encoding="utf-8")
        store = RecordStore(blocker)

        with pytest.raises(StorageError):
            store.save("users", [])

    def test_insertion_order_preserved(self):
        """Records load back in the order they were saved."""
        records = [{"id": str(i)} for i in range(20)]
        self.store.save("quiz-sets", records)

        assert [r["id"] for r in self.store.load("quiz-sets")] == [str(i) for i in range(20)]


class TestMutate:
    """Test the locked read-modify-write helper."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()
        self.store = RecordStore(self.temp_dir)

    def teardown_method(self):
        """Clean up test environment."""
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_changes_are_saved(self):
        with self.store.mutate("users") as records:
            records.append({"id": "a"})

        assert self.store.load("users") == [{"id": "a"}]

    def test_failed_block_leaves_collection_unchanged(self):
        """An exception inside the block discards the pending changes."""
        self.store.save("users", [{"id": "a"}])

        with pytest.raises(RuntimeError):
            with self.store.mutate("users") as records:
                records.append({"id": "b"})
                raise RuntimeError("boom")

        assert self.store.load("users") == [{"id": "a"}]

    def test_lock_is_reentrant(self):
        """Nested mutations of the same collection do not deadlock."""
        with self.store.lock("users"):
            with self.store.mutate("users") as records:
                records.append({"id": "a"})

        assert len(self.store.load("users")) == 1

    def test_initialize_creates_every_collection_once(self):
        created = self.store.initialize()
        assert len(created) == len(COLLECTIONS)
        for name in COLLECTIONS:
            assert self.store.load(name) == []

        assert self.store.initialize() == []


class TestIdGeneration:
    """Test record id generation."""

    def test_ids_are_unique(self):
        ids = [new_id() for _ in range(5000)]
        assert len(set(ids)) == len(ids)

    def test_ids_are_compact_base36(self):
        record_id = new_id()
        assert record_id.isalnum()
        assert record_id == record_id.lower()
        assert len(record_id) <= 24


class TestModels:
    """Test conversion between entities and stored records."""

    def test_user_record_uses_camel_case_keys(self):
        now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
        user = User(id="u1", email="a@example.com", created_at=now, updated_at=now)

        record = user.to_record()

        assert record["createdAt"] == "2024-05-01T12:00:00+00:00"
        assert record["updatedAt"] == "2024-05-01T12:00:00+00:00"
        assert record["role"] == "USER"

    def test_user_from_record_accepts_z_suffix(self):
        user = User.from_record({
            "id": "u1",
            "email": "a@example.com",
            "role": "ADMIN",
            "createdAt": "2024-05-01T12:00:00.000Z",
            "updatedAt": "2024-05-01T12:00:00.000Z",
        })

        assert user.role == Role.ADMIN
        assert user.created_at == datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
        assert user.name is None

    def test_account_token_fields_keep_snake_case(self):
        account = Account(
            id="a1",
            user_id="u1",
            type="oauth",
            provider="google",
            provider_account_id="123",
            access_token="tok",
        )

        record = account.to_record()

        assert record["userId"] == "u1"
        assert record["providerAccountId"] == "123"
        assert record["access_token"] == "tok"
        assert Account.from_record(record) == account

    def test_attempt_round_trip(self):
        attempt = QuizAttempt(
            id="t1",
            user_id="u1",
            quiz_set_id="q1",
            answers='{"1": 0}',
            score=4,
            total_questions=5,
            completed_at=parse_timestamp("2024-05-01T12:00:00Z"),
        )

        assert QuizAttempt.from_record(attempt.to_record()) == attempt

    def test_missing_required_field_raises(self):
        with pytest.raises(TypeError):
            User.from_record({"id": "u1"})
