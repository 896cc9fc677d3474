"""
Repository pattern for data access.

Typed views over the record store, one per entity kind. Lookups take
keyword equality filters on model attributes, combined with AND.
"""

import logging
from dataclasses import fields, replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Generic, List, Optional, Tuple, Type, TypeVar

from .db import DEFAULT_DATA_DIR, RecordStore, StorageError
from .models import (
    Account,
    MonthlyUsage,
    QuizAttempt,
    QuizSet,
    Record,
    Session,
    UsageLog,
    User,
)

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=Record)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ConflictError(Exception):
    """Raised when a write would duplicate a key that must stay unique."""
    def __init__(self, collection: str, key: Dict[str, Any]):
        super().__init__(f"{collection}: a record with {key} already exists")
        self.collection = collection
        self.key = key


class Repository(Generic[T]):
    """Create and query records of one entity kind.

    Subclasses set ``collection`` and ``model``. ``created_fields`` are stamped
    with the clock on create; ``unique_together`` lists attribute groups that
    may not repeat across records.
    """

    collection: str
    model: Type[T]
    created_fields: Tuple[str, ...] = ()
    unique_together: Tuple[Tuple[str, ...], ...] = ()

    def __init__(self, store: RecordStore, clock: Clock = utcnow):
        self.store = store
        self.clock = clock

    def create(self, **values: Any) -> T:
        """Assign an id and timestamps, append the record and persist it.

        Raises:
            ConflictError: If a unique key is already taken
            ValueError: If the caller supplies the id or a generated timestamp
        """
        reserved = {"id", *self.created_fields} & set(values)
        if reserved:
            raise ValueError(f"{sorted(reserved)} are assigned by the repository")

        with self.store.mutate(self.collection) as records:
            existing = self._decode(records)
            taken = {entity.id for entity in existing}
            record_id = self.store.new_id()
            while record_id in taken:
                record_id = self.store.new_id()

            now = self.clock()
            stamps = {name: now for name in self.created_fields}
            entity = self.model(id=record_id, **values, **stamps)
            self._check_unique(existing, entity)
            records.append(entity.to_record())

        logger.debug("Created %s record %s", self.collection, entity.id)
        return entity

    def find_unique(self, **where: Any) -> Optional[T]:
        """Return the first record matching every filter, or None.

        Uniqueness is a data invariant, so if the file ever holds duplicates
        the earliest inserted match wins.
        """
        if not where:
            raise ValueError("find_unique requires at least one filter")
        self._check_filter(where)
        for entity in self._decode(self.store.load(self.collection)):
            if self._matches(entity, where):
                return entity
        return None

    def find_many(self, **where: Any) -> List[T]:
        """Return all matching records in insertion order."""
        self._check_filter(where)
        return [
            entity for entity in self._decode(self.store.load(self.collection))
            if self._matches(entity, where)
        ]

    def count(self, **where: Any) -> int:
        return len(self.find_many(**where))

    def _decode(self, records: List[Dict[str, Any]]) -> List[T]:
        entities = []
        for index, record in enumerate(records):
            try:
                entities.append(self.model.from_record(record))
            except (TypeError, ValueError, AttributeError) as e:
                raise StorageError(
                    self.collection, f"record at index {index} is malformed: {e}"
                ) from e
        return entities

    def _check_filter(self, where: Dict[str, Any]) -> None:
        known = {f.name for f in fields(self.model)}
        unknown = set(where) - known
        if unknown:
            raise ValueError(f"Unknown {self.model.__name__} fields in filter: {unknown}")

    @staticmethod
    def _matches(entity: T, where: Dict[str, Any]) -> bool:
        return all(getattr(entity, name) == value for name, value in where.items())

    def _check_unique(self, existing: List[T], candidate: T) -> None:
        for key_fields in self.unique_together:
            key = {name: getattr(candidate, name) for name in key_fields}
            for other in existing:
                if other.id != candidate.id and self._matches(other, key):
                    logger.warning("Rejected duplicate %s record for %s", self.collection, key)
                    raise ConflictError(self.collection, key)


class UpdatableRepository(Repository[T]):
    """Repository whose records may be replaced with partial changes."""

    touch_field: Optional[str] = None
    immutable_fields: Tuple[str, ...] = ()

    def update(self, id: str, /, **changes: Any) -> Optional[T]:
        """Merge changes into the record with the given id and persist it.

        Returns:
            The updated record, or None if no record has that id

        Raises:
            ConflictError: If the change would duplicate a unique key
            ValueError: If a change names an unknown or immutable field
        """
        frozen = {"id", *self.created_fields, *self.immutable_fields} - {self.touch_field}
        known = {f.name for f in fields(self.model)}
        bad = (set(changes) & frozen) | (set(changes) - known)
        if bad:
            raise ValueError(f"Cannot update {self.model.__name__} fields: {sorted(bad)}")

        with self.store.mutate(self.collection) as records:
            existing = self._decode(records)
            for index, entity in enumerate(existing):
                if entity.id != id:
                    continue
                if self.touch_field:
                    changes[self.touch_field] = self.clock()
                updated = replace(entity, **changes)
                self._check_change(entity, updated)
                self._check_unique(existing, updated)
                records[index] = updated.to_record()
                return updated
            # No match: the collection is written back unchanged.
        return None

    def _check_change(self, current: T, updated: T) -> None:
        """Hook for subclasses to refuse a change; raising aborts the write."""


class DeletableRepository(Repository[T]):
    """Repository whose records may be removed."""

    def delete(self, **where: Any) -> int:
        """Remove every record matching the filters.

        Returns:
            Number of records removed
        """
        if not where:
            raise ValueError("delete requires at least one filter")
        self._check_filter(where)
        with self.store.mutate(self.collection) as records:
            existing = self._decode(records)
            kept = [
                record for record, entity in zip(records, existing)
                if not self._matches(entity, where)
            ]
            removed = len(records) - len(kept)
            records[:] = kept
        if removed:
            logger.debug("Deleted %d %s record(s)", removed, self.collection)
        return removed


class UserRepository(UpdatableRepository[User]):
    collection = "users"
    model = User
    created_fields = ("created_at", "updated_at")
    touch_field = "updated_at"
    unique_together = (("email",),)


class AccountRepository(Repository[Account]):
    collection = "accounts"
    model = Account


class SessionRepository(DeletableRepository[Session]):
    collection = "sessions"
    model = Session
    unique_together = (("session_token",),)


class QuizSetRepository(DeletableRepository[QuizSet]):
    collection = "quiz-sets"
    model = QuizSet
    created_fields = ("created_at", "updated_at")


class QuizAttemptRepository(Repository[QuizAttempt]):
    collection = "quiz-attempts"
    model = QuizAttempt
    created_fields = ("completed_at",)


class UsageLogRepository(Repository[UsageLog]):
    collection = "usage-logs"
    model = UsageLog
    created_fields = ("created_at",)


class MonthlyUsageRepository(UpdatableRepository[MonthlyUsage]):
    collection = "monthly-usage"
    model = MonthlyUsage
    created_fields = ("last_updated",)
    touch_field = "last_updated"
    immutable_fields = ("user_id", "month_year")
    unique_together = (("user_id", "month_year"),)

    def _check_change(self, current: MonthlyUsage, updated: MonthlyUsage) -> None:
        if updated.total_prompts < current.total_prompts:
            raise ValueError(
                f"total_prompts cannot decrease within a month "
                f"({current.total_prompts} -> {updated.total_prompts})"
            )
        if updated.total_cost < current.total_cost:
            raise ValueError(
                f"total_cost cannot decrease within a month "
                f"({current.total_cost} -> {updated.total_cost})"
            )

    def increment(
        self,
        user_id: str,
        month_year: str,
        prompts: int = 1,
        cost: float = 0.0
    ) -> MonthlyUsage:
        """Add to a month's counters, creating the row if it does not exist.

        The lookup and the write happen under one collection lock, so
        concurrent increments are never lost.
        """
        with self.store.mutate(self.collection) as records:
            existing = self._decode(records)
            now = self.clock()
            for index, row in enumerate(existing):
                if row.user_id == user_id and row.month_year == month_year:
                    updated = replace(
                        row,
                        total_prompts=row.total_prompts + prompts,
                        total_cost=round(row.total_cost + cost, 6),
                        last_updated=now,
                    )
                    records[index] = updated.to_record()
                    return updated

            record_id = self.store.new_id()
            created = MonthlyUsage(
                id=record_id,
                user_id=user_id,
                month_year=month_year,
                total_prompts=prompts,
                total_cost=cost,
                last_updated=now,
            )
            records.append(created.to_record())
        return created


class Database:
    """One record store with a repository per entity kind."""

    def __init__(self, data_dir: str = DEFAULT_DATA_DIR, clock: Clock = utcnow):
        """Initialize repositories over a data directory.

        Args:
            data_dir: Directory holding the collection files
            clock: Source of timestamps for created/updated fields
        """
        self.store = RecordStore(data_dir)
        self.users = UserRepository(self.store, clock)
        self.accounts = AccountRepository(self.store, clock)
        self.sessions = SessionRepository(self.store, clock)
        self.quiz_sets = QuizSetRepository(self.store, clock)
        self.quiz_attempts = QuizAttemptRepository(self.store, clock)
        self.usage_logs = UsageLogRepository(self.store, clock)
        self.monthly_usage = MonthlyUsageRepository(self.store, clock)


# Global database instance
_default_database: Optional[Database] = None


def get_database(data_dir: str = DEFAULT_DATA_DIR) -> Database:
    """Get the process-wide database.

    The first call fixes the data directory; later calls return the same
    instance.

    Args:
        data_dir: Directory holding the collection files
    """
    global _default_database
    if _default_database is None:
        _default_database = Database(data_dir)
    return _default_database
