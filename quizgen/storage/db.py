"""
Flat-file record store.

Each collection is a JSON array of records kept in its own file under the
data directory. Writes replace the whole file atomically; mutating callers
serialize on a per-collection lock.
"""

import json
import logging
import os
import secrets
import tempfile
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List

logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = "data"

COLLECTIONS = (
    "users",
    "accounts",
    "sessions",
    "quiz-sets",
    "quiz-attempts",
    "usage-logs",
    "monthly-usage",
)

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"

# Keyed by resolved file path so separate store instances share one lock.
_collection_locks: Dict[Path, threading.RLock] = {}
_collection_locks_guard = threading.Lock()


class StorageError(Exception):
    """Raised when a collection's backing file cannot be read or written."""
    def __init__(self, collection: str, message: str):
        super().__init__(f"{collection}: {message}")
        self.collection = collection


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits))


def new_id() -> str:
    """Generate a compact, effectively unique record id.

    Millisecond timestamp followed by 64 random bits, both base-36. The random
    part is left-padded so ids issued in the same millisecond stay distinct
    and equally long.
    """
    timestamp = _to_base36(time.time_ns() // 1_000_000)
    random_part = _to_base36(secrets.randbits(64)).rjust(13, "0")
    return timestamp + random_part


class RecordStore:
    """Durable storage of named collections of JSON records."""

    def __init__(self, data_dir: str = DEFAULT_DATA_DIR):
        """Initialize the store.

        Args:
            data_dir: Directory holding one ``<collection>.json`` per collection
        """
        self.data_dir = Path(data_dir)

    def path_for(self, collection: str) -> Path:
        """Return the backing file for a collection."""
        return self.data_dir / f"{collection}.json"

    def new_id(self) -> str:
        return new_id()

    def load(self, collection: str) -> List[Dict[str, Any]]:
        """Load all records of a collection in insertion order.

        A missing file is an empty collection (first run). Anything else that
        prevents reading the file is a storage failure.

        Raises:
            StorageError: If the file exists but is unreadable or malformed
        """
        path = self.path_for(collection)
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return []
        except json.JSONDecodeError as e:
            raise StorageError(collection, f"invalid JSON in {path}: {e}") from e
        except OSError as e:
            raise StorageError(collection, f"cannot read {path}: {e}") from e

        if not isinstance(data, list):
            raise StorageError(collection, f"{path} must contain a JSON array")
        return data

    def save(self, collection: str, records: List[Dict[str, Any]]) -> None:
        """Overwrite a collection with the given records.

        The new content is written to a temporary file next to the target and
        moved into place, so readers never see a partially written file.

        Raises:
            StorageError: If the file cannot be written
        """
        path = self.path_for(collection)
        tmp_name = None
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=str(self.data_dir), prefix=f".{collection}.", suffix=".tmp"
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(records, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
            tmp_name = None
        except (OSError, TypeError, ValueError) as e:
            raise StorageError(collection, f"cannot write {path}: {e}") from e
        finally:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)

    @contextmanager
    def lock(self, collection: str) -> Iterator[None]:
        """Hold the collection's re-entrant lock for the duration of the block."""
        key = self.path_for(collection).resolve()
        with _collection_locks_guard:
            collection_lock = _collection_locks.setdefault(key, threading.RLock())
        with collection_lock:
            yield

    @contextmanager
    def mutate(self, collection: str) -> Iterator[List[Dict[str, Any]]]:
        """Load, modify and save a collection under its lock.

        The yielded list is saved back only when the block finishes without
        raising, so a failed mutation leaves the stored collection untouched.
        """
        with self.lock(collection):
            records = self.load(collection)
            yield records
            self.save(collection, records)

    def initialize(self) -> List[Path]:
        """Create empty files for collections that do not exist yet.

        Returns:
            Paths of the files that were created
        """
        created = []
        for collection in COLLECTIONS:
            with self.lock(collection):
                path = self.path_for(collection)
                if not path.exists():
                    self.save(collection, [])
                    created.append(path)
        if created:
            logger.info("Initialized %d collection(s) in %s", len(created), self.data_dir)
        return created
