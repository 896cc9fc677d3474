"""
Data models for storage layer.

Defines the stored entities and their JSON record shape.
"""

from dataclasses import dataclass, field, fields
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Type, TypeVar, get_args, get_type_hints

R = TypeVar("R", bound="Record")


class Role(Enum):
    """Authorization role of a user."""
    USER = "USER"
    ADMIN = "ADMIN"


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def _stored_key(f) -> str:
    return f.metadata.get("key", _camel(f.name))


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp, accepting a trailing ``Z`` for UTC."""
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return datetime.fromisoformat(value)


class Record:
    """Mixin converting a dataclass entity to and from its stored record.

    Attribute names are snake_case in Python and camelCase on disk unless a
    field declares its own ``key`` in its metadata.
    """

    def to_record(self) -> Dict[str, Any]:
        record = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, datetime):
                value = value.isoformat()
            elif isinstance(value, Enum):
                value = value.value
            record[_stored_key(f)] = value
        return record

    @classmethod
    def from_record(cls: Type[R], record: Dict[str, Any]) -> R:
        """Build an entity from a stored record.

        Keys missing from the record fall back to the field default.

        Raises:
            TypeError: If a required field is missing
            ValueError: If a timestamp or enum value is malformed
        """
        hints = get_type_hints(cls)
        kwargs = {}
        for f in fields(cls):
            key = _stored_key(f)
            if key not in record:
                continue
            value = record[key]
            hint = hints[f.name]
            candidates = (hint, *get_args(hint))
            if value is not None:
                if datetime in candidates and isinstance(value, str):
                    value = parse_timestamp(value)
                elif Role in candidates:
                    value = Role(value)
            kwargs[f.name] = value
        return cls(**kwargs)


@dataclass(frozen=True)
class User(Record):
    """A signed-in person. Email identifies at most one user."""
    id: str
    email: str
    created_at: datetime
    updated_at: datetime
    name: Optional[str] = None
    image: Optional[str] = None
    role: Role = Role.USER


@dataclass(frozen=True)
class Account(Record):
    """External identity linked to a user.

    Token fields keep the snake_case keys the identity provider hands over.
    """
    id: str
    user_id: str
    type: str
    provider: str
    provider_account_id: str
    refresh_token: Optional[str] = field(default=None, metadata={"key": "refresh_token"})
    access_token: Optional[str] = field(default=None, metadata={"key": "access_token"})
    expires_at: Optional[int] = field(default=None, metadata={"key": "expires_at"})
    token_type: Optional[str] = field(default=None, metadata={"key": "token_type"})
    scope: Optional[str] = None
    id_token: Optional[str] = field(default=None, metadata={"key": "id_token"})
    session_state: Optional[str] = field(default=None, metadata={"key": "session_state"})


@dataclass(frozen=True)
class Session(Record):
    id: str
    session_token: str
    user_id: str
    expires: datetime


@dataclass(frozen=True)
class QuizSet(Record):
    """A generated quiz. ``questions`` is a JSON string the store never inspects."""
    id: str
    title: str
    questions: str
    created_by: str
    created_at: datetime
    updated_at: datetime
    description: Optional[str] = None


@dataclass(frozen=True)
class QuizAttempt(Record):
    """A finished attempt at a quiz set.

    ``score`` comes from the client and is stored as submitted.
    """
    id: str
    user_id: str
    quiz_set_id: str
    answers: str
    score: int
    total_questions: int
    completed_at: datetime


@dataclass(frozen=True)
class UsageLog(Record):
    """Append-only audit row, one per metered action."""
    id: str
    user_id: str
    action: str
    created_at: datetime
    month_year: str
    prompt_text: Optional[str] = None
    cost_estimate: Optional[float] = None


@dataclass(frozen=True)
class MonthlyUsage(Record):
    """Aggregate usage of one user within one ``YYYY-MM`` month."""
    id: str
    user_id: str
    month_year: str
    total_prompts: int
    total_cost: float
    last_updated: datetime
