"""
Monthly usage metering and quota enforcement.

Every metered action (an AI quiz generation) is logged and counted against
a fixed per-user monthly quota. Months are keyed by the UTC ``YYYY-MM`` of
the wall clock at call time, so a new month starts from zero without any
reset job.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, Optional, TypeVar

from quizgen.storage.models import MonthlyUsage
from quizgen.storage.repository import Clock, Database, utcnow

logger = logging.getLogger(__name__)

MONTHLY_LIMIT = 10

GENERATE_QUIZ = "GENERATE_QUIZ"
UPLOAD_PDF = "UPLOAD_PDF"

T = TypeVar("T")


class QuotaExceededError(Exception):
    """Raised when a metered action is refused because the month's quota is used up."""
    def __init__(self, user_id: str, used: int, limit: int):
        super().__init__(f"Monthly generation limit reached ({limit} per month)")
        self.user_id = user_id
        self.used = used
        self.limit = limit


@dataclass(frozen=True)
class UsageSnapshot:
    """Usage of one user in the current month."""
    used: int
    limit: int
    month_year: str

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.used)

    def to_dict(self) -> Dict[str, int]:
        return {"used": self.used, "limit": self.limit}


def month_key(moment: Optional[datetime] = None) -> str:
    """Return the ``YYYY-MM`` key of a moment, in UTC.

    Naive datetimes are taken to be UTC already.
    """
    moment = moment or datetime.now(timezone.utc)
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m")


class UsageMeter:
    """Checks and records metered actions for users."""

    def __init__(self, db: Database, clock: Clock = utcnow):
        """Initialize the meter.

        Args:
            db: Database holding usage logs and monthly counters
            clock: Wall clock used to derive the month key
        """
        self.db = db
        self.clock = clock

    def current_month(self) -> str:
        return month_key(self.clock())

    def _monthly_row(self, user_id: str, month_year: str) -> Optional[MonthlyUsage]:
        return self.db.monthly_usage.find_unique(user_id=user_id, month_year=month_year)

    def check_monthly_limit(self, user_id: str) -> bool:
        """Return True if the user may perform another metered action this month.

        A user without a row for the current month has used nothing.
        """
        row = self._monthly_row(user_id, self.current_month())
        used = row.total_prompts if row else 0
        return used < MONTHLY_LIMIT

    def get_current_usage(self, user_id: str) -> UsageSnapshot:
        month_year = self.current_month()
        row = self._monthly_row(user_id, month_year)
        return UsageSnapshot(
            used=row.total_prompts if row else 0,
            limit=MONTHLY_LIMIT,
            month_year=month_year,
        )

    def record_usage(
        self,
        user_id: str,
        action: str,
        prompt_text: Optional[str] = None,
        cost_estimate: Optional[float] = None
    ) -> MonthlyUsage:
        """Log a metered action and add it to the month's counters.

        Appends a usage log row, then upserts the user's monthly row (one more
        prompt, plus the cost estimate). Recording is not limited by the
        quota; callers gate with ``check_monthly_limit`` first.

        Args:
            user_id: User who performed the action
            action: Action name, e.g. ``GENERATE_QUIZ``
            prompt_text: Prompt or document description for the audit log
            cost_estimate: Estimated cost of the action

        Returns:
            The monthly usage row after the update

        Raises:
            StorageError: If either write fails
        """
        month_year = self.current_month()
        self.db.usage_logs.create(
            user_id=user_id,
            action=action,
            prompt_text=prompt_text,
            cost_estimate=cost_estimate,
            month_year=month_year,
        )
        row = self.db.monthly_usage.increment(
            user_id, month_year, prompts=1, cost=cost_estimate or 0.0
        )
        logger.info(
            "Usage recorded: user_id=%s, action=%s, month=%s, used=%d/%d",
            user_id, action, month_year, row.total_prompts, MONTHLY_LIMIT
        )
        return row

    def run_metered(
        self,
        user_id: str,
        action: str,
        operation: Callable[[], T],
        prompt_text: Optional[str] = None,
        cost_estimate: Optional[float] = None
    ) -> T:
        """Run an operation behind the quota gate.

        Usage is recorded only after the operation returns. An operation that
        raises consumes no quota and its exception propagates unchanged.

        Raises:
            QuotaExceededError: If the user has no quota left this month
        """
        if not self.check_monthly_limit(user_id):
            snapshot = self.get_current_usage(user_id)
            logger.warning(
                "Quota exceeded: user_id=%s, action=%s, used=%d/%d",
                user_id, action, snapshot.used, snapshot.limit
            )
            raise QuotaExceededError(user_id, snapshot.used, snapshot.limit)

        result = operation()
        self.record_usage(user_id, action, prompt_text, cost_estimate)
        return result
