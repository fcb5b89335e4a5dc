"""
Usage Audit Log - append-only record of billed AI calls.

Entries are written once per successful billed operation and never touched
again; the admin usage report aggregates them by user, operation and day.
"""

from collections import Counter
from datetime import UTC, datetime, timedelta

from structlog import get_logger

from manabee.models.api import TimeRange, UsageStatsResponse
from manabee.models.domain import UsageLogEntry, date_bucket
from manabee.storage import Store

logger = get_logger(__name__)

OPERATION_GENERATE_LESSON = "generateLessonContent"
OPERATION_ANALYZE_QUESTION = "analyzeQuestion"

TIME_RANGE_DAYS: dict[str, int] = {"7d": 7, "30d": 30}


class UsageAuditLog:
    """Writes and aggregates UsageLogEntry records."""

    def __init__(self, store: Store) -> None:
        self.store = store

    async def record(self, user_id: str, operation: str) -> UsageLogEntry:
        """Append one usage entry stamped with the current time."""
        now = datetime.now(UTC)
        entry = UsageLogEntry(
            user_id=user_id,
            operation=operation,
            timestamp=now,
            date_bucket=date_bucket(now.date()),
        )
        await self.store.append_usage(entry)
        logger.info("usage_logged", user_id=user_id, operation=operation)
        return entry

    async def stats(self, time_range: TimeRange = "7d") -> UsageStatsResponse:
        """Aggregate usage over the last 7 or 30 days."""
        cutoff = datetime.now(UTC) - timedelta(days=TIME_RANGE_DAYS[time_range])
        entries = await self.store.list_usage_since(cutoff)

        by_user = Counter(e.user_id for e in entries)
        by_function = Counter(e.operation for e in entries)
        by_date = Counter(e.date_bucket for e in entries)

        return UsageStatsResponse(
            total_calls=len(entries),
            by_user=dict(by_user),
            by_function=dict(by_function),
            by_date=dict(sorted(by_date.items())),
            time_range=time_range,
        )
