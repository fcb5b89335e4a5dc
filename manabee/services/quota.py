"""
Quota Ledger - per-user, per-day AI request counter.

The store performs the check and the increment as one conditional write, so
concurrent requests for the same user can never both pass the limit.
"""

from datetime import UTC, date, datetime

from structlog import get_logger

from manabee.models.domain import QuotaDecision
from manabee.observability import metrics
from manabee.storage import Store

logger = get_logger(__name__)


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def _utc_today() -> date:
    """Calendar day used for quota keys (UTC)."""
    return _utc_now().date()


class QuotaLedger:
    """Atomic check-and-consume over QuotaRecord counters."""

    def __init__(self, store: Store) -> None:
        self.store = store

    async def check_and_consume(
        self, user_id: str, day: date, daily_limit: int
    ) -> QuotaDecision:
        """
        Consume one unit of today's quota if any remains.

        Fails closed: if the store cannot be reached the request is treated as
        over quota so AI spend can never run unbounded.
        """
        try:
            decision = await self.store.consume_quota(user_id, day, daily_limit, _utc_now())
        except Exception as e:
            logger.error(
                "quota_store_unavailable",
                user_id=user_id,
                day=day.isoformat(),
                error=str(e),
            )
            metrics.record_quota_decision("fail_closed")
            return QuotaDecision(allowed=False, count=0, limit=daily_limit)

        if decision.allowed:
            logger.info(
                "quota_consumed",
                user_id=user_id,
                day=day.isoformat(),
                count=decision.count,
                limit=daily_limit,
            )
            metrics.record_quota_decision("allowed")
        else:
            logger.warning(
                "quota_exceeded",
                user_id=user_id,
                day=day.isoformat(),
                count=decision.count,
                limit=daily_limit,
            )
            metrics.record_quota_decision("rejected")
        return decision

    async def consume_today(self, user_id: str, daily_limit: int) -> QuotaDecision:
        """check_and_consume for the current UTC day."""
        return await self.check_and_consume(user_id, _utc_today(), daily_limit)
