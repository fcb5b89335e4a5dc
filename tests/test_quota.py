"""
Tests for the Quota Ledger.

Covers the daily limit, concurrent consumers, day isolation and the
fail-closed behaviour when the store is unreachable.
"""

import asyncio
from datetime import UTC, date, datetime
from unittest.mock import AsyncMock

from hypothesis import given, settings
from hypothesis import strategies as st

from manabee.services.quota import QuotaLedger
from manabee.storage import MemoryStore

DAY = date(2026, 10, 19)


class TestCheckAndConsume:
    """Sequential quota consumption."""

    async def test_first_call_creates_counter(self, store: MemoryStore) -> None:
        ledger = QuotaLedger(store)

        decision = await ledger.check_and_consume("u1", DAY, 10)

        assert decision.allowed is True
        assert decision.count == 1
        assert decision.limit == 10
        assert await store.get_quota_count("u1", DAY) == 1

    async def test_call_after_limit_is_rejected_without_increment(
        self, store: MemoryStore
    ) -> None:
        ledger = QuotaLedger(store)
        for _ in range(10):
            assert (await ledger.check_and_consume("u1", DAY, 10)).allowed

        decision = await ledger.check_and_consume("u1", DAY, 10)

        assert decision.allowed is False
        assert decision.count == 10
        assert await store.get_quota_count("u1", DAY) == 10

    async def test_days_are_independent(self, store: MemoryStore) -> None:
        ledger = QuotaLedger(store)
        for _ in range(3):
            await ledger.check_and_consume("u1", DAY, 3)

        assert (await ledger.check_and_consume("u1", DAY, 3)).allowed is False
        assert (await ledger.check_and_consume("u1", date(2026, 10, 20), 3)).allowed is True

    async def test_users_are_independent(self, store: MemoryStore) -> None:
        ledger = QuotaLedger(store)
        await ledger.check_and_consume("u1", DAY, 1)

        assert (await ledger.check_and_consume("u1", DAY, 1)).allowed is False
        assert (await ledger.check_and_consume("u2", DAY, 1)).allowed is True

    async def test_consume_today_uses_utc_day(self, store: MemoryStore) -> None:
        ledger = QuotaLedger(store)

        await ledger.consume_today("u1", 10)

        assert await store.get_quota_count("u1", datetime.now(UTC).date()) == 1


class TestConcurrency:
    """Simultaneous consumers for one (user, day)."""

    async def test_concurrent_calls_never_exceed_limit(self, store: MemoryStore) -> None:
        ledger = QuotaLedger(store)

        decisions = await asyncio.gather(
            *(ledger.check_and_consume("u1", DAY, 10) for _ in range(25))
        )

        assert sum(1 for d in decisions if d.allowed) == 10
        assert await store.get_quota_count("u1", DAY) == 10
        assert sorted(d.count for d in decisions if d.allowed) == list(range(1, 11))


class TestFailClosed:
    """Store outages must not allow unbounded AI spend."""

    async def test_store_error_rejects(self) -> None:
        broken = AsyncMock()
        broken.consume_quota.side_effect = ConnectionError("database unreachable")
        ledger = QuotaLedger(broken)

        decision = await ledger.check_and_consume("u1", DAY, 10)

        assert decision.allowed is False
        assert decision.count == 0
        assert decision.limit == 10


class TestQuotaProperties:
    """Property-based tests for the quota invariant."""

    @given(
        limit=st.integers(min_value=1, max_value=15),
        extra=st.integers(min_value=0, max_value=10),
    )
    @settings(max_examples=50, deadline=None)
    def test_exactly_limit_calls_allowed(self, limit: int, extra: int) -> None:
        """limit + extra concurrent calls yield exactly ``limit`` allowed results."""

        async def run() -> tuple[int, int]:
            store = MemoryStore()
            ledger = QuotaLedger(store)
            decisions = await asyncio.gather(
                *(ledger.check_and_consume("u1", DAY, limit) for _ in range(limit + extra))
            )
            return sum(1 for d in decisions if d.allowed), await store.get_quota_count("u1", DAY)

        allowed, stored = asyncio.run(run())

        assert allowed == limit
        assert stored == limit

    @given(st.integers(min_value=1, max_value=20))
    @settings(max_examples=30, deadline=None)
    def test_rejected_call_leaves_count_unchanged(self, limit: int) -> None:
        async def run() -> tuple[bool, int]:
            store = MemoryStore()
            ledger = QuotaLedger(store)
            for _ in range(limit):
                await ledger.check_and_consume("u1", DAY, limit)
            decision = await ledger.check_and_consume("u1", DAY, limit)
            return decision.allowed, await store.get_quota_count("u1", DAY)

        allowed, count = asyncio.run(run())

        assert allowed is False
        assert count == limit
