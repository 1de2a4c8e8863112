"""Tests for the daily usage counter.

Covers the reference-timezone day boundary, the per-day request limit,
the per-request character limit, and day isolation.
"""

import asyncio
from datetime import UTC, date, datetime
from zoneinfo import ZoneInfo

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from nexus_quota.core.errors import (
    InputTooLargeError,
    InvalidAmountError,
    QuotaExceededError,
)
from nexus_quota.models import User
from nexus_quota.services.daily_usage_counter import (
    DailyUsageCounter,
    next_reset_at,
    reference_today,
    reset_instant,
)

SEOUL = ZoneInfo("Asia/Seoul")
_DAY = date(2026, 3, 14)
_LIMIT = 10
_MAX_CHARS = 3000


async def _consume(
    counter: DailyUsageCounter,
    user: User,
    *,
    usage_date: date = _DAY,
    char_cost: int = 100,
):
    return await counter.try_consume(
        user.id,
        usage_date,
        char_cost=char_cost,
        daily_request_limit=_LIMIT,
        max_input_chars=_MAX_CHARS,
    )


# =============================================================================
# Day boundary
# =============================================================================


class TestReferenceDay:
    """Days are calendar days in the reference timezone."""

    def test_utc_afternoon_is_next_day_in_seoul(self) -> None:
        now = datetime(2026, 1, 1, 15, 30, tzinfo=UTC)
        assert reference_today(now, SEOUL) == date(2026, 1, 2)

    def test_utc_morning_is_same_day_in_seoul(self) -> None:
        now = datetime(2026, 1, 1, 14, 59, tzinfo=UTC)
        assert reference_today(now, SEOUL) == date(2026, 1, 1)

    def test_reset_instant_is_next_local_midnight(self) -> None:
        resets = reset_instant(date(2026, 1, 1), SEOUL)
        assert resets == datetime(2026, 1, 1, 15, 0, tzinfo=UTC)

    def test_next_reset_after_now(self) -> None:
        now = datetime(2026, 1, 1, 15, 30, tzinfo=UTC)
        resets = next_reset_at(now, SEOUL)
        assert resets > now
        assert resets == datetime(2026, 1, 2, 15, 0, tzinfo=UTC)

    def test_same_instant_maps_to_same_day_regardless_of_client_zone(self) -> None:
        instant = datetime(2026, 6, 1, 3, 0, tzinfo=UTC)
        from_la = instant.astimezone(ZoneInfo("America/Los_Angeles"))
        assert reference_today(instant, SEOUL) == reference_today(from_la, SEOUL)


# =============================================================================
# Counting
# =============================================================================


class TestTryConsume:
    """Request and character counting against the daily limit."""

    async def test_first_request_creates_the_day(
        self, db_session: AsyncSession, free_user: User
    ) -> None:
        counter = DailyUsageCounter(db_session, SEOUL)
        remaining = await _consume(counter, free_user, char_cost=250)

        assert remaining.requests_used == 1
        assert remaining.requests_remaining == _LIMIT - 1
        assert remaining.chars_used == 250
        assert remaining.resets_at == reset_instant(_DAY, SEOUL)

    async def test_eleventh_request_is_rejected(
        self, db_session: AsyncSession, free_user: User
    ) -> None:
        counter = DailyUsageCounter(db_session, SEOUL)
        for _ in range(_LIMIT):
            await _consume(counter, free_user)

        with pytest.raises(QuotaExceededError) as exc_info:
            await _consume(counter, free_user)

        detail = exc_info.value.detail
        assert exc_info.value.status_code == 429
        assert detail["requests_used"] == _LIMIT
        assert detail["requests_remaining"] == 0
        assert detail["resets_at"] == reset_instant(_DAY, SEOUL).isoformat()

    async def test_rejection_leaves_counters_untouched(
        self, db_session: AsyncSession, free_user: User
    ) -> None:
        counter = DailyUsageCounter(db_session, SEOUL)
        for _ in range(_LIMIT):
            await _consume(counter, free_user, char_cost=10)

        with pytest.raises(QuotaExceededError):
            await _consume(counter, free_user, char_cost=10)

        counts = await counter.peek(free_user.id, _DAY)
        assert counts.request_count == _LIMIT
        assert counts.char_count == 10 * _LIMIT

    async def test_input_too_long_is_rejected_without_counting(
        self, db_session: AsyncSession, free_user: User
    ) -> None:
        counter = DailyUsageCounter(db_session, SEOUL)

        with pytest.raises(InputTooLargeError) as exc_info:
            await _consume(counter, free_user, char_cost=_MAX_CHARS + 1)

        assert exc_info.value.status_code == 413
        counts = await counter.peek(free_user.id, _DAY)
        assert counts.request_count == 0

    async def test_exact_char_limit_is_allowed(
        self, db_session: AsyncSession, free_user: User
    ) -> None:
        counter = DailyUsageCounter(db_session, SEOUL)
        remaining = await _consume(counter, free_user, char_cost=_MAX_CHARS)
        assert remaining.chars_used == _MAX_CHARS

    async def test_new_day_starts_from_zero(
        self, db_session: AsyncSession, free_user: User
    ) -> None:
        counter = DailyUsageCounter(db_session, SEOUL)
        for _ in range(_LIMIT):
            await _consume(counter, free_user)

        remaining = await _consume(counter, free_user, usage_date=date(2026, 3, 15))

        assert remaining.requests_used == 1
        previous = await counter.peek(free_user.id, _DAY)
        assert previous.request_count == _LIMIT

    async def test_users_are_counted_separately(
        self, db_session: AsyncSession, free_user: User, pro_user: User
    ) -> None:
        counter = DailyUsageCounter(db_session, SEOUL)
        for _ in range(_LIMIT):
            await _consume(counter, free_user)

        remaining = await _consume(counter, pro_user)
        assert remaining.requests_used == 1

    async def test_peek_unknown_day_returns_zeros(
        self, db_session: AsyncSession, free_user: User
    ) -> None:
        counts = await DailyUsageCounter(db_session, SEOUL).peek(free_user.id, _DAY)
        assert counts.request_count == 0
        assert counts.char_count == 0

    async def test_zero_limit_rejects_first_request(
        self, db_session: AsyncSession, free_user: User
    ) -> None:
        counter = DailyUsageCounter(db_session, SEOUL)
        with pytest.raises(QuotaExceededError):
            await counter.try_consume(
                free_user.id,
                _DAY,
                char_cost=1,
                daily_request_limit=0,
                max_input_chars=_MAX_CHARS,
            )

    @pytest.mark.parametrize("request_cost", [0, -1])
    async def test_non_positive_request_cost_is_invalid(
        self, db_session: AsyncSession, free_user: User, request_cost: int
    ) -> None:
        counter = DailyUsageCounter(db_session, SEOUL)
        with pytest.raises(InvalidAmountError):
            await counter.try_consume(
                free_user.id,
                _DAY,
                request_cost=request_cost,
                char_cost=1,
                daily_request_limit=_LIMIT,
                max_input_chars=_MAX_CHARS,
            )

    async def test_negative_char_cost_is_invalid(
        self, db_session: AsyncSession, free_user: User
    ) -> None:
        counter = DailyUsageCounter(db_session, SEOUL)
        with pytest.raises(InvalidAmountError):
            await _consume(counter, free_user, char_cost=-5)

    async def test_counts_survive_commit(
        self, db_session: AsyncSession, free_user: User, session_factory
    ) -> None:
        await _consume(DailyUsageCounter(db_session, SEOUL), free_user)
        await db_session.commit()

        async with session_factory() as other:
            counts = await DailyUsageCounter(other, SEOUL).peek(free_user.id, _DAY)
        assert counts.request_count == 1


# =============================================================================
# Concurrency
# =============================================================================


class TestConcurrentRequests:
    """The conditional upsert admits exactly the daily limit under races."""

    async def test_parallel_requests_stop_at_the_limit(
        self,
        free_user: User,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        limit = 3

        async def request() -> bool:
            async with session_factory() as session:
                try:
                    await DailyUsageCounter(session, SEOUL).try_consume(
                        free_user.id,
                        _DAY,
                        char_cost=10,
                        daily_request_limit=limit,
                        max_input_chars=_MAX_CHARS,
                    )
                except QuotaExceededError:
                    await session.rollback()
                    return False
                await session.commit()
                return True

        outcomes = await asyncio.gather(*(request() for _ in range(8)))

        assert outcomes.count(True) == limit
        async with session_factory() as session:
            counts = await DailyUsageCounter(session, SEOUL).peek(free_user.id, _DAY)
            await session.rollback()
        assert counts.request_count == limit
        assert counts.char_count == 10 * limit

    async def test_first_request_of_the_day_races_cleanly(
        self,
        free_user: User,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        async def request() -> int:
            async with session_factory() as session:
                remaining = await DailyUsageCounter(session, SEOUL).try_consume(
                    free_user.id,
                    _DAY,
                    char_cost=1,
                    daily_request_limit=_LIMIT,
                    max_input_chars=_MAX_CHARS,
                )
                await session.commit()
                return remaining.requests_used

        counts = await asyncio.gather(request(), request())

        assert sorted(counts) == [1, 2]
