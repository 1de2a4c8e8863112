"""Repository for per-user, per-day usage counters.

The increment is a single conditional upsert so two concurrent requests
for the same (user, day) can never both pass the limit.
"""

import uuid
from dataclasses import dataclass
from datetime import date

from sqlalchemy import Date, Integer, Uuid, bindparam, select, text
from sqlalchemy.ext.asyncio import AsyncSession

from nexus_quota.models.usage import DailyUsage

_INCREMENT_SQL = (
    text(
        "INSERT INTO daily_usage (user_id, usage_date, request_count, char_count) "
        "VALUES (:user_id, :usage_date, :request_cost, :char_cost) "
        "ON CONFLICT (user_id, usage_date) DO UPDATE SET "
        "request_count = daily_usage.request_count + :request_cost, "
        "char_count = daily_usage.char_count + :char_cost "
        "WHERE daily_usage.request_count + :request_cost <= :request_limit "
        "RETURNING request_count, char_count"
    )
    .bindparams(
        bindparam("user_id", type_=Uuid(as_uuid=True)),
        bindparam("usage_date", type_=Date()),
    )
    .columns(request_count=Integer(), char_count=Integer())
)


@dataclass(frozen=True)
class DailyCounts:
    """Counter values for one (user, day) identity."""

    request_count: int = 0
    char_count: int = 0


class DailyUsageRepository:
    """Stateless repository for the daily_usage table.

    All methods are static; no instance state. Pass an AsyncSession
    for every call so the caller controls transaction boundaries.
    """

    @staticmethod
    async def peek(
        db: AsyncSession, user_id: uuid.UUID, usage_date: date
    ) -> DailyCounts:
        """Read counters for a day without creating a row.

        Args:
            db: Async database session.
            user_id: Account owner.
            usage_date: Day in the quota reference timezone.

        Returns:
            Stored counts, or zeros when no row exists.
        """
        stmt = select(DailyUsage.request_count, DailyUsage.char_count).where(
            DailyUsage.user_id == user_id,
            DailyUsage.usage_date == usage_date,
        )
        result = await db.execute(stmt)
        row = result.one_or_none()
        if row is None:
            return DailyCounts()
        return DailyCounts(request_count=row.request_count, char_count=row.char_count)

    @staticmethod
    async def try_increment(
        db: AsyncSession,
        *,
        user_id: uuid.UUID,
        usage_date: date,
        request_cost: int,
        char_cost: int,
        request_limit: int,
    ) -> DailyCounts | None:
        """Atomically add to a day's counters if the request limit allows it.

        Creates the row on first use. Callers must reject request_cost
        greater than request_limit beforehand: the insert branch of the
        upsert is unconditional.

        Args:
            db: Async database session.
            user_id: Account owner.
            usage_date: Day in the quota reference timezone.
            request_cost: Requests to add.
            char_cost: Characters to add.
            request_limit: Maximum request_count after the increment.

        Returns:
            Updated counts, or None if the limit would be exceeded (nothing
            was written).
        """
        result = await db.execute(
            _INCREMENT_SQL,
            {
                "user_id": user_id,
                "usage_date": usage_date,
                "request_cost": request_cost,
                "char_cost": char_cost,
                "request_limit": request_limit,
            },
        )
        row = result.one_or_none()
        if row is None:
            return None
        return DailyCounts(request_count=row.request_count, char_count=row.char_count)
