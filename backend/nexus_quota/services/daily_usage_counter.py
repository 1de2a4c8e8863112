"""Daily usage counter for tiers metered by requests per day.

Days are calendar days in a fixed reference timezone (QUOTA_REFERENCE_TIMEZONE),
so every user's counter rolls over at the same instant regardless of
client locale. A new day is a new row; the previous day's row is kept.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import UTC, date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from sqlalchemy.ext.asyncio import AsyncSession

from nexus_quota.core.config import settings
from nexus_quota.core.errors import (
    InputTooLargeError,
    InvalidAmountError,
    QuotaExceededError,
)
from nexus_quota.repositories.daily_usage_repository import (
    DailyCounts,
    DailyUsageRepository,
)

logger = logging.getLogger(__name__)


def _zone(zone: ZoneInfo | None) -> ZoneInfo:
    return zone if zone is not None else settings.reference_zone


def reference_today(now: datetime | None = None, zone: ZoneInfo | None = None) -> date:
    """Calendar date in the reference timezone.

    Args:
        now: Instant to convert (aware). Defaults to the current time.
        zone: Reference timezone. Defaults to the configured one.

    Returns:
        The date key for daily counters.
    """
    instant = now if now is not None else datetime.now(UTC)
    return instant.astimezone(_zone(zone)).date()


def reset_instant(usage_date: date, zone: ZoneInfo | None = None) -> datetime:
    """Instant at which the counter for ``usage_date`` stops applying."""
    return datetime.combine(usage_date + timedelta(days=1), time.min, tzinfo=_zone(zone))


def next_reset_at(now: datetime | None = None, zone: ZoneInfo | None = None) -> datetime:
    """Next midnight in the reference timezone.

    Args:
        now: Instant to start from (aware). Defaults to the current time.
        zone: Reference timezone. Defaults to the configured one.

    Returns:
        Aware datetime of the next daily reset.
    """
    return reset_instant(reference_today(now, zone), zone)


@dataclass(frozen=True)
class DailyRemaining:
    """Counter state after a successful consumption.

    Attributes:
        usage_date: Day the request was counted against.
        requests_used: Requests counted that day.
        requests_max: Daily request limit.
        chars_used: Characters counted that day.
        chars_max: Per-request character limit.
        resets_at: When the counter rolls over.
    """

    usage_date: date
    requests_used: int
    requests_max: int
    chars_used: int
    chars_max: int
    resets_at: datetime

    @property
    def requests_remaining(self) -> int:
        return max(self.requests_max - self.requests_used, 0)


class DailyUsageCounter:
    """Per-user, per-day request and character counters.

    Args:
        db: Async database session. The caller owns the transaction.
        zone: Reference timezone. Defaults to the configured one.
    """

    def __init__(self, db: AsyncSession, zone: ZoneInfo | None = None) -> None:
        self._db = db
        self._zone = _zone(zone)

    async def peek(self, user_id: uuid.UUID, usage_date: date) -> DailyCounts:
        """Read a day's counts. Never creates a row.

        Args:
            user_id: Account owner.
            usage_date: Day in the reference timezone.

        Returns:
            Stored counts, or zeros.
        """
        return await DailyUsageRepository.peek(self._db, user_id, usage_date)

    async def try_consume(
        self,
        user_id: uuid.UUID,
        usage_date: date,
        *,
        request_cost: int = 1,
        char_cost: int,
        daily_request_limit: int,
        max_input_chars: int,
    ) -> DailyRemaining:
        """Count a request if it fits the day's limits.

        The character check is per request; the request check is against
        the day's running total. A rejected request leaves the counters
        untouched.

        Args:
            user_id: Account owner.
            usage_date: Day in the reference timezone.
            request_cost: Requests to count.
            char_cost: Characters in this request.
            daily_request_limit: Requests allowed per day.
            max_input_chars: Characters allowed per request.

        Returns:
            Counter state after the increment.

        Raises:
            InvalidAmountError: If request_cost is not positive or char_cost
                is negative.
            InputTooLargeError: If char_cost exceeds max_input_chars.
            QuotaExceededError: If the day's request limit would be exceeded.
        """
        if isinstance(request_cost, bool) or request_cost <= 0:
            raise InvalidAmountError(request_cost)
        if isinstance(char_cost, bool) or char_cost < 0:
            raise InvalidAmountError(char_cost)
        if char_cost > max_input_chars:
            raise InputTooLargeError(char_count=char_cost, max_chars=max_input_chars)

        resets_at = reset_instant(usage_date, self._zone)
        counts: DailyCounts | None = None
        if request_cost <= daily_request_limit:
            counts = await DailyUsageRepository.try_increment(
                self._db,
                user_id=user_id,
                usage_date=usage_date,
                request_cost=request_cost,
                char_cost=char_cost,
                request_limit=daily_request_limit,
            )
        if counts is None:
            current = await self.peek(user_id, usage_date)
            logger.info(
                "Daily request limit reached for user %s on %s (%d/%d)",
                user_id,
                usage_date,
                current.request_count,
                daily_request_limit,
            )
            raise QuotaExceededError(
                requests_used=current.request_count,
                requests_max=daily_request_limit,
                resets_at=resets_at,
            )

        return DailyRemaining(
            usage_date=usage_date,
            requests_used=counts.request_count,
            requests_max=daily_request_limit,
            chars_used=counts.char_count,
            chars_max=max_input_chars,
            resets_at=resets_at,
        )
