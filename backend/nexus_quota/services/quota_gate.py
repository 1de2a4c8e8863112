"""Quota enforcement gate.

The single entry point the chat pipeline calls before any
resource-consuming request. Resolves the user's effective tier and policy,
checks the model and input size, then reserves capacity from the daily
counter or the credit ledger depending on the policy's usage type.

Every quota failure is returned as a QuotaRejection carrying the
remaining-quota metadata the UI needs; no QuotaError escapes
check_and_reserve(). The gate never calls the model itself. If the
downstream call is aborted, the caller refunds through
CreditLedger.refund().
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from typing import Any
from zoneinfo import ZoneInfo

from sqlalchemy.ext.asyncio import AsyncSession

from nexus_quota.core.errors import (
    InputTooLargeError,
    ModelNotAllowedError,
    NotFoundError,
    QuotaError,
)
from nexus_quota.models.base import as_utc
from nexus_quota.repositories.override_repository import OverrideRepository
from nexus_quota.repositories.subscription_repository import SubscriptionRepository
from nexus_quota.repositories.user_repository import UserRepository
from nexus_quota.services.billing_reconciler import SubscriptionStatus
from nexus_quota.services.credit_ledger import CreditLedger, CreditRemaining
from nexus_quota.services.daily_usage_counter import (
    DailyRemaining,
    DailyUsageCounter,
    reference_today,
    reset_instant,
)
from nexus_quota.services.quota_policy import (
    MODEL_CATALOG,
    DailyLimits,
    Tier,
    TierPolicy,
    UsageType,
    apply_override,
    model_credit_cost,
    resolve_policy,
)

logger = logging.getLogger(__name__)

PAYMENT_PAST_DUE = "payment_past_due"


@dataclass(frozen=True)
class QuotaRejection:
    """Structured refusal returned instead of raising.

    Attributes:
        kind: Stable rejection kind (daily_request_limit, input_too_long,
            model_not_allowed, insufficient_credits, ledger_frozen).
        code: Error code for the API envelope.
        message: User-safe message.
        status_code: HTTP status the API layer responds with.
        details: Remaining quota, reset time, or upgrade path.
    """

    kind: str
    code: str
    message: str
    status_code: int
    details: dict[str, Any]

    @classmethod
    def from_error(cls, error: QuotaError) -> "QuotaRejection":
        return cls(
            kind=error.kind,
            code=error.code,
            message=error.message,
            status_code=error.status_code,
            details=dict(error.detail),
        )


@dataclass(frozen=True)
class Reservation:
    """Permission to run one resource-consuming request.

    Attributes:
        user_id: Account charged.
        tier: Effective tier used for the decision.
        usage_type: Quota model that was charged.
        model_id: Model the request will use.
        char_count: Characters in the request.
        cost: Requests (daily) or credits (credits) reserved.
        remaining: Counter or balance state after the reservation.
        warnings: Non-blocking account states, e.g. payment_past_due.
        operation_id: Client idempotency key, if given.
    """

    user_id: uuid.UUID
    tier: Tier
    usage_type: UsageType
    model_id: str
    char_count: int
    cost: int
    remaining: DailyRemaining | CreditRemaining
    warnings: tuple[str, ...] = ()
    operation_id: str | None = None

    @property
    def replayed(self) -> bool:
        return isinstance(self.remaining, CreditRemaining) and self.remaining.replayed


@dataclass(frozen=True)
class DailyQuotaStatus:
    """Quota status for daily-metered users."""

    tier: Tier
    requests_used: int
    requests_max: int
    chars_used: int
    chars_max: int
    resets_at: datetime
    max_context_messages: int
    allowed_models: tuple[str, ...]
    warnings: tuple[str, ...] = ()
    usage_type: UsageType = UsageType.DAILY

    @property
    def requests_remaining(self) -> int:
        return max(self.requests_max - self.requests_used, 0)


@dataclass(frozen=True)
class CreditQuotaStatus:
    """Quota status for credit-metered users.

    ``total`` is what the user held for the current cycle (remaining plus
    spent this cycle); ``used`` is spending since the last cycle reset.
    ``estimated_requests`` maps each allowed model to the messages the
    current balance still covers.
    """

    tier: Tier
    available: int
    total: int
    used: int
    base: int
    rollover: int
    purchased: int
    current_cycle_start: date | None
    frozen: bool
    max_input_chars: int
    max_context_messages: int
    estimated_requests: dict[str, int] = field(default_factory=dict)
    warnings: tuple[str, ...] = ()
    usage_type: UsageType = UsageType.CREDITS


class QuotaGate:
    """Reserve-or-reject for chat requests.

    Args:
        db: Async database session. The reservation is durable once the
            caller's transaction commits.
        zone: Reference timezone for daily counters.
    """

    def __init__(self, db: AsyncSession, zone: ZoneInfo | None = None) -> None:
        self._db = db
        self._counter = DailyUsageCounter(db, zone)
        self._ledger = CreditLedger(db)
        self._zone = zone

    async def effective_tier(
        self, user_id: uuid.UUID, now: datetime
    ) -> tuple[str, tuple[str, ...]]:
        """Tier to enforce and any account warnings.

        A canceled subscription whose paid period has ended counts as free
        even before the demotion job has run.

        Args:
            user_id: Account owner.
            now: Decision instant (aware).

        Returns:
            (tier, warnings).

        Raises:
            NotFoundError: If the user does not exist.
        """
        tier = await UserRepository.get_tier(self._db, user_id)
        if tier is None:
            raise NotFoundError("User", str(user_id))

        warnings: list[str] = []
        subscription = await SubscriptionRepository.get(self._db, user_id)
        if subscription is not None:
            if subscription.status == SubscriptionStatus.PAST_DUE.value:
                warnings.append(PAYMENT_PAST_DUE)
            if (
                subscription.status == SubscriptionStatus.CANCELED.value
                and subscription.cancel_at_period_end
                and subscription.current_period_end is not None
                and as_utc(subscription.current_period_end) <= now
            ):
                tier = Tier.FREE.value
        return tier, tuple(warnings)

    async def effective_policy(self, user_id: uuid.UUID, tier: str) -> TierPolicy:
        """Tier policy with the user's admin override applied."""
        override = await OverrideRepository.get(self._db, user_id)
        return apply_override(resolve_policy(tier), override)

    async def check_and_reserve(
        self,
        user_id: uuid.UUID,
        estimated_char_count: int,
        model_id: str,
        *,
        operation_id: str | None = None,
        now: datetime | None = None,
    ) -> Reservation | QuotaRejection:
        """Reserve capacity for one request, or explain why not.

        Args:
            user_id: Account owner.
            estimated_char_count: Characters in the request.
            model_id: Model the request will use.
            operation_id: Client key making credit consumption retry-safe.
            now: Decision instant. Defaults to the current time.

        Returns:
            Reservation on success, QuotaRejection on any quota failure.

        Raises:
            NotFoundError: If the user does not exist.
            InvalidAmountError: If estimated_char_count is negative.
        """
        now = now if now is not None else datetime.now(UTC)
        tier, warnings = await self.effective_tier(user_id, now)
        policy = await self.effective_policy(user_id, tier)

        try:
            if model_id not in policy.allowed_models:
                raise ModelNotAllowedError(model_id=model_id, tier=policy.tier.value)
            if estimated_char_count > policy.max_input_chars:
                raise InputTooLargeError(
                    char_count=estimated_char_count, max_chars=policy.max_input_chars
                )

            remaining: DailyRemaining | CreditRemaining
            limits = policy.limits
            if isinstance(limits, DailyLimits):
                cost = 1
                remaining = await self._counter.try_consume(
                    user_id,
                    reference_today(now, self._zone),
                    request_cost=cost,
                    char_cost=estimated_char_count,
                    daily_request_limit=limits.daily_request_limit,
                    max_input_chars=policy.max_input_chars,
                )
            else:
                cost = model_credit_cost(model_id, tier=policy.tier.value)
                remaining = await self._ledger.consume(
                    user_id, cost, model_id, operation_id=operation_id
                )
        except QuotaError as exc:
            logger.info(
                "Quota rejection for user %s: %s (%s)", user_id, exc.kind, model_id
            )
            return QuotaRejection.from_error(exc)

        return Reservation(
            user_id=user_id,
            tier=policy.tier,
            usage_type=policy.usage_type,
            model_id=model_id,
            char_count=estimated_char_count,
            cost=cost,
            remaining=remaining,
            warnings=warnings,
            operation_id=operation_id,
        )

    async def get_quota_status(
        self, user_id: uuid.UUID, *, now: datetime | None = None
    ) -> DailyQuotaStatus | CreditQuotaStatus:
        """Read-only quota summary in the shape of the user's usage type.

        Args:
            user_id: Account owner.
            now: Instant for the daily date key. Defaults to the current time.

        Returns:
            DailyQuotaStatus or CreditQuotaStatus.

        Raises:
            NotFoundError: If the user does not exist.
        """
        now = now if now is not None else datetime.now(UTC)
        tier, warnings = await self.effective_tier(user_id, now)
        policy = await self.effective_policy(user_id, tier)
        limits = policy.limits

        if isinstance(limits, DailyLimits):
            today = reference_today(now, self._zone)
            counts = await self._counter.peek(user_id, today)
            return DailyQuotaStatus(
                tier=policy.tier,
                requests_used=counts.request_count,
                requests_max=limits.daily_request_limit,
                chars_used=counts.char_count,
                chars_max=policy.max_input_chars,
                resets_at=reset_instant(today, self._zone),
                max_context_messages=policy.max_context_messages,
                allowed_models=tuple(sorted(policy.allowed_models)),
                warnings=warnings,
            )

        balance = await self._ledger.get_balance(user_id)
        estimated = {
            model_id: balance.available // MODEL_CATALOG[model_id].credit_cost
            for model_id in sorted(policy.allowed_models)
            if model_id in MODEL_CATALOG
        }
        return CreditQuotaStatus(
            tier=policy.tier,
            available=balance.available,
            total=balance.available + balance.cycle_used,
            used=balance.cycle_used,
            base=balance.base,
            rollover=balance.rollover,
            purchased=balance.purchased,
            current_cycle_start=balance.current_cycle_start,
            frozen=balance.frozen_at is not None,
            max_input_chars=policy.max_input_chars,
            max_context_messages=policy.max_context_messages,
            estimated_requests=estimated,
            warnings=warnings,
        )
