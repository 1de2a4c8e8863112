"""Billing-state reconciler.

Applies billing provider events (delivered by webhook, possibly more than
once and out of order) to the local subscription mirror, the user's tier,
and the credit ledger. All effects of one event share the caller's
database transaction, so a crash never leaves a new tier with an old
cycle's credits or the reverse.

Exactly-once: every event id is claimed in processed_billing_events with a
conditional insert before any effect is applied. A replay is a successful
no-op.

Ordering: subscription events are totally ordered by
(occurred_at, precedence) with precedence
payment_failed < subscription_canceled < subscription_created <
subscription_renewed. An event ordered before the last applied one is
recorded as stale and its status changes are skipped. A stale
created/renewed event that starts a newer cycle than the mirrored one still
sets the tier and resets the ledger for that cycle together; one for an
older cycle changes nothing. Credit purchases are never stale.
"""

import uuid
from dataclasses import dataclass, replace
from datetime import UTC, date, datetime
from enum import Enum

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from nexus_quota.core.errors import (
    DuplicateEventError,
    NotFoundError,
    UnknownTierError,
    ValidationError,
)
from nexus_quota.models.base import as_utc
from nexus_quota.models.billing import Subscription
from nexus_quota.repositories.override_repository import OverrideRepository
from nexus_quota.repositories.subscription_repository import SubscriptionRepository
from nexus_quota.repositories.user_repository import UserRepository
from nexus_quota.services.credit_ledger import CreditLedger, Pool
from nexus_quota.services.quota_policy import (
    Tier,
    TierPolicy,
    UsageType,
    apply_override,
    lookup_policy,
)

logger = structlog.get_logger()


class BillingEventType(str, Enum):
    """Normalized billing provider event types."""

    SUBSCRIPTION_CREATED = "subscription_created"
    SUBSCRIPTION_RENEWED = "subscription_renewed"
    SUBSCRIPTION_CANCELED = "subscription_canceled"
    PAYMENT_FAILED = "payment_failed"
    CREDITS_PURCHASED = "credits_purchased"


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"


class ReconcileOutcome(str, Enum):
    """What apply_event did with an event."""

    APPLIED = "applied"
    STALE = "stale"
    DUPLICATE = "duplicate"


# Tie-break for events with equal timestamps; a later position wins.
EVENT_PRECEDENCE: dict[str, int] = {
    BillingEventType.PAYMENT_FAILED.value: 0,
    BillingEventType.SUBSCRIPTION_CANCELED.value: 1,
    BillingEventType.SUBSCRIPTION_CREATED.value: 2,
    BillingEventType.SUBSCRIPTION_RENEWED.value: 3,
}

_CYCLE_EVENTS = frozenset(
    {
        BillingEventType.SUBSCRIPTION_CREATED,
        BillingEventType.SUBSCRIPTION_RENEWED,
    }
)


@dataclass(frozen=True)
class BillingEvent:
    """A billing provider event, already authenticated upstream.

    Attributes:
        external_event_id: Provider event id (idempotency key).
        user_id: Account the event applies to.
        event_type: Event type.
        occurred_at: Provider timestamp.
        tier: Subscribed tier (created/renewed).
        cycle_anchor: First day of the billing cycle (created/renewed).
        period_end: End of the paid period.
        credits: Credits bought (credits_purchased).
    """

    external_event_id: str
    user_id: uuid.UUID
    event_type: BillingEventType
    occurred_at: datetime
    tier: str | None = None
    cycle_anchor: date | None = None
    period_end: datetime | None = None
    credits: int | None = None


@dataclass(frozen=True)
class ReconcileResult:
    """Outcome of applying one billing event.

    Attributes:
        external_event_id: Provider event id.
        outcome: applied, stale, or duplicate.
        tier: Profile tier after the event (None for duplicates).
        status: Subscription status after the event, if any.
        transaction_ids: Ledger entries written.
    """

    external_event_id: str
    outcome: ReconcileOutcome
    tier: str | None = None
    status: str | None = None
    transaction_ids: tuple[int, ...] = ()


def event_order_key(occurred_at: datetime, event_type: str | None) -> tuple[datetime, int]:
    """Sort key defining the total order of subscription events."""
    return (
        as_utc(occurred_at).astimezone(UTC),
        EVENT_PRECEDENCE.get(event_type or "", -1),
    )


def is_stale(subscription: Subscription, event: BillingEvent) -> bool:
    """Whether ``event`` is ordered before the last applied event."""
    if subscription.last_event_at is None:
        return False
    last = event_order_key(subscription.last_event_at, subscription.last_event_type)
    return event_order_key(event.occurred_at, event.event_type.value) < last


def _normalize(event: BillingEvent) -> BillingEvent:
    """Validate fields for the event type and convert timestamps to UTC."""
    event = replace(event, event_type=BillingEventType(event.event_type))
    if event.occurred_at.tzinfo is None:
        raise ValidationError("occurred_at must be timezone-aware")
    if event.period_end is not None and event.period_end.tzinfo is None:
        raise ValidationError("period_end must be timezone-aware")
    if event.event_type in _CYCLE_EVENTS:
        if event.tier is None or event.cycle_anchor is None:
            raise ValidationError(
                f"{event.event_type.value} requires tier and cycle_anchor"
            )
        try:
            lookup_policy(event.tier)
        except UnknownTierError as exc:
            raise ValidationError(f"Unknown tier: {event.tier}") from exc
    if event.event_type is BillingEventType.CREDITS_PURCHASED:
        credits = event.credits
        if isinstance(credits, bool) or not isinstance(credits, int) or credits <= 0:
            raise ValidationError("credits_purchased requires a positive credits value")
    return replace(
        event,
        occurred_at=event.occurred_at.astimezone(UTC),
        period_end=event.period_end.astimezone(UTC) if event.period_end else None,
    )


class BillingReconciler:
    """Applies billing events within the caller's transaction.

    Args:
        db: Async database session.
        ledger: Credit ledger bound to the same session.
    """

    def __init__(self, db: AsyncSession, ledger: CreditLedger | None = None) -> None:
        self._db = db
        self._ledger = ledger if ledger is not None else CreditLedger(db)

    async def apply_event(self, event: BillingEvent) -> ReconcileResult:
        """Apply a billing event exactly once.

        Args:
            event: Normalized billing event.

        Returns:
            What happened. Replays return outcome "duplicate".

        Raises:
            ValidationError: If the event is missing fields for its type.
            NotFoundError: If the user does not exist.
        """
        event = _normalize(event)
        try:
            return await self._apply(event)
        except DuplicateEventError:
            logger.info(
                "billing.event_duplicate",
                external_event_id=event.external_event_id,
                user_id=str(event.user_id),
                event_type=event.event_type.value,
            )
            return ReconcileResult(
                external_event_id=event.external_event_id,
                outcome=ReconcileOutcome.DUPLICATE,
            )

    async def _claim(self, event: BillingEvent, outcome: ReconcileOutcome) -> None:
        claimed = await SubscriptionRepository.claim_event(
            self._db,
            external_event_id=event.external_event_id,
            user_id=event.user_id,
            event_type=event.event_type.value,
            occurred_at=event.occurred_at,
            outcome=outcome.value,
        )
        if not claimed:
            raise DuplicateEventError(event.external_event_id)

    async def _effective_policy(self, user_id: uuid.UUID, tier: str) -> TierPolicy:
        override = await OverrideRepository.get(self._db, user_id)
        return apply_override(lookup_policy(tier), override)

    async def _apply(self, event: BillingEvent) -> ReconcileResult:
        current_tier = await UserRepository.get_tier(self._db, event.user_id)
        if current_tier is None:
            raise NotFoundError("User", str(event.user_id))

        if event.event_type is BillingEventType.CREDITS_PURCHASED:
            return await self._apply_purchase(event, current_tier)

        subscription = await SubscriptionRepository.lock_or_create(
            self._db, event.user_id, tier=current_tier
        )
        stale = is_stale(subscription, event)
        outcome = ReconcileOutcome.STALE if stale else ReconcileOutcome.APPLIED
        await self._claim(event, outcome)

        transaction_ids: tuple[int, ...] = ()
        if event.event_type in _CYCLE_EVENTS:
            transaction_ids = await self._apply_cycle(event, subscription, stale)
        elif not stale and event.event_type is BillingEventType.SUBSCRIPTION_CANCELED:
            subscription.status = SubscriptionStatus.CANCELED.value
            subscription.cancel_at_period_end = True
            if event.period_end is not None:
                subscription.current_period_end = event.period_end
        elif not stale and event.event_type is BillingEventType.PAYMENT_FAILED:
            subscription.status = SubscriptionStatus.PAST_DUE.value

        if not stale:
            subscription.last_event_at = event.occurred_at
            subscription.last_event_type = event.event_type.value
        await self._db.flush()

        tier_after = await UserRepository.get_tier(self._db, event.user_id)
        logger.info(
            "billing.event_applied" if not stale else "billing.event_stale",
            external_event_id=event.external_event_id,
            user_id=str(event.user_id),
            event_type=event.event_type.value,
            occurred_at=event.occurred_at.isoformat(),
            tier=tier_after,
            status=subscription.status,
            transaction_ids=list(transaction_ids),
        )
        return ReconcileResult(
            external_event_id=event.external_event_id,
            outcome=outcome,
            tier=tier_after,
            status=subscription.status,
            transaction_ids=transaction_ids,
        )

    async def _apply_cycle(
        self, event: BillingEvent, subscription: Subscription, stale: bool
    ) -> tuple[int, ...]:
        tier = str(event.tier)
        cycle_anchor = event.cycle_anchor
        if cycle_anchor is None:
            raise ValidationError(f"{event.event_type.value} requires cycle_anchor")

        newer_cycle = (
            subscription.billing_cycle_anchor is None
            or cycle_anchor > subscription.billing_cycle_anchor
        )
        if not stale:
            subscription.status = SubscriptionStatus.ACTIVE.value
            subscription.cancel_at_period_end = False
            subscription.current_period_end = event.period_end
        elif newer_cycle:
            # Later events only carried status; the cycle and its tier still
            # belong to this event.
            if event.period_end is not None and (
                subscription.current_period_end is None
                or as_utc(subscription.current_period_end) < event.period_end
            ):
                subscription.current_period_end = event.period_end
        else:
            # An older cycle: reset_cycle would ignore it, and its tier is
            # superseded.
            return ()

        subscription.tier = tier
        if newer_cycle:
            subscription.billing_cycle_anchor = cycle_anchor
        await UserRepository.set_tier(self._db, event.user_id, tier)

        policy = await self._effective_policy(event.user_id, tier)
        if policy.usage_type is not UsageType.CREDITS:
            return ()
        entries = await self._ledger.reset_cycle(
            event.user_id,
            policy.monthly_credits,
            cycle_anchor,
            rollover_limit=policy.rollover_limit,
        )
        return tuple(e.id for e in entries)

    async def _apply_purchase(
        self, event: BillingEvent, current_tier: str
    ) -> ReconcileResult:
        await self._claim(event, ReconcileOutcome.APPLIED)
        entries = await self._ledger.grant(
            event.user_id,
            int(event.credits or 0),
            Pool.PURCHASED,
            "credit purchase",
            reference_id=event.external_event_id,
        )
        subscription = await SubscriptionRepository.get(self._db, event.user_id)
        logger.info(
            "billing.event_applied",
            external_event_id=event.external_event_id,
            user_id=str(event.user_id),
            event_type=event.event_type.value,
            credits=event.credits,
            transaction_ids=[e.id for e in entries],
        )
        return ReconcileResult(
            external_event_id=event.external_event_id,
            outcome=ReconcileOutcome.APPLIED,
            tier=current_tier,
            status=subscription.status if subscription is not None else None,
            transaction_ids=tuple(e.id for e in entries),
        )

    async def expire_canceled_subscriptions(
        self, as_of: datetime | None = None
    ) -> list[uuid.UUID]:
        """Demote canceled subscriptions whose paid period has ended.

        Credits already granted are left in place; the user is metered by
        the free tier's daily counter from here on.

        Args:
            as_of: Cut-off instant. Defaults to the current time.

        Returns:
            Ids of users demoted to free.
        """
        cutoff = (as_of if as_of is not None else datetime.now(UTC)).astimezone(UTC)
        demoted: list[uuid.UUID] = []
        for subscription in await SubscriptionRepository.list_expired_cancellations(
            self._db, cutoff
        ):
            previous_tier = subscription.tier
            subscription.tier = Tier.FREE.value
            subscription.cancel_at_period_end = False
            await UserRepository.set_tier(self._db, subscription.user_id, Tier.FREE.value)
            demoted.append(subscription.user_id)
            logger.info(
                "billing.subscription_expired",
                user_id=str(subscription.user_id),
                previous_tier=previous_tier,
                period_end=as_utc(subscription.current_period_end).isoformat()
                if subscription.current_period_end
                else None,
            )
        await self._db.flush()
        return demoted
