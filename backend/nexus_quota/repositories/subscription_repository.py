"""Repository for the subscription mirror and processed billing events.

Only BillingReconciler writes to these tables. The processed-events claim
is a conditional insert, so a replayed webhook is detected without a
read-then-write race.
"""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, String, Uuid, bindparam, select, text
from sqlalchemy.ext.asyncio import AsyncSession

from nexus_quota.models.billing import Subscription

_CLAIM_SQL = (
    text(
        "INSERT INTO processed_billing_events "
        "(external_event_id, user_id, event_type, occurred_at, outcome, processed_at) "
        "VALUES (:external_event_id, :user_id, :event_type, :occurred_at, "
        ":outcome, CURRENT_TIMESTAMP) "
        "ON CONFLICT (external_event_id) DO NOTHING "
        "RETURNING external_event_id"
    )
    .bindparams(
        bindparam("user_id", type_=Uuid(as_uuid=True)),
        bindparam("occurred_at", type_=DateTime(timezone=True)),
    )
    .columns(external_event_id=String())
)

_ENSURE_SQL = text(
    "INSERT INTO subscriptions (user_id, tier, status, cancel_at_period_end, "
    "created_at, updated_at) "
    "VALUES (:user_id, :tier, 'active', false, CURRENT_TIMESTAMP, CURRENT_TIMESTAMP) "
    "ON CONFLICT (user_id) DO NOTHING"
).bindparams(bindparam("user_id", type_=Uuid(as_uuid=True)))


class SubscriptionRepository:
    """Stateless repository for Subscription and ProcessedBillingEvent rows.

    All methods are static; no instance state. Pass an AsyncSession
    for every call so the caller controls transaction boundaries.
    """

    @staticmethod
    async def get(db: AsyncSession, user_id: uuid.UUID) -> Subscription | None:
        """Fetch a user's subscription mirror.

        Args:
            db: Async database session.
            user_id: Account owner.

        Returns:
            Subscription if one has been recorded, None otherwise.
        """
        stmt = select(Subscription).where(Subscription.user_id == user_id)
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def lock_or_create(
        db: AsyncSession, user_id: uuid.UUID, *, tier: str
    ) -> Subscription:
        """Fetch the subscription row for update, creating it first if absent.

        A new row starts active on ``tier`` with no event history.

        Args:
            db: Async database session.
            user_id: Account owner.
            tier: Tier for a newly created row (the profile's current tier).

        Returns:
            Locked Subscription, refreshed from the database.
        """
        await db.execute(_ENSURE_SQL, {"user_id": user_id, "tier": tier})
        stmt = (
            select(Subscription)
            .where(Subscription.user_id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await db.execute(stmt)
        return result.scalar_one()

    @staticmethod
    async def claim_event(
        db: AsyncSession,
        *,
        external_event_id: str,
        user_id: uuid.UUID,
        event_type: str,
        occurred_at: datetime,
        outcome: str,
    ) -> bool:
        """Record a billing event as processed, unless it already was.

        Args:
            db: Async database session.
            external_event_id: Provider event id.
            user_id: User the event applies to.
            event_type: Normalized event type.
            occurred_at: Provider timestamp.
            outcome: applied or stale.

        Returns:
            True if this call claimed the event, False on replay.
        """
        result = await db.execute(
            _CLAIM_SQL,
            {
                "external_event_id": external_event_id,
                "user_id": user_id,
                "event_type": event_type,
                "occurred_at": occurred_at,
                "outcome": outcome,
            },
        )
        return result.one_or_none() is not None

    @staticmethod
    async def list_expired_cancellations(
        db: AsyncSession, as_of: datetime
    ) -> list[Subscription]:
        """List canceled subscriptions whose paid period has ended.

        Args:
            db: Async database session.
            as_of: Cut-off instant (UTC).

        Returns:
            Subscriptions still on a paid tier that are due for demotion.
        """
        stmt = (
            select(Subscription)
            .where(
                Subscription.status == "canceled",
                Subscription.cancel_at_period_end.is_(True),
                Subscription.current_period_end.is_not(None),
                Subscription.current_period_end <= as_of,
                Subscription.tier != "free",
            )
            .order_by(Subscription.current_period_end)
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())
