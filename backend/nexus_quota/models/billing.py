"""Billing mirror and admin override ORM models.

Subscription mirrors the billing provider's view of a user's plan and is
written only by the reconciler. ProcessedBillingEvent records every
external event id that has been applied, making webhook delivery
exactly-once. UsageOverride holds admin-set per-user limit overrides.
"""

import uuid
from datetime import date, datetime

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Uuid,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from nexus_quota.models.base import BIGINT_PK, Base, TimestampMixin


class Subscription(Base, TimestampMixin):
    """Local mirror of the user's subscription at the billing provider.

    Attributes:
        id: Surrogate primary key.
        user_id: FK to users table; one subscription per user.
        tier: Subscribed tier.
        status: active, past_due, or canceled.
        billing_cycle_anchor: Start date of the current billing cycle.
        current_period_end: When the current paid period ends.
        cancel_at_period_end: Demote to free once the period ends.
        last_event_at: Provider timestamp of the last applied event.
        last_event_type: Type of the last applied event (ordering tie-break).
    """

    __tablename__ = "subscriptions"
    __table_args__ = (
        CheckConstraint(
            "tier IN ('free', 'light', 'pro', 'enterprise')",
            name="ck_subscriptions_tier_valid",
        ),
        CheckConstraint(
            "status IN ('active', 'past_due', 'canceled')",
            name="ck_subscriptions_status_valid",
        ),
    )

    id: Mapped[int] = mapped_column(BIGINT_PK, primary_key=True, autoincrement=True)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    tier: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    billing_cycle_anchor: Mapped[date | None] = mapped_column(Date, nullable=True)
    current_period_end: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    cancel_at_period_end: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        server_default=text("false"),
        default=False,
    )
    last_event_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_event_type: Mapped[str | None] = mapped_column(String(40), nullable=True)


class ProcessedBillingEvent(Base):
    """Record of an applied billing event, keyed by the provider's event id.

    Attributes:
        external_event_id: Provider event id (primary key).
        user_id: User the event applied to.
        event_type: Normalized event type.
        occurred_at: Provider timestamp of the event.
        outcome: applied or stale.
        processed_at: When this service applied it.
    """

    __tablename__ = "processed_billing_events"
    __table_args__ = (
        CheckConstraint(
            "outcome IN ('applied', 'stale')",
            name="ck_processed_events_outcome_valid",
        ),
    )

    external_event_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    event_type: Mapped[str] = mapped_column(String(40), nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    outcome: Mapped[str] = mapped_column(String(20), nullable=False)
    processed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )


class UsageOverride(Base, TimestampMixin):
    """Admin-set per-user limits that replace the tier's defaults.

    Every limit column is optional; NULL means "use the tier policy".

    Attributes:
        user_id: PK and FK to users table.
        usage_type: daily or credits, re-tags the user's quota model.
        daily_request_limit: Override for daily tiers.
        monthly_credits: Override for credit tiers.
        max_input_chars: Per-request character limit.
        max_context_messages: Context window in messages.
        allowed_models: Explicit model allow-list.
        set_by_admin_id: Admin who last changed the override.
        reason: Why the override exists.
    """

    __tablename__ = "usage_overrides"
    __table_args__ = (
        CheckConstraint(
            "usage_type IS NULL OR usage_type IN ('daily', 'credits')",
            name="ck_usage_overrides_type_valid",
        ),
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
    )
    usage_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    daily_request_limit: Mapped[int | None] = mapped_column(Integer, nullable=True)
    monthly_credits: Mapped[int | None] = mapped_column(Integer, nullable=True)
    max_input_chars: Mapped[int | None] = mapped_column(Integer, nullable=True)
    max_context_messages: Mapped[int | None] = mapped_column(Integer, nullable=True)
    allowed_models: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    set_by_admin_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    reason: Mapped[str | None] = mapped_column(String(255), nullable=True)
