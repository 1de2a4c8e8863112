"""User profile model.

The profile is the Enforcement Gate's source of truth for a user's tier.
Only the billing reconciler writes ``subscription_tier``.
"""

import uuid

from sqlalchemy import Boolean, CheckConstraint, String, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from nexus_quota.models.base import Base, TimestampMixin


class User(Base, TimestampMixin):
    """User profile.

    Attributes:
        id: UUID primary key.
        email: Unique email address.
        subscription_tier: Current tier (free, light, pro, enterprise).
        is_admin: Whether the user may use admin tooling.
        created_at: Account creation timestamp (from TimestampMixin).
        updated_at: Last modification timestamp (from TimestampMixin).
    """

    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint(
            "subscription_tier IN ('free', 'light', 'pro', 'enterprise')",
            name="ck_users_subscription_tier_valid",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    email: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
    )
    subscription_tier: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        server_default=text("'free'"),
        default="free",
    )
    is_admin: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        server_default=text("false"),
        default=False,
    )
