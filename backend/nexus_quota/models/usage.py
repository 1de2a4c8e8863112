"""Usage accounting ORM models.

DailyUsage holds per-user, per-reference-day counters for daily-quota
tiers. CreditBalance is the materialized per-user pool balance for credit
tiers. CreditTransaction is the append-only ledger the balance is derived
from; it is never updated or deleted.
"""

import uuid
from datetime import date, datetime

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from nexus_quota.models.base import BIGINT_PK, Base, TimestampMixin


class DailyUsage(Base):
    """Request and character counters for one user on one reference day.

    Rows are created lazily by the first consuming request of the day and
    kept for history. A new day is a new row; old rows are never reset.

    Attributes:
        id: Surrogate primary key.
        user_id: FK to users table.
        usage_date: Calendar date in the quota reference timezone.
        request_count: Requests counted on that day.
        char_count: Input characters counted on that day.
    """

    __tablename__ = "daily_usage"
    __table_args__ = (
        UniqueConstraint("user_id", "usage_date", name="uq_daily_usage_user_date"),
        CheckConstraint("request_count >= 0", name="ck_daily_usage_requests_nonneg"),
        CheckConstraint("char_count >= 0", name="ck_daily_usage_chars_nonneg"),
    )

    id: Mapped[int] = mapped_column(BIGINT_PK, primary_key=True, autoincrement=True)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    usage_date: Mapped[date] = mapped_column(Date, nullable=False)
    request_count: Mapped[int] = mapped_column(
        Integer, nullable=False, server_default=text("0"), default=0
    )
    char_count: Mapped[int] = mapped_column(
        Integer, nullable=False, server_default=text("0"), default=0
    )


class CreditBalance(Base, TimestampMixin):
    """Materialized credit balance, one row per user.

    Each pool tracks its own remaining amount. The row must always equal
    the fold of the user's CreditTransaction entries; mutations happen only
    through CreditLedger.

    Attributes:
        user_id: PK and FK to users table.
        base_remaining: Current cycle's recurring grant still unspent.
        rollover_remaining: Credits carried from earlier cycles (capped).
        purchased_remaining: Purchased credits; never expire, spent last.
        used: Lifetime consumption. Never decreases.
        cycle_used: Consumption since the last cycle reset.
        current_cycle_start: Date of the last applied cycle reset.
        frozen_at: Set when an invariant violation halts consumption.
    """

    __tablename__ = "credit_balances"
    __table_args__ = (
        CheckConstraint("base_remaining >= 0", name="ck_credit_base_nonneg"),
        CheckConstraint("rollover_remaining >= 0", name="ck_credit_rollover_nonneg"),
        CheckConstraint(
            "purchased_remaining >= 0", name="ck_credit_purchased_nonneg"
        ),
        CheckConstraint("used >= 0", name="ck_credit_used_nonneg"),
        CheckConstraint("cycle_used >= 0", name="ck_credit_cycle_used_nonneg"),
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
    )
    base_remaining: Mapped[int] = mapped_column(
        Integer, nullable=False, server_default=text("0"), default=0
    )
    rollover_remaining: Mapped[int] = mapped_column(
        Integer, nullable=False, server_default=text("0"), default=0
    )
    purchased_remaining: Mapped[int] = mapped_column(
        Integer, nullable=False, server_default=text("0"), default=0
    )
    used: Mapped[int] = mapped_column(
        Integer, nullable=False, server_default=text("0"), default=0
    )
    cycle_used: Mapped[int] = mapped_column(
        Integer, nullable=False, server_default=text("0"), default=0
    )
    current_cycle_start: Mapped[date | None] = mapped_column(Date, nullable=True)
    frozen_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )


class CreditTransaction(Base):
    """Append-only ledger of every credit-affecting event.

    Positive amounts add to ``pool``; negative amounts draw from it. A
    logical operation that touches several pools writes one entry per pool.

    Attributes:
        id: Auto-increment id; defines the strict per-user order.
        user_id: FK to users table.
        transaction_type: grant_monthly, grant_rollover, grant_purchase,
            consume, admin_grant, refund, expire_rollover, close_base.
        amount: Signed credit amount.
        pool: base, rollover, or purchased.
        reason: Free text or model identifier.
        acting_admin_id: Admin who issued a manual grant.
        operation_id: Client key that makes a consumption retry-safe.
        reference_id: Dedupe token or external event id.
        created_at: Transaction timestamp.
    """

    __tablename__ = "credit_transactions"
    __table_args__ = (
        CheckConstraint(
            "transaction_type IN ('grant_monthly', 'grant_rollover', "
            "'grant_purchase', 'consume', 'admin_grant', 'refund', "
            "'expire_rollover', 'close_base')",
            name="ck_credit_txn_type_valid",
        ),
        CheckConstraint(
            "pool IN ('base', 'rollover', 'purchased')",
            name="ck_credit_txn_pool_valid",
        ),
        CheckConstraint("amount <> 0", name="ck_credit_txn_amount_nonzero"),
        Index("ix_credit_transactions_user_id", "user_id", "id"),
        Index("ix_credit_transactions_user_operation", "user_id", "operation_id"),
    )

    id: Mapped[int] = mapped_column(BIGINT_PK, primary_key=True, autoincrement=True)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    transaction_type: Mapped[str] = mapped_column(String(20), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    pool: Mapped[str] = mapped_column(String(20), nullable=False)
    reason: Mapped[str] = mapped_column(String(255), nullable=False)
    acting_admin_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    operation_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    reference_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
