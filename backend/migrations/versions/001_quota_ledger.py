"""Create quota accounting and credit ledger tables.

Revision ID: 001_quota_ledger
Revises:
Create Date: 2026-10-18

Creates users, daily_usage, credit_balances, credit_transactions,
subscriptions, processed_billing_events and usage_overrides.

credit_transactions is append-only; the application never issues UPDATE
or DELETE against it. Financial rows cascade on user deletion.
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

revision: str = "001_quota_ledger"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

# Shared column types
_UUID = sa.Uuid(as_uuid=True)
_BIGINT_PK = sa.BigInteger().with_variant(sa.Integer, "sqlite")
_TZ = sa.DateTime(timezone=True)
_TIER_CHECK = "IN ('free', 'light', 'pro', 'enterprise')"


def _user_fk(ondelete: str = "CASCADE") -> sa.ForeignKey:
    return sa.ForeignKey("users.id", ondelete=ondelete)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", _TZ, server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", _TZ, server_default=sa.func.now(), nullable=False),
    ]


def _zero() -> sa.TextClause:
    return sa.text("0")


def upgrade() -> None:
    """Create quota and ledger tables."""
    # 1. Profiles
    op.create_table(
        "users",
        sa.Column("id", _UUID, primary_key=True),
        sa.Column("email", sa.String(255), nullable=False, unique=True),
        sa.Column(
            "subscription_tier",
            sa.String(20),
            server_default=sa.text("'free'"),
            nullable=False,
        ),
        sa.Column(
            "is_admin", sa.Boolean, server_default=sa.text("false"), nullable=False
        ),
        *_timestamps(),
        sa.CheckConstraint(
            f"subscription_tier {_TIER_CHECK}",
            name="ck_users_subscription_tier_valid",
        ),
    )

    # 2. Daily counters
    op.create_table(
        "daily_usage",
        sa.Column("id", _BIGINT_PK, primary_key=True, autoincrement=True),
        sa.Column("user_id", _UUID, _user_fk(), nullable=False),
        sa.Column("usage_date", sa.Date, nullable=False),
        sa.Column("request_count", sa.Integer, server_default=_zero(), nullable=False),
        sa.Column("char_count", sa.Integer, server_default=_zero(), nullable=False),
        sa.UniqueConstraint("user_id", "usage_date", name="uq_daily_usage_user_date"),
        sa.CheckConstraint("request_count >= 0", name="ck_daily_usage_requests_nonneg"),
        sa.CheckConstraint("char_count >= 0", name="ck_daily_usage_chars_nonneg"),
    )

    # 3. Materialized balances
    op.create_table(
        "credit_balances",
        sa.Column("user_id", _UUID, _user_fk(), primary_key=True),
        sa.Column("base_remaining", sa.Integer, server_default=_zero(), nullable=False),
        sa.Column(
            "rollover_remaining", sa.Integer, server_default=_zero(), nullable=False
        ),
        sa.Column(
            "purchased_remaining", sa.Integer, server_default=_zero(), nullable=False
        ),
        sa.Column("used", sa.Integer, server_default=_zero(), nullable=False),
        sa.Column("cycle_used", sa.Integer, server_default=_zero(), nullable=False),
        sa.Column("current_cycle_start", sa.Date, nullable=True),
        sa.Column("frozen_at", _TZ, nullable=True),
        *_timestamps(),
        sa.CheckConstraint("base_remaining >= 0", name="ck_credit_base_nonneg"),
        sa.CheckConstraint("rollover_remaining >= 0", name="ck_credit_rollover_nonneg"),
        sa.CheckConstraint(
            "purchased_remaining >= 0", name="ck_credit_purchased_nonneg"
        ),
        sa.CheckConstraint("used >= 0", name="ck_credit_used_nonneg"),
        sa.CheckConstraint("cycle_used >= 0", name="ck_credit_cycle_used_nonneg"),
    )

    # 4. Append-only ledger
    op.create_table(
        "credit_transactions",
        sa.Column("id", _BIGINT_PK, primary_key=True, autoincrement=True),
        sa.Column("user_id", _UUID, _user_fk(), nullable=False),
        sa.Column("transaction_type", sa.String(20), nullable=False),
        sa.Column("amount", sa.Integer, nullable=False),
        sa.Column("pool", sa.String(20), nullable=False),
        sa.Column("reason", sa.String(255), nullable=False),
        sa.Column("acting_admin_id", _UUID, _user_fk("SET NULL"), nullable=True),
        sa.Column("operation_id", sa.String(100), nullable=True),
        sa.Column("reference_id", sa.String(255), nullable=True),
        sa.Column("created_at", _TZ, server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint(
            "transaction_type IN ('grant_monthly', 'grant_rollover', "
            "'grant_purchase', 'consume', 'admin_grant', 'refund', "
            "'expire_rollover', 'close_base')",
            name="ck_credit_txn_type_valid",
        ),
        sa.CheckConstraint(
            "pool IN ('base', 'rollover', 'purchased')",
            name="ck_credit_txn_pool_valid",
        ),
        sa.CheckConstraint("amount <> 0", name="ck_credit_txn_amount_nonzero"),
    )

    # 5. Billing mirror
    op.create_table(
        "subscriptions",
        sa.Column("id", _BIGINT_PK, primary_key=True, autoincrement=True),
        sa.Column("user_id", _UUID, _user_fk(), nullable=False, unique=True),
        sa.Column("tier", sa.String(20), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("billing_cycle_anchor", sa.Date, nullable=True),
        sa.Column("current_period_end", _TZ, nullable=True),
        sa.Column(
            "cancel_at_period_end",
            sa.Boolean,
            server_default=sa.text("false"),
            nullable=False,
        ),
        sa.Column("last_event_at", _TZ, nullable=True),
        sa.Column("last_event_type", sa.String(40), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(f"tier {_TIER_CHECK}", name="ck_subscriptions_tier_valid"),
        sa.CheckConstraint(
            "status IN ('active', 'past_due', 'canceled')",
            name="ck_subscriptions_status_valid",
        ),
    )
    op.create_table(
        "processed_billing_events",
        sa.Column("external_event_id", sa.String(255), primary_key=True),
        sa.Column("user_id", _UUID, _user_fk(), nullable=False),
        sa.Column("event_type", sa.String(40), nullable=False),
        sa.Column("occurred_at", _TZ, nullable=False),
        sa.Column("outcome", sa.String(20), nullable=False),
        sa.Column("processed_at", _TZ, server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint(
            "outcome IN ('applied', 'stale')",
            name="ck_processed_events_outcome_valid",
        ),
    )

    # 6. Admin overrides
    op.create_table(
        "usage_overrides",
        sa.Column("user_id", _UUID, _user_fk(), primary_key=True),
        sa.Column("usage_type", sa.String(20), nullable=True),
        sa.Column("daily_request_limit", sa.Integer, nullable=True),
        sa.Column("monthly_credits", sa.Integer, nullable=True),
        sa.Column("max_input_chars", sa.Integer, nullable=True),
        sa.Column("max_context_messages", sa.Integer, nullable=True),
        sa.Column("allowed_models", sa.JSON, nullable=True),
        sa.Column("set_by_admin_id", _UUID, _user_fk("SET NULL"), nullable=True),
        sa.Column("reason", sa.String(255), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "usage_type IS NULL OR usage_type IN ('daily', 'credits')",
            name="ck_usage_overrides_type_valid",
        ),
    )

    # 7. Indexes
    op.create_index(
        "ix_credit_transactions_user_id",
        "credit_transactions",
        ["user_id", "id"],
    )
    op.create_index(
        "ix_credit_transactions_user_operation",
        "credit_transactions",
        ["user_id", "operation_id"],
    )


def downgrade() -> None:
    """Drop quota and ledger tables."""
    op.drop_index(
        "ix_credit_transactions_user_operation",
        table_name="credit_transactions",
    )
    op.drop_index(
        "ix_credit_transactions_user_id",
        table_name="credit_transactions",
    )

    op.drop_table("usage_overrides")
    op.drop_table("processed_billing_events")
    op.drop_table("subscriptions")
    op.drop_table("credit_transactions")
    op.drop_table("credit_balances")
    op.drop_table("daily_usage")
    op.drop_table("users")
