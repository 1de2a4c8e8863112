"""Repository for the materialized credit balance row.

Mutations are plain delta updates; the caller must hold the row lock from
lock_balance() and compute the deltas inside the same transaction. Only
CreditLedger calls the mutating methods.
"""

import uuid
from dataclasses import dataclass
from datetime import date, datetime

from sqlalchemy import Date, DateTime, Integer, Uuid, bindparam, select, text
from sqlalchemy.ext.asyncio import AsyncSession

from nexus_quota.models.base import as_utc
from nexus_quota.models.usage import CreditBalance

_USER_PARAM = bindparam("user_id", type_=Uuid(as_uuid=True))

_RETURNING = (
    "RETURNING base_remaining, rollover_remaining, purchased_remaining, "
    "used, cycle_used, current_cycle_start, frozen_at"
)

_RESULT_COLUMNS = {
    "base_remaining": Integer(),
    "rollover_remaining": Integer(),
    "purchased_remaining": Integer(),
    "used": Integer(),
    "cycle_used": Integer(),
    "current_cycle_start": Date(),
    "frozen_at": DateTime(timezone=True),
}

# No-op write: takes the row lock (PostgreSQL) or the database write lock
# (SQLite) and returns the row as seen under that lock.
_LOCK_SQL = (
    text(
        "UPDATE credit_balances SET base_remaining = base_remaining "
        f"WHERE user_id = :user_id {_RETURNING}"
    )
    .bindparams(_USER_PARAM)
    .columns(**_RESULT_COLUMNS)
)

_ENSURE_SQL = text(
    "INSERT INTO credit_balances (user_id, base_remaining, rollover_remaining, "
    "purchased_remaining, used, cycle_used, created_at, updated_at) "
    "VALUES (:user_id, 0, 0, 0, 0, 0, CURRENT_TIMESTAMP, CURRENT_TIMESTAMP) "
    "ON CONFLICT (user_id) DO NOTHING"
).bindparams(_USER_PARAM)

_APPLY_SQL = (
    text(
        "UPDATE credit_balances SET "
        "base_remaining = base_remaining + :base, "
        "rollover_remaining = rollover_remaining + :rollover, "
        "purchased_remaining = purchased_remaining + :purchased, "
        "used = used + :used, "
        "cycle_used = cycle_used + :cycle_used, "
        "updated_at = CURRENT_TIMESTAMP "
        f"WHERE user_id = :user_id {_RETURNING}"
    )
    .bindparams(_USER_PARAM)
    .columns(**_RESULT_COLUMNS)
)

_START_CYCLE_SQL = text(
    "UPDATE credit_balances SET current_cycle_start = :cycle_date, "
    "cycle_used = 0, updated_at = CURRENT_TIMESTAMP WHERE user_id = :user_id"
).bindparams(_USER_PARAM, bindparam("cycle_date", type_=Date()))

_FREEZE_SQL = text(
    "UPDATE credit_balances SET frozen_at = :frozen_at, "
    "updated_at = CURRENT_TIMESTAMP "
    "WHERE user_id = :user_id AND frozen_at IS NULL"
).bindparams(_USER_PARAM, bindparam("frozen_at", type_=DateTime(timezone=True)))


@dataclass(frozen=True)
class BalanceRow:
    """Snapshot of a credit_balances row."""

    base_remaining: int = 0
    rollover_remaining: int = 0
    purchased_remaining: int = 0
    used: int = 0
    cycle_used: int = 0
    current_cycle_start: date | None = None
    frozen_at: datetime | None = None

    @property
    def available(self) -> int:
        """Credits spendable right now across all pools."""
        return self.base_remaining + self.rollover_remaining + self.purchased_remaining


def _to_row(row) -> BalanceRow:
    return BalanceRow(
        base_remaining=row.base_remaining,
        rollover_remaining=row.rollover_remaining,
        purchased_remaining=row.purchased_remaining,
        used=row.used,
        cycle_used=row.cycle_used,
        current_cycle_start=row.current_cycle_start,
        frozen_at=as_utc(row.frozen_at) if row.frozen_at is not None else None,
    )


class CreditRepository:
    """Stateless repository for CreditBalance rows.

    All methods are static; no instance state. Pass an AsyncSession
    for every call so the caller controls transaction boundaries.
    """

    @staticmethod
    async def get(db: AsyncSession, user_id: uuid.UUID) -> BalanceRow | None:
        """Read a balance row without locking or creating it.

        Args:
            db: Async database session.
            user_id: Account owner.

        Returns:
            Row snapshot, or None if the user has no balance yet.
        """
        stmt = select(
            CreditBalance.base_remaining,
            CreditBalance.rollover_remaining,
            CreditBalance.purchased_remaining,
            CreditBalance.used,
            CreditBalance.cycle_used,
            CreditBalance.current_cycle_start,
            CreditBalance.frozen_at,
        ).where(CreditBalance.user_id == user_id)
        result = await db.execute(stmt)
        row = result.one_or_none()
        return _to_row(row) if row is not None else None

    @staticmethod
    async def ensure_row(db: AsyncSession, user_id: uuid.UUID) -> None:
        """Create an all-zero balance row if none exists.

        Args:
            db: Async database session.
            user_id: Account owner.
        """
        await db.execute(_ENSURE_SQL, {"user_id": user_id})

    @staticmethod
    async def lock_balance(db: AsyncSession, user_id: uuid.UUID) -> BalanceRow | None:
        """Take the per-user write lock and read the row under it.

        Held until the caller's transaction ends. Concurrent callers for
        the same user queue here; other users are unaffected.

        Args:
            db: Async database session.
            user_id: Account owner.

        Returns:
            Row snapshot, or None if the user has no balance row.
        """
        result = await db.execute(_LOCK_SQL, {"user_id": user_id})
        row = result.one_or_none()
        return _to_row(row) if row is not None else None

    @staticmethod
    async def apply_deltas(
        db: AsyncSession,
        user_id: uuid.UUID,
        *,
        base: int = 0,
        rollover: int = 0,
        purchased: int = 0,
        used: int = 0,
        cycle_used: int = 0,
    ) -> BalanceRow:
        """Add signed deltas to the pool columns.

        The non-negativity CHECK constraints reject any delta that would
        take a pool below zero.

        Args:
            db: Async database session.
            user_id: Account owner (row must exist and be locked).
            base: Delta for base_remaining.
            rollover: Delta for rollover_remaining.
            purchased: Delta for purchased_remaining.
            used: Delta for lifetime consumption.
            cycle_used: Delta for consumption in the current cycle.

        Returns:
            Row snapshot after the update.
        """
        result = await db.execute(
            _APPLY_SQL,
            {
                "user_id": user_id,
                "base": base,
                "rollover": rollover,
                "purchased": purchased,
                "used": used,
                "cycle_used": cycle_used,
            },
        )
        return _to_row(result.one())

    @staticmethod
    async def start_cycle(
        db: AsyncSession, user_id: uuid.UUID, cycle_date: date
    ) -> None:
        """Record a new billing cycle start and zero the cycle counter.

        Args:
            db: Async database session.
            user_id: Account owner (row must exist and be locked).
            cycle_date: First day of the new cycle.
        """
        await db.execute(
            _START_CYCLE_SQL, {"user_id": user_id, "cycle_date": cycle_date}
        )

    @staticmethod
    async def freeze(db: AsyncSession, user_id: uuid.UUID, frozen_at: datetime) -> None:
        """Halt consumption for a user. Keeps the first freeze timestamp.

        Args:
            db: Async database session.
            user_id: Account owner.
            frozen_at: When the violation was detected.
        """
        await db.execute(_FREEZE_SQL, {"user_id": user_id, "frozen_at": frozen_at})

