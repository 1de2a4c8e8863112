"""Credit ledger for tiers metered by credits.

A user's balance is split into three pools:

- base: the current cycle's recurring grant; its remainder rolls over at
  the next cycle reset.
- rollover: credits carried from earlier cycles, capped at the tier's
  rollover_limit. Anything above the cap is expired with an explicit entry.
- purchased: bought credits; never expire and are spent last.

Every pool movement is appended to the transaction log in the same
database transaction as the balance row update, so the credit_balances
row always equals the fold of the user's entries. verify() checks that
equivalence and freezes the ledger when it does not hold.

Per-user serialization: each mutating operation first takes the balance
row's write lock (CreditRepository.lock_balance) and computes the pool
split under it. Operations for different users never contend.
"""

import uuid
from collections.abc import Iterable
from dataclasses import asdict, dataclass
from datetime import UTC, date, datetime
from enum import Enum

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from nexus_quota.core.errors import (
    InsufficientCreditsError,
    InvalidAmountError,
    LedgerFrozenError,
)
from nexus_quota.models.usage import CreditTransaction
from nexus_quota.repositories.credit_repository import BalanceRow, CreditRepository
from nexus_quota.repositories.override_repository import OverrideRepository
from nexus_quota.repositories.transaction_log_repository import (
    LedgerFold,
    TransactionLogRepository,
)
from nexus_quota.repositories.user_repository import UserRepository
from nexus_quota.services.quota_policy import apply_override, resolve_policy

logger = structlog.get_logger()


class Pool(str, Enum):
    """Independently tracked credit sources."""

    BASE = "base"
    ROLLOVER = "rollover"
    PURCHASED = "purchased"


class TransactionType(str, Enum):
    """Ledger entry types."""

    GRANT_MONTHLY = "grant_monthly"
    GRANT_ROLLOVER = "grant_rollover"
    GRANT_PURCHASE = "grant_purchase"
    CONSUME = "consume"
    ADMIN_GRANT = "admin_grant"
    REFUND = "refund"
    EXPIRE_ROLLOVER = "expire_rollover"
    # Moves the unused base remainder out of the base pool at cycle reset
    CLOSE_BASE = "close_base"


# Base credits expire with the cycle, purchased credits never do.
CONSUMPTION_ORDER: tuple[Pool, ...] = (Pool.BASE, Pool.ROLLOVER, Pool.PURCHASED)

_DEFAULT_GRANT_TYPE: dict[Pool, TransactionType] = {
    Pool.BASE: TransactionType.GRANT_MONTHLY,
    Pool.ROLLOVER: TransactionType.GRANT_ROLLOVER,
    Pool.PURCHASED: TransactionType.GRANT_PURCHASE,
}

REFUND_REASON = "refund"


def cycle_dedupe_token(user_id: uuid.UUID, cycle_date: date) -> str:
    """Reference id stamped on a cycle's grant_monthly entry."""
    return f"cycle:{user_id}:{cycle_date.isoformat()}"


def _require_positive(amount: object) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidAmountError(amount)
    return amount


def _pool_remaining(row: BalanceRow, pool: Pool) -> int:
    if pool is Pool.BASE:
        return row.base_remaining
    if pool is Pool.ROLLOVER:
        return row.rollover_remaining
    return row.purchased_remaining


def split_consumption(row: BalanceRow, amount: int) -> list[tuple[Pool, int]]:
    """Draw ``amount`` from pools in CONSUMPTION_ORDER.

    Args:
        row: Balance under lock.
        amount: Credits to draw; must not exceed row.available.

    Returns:
        (pool, credits) pairs for every pool touched, in draw order.
    """
    draws: list[tuple[Pool, int]] = []
    remaining = amount
    for pool in CONSUMPTION_ORDER:
        if remaining == 0:
            break
        take = min(remaining, _pool_remaining(row, pool))
        if take > 0:
            draws.append((pool, take))
            remaining -= take
    return draws


def _entry_fields(entries: Iterable[CreditTransaction]) -> list[dict]:
    return [
        {
            "id": e.id,
            "transaction_type": e.transaction_type,
            "amount": e.amount,
            "pool": e.pool,
            "reason": e.reason,
            "acting_admin_id": str(e.acting_admin_id) if e.acting_admin_id else None,
            "operation_id": e.operation_id,
            "reference_id": e.reference_id,
        }
        for e in entries
    ]


# =============================================================================
# Result types
# =============================================================================


@dataclass(frozen=True)
class CreditBalanceView:
    """Read-only balance snapshot.

    Attributes:
        base: Remaining base credits.
        rollover: Remaining rollover credits.
        purchased: Remaining purchased credits.
        used: Lifetime consumption.
        cycle_used: Consumption since the last cycle reset.
        current_cycle_start: Date of the last cycle reset.
        frozen_at: Set when consumption is halted.
    """

    base: int = 0
    rollover: int = 0
    purchased: int = 0
    used: int = 0
    cycle_used: int = 0
    current_cycle_start: date | None = None
    frozen_at: datetime | None = None

    @property
    def available(self) -> int:
        """Credits spendable now, across all pools."""
        return self.base + self.rollover + self.purchased

    @classmethod
    def from_row(cls, row: BalanceRow | None) -> "CreditBalanceView":
        if row is None:
            return cls()
        return cls(
            base=row.base_remaining,
            rollover=row.rollover_remaining,
            purchased=row.purchased_remaining,
            used=row.used,
            cycle_used=row.cycle_used,
            current_cycle_start=row.current_cycle_start,
            frozen_at=row.frozen_at,
        )


@dataclass(frozen=True)
class CreditRemaining:
    """Outcome of a successful consumption.

    Attributes:
        consumed: Credits drawn by this operation.
        balance: Balance after the draw.
        transaction_ids: Log entries written (one per pool touched).
        replayed: True when an earlier result was returned for a repeated
            operation_id.
    """

    consumed: int
    balance: CreditBalanceView
    transaction_ids: tuple[int, ...]
    replayed: bool = False

    @property
    def available(self) -> int:
        return self.balance.available


@dataclass(frozen=True)
class LedgerReconciliation:
    """Result of comparing the materialized balance with the log fold.

    Attributes:
        user_id: Account checked.
        materialized: Pool values from credit_balances.
        folded: Pool values recomputed from credit_transactions.
        consistent: Fold equals the row and no pool is negative.
        frozen_at: Freeze timestamp, if the ledger is frozen.
    """

    user_id: uuid.UUID
    materialized: LedgerFold
    folded: LedgerFold
    consistent: bool
    frozen_at: datetime | None


# =============================================================================
# Ledger
# =============================================================================


class CreditLedger:
    """Credit pool operations for one database session.

    Methods flush but never commit. The caller's transaction boundary
    makes the log append and the pool update atomic together.

    Args:
        db: Async database session.
    """

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def get_balance(self, user_id: uuid.UUID) -> CreditBalanceView:
        """Current balance. Returns zeros when no balance row exists.

        Args:
            user_id: Account owner.

        Returns:
            Balance snapshot. Never creates a row.
        """
        row = await CreditRepository.get(self._db, user_id)
        return CreditBalanceView.from_row(row)

    async def rollover_limit_for(self, user_id: uuid.UUID) -> int:
        """Rollover cap from the user's tier policy and override."""
        tier = await UserRepository.get_tier(self._db, user_id)
        policy = resolve_policy(tier or "free")
        override = await OverrideRepository.get(self._db, user_id)
        return apply_override(policy, override).rollover_limit

    async def _append(
        self,
        user_id: uuid.UUID,
        transaction_type: TransactionType,
        amount: int,
        pool: Pool,
        reason: str,
        *,
        acting_admin_id: uuid.UUID | None = None,
        operation_id: str | None = None,
        reference_id: str | None = None,
    ) -> CreditTransaction:
        return await TransactionLogRepository.append(
            self._db,
            user_id=user_id,
            transaction_type=transaction_type.value,
            amount=amount,
            pool=pool.value,
            reason=reason,
            acting_admin_id=acting_admin_id,
            operation_id=operation_id,
            reference_id=reference_id,
        )

    async def grant(
        self,
        user_id: uuid.UUID,
        amount: int,
        pool: Pool | str,
        reason: str,
        *,
        acting_admin_id: uuid.UUID | None = None,
        transaction_type: TransactionType | None = None,
        reference_id: str | None = None,
        rollover_limit: int | None = None,
    ) -> list[CreditTransaction]:
        """Add credits to a pool.

        Rollover grants are clamped to the rollover cap; the excess is
        recorded as an expire_rollover entry in the same transaction.

        Args:
            user_id: Account owner. The balance row is created if needed.
            amount: Credits to add (positive integer).
            pool: Target pool.
            reason: Free text recorded on the entry.
            acting_admin_id: Admin issuing a manual grant.
            transaction_type: Explicit entry type. Defaults to admin_grant
                for admin grants, refund for reason "refund", otherwise the
                pool's grant type.
            reference_id: Dedupe token or external event id.
            rollover_limit: Rollover cap. Defaults to the user's policy.

        Returns:
            Entries appended (the grant, plus any expiry).

        Raises:
            InvalidAmountError: If amount is not a positive integer.
        """
        amount = _require_positive(amount)
        pool = Pool(pool)
        if transaction_type is None:
            if acting_admin_id is not None:
                transaction_type = TransactionType.ADMIN_GRANT
            elif reason == REFUND_REASON:
                transaction_type = TransactionType.REFUND
            else:
                transaction_type = _DEFAULT_GRANT_TYPE[pool]

        await CreditRepository.ensure_row(self._db, user_id)
        row = await CreditRepository.lock_balance(self._db, user_id)
        if row is None:
            raise RuntimeError(f"Credit balance row missing for user {user_id}")

        entries = [
            await self._append(
                user_id,
                transaction_type,
                amount,
                pool,
                reason,
                acting_admin_id=acting_admin_id,
                reference_id=reference_id,
            )
        ]
        deltas = {pool.value: amount}

        if pool is Pool.ROLLOVER:
            if rollover_limit is None:
                rollover_limit = await self.rollover_limit_for(user_id)
            excess = row.rollover_remaining + amount - rollover_limit
            if excess > 0:
                entries.append(
                    await self._append(
                        user_id,
                        TransactionType.EXPIRE_ROLLOVER,
                        -excess,
                        Pool.ROLLOVER,
                        f"rollover cap {rollover_limit}",
                        reference_id=reference_id,
                    )
                )
                deltas[Pool.ROLLOVER.value] -= excess

        await CreditRepository.apply_deltas(self._db, user_id, **deltas)
        logger.info(
            "ledger.grant",
            user_id=str(user_id),
            amount=amount,
            pool=pool.value,
            entries=_entry_fields(entries),
        )
        return entries

    async def refund(
        self,
        user_id: uuid.UUID,
        amount: int,
        reason: str = REFUND_REASON,
        *,
        pool: Pool | str = Pool.PURCHASED,
        reference_id: str | None = None,
    ) -> list[CreditTransaction]:
        """Compensating grant after a reserved request is aborted.

        Lifetime ``used`` is not reduced.

        Args:
            user_id: Account owner.
            amount: Credits to return (positive integer).
            reason: Free text recorded on the entry.
            pool: Pool to return credits to.
            reference_id: Link to the aborted operation.

        Returns:
            Entries appended.

        Raises:
            InvalidAmountError: If amount is not a positive integer.
        """
        return await self.grant(
            user_id,
            amount,
            pool,
            reason,
            transaction_type=TransactionType.REFUND,
            reference_id=reference_id,
        )

    async def consume(
        self,
        user_id: uuid.UUID,
        amount: int,
        reason: str,
        *,
        operation_id: str | None = None,
    ) -> CreditRemaining:
        """Spend credits, base first, then rollover, then purchased.

        One entry is appended per pool touched. Nothing is written when the
        balance cannot cover ``amount``.

        Args:
            user_id: Account owner.
            amount: Credits to spend (positive integer).
            reason: Model identifier or free text.
            operation_id: Client key. A repeated key returns the first
                result without spending again.

        Returns:
            Credits consumed and the balance afterwards.

        Raises:
            InvalidAmountError: If amount is not a positive integer.
            LedgerFrozenError: If consumption is halted for this user.
            InsufficientCreditsError: If the pools cannot cover amount.
        """
        amount = _require_positive(amount)
        row = await CreditRepository.lock_balance(self._db, user_id)
        if row is None:
            raise InsufficientCreditsError(available=0, required=amount)

        if operation_id is not None:
            previous = await TransactionLogRepository.find_by_operation(
                self._db, user_id, operation_id
            )
            if previous:
                logger.info(
                    "ledger.consume_replayed",
                    user_id=str(user_id),
                    operation_id=operation_id,
                )
                return CreditRemaining(
                    consumed=-sum(e.amount for e in previous),
                    balance=CreditBalanceView.from_row(row),
                    transaction_ids=tuple(e.id for e in previous),
                    replayed=True,
                )

        if row.frozen_at is not None:
            raise LedgerFrozenError(frozen_at=row.frozen_at)
        if row.available < amount:
            raise InsufficientCreditsError(available=row.available, required=amount)

        entries = []
        deltas: dict[str, int] = {}
        for pool, take in split_consumption(row, amount):
            entries.append(
                await self._append(
                    user_id,
                    TransactionType.CONSUME,
                    -take,
                    pool,
                    reason,
                    operation_id=operation_id,
                )
            )
            deltas[pool.value] = -take

        updated = await CreditRepository.apply_deltas(
            self._db, user_id, used=amount, cycle_used=amount, **deltas
        )
        logger.info(
            "ledger.consume",
            user_id=str(user_id),
            amount=amount,
            available=updated.available,
            entries=_entry_fields(entries),
        )
        return CreditRemaining(
            consumed=amount,
            balance=CreditBalanceView.from_row(updated),
            transaction_ids=tuple(e.id for e in entries),
        )

    async def reset_cycle(
        self,
        user_id: uuid.UUID,
        new_monthly_amount: int,
        cycle_date: date,
        *,
        rollover_limit: int,
    ) -> list[CreditTransaction]:
        """Start a new billing cycle.

        Moves the base remainder into rollover, expires rollover above the
        cap, then grants ``new_monthly_amount`` into base. A cycle_date not
        after the current cycle start is a no-op, so replays never grant
        twice.

        Args:
            user_id: Account owner. The balance row is created if needed.
            new_monthly_amount: Base grant for the new cycle (>= 0).
            cycle_date: First day of the new cycle.
            rollover_limit: Rollover cap of the tier the cycle is for.

        Returns:
            Entries appended (empty for a no-op).

        Raises:
            InvalidAmountError: If new_monthly_amount is negative or not
                an integer.
        """
        if (
            isinstance(new_monthly_amount, bool)
            or not isinstance(new_monthly_amount, int)
            or new_monthly_amount < 0
        ):
            raise InvalidAmountError(new_monthly_amount)

        await CreditRepository.ensure_row(self._db, user_id)
        row = await CreditRepository.lock_balance(self._db, user_id)
        if row is None:
            raise RuntimeError(f"Credit balance row missing for user {user_id}")

        if row.current_cycle_start is not None and cycle_date <= row.current_cycle_start:
            logger.info(
                "ledger.reset_cycle_skipped",
                user_id=str(user_id),
                cycle_date=cycle_date.isoformat(),
                current_cycle_start=row.current_cycle_start.isoformat(),
            )
            return []

        token = cycle_dedupe_token(user_id, cycle_date)
        entries: list[CreditTransaction] = []
        carried = row.base_remaining
        if carried > 0:
            entries.append(
                await self._append(
                    user_id,
                    TransactionType.CLOSE_BASE,
                    -carried,
                    Pool.BASE,
                    "cycle close",
                    reference_id=token,
                )
            )
            entries.append(
                await self._append(
                    user_id,
                    TransactionType.GRANT_ROLLOVER,
                    carried,
                    Pool.ROLLOVER,
                    "cycle rollover",
                    reference_id=token,
                )
            )

        expired = max(row.rollover_remaining + carried - rollover_limit, 0)
        if expired > 0:
            entries.append(
                await self._append(
                    user_id,
                    TransactionType.EXPIRE_ROLLOVER,
                    -expired,
                    Pool.ROLLOVER,
                    f"rollover cap {rollover_limit}",
                    reference_id=token,
                )
            )

        if new_monthly_amount > 0:
            entries.append(
                await self._append(
                    user_id,
                    TransactionType.GRANT_MONTHLY,
                    new_monthly_amount,
                    Pool.BASE,
                    "monthly grant",
                    reference_id=token,
                )
            )

        await CreditRepository.apply_deltas(
            self._db,
            user_id,
            base=new_monthly_amount - carried,
            rollover=carried - expired,
        )
        await CreditRepository.start_cycle(self._db, user_id, cycle_date)
        logger.info(
            "ledger.reset_cycle",
            user_id=str(user_id),
            cycle_date=cycle_date.isoformat(),
            monthly_credits=new_monthly_amount,
            rolled_over=carried - expired,
            expired=expired,
            entries=_entry_fields(entries),
        )
        return entries

    async def verify(
        self, user_id: uuid.UUID, *, now: datetime | None = None
    ) -> LedgerReconciliation:
        """Compare the balance row with the fold of the transaction log.

        A mismatch or a negative pool is a bug, not a user error: the
        ledger is frozen (consumption halts, reads continue) and an alert
        is logged.

        Args:
            user_id: Account owner.
            now: Freeze timestamp. Defaults to the current time.

        Returns:
            Both views and whether they agree.
        """
        row = await CreditRepository.lock_balance(self._db, user_id)
        folded = await TransactionLogRepository.fold_balance(self._db, user_id)
        view = CreditBalanceView.from_row(row)
        materialized = LedgerFold(
            base=view.base,
            rollover=view.rollover,
            purchased=view.purchased,
            used=view.used,
        )
        negative_pool = min(folded.base, folded.rollover, folded.purchased) < 0
        consistent = folded == materialized and not negative_pool

        frozen_at = view.frozen_at
        if not consistent:
            logger.critical(
                "ledger.invariant_violation",
                user_id=str(user_id),
                materialized=asdict(materialized),
                folded=asdict(folded),
                negative_pool=negative_pool,
            )
            if row is not None and frozen_at is None:
                frozen_at = now if now is not None else datetime.now(UTC)
                await CreditRepository.freeze(self._db, user_id, frozen_at)

        return LedgerReconciliation(
            user_id=user_id,
            materialized=materialized,
            folded=folded,
            consistent=consistent,
            frozen_at=frozen_at,
        )
