"""Repository for the append-only credit transaction log.

Entries are only ever inserted. The per-user fold of all entries must equal
the materialized credit_balances row; fold_balance() is the oracle used by
CreditLedger.verify().
"""

import uuid
from dataclasses import dataclass

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from nexus_quota.models.usage import CreditTransaction


@dataclass(frozen=True)
class LedgerFold:
    """Per-pool sums of a user's transaction entries.

    Attributes:
        base: Sum of base-pool entries.
        rollover: Sum of rollover-pool entries.
        purchased: Sum of purchased-pool entries.
        used: Negated sum of consume entries (lifetime consumption).
    """

    base: int = 0
    rollover: int = 0
    purchased: int = 0
    used: int = 0


class TransactionLogRepository:
    """Stateless repository for CreditTransaction entries.

    All methods are static; no instance state. Pass an AsyncSession
    for every call so the caller controls transaction boundaries.
    """

    @staticmethod
    async def append(
        db: AsyncSession,
        *,
        user_id: uuid.UUID,
        transaction_type: str,
        amount: int,
        pool: str,
        reason: str,
        acting_admin_id: uuid.UUID | None = None,
        operation_id: str | None = None,
        reference_id: str | None = None,
    ) -> CreditTransaction:
        """Append an entry. The id and created_at are system-assigned.

        Args:
            db: Async database session.
            user_id: Account owner.
            transaction_type: Ledger transaction type.
            amount: Signed amount (+grant, -draw). Never zero.
            pool: Pool the entry affects.
            reason: Free text or model identifier.
            acting_admin_id: Admin who issued a manual grant.
            operation_id: Client idempotency key for consumption.
            reference_id: Dedupe token or external event id.

        Returns:
            Created CreditTransaction with database-generated fields.
        """
        txn = CreditTransaction(
            user_id=user_id,
            transaction_type=transaction_type,
            amount=amount,
            pool=pool,
            reason=reason,
            acting_admin_id=acting_admin_id,
            operation_id=operation_id,
            reference_id=reference_id,
        )
        db.add(txn)
        await db.flush()
        await db.refresh(txn)
        return txn

    @staticmethod
    async def list_by_user(
        db: AsyncSession,
        user_id: uuid.UUID,
        *,
        offset: int = 0,
        limit: int = 50,
        transaction_type: str | None = None,
    ) -> tuple[list[CreditTransaction], int]:
        """List a user's entries newest first, with pagination.

        Args:
            db: Async database session.
            user_id: User to query entries for.
            offset: Number of records to skip.
            limit: Maximum records to return.
            transaction_type: Optional filter (consume, grant_monthly, etc.).

        Returns:
            Tuple of (entries list, total count).
        """
        conditions = [CreditTransaction.user_id == user_id]
        if transaction_type is not None:
            conditions.append(CreditTransaction.transaction_type == transaction_type)

        count_stmt = (
            select(func.count()).select_from(CreditTransaction).where(*conditions)
        )
        total_result = await db.execute(count_stmt)
        total = total_result.scalar_one()

        # id is the creation order; created_at can tie within a transaction
        data_stmt = (
            select(CreditTransaction)
            .where(*conditions)
            .order_by(CreditTransaction.id.desc())
            .offset(offset)
            .limit(limit)
        )
        result = await db.execute(data_stmt)
        txns = list(result.scalars().all())

        return txns, total

    @staticmethod
    async def find_by_operation(
        db: AsyncSession, user_id: uuid.UUID, operation_id: str
    ) -> list[CreditTransaction]:
        """Find the consume entries written for a client operation id.

        Args:
            db: Async database session.
            user_id: Account owner.
            operation_id: Client idempotency key.

        Returns:
            Matching entries in creation order (empty if none).
        """
        stmt = (
            select(CreditTransaction)
            .where(
                CreditTransaction.user_id == user_id,
                CreditTransaction.operation_id == operation_id,
                CreditTransaction.transaction_type == "consume",
            )
            .order_by(CreditTransaction.id)
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def fold_balance(db: AsyncSession, user_id: uuid.UUID) -> LedgerFold:
        """Recompute a user's balance from the log alone.

        Args:
            db: Async database session.
            user_id: Account owner.

        Returns:
            Per-pool sums and lifetime consumption.
        """
        stmt = (
            select(
                CreditTransaction.pool,
                func.sum(CreditTransaction.amount).label("total"),
                func.sum(
                    case(
                        (
                            CreditTransaction.transaction_type == "consume",
                            -CreditTransaction.amount,
                        ),
                        else_=0,
                    )
                ).label("consumed"),
            )
            .where(CreditTransaction.user_id == user_id)
            .group_by(CreditTransaction.pool)
        )
        result = await db.execute(stmt)
        sums: dict[str, int] = {}
        used = 0
        for row in result:
            sums[row.pool] = int(row.total)
            used += int(row.consumed)
        return LedgerFold(
            base=sums.get("base", 0),
            rollover=sums.get("rollover", 0),
            purchased=sums.get("purchased", 0),
            used=used,
        )
