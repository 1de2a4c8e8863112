"""Repository for admin-set usage overrides."""

import uuid
from typing import Any, cast

from sqlalchemy import delete, select
from sqlalchemy.engine import CursorResult
from sqlalchemy.ext.asyncio import AsyncSession

from nexus_quota.models.billing import UsageOverride

# Fields an admin may set through upsert().
# Security: user_id is the key and set_by_admin_id comes from the session.
_OVERRIDABLE_FIELDS: frozenset[str] = frozenset(
    {
        "usage_type",
        "daily_request_limit",
        "monthly_credits",
        "max_input_chars",
        "max_context_messages",
        "allowed_models",
        "reason",
    }
)


class OverrideRepository:
    """Stateless repository for UsageOverride rows.

    All methods are static; no instance state. Pass an AsyncSession
    for every call so the caller controls transaction boundaries.
    """

    @staticmethod
    async def get(db: AsyncSession, user_id: uuid.UUID) -> UsageOverride | None:
        """Fetch a user's override.

        Args:
            db: Async database session.
            user_id: Account owner.

        Returns:
            UsageOverride if set, None otherwise.
        """
        stmt = select(UsageOverride).where(UsageOverride.user_id == user_id)
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def upsert(
        db: AsyncSession,
        user_id: uuid.UUID,
        *,
        set_by_admin_id: uuid.UUID,
        **fields: Any,
    ) -> UsageOverride:
        """Create or replace a user's override.

        Fields not passed are cleared, so the stored override always
        matches the last admin submission.

        Args:
            db: Async database session.
            user_id: Account owner.
            set_by_admin_id: Admin making the change.
            **fields: Override values (see _OVERRIDABLE_FIELDS).

        Returns:
            Stored UsageOverride.

        Raises:
            ValueError: If a field is not overridable.
        """
        unknown = set(fields) - _OVERRIDABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot override fields: {', '.join(sorted(unknown))}")

        override = await OverrideRepository.get(db, user_id)
        if override is None:
            override = UsageOverride(user_id=user_id)
            db.add(override)
        for name in _OVERRIDABLE_FIELDS:
            setattr(override, name, fields.get(name))
        override.set_by_admin_id = set_by_admin_id
        await db.flush()
        await db.refresh(override)
        return override

    @staticmethod
    async def delete(db: AsyncSession, user_id: uuid.UUID) -> bool:
        """Remove a user's override.

        Args:
            db: Async database session.
            user_id: Account owner.

        Returns:
            True if an override was deleted, False if none existed.
        """
        stmt = delete(UsageOverride).where(UsageOverride.user_id == user_id)
        result = cast(CursorResult[Any], await db.execute(stmt))
        rows_deleted: int = result.rowcount
        return rows_deleted > 0
