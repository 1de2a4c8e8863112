"""Repository for User profile operations.

The profile is read by the enforcement gate for the user's tier. Only the
billing reconciler calls set_tier().
"""

import uuid

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from nexus_quota.models.user import User


class UserRepository:
    """Stateless repository for User table operations.

    All methods are static; no instance state. Pass an AsyncSession
    for every call so the caller controls transaction boundaries.
    """

    @staticmethod
    async def get_by_id(db: AsyncSession, user_id: uuid.UUID) -> User | None:
        """Fetch a user by primary key.

        Args:
            db: Async database session.
            user_id: UUID primary key.

        Returns:
            User if found, None otherwise.
        """
        return await db.get(User, user_id)

    @staticmethod
    async def get_tier(db: AsyncSession, user_id: uuid.UUID) -> str | None:
        """Read the user's subscription tier straight from the database.

        Bypasses the identity map so a tier written by another transaction
        is always seen.

        Args:
            db: Async database session.
            user_id: User to query.

        Returns:
            Tier string, or None if the user does not exist.
        """
        stmt = select(User.subscription_tier).where(User.id == user_id)
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def create(
        db: AsyncSession,
        *,
        email: str,
        subscription_tier: str = "free",
        is_admin: bool = False,
        user_id: uuid.UUID | None = None,
    ) -> User:
        """Create a new user.

        Email is normalized to lowercase before storage.

        Args:
            db: Async database session.
            email: User's email address.
            subscription_tier: Initial tier.
            is_admin: Admin flag.
            user_id: Explicit id (local mode seeds DEFAULT_USER_ID).

        Returns:
            Created User with database-generated fields.
        """
        user = User(
            email=email.lower(),
            subscription_tier=subscription_tier,
            is_admin=is_admin,
        )
        if user_id is not None:
            user.id = user_id
        db.add(user)
        await db.flush()
        await db.refresh(user)
        return user

    @staticmethod
    async def set_tier(db: AsyncSession, user_id: uuid.UUID, tier: str) -> None:
        """Mirror a subscription tier onto the profile.

        Args:
            db: Async database session.
            user_id: User to update.
            tier: New tier value.
        """
        stmt = (
            update(User)
            .where(User.id == user_id)
            .values(subscription_tier=tier)
            .execution_options(synchronize_session="fetch")
        )
        await db.execute(stmt)
