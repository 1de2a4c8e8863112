"""Tests for OverrideRepository."""

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from nexus_quota.models import User
from nexus_quota.repositories.override_repository import OverrideRepository
from tests.conftest import make_user


class TestUpsert:
    """Create-or-replace semantics."""

    async def test_creates_override(
        self, db_session: AsyncSession, free_user: User
    ) -> None:
        admin = await make_user(db_session, is_admin=True)

        row = await OverrideRepository.upsert(
            db_session,
            free_user.id,
            set_by_admin_id=admin.id,
            daily_request_limit=50,
            reason="beta tester",
        )

        assert row.daily_request_limit == 50
        assert row.set_by_admin_id == admin.id
        assert row.updated_at is not None

    async def test_replace_clears_omitted_fields(
        self, db_session: AsyncSession, free_user: User
    ) -> None:
        admin = await make_user(db_session, is_admin=True)
        await OverrideRepository.upsert(
            db_session,
            free_user.id,
            set_by_admin_id=admin.id,
            daily_request_limit=50,
            max_input_chars=9000,
        )

        row = await OverrideRepository.upsert(
            db_session, free_user.id, set_by_admin_id=admin.id, max_input_chars=4000
        )

        assert row.daily_request_limit is None
        assert row.max_input_chars == 4000

    async def test_rejects_unknown_fields(
        self, db_session: AsyncSession, free_user: User
    ) -> None:
        admin = await make_user(db_session, is_admin=True)
        with pytest.raises(ValueError, match="user_id"):
            await OverrideRepository.upsert(
                db_session, free_user.id, set_by_admin_id=admin.id, user_id=admin.id
            )

    async def test_allowed_models_round_trip(
        self, db_session: AsyncSession, free_user: User
    ) -> None:
        admin = await make_user(db_session, is_admin=True)
        await OverrideRepository.upsert(
            db_session,
            free_user.id,
            set_by_admin_id=admin.id,
            allowed_models=["gpt-4o", "gpt-4o-mini"],
        )

        row = await OverrideRepository.get(db_session, free_user.id)

        assert row is not None
        assert row.allowed_models == ["gpt-4o", "gpt-4o-mini"]


class TestDelete:
    """Removal reports whether a row existed."""

    async def test_delete_existing(
        self, db_session: AsyncSession, free_user: User
    ) -> None:
        admin = await make_user(db_session, is_admin=True)
        await OverrideRepository.upsert(
            db_session, free_user.id, set_by_admin_id=admin.id, reason="x"
        )

        assert await OverrideRepository.delete(db_session, free_user.id) is True
        assert await OverrideRepository.get(db_session, free_user.id) is None

    async def test_delete_missing(
        self, db_session: AsyncSession, free_user: User
    ) -> None:
        assert await OverrideRepository.delete(db_session, free_user.id) is False
