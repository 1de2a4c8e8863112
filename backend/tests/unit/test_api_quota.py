"""Tests for the quota endpoints.

GET /api/v1/quota and POST /api/v1/quota/reservations.
"""

from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from nexus_quota.repositories.user_repository import UserRepository
from nexus_quota.services.credit_ledger import CreditLedger, Pool
from tests.conftest import TEST_USER_ID

_QUOTA_URL = "/api/v1/quota"
_RESERVE_URL = "/api/v1/quota/reservations"


async def _fund(db: AsyncSession, credits: int) -> None:
    await CreditLedger(db).grant(TEST_USER_ID, credits, Pool.PURCHASED, "seed")
    await db.commit()


async def _make_free(db: AsyncSession) -> None:
    await UserRepository.set_tier(db, TEST_USER_ID, "free")
    await db.commit()


# =============================================================================
# Auth
# =============================================================================


class TestQuotaAuth:
    """Quota endpoints require authentication."""

    async def test_status_requires_auth(
        self, unauthenticated_client: AsyncClient
    ) -> None:
        response = await unauthenticated_client.get(_QUOTA_URL)
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "UNAUTHORIZED"

    async def test_reservation_requires_auth(
        self, unauthenticated_client: AsyncClient
    ) -> None:
        response = await unauthenticated_client.post(
            _RESERVE_URL, json={"model_id": "gpt-4o-mini", "char_count": 1}
        )
        assert response.status_code == 401


# =============================================================================
# GET /quota
# =============================================================================


class TestGetQuota:
    """Status is shaped by the caller's usage type."""

    async def test_credit_user_gets_credit_status(
        self, client: AsyncClient, db_session: AsyncSession
    ) -> None:
        await _fund(db_session, 60)

        response = await client.get(_QUOTA_URL)

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["usage_type"] == "credits"
        assert data["tier"] == "pro"
        assert data["available"] == 60
        assert data["estimated_requests"]["gpt-4o"] == 4

    async def test_daily_user_gets_daily_status(
        self, client: AsyncClient, db_session: AsyncSession
    ) -> None:
        await _make_free(db_session)

        response = await client.get(_QUOTA_URL)

        data = response.json()["data"]
        assert data["usage_type"] == "daily"
        assert data["requests_remaining"] == 10
        assert data["resets_at"] is not None

    async def test_responses_are_not_cached(self, client: AsyncClient) -> None:
        response = await client.get(_QUOTA_URL)
        assert response.headers["Cache-Control"] == "no-store, max-age=0"


# =============================================================================
# POST /quota/reservations
# =============================================================================


class TestCreateReservation:
    """Reserve or reject with the standard error envelope."""

    async def test_credit_reservation(
        self, client: AsyncClient, db_session: AsyncSession
    ) -> None:
        await _fund(db_session, 30)

        response = await client.post(
            _RESERVE_URL, json={"model_id": "gpt-4o", "char_count": 500}
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["usage_type"] == "credits"
        assert data["cost"] == 15
        assert data["remaining"] == 15
        assert data["replayed"] is False

    async def test_retry_with_operation_id_is_not_charged(
        self, client: AsyncClient, db_session: AsyncSession
    ) -> None:
        await _fund(db_session, 30)
        body = {"model_id": "gpt-4o", "char_count": 10, "operation_id": "msg-42"}

        await client.post(_RESERVE_URL, json=body)
        retry = await client.post(_RESERVE_URL, json=body)

        assert retry.status_code == 200
        assert retry.json()["data"]["replayed"] is True
        assert retry.json()["data"]["remaining"] == 15

    async def test_insufficient_credits_is_402(
        self, client: AsyncClient, db_session: AsyncSession
    ) -> None:
        await _fund(db_session, 5)

        response = await client.post(
            _RESERVE_URL, json={"model_id": "gpt-4o", "char_count": 10}
        )

        assert response.status_code == 402
        error = response.json()["error"]
        assert error["code"] == "INSUFFICIENT_CREDITS"
        assert error["details"][0]["kind"] == "insufficient_credits"
        assert error["details"][0]["available"] == 5

    async def test_daily_limit_is_429(
        self, client: AsyncClient, db_session: AsyncSession
    ) -> None:
        await _make_free(db_session)
        body = {"model_id": "gpt-4o-mini", "char_count": 10}
        for _ in range(10):
            assert (await client.post(_RESERVE_URL, json=body)).status_code == 200

        response = await client.post(_RESERVE_URL, json=body)

        assert response.status_code == 429
        details = response.json()["error"]["details"][0]
        assert details["kind"] == "daily_request_limit"
        assert details["resets_at"] is not None

    async def test_daily_reservation_reports_remaining(
        self, client: AsyncClient, db_session: AsyncSession
    ) -> None:
        await _make_free(db_session)

        response = await client.post(
            _RESERVE_URL, json={"model_id": "gpt-4o-mini", "char_count": 10}
        )

        data = response.json()["data"]
        assert data["usage_type"] == "daily"
        assert data["remaining"] == 9
        assert data["resets_at"] is not None

    async def test_model_not_allowed_is_403(
        self, client: AsyncClient, db_session: AsyncSession
    ) -> None:
        await _make_free(db_session)

        response = await client.post(
            _RESERVE_URL, json={"model_id": "claude-sonnet-4.5", "char_count": 10}
        )

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "MODEL_NOT_ALLOWED"

    async def test_input_too_long_is_413(
        self, client: AsyncClient, db_session: AsyncSession
    ) -> None:
        await _make_free(db_session)

        response = await client.post(
            _RESERVE_URL, json={"model_id": "gpt-4o-mini", "char_count": 3001}
        )

        assert response.status_code == 413

    async def test_negative_char_count_is_validation_error(
        self, client: AsyncClient
    ) -> None:
        response = await client.post(
            _RESERVE_URL, json={"model_id": "gpt-4o-mini", "char_count": -1}
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    async def test_unknown_fields_are_rejected(self, client: AsyncClient) -> None:
        response = await client.post(
            _RESERVE_URL,
            json={"model_id": "gpt-4o-mini", "char_count": 1, "cost": 0},
        )

        assert response.status_code == 400
