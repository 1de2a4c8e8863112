"""Admin API router.

Manual credit grants, usage overrides, and the ledger fold check. All
endpoints require the AdminUser dependency; the acting admin is recorded
on every write.
"""

import uuid
from dataclasses import asdict

from fastapi import APIRouter, Response, status

from nexus_quota.api.deps import AdminUser, DbSession
from nexus_quota.api.v1.credits import transaction_response
from nexus_quota.core.errors import NotFoundError
from nexus_quota.core.responses import DataResponse
from nexus_quota.models.billing import UsageOverride
from nexus_quota.repositories.override_repository import OverrideRepository
from nexus_quota.repositories.user_repository import UserRepository
from nexus_quota.schemas.admin import (
    LedgerReconciliationResponse,
    PoolSums,
    UsageOverrideResponse,
    UsageOverrideUpsert,
)
from nexus_quota.schemas.credits import (
    AdminCreditGrantRequest,
    AdminCreditGrantResponse,
)
from nexus_quota.services.billing_reconciler import BillingReconciler
from nexus_quota.services.credit_ledger import CreditLedger

router = APIRouter()


def _override_response(row: UsageOverride) -> UsageOverrideResponse:
    return UsageOverrideResponse(
        user_id=str(row.user_id),
        usage_type=row.usage_type,
        daily_request_limit=row.daily_request_limit,
        monthly_credits=row.monthly_credits,
        max_input_chars=row.max_input_chars,
        max_context_messages=row.max_context_messages,
        allowed_models=row.allowed_models,
        set_by_admin_id=str(row.set_by_admin_id) if row.set_by_admin_id else None,
        reason=row.reason,
        updated_at=row.updated_at,
    )


async def _require_user(db: DbSession, user_id: uuid.UUID) -> None:
    if await UserRepository.get_tier(db, user_id) is None:
        raise NotFoundError("User", str(user_id))


# =============================================================================
# Credits
# =============================================================================


@router.post("/credits", status_code=status.HTTP_201_CREATED)
async def grant_credits(
    admin: AdminUser,
    db: DbSession,
    body: AdminCreditGrantRequest,
) -> DataResponse[AdminCreditGrantResponse]:
    """Grant credits to a user, recording the acting admin."""
    await _require_user(db, body.user_id)
    ledger = CreditLedger(db)
    entries = await ledger.grant(
        body.user_id,
        body.amount,
        body.pool,
        body.reason,
        acting_admin_id=admin.id,
    )
    balance = await ledger.get_balance(body.user_id)
    await db.commit()
    return DataResponse(
        data=AdminCreditGrantResponse(
            transactions=[transaction_response(e) for e in entries],
            available=balance.available,
        )
    )


# =============================================================================
# Usage overrides
# =============================================================================


@router.put("/overrides/{user_id}")
async def upsert_override(
    admin: AdminUser,
    db: DbSession,
    user_id: uuid.UUID,
    body: UsageOverrideUpsert,
) -> DataResponse[UsageOverrideResponse]:
    """Create or replace a user's usage override."""
    await _require_user(db, user_id)
    row = await OverrideRepository.upsert(
        db,
        user_id,
        set_by_admin_id=admin.id,
        **body.model_dump(),
    )
    await db.commit()
    return DataResponse(data=_override_response(row))


@router.delete("/overrides/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_override(
    _admin: AdminUser,
    db: DbSession,
    user_id: uuid.UUID,
) -> Response:
    """Remove a user's usage override."""
    if not await OverrideRepository.delete(db, user_id):
        raise NotFoundError("Usage override", str(user_id))
    await db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# =============================================================================
# Ledger check
# =============================================================================


@router.get("/ledger/{user_id}/reconcile")
async def reconcile_ledger(
    _admin: AdminUser,
    db: DbSession,
    user_id: uuid.UUID,
) -> DataResponse[LedgerReconciliationResponse]:
    """Compare a user's balance row with the fold of their ledger.

    A mismatch freezes the user's ledger.
    """
    await _require_user(db, user_id)
    result = await CreditLedger(db).verify(user_id)
    await db.commit()
    return DataResponse(
        data=LedgerReconciliationResponse(
            user_id=str(user_id),
            consistent=result.consistent,
            materialized=PoolSums(**asdict(result.materialized)),
            folded=PoolSums(**asdict(result.folded)),
            frozen_at=result.frozen_at,
        )
    )


# =============================================================================
# Subscription lifecycle
# =============================================================================


@router.post("/subscriptions/expire")
async def expire_subscriptions(
    _admin: AdminUser,
    db: DbSession,
) -> DataResponse[list[str]]:
    """Demote canceled subscriptions whose paid period has ended.

    Normally run by a scheduler; exposed here for manual runs.
    """
    demoted = await BillingReconciler(db).expire_canceled_subscriptions()
    await db.commit()
    return DataResponse(data=[str(user_id) for user_id in demoted])
