"""Quota API router.

GET /quota returns the caller's quota status. POST /quota/reservations is
the call surface for the chat pipeline: it reserves one request's worth of
quota or answers with a structured rejection (402/403/413/429/503).
"""

from fastapi import APIRouter

from nexus_quota.api.deps import CurrentUserId, DbSession
from nexus_quota.core.errors import APIError
from nexus_quota.core.responses import DataResponse
from nexus_quota.schemas.quota import (
    CreditQuotaResponse,
    DailyQuotaResponse,
    QuotaStatusResponse,
    ReservationRequest,
    ReservationResponse,
)
from nexus_quota.services.credit_ledger import CreditRemaining
from nexus_quota.services.quota_gate import (
    DailyQuotaStatus,
    QuotaGate,
    QuotaRejection,
)

router = APIRouter()


@router.get("")
async def get_quota(
    user_id: CurrentUserId,
    db: DbSession,
) -> DataResponse[QuotaStatusResponse]:
    """Return the caller's quota in the shape of their usage type."""
    status = await QuotaGate(db).get_quota_status(user_id)
    if isinstance(status, DailyQuotaStatus):
        return DataResponse(
            data=DailyQuotaResponse(
                tier=status.tier.value,
                requests_used=status.requests_used,
                requests_remaining=status.requests_remaining,
                requests_max=status.requests_max,
                chars_used=status.chars_used,
                chars_max=status.chars_max,
                resets_at=status.resets_at,
                max_context_messages=status.max_context_messages,
                allowed_models=list(status.allowed_models),
                warnings=list(status.warnings),
            )
        )
    return DataResponse(
        data=CreditQuotaResponse(
            tier=status.tier.value,
            available=status.available,
            total=status.total,
            used=status.used,
            base=status.base,
            rollover=status.rollover,
            purchased=status.purchased,
            current_cycle_start=status.current_cycle_start,
            frozen=status.frozen,
            max_input_chars=status.max_input_chars,
            max_context_messages=status.max_context_messages,
            estimated_requests=status.estimated_requests,
            warnings=list(status.warnings),
        )
    )


@router.post("/reservations")
async def create_reservation(
    user_id: CurrentUserId,
    db: DbSession,
    body: ReservationRequest,
) -> DataResponse[ReservationResponse]:
    """Reserve quota for one chat request.

    Rejections use the standard error envelope; ``details`` carries the
    remaining quota, reset time, or upgrade path.
    """
    result = await QuotaGate(db).check_and_reserve(
        user_id,
        body.char_count,
        body.model_id,
        operation_id=body.operation_id,
    )
    if isinstance(result, QuotaRejection):
        raise APIError(
            code=result.code,
            message=result.message,
            status_code=result.status_code,
            details=[{"kind": result.kind, **result.details}],
        )
    await db.commit()

    remaining = result.remaining
    if isinstance(remaining, CreditRemaining):
        response = ReservationResponse(
            usage_type=result.usage_type.value,
            tier=result.tier.value,
            model_id=result.model_id,
            cost=remaining.consumed,
            remaining=remaining.available,
            replayed=remaining.replayed,
            warnings=list(result.warnings),
        )
    else:
        response = ReservationResponse(
            usage_type=result.usage_type.value,
            tier=result.tier.value,
            model_id=result.model_id,
            cost=result.cost,
            remaining=remaining.requests_remaining,
            resets_at=remaining.resets_at,
            warnings=list(result.warnings),
        )
    return DataResponse(data=response)
