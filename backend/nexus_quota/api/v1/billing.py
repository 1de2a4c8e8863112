"""Billing webhook router.

POST /billing/events ingests normalized billing provider events. Replays
answer 200 with outcome "duplicate" so the provider stops retrying.
"""

from fastapi import APIRouter

from nexus_quota.api.deps import BillingWebhookAuth, DbSession
from nexus_quota.core.responses import DataResponse
from nexus_quota.schemas.billing import BillingEventRequest, BillingEventResponse
from nexus_quota.services.billing_reconciler import (
    BillingEvent,
    BillingEventType,
    BillingReconciler,
)

router = APIRouter()


@router.post("/events")
async def ingest_billing_event(
    _auth: BillingWebhookAuth,
    db: DbSession,
    body: BillingEventRequest,
) -> DataResponse[BillingEventResponse]:
    """Apply one billing event in a single transaction."""
    result = await BillingReconciler(db).apply_event(
        BillingEvent(
            external_event_id=body.external_event_id,
            user_id=body.user_id,
            event_type=BillingEventType(body.event_type),
            occurred_at=body.occurred_at,
            tier=body.tier,
            cycle_anchor=body.cycle_anchor,
            period_end=body.period_end,
            credits=body.credits,
        )
    )
    await db.commit()
    return DataResponse(
        data=BillingEventResponse(
            external_event_id=result.external_event_id,
            outcome=result.outcome.value,
            tier=result.tier,
            status=result.status,
        )
    )
