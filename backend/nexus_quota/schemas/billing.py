"""Billing webhook schemas.

The forwarding hop posts normalized provider events; signature checks
happen before this service sees them.
"""

import uuid
from datetime import date
from typing import Literal

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field

BillingEventTypeName = Literal[
    "subscription_created",
    "subscription_renewed",
    "subscription_canceled",
    "payment_failed",
    "credits_purchased",
]


class BillingEventRequest(BaseModel):
    """Request body for POST /billing/events.

    Attributes:
        external_event_id: Provider event id (idempotency key).
        user_id: Account the event applies to.
        event_type: Normalized event type.
        occurred_at: Provider timestamp (timezone-aware).
        tier: Subscribed tier (created/renewed).
        cycle_anchor: First day of the billing cycle (created/renewed).
        period_end: End of the paid period.
        credits: Credits bought (credits_purchased).
    """

    model_config = ConfigDict(extra="forbid")

    external_event_id: str = Field(min_length=1, max_length=255)
    user_id: uuid.UUID
    event_type: BillingEventTypeName
    occurred_at: AwareDatetime
    tier: str | None = Field(default=None, max_length=20)
    cycle_anchor: date | None = None
    period_end: AwareDatetime | None = None
    credits: int | None = None


class BillingEventResponse(BaseModel):
    """Outcome of a billing event.

    Attributes:
        external_event_id: Provider event id.
        outcome: applied, stale, or duplicate.
        tier: Profile tier after the event.
        status: Subscription status after the event.
    """

    model_config = ConfigDict(extra="forbid")

    external_event_id: str
    outcome: Literal["applied", "stale", "duplicate"]
    tier: str | None
    status: str | None
