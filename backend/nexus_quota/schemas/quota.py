"""Quota status and reservation schemas.

Response models for GET /quota and POST /quota/reservations. The status
payload is a tagged union on ``usage_type``.
"""

from datetime import date, datetime
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field

# Longest client-supplied operation id (matches credit_transactions column)
_MAX_OPERATION_ID_LENGTH = 100


class DailyQuotaResponse(BaseModel):
    """Quota status for daily-metered tiers.

    Attributes:
        usage_type: Always "daily".
        tier: Effective tier.
        requests_used: Requests counted today.
        requests_remaining: Requests left today.
        requests_max: Daily request limit.
        chars_used: Characters counted today.
        chars_max: Per-request character limit.
        resets_at: Next daily reset.
        max_context_messages: Context window in messages.
        allowed_models: Models available on the tier.
        warnings: Account warnings (e.g. payment_past_due).
    """

    model_config = ConfigDict(extra="forbid")

    usage_type: Literal["daily"] = "daily"
    tier: str
    requests_used: int
    requests_remaining: int
    requests_max: int
    chars_used: int
    chars_max: int
    resets_at: datetime
    max_context_messages: int
    allowed_models: list[str]
    warnings: list[str]


class CreditQuotaResponse(BaseModel):
    """Quota status for credit-metered tiers.

    Attributes:
        usage_type: Always "credits".
        tier: Effective tier.
        available: Credits spendable now.
        total: Credits held for the current cycle.
        used: Credits spent in the current cycle.
        base: Remaining base credits.
        rollover: Remaining rollover credits.
        purchased: Remaining purchased credits.
        current_cycle_start: Start of the current billing cycle.
        frozen: Whether consumption is halted.
        max_input_chars: Per-request character limit.
        max_context_messages: Context window in messages.
        estimated_requests: Messages the balance still covers, per model.
        warnings: Account warnings (e.g. payment_past_due).
    """

    model_config = ConfigDict(extra="forbid")

    usage_type: Literal["credits"] = "credits"
    tier: str
    available: int
    total: int
    used: int
    base: int
    rollover: int
    purchased: int
    current_cycle_start: date | None
    frozen: bool
    max_input_chars: int
    max_context_messages: int
    estimated_requests: dict[str, int]
    warnings: list[str]


QuotaStatusResponse = Annotated[
    DailyQuotaResponse | CreditQuotaResponse,
    Field(discriminator="usage_type"),
]


class ReservationRequest(BaseModel):
    """Request body for POST /quota/reservations.

    Attributes:
        model_id: Model the chat request will use.
        char_count: Characters in the user's input.
        operation_id: Client key; retrying with the same key never charges
            twice.
    """

    model_config = ConfigDict(extra="forbid")

    model_id: str = Field(min_length=1, max_length=100)
    char_count: int = Field(ge=0)
    operation_id: str | None = Field(
        default=None, min_length=1, max_length=_MAX_OPERATION_ID_LENGTH
    )


class ReservationResponse(BaseModel):
    """A granted reservation with the remaining quota for display.

    Attributes:
        usage_type: Quota model charged.
        tier: Effective tier.
        model_id: Model reserved for.
        cost: Requests or credits reserved.
        remaining: Requests left today or credits available.
        resets_at: Next daily reset (daily tiers only).
        replayed: True if an earlier reservation was returned for this
            operation_id.
        warnings: Account warnings (e.g. payment_past_due).
    """

    model_config = ConfigDict(extra="forbid")

    usage_type: Literal["daily", "credits"]
    tier: str
    model_id: str
    cost: int
    remaining: int
    resets_at: datetime | None = None
    replayed: bool = False
    warnings: list[str]
