"""Admin override and ledger-check schemas.

All schemas use ConfigDict(extra="forbid") to reject unexpected fields.
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from nexus_quota.services.quota_policy import MODEL_CATALOG


class UsageOverrideUpsert(BaseModel):
    """Request body for PUT /admin/overrides/{user_id}.

    Omitted limits fall back to the user's tier defaults.
    """

    model_config = ConfigDict(extra="forbid")

    usage_type: Literal["daily", "credits"] | None = None
    daily_request_limit: int | None = Field(default=None, ge=0)
    monthly_credits: int | None = Field(default=None, ge=0)
    max_input_chars: int | None = Field(default=None, ge=1)
    max_context_messages: int | None = Field(default=None, ge=1)
    allowed_models: list[str] | None = None
    reason: str | None = Field(default=None, max_length=255)

    @field_validator("allowed_models")
    @classmethod
    def check_models_known(cls, value: list[str] | None) -> list[str] | None:
        """Every model in the allow-list must exist in the catalog."""
        if value is None:
            return value
        unknown = sorted(set(value) - set(MODEL_CATALOG))
        if unknown:
            msg = f"unknown models: {', '.join(unknown)}"
            raise ValueError(msg)
        return sorted(set(value))


class UsageOverrideResponse(BaseModel):
    """Stored override."""

    model_config = ConfigDict(extra="forbid")

    user_id: str
    usage_type: str | None
    daily_request_limit: int | None
    monthly_credits: int | None
    max_input_chars: int | None
    max_context_messages: int | None
    allowed_models: list[str] | None
    set_by_admin_id: str | None
    reason: str | None
    updated_at: datetime


class PoolSums(BaseModel):
    """Per-pool credit values."""

    model_config = ConfigDict(extra="forbid")

    base: int
    rollover: int
    purchased: int
    used: int


class LedgerReconciliationResponse(BaseModel):
    """Response for GET /admin/ledger/{user_id}/reconcile.

    Attributes:
        user_id: Account checked.
        consistent: Balance row equals the log fold.
        materialized: Values from the balance row.
        folded: Values recomputed from the log.
        frozen_at: Set if consumption is halted.
    """

    model_config = ConfigDict(extra="forbid")

    user_id: str
    consistent: bool
    materialized: PoolSums
    folded: PoolSums
    frozen_at: datetime | None
