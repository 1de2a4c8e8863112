"""Pydantic request/response schemas for API endpoints."""

from nexus_quota.schemas.admin import (
    LedgerReconciliationResponse,
    UsageOverrideResponse,
    UsageOverrideUpsert,
)
from nexus_quota.schemas.billing import BillingEventRequest, BillingEventResponse
from nexus_quota.schemas.credits import (
    AdminCreditGrantRequest,
    AdminCreditGrantResponse,
    CreditTransactionResponse,
)
from nexus_quota.schemas.quota import (
    CreditQuotaResponse,
    DailyQuotaResponse,
    ReservationRequest,
    ReservationResponse,
)

__all__ = [
    # Quota
    "CreditQuotaResponse",
    "DailyQuotaResponse",
    "ReservationRequest",
    "ReservationResponse",
    # Credits
    "AdminCreditGrantRequest",
    "AdminCreditGrantResponse",
    "CreditTransactionResponse",
    # Billing
    "BillingEventRequest",
    "BillingEventResponse",
    # Admin
    "LedgerReconciliationResponse",
    "UsageOverrideResponse",
    "UsageOverrideUpsert",
]
