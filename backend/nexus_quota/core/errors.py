"""API and quota error classes.

HTTP-facing errors derive from APIError and carry a machine-readable code,
a user-safe message, an HTTP status, and optional details. The quota
family (QuotaError subclasses) additionally carries a ``kind`` so the
enforcement gate can turn any of them into a structured rejection.

WHY CUSTOM ERROR CLASSES:
- Consistent error response format across all endpoints
- Easy to map to HTTP status codes in exception handlers
- Type-safe error handling in services/repositories
"""

from datetime import datetime
from typing import Any


class APIError(Exception):
    """Base class for API errors.

    All API errors have a code, message, and HTTP status.
    Subclasses set default status_code.

    Attributes:
        code: Machine-readable error code (e.g., "NOT_FOUND").
        message: Human-readable error message.
        status_code: HTTP status code to return.
        details: Optional list of additional error details.
    """

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 500,
        details: list[dict] | None = None,
    ) -> None:
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details
        super().__init__(message)


class ValidationError(APIError):
    """Field validation failed (400).

    Use for request body validation errors, query param errors, etc.
    """

    def __init__(
        self,
        message: str,
        details: list[dict] | None = None,
    ) -> None:
        super().__init__(
            code="VALIDATION_ERROR",
            message=message,
            status_code=400,
            details=details,
        )


class UnauthorizedError(APIError):
    """Authentication required (401)."""

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(
            code="UNAUTHORIZED",
            message=message,
            status_code=401,
        )


class ForbiddenError(APIError):
    """Not allowed to access resource (403).

    Use when auth is valid but user lacks permission.
    """

    def __init__(self, message: str = "Access denied") -> None:
        super().__init__(
            code="FORBIDDEN",
            message=message,
            status_code=403,
        )


class AdminRequiredError(ForbiddenError):
    """Admin access required (403).

    Raised by require_admin when the user lacks the admin flag.
    """

    def __init__(self) -> None:
        APIError.__init__(
            self,
            code="ADMIN_REQUIRED",
            message="Admin access required",
            status_code=403,
        )


class NotFoundError(APIError):
    """Resource not found (404).

    WHY NOT SEPARATE "FORBIDDEN" FOR WRONG OWNERSHIP:
    - Revealing "exists but not yours" leaks information
    - From user perspective, resource simply doesn't exist
    """

    def __init__(self, resource: str, resource_id: str | None = None) -> None:
        if resource_id:
            message = f"{resource} with id '{resource_id}' not found"
        else:
            message = f"{resource} not found"
        super().__init__(
            code="NOT_FOUND",
            message=message,
            status_code=404,
        )


class InvalidAmountError(ValidationError):
    """Credit amount is not a positive integer (400).

    Programming or admin-input error. Raised before any mutation, so the
    operation is never partially applied.

    Args:
        amount: The rejected amount.
    """

    def __init__(self, amount: Any) -> None:
        super().__init__(
            message="Credit amount must be a positive integer",
            details=[{"amount": str(amount)}],
        )
        self.amount = amount


class InternalError(APIError):
    """Unexpected server error (500).

    Use for unhandled exceptions. Never expose stack traces to clients.
    """

    def __init__(self, message: str = "An unexpected error occurred") -> None:
        super().__init__(
            code="INTERNAL_ERROR",
            message=message,
            status_code=500,
        )


# =============================================================================
# Quota family
# =============================================================================


class QuotaError(APIError):
    """Base class for quota-check failures.

    Every subclass is user-facing and carries enough metadata (remaining
    amounts, reset time, upgrade path) to render actionable UI.

    Attributes:
        kind: Stable rejection kind used by the enforcement gate.
    """

    kind: str = "quota_error"

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int,
        detail: dict[str, Any],
    ) -> None:
        super().__init__(
            code=code,
            message=message,
            status_code=status_code,
            details=[detail],
        )

    @property
    def detail(self) -> dict[str, Any]:
        """The single detail record attached to this error."""
        return self.details[0] if self.details else {}


class QuotaExceededError(QuotaError):
    """Daily request limit reached (429). Retry after the next reset.

    Args:
        requests_used: Requests already counted today.
        requests_max: Daily request limit.
        resets_at: When the daily counter rolls over.
    """

    kind = "daily_request_limit"

    def __init__(
        self,
        requests_used: int,
        requests_max: int,
        resets_at: datetime | None = None,
    ) -> None:
        super().__init__(
            code="QUOTA_EXCEEDED",
            message="You have reached today's request limit.",
            status_code=429,
            detail={
                "requests_used": requests_used,
                "requests_max": requests_max,
                "requests_remaining": max(requests_max - requests_used, 0),
                "resets_at": resets_at.isoformat() if resets_at else None,
            },
        )


class InputTooLargeError(QuotaError):
    """Single request exceeds the tier's input size (413). Not retryable as-is.

    Args:
        char_count: Characters in the request.
        max_chars: Tier's per-request character limit.
    """

    kind = "input_too_long"

    def __init__(self, char_count: int, max_chars: int) -> None:
        super().__init__(
            code="INPUT_TOO_LARGE",
            message=f"Your message is too long. The limit is {max_chars} characters.",
            status_code=413,
            detail={"char_count": char_count, "max_chars": max_chars},
        )


class ModelNotAllowedError(QuotaError):
    """Model is not available on the user's tier (403). Suggests upgrade.

    Args:
        model_id: Requested model identifier.
        tier: User's effective tier.
    """

    kind = "model_not_allowed"

    def __init__(self, model_id: str, tier: str) -> None:
        super().__init__(
            code="MODEL_NOT_ALLOWED",
            message="This model is not available on your plan.",
            status_code=403,
            detail={"model_id": model_id, "tier": tier, "upgrade_path": "/plans"},
        )


class InsufficientCreditsError(QuotaError):
    """Credit pools cannot cover the request (402). Suggests purchase/upgrade.

    Args:
        available: Credits remaining across all pools.
        required: Credits the request costs.
    """

    kind = "insufficient_credits"

    def __init__(self, available: int, required: int) -> None:
        super().__init__(
            code="INSUFFICIENT_CREDITS",
            message=(
                f"You have {available} credits left. "
                "Purchase credits or upgrade to continue."
            ),
            status_code=402,
            detail={
                "available": available,
                "required": required,
                "upgrade_path": "/plans",
            },
        )


class LedgerFrozenError(QuotaError):
    """Consumption halted after an invariant violation (503).

    Reads remain available; writes wait for operator investigation.

    Args:
        frozen_at: When the ledger was frozen.
    """

    kind = "ledger_frozen"

    def __init__(self, frozen_at: datetime) -> None:
        super().__init__(
            code="LEDGER_UNAVAILABLE",
            message="Credit usage is temporarily unavailable for your account.",
            status_code=503,
            detail={"frozen_at": frozen_at.isoformat()},
        )


# =============================================================================
# Internal signals (never rendered as HTTP errors)
# =============================================================================


class UnknownTierError(Exception):
    """Tier value is not in the policy table.

    Data-integrity condition. The policy table recovers by falling back to
    the most restrictive policy.
    """

    def __init__(self, tier: object) -> None:
        self.tier = tier
        super().__init__(f"Unknown subscription tier: {tier!r}")


class DuplicateEventError(Exception):
    """Billing event was already processed.

    The reconciler treats this as a successful no-op.
    """

    def __init__(self, external_event_id: str) -> None:
        self.external_event_id = external_event_id
        super().__init__(f"Billing event already processed: {external_event_id}")
