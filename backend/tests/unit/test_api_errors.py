"""Tests for API and quota error classes."""

from datetime import UTC, datetime

from nexus_quota.core.errors import (
    AdminRequiredError,
    APIError,
    ForbiddenError,
    InputTooLargeError,
    InsufficientCreditsError,
    InvalidAmountError,
    LedgerFrozenError,
    ModelNotAllowedError,
    NotFoundError,
    QuotaError,
    QuotaExceededError,
    UnauthorizedError,
    ValidationError,
)


class TestAPIError:
    """Tests for base APIError class."""

    def test_api_error_has_required_attributes(self):
        error = APIError(
            code="TEST_ERROR",
            message="Test message",
            status_code=418,
            details=[{"field": "test"}],
        )
        assert error.code == "TEST_ERROR"
        assert error.message == "Test message"
        assert error.status_code == 418
        assert error.details == [{"field": "test"}]

    def test_api_error_defaults(self):
        error = APIError(code="TEST", message="Test")
        assert error.status_code == 500
        assert error.details is None
        assert str(error) == "Test"


class TestHttpErrors:
    """Status codes and machine-readable codes."""

    def test_validation_error(self):
        error = ValidationError("bad")
        assert (error.code, error.status_code) == ("VALIDATION_ERROR", 400)

    def test_invalid_amount_is_a_validation_error(self):
        error = InvalidAmountError(-5)
        assert isinstance(error, ValidationError)
        assert error.details == [{"amount": "-5"}]

    def test_unauthorized(self):
        assert UnauthorizedError().status_code == 401

    def test_admin_required_is_forbidden(self):
        error = AdminRequiredError()
        assert isinstance(error, ForbiddenError)
        assert (error.code, error.status_code) == ("ADMIN_REQUIRED", 403)

    def test_not_found_message_includes_id(self):
        error = NotFoundError("User", "abc")
        assert error.message == "User with id 'abc' not found"


class TestQuotaErrors:
    """Each quota error has a stable kind and one detail record."""

    def test_kinds(self):
        assert QuotaExceededError(1, 1).kind == "daily_request_limit"
        assert InputTooLargeError(10, 5).kind == "input_too_long"
        assert ModelNotAllowedError("gpt-4o", "free").kind == "model_not_allowed"
        assert InsufficientCreditsError(0, 1).kind == "insufficient_credits"
        frozen = LedgerFrozenError(frozen_at=datetime(2026, 1, 1, tzinfo=UTC))
        assert frozen.kind == "ledger_frozen"

    def test_all_are_quota_errors(self):
        assert isinstance(InputTooLargeError(10, 5), QuotaError)
        assert isinstance(InsufficientCreditsError(0, 1), APIError)

    def test_status_codes(self):
        assert QuotaExceededError(1, 1).status_code == 429
        assert InputTooLargeError(10, 5).status_code == 413
        assert ModelNotAllowedError("gpt-4o", "free").status_code == 403
        assert InsufficientCreditsError(0, 1).status_code == 402
        frozen = LedgerFrozenError(frozen_at=datetime(2026, 1, 1, tzinfo=UTC))
        assert frozen.status_code == 503

    def test_exceeded_detail_never_negative(self):
        error = QuotaExceededError(requests_used=25, requests_max=20)
        assert error.detail["requests_remaining"] == 0
        assert error.detail["resets_at"] is None

    def test_model_not_allowed_suggests_upgrade(self):
        error = ModelNotAllowedError("claude-opus", "light")
        assert error.detail == {
            "model_id": "claude-opus",
            "tier": "light",
            "upgrade_path": "/plans",
        }
