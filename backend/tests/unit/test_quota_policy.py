"""Tests for the quota policy table and model catalog."""

import logging
from dataclasses import dataclass

import pytest

from nexus_quota.core.errors import ModelNotAllowedError, UnknownTierError
from nexus_quota.services.quota_policy import (
    MODEL_CATALOG,
    TIER_POLICIES,
    CreditLimits,
    DailyLimits,
    ModelCategory,
    Tier,
    UsageType,
    apply_override,
    lookup_policy,
    model_credit_cost,
    models_in_categories,
    resolve_policy,
)


@dataclass
class _Override:
    usage_type: str | None = None
    daily_request_limit: int | None = None
    monthly_credits: int | None = None
    max_input_chars: int | None = None
    max_context_messages: int | None = None
    allowed_models: list[str] | None = None


# =============================================================================
# Policy table
# =============================================================================


class TestTierPolicies:
    """Every tier has exactly one policy with a consistent limits variant."""

    def test_every_tier_has_a_policy(self) -> None:
        assert set(TIER_POLICIES) == set(Tier)

    def test_free_is_daily_metered(self) -> None:
        policy = lookup_policy("free")
        assert policy.usage_type is UsageType.DAILY
        assert isinstance(policy.limits, DailyLimits)
        assert policy.limits.daily_request_limit == 10

    @pytest.mark.parametrize("tier", ["light", "pro", "enterprise"])
    def test_paid_tiers_are_credit_metered(self, tier: str) -> None:
        policy = lookup_policy(tier)
        assert policy.usage_type is UsageType.CREDITS
        assert isinstance(policy.limits, CreditLimits)

    def test_pro_grant_and_rollover_cap(self) -> None:
        policy = lookup_policy("pro")
        assert policy.monthly_credits == 3000
        assert policy.rollover_limit == 1500

    def test_daily_tier_reports_zero_credits(self) -> None:
        policy = lookup_policy("free")
        assert policy.monthly_credits == 0
        assert policy.rollover_limit == 0

    def test_free_only_allows_low_cost_models(self) -> None:
        allowed = lookup_policy("free").allowed_models
        assert allowed == models_in_categories(ModelCategory.LOW)
        assert "gpt-4o" not in allowed

    def test_higher_tiers_allow_more_input(self) -> None:
        limits = [lookup_policy(t.value).max_input_chars for t in Tier]
        assert limits == sorted(limits)


class TestLookup:
    """Strict and tolerant lookups."""

    def test_lookup_unknown_tier_raises(self) -> None:
        with pytest.raises(UnknownTierError):
            lookup_policy("platinum")

    def test_resolve_unknown_tier_falls_back_to_free(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        with caplog.at_level(logging.CRITICAL):
            policy = resolve_policy("platinum")
        assert policy.tier is Tier.FREE
        assert "platinum" in caplog.text

    def test_resolve_known_tier(self) -> None:
        assert resolve_policy("light").tier is Tier.LIGHT


class TestModelCatalog:
    """Credit costs come from the catalog."""

    def test_cost_of_known_model(self) -> None:
        assert model_credit_cost("gpt-4o-mini") == 1
        assert model_credit_cost("claude-sonnet-4.5") == 20

    def test_unknown_model_is_not_allowed(self) -> None:
        with pytest.raises(ModelNotAllowedError) as exc_info:
            model_credit_cost("gpt-99", tier="pro")
        assert exc_info.value.detail["tier"] == "pro"

    def test_every_model_has_positive_cost(self) -> None:
        assert all(spec.credit_cost > 0 for spec in MODEL_CATALOG.values())


# =============================================================================
# Overrides
# =============================================================================


class TestApplyOverride:
    """Admin overrides replace individual limits."""

    def test_none_returns_policy_unchanged(self) -> None:
        policy = lookup_policy("pro")
        assert apply_override(policy, None) is policy

    def test_empty_override_keeps_defaults(self) -> None:
        policy = lookup_policy("pro")
        assert apply_override(policy, _Override()) == policy

    def test_daily_limit_override(self) -> None:
        effective = apply_override(
            lookup_policy("free"), _Override(daily_request_limit=50)
        )
        assert effective.limits == DailyLimits(daily_request_limit=50)

    def test_monthly_credits_override_keeps_rollover_cap(self) -> None:
        effective = apply_override(
            lookup_policy("pro"), _Override(monthly_credits=10000)
        )
        assert effective.limits == CreditLimits(
            monthly_credits=10000, rollover_limit=1500
        )

    def test_usage_type_override_retags_limits(self) -> None:
        effective = apply_override(lookup_policy("pro"), _Override(usage_type="daily"))
        assert effective.usage_type is UsageType.DAILY
        assert effective.limits == DailyLimits(daily_request_limit=10)
        assert effective.tier is Tier.PRO

    def test_free_user_switched_to_credits(self) -> None:
        effective = apply_override(
            lookup_policy("free"),
            _Override(usage_type="credits", monthly_credits=200),
        )
        assert effective.usage_type is UsageType.CREDITS
        assert effective.monthly_credits == 200
        assert effective.rollover_limit == 0

    def test_allowed_models_override(self) -> None:
        effective = apply_override(
            lookup_policy("free"), _Override(allowed_models=["gpt-4o"])
        )
        assert effective.allowed_models == frozenset({"gpt-4o"})

    def test_input_and_context_override(self) -> None:
        effective = apply_override(
            lookup_policy("free"),
            _Override(max_input_chars=9000, max_context_messages=40),
        )
        assert effective.max_input_chars == 9000
        assert effective.max_context_messages == 40
