"""Quota policy table and chat model catalog.

Static mapping from subscription tier to its quota model and limits. Each
policy carries a tagged ``limits`` variant: DailyLimits for tiers metered
by a per-day request counter, CreditLimits for tiers metered by the credit
ledger. The enforcement gate dispatches on ``policy.usage_type``.

Pure lookups, no database access. An unknown tier is a data-integrity
problem: resolve_policy() logs it at CRITICAL and falls back to the most
restrictive policy instead of failing the request.
"""

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Protocol

from nexus_quota.core.errors import ModelNotAllowedError, UnknownTierError

logger = logging.getLogger(__name__)


class Tier(str, Enum):
    """Subscription tiers."""

    FREE = "free"
    LIGHT = "light"
    PRO = "pro"
    ENTERPRISE = "enterprise"


class UsageType(str, Enum):
    """Quota model a tier is metered by."""

    DAILY = "daily"
    CREDITS = "credits"


class ModelCategory(str, Enum):
    """Cost class of a chat model. Tiers unlock whole categories."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# =============================================================================
# Model catalog
# =============================================================================


@dataclass(frozen=True)
class ModelSpec:
    """A chat model users can select.

    Attributes:
        model_id: Stable identifier sent by the client.
        provider: Upstream provider name.
        category: Cost class.
        credit_cost: Credits charged per message on credit tiers.
    """

    model_id: str
    provider: str
    category: ModelCategory
    credit_cost: int


MODEL_CATALOG: dict[str, ModelSpec] = {
    spec.model_id: spec
    for spec in (
        ModelSpec("gpt-4o-mini", "openai", ModelCategory.LOW, 1),
        ModelSpec("gpt-4o", "openai", ModelCategory.HIGH, 15),
        ModelSpec("gemini-2.5-flash", "google", ModelCategory.LOW, 1),
        ModelSpec("deepseek-v3", "deepseek", ModelCategory.LOW, 1),
        ModelSpec("mistral-small-3", "mistral", ModelCategory.LOW, 1),
        ModelSpec("mistral-medium-3", "mistral", ModelCategory.MEDIUM, 2),
        ModelSpec("claude-haiku-3.5", "anthropic", ModelCategory.MEDIUM, 5),
        ModelSpec("claude-sonnet-4.5", "anthropic", ModelCategory.HIGH, 20),
    )
}


def models_in_categories(*categories: ModelCategory) -> frozenset[str]:
    """Model ids whose category is one of ``categories``."""
    return frozenset(
        spec.model_id for spec in MODEL_CATALOG.values() if spec.category in categories
    )


def model_credit_cost(model_id: str, *, tier: str = "unknown") -> int:
    """Credits charged for one message on ``model_id``.

    Args:
        model_id: Catalog model id.
        tier: Caller's tier, reported in the error for unknown models.

    Returns:
        Per-message credit cost.

    Raises:
        ModelNotAllowedError: If the model is not in the catalog.
    """
    spec = MODEL_CATALOG.get(model_id)
    if spec is None:
        raise ModelNotAllowedError(model_id=model_id, tier=tier)
    return spec.credit_cost


# =============================================================================
# Tier policies
# =============================================================================

_FREE_DAILY_REQUEST_LIMIT = 10


@dataclass(frozen=True)
class DailyLimits:
    """Limits for tiers metered by the daily request counter."""

    daily_request_limit: int

    @property
    def usage_type(self) -> UsageType:
        return UsageType.DAILY


@dataclass(frozen=True)
class CreditLimits:
    """Limits for tiers metered by the credit ledger.

    Attributes:
        monthly_credits: Base pool grant at every cycle reset.
        rollover_limit: Cap on the rollover pool.
    """

    monthly_credits: int
    rollover_limit: int

    @property
    def usage_type(self) -> UsageType:
        return UsageType.CREDITS


@dataclass(frozen=True)
class FeatureFlags:
    """Chat features unlocked by a tier."""

    dual_response: bool = True
    alternative_response: bool = True
    export_conversation: bool = False


@dataclass(frozen=True)
class TierPolicy:
    """Effective quota policy for a tier (optionally with an override applied).

    Attributes:
        tier: Tier this policy belongs to.
        limits: DailyLimits or CreditLimits, tagged by usage_type.
        max_input_chars: Per-request character limit.
        max_context_messages: Conversation messages sent as context.
        allowed_models: Model ids the tier may use.
        features: Feature flags.
    """

    tier: Tier
    limits: DailyLimits | CreditLimits
    max_input_chars: int
    max_context_messages: int
    allowed_models: frozenset[str]
    features: FeatureFlags

    @property
    def usage_type(self) -> UsageType:
        """Quota model tag; the gate dispatches on this."""
        return self.limits.usage_type

    @property
    def rollover_limit(self) -> int:
        """Rollover cap, 0 for daily tiers."""
        if isinstance(self.limits, CreditLimits):
            return self.limits.rollover_limit
        return 0

    @property
    def monthly_credits(self) -> int:
        """Monthly base grant, 0 for daily tiers."""
        if isinstance(self.limits, CreditLimits):
            return self.limits.monthly_credits
        return 0


TIER_POLICIES: dict[Tier, TierPolicy] = {
    Tier.FREE: TierPolicy(
        tier=Tier.FREE,
        limits=DailyLimits(daily_request_limit=_FREE_DAILY_REQUEST_LIMIT),
        max_input_chars=3000,
        max_context_messages=8,
        allowed_models=models_in_categories(ModelCategory.LOW),
        features=FeatureFlags(export_conversation=False),
    ),
    Tier.LIGHT: TierPolicy(
        tier=Tier.LIGHT,
        limits=CreditLimits(monthly_credits=1500, rollover_limit=750),
        max_input_chars=6000,
        max_context_messages=16,
        allowed_models=models_in_categories(ModelCategory.LOW, ModelCategory.MEDIUM),
        features=FeatureFlags(export_conversation=True),
    ),
    Tier.PRO: TierPolicy(
        tier=Tier.PRO,
        limits=CreditLimits(monthly_credits=3000, rollover_limit=1500),
        max_input_chars=15000,
        max_context_messages=32,
        allowed_models=models_in_categories(
            ModelCategory.LOW, ModelCategory.MEDIUM, ModelCategory.HIGH
        ),
        features=FeatureFlags(export_conversation=True),
    ),
    # Credits are negotiated per contract and granted by admins.
    Tier.ENTERPRISE: TierPolicy(
        tier=Tier.ENTERPRISE,
        limits=CreditLimits(monthly_credits=0, rollover_limit=0),
        max_input_chars=50000,
        max_context_messages=64,
        allowed_models=models_in_categories(
            ModelCategory.LOW, ModelCategory.MEDIUM, ModelCategory.HIGH
        ),
        features=FeatureFlags(export_conversation=True),
    ),
}

MOST_RESTRICTIVE_TIER = Tier.FREE


def lookup_policy(tier: str) -> TierPolicy:
    """Strict policy lookup.

    Args:
        tier: Tier value as stored on the profile.

    Returns:
        The tier's policy.

    Raises:
        UnknownTierError: If tier is not a known tier.
    """
    try:
        return TIER_POLICIES[Tier(tier)]
    except ValueError as exc:
        raise UnknownTierError(tier) from exc


def resolve_policy(tier: str) -> TierPolicy:
    """Policy for a tier, falling back to the most restrictive on bad data.

    Args:
        tier: Tier value as stored on the profile.

    Returns:
        The tier's policy, or the free policy if the tier is unknown.
    """
    try:
        return lookup_policy(tier)
    except UnknownTierError as exc:
        logger.critical(
            "Unknown subscription tier %r; applying %s policy",
            exc.tier,
            MOST_RESTRICTIVE_TIER.value,
        )
        return TIER_POLICIES[MOST_RESTRICTIVE_TIER]


# =============================================================================
# Admin overrides
# =============================================================================


class PolicyOverride(Protocol):
    """Override values; None means "keep the tier default"."""

    usage_type: str | None
    daily_request_limit: int | None
    monthly_credits: int | None
    max_input_chars: int | None
    max_context_messages: int | None
    allowed_models: list[str] | None


def apply_override(policy: TierPolicy, override: PolicyOverride | None) -> TierPolicy:
    """Merge an admin override onto a tier policy.

    A usage_type override re-tags the limits variant. Switching to daily
    without a daily_request_limit uses the free tier's limit; switching to
    credits keeps the tier's rollover cap (0 for daily tiers).

    Args:
        policy: Tier policy.
        override: Stored override, or None.

    Returns:
        Effective policy.
    """
    if override is None:
        return policy

    usage_type = (
        UsageType(override.usage_type) if override.usage_type else policy.usage_type
    )
    limits: DailyLimits | CreditLimits
    if usage_type is UsageType.DAILY:
        if override.daily_request_limit is not None:
            request_limit = override.daily_request_limit
        elif isinstance(policy.limits, DailyLimits):
            request_limit = policy.limits.daily_request_limit
        else:
            request_limit = _FREE_DAILY_REQUEST_LIMIT
        limits = DailyLimits(daily_request_limit=request_limit)
    else:
        monthly = (
            override.monthly_credits
            if override.monthly_credits is not None
            else policy.monthly_credits
        )
        limits = CreditLimits(
            monthly_credits=monthly, rollover_limit=policy.rollover_limit
        )

    return replace(
        policy,
        limits=limits,
        max_input_chars=(
            override.max_input_chars
            if override.max_input_chars is not None
            else policy.max_input_chars
        ),
        max_context_messages=(
            override.max_context_messages
            if override.max_context_messages is not None
            else policy.max_context_messages
        ),
        allowed_models=(
            frozenset(override.allowed_models)
            if override.allowed_models is not None
            else policy.allowed_models
        ),
    )
