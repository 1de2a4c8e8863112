"""SQLAlchemy ORM models for the quota service.

All models are exported from this module for convenient imports:
    from nexus_quota.models import User, CreditBalance, ...

Models are organized by domain:
- user.py: User (profile, tier mirror)
- usage.py: DailyUsage, CreditBalance, CreditTransaction
- billing.py: Subscription, ProcessedBillingEvent, UsageOverride
"""

from nexus_quota.models.base import Base, TimestampMixin
from nexus_quota.models.billing import (
    ProcessedBillingEvent,
    Subscription,
    UsageOverride,
)
from nexus_quota.models.usage import CreditBalance, CreditTransaction, DailyUsage
from nexus_quota.models.user import User

__all__ = [
    # Base classes
    "Base",
    "TimestampMixin",
    # Profile
    "User",
    # Usage accounting
    "DailyUsage",
    "CreditBalance",
    "CreditTransaction",
    # Billing mirror
    "Subscription",
    "ProcessedBillingEvent",
    "UsageOverride",
]
