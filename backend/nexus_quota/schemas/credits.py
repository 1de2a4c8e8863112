"""Credit ledger schemas.

Response model for the transaction log and request/response models for
admin credit grants.
"""

import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

PoolName = Literal["base", "rollover", "purchased"]


class CreditTransactionResponse(BaseModel):
    """One ledger entry.

    Attributes:
        id: Entry id (creation order).
        transaction_type: Ledger entry type.
        amount: Signed credit amount.
        pool: Pool the entry affects.
        reason: Free text or model identifier.
        created_at: When the entry was written.
    """

    model_config = ConfigDict(extra="forbid")

    id: int
    transaction_type: str
    amount: int
    pool: str
    reason: str
    created_at: datetime


class AdminCreditGrantRequest(BaseModel):
    """Request body for POST /admin/credits.

    Attributes:
        user_id: Recipient.
        amount: Credits to grant.
        pool: Target pool (defaults to purchased, which never expires).
        reason: Recorded on the entry for audit.
    """

    model_config = ConfigDict(extra="forbid")

    user_id: uuid.UUID
    amount: int
    pool: PoolName = "purchased"
    reason: str = Field(min_length=1, max_length=255)


class AdminCreditGrantResponse(BaseModel):
    """Result of a manual grant.

    Attributes:
        transactions: Entries written (grant plus any rollover expiry).
        available: Recipient's spendable credits afterwards.
    """

    model_config = ConfigDict(extra="forbid")

    transactions: list[CreditTransactionResponse]
    available: int
