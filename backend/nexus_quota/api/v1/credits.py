"""Credits API router.

GET /credits/transactions: the caller's ledger entries, newest first.
"""

from typing import Annotated, Literal

from fastapi import APIRouter, Depends, Query

from nexus_quota.api.deps import CurrentUserId, DbSession
from nexus_quota.core.pagination import PaginationParams, pagination_params
from nexus_quota.core.responses import ListResponse, PaginationMeta
from nexus_quota.models.usage import CreditTransaction
from nexus_quota.repositories.transaction_log_repository import (
    TransactionLogRepository,
)
from nexus_quota.schemas.credits import CreditTransactionResponse

router = APIRouter()

Pagination = Annotated[PaginationParams, Depends(pagination_params)]

_VALID_TRANSACTION_TYPES = Literal[
    "grant_monthly",
    "grant_rollover",
    "grant_purchase",
    "consume",
    "admin_grant",
    "refund",
    "expire_rollover",
    "close_base",
]

TransactionTypeFilter = Annotated[
    _VALID_TRANSACTION_TYPES | None,
    Query(description="Filter by ledger entry type"),
]


def transaction_response(txn: CreditTransaction) -> CreditTransactionResponse:
    """Build the API view of a ledger entry."""
    return CreditTransactionResponse(
        id=txn.id,
        transaction_type=txn.transaction_type,
        amount=txn.amount,
        pool=txn.pool,
        reason=txn.reason,
        created_at=txn.created_at,
    )


@router.get("/transactions")
async def get_transactions(
    user_id: CurrentUserId,
    db: DbSession,
    pagination: Pagination,
    type: TransactionTypeFilter = None,  # noqa: A002
) -> ListResponse[CreditTransactionResponse]:
    """Return paginated ledger entries. Does not expose reference ids."""
    txns, total = await TransactionLogRepository.list_by_user(
        db,
        user_id,
        offset=pagination.offset,
        limit=pagination.limit,
        transaction_type=type,
    )
    return ListResponse(
        data=[transaction_response(txn) for txn in txns],
        meta=PaginationMeta(
            total=total,
            page=pagination.page,
            per_page=pagination.per_page,
        ),
    )
