"""
Transactions router: the family-wide transaction history.

Endpoints:
  GET /transactions - Every transaction a parent made, across all children
                    ?period=week|month, ?since=

Per-child history lives under /children/{id}/transactions.
"""

from datetime import datetime
from typing import Literal

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from hapo.database import get_db
from hapo.dependencies import require_parent
from hapo.models.account import Account
from hapo.schemas.transaction import TransactionResponse
from hapo.services import ledger_service

router = APIRouter()


@router.get(
    "",
    response_model=list[TransactionResponse],
    summary="List the family's transactions",
)
async def list_family_transactions(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    period: Literal["all", "week", "month"] = Query("all"),
    since: datetime | None = Query(None),
    parent: Account = Depends(require_parent),
    db: AsyncSession = Depends(get_db),
):
    """List transactions for all of the parent's children, newest first."""
    return await ledger_service.list_family_transactions(
        db, parent, limit=limit, offset=offset, period=period, since=since,
    )
