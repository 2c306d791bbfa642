"""
Children router: a parent's child accounts and the money moved to them.

Endpoints:
  POST  /children                       - Create a child account (parent)
  GET   /children                       - List the parent's children
  PATCH /children/{id}/limits           - Update spending limits (parent)
  GET   /children/{id}/balance          - Balance with ledger check (parent or that child)
  GET   /children/{id}/transactions     - Transaction history (parent or that child)
                                          ?period=week|month, ?since=
  POST  /children/{id}/transfers        - Transfer from the parent (Idempotency-Key header)
  POST  /children/{id}/funds            - Emergency funds or wallet top-up (parent)

All amounts are in integer cents. A child that belongs to another parent is
reported as not found rather than forbidden, so ids cannot be probed.
"""

import uuid
from datetime import datetime
from typing import Literal

from fastapi import APIRouter, Depends, Header, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from hapo.database import get_db
from hapo.dependencies import get_current_account, require_parent
from hapo.models.account import Account
from hapo.schemas.account import (
    AccountResponse,
    BalanceResponse,
    ChildCreateRequest,
    SpendingLimitsRequest,
)
from hapo.schemas.transaction import (
    CreditResponse,
    FundsRequest,
    TransactionResponse,
    TransferRequest,
)
from hapo.services import child_service, ledger_service

router = APIRouter()


@router.post(
    "",
    response_model=AccountResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a child account",
)
async def create_child(
    request: ChildCreateRequest,
    parent: Account = Depends(require_parent),
    db: AsyncSession = Depends(get_db),
):
    """
    Create a child account that signs in with a username and password.

    Children start with a zero balance and the default weekly/daily limits
    unless limits are given here.
    """
    return await child_service.create_child(
        db=db,
        parent=parent,
        first_name=request.first_name,
        last_name=request.last_name,
        username=request.username,
        password=request.password,
        weekly_limit_cents=request.weekly_limit_cents,
        daily_limit_cents=request.daily_limit_cents,
    )


@router.get("", response_model=list[AccountResponse], summary="List your children")
async def list_children(
    parent: Account = Depends(require_parent),
    db: AsyncSession = Depends(get_db),
):
    return await child_service.list_children(db, parent)


@router.patch(
    "/{child_id}/limits",
    response_model=AccountResponse,
    summary="Update a child's spending limits",
)
async def update_limits(
    child_id: uuid.UUID,
    request: SpendingLimitsRequest,
    parent: Account = Depends(require_parent),
    db: AsyncSession = Depends(get_db),
):
    return await child_service.update_spending_limits(
        db,
        parent,
        child_id,
        weekly_limit_cents=request.weekly_limit_cents,
        daily_limit_cents=request.daily_limit_cents,
    )


@router.get(
    "/{child_id}/balance",
    response_model=BalanceResponse,
    summary="Get a child's balance",
)
async def get_balance(
    child_id: uuid.UUID,
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
):
    """
    Return the stored balance alongside one recomputed from the transaction
    history. ``match`` is false only if the two have drifted apart.
    """
    return await ledger_service.get_balance(db, account, child_id)


@router.get(
    "/{child_id}/transactions",
    response_model=list[TransactionResponse],
    summary="List a child's transactions",
)
async def list_transactions(
    child_id: uuid.UUID,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    period: Literal["all", "week", "month"] = Query("all"),
    since: datetime | None = Query(None),
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
):
    """
    List a child's transactions, newest first.

    - **period**: `week` (since Sunday) or `month` (since the 1st), in UTC
    - **since**: only transactions at or after this time
    """
    return await ledger_service.list_transactions(
        db, account, child_id, limit=limit, offset=offset, period=period, since=since,
    )


@router.post(
    "/{child_id}/transfers",
    response_model=CreditResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Transfer money to a child",
)
async def transfer(
    child_id: uuid.UUID,
    request: TransferRequest,
    idempotency_key: str | None = Header(None, max_length=128),
    parent: Account = Depends(require_parent),
    db: AsyncSession = Depends(get_db),
):
    """
    Credit a child's balance. The balance update and its transaction record
    are committed together.

    Send an **Idempotency-Key** header to make retries safe: repeating the
    same key returns the original transaction without crediting twice.
    """
    txn, new_balance = await ledger_service.transfer(
        db,
        parent_id=parent.id,
        student_id=child_id,
        amount_cents=request.amount_cents,
        description=request.description,
        idempotency_key=idempotency_key,
    )
    return CreditResponse(
        transaction=TransactionResponse.model_validate(txn),
        new_balance_cents=new_balance,
    )


@router.post(
    "/{child_id}/funds",
    response_model=CreditResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Send emergency funds or top up a wallet",
)
async def add_funds(
    child_id: uuid.UUID,
    request: FundsRequest,
    idempotency_key: str | None = Header(None, max_length=128),
    parent: Account = Depends(require_parent),
    db: AsyncSession = Depends(get_db),
):
    txn, new_balance = await ledger_service.apply_emergency_or_top_up(
        db,
        parent_id=parent.id,
        student_id=child_id,
        amount_cents=request.amount_cents,
        kind=request.kind,
        description=request.description,
        idempotency_key=idempotency_key,
    )
    return CreditResponse(
        transaction=TransactionResponse.model_validate(txn),
        new_balance_cents=new_balance,
    )
