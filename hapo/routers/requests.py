"""
Money requests router: children ask, parents approve or decline.

Endpoints:
  POST /requests                - File a request (child)
  GET  /requests/mine           - The child's own requests
  GET  /requests/pending        - Pending requests addressed to the parent
  POST /requests/{id}/approve   - Approve and credit the child (parent)
  POST /requests/{id}/decline   - Decline, no money moves (parent)

Approving or declining a request that is no longer pending returns 409
``not_pending``.
"""

import uuid

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from hapo.database import get_db
from hapo.dependencies import require_child, require_parent
from hapo.models.account import Account
from hapo.schemas.money_request import MoneyRequestCreate, MoneyRequestResponse
from hapo.services import request_service

router = APIRouter()


@router.post(
    "",
    response_model=MoneyRequestResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Ask your parent for money",
)
async def create_request(
    request: MoneyRequestCreate,
    student: Account = Depends(require_child),
    db: AsyncSession = Depends(get_db),
):
    return await request_service.create_request(
        db,
        student,
        amount_cents=request.amount_cents,
        reason=request.reason,
        request_type=request.type,
    )


@router.get("/mine", response_model=list[MoneyRequestResponse], summary="List your requests")
async def list_my_requests(
    student: Account = Depends(require_child),
    db: AsyncSession = Depends(get_db),
):
    return await request_service.list_for_student(db, student)


@router.get(
    "/pending",
    response_model=list[MoneyRequestResponse],
    summary="List requests waiting for your answer",
)
async def list_pending(
    parent: Account = Depends(require_parent),
    db: AsyncSession = Depends(get_db),
):
    return await request_service.list_pending(db, parent)


@router.post(
    "/{request_id}/approve",
    response_model=MoneyRequestResponse,
    summary="Approve a request",
)
async def approve_request(
    request_id: uuid.UUID,
    parent: Account = Depends(require_parent),
    db: AsyncSession = Depends(get_db),
):
    """
    Approve a pending request. The child is credited the requested amount in
    the same unit of work; if the credit fails the request stays pending.
    """
    return await request_service.approve(db, parent, request_id)


@router.post(
    "/{request_id}/decline",
    response_model=MoneyRequestResponse,
    summary="Decline a request",
)
async def decline_request(
    request_id: uuid.UUID,
    parent: Account = Depends(require_parent),
    db: AsyncSession = Depends(get_db),
):
    return await request_service.decline(db, parent, request_id)
