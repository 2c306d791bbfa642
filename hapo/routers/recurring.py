"""
Recurring payments router: standing payments a parent keeps for a child.

Endpoints:
  POST   /recurring-payments              - Add a recurring payment (parent)
  GET    /recurring-payments              - List them, optionally ?student_id=
  POST   /recurring-payments/{id}/toggle  - Pause or resume
  DELETE /recurring-payments/{id}         - Remove (204)

These are records only; no money moves when one is created or toggled.
"""

import uuid

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from hapo.database import get_db
from hapo.dependencies import require_parent
from hapo.models.account import Account
from hapo.schemas.recurring_payment import RecurringPaymentCreate, RecurringPaymentResponse
from hapo.services import recurring_service

router = APIRouter()


@router.post(
    "",
    response_model=RecurringPaymentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add a recurring payment",
)
async def create_recurring_payment(
    request: RecurringPaymentCreate,
    parent: Account = Depends(require_parent),
    db: AsyncSession = Depends(get_db),
):
    """
    Record school fees, transport, lunch money or a custom payment for one of
    your children. Without a description the payment type's label is used.
    """
    return await recurring_service.create_recurring_payment(
        db,
        parent,
        student_id=request.student_id,
        payment_type=request.type,
        amount_cents=request.amount_cents,
        frequency=request.frequency,
        start_date=request.start_date,
        description=request.description,
    )


@router.get("", response_model=list[RecurringPaymentResponse], summary="List recurring payments")
async def list_recurring_payments(
    student_id: uuid.UUID | None = Query(None),
    parent: Account = Depends(require_parent),
    db: AsyncSession = Depends(get_db),
):
    return await recurring_service.list_recurring_payments(db, parent, student_id)


@router.post(
    "/{payment_id}/toggle",
    response_model=RecurringPaymentResponse,
    summary="Pause or resume a recurring payment",
)
async def toggle_recurring_payment(
    payment_id: uuid.UUID,
    parent: Account = Depends(require_parent),
    db: AsyncSession = Depends(get_db),
):
    return await recurring_service.toggle_recurring_payment(db, parent, payment_id)


@router.delete(
    "/{payment_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a recurring payment",
)
async def delete_recurring_payment(
    payment_id: uuid.UUID,
    parent: Account = Depends(require_parent),
    db: AsyncSession = Depends(get_db),
):
    await recurring_service.delete_recurring_payment(db, parent, payment_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
