"""
Recurring payment service: standing payments a parent keeps per child.

A recurring payment is a record, not a scheduler: creating one does not move
money, and nothing here touches a balance. Parents can pause and resume a
payment (``active`` <-> ``inactive``) or delete it. Every operation is scoped
to the owning parent; another family's payment looks like a missing one.
"""

import logging
import uuid
from datetime import date

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hapo.exceptions import RecurringPaymentNotFoundError, ValidationFailedError
from hapo.models.account import Account
from hapo.models.recurring_payment import RecurringPayment
from hapo.services.child_service import get_child
from hapo.services.ledger_service import check_amount

logger = logging.getLogger(__name__)

PAYMENT_TYPE_LABELS = {
    "school_fees": "School Fees",
    "transport": "Transport Payment",
    "lunch_money": "Lunch Money",
    "custom": "Custom Payment",
}
FREQUENCIES = ("daily", "weekly", "monthly")


async def create_recurring_payment(
    db: AsyncSession,
    parent: Account,
    student_id: uuid.UUID,
    payment_type: str,
    amount_cents: int,
    frequency: str,
    start_date: date,
    description: str | None = None,
) -> RecurringPayment:
    """
    Record a recurring payment for one of the parent's children.

    Raises:
        StudentNotFoundError: Child missing or owned by another parent.
        InvalidAmountError: Amount is not a positive integer.
        ValidationFailedError: Unknown payment type or frequency.
    """
    if payment_type not in PAYMENT_TYPE_LABELS:
        raise ValidationFailedError(f"Unknown payment type {payment_type!r}")
    if frequency not in FREQUENCIES:
        raise ValidationFailedError(f"Unknown frequency {frequency!r}; expected one of {FREQUENCIES}")
    check_amount(amount_cents)
    student = await get_child(db, parent.id, student_id)

    payment = RecurringPayment(
        id=uuid.uuid4(),
        parent_id=parent.id,
        student_id=student.id,
        type=payment_type,
        amount_cents=amount_cents,
        frequency=frequency,
        start_date=start_date,
        description=(description or "").strip() or PAYMENT_TYPE_LABELS[payment_type],
        status="active",
    )
    db.add(payment)
    await db.flush()

    logger.info(
        "Parent %s added %s recurring payment %s of %d cents for student %s",
        parent.id, frequency, payment.id, amount_cents, student.id,
    )
    return payment


async def _get_owned(db: AsyncSession, parent: Account, payment_id: uuid.UUID) -> RecurringPayment:
    payment = await db.get(RecurringPayment, payment_id)
    if payment is None or payment.parent_id != parent.id:
        raise RecurringPaymentNotFoundError(payment_id)
    return payment


async def list_recurring_payments(
    db: AsyncSession,
    parent: Account,
    student_id: uuid.UUID | None = None,
) -> list[RecurringPayment]:
    """The parent's recurring payments, oldest first, optionally for one child."""
    query = select(RecurringPayment).where(RecurringPayment.parent_id == parent.id)
    if student_id is not None:
        query = query.where(RecurringPayment.student_id == student_id)
    result = await db.execute(
        query.order_by(RecurringPayment.created_at, RecurringPayment.id)
    )
    return list(result.scalars().all())


async def toggle_recurring_payment(
    db: AsyncSession,
    parent: Account,
    payment_id: uuid.UUID,
) -> RecurringPayment:
    """Pause an active payment or resume an inactive one."""
    payment = await _get_owned(db, parent, payment_id)
    payment.status = "inactive" if payment.status == "active" else "active"
    await db.flush()

    logger.info("Recurring payment %s is now %s", payment.id, payment.status)
    return payment


async def delete_recurring_payment(
    db: AsyncSession,
    parent: Account,
    payment_id: uuid.UUID,
) -> None:
    payment = await _get_owned(db, parent, payment_id)
    await db.delete(payment)
    await db.flush()

    logger.info("Recurring payment %s deleted by parent %s", payment_id, parent.id)
