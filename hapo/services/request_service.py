"""
Money request service: a child asks, the parent approves or declines.

State machine (per request):
    pending ──approve──> approved   credits the child via ledger_service.transfer
       └─────decline──> declined   no side effect

Both outcomes are terminal; there is no transition out of them, and the
requester cannot cancel. Approving and its ledger credit happen in one unit
of work: if the credit fails, the request stays pending.

The request row is versioned. If two parents (or two tabs) resolve the same
request at once, the second flush fails with StaleDataError rather than
overwriting the first decision.
"""

import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hapo.exceptions import (
    RequestNotFoundError,
    RequestNotPendingError,
    UnauthorizedAccessError,
    ValidationFailedError,
)
from hapo.models.account import Account, AccountRole
from hapo.models.money_request import MoneyRequest
from hapo.services import ledger_service

logger = logging.getLogger(__name__)

REQUEST_TYPES = ("money", "emergency")


async def create_request(
    db: AsyncSession,
    student: Account,
    amount_cents: int,
    reason: str,
    request_type: str = "money",
) -> MoneyRequest:
    """
    File a request from a child to their parent.

    Raises:
        UnauthorizedAccessError: If the caller is not a child account.
        InvalidAmountError: Amount is not a positive integer.
        ValidationFailedError: Empty reason or unknown request type.
    """
    if student.role != AccountRole.CHILD or student.parent_id is None:
        raise UnauthorizedAccessError("Only child accounts can request money")
    ledger_service.check_amount(amount_cents)
    if request_type not in REQUEST_TYPES:
        raise ValidationFailedError(f"Unknown request type {request_type!r}; expected one of {REQUEST_TYPES}")
    if not reason.strip():
        raise ValidationFailedError("A reason is required")

    request = MoneyRequest(
        id=uuid.uuid4(),
        student_id=student.id,
        parent_id=student.parent_id,
        amount_cents=amount_cents,
        reason=reason.strip(),
        type=request_type,
        status="pending",
    )
    db.add(request)
    await db.flush()

    logger.info(
        "Student %s requested %d cents (%s) from parent %s",
        student.id, amount_cents, request_type, student.parent_id,
    )
    return request


async def _get_pending_for_parent(
    db: AsyncSession,
    parent: Account,
    request_id: uuid.UUID,
) -> MoneyRequest:
    result = await db.execute(
        select(MoneyRequest)
        .where(MoneyRequest.id == request_id)
        .with_for_update()  # No-op on SQLite, locks row on PostgreSQL
    )
    request = result.scalar_one_or_none()

    # Another family's request looks exactly like a missing one
    if request is None or request.parent_id != parent.id:
        raise RequestNotFoundError(request_id)
    if request.status != "pending":
        raise RequestNotPendingError(request_id, request.status)
    return request


async def approve(db: AsyncSession, parent: Account, request_id: uuid.UUID) -> MoneyRequest:
    """
    Approve a pending request and credit the child.

    Raises:
        RequestNotFoundError: Missing or belongs to another parent.
        RequestNotPendingError: Already approved or declined.
    """
    request = await _get_pending_for_parent(db, parent, request_id)

    # Credit first: a domain error here must leave the request pending
    category = "emergency" if request.type == "emergency" else "request"
    await ledger_service.transfer(
        db,
        parent_id=parent.id,
        student_id=request.student_id,
        amount_cents=request.amount_cents,
        description=f"Approved request: {request.reason}",
        idempotency_key=f"money-request:{request.id}",
        category=category,
    )

    request.status = "approved"
    request.responded_at = datetime.now(timezone.utc)
    await db.flush()

    logger.info("Money request %s approved by parent %s", request.id, parent.id)
    return request


async def decline(db: AsyncSession, parent: Account, request_id: uuid.UUID) -> MoneyRequest:
    """Decline a pending request. No money moves."""
    request = await _get_pending_for_parent(db, parent, request_id)

    request.status = "declined"
    request.responded_at = datetime.now(timezone.utc)
    await db.flush()

    logger.info("Money request %s declined by parent %s", request.id, parent.id)
    return request


async def list_pending(db: AsyncSession, parent: Account) -> list[MoneyRequest]:
    """A snapshot of a parent's pending requests, most recent first."""
    result = await db.execute(
        select(MoneyRequest)
        .where(MoneyRequest.parent_id == parent.id)
        .where(MoneyRequest.status == "pending")
        .order_by(MoneyRequest.created_at.desc(), MoneyRequest.id.desc())
    )
    return list(result.scalars().all())


async def list_for_student(db: AsyncSession, student: Account) -> list[MoneyRequest]:
    """All of a child's own requests, most recent first."""
    result = await db.execute(
        select(MoneyRequest)
        .where(MoneyRequest.student_id == student.id)
        .order_by(MoneyRequest.created_at.desc(), MoneyRequest.id.desc())
    )
    return list(result.scalars().all())
