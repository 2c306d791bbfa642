"""
Ledger service: the only writer of a child's balance.

It handles:
  - Parent-to-child transfers
  - Emergency funds and wallet top-ups (same mechanics, different labels)
  - Balance reads, with an integrity check against the transaction history
  - Transaction history for one child or a whole family, optionally limited
    to this week, this month or everything since a given time

Atomicity:
  The balance update and the transaction row that explains it are flushed in
  the same session and committed together by the request's unit of work.
  Either both persist or neither does, so balance_cents always equals the sum
  of that child's transactions.

Concurrency:
  Account.version is checked on every balance UPDATE. If another writer
  changed the row after we read it, the flush raises StaleDataError and
  nothing is applied (the API answers 409 concurrent_update). With the same
  idempotency key the caller can simply retry.

Idempotency:
  A caller-supplied idempotency key is unique per parent. Replaying a key
  returns the original transaction and the current balance without crediting
  again. Replaying it with a different payload is rejected.

Storage failures on these writes are never hidden behind a fallback store;
they surface as errors.
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from hapo.exceptions import IdempotencyKeyReuseError, InvalidAmountError, ValidationFailedError
from hapo.models.account import Account, AccountRole
from hapo.models.transaction import Transaction
from hapo.services.child_service import get_child, get_child_for_viewer

logger = logging.getLogger(__name__)

FUND_KINDS = ("emergency", "topup")
PERIODS = ("all", "week", "month")


def check_amount(amount_cents) -> int:
    """Return ``amount_cents`` if it is a positive whole number of cents."""
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int) or amount_cents <= 0:
        raise InvalidAmountError(amount_cents)
    return amount_cents


async def _find_by_idempotency_key(
    db: AsyncSession,
    parent_id: uuid.UUID,
    idempotency_key: str,
) -> Transaction | None:
    result = await db.execute(
        select(Transaction)
        .where(Transaction.parent_id == parent_id)
        .where(Transaction.idempotency_key == idempotency_key)
    )
    return result.scalar_one_or_none()


async def _credit(
    db: AsyncSession,
    parent_id: uuid.UUID,
    student_id: uuid.UUID,
    amount_cents: int,
    txn_type: str,
    category: str,
    description: str | None,
    idempotency_key: str | None,
) -> tuple[Transaction, int]:
    check_amount(amount_cents)

    if idempotency_key:
        existing = await _find_by_idempotency_key(db, parent_id, idempotency_key)
        if existing is not None:
            if (existing.student_id, existing.amount_cents, existing.category) != (
                student_id, amount_cents, category,
            ):
                raise IdempotencyKeyReuseError(idempotency_key)
            student = await get_child(db, parent_id, student_id)
            logger.info("Replayed idempotent credit %s for student %s", existing.id, student_id)
            return existing, student.balance_cents

    student = await get_child(db, parent_id, student_id, for_update=True)

    student.balance_cents = (student.balance_cents or 0) + amount_cents
    txn = Transaction(
        id=uuid.uuid4(),
        student_id=student.id,
        parent_id=parent_id,
        type=txn_type,
        category=category,
        amount_cents=amount_cents,
        description=description,
        status="completed",
        idempotency_key=idempotency_key,
    )
    db.add(txn)
    # One flush: the versioned balance UPDATE and the INSERT go out together
    await db.flush()

    logger.info(
        "Credited %d cents (%s) to student %s; balance now %d",
        amount_cents, category, student.id, student.balance_cents,
    )
    return txn, student.balance_cents


async def transfer(
    db: AsyncSession,
    parent_id: uuid.UUID,
    student_id: uuid.UUID,
    amount_cents: int,
    description: str | None = None,
    idempotency_key: str | None = None,
    category: str = "transfer",
) -> tuple[Transaction, int]:
    """
    Credit a child's balance from their parent.

    Args:
        db: Database session.
        parent_id: The authenticated parent (must own the child).
        student_id: The child account to credit.
        amount_cents: Positive integer amount in cents.
        description: Optional memo.
        idempotency_key: Optional key making retries of this call safe.
        category: Reporting label; "request"/"emergency" when a money
                  request is approved.

    Returns:
        Tuple of (completed Transaction, new balance in cents).

    Raises:
        InvalidAmountError: Amount is not a positive integer.
        StudentNotFoundError: Child missing or owned by another parent.
        IdempotencyKeyReuseError: Key already used with a different payload.
    """
    return await _credit(
        db,
        parent_id,
        student_id,
        amount_cents,
        txn_type="transfer",
        category=category,
        description=description or "Money transfer from parent",
        idempotency_key=idempotency_key,
    )


async def apply_emergency_or_top_up(
    db: AsyncSession,
    parent_id: uuid.UUID,
    student_id: uuid.UUID,
    amount_cents: int,
    kind: str,
    description: str | None = None,
    idempotency_key: str | None = None,
) -> tuple[Transaction, int]:
    """Credit emergency funds or a wallet top-up; identical to transfer apart from the label."""
    if kind not in FUND_KINDS:
        raise ValidationFailedError(f"Unknown funding kind {kind!r}; expected one of {FUND_KINDS}")

    default_description = "Emergency funds" if kind == "emergency" else "Wallet top-up"
    return await _credit(
        db,
        parent_id,
        student_id,
        amount_cents,
        txn_type=kind,
        category=kind,
        description=description or default_description,
        idempotency_key=idempotency_key,
    )


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

async def _compute_balance_from_transactions(db: AsyncSession, student_id: uuid.UUID) -> int:
    """Sum of all completed transactions for a child."""
    result = await db.execute(
        select(func.coalesce(func.sum(Transaction.amount_cents), 0))
        .where(Transaction.student_id == student_id)
        .where(Transaction.status == "completed")
    )
    return result.scalar()


async def get_balance(db: AsyncSession, viewer: Account, student_id: uuid.UUID) -> dict:
    """
    Get a child's balance - stored and recomputed from transactions.

    ``match`` is False only if the stored balance has drifted from the ledger,
    which would indicate a data integrity problem. ``version`` lets clients
    discard stale snapshots.
    """
    student = await get_child_for_viewer(db, viewer, student_id)
    return await balance_snapshot(db, student)


async def balance_snapshot(db: AsyncSession, student: Account) -> dict:
    computed_balance_cents = await _compute_balance_from_transactions(db, student.id)
    return {
        "student_id": student.id,
        "balance_cents": student.balance_cents,
        "computed_balance_cents": computed_balance_cents,
        "match": student.balance_cents == computed_balance_cents,
        "version": student.version,
    }


def period_start(period: str, now: datetime | None = None) -> datetime | None:
    """
    Start of the named reporting period in UTC, or None for "all".

    Weeks start on Sunday; months on the first.
    """
    if period == "all":
        return None
    now = now or datetime.now(timezone.utc)
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    if period == "week":
        return midnight - timedelta(days=(midnight.weekday() + 1) % 7)
    if period == "month":
        return midnight.replace(day=1)
    raise ValidationFailedError(f"Unknown period {period!r}; expected one of {PERIODS}")


def _history_query(query, period: str, since: datetime | None, limit: int, offset: int):
    if since is not None and since.tzinfo is None:
        since = since.replace(tzinfo=timezone.utc)
    lower_bounds = [bound for bound in (period_start(period), since) if bound is not None]
    if lower_bounds:
        query = query.where(Transaction.created_at >= max(lower_bounds))
    # id breaks created_at ties so paging is stable
    return (
        query.order_by(Transaction.created_at.desc(), Transaction.id.desc())
        .limit(limit)
        .offset(offset)
    )


async def list_transactions(
    db: AsyncSession,
    viewer: Account,
    student_id: uuid.UUID,
    limit: int = 50,
    offset: int = 0,
    period: str = "all",
    since: datetime | None = None,
) -> list[Transaction]:
    """A child's transactions, most recent first, optionally this week/month or since a time."""
    student = await get_child_for_viewer(db, viewer, student_id)
    result = await db.execute(
        _history_query(
            select(Transaction).where(Transaction.student_id == student.id),
            period, since, limit, offset,
        )
    )
    return list(result.scalars().all())


async def list_family_transactions(
    db: AsyncSession,
    parent: Account,
    limit: int = 50,
    offset: int = 0,
    period: str = "all",
    since: datetime | None = None,
) -> list[Transaction]:
    """Every transaction a parent made across all their children, most recent first."""
    if parent.role != AccountRole.PARENT:
        return []
    result = await db.execute(
        _history_query(
            select(Transaction).where(Transaction.parent_id == parent.id),
            period, since, limit, offset,
        )
    )
    return list(result.scalars().all())
