"""
Child account service: parents create and manage their children's accounts.

Child accounts:
  - are owned by exactly one parent (parent_id)
  - sign in with a username and password; there is no email to verify, so
    email_verified is set at creation and MFA is off
  - start with a zero balance and default weekly/daily spending limits

Ownership enforcement:
  Every lookup takes the authenticated parent and filters on parent_id. A
  child belonging to another parent is indistinguishable from one that does
  not exist (StudentNotFoundError), so ids can't be probed.

Spending limits are stored and reported to the dashboard; the ledger does not
enforce them when crediting a child.
"""

import logging
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hapo.config import settings
from hapo.exceptions import (
    DuplicateUsernameError,
    StudentNotFoundError,
    UnauthorizedAccessError,
    ValidationFailedError,
)
from hapo.models.account import Account, AccountRole
from hapo.security import hash_password
from hapo.services.auth_service import check_name, check_password

logger = logging.getLogger(__name__)


def _check_limits(weekly_limit_cents: int | None, daily_limit_cents: int | None) -> None:
    for label, value in (("weekly", weekly_limit_cents), ("daily", daily_limit_cents)):
        if value is not None and value < 0:
            raise ValidationFailedError(f"The {label} limit cannot be negative")


async def create_child(
    db: AsyncSession,
    parent: Account,
    first_name: str,
    last_name: str,
    username: str,
    password: str,
    weekly_limit_cents: int | None = None,
    daily_limit_cents: int | None = None,
) -> Account:
    """
    Create a child account under ``parent``.

    Raises:
        ValidationFailedError: Empty name/username, short password, or a
            negative limit.
        DuplicateUsernameError: If the username is already taken.
    """
    check_name(first_name, last_name)
    check_password(password)
    _check_limits(weekly_limit_cents, daily_limit_cents)

    username = username.strip()
    if not username:
        raise ValidationFailedError("Username is required")

    existing = await db.execute(select(Account).where(Account.username == username))
    if existing.scalar_one_or_none() is not None:
        raise DuplicateUsernameError(username)

    child = Account(
        id=uuid.uuid4(),
        role=AccountRole.CHILD,
        first_name=first_name.strip(),
        last_name=last_name.strip(),
        username=username,
        hashed_password=hash_password(password),
        email_verified=True,
        mfa_enabled=False,
        parent_id=parent.id,
        balance_cents=0,
        weekly_limit_cents=(
            settings.DEFAULT_WEEKLY_LIMIT_CENTS if weekly_limit_cents is None else weekly_limit_cents
        ),
        daily_limit_cents=(
            settings.DEFAULT_DAILY_LIMIT_CENTS if daily_limit_cents is None else daily_limit_cents
        ),
    )
    db.add(child)
    await db.flush()

    logger.info("Parent %s created child account %s", parent.id, child.id)
    return child


async def list_children(db: AsyncSession, parent: Account) -> list[Account]:
    result = await db.execute(
        select(Account)
        .where(Account.parent_id == parent.id)
        .where(Account.role == AccountRole.CHILD)
        .order_by(Account.created_at, Account.id)
    )
    return list(result.scalars().all())


async def get_child(
    db: AsyncSession,
    parent_id: uuid.UUID,
    child_id: uuid.UUID,
    for_update: bool = False,
) -> Account:
    """
    Get one of a parent's children.

    Raises:
        StudentNotFoundError: Missing, not a child, or owned by another parent.
    """
    query = select(Account).where(Account.id == child_id)
    if for_update:
        query = query.with_for_update()  # No-op on SQLite, locks row on PostgreSQL
    result = await db.execute(query)
    child = result.scalar_one_or_none()

    if child is None or child.role != AccountRole.CHILD or child.parent_id != parent_id:
        raise StudentNotFoundError(child_id)
    return child


async def get_child_for_viewer(
    db: AsyncSession,
    viewer: Account,
    child_id: uuid.UUID,
) -> Account:
    """
    Resolve a child account that ``viewer`` may read: their own account if
    they are a child, or one of their children if they are a parent.
    """
    if viewer.role == AccountRole.CHILD:
        if viewer.id != child_id:
            raise UnauthorizedAccessError("Children can only view their own account")
        return viewer
    return await get_child(db, viewer.id, child_id)


async def update_spending_limits(
    db: AsyncSession,
    parent: Account,
    child_id: uuid.UUID,
    weekly_limit_cents: int | None = None,
    daily_limit_cents: int | None = None,
) -> Account:
    """Update either or both spending limits; omitted limits are unchanged."""
    _check_limits(weekly_limit_cents, daily_limit_cents)
    child = await get_child(db, parent.id, child_id)

    if weekly_limit_cents is not None:
        child.weekly_limit_cents = weekly_limit_cents
    if daily_limit_cents is not None:
        child.daily_limit_cents = daily_limit_cents
    await db.flush()

    logger.info("Spending limits updated for child %s", child.id)
    return child
