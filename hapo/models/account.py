"""
Account model: a parent or child identity record.

Parents and children share one table, distinguished by ``role``:

  - PARENT: signs up with an email, verifies it, and signs in with MFA.
  - CHILD: created by a parent, signs in with a username, holds a balance.

Child-only columns (parent_id, balance_cents, weekly/daily limits) are NULL
for parents. Every child row references an existing parent through the
``parent_id`` foreign key.

Balance management:
  ``balance_cents`` is stored as integer cents ($25.00 = 2500), like every
  monetary amount in the system. Only the ledger service writes it, always in
  the same unit of work as the transaction row that explains the change.

Optimistic concurrency:
  ``version`` is SQLAlchemy's version_id_col. Every UPDATE carries
  ``WHERE version = <value read>``; if another writer got there first, the
  flush raises StaleDataError instead of silently overwriting the balance.

The password is stored as an Argon2id hash: never in plaintext.
"""

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import String, Boolean, Integer, DateTime, Enum, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from hapo.database import Base


class AccountRole(str, enum.Enum):
    """Role an account holds within a family."""
    PARENT = "parent"
    CHILD = "child"


class Account(Base):
    __tablename__ = "accounts"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )

    role: Mapped[AccountRole] = mapped_column(
        Enum(AccountRole),
        nullable=False,
    )

    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)

    # Parents log in with email, children with username
    email: Mapped[str | None] = mapped_column(
        String(255),
        unique=True,
        nullable=True,
        index=True,
    )
    username: Mapped[str | None] = mapped_column(
        String(100),
        unique=True,
        nullable=True,
        index=True,
    )
    phone: Mapped[str | None] = mapped_column(String(30), nullable=True)

    hashed_password: Mapped[str] = mapped_column(String(255), nullable=False)

    email_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    mfa_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # --- Child-only ---
    parent_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("accounts.id"),
        nullable=True,
        index=True,
    )
    balance_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    weekly_limit_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    daily_limit_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    @property
    def identifier(self) -> str:
        """The login identifier: email for parents, username for children."""
        return self.email if self.role == AccountRole.PARENT else self.username
