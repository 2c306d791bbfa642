"""
Transaction model: one row per change to a child's balance.

Every credit a parent makes (transfer, emergency fund, wallet top-up, or an
approved money request) appends exactly one Transaction in the same unit of
work as the balance update.

Key fields:
  - type: "transfer", "emergency" or "topup"
  - category: label used for reporting ("transfer", "request", "emergency", "topup")
  - amount_cents: signed integer cents; credits to the child are positive
  - status: always "completed" - there is no pending/failed state machine
  - idempotency_key: optional caller-supplied key, unique per parent. A replay
    of the same key returns the original transaction instead of crediting twice.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import String, Integer, DateTime, ForeignKey, CheckConstraint, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from hapo.database import Base


class Transaction(Base):
    __tablename__ = "transactions"

    __table_args__ = (
        CheckConstraint("amount_cents != 0", name="ck_transactions_nonzero_amount"),
        UniqueConstraint("parent_id", "idempotency_key", name="uq_transactions_parent_idempotency_key"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )

    student_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("accounts.id"),
        nullable=False,
        index=True,
    )

    parent_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("accounts.id"),
        nullable=False,
        index=True,
    )

    type: Mapped[str] = mapped_column(String(20), nullable=False)

    category: Mapped[str] = mapped_column(String(30), nullable=False, default="other")

    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)

    description: Mapped[str | None] = mapped_column(String(255), nullable=True)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="completed")

    idempotency_key: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Indexed for most-recent-first listings
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
    )
