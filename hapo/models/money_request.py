"""
MoneyRequest model: a child's ask for funds, resolved by the parent.

Lifecycle:
    pending ──approve──> approved   (credits the child through the ledger)
       └─────decline──> declined   (no side effect)

Both outcomes are terminal, and the requester cannot cancel. ``version`` is an
optimistic-concurrency counter: when an approve and a decline race, only one
of the two UPDATEs matches the version it read, and the other fails instead
of overwriting the first.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import String, Integer, DateTime, ForeignKey, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column

from hapo.database import Base


class MoneyRequest(Base):
    __tablename__ = "money_requests"

    __table_args__ = (
        CheckConstraint("amount_cents > 0", name="ck_money_requests_positive_amount"),
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

    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)

    reason: Mapped[str] = mapped_column(String(255), nullable=False)

    # "money" or "emergency"
    type: Mapped[str] = mapped_column(String(20), nullable=False, default="money")

    # "pending", "approved" or "declined"
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
    )
    responded_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    __mapper_args__ = {"version_id_col": version}
