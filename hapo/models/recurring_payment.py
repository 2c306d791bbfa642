"""
RecurringPayment model: a standing instruction a parent keeps for one child.

Parents record school fees, transport, lunch money or a custom payment with
an amount, a frequency and a start date, and can pause, resume or delete it.

Key fields:
  - type: "school_fees", "transport", "lunch_money" or "custom"
  - frequency: "daily", "weekly" or "monthly"
  - status: "active" or "inactive"; toggled by the parent
  - description: defaults to the label of the payment type
"""

import uuid
from datetime import date, datetime, timezone

from sqlalchemy import String, Integer, Date, DateTime, ForeignKey, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column

from hapo.database import Base


class RecurringPayment(Base):
    __tablename__ = "recurring_payments"

    __table_args__ = (
        CheckConstraint("amount_cents > 0", name="ck_recurring_payments_positive_amount"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )

    parent_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("accounts.id"),
        nullable=False,
        index=True,
    )

    student_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("accounts.id"),
        nullable=False,
        index=True,
    )

    type: Mapped[str] = mapped_column(String(20), nullable=False)

    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)

    frequency: Mapped[str] = mapped_column(String(10), nullable=False)

    start_date: Mapped[date] = mapped_column(Date, nullable=False)

    description: Mapped[str] = mapped_column(String(255), nullable=False)

    status: Mapped[str] = mapped_column(String(10), nullable=False, default="active")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
