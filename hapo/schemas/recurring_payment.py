"""
Pydantic schemas for recurring payment endpoints.
"""

import uuid
from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, Field


class RecurringPaymentCreate(BaseModel):
    """Request body for POST /recurring-payments."""
    student_id: uuid.UUID
    type: Literal["school_fees", "transport", "lunch_money", "custom"]
    amount_cents: int = Field(gt=0, description="Amount in cents (must be positive)")
    frequency: Literal["daily", "weekly", "monthly"]
    start_date: date
    description: str | None = Field(None, max_length=255)


class RecurringPaymentResponse(BaseModel):
    id: uuid.UUID
    parent_id: uuid.UUID
    student_id: uuid.UUID
    type: str
    amount_cents: int
    frequency: str
    start_date: date
    description: str
    status: str
    created_at: datetime

    model_config = {"from_attributes": True}
