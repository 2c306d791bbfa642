"""
Pydantic schemas for money request endpoints.
"""

import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


class MoneyRequestCreate(BaseModel):
    """Request body for POST /requests (child only)."""
    amount_cents: int = Field(gt=0, description="Amount in cents (must be positive)")
    reason: str = Field(min_length=1, max_length=255)
    type: Literal["money", "emergency"] = "money"


class MoneyRequestResponse(BaseModel):
    id: uuid.UUID
    student_id: uuid.UUID
    parent_id: uuid.UUID
    amount_cents: int
    reason: str
    type: str
    status: str
    created_at: datetime
    responded_at: datetime | None = None

    model_config = {"from_attributes": True}
