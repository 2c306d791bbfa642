"""
Pydantic schemas for ledger endpoints.

All monetary amounts are in integer cents (e.g., $10.50 = 1050).
"""

import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


class TransferRequest(BaseModel):
    """Request body for POST /children/{id}/transfers."""
    amount_cents: int = Field(gt=0, description="Amount in cents (must be positive)")
    description: str | None = Field(None, max_length=255)


class FundsRequest(BaseModel):
    """Request body for POST /children/{id}/funds (emergency funds or wallet top-up)."""
    kind: Literal["emergency", "topup"]
    amount_cents: int = Field(gt=0, description="Amount in cents (must be positive)")
    description: str | None = Field(None, max_length=255)


class TransactionResponse(BaseModel):
    """Public representation of a transaction."""
    id: uuid.UUID
    student_id: uuid.UUID
    parent_id: uuid.UUID
    type: str
    category: str
    amount_cents: int
    description: str | None
    status: str
    created_at: datetime

    model_config = {"from_attributes": True}


class CreditResponse(BaseModel):
    """Response body for a successful transfer, emergency fund or top-up."""
    transaction: TransactionResponse
    new_balance_cents: int
