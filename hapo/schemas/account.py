"""
Pydantic schemas for account and child-account endpoints.

Notice that hashed_password is NEVER included in any response schema.
All monetary amounts are in integer cents (e.g., $10.50 = 1050).
"""

import uuid
from datetime import datetime

from pydantic import BaseModel, Field


class AccountResponse(BaseModel):
    """Public representation of a parent or child account."""
    id: uuid.UUID
    role: str
    first_name: str
    last_name: str
    email: str | None
    username: str | None
    email_verified: bool
    mfa_enabled: bool
    parent_id: uuid.UUID | None
    balance_cents: int | None
    weekly_limit_cents: int | None
    daily_limit_cents: int | None
    created_at: datetime

    model_config = {"from_attributes": True}


class ChildCreateRequest(BaseModel):
    """Request body for POST /children."""
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    username: str = Field(min_length=1, max_length=100)
    password: str = Field(min_length=8)
    weekly_limit_cents: int | None = Field(None, ge=0)
    daily_limit_cents: int | None = Field(None, ge=0)


class SpendingLimitsRequest(BaseModel):
    """Request body for PATCH /children/{id}/limits. Omitted limits are unchanged."""
    weekly_limit_cents: int | None = Field(None, ge=0)
    daily_limit_cents: int | None = Field(None, ge=0)


class BalanceResponse(BaseModel):
    student_id: uuid.UUID
    balance_cents: int
    computed_balance_cents: int
    match: bool
    version: int
