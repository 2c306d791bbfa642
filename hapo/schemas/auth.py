"""
Pydantic schemas for the authentication endpoints.

These define the request/response contracts for sign-up, verification,
sign-in, MFA and session management. Pydantic validates incoming data before
our code runs; a missing field or malformed email returns 422.
"""

import uuid
from typing import Literal

from pydantic import BaseModel, EmailStr, Field


class SignupRequest(BaseModel):
    """Request body for POST /auth/signup."""
    email: EmailStr
    password: str = Field(min_length=8)
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    phone: str | None = None


class SignupResponse(BaseModel):
    status: Literal["pending_email_verification"] = "pending_email_verification"
    account_id: uuid.UUID
    email: str
    verification_expires_at: int


class VerifyEmailRequest(BaseModel):
    email: EmailStr
    code: str = Field(min_length=6, max_length=6)


class ResendEmailRequest(BaseModel):
    email: EmailStr


class LoginRequest(BaseModel):
    """Request body for POST /auth/login - an email (parents) or username (children)."""
    identifier: str = Field(min_length=1)
    password: str


class VerifyMfaRequest(BaseModel):
    challenge_id: uuid.UUID
    code: str = Field(min_length=6, max_length=6)


class ResendMfaRequest(BaseModel):
    challenge_id: uuid.UUID


class RefreshRequest(BaseModel):
    refresh_token: str


class ValidateTokenRequest(BaseModel):
    access_token: str
    refresh_token: str | None = None


class SessionResponse(BaseModel):
    """Returned whenever a session is issued or its access token refreshed."""
    status: Literal["authenticated"] = "authenticated"
    account_id: uuid.UUID
    role: str
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    access_expires_at: int
    refresh_expires_at: int


class MfaChallengeResponse(BaseModel):
    status: Literal["requires_mfa"] = "requires_mfa"
    challenge_id: uuid.UUID
    challenge_destination: str
    expires_at: int


class CodeSentResponse(BaseModel):
    status: Literal["ok"] = "ok"
    expires_at: int


class OkResponse(BaseModel):
    status: Literal["ok"] = "ok"


class TokenValidationResponse(BaseModel):
    valid: bool
    refreshed: bool = False
    access_token: str | None = None
