"""
Authentication router: sign-up, verification, sign-in, MFA and sessions.

Endpoints:
  POST /auth/signup               - Register a parent; emails a verification code (202)
  POST /auth/verify-email         - Confirm the email with the code
  POST /auth/verify-email/resend  - Issue a fresh email code
  POST /auth/login                - Sign in; returns a session or an MFA challenge
  POST /auth/mfa/verify           - Complete sign-in with the MFA code
  POST /auth/mfa/resend           - Issue a fresh MFA code for a challenge
  POST /auth/refresh              - New access token from a refresh token
  POST /auth/validate             - Check a token, refreshing it if expired
  POST /auth/logout               - Revoke the current session (204)
  GET  /auth/me                   - The signed-in account

Security audit notes:
  - Plaintext passwords and codes exist only in memory during a request;
    passwords are hashed and codes encrypted before any database write.
  - Tokens appear only in response bodies, which uvicorn does not log.
  - In the default "log" delivery mode the code itself is written to the
    application log; that is the demo stand-in for an email inbox.
"""

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from hapo.database import get_db
from hapo.delivery import VerificationSender, get_sender
from hapo.dependencies import get_current_account, get_current_session
from hapo.models.account import Account
from hapo.models.session import Session
from hapo.schemas.account import AccountResponse
from hapo.schemas.auth import (
    CodeSentResponse,
    LoginRequest,
    MfaChallengeResponse,
    OkResponse,
    RefreshRequest,
    ResendEmailRequest,
    ResendMfaRequest,
    SessionResponse,
    SignupRequest,
    SignupResponse,
    TokenValidationResponse,
    ValidateTokenRequest,
    VerifyEmailRequest,
    VerifyMfaRequest,
)
from hapo.services import auth_service

router = APIRouter()


def _session_response(issued: auth_service.IssuedSession) -> SessionResponse:
    return SessionResponse(
        account_id=issued.account.id,
        role=issued.account.role.value,
        access_token=issued.access_token,
        refresh_token=issued.refresh_token,
        access_expires_at=issued.access_expires_at,
        refresh_expires_at=issued.refresh_expires_at,
    )


@router.post(
    "/signup",
    response_model=SignupResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Register a new parent account",
)
async def signup(
    request: SignupRequest,
    db: AsyncSession = Depends(get_db),
    sender: VerificationSender = Depends(get_sender),
):
    """
    Register a parent and send a 6-digit email verification code.

    No session is returned: the email must be verified before signing in.

    - **email**: Must be valid and not already registered
    - **password**: Minimum 8 characters
    - **first_name** / **last_name**: Required, 1-100 characters
    - **phone**: Optional
    """
    account, pending = await auth_service.sign_up(
        db=db,
        sender=sender,
        email=request.email,
        password=request.password,
        first_name=request.first_name,
        last_name=request.last_name,
        phone=request.phone,
    )
    return SignupResponse(
        account_id=account.id,
        email=account.email,
        verification_expires_at=pending.expires_at,
    )


@router.post("/verify-email", response_model=OkResponse, summary="Confirm an email address")
async def verify_email(request: VerifyEmailRequest, db: AsyncSession = Depends(get_db)):
    await auth_service.verify_email(db, request.email, request.code)
    return OkResponse()


@router.post(
    "/verify-email/resend",
    response_model=CodeSentResponse,
    summary="Resend the email verification code",
)
async def resend_email_verification(
    request: ResendEmailRequest,
    db: AsyncSession = Depends(get_db),
    sender: VerificationSender = Depends(get_sender),
):
    pending = await auth_service.resend_email_verification(db, sender, request.email)
    return CodeSentResponse(expires_at=pending.expires_at)


@router.post(
    "/login",
    response_model=SessionResponse | MfaChallengeResponse,
    summary="Sign in with email or username",
)
async def login(
    request: LoginRequest,
    db: AsyncSession = Depends(get_db),
    sender: VerificationSender = Depends(get_sender),
):
    """
    Authenticate with an email (parents) or username (children) and password.

    Accounts with MFA enabled get ``status: "requires_mfa"`` and a
    ``challenge_id`` to pass to /auth/mfa/verify. Others are signed in at once.
    """
    result = await auth_service.sign_in(db, sender, request.identifier, request.password)
    if isinstance(result, auth_service.MfaChallenge):
        return MfaChallengeResponse(
            challenge_id=result.challenge_id,
            challenge_destination=result.destination,
            expires_at=result.expires_at,
        )
    return _session_response(result)


@router.post("/mfa/verify", response_model=SessionResponse, summary="Complete sign-in with MFA")
async def verify_mfa(request: VerifyMfaRequest, db: AsyncSession = Depends(get_db)):
    issued = await auth_service.verify_mfa(db, request.challenge_id, request.code)
    return _session_response(issued)


@router.post("/mfa/resend", response_model=CodeSentResponse, summary="Resend the MFA code")
async def resend_mfa(
    request: ResendMfaRequest,
    db: AsyncSession = Depends(get_db),
    sender: VerificationSender = Depends(get_sender),
):
    pending = await auth_service.resend_mfa(db, sender, request.challenge_id)
    return CodeSentResponse(expires_at=pending.expires_at)


@router.post("/refresh", response_model=SessionResponse, summary="Refresh an access token")
async def refresh(request: RefreshRequest, db: AsyncSession = Depends(get_db)):
    issued = await auth_service.refresh_session(db, request.refresh_token)
    return _session_response(issued)


@router.post(
    "/validate",
    response_model=TokenValidationResponse,
    summary="Validate a token, refreshing it if it has expired",
)
async def validate(request: ValidateTokenRequest, db: AsyncSession = Depends(get_db)):
    result = await auth_service.validate_token(db, request.access_token, request.refresh_token)
    return TokenValidationResponse(
        valid=result.valid,
        refreshed=result.refreshed,
        access_token=result.access_token,
    )


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT, summary="Sign out")
async def logout(
    current: tuple[Session, Account] = Depends(get_current_session),
    db: AsyncSession = Depends(get_db),
):
    session, _ = current
    await auth_service.logout(db, session.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/me", response_model=AccountResponse, summary="Get the signed-in account")
async def me(account: Account = Depends(get_current_account)):
    return account
