"""
Authentication service: sign-up, verification, sign-in, MFA and sessions.

This module contains the core auth logic, separated from HTTP concerns. The
router calls these functions and translates results and domain errors into
HTTP responses.

Account lifecycle:
    Registered (email unverified)
        │ verify_email
        ▼
    EmailVerified ──sign_in──> AwaitingMFA ──verify_mfa──> Authenticated
        │                                                      ▲
        └──────────── sign_in (MFA disabled, e.g. children) ───┘

Pending codes:
  Email and MFA codes live in pending_verifications, one row per account and
  purpose. A code is accepted iff it matches and now <= expires_at. An expired
  row is deleted on first access. A mismatch leaves the row in place so the
  user can try again, and resending replaces the code and its expiry.

Sessions:
  complete_login() inserts a server-side session row and returns a signed
  access token plus an opaque refresh token. A token is only honoured while
  its session is live, so logout revokes it at once.

Security notes:
  - Login returns the same error for "wrong password" and "unknown
    identifier" to prevent account enumeration
  - Plaintext passwords and tokens are never logged
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

from email_validator import EmailNotValidError, validate_email
from jose import JWTError
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from hapo.config import settings
from hapo.delivery import VerificationSender, send_code
from hapo.exceptions import (
    CodeExpiredError,
    CodeMismatchError,
    DuplicateEmailError,
    EmailNotVerifiedError,
    InvalidCredentialsError,
    NoPendingChallengeError,
    NoPendingVerificationError,
    SessionExpiredError,
    ValidationFailedError,
)
from hapo.models.account import Account, AccountRole
from hapo.models.session import Session
from hapo.models.verification import PendingVerification, VerificationPurpose
from hapo.security import (
    codes_match,
    decode_access_token,
    decode_access_token_ignoring_expiry,
    digest_refresh_token,
    encrypt_value,
    generate_code,
    hash_password,
    is_expired,
    issue_access_token,
    issue_refresh_token,
    verify_password,
)

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8


@dataclass(frozen=True)
class IssuedSession:
    """An authenticated session: the token pair and their absolute expiries."""
    session_id: uuid.UUID
    account: Account
    access_token: str
    refresh_token: str
    access_expires_at: int
    refresh_expires_at: int


@dataclass(frozen=True)
class MfaChallenge:
    """Returned by sign_in when a second factor is required."""
    challenge_id: uuid.UUID
    destination: str
    expires_at: int


@dataclass(frozen=True)
class TokenValidation:
    valid: bool
    access_token: str | None = None
    refreshed: bool = False


def _now_ts() -> int:
    return int(datetime.now(timezone.utc).timestamp())


def normalize_email(email: str) -> str:
    """Validate and normalize an email address, raising ValidationFailedError."""
    try:
        return validate_email(email, check_deliverability=False).normalized.lower()
    except EmailNotValidError as exc:
        raise ValidationFailedError(f"Invalid email address: {exc}") from exc


def check_password(password: str) -> None:
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationFailedError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
        )


def check_name(first_name: str, last_name: str) -> None:
    if not first_name.strip() or not last_name.strip():
        raise ValidationFailedError("First and last name are required")


# ---------------------------------------------------------------------------
# Pending code storage
# ---------------------------------------------------------------------------

async def _get_pending(
    db: AsyncSession,
    account_id: uuid.UUID,
    purpose: VerificationPurpose,
) -> PendingVerification | None:
    result = await db.execute(
        select(PendingVerification)
        .where(PendingVerification.account_id == account_id)
        .where(PendingVerification.purpose == purpose)
    )
    return result.scalar_one_or_none()


async def _issue_code(
    db: AsyncSession,
    account: Account,
    purpose: VerificationPurpose,
    destination: str,
    expire_minutes: int,
) -> tuple[PendingVerification, str]:
    """
    Store a fresh code for (account, purpose), replacing any earlier one.

    The row keeps its id across reissues, so an MFA challenge id handed to
    the client stays valid after a resend.
    """
    code = generate_code()
    expires_at = _now_ts() + expire_minutes * 60

    pending = await _get_pending(db, account.id, purpose)
    if pending is None:
        pending = PendingVerification(
            id=uuid.uuid4(),
            account_id=account.id,
            purpose=purpose,
            destination=destination,
            encrypted_code=encrypt_value(code),
            expires_at=expires_at,
        )
        db.add(pending)
    else:
        pending.destination = destination
        pending.encrypted_code = encrypt_value(code)
        pending.expires_at = expires_at

    await db.flush()
    return pending, code


async def _consume_code(
    db: AsyncSession,
    pending: PendingVerification,
    code: str,
    purpose_label: str,
) -> None:
    """
    Check ``code`` against a pending record.

    Deletes the record when it has expired (raising CodeExpiredError) or when
    the code matches. A mismatch raises CodeMismatchError and keeps the record.
    """
    if _now_ts() > pending.expires_at:
        await db.delete(pending)
        await db.flush()
        raise CodeExpiredError(purpose_label)

    if not codes_match(code, pending.encrypted_code):
        raise CodeMismatchError()

    await db.delete(pending)
    await db.flush()


# ---------------------------------------------------------------------------
# Sign-up and email verification
# ---------------------------------------------------------------------------

async def get_account_by_email(db: AsyncSession, email: str) -> Account | None:
    result = await db.execute(select(Account).where(Account.email == email))
    return result.scalar_one_or_none()


async def sign_up(
    db: AsyncSession,
    sender: VerificationSender,
    email: str,
    password: str,
    first_name: str,
    last_name: str,
    phone: str | None = None,
) -> tuple[Account, PendingVerification]:
    """
    Register a new parent account and send an email verification code.

    The account starts with email_verified=False and mfa_enabled=True. No
    session is created: the user must verify their email, then sign in.

    Returns:
        Tuple of (Account, PendingVerification for the email code).

    Raises:
        ValidationFailedError: Malformed email, short password or empty name.
        DuplicateEmailError: If the email is already registered.
        DeliveryFailedError: If the code could not be delivered after retries.
    """
    email = normalize_email(email)
    check_password(password)
    check_name(first_name, last_name)

    if await get_account_by_email(db, email) is not None:
        raise DuplicateEmailError(email)

    account = Account(
        id=uuid.uuid4(),
        role=AccountRole.PARENT,
        first_name=first_name.strip(),
        last_name=last_name.strip(),
        email=email,
        phone=phone,
        hashed_password=hash_password(password),
        email_verified=False,
        mfa_enabled=True,
    )
    db.add(account)
    await db.flush()

    pending, code = await _issue_code(
        db, account, VerificationPurpose.EMAIL, email, settings.EMAIL_CODE_EXPIRE_MINUTES,
    )
    await send_code(sender, email, code)

    logger.info("Registered parent account %s; email verification pending", account.id)
    return account, pending


async def verify_email(db: AsyncSession, email: str, code: str) -> Account:
    """
    Confirm an email address with the code that was sent to it.

    Raises:
        NoPendingVerificationError: No outstanding code for this email.
        CodeExpiredError: The code expired (the pending record is removed).
        CodeMismatchError: Wrong code (the pending record is kept).
    """
    account = await get_account_by_email(db, email.strip().lower())
    if account is None:
        raise NoPendingVerificationError()

    pending = await _get_pending(db, account.id, VerificationPurpose.EMAIL)
    if pending is None:
        raise NoPendingVerificationError()

    await _consume_code(db, pending, code, "Verification")

    account.email_verified = True
    await db.flush()

    logger.info("Email verified for account %s", account.id)
    return account


async def resend_email_verification(
    db: AsyncSession,
    sender: VerificationSender,
    email: str,
) -> PendingVerification:
    """
    Issue a new email code with a fresh expiry; the previous code stops working.

    Raises:
        NoPendingVerificationError: If there is no outstanding verification.
    """
    account = await get_account_by_email(db, email.strip().lower())
    if account is None or await _get_pending(db, account.id, VerificationPurpose.EMAIL) is None:
        raise NoPendingVerificationError()

    pending, code = await _issue_code(
        db, account, VerificationPurpose.EMAIL, account.email, settings.EMAIL_CODE_EXPIRE_MINUTES,
    )
    await send_code(sender, account.email, code)
    return pending


# ---------------------------------------------------------------------------
# Sign-in and MFA
# ---------------------------------------------------------------------------

async def _find_by_identifier(db: AsyncSession, identifier: str) -> Account | None:
    identifier = identifier.strip()
    if "@" in identifier:
        account = await get_account_by_email(db, identifier.lower())
        if account is not None:
            return account
    result = await db.execute(select(Account).where(Account.username == identifier))
    return result.scalar_one_or_none()


async def sign_in(
    db: AsyncSession,
    sender: VerificationSender,
    identifier: str,
    password: str,
) -> IssuedSession | MfaChallenge:
    """
    Authenticate with an email (parents) or username (children) and password.

    Returns:
        MfaChallenge if the account has MFA enabled (never a session in that
        case), otherwise an IssuedSession.

    Raises:
        InvalidCredentialsError: Unknown identifier, wrong password, or
            deactivated account (same error for all three).
        EmailNotVerifiedError: Correct password but unverified email.
    """
    account = await _find_by_identifier(db, identifier)

    if account is None or not verify_password(password, account.hashed_password):
        logger.info("Failed sign-in attempt")
        raise InvalidCredentialsError()

    if not account.is_active:
        raise InvalidCredentialsError()

    if not account.email_verified:
        raise EmailNotVerifiedError()

    if account.mfa_enabled:
        destination = account.email or account.identifier
        pending, code = await _issue_code(
            db, account, VerificationPurpose.MFA, destination, settings.MFA_CODE_EXPIRE_MINUTES,
        )
        await send_code(sender, destination, code)
        logger.info("MFA challenge %s issued for account %s", pending.id, account.id)
        return MfaChallenge(
            challenge_id=pending.id,
            destination=destination,
            expires_at=pending.expires_at,
        )

    return await complete_login(db, account)


async def _get_challenge(db: AsyncSession, challenge_id: uuid.UUID) -> PendingVerification:
    pending = await db.get(PendingVerification, challenge_id)
    if pending is None or pending.purpose != VerificationPurpose.MFA:
        raise NoPendingChallengeError()
    return pending


async def verify_mfa(db: AsyncSession, challenge_id: uuid.UUID, code: str) -> IssuedSession:
    """
    Complete sign-in with the MFA code.

    Raises:
        NoPendingChallengeError: Unknown or already-consumed challenge.
        CodeExpiredError: The challenge expired (and is removed).
        CodeMismatchError: Wrong code (the challenge is kept).
    """
    pending = await _get_challenge(db, challenge_id)
    account_id = pending.account_id

    await _consume_code(db, pending, code, "MFA")

    account = await db.get(Account, account_id)
    if account is None or not account.is_active:
        raise InvalidCredentialsError()
    return await complete_login(db, account)


async def resend_mfa(
    db: AsyncSession,
    sender: VerificationSender,
    challenge_id: uuid.UUID,
) -> PendingVerification:
    """Issue a new MFA code for an existing challenge, keeping its destination."""
    pending = await _get_challenge(db, challenge_id)
    account = await db.get(Account, pending.account_id)
    if account is None:
        raise NoPendingChallengeError()

    pending, code = await _issue_code(
        db, account, VerificationPurpose.MFA, pending.destination, settings.MFA_CODE_EXPIRE_MINUTES,
    )
    await send_code(sender, pending.destination, code)
    return pending


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------

async def complete_login(
    db: AsyncSession,
    account: Account,
    now: datetime | None = None,
) -> IssuedSession:
    """Create a server-side session and issue its access/refresh token pair."""
    issued_at = now or datetime.now(timezone.utc)
    issued_ts = int(issued_at.timestamp())
    refresh_token = issue_refresh_token()

    session = Session(
        id=uuid.uuid4(),
        account_id=account.id,
        refresh_token_digest=digest_refresh_token(refresh_token),
        access_expires_at=issued_ts + settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        refresh_expires_at=issued_ts + settings.REFRESH_TOKEN_EXPIRE_DAYS * 86400,
    )
    db.add(session)
    await db.flush()

    logger.info("Session %s opened for account %s", session.id, account.id)
    return IssuedSession(
        session_id=session.id,
        account=account,
        access_token=issue_access_token(account, session.id, issued_at),
        refresh_token=refresh_token,
        access_expires_at=session.access_expires_at,
        refresh_expires_at=session.refresh_expires_at,
    )


async def get_session_for_token(db: AsyncSession, access_token: str) -> tuple[Session, Account]:
    """
    Resolve an access token to its live session and account.

    Raises:
        SessionExpiredError: Token invalid or expired, session revoked or
            missing, or the account no longer exists.
    """
    try:
        payload = decode_access_token(access_token)
        session_id = uuid.UUID(payload["sid"])
        account_id = uuid.UUID(payload["sub"])
    except (JWTError, KeyError, ValueError):
        raise SessionExpiredError("Could not validate credentials")

    session = await db.get(Session, session_id)
    if session is None or session.is_revoked or session.account_id != account_id:
        raise SessionExpiredError()

    account = await db.get(Account, account_id)
    if account is None or not account.is_active:
        raise SessionExpiredError()

    return session, account


async def is_authenticated(db: AsyncSession, access_token: str | None) -> bool:
    """True iff the token is live, its session is open, and its account exists."""
    if not access_token:
        return False
    try:
        await get_session_for_token(db, access_token)
    except SessionExpiredError:
        return False
    return True


async def _find_session_by_refresh_token(db: AsyncSession, refresh_token: str) -> Session | None:
    result = await db.execute(
        select(Session).where(Session.refresh_token_digest == digest_refresh_token(refresh_token))
    )
    return result.scalar_one_or_none()


async def refresh_session(db: AsyncSession, refresh_token: str) -> IssuedSession:
    """
    Issue a new access token for the session a refresh token belongs to.

    Raises:
        SessionExpiredError: Unknown, revoked or expired refresh token.
    """
    session = await _find_session_by_refresh_token(db, refresh_token)
    if session is None or session.is_revoked or _now_ts() >= session.refresh_expires_at:
        raise SessionExpiredError()

    account = await db.get(Account, session.account_id)
    if account is None or not account.is_active:
        raise SessionExpiredError()

    issued_at = datetime.now(timezone.utc)
    session.access_expires_at = int(issued_at.timestamp()) + settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60
    await db.flush()

    return IssuedSession(
        session_id=session.id,
        account=account,
        access_token=issue_access_token(account, session.id, issued_at),
        refresh_token=refresh_token,
        access_expires_at=session.access_expires_at,
        refresh_expires_at=session.refresh_expires_at,
    )


async def logout(db: AsyncSession, session_id: uuid.UUID | None) -> None:
    """
    Revoke a session and drop any pending MFA challenge for its account.

    Idempotent: logging out of an unknown or already revoked session is a no-op.
    """
    if session_id is None:
        return
    session = await db.get(Session, session_id)
    if session is None:
        return

    if not session.is_revoked:
        session.revoked_at = _now_ts()
        logger.info("Session %s revoked", session.id)

    await db.execute(
        delete(PendingVerification)
        .where(PendingVerification.account_id == session.account_id)
        .where(PendingVerification.purpose == VerificationPurpose.MFA)
    )
    await db.flush()


async def validate_token(
    db: AsyncSession,
    access_token: str,
    refresh_token: str | None = None,
) -> TokenValidation:
    """
    Check an access token and silently refresh it when it has expired.

    - Live token with an open session: valid, returned unchanged.
    - Expired token: refreshed through ``refresh_token`` if possible.
    - Undecodable token, or a refresh that fails: the session is logged out
      (when it can be identified) and the result is invalid.
    """
    try:
        expired = is_expired(access_token)
        claimed_sid = decode_access_token_ignoring_expiry(access_token).get("sid")
    except JWTError:
        if refresh_token:
            session = await _find_session_by_refresh_token(db, refresh_token)
            await logout(db, session.id if session else None)
        return TokenValidation(valid=False)

    if not expired:
        if await is_authenticated(db, access_token):
            return TokenValidation(valid=True, access_token=access_token)
        return TokenValidation(valid=False)

    if not refresh_token:
        return TokenValidation(valid=False)

    session = await _find_session_by_refresh_token(db, refresh_token)
    if session is None or str(session.id) != claimed_sid:
        return TokenValidation(valid=False)

    try:
        issued = await refresh_session(db, refresh_token)
    except SessionExpiredError:
        await logout(db, session.id)
        return TokenValidation(valid=False)

    return TokenValidation(valid=True, access_token=issued.access_token, refreshed=True)
