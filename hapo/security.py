"""
Security utilities: password hashing, signed session tokens, and code encryption.

All cryptographic operations live here so they're easy to audit and update:

1. PASSWORD HASHING (Argon2id)
   - Passwords are never stored in plaintext
   - Each hash carries its own random salt, embedded in the hash string
   - passlib's CryptContext handles hashing, verification, and scheme migration

2. SESSION TOKENS
   - Access token: JWT signed with SECRET_KEY (HS256). Claims are the account
     id ("sub"), display name, role, session id ("sid"), issued-at and expiry.
     Lifetime is ACCESS_TOKEN_EXPIRE_MINUTES (24 hours by default).
   - Refresh token: an opaque random string. Only its SHA-256 digest is stored
     server-side, next to its expiry and revocation state.

3. VERIFICATION CODES
   - 6-digit codes drawn from the `secrets` CSPRNG
   - Encrypted at rest with Fernet (AES-128-CBC + HMAC-SHA256)
   - Compared in constant time
"""

import hashlib
import hmac
import secrets
import uuid
from datetime import datetime, timedelta, timezone

from cryptography.fernet import Fernet
from jose import jwt
from passlib.context import CryptContext

from hapo.config import settings


# ---------------------------------------------------------------------------
# 1. Password Hashing (Argon2)
# ---------------------------------------------------------------------------

pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")


def hash_password(plain_password: str) -> str:
    """
    Hash a plaintext password using Argon2id.

    Returns:
        An Argon2 hash string (e.g., "$argon2id$v=19$m=65536,t=3,p=4$...").
    """
    return pwd_context.hash(plain_password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a plaintext password against a stored Argon2 hash."""
    return pwd_context.verify(plain_password, hashed_password)


# ---------------------------------------------------------------------------
# 2. Session Tokens
# ---------------------------------------------------------------------------


def issue_access_token(
    account,
    session_id: uuid.UUID | None = None,
    now: datetime | None = None,
) -> str:
    """
    Create a signed JWT access token for an account.

    Args:
        account: The Account the token is issued to.
        session_id: The server-side session this token belongs to.
        now: Issue time; defaults to the current UTC time.

    Returns:
        An encoded JWT string whose "exp" is exactly
        ACCESS_TOKEN_EXPIRE_MINUTES after "iat".
    """
    issued_at = now or datetime.now(timezone.utc)
    expire = issued_at + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    claims = {
        "sub": str(account.id),
        "name": account.full_name,
        "role": account.role.value,
        "iat": int(issued_at.timestamp()),
        "exp": int(expire.timestamp()),
    }
    if session_id is not None:
        claims["sid"] = str(session_id)

    return jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str) -> dict:
    """
    Decode and verify a JWT access token.

    Raises:
        JWTError: If the token is expired, tampered with, or invalid.
    """
    return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])


def decode_access_token_ignoring_expiry(token: str) -> dict:
    """Verify the signature of a token but accept it even if it has expired."""
    return jwt.decode(
        token,
        settings.SECRET_KEY,
        algorithms=[settings.ALGORITHM],
        options={"verify_exp": False},
    )


def is_expired(token: str, now: datetime | None = None) -> bool:
    """
    Return True if the token's "exp" claim is at or before ``now``.

    Raises:
        JWTError: If the token cannot be decoded or its signature is invalid.
    """
    payload = decode_access_token_ignoring_expiry(token)
    current = now or datetime.now(timezone.utc)
    return int(payload["exp"]) <= int(current.timestamp())


def issue_refresh_token() -> str:
    return secrets.token_urlsafe(32)


def digest_refresh_token(refresh_token: str) -> str:
    """SHA-256 hex digest of a refresh token, as stored in the sessions table."""
    return hashlib.sha256(refresh_token.encode()).hexdigest()


# ---------------------------------------------------------------------------
# 3. Verification Codes
# ---------------------------------------------------------------------------

_fernet = Fernet(settings.CODE_ENCRYPTION_KEY.encode())


def generate_code() -> str:
    """Return a random 6-digit code (100000-999999)."""
    return str(100000 + secrets.randbelow(900000))


def encrypt_value(plaintext: str) -> bytes:
    """Encrypt a string value using Fernet."""
    return _fernet.encrypt(plaintext.encode())


def decrypt_value(ciphertext: bytes) -> str:
    """
    Decrypt a Fernet-encrypted value back to plaintext.

    Raises:
        cryptography.fernet.InvalidToken: If the data is corrupted or
            the encryption key doesn't match.
    """
    return _fernet.decrypt(ciphertext).decode()


def codes_match(supplied: str, stored_ciphertext: bytes) -> bool:
    """Constant-time comparison of a supplied code against the stored one."""
    return hmac.compare_digest(supplied.strip().encode(), decrypt_value(stored_ciphertext).encode())
