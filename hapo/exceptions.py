"""
Domain exception classes and FastAPI exception handlers.

The service layer raises these without importing any HTTP concepts. Each
exception carries the HTTP status and the machine-readable ``error_type``
that the handler layer projects into the response body:

    {"detail": "human readable message", "error_type": "code_mismatch"}

Exception hierarchy:
    HapoError (base)
    ├── ValidationError      - malformed input, rejected before any write
    │   ├── ValidationFailedError
    │   └── InvalidAmountError
    ├── NotFoundError        - missing account, student, request or pending code
    │   ├── StudentNotFoundError
    │   ├── RequestNotFoundError
    │   ├── RecurringPaymentNotFoundError
    │   ├── NoPendingVerificationError
    │   └── NoPendingChallengeError
    ├── ConflictError        - duplicates and already-resolved state
    │   ├── DuplicateEmailError / DuplicateUsernameError
    │   ├── RequestNotPendingError
    │   ├── IdempotencyKeyReuseError
    │   └── ConcurrentUpdateError
    ├── ExpiredError         - verification or MFA code past its expiry
    │   └── CodeExpiredError
    ├── AuthError            - bad credentials, unverified email, wrong role
    │   ├── InvalidCredentialsError
    │   ├── EmailNotVerifiedError
    │   ├── CodeMismatchError
    │   ├── SessionExpiredError
    │   └── UnauthorizedAccessError
    └── StorageError         - backend unreachable or a delivery transport down
        ├── StorageUnavailableError
        └── DeliveryFailedError
"""

import logging
import uuid

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Base exception and categories
# ---------------------------------------------------------------------------

class HapoError(Exception):
    """Base exception for all Hapo domain errors."""

    status_code: int = 400
    error_type: str = "error"

    def __init__(self, detail: str = "An error occurred"):
        self.detail = detail
        super().__init__(self.detail)


class ValidationError(HapoError):
    status_code = 422
    error_type = "validation_failed"


class NotFoundError(HapoError):
    status_code = 404
    error_type = "not_found"


class ConflictError(HapoError):
    status_code = 409
    error_type = "conflict"


class ExpiredError(HapoError):
    status_code = 410
    error_type = "expired"


class AuthError(HapoError):
    status_code = 401
    error_type = "auth_failed"


class StorageError(HapoError):
    status_code = 503
    error_type = "storage_unavailable"


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

class ValidationFailedError(ValidationError):
    """Raised when sign-up or profile input is malformed."""


class InvalidAmountError(ValidationError):
    """Raised when a ledger amount is not a positive whole number of cents."""

    error_type = "invalid_amount"

    def __init__(self, amount):
        self.amount = amount
        super().__init__(f"Invalid amount: {amount!r} (must be a positive number of cents)")


# ---------------------------------------------------------------------------
# Not found
# ---------------------------------------------------------------------------

class StudentNotFoundError(NotFoundError):
    """Raised when a child account doesn't exist or belongs to another parent."""

    error_type = "student_not_found"

    def __init__(self, student_id: uuid.UUID):
        self.student_id = student_id
        super().__init__(f"Student {student_id} not found")


class RequestNotFoundError(NotFoundError):
    error_type = "request_not_found"

    def __init__(self, request_id: uuid.UUID):
        self.request_id = request_id
        super().__init__(f"Money request {request_id} not found")


class RecurringPaymentNotFoundError(NotFoundError):
    error_type = "recurring_payment_not_found"

    def __init__(self, payment_id: uuid.UUID):
        self.payment_id = payment_id
        super().__init__(f"Recurring payment {payment_id} not found")


class NoPendingVerificationError(NotFoundError):
    error_type = "no_pending_verification"

    def __init__(self):
        super().__init__("No pending email verification")


class NoPendingChallengeError(NotFoundError):
    error_type = "no_pending_challenge"

    def __init__(self):
        super().__init__("No pending MFA verification")


# ---------------------------------------------------------------------------
# Conflicts
# ---------------------------------------------------------------------------

class DuplicateEmailError(ConflictError):
    """Raised when attempting to register with an email that's already in use."""

    error_type = "duplicate_email"

    def __init__(self, email: str):
        self.email = email
        super().__init__(f"Email {email} is already registered")


class DuplicateUsernameError(ConflictError):
    error_type = "duplicate_username"

    def __init__(self, username: str):
        self.username = username
        super().__init__(f"Username {username} is already taken")


class RequestNotPendingError(ConflictError):
    """Raised when approving or declining a request that was already resolved."""

    error_type = "not_pending"

    def __init__(self, request_id: uuid.UUID, status: str):
        self.request_id = request_id
        self.status = status
        super().__init__(f"Money request {request_id} is already {status}")


class IdempotencyKeyReuseError(ConflictError):
    """Raised when an idempotency key is replayed with a different payload."""

    error_type = "idempotency_key_reused"

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Idempotency key {key!r} was already used for a different request")


class ConcurrentUpdateError(ConflictError):
    error_type = "concurrent_update"

    def __init__(self, detail: str = "The record was modified concurrently; retry the request"):
        super().__init__(detail)


# ---------------------------------------------------------------------------
# Expiry
# ---------------------------------------------------------------------------

class CodeExpiredError(ExpiredError):
    error_type = "code_expired"

    def __init__(self, purpose: str = "Verification"):
        super().__init__(f"{purpose} code has expired")


# ---------------------------------------------------------------------------
# Authentication / authorization
# ---------------------------------------------------------------------------

class InvalidCredentialsError(AuthError):
    """Raised when login credentials are incorrect."""

    error_type = "invalid_credentials"

    def __init__(self):
        super().__init__("Invalid email or password")


class EmailNotVerifiedError(AuthError):
    status_code = 403
    error_type = "email_not_verified"

    def __init__(self):
        super().__init__("Please verify your email before signing in")


class CodeMismatchError(AuthError):
    error_type = "code_mismatch"

    def __init__(self):
        super().__init__("Invalid verification code")


class SessionExpiredError(AuthError):
    error_type = "session_expired"

    def __init__(self, detail: str = "Session has expired, please sign in again"):
        super().__init__(detail)


class UnauthorizedAccessError(AuthError):
    """Raised when an account attempts to use a resource it doesn't own."""

    status_code = 403
    error_type = "unauthorized_access"

    def __init__(self, detail: str = "You do not have access to this resource"):
        super().__init__(detail)


# ---------------------------------------------------------------------------
# Storage / transport
# ---------------------------------------------------------------------------

class StorageUnavailableError(StorageError):
    error_type = "storage_unavailable"

    def __init__(self, detail: str = "Storage backend is unavailable, please retry"):
        super().__init__(detail)


class DeliveryFailedError(StorageError):
    """Raised when a verification code could not be delivered. Safe to retry."""

    error_type = "delivery_failed"

    def __init__(self, destination: str):
        self.destination = destination
        super().__init__(f"Could not deliver verification code to {destination}; please retry")


# ---------------------------------------------------------------------------
# FastAPI exception handlers
# ---------------------------------------------------------------------------

def register_exception_handlers(app: FastAPI) -> None:
    """
    Register exception handlers with the FastAPI application.

    Every domain error becomes ``{"detail": ..., "error_type": ...}`` with the
    status code carried by the exception class. Backend failures that escape
    the service layer are mapped onto the same shape.
    """

    @app.exception_handler(HapoError)
    async def hapo_error_handler(request: Request, exc: HapoError) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail, "error_type": exc.error_type},
        )

    @app.exception_handler(StaleDataError)
    async def stale_data_handler(request: Request, exc: StaleDataError) -> JSONResponse:
        err = ConcurrentUpdateError()
        return JSONResponse(
            status_code=err.status_code,
            content={"detail": err.detail, "error_type": err.error_type},
        )

    @app.exception_handler(OperationalError)
    async def operational_error_handler(request: Request, exc: OperationalError) -> JSONResponse:
        logger.error("Storage backend error on %s %s: %s", request.method, request.url.path, exc.orig)
        err = StorageUnavailableError()
        return JSONResponse(
            status_code=err.status_code,
            content={"detail": err.detail, "error_type": err.error_type},
        )

    @app.exception_handler(IntegrityError)
    async def integrity_error_handler(request: Request, exc: IntegrityError) -> JSONResponse:
        # A uniqueness race lost at flush time, e.g. two sign-ups with one email
        logger.warning("Integrity error on %s %s: %s", request.method, request.url.path, exc.orig)
        return JSONResponse(
            status_code=ConflictError.status_code,
            content={"detail": "The record conflicts with existing data", "error_type": ConflictError.error_type},
        )
