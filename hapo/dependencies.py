"""
FastAPI dependencies for authentication and authorization.

Dependencies are reusable functions that FastAPI injects into route handlers.
They form a chain that enforces authentication and role-based access:

  get_current_session (Bearer token -> live Session + Account)
      └── get_current_account (-> Account)
              ├── require_parent   [PARENT role]
              └── require_child    [CHILD role]

A token is only accepted while its server-side session is open, so logging
out invalidates it immediately even though the JWT itself has not expired.
"""

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession

from hapo.database import get_db
from hapo.exceptions import UnauthorizedAccessError
from hapo.models.account import Account, AccountRole
from hapo.models.session import Session
from hapo.services import auth_service


# Reads the "Authorization: Bearer <token>" header. tokenUrl is only used by
# Swagger UI's "Authorize" button.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


async def get_current_session(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
) -> tuple[Session, Account]:
    """
    Resolve the bearer token to its session and account.

    Raises:
        SessionExpiredError (401): Invalid, expired or revoked token.
    """
    return await auth_service.get_session_for_token(db, token)


async def get_current_account(
    current: tuple[Session, Account] = Depends(get_current_session),
) -> Account:
    return current[1]


async def require_parent(account: Account = Depends(get_current_account)) -> Account:
    """Only parent accounts may manage children, move money and answer requests."""
    if account.role != AccountRole.PARENT:
        raise UnauthorizedAccessError("Parent account required")
    return account


async def require_child(account: Account = Depends(get_current_account)) -> Account:
    if account.role != AccountRole.CHILD:
        raise UnauthorizedAccessError("Child account required")
    return account
