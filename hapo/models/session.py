"""
Session model: the server-side record behind every issued token pair.

The access token (a signed JWT) carries the session id in its ``sid`` claim.
A token is only honoured while its session row exists and is not revoked, so
logout takes effect immediately even though the JWT itself is still
cryptographically valid.

The refresh token is never stored: only its SHA-256 digest is kept, along with
an absolute expiry. Expiries are epoch seconds.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import String, Integer, DateTime, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from hapo.database import Base


class Session(Base):
    __tablename__ = "sessions"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )

    account_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("accounts.id"),
        nullable=False,
        index=True,
    )

    refresh_token_digest: Mapped[str] = mapped_column(
        String(64),
        unique=True,
        nullable=False,
        index=True,
    )

    access_expires_at: Mapped[int] = mapped_column(Integer, nullable=False)
    refresh_expires_at: Mapped[int] = mapped_column(Integer, nullable=False)

    # NULL while the session is live
    revoked_at: Mapped[int | None] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    @property
    def is_revoked(self) -> bool:
        return self.revoked_at is not None
