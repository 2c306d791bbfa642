"""
PendingVerification model: an outstanding email or MFA code.

There is at most one row per (account, purpose): issuing a new code replaces
the previous one, which makes resend invalidate the old code. Rows are
deleted when consumed, and on the first access after expiry; nothing sweeps
them proactively.

The 6-digit code is Fernet-encrypted at rest. ``expires_at`` is epoch seconds.
"""

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import String, Integer, DateTime, Enum, ForeignKey, LargeBinary, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from hapo.database import Base


class VerificationPurpose(str, enum.Enum):
    EMAIL = "email"
    MFA = "mfa"


class PendingVerification(Base):
    __tablename__ = "pending_verifications"

    __table_args__ = (
        UniqueConstraint("account_id", "purpose", name="uq_pending_verifications_account_purpose"),
    )

    # Doubles as the MFA challenge id handed back to the client
    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )

    account_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("accounts.id"),
        nullable=False,
        index=True,
    )

    purpose: Mapped[VerificationPurpose] = mapped_column(
        Enum(VerificationPurpose),
        nullable=False,
    )

    # Where the code was sent (email address or username for display)
    destination: Mapped[str] = mapped_column(String(255), nullable=False)

    encrypted_code: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)

    expires_at: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
