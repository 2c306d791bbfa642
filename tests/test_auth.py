"""
Tests for the sign-up, email verification, sign-in and MFA flow.

These tests verify:
  - Sign-up leaves the email unverified and issues no session
  - A wrong code is rejected and the pending code survives; the right one works
  - An expired code is rejected and removed, so a retry finds nothing pending
  - A consumed code cannot be reused; resending invalidates the old code
  - Sign-in with MFA enabled always returns a challenge first
  - The MFA session's access token expires exactly 24 hours after issue
  - Unknown identifier and wrong password look identical (anti-enumeration)
  - Delivery failures are retried and reported as retryable
"""

import uuid

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from hapo.models.account import Account
from hapo.models.session import Session
from hapo.models.verification import PendingVerification, VerificationPurpose
from hapo.security import decode_access_token


SIGNUP = {
    "email": "a@b.com",
    "password": "Abc12345!",
    "first_name": "Ada",
    "last_name": "Parent",
}


async def _expire_pending(db_engine, purpose: VerificationPurpose):
    async_session = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)
    async with async_session() as session:
        await session.execute(
            update(PendingVerification)
            .where(PendingVerification.purpose == purpose)
            .values(expires_at=0)
        )
        await session.commit()


# ---------------------------------------------------------------------------
# Sign-up and email verification
# ---------------------------------------------------------------------------

class TestSignup:
    """Tests for POST /auth/signup."""

    async def test_signup_pending_verification(self, client, sender, db_session):
        """Sign-up returns 202, sends a code, and creates no session."""
        response = await client.post("/auth/signup", json=SIGNUP)
        assert response.status_code == 202
        data = response.json()
        assert data["status"] == "pending_email_verification"
        assert data["email"] == "a@b.com"
        assert "access_token" not in data

        code = sender.last_code("a@b.com")
        assert len(code) == 6 and code.isdigit()

        account = (await db_session.execute(select(Account))).scalar_one()
        assert account.email_verified is False
        assert account.mfa_enabled is True
        assert (await db_session.execute(select(Session))).scalars().all() == []

    async def test_signup_duplicate_email(self, client):
        assert (await client.post("/auth/signup", json=SIGNUP)).status_code == 202
        response = await client.post("/auth/signup", json={**SIGNUP, "email": "A@B.com"})
        assert response.status_code == 409
        assert response.json()["error_type"] == "duplicate_email"

    async def test_signup_short_password(self, client):
        response = await client.post("/auth/signup", json={**SIGNUP, "password": "short"})
        assert response.status_code == 422

    async def test_signup_invalid_email(self, client):
        response = await client.post("/auth/signup", json={**SIGNUP, "email": "not-an-email"})
        assert response.status_code == 422

    async def test_password_is_not_stored_in_plaintext(self, client, db_session):
        await client.post("/auth/signup", json=SIGNUP)
        account = (await db_session.execute(select(Account))).scalar_one()
        assert account.hashed_password != SIGNUP["password"]
        assert account.hashed_password.startswith("$argon2")


class TestEmailVerification:
    """Tests for POST /auth/verify-email and its resend."""

    async def test_full_signup_to_session_scenario(self, client, sender):
        """Wrong code, right code, sign-in challenge, MFA, session."""
        await client.post("/auth/signup", json=SIGNUP)
        right_code = sender.last_code("a@b.com")
        wrong_code = "000000" if right_code != "000000" else "111111"

        response = await client.post(
            "/auth/verify-email", json={"email": "a@b.com", "code": wrong_code},
        )
        assert response.status_code == 401
        assert response.json()["error_type"] == "code_mismatch"

        response = await client.post(
            "/auth/verify-email", json={"email": "a@b.com", "code": right_code},
        )
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

        response = await client.post(
            "/auth/login", json={"identifier": "a@b.com", "password": "Abc12345!"},
        )
        assert response.status_code == 200
        challenge = response.json()
        assert challenge["status"] == "requires_mfa"
        assert challenge["challenge_destination"] == "a@b.com"

        response = await client.post(
            "/auth/mfa/verify",
            json={"challenge_id": challenge["challenge_id"], "code": sender.last_code("a@b.com")},
        )
        assert response.status_code == 200
        session = response.json()
        assert session["status"] == "authenticated"
        assert session["access_token"]
        assert session["refresh_token"]

    async def test_consumed_code_cannot_be_reused(self, client, sender):
        await client.post("/auth/signup", json=SIGNUP)
        payload = {"email": "a@b.com", "code": sender.last_code("a@b.com")}

        assert (await client.post("/auth/verify-email", json=payload)).status_code == 200
        response = await client.post("/auth/verify-email", json=payload)
        assert response.status_code == 404
        assert response.json()["error_type"] == "no_pending_verification"

    async def test_expired_code_is_removed(self, client, sender, db_engine):
        """An expired code fails once with 410, then nothing is pending."""
        await client.post("/auth/signup", json=SIGNUP)
        payload = {"email": "a@b.com", "code": sender.last_code("a@b.com")}
        await _expire_pending(db_engine, VerificationPurpose.EMAIL)

        response = await client.post("/auth/verify-email", json=payload)
        assert response.status_code == 410
        assert response.json()["error_type"] == "code_expired"

        response = await client.post("/auth/verify-email", json=payload)
        assert response.status_code == 404
        assert response.json()["error_type"] == "no_pending_verification"

    async def test_resend_invalidates_previous_code(self, client, sender):
        await client.post("/auth/signup", json=SIGNUP)
        old_code = sender.last_code("a@b.com")

        response = await client.post("/auth/verify-email/resend", json={"email": "a@b.com"})
        assert response.status_code == 200
        new_code = sender.last_code("a@b.com")
        assert len(sender.sent) == 2

        if old_code != new_code:
            response = await client.post(
                "/auth/verify-email", json={"email": "a@b.com", "code": old_code},
            )
            assert response.status_code == 401

        response = await client.post(
            "/auth/verify-email", json={"email": "a@b.com", "code": new_code},
        )
        assert response.status_code == 200

    async def test_resend_without_pending_verification(self, client):
        response = await client.post("/auth/verify-email/resend", json={"email": "nobody@example.com"})
        assert response.status_code == 404

    async def test_unverified_email_cannot_sign_in(self, client):
        await client.post("/auth/signup", json=SIGNUP)
        response = await client.post(
            "/auth/login", json={"identifier": "a@b.com", "password": "Abc12345!"},
        )
        assert response.status_code == 403
        assert response.json()["error_type"] == "email_not_verified"


# ---------------------------------------------------------------------------
# Sign-in and MFA
# ---------------------------------------------------------------------------

async def _verified_parent(client, sender):
    await client.post("/auth/signup", json=SIGNUP)
    await client.post(
        "/auth/verify-email", json={"email": "a@b.com", "code": sender.last_code("a@b.com")},
    )


class TestSignIn:
    """Tests for POST /auth/login and the MFA endpoints."""

    async def test_wrong_password(self, client, sender):
        await _verified_parent(client, sender)
        response = await client.post(
            "/auth/login", json={"identifier": "a@b.com", "password": "WrongPass1!"},
        )
        assert response.status_code == 401
        assert response.json()["error_type"] == "invalid_credentials"

    async def test_unknown_identifier_same_error(self, client, sender):
        await _verified_parent(client, sender)
        wrong_password = await client.post(
            "/auth/login", json={"identifier": "a@b.com", "password": "WrongPass1!"},
        )
        unknown = await client.post(
            "/auth/login", json={"identifier": "ghost@example.com", "password": "Abc12345!"},
        )
        assert unknown.status_code == 401
        assert unknown.json() == wrong_password.json()

    async def test_mfa_enabled_never_returns_session_directly(self, client, sender):
        await _verified_parent(client, sender)
        for _ in range(2):
            response = await client.post(
                "/auth/login", json={"identifier": "a@b.com", "password": "Abc12345!"},
            )
            data = response.json()
            assert data["status"] == "requires_mfa"
            assert "access_token" not in data

    async def test_access_token_expires_24_hours_after_issue(self, client, sender):
        await _verified_parent(client, sender)
        challenge = (await client.post(
            "/auth/login", json={"identifier": "a@b.com", "password": "Abc12345!"},
        )).json()
        session = (await client.post(
            "/auth/mfa/verify",
            json={"challenge_id": challenge["challenge_id"], "code": sender.last_code("a@b.com")},
        )).json()

        claims = decode_access_token(session["access_token"])
        assert abs((claims["exp"] - claims["iat"]) - 24 * 3600) <= 1
        assert session["access_expires_at"] == claims["exp"]
        assert claims["sub"] == session["account_id"]

    async def test_wrong_mfa_code_keeps_challenge(self, client, sender):
        await _verified_parent(client, sender)
        challenge = (await client.post(
            "/auth/login", json={"identifier": "a@b.com", "password": "Abc12345!"},
        )).json()
        right_code = sender.last_code("a@b.com")
        wrong_code = "000000" if right_code != "000000" else "111111"

        response = await client.post(
            "/auth/mfa/verify",
            json={"challenge_id": challenge["challenge_id"], "code": wrong_code},
        )
        assert response.status_code == 401
        assert response.json()["error_type"] == "code_mismatch"

        response = await client.post(
            "/auth/mfa/verify",
            json={"challenge_id": challenge["challenge_id"], "code": right_code},
        )
        assert response.status_code == 200

    async def test_expired_mfa_code(self, client, sender, db_engine):
        await _verified_parent(client, sender)
        challenge = (await client.post(
            "/auth/login", json={"identifier": "a@b.com", "password": "Abc12345!"},
        )).json()
        await _expire_pending(db_engine, VerificationPurpose.MFA)

        payload = {"challenge_id": challenge["challenge_id"], "code": sender.last_code("a@b.com")}
        response = await client.post("/auth/mfa/verify", json=payload)
        assert response.status_code == 410

        response = await client.post("/auth/mfa/verify", json=payload)
        assert response.status_code == 404
        assert response.json()["error_type"] == "no_pending_challenge"

    async def test_mfa_resend_keeps_challenge_id(self, client, sender):
        await _verified_parent(client, sender)
        challenge = (await client.post(
            "/auth/login", json={"identifier": "a@b.com", "password": "Abc12345!"},
        )).json()

        response = await client.post(
            "/auth/mfa/resend", json={"challenge_id": challenge["challenge_id"]},
        )
        assert response.status_code == 200

        response = await client.post(
            "/auth/mfa/verify",
            json={"challenge_id": challenge["challenge_id"], "code": sender.last_code("a@b.com")},
        )
        assert response.status_code == 200

    async def test_unknown_challenge(self, client):
        response = await client.post(
            "/auth/mfa/verify", json={"challenge_id": str(uuid.uuid4()), "code": "123456"},
        )
        assert response.status_code == 404


class TestDelivery:
    """Code delivery failures during sign-up."""

    async def test_transient_failure_is_retried(self, client, sender):
        sender.failures = 2
        response = await client.post("/auth/signup", json=SIGNUP)
        assert response.status_code == 202
        assert sender.attempts == 3
        assert sender.last_code("a@b.com")

    async def test_persistent_failure_is_retryable_error(self, client, sender):
        sender.failures = 10
        response = await client.post("/auth/signup", json=SIGNUP)
        assert response.status_code == 503
        assert response.json()["error_type"] == "delivery_failed"

        # The account exists; asking for a new code recovers
        sender.failures = 0
        response = await client.post("/auth/verify-email/resend", json={"email": "a@b.com"})
        assert response.status_code == 200
