"""
Tests for money requests.

These tests verify:
  - Children file requests addressed to their own parent
  - Approval moves pending -> approved exactly once and credits the child
  - A second approve or decline on the same request returns 409 not_pending
  - Declining moves no money
  - Another parent sees the request as not found
  - Emergency requests are credited under the "emergency" category
  - When an approve and a decline race, the later writer loses with
    StaleDataError and the first decision stands
"""

import uuid

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from hapo.models.account import Account
from hapo.models.money_request import MoneyRequest
from hapo.services import request_service


async def _file_request(client, child, amount_cents=1500, reason="School trip", type="money"):
    response = await client.post(
        "/requests",
        json={"amount_cents": amount_cents, "reason": reason, "type": type},
        headers=child["headers"],
    )
    assert response.status_code == 201, response.text
    return response.json()


async def _balance(client, parent, child) -> int:
    response = await client.get(f"/children/{child['id']}/balance", headers=parent["headers"])
    return response.json()["balance_cents"]


class TestCreateRequest:
    """Tests for POST /requests."""

    async def test_child_files_request(self, client, parent, child):
        data = await _file_request(client, child)
        assert data["status"] == "pending"
        assert data["student_id"] == child["id"]
        assert data["parent_id"] == parent["id"]
        assert data["responded_at"] is None

        response = await client.get("/requests/pending", headers=parent["headers"])
        assert [r["id"] for r in response.json()] == [data["id"]]

        response = await client.get("/requests/mine", headers=child["headers"])
        assert [r["id"] for r in response.json()] == [data["id"]]

    async def test_parent_cannot_file_request(self, client, parent):
        response = await client.post(
            "/requests",
            json={"amount_cents": 100, "reason": "Because"},
            headers=parent["headers"],
        )
        assert response.status_code == 403

    async def test_invalid_amount(self, client, child):
        response = await client.post(
            "/requests",
            json={"amount_cents": 0, "reason": "Nothing"},
            headers=child["headers"],
        )
        assert response.status_code == 422

    async def test_blank_reason(self, client, child):
        response = await client.post(
            "/requests",
            json={"amount_cents": 100, "reason": "   "},
            headers=child["headers"],
        )
        assert response.status_code == 422
        assert response.json()["error_type"] == "validation_failed"


class TestResolveRequest:
    """Tests for approve and decline."""

    async def test_approve_credits_child_once(self, client, parent, child):
        request = await _file_request(client, child, amount_cents=1500)

        response = await client.post(f"/requests/{request['id']}/approve", headers=parent["headers"])
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "approved"
        assert data["responded_at"] is not None
        assert await _balance(client, parent, child) == 1500

        for action in ("approve", "decline"):
            response = await client.post(f"/requests/{request['id']}/{action}", headers=parent["headers"])
            assert response.status_code == 409
            assert response.json()["error_type"] == "not_pending"

        assert await _balance(client, parent, child) == 1500
        response = await client.get("/requests/pending", headers=parent["headers"])
        assert response.json() == []

        response = await client.get(f"/children/{child['id']}/transactions", headers=parent["headers"])
        [txn] = response.json()
        assert txn["type"] == "transfer"
        assert txn["category"] == "request"
        assert txn["amount_cents"] == 1500

    async def test_emergency_request_category(self, client, parent, child):
        request = await _file_request(client, child, amount_cents=4000, reason="Taxi home", type="emergency")
        await client.post(f"/requests/{request['id']}/approve", headers=parent["headers"])

        response = await client.get(f"/children/{child['id']}/transactions", headers=parent["headers"])
        assert response.json()[0]["category"] == "emergency"

    async def test_decline_has_no_side_effect(self, client, parent, child):
        request = await _file_request(client, child)

        response = await client.post(f"/requests/{request['id']}/decline", headers=parent["headers"])
        assert response.status_code == 200
        assert response.json()["status"] == "declined"
        assert await _balance(client, parent, child) == 0

        response = await client.post(f"/requests/{request['id']}/approve", headers=parent["headers"])
        assert response.status_code == 409
        assert await _balance(client, parent, child) == 0

    async def test_other_parent_cannot_resolve(self, client, make_parent, make_child):
        alice = await make_parent("alice@example.com")
        bob = await make_parent("bob@example.com")
        bobs_kid = await make_child(bob, username="bob-kid")
        request = await _file_request(client, bobs_kid)

        response = await client.post(f"/requests/{request['id']}/approve", headers=alice["headers"])
        assert response.status_code == 404
        assert response.json()["error_type"] == "request_not_found"

        response = await client.get("/requests/pending", headers=alice["headers"])
        assert response.json() == []

    async def test_child_cannot_approve(self, client, child):
        request = await _file_request(client, child)
        response = await client.post(f"/requests/{request['id']}/approve", headers=child["headers"])
        assert response.status_code == 403

    async def test_unknown_request(self, client, parent):
        response = await client.post(f"/requests/{uuid.uuid4()}/decline", headers=parent["headers"])
        assert response.status_code == 404

    async def test_racing_decline_loses(self, client, parent, child, db_engine):
        request = await _file_request(client, child, amount_cents=1500)
        make_session = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)
        parent_id, request_id = uuid.UUID(parent["id"]), uuid.UUID(request["id"])

        async with make_session() as slow, make_session() as fast:
            # The slow tab loads the request while it is still pending
            stale = await slow.get(MoneyRequest, request_id)
            assert stale.status == "pending"

            await request_service.approve(fast, await fast.get(Account, parent_id), request_id)
            await fast.commit()

            with pytest.raises(StaleDataError):
                await request_service.decline(slow, await slow.get(Account, parent_id), request_id)
            await slow.rollback()

        response = await client.get("/requests/mine", headers=child["headers"])
        assert response.json()[0]["status"] == "approved"
        assert await _balance(client, parent, child) == 1500
