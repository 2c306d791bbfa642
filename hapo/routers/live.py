"""
Live router: WebSocket streams for the dashboards.

Endpoints:
  WS /ws/balance?token=...[&student_id=...]  - Live balance for one child
  WS /ws/requests?token=...                  - New money requests (parent)

Browsers cannot set an Authorization header on a WebSocket, so the access
token travels as a query parameter. A connection whose token does not
resolve to a live session is closed with code 1008 before it is accepted.

The balance stream is fed by exactly one channel, chosen per deployment by
BALANCE_UPDATE_CHANNEL:
  - poll: a BalancePoller re-reads the balance every BALANCE_POLL_SECONDS
  - push: committed UPDATEs to the child's account row from the change feed
Either way every message goes through a BalanceView, so a snapshot is only
sent when its version is newer than the last one sent. The background task
belongs to the connection and is cancelled when the client disconnects.
A task that fails is logged and closes the socket with 1011.
"""

import asyncio
import logging
import uuid
from typing import Awaitable, Callable

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect, status
from fastapi.encoders import jsonable_encoder
from starlette.websockets import WebSocketState
from sqlalchemy.ext.asyncio import AsyncSession

from hapo.config import settings
from hapo.database import get_db
from hapo.exceptions import HapoError, UnauthorizedAccessError
from hapo.models.account import Account, AccountRole
from hapo.realtime import BalancePoller, BalanceView, Subscription, change_feed
from hapo.schemas.money_request import MoneyRequestResponse
from hapo.services import auth_service, ledger_service
from hapo.services.child_service import get_child_for_viewer

logger = logging.getLogger(__name__)

router = APIRouter()


async def _wait_for_disconnect(websocket: WebSocket) -> None:
    """Drain (and ignore) client messages until the socket closes."""
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.debug("WebSocket client disconnected")


async def _run_until_disconnect(websocket: WebSocket, worker: Awaitable[None]) -> None:
    """
    Run ``worker`` for the life of the connection.

    A client disconnect cancels the worker. A worker that fails is logged and
    the socket is closed with 1011 instead of the error escaping the handler.
    """
    task = asyncio.create_task(worker)
    listener = asyncio.create_task(_wait_for_disconnect(websocket))
    done, pending = await asyncio.wait({task, listener}, return_when=asyncio.FIRST_COMPLETED)
    for unfinished in pending:
        unfinished.cancel()
    for outcome in await asyncio.gather(*pending, return_exceptions=True):
        if isinstance(outcome, Exception):
            logger.warning("Live update task failed during shutdown: %r", outcome)

    if task in done and not task.cancelled() and task.exception() is not None:
        logger.error("Live update task failed", exc_info=task.exception())
        await _close(websocket, status.WS_1011_INTERNAL_ERROR)


async def _close(websocket: WebSocket, code: int) -> None:
    if (
        websocket.client_state == WebSocketState.CONNECTED
        and websocket.application_state == WebSocketState.CONNECTED
    ):
        await websocket.close(code=code)


async def relay_balance_changes(
    subscription: Subscription,
    view: BalanceView,
    push: Callable[[dict], Awaitable[None]],
) -> None:
    """Forward account UPDATEs from the change feed while they advance ``view``."""
    async for change in subscription:
        record = change.record
        if view.apply(record["balance_cents"], record["version"]):
            await push({
                "student_id": record["id"],
                "balance_cents": record["balance_cents"],
                "version": record["version"],
            })


async def relay_new_requests(
    subscription: Subscription,
    push: Callable[[dict], Awaitable[None]],
) -> None:
    async for change in subscription:
        await push(MoneyRequestResponse.model_validate(change.record).model_dump(mode="json"))


async def _authenticate(websocket: WebSocket, db: AsyncSession, token: str) -> Account | None:
    try:
        _, account = await auth_service.get_session_for_token(db, token)
    except HapoError as exc:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=exc.detail)
        return None
    return account


@router.websocket("/balance")
async def balance_stream(
    websocket: WebSocket,
    token: str = Query(...),
    student_id: uuid.UUID | None = Query(None),
    db: AsyncSession = Depends(get_db),
):
    account = await _authenticate(websocket, db, token)
    if account is None:
        return

    try:
        if student_id is None:
            if account.role != AccountRole.CHILD:
                raise UnauthorizedAccessError("student_id is required for parent accounts")
            student_id = account.id
        student = await get_child_for_viewer(db, account, student_id)
    except HapoError as exc:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=exc.detail)
        return

    await websocket.accept()
    view = BalanceView()

    async def push(snapshot: dict) -> None:
        await websocket.send_json(jsonable_encoder(snapshot))

    async def fetch() -> dict:
        await db.refresh(student)
        snapshot = await ledger_service.balance_snapshot(db, student)
        # End the read transaction so the next poll sees new commits
        await db.commit()
        return snapshot

    if settings.BALANCE_UPDATE_CHANNEL == "push":
        with change_feed.subscribe("accounts", {"id": student.id}, {"UPDATE"}) as subscription:
            initial = await fetch()
            view.apply(initial["balance_cents"], initial["version"])
            await push(initial)
            await _run_until_disconnect(websocket, relay_balance_changes(subscription, view, push))
    else:
        poller = BalancePoller(fetch, push, view=view)
        await _run_until_disconnect(websocket, poller.run())

    logger.info("Balance stream for student %s closed", student.id)


@router.websocket("/requests")
async def request_stream(
    websocket: WebSocket,
    token: str = Query(...),
    db: AsyncSession = Depends(get_db),
):
    account = await _authenticate(websocket, db, token)
    if account is None:
        return
    if account.role != AccountRole.PARENT:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Parent account required")
        return

    async def push(payload: dict) -> None:
        await websocket.send_json(payload)

    # Subscribe before accepting so no request filed after the handshake is missed
    with change_feed.subscribe("money_requests", {"parent_id": account.id}, {"INSERT"}) as subscription:
        await websocket.accept()
        await _run_until_disconnect(websocket, relay_new_requests(subscription, push))
