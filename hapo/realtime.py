"""
Live updates: a committed-change feed and a cancellable balance poller.

Change feed
  SQLAlchemy session hooks record a row snapshot for every INSERT, UPDATE
  and DELETE on the watched tables during flush. They publish the snapshots
  only after the surrounding transaction commits, and discard them on
  rollback. Subscribers pick a table, an optional column-equality filter and
  the event types they care about, then iterate asynchronously:

      subscription = change_feed.subscribe(
          "money_requests", {"parent_id": parent.id}, {"INSERT"},
      )
      async for event in subscription:
          ...

  Delivery is at-least-once to in-process subscribers and carries no ordering
  guarantee relative to the poller.

Balance poller
  BalancePoller re-reads a balance on a fixed interval as an asyncio task
  that is started and cancelled with the view it feeds. Transient storage
  errors are retried, then logged, and the last good snapshot is kept. Both
  channels go through BalanceView, which only accepts a snapshot with a
  newer ``version``, so a stale read can never overwrite a fresher push.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from sqlalchemy import event, inspect
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session as OrmSession

from hapo.config import settings
from hapo.exceptions import StorageError
from hapo.retry import retry_async

logger = logging.getLogger(__name__)

WATCHED_TABLES = frozenset({"accounts", "transactions", "money_requests"})
EVENT_TYPES = frozenset({"INSERT", "UPDATE", "DELETE"})

# Columns that never leave the process
_REDACTED_COLUMNS = frozenset({"hashed_password"})

_PENDING_KEY = "hapo_pending_changes"


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    event_type: str
    record: dict[str, Any] = field(default_factory=dict)


_CLOSED = object()


class Subscription:
    """An async iterator over the change events matching one filter."""

    def __init__(
        self,
        feed: "ChangeFeed",
        table: str,
        filters: dict[str, Any],
        event_types: frozenset[str],
        maxsize: int = 1000,
    ):
        self._feed = feed
        self.table = table
        self.filters = filters
        self.event_types = event_types
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.closed = False

    def matches(self, change: ChangeEvent) -> bool:
        if change.table != self.table or change.event_type not in self.event_types:
            return False
        return all(change.record.get(column) == value for column, value in self.filters.items())

    def _deliver(self, item) -> None:
        try:
            self._queue.put_nowait(item)
        except asyncio.QueueFull:
            logger.warning("Subscriber queue for %s is full; dropping event", self.table)

    async def next(self, timeout: float | None = None) -> ChangeEvent:
        """Wait for the next event; raises StopAsyncIteration once closed."""
        item = await asyncio.wait_for(self._queue.get(), timeout)
        if item is _CLOSED:
            raise StopAsyncIteration
        return item

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._feed._remove(self)
        self._deliver(_CLOSED)

    def __aiter__(self):
        return self

    async def __anext__(self) -> ChangeEvent:
        return await self.next()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()


class ChangeFeed:
    """In-process publish/subscribe hub for committed row changes."""

    def __init__(self):
        self._subscriptions: list[Subscription] = []

    def subscribe(
        self,
        table: str,
        filters: dict[str, Any] | None = None,
        event_types: set[str] | frozenset[str] | None = None,
    ) -> Subscription:
        if table not in WATCHED_TABLES:
            raise ValueError(f"Table {table!r} is not watched; choose from {sorted(WATCHED_TABLES)}")
        types = frozenset(event_types) if event_types else EVENT_TYPES
        unknown = types - EVENT_TYPES
        if unknown:
            raise ValueError(f"Unknown event types: {sorted(unknown)}")

        subscription = Subscription(self, table, dict(filters or {}), types)
        self._subscriptions.append(subscription)
        return subscription

    def publish(self, change: ChangeEvent) -> None:
        for subscription in list(self._subscriptions):
            if subscription.matches(change):
                subscription._deliver(change)

    def _remove(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)


change_feed = ChangeFeed()


# ---------------------------------------------------------------------------
# Session hooks feeding the change feed
# ---------------------------------------------------------------------------

def _snapshot(obj) -> dict[str, Any]:
    # Only already-loaded values; no lazy loads from inside a flush
    state = inspect(obj)
    return {
        attr.key: state.dict[attr.key]
        for attr in state.mapper.column_attrs
        if attr.key in state.dict and attr.key not in _REDACTED_COLUMNS
    }


def _table_of(obj) -> str | None:
    table = getattr(obj, "__tablename__", None)
    return table if table in WATCHED_TABLES else None


@event.listens_for(OrmSession, "after_flush")
def _collect_changes(session, flush_context):
    pending = session.info.setdefault(_PENDING_KEY, [])
    for event_type, objects in (
        ("INSERT", session.new),
        ("UPDATE", session.dirty),
        ("DELETE", session.deleted),
    ):
        for obj in objects:
            table = _table_of(obj)
            if table is None:
                continue
            if event_type == "UPDATE" and not session.is_modified(obj):
                continue
            pending.append(ChangeEvent(table, event_type, _snapshot(obj)))


@event.listens_for(OrmSession, "after_commit")
def _publish_changes(session):
    for change in session.info.pop(_PENDING_KEY, []):
        change_feed.publish(change)


@event.listens_for(OrmSession, "after_rollback")
def _discard_changes(session):
    session.info.pop(_PENDING_KEY, None)


# ---------------------------------------------------------------------------
# Balance view and poller
# ---------------------------------------------------------------------------

class BalanceView:
    """Latest known balance, reconciled by the account's monotonic version."""

    def __init__(self):
        self.balance_cents: int | None = None
        self.version = 0

    def apply(self, balance_cents: int, version: int) -> bool:
        """Accept the snapshot if it is newer than what we have; return whether it was."""
        if version <= self.version:
            return False
        self.balance_cents = balance_cents
        self.version = version
        return True


class BalancePoller:
    """
    Re-read a balance every ``interval`` seconds until stopped.

    Usage:
        async with BalancePoller(fetch, on_update) as poller:
            ...   # cancelled on exit
    """

    def __init__(
        self,
        fetch: Callable[[], Awaitable[dict]],
        on_update: Callable[[dict], Awaitable[None]],
        interval: float | None = None,
        view: BalanceView | None = None,
    ):
        self.fetch = fetch
        self.on_update = on_update
        self.interval = settings.BALANCE_POLL_SECONDS if interval is None else interval
        self.view = view or BalanceView()
        self.last_snapshot: dict | None = None
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def poll_once(self) -> bool:
        """Fetch one snapshot; notify and return True if it advanced the view."""
        snapshot = await retry_async(
            self.fetch,
            retry_on=(OperationalError,),
            attempts=settings.BALANCE_POLL_RETRY_ATTEMPTS,
            base_delay=settings.RETRY_BASE_DELAY_SECONDS,
        )
        self.last_snapshot = snapshot
        if self.view.apply(snapshot["balance_cents"], snapshot["version"]):
            await self.on_update(snapshot)
            return True
        return False

    async def run(self) -> None:
        """Poll until cancelled. Only storage errors are survived."""
        while True:
            try:
                await self.poll_once()
            except (OperationalError, StorageError) as exc:
                logger.warning("Balance poll failed; keeping last snapshot: %s", exc)
            await asyncio.sleep(self.interval)

    def start(self) -> None:
        if self.running:
            logger.warning("Balance poller already running")
            return
        self._task = asyncio.create_task(self.run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        except Exception:
            logger.exception("Balance poller stopped after an unexpected error")
        self._task = None

    async def __aenter__(self):
        self.start()
        return self

    async def __aexit__(self, *exc_info):
        await self.stop()
