"""
Change feed: one publish/subscribe channel per table.

Writers publish after a successful commit; every open dashboard is an
independent subscriber that reconciles its own cache by primary key.
"""
import asyncio
import itertools
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Optional

import structlog
from fastapi import WebSocket

from ..auth.security import Actor
from .permissions import can_view_change


log = structlog.get_logger("workflow_hub.realtime")

TABLES = ("payments", "jobs", "resources")
EVENTS = ("insert", "update", "delete")

RowHandler = Callable[[Dict[str, Any]], None]


@dataclass(frozen=True)
class Subscription:
    id: int
    table: str
    on_insert: Optional[RowHandler] = None
    on_update: Optional[RowHandler] = None
    on_delete: Optional[RowHandler] = None

    def handler_for(self, event: str) -> Optional[RowHandler]:
        return {
            "insert": self.on_insert,
            "update": self.on_update,
            "delete": self.on_delete,
        }[event]


class ChangeFeed:
    def __init__(self) -> None:
        # table -> subscription id -> subscription
        self._subscriptions: Dict[str, Dict[int, Subscription]] = {}
        self._ids = itertools.count(1)
        # Held for the whole delivery so every subscriber sees one global order
        self._lock = threading.RLock()

    def subscribe(
        self,
        table: str,
        on_insert: Optional[RowHandler] = None,
        on_update: Optional[RowHandler] = None,
        on_delete: Optional[RowHandler] = None,
    ) -> Subscription:
        sub = Subscription(next(self._ids), table, on_insert, on_update, on_delete)
        with self._lock:
            self._subscriptions.setdefault(table, {})[sub.id] = sub
        return sub

    def unsubscribe(self, handle: Subscription) -> bool:
        with self._lock:
            subs = self._subscriptions.get(handle.table)
            if not subs or handle.id not in subs:
                return False
            del subs[handle.id]
            if not subs:
                self._subscriptions.pop(handle.table, None)
            return True

    def subscriber_count(self, table: str) -> int:
        with self._lock:
            return len(self._subscriptions.get(table, {}))

    def publish(self, table: str, event: str, row: Dict[str, Any]) -> int:
        """Deliver one change to every subscriber of the table.

        A failing subscriber is logged and skipped; the others still
        receive the event. Returns the number of handlers invoked.
        """
        if event not in EVENTS:
            raise ValueError(f"Unknown change event '{event}'")
        delivered = 0
        with self._lock:
            targets = list(self._subscriptions.get(table, {}).values())
            for sub in targets:
                handler = sub.handler_for(event)
                if handler is None:
                    continue
                try:
                    handler(row)
                    delivered += 1
                except Exception:
                    log.exception("change_subscriber_failed", table=table, change=event, subscription=sub.id)
        return delivered


@dataclass
class _Connection:
    loop: asyncio.AbstractEventLoop
    queue: asyncio.Queue
    actor: Actor


class RealtimeHub:
    """Fans change events out to connected dashboard WebSockets.

    Publishers run in worker threads, so each connection gets an asyncio
    queue fed through its own event loop. A connection only receives the
    rows its actor may read over REST.
    """

    def __init__(self) -> None:
        self._connections: Dict[WebSocket, _Connection] = {}
        self._lock = threading.Lock()
        self._subscriptions: list = []

    def attach(self, feed: ChangeFeed, tables: Iterable[str] = TABLES) -> None:
        for table in tables:
            self._subscriptions.append(feed.subscribe(
                table,
                on_insert=lambda row, t=table: self.broadcast(t, "insert", row),
                on_update=lambda row, t=table: self.broadcast(t, "update", row),
                on_delete=lambda row, t=table: self.broadcast(t, "delete", row),
            ))

    def detach(self, feed: ChangeFeed) -> None:
        for sub in self._subscriptions:
            feed.unsubscribe(sub)
        self._subscriptions = []

    def connect(self, ws: WebSocket, actor: Actor) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue()
        with self._lock:
            self._connections[ws] = _Connection(asyncio.get_running_loop(), queue, actor)
        return queue

    def disconnect(self, ws: WebSocket) -> None:
        with self._lock:
            self._connections.pop(ws, None)

    def connection_count(self) -> int:
        with self._lock:
            return len(self._connections)

    def broadcast(self, table: str, event: str, row: Dict[str, Any]) -> int:
        """Queue the change for every connection allowed to see it. Returns how many."""
        message = {"table": table, "event": event, "row": row}
        with self._lock:
            targets = list(self._connections.items())
        queued = 0
        for ws, conn in targets:
            if not can_view_change(conn.actor, table, row):
                continue
            try:
                conn.loop.call_soon_threadsafe(conn.queue.put_nowait, message)
                queued += 1
            except RuntimeError:
                # loop already closed; the socket is gone
                self.disconnect(ws)
        return queued



# Global singletons
feed = ChangeFeed()
hub = RealtimeHub()
hub.attach(feed)
