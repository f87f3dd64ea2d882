"""Real-time calendar synchronization over PostgreSQL LISTEN/NOTIFY.

Row-level triggers publish ``{"table", "type", "id"}`` JSON on the
appointments and schedule-block channels; clients that just mutated data
also broadcast on the peer channel. Every connected ``SyncClient``
debounces these events and then re-runs its last query, replacing its
local calendar state.

start_realtime_sync returns an async callable that stops the worker.
"""
from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, Optional
from uuid import uuid4

import asyncpg
from sqlalchemy.engine import make_url

from barbershop.app.core.constants import (
    APPOINTMENTS_CHANNEL,
    BROADCAST_CHANNEL,
    BROADCAST_EVENT,
    SCHEDULE_BLOCKS_CHANNEL,
    SYNC_RECONNECT_SECONDS,
)
from barbershop.app.core.db import get_database_url
from barbershop.app.services.appointment_services import (
    AppointmentQuery,
    fetch_appointments,
    serialize_appointment,
)
from barbershop.app.services.block_services import list_schedule_blocks, serialize_block
from barbershop.app.workers.debounce import DebouncedTask
from barbershop.config import get_debounce_seconds

logger = logging.getLogger(__name__)

EVENT_BROADCAST = "BROADCAST"

ChangeHandler = Callable[["ChangeEvent"], None]


@dataclass(frozen=True)
class ChangeEvent:
    channel: str
    type: str
    table: str | None = None
    record_id: int | None = None
    sender: str | None = None

    @classmethod
    def from_payload(cls, channel: str, payload: str | None) -> "ChangeEvent":
        """Parse a NOTIFY payload; malformed payloads still count as a change."""
        try:
            data = json.loads(payload) if payload else {}
        except (TypeError, ValueError):
            logger.warning("Unparseable payload on %s: %r", channel, payload)
            data = {}
        if not isinstance(data, dict):
            data = {}
        if channel == BROADCAST_CHANNEL:
            return cls(channel=channel, type=EVENT_BROADCAST, sender=data.get("sender"))
        raw_id = data.get("id")
        return cls(
            channel=channel,
            type=str(data.get("type") or "UPDATE").upper(),
            table=data.get("table"),
            record_id=int(raw_id) if isinstance(raw_id, (int, str)) and str(raw_id).isdigit() else None,
        )


def _asyncpg_dsn(url: str) -> str:
    """asyncpg does not understand SQLAlchemy's ``+asyncpg`` driver suffix."""
    return make_url(url).set(drivername="postgresql").render_as_string(hide_password=False)


class PgChangeFeed:
    """One dedicated asyncpg connection listening on the sync channels."""

    def __init__(
        self,
        dsn: str | None = None,
        channels: Iterable[str] = (APPOINTMENTS_CHANNEL, SCHEDULE_BLOCKS_CHANNEL, BROADCAST_CHANNEL),
        reconnect_seconds: float = SYNC_RECONNECT_SECONDS,
    ) -> None:
        self._dsn = dsn or _asyncpg_dsn(get_database_url())
        self._channels = tuple(channels)
        self._reconnect_seconds = reconnect_seconds
        self._conn: asyncpg.Connection | None = None
        self._handlers: list[ChangeHandler] = []
        self._closing = False
        self._reconnect_task: asyncio.Task[None] | None = None

    @property
    def connected(self) -> bool:
        return self._conn is not None and not self._conn.is_closed()

    def subscribe(self, handler: ChangeHandler) -> Callable[[], None]:
        self._handlers.append(handler)

        def _unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return _unsubscribe

    def _on_notify(self, connection: Any, pid: int, channel: str, payload: str) -> None:
        event = ChangeEvent.from_payload(channel, payload)
        logger.debug("Change event %s on %s (pid=%s)", event.type, channel, pid)
        for handler in list(self._handlers):
            try:
                handler(event)
            except Exception as e:
                logger.exception("Change handler failed: %s", e)

    def _on_terminate(self, connection: Any) -> None:
        if self._closing:
            return
        logger.warning("Change feed connection lost; reconnecting in %ss", self._reconnect_seconds)
        self._conn = None
        if self._reconnect_task is None or self._reconnect_task.done():
            self._reconnect_task = asyncio.get_running_loop().create_task(self._reconnect(), name="sync-reconnect")

    async def _reconnect(self) -> None:
        while not self._closing and not self.connected:
            await asyncio.sleep(self._reconnect_seconds)
            if self._closing:
                return
            try:
                await self.connect()
            except (OSError, asyncpg.PostgresError) as e:
                logger.warning("Change feed reconnect failed: %s", e)

    async def connect(self) -> None:
        self._closing = False
        conn = await asyncpg.connect(self._dsn)
        for channel in self._channels:
            await conn.add_listener(channel, self._on_notify)
        conn.add_termination_listener(self._on_terminate)
        self._conn = conn
        logger.info("Change feed listening on %s", ", ".join(self._channels))

    async def publish(self, payload: dict[str, Any], channel: str = BROADCAST_CHANNEL) -> None:
        if not self.connected:
            logger.warning("Change feed not connected; broadcast dropped")
            return
        assert self._conn is not None
        await self._conn.execute("SELECT pg_notify($1, $2)", channel, json.dumps(payload))

    async def close(self) -> None:
        self._closing = True
        if self._reconnect_task is not None:
            self._reconnect_task.cancel()
            self._reconnect_task = None
        conn, self._conn = self._conn, None
        if conn is not None and not conn.is_closed():
            await conn.close()


class SyncClient:
    """Calendar state of one connected view.

    ``load`` remembers the query; change events (peer broadcasts included,
    even those sent by this client) debounce into a reload of that query.
    """

    def __init__(
        self,
        feed: Any,
        *,
        client_id: str | None = None,
        appointment_loader: Callable[[AppointmentQuery], Awaitable[list[Any]]] = fetch_appointments,
        block_loader: Callable[..., Awaitable[list[Any]]] = list_schedule_blocks,
    ) -> None:
        self.feed = feed
        self.client_id = client_id or uuid4().hex
        self._load_appointments = appointment_loader
        self._load_blocks = block_loader
        self._lock = asyncio.Lock()
        self._debounce = DebouncedTask(self._reload, get_debounce_seconds("UPDATE"), name="sync-reload")
        self.appointments: list[dict[str, Any]] = []
        self.blocks: list[dict[str, Any]] = []
        self.last_query: AppointmentQuery | None = None
        self.reload_count = 0

    @property
    def reload_pending(self) -> bool:
        return self._debounce.pending

    async def load(self, query: AppointmentQuery) -> None:
        self.last_query = query
        await self._reload()

    def handle_change(self, event: ChangeEvent) -> None:
        if self.last_query is None:
            return
        self._debounce.trigger(get_debounce_seconds(event.type))

    async def _reload(self) -> None:
        query = self.last_query
        if query is None:
            return
        async with self._lock:
            rows = await self._load_appointments(query)
            blocks = await self._load_blocks(
                query.start.date() if query.start else None,
                query.end.date() if query.end else None,
                query.barber_id,
            )
            self.appointments = [serialize_appointment(a) for a in rows]
            self.blocks = [serialize_block(b) for b in blocks]
            self.reload_count += 1
        logger.debug(
            "Sync client %s reloaded: %d appointment(s), %d block(s)",
            self.client_id, len(self.appointments), len(self.blocks),
        )

    async def notify_local_change(self, **info: Any) -> None:
        """Tell peers this client just changed appointments."""
        payload = {"event": BROADCAST_EVENT, "sender": self.client_id}
        payload.update(info)
        try:
            await self.feed.publish(payload)
        except (OSError, asyncpg.PostgresError) as e:
            logger.warning("Broadcast failed: %s", e)

    async def flush(self) -> None:
        await self._debounce.flush()

    def close(self) -> None:
        self._debounce.cancel()


async def start_realtime_sync(client: SyncClient, feed: Optional[Any] = None) -> Callable[[], Awaitable[None]]:
    """Connect the feed, route its events to ``client`` and return an async stop()."""
    feed = feed or client.feed
    if not getattr(feed, "connected", False):
        await feed.connect()
    unsubscribe = feed.subscribe(client.handle_change)

    async def _stop() -> None:
        try:
            unsubscribe()
            client.close()
            await feed.close()
        except Exception:
            logger.exception("realtime: stop failed")

    logger.info("Realtime sync started for client %s", client.client_id)
    return _stop


__all__ = [
    "ChangeEvent",
    "PgChangeFeed",
    "SyncClient",
    "start_realtime_sync",
    "EVENT_BROADCAST",
]
