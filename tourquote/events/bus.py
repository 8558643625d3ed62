"""In-process session event bus with backlog replay.

Each session has its own channel: a lock, a bounded backlog of recent events
and a set of live subscriptions. Events are always appended to the backlog so
a reconnecting subscriber can replay what it missed; backlog entries expire
after a fixed TTL and are purged by a periodic sweep, together with closed
subscriptions.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections import deque
from collections.abc import AsyncIterator, Callable
from datetime import datetime, timedelta, timezone
from typing import Any

import structlog

from tourquote.config import get_config
from tourquote.models import BusEvent, new_item_id

logger = structlog.get_logger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Subscription:
    """One live output channel for a session (e.g. a browser tab)."""

    def __init__(self, session_id: str) -> None:
        self.id = new_item_id()
        self.session_id = session_id
        self.queue: asyncio.Queue[BusEvent | None] = asyncio.Queue()
        self.closed = False

    def deliver(self, event: BusEvent) -> bool:
        if self.closed:
            return False
        self.queue.put_nowait(event)
        return True

    def close(self) -> None:
        """Mark closed and wake any waiting reader."""
        if not self.closed:
            self.closed = True
            self.queue.put_nowait(None)

    async def get(self, timeout: float | None = None) -> BusEvent | None:
        """Next event, or None when closed or ``timeout`` elapses."""
        if self.closed and self.queue.empty():
            return None
        try:
            if timeout is None:
                return await self.queue.get()
            return await asyncio.wait_for(self.queue.get(), timeout)
        except asyncio.TimeoutError:
            return None

    async def __aiter__(self) -> AsyncIterator[BusEvent]:
        while True:
            event = await self.get()
            if event is None:
                return
            yield event


class SessionChannel:
    """Per-session state: backlog ring buffer plus live subscriptions."""

    def __init__(self, backlog_size: int) -> None:
        self.lock = asyncio.Lock()
        self.backlog: deque[BusEvent] = deque(maxlen=backlog_size)
        self.subscriptions: dict[str, Subscription] = {}

    @property
    def idle(self) -> bool:
        return not self.backlog and not self.subscriptions


class SessionBus:
    """Registry of session channels keyed by session id."""

    def __init__(
        self,
        backlog_size: int = 50,
        backlog_ttl_seconds: float = 300.0,
        sweep_interval_seconds: float = 300.0,
        clock: Clock = utcnow,
    ) -> None:
        if backlog_size < 1:
            raise ValueError("backlog_size must be positive")
        self.backlog_size = backlog_size
        self.backlog_ttl = timedelta(seconds=backlog_ttl_seconds)
        self.sweep_interval = sweep_interval_seconds
        self.clock = clock
        self._channels: dict[str, SessionChannel] = {}
        self._sweeper: asyncio.Task | None = None

    def _channel(self, session_id: str) -> SessionChannel:
        channel = self._channels.get(session_id)
        if channel is None:
            channel = self._channels[session_id] = SessionChannel(self.backlog_size)
        return channel

    async def publish(
        self, session_id: str, event_type: str, payload: dict[str, Any] | None = None
    ) -> BusEvent:
        """Append an event to the session backlog and deliver it to live subscribers.

        Publishing to a session without subscribers is not an error.
        """
        event = BusEvent(type=event_type, payload=payload or {}, created_at=self.clock())
        channel = self._channel(session_id)
        async with channel.lock:
            channel.backlog.append(event)
            delivered = 0
            for sub_id, subscription in list(channel.subscriptions.items()):
                if subscription.deliver(event):
                    delivered += 1
                else:
                    del channel.subscriptions[sub_id]

        if delivered:
            logger.debug(
                "bus_event_delivered",
                session_id=session_id,
                type=event_type,
                subscribers=delivered,
            )
        else:
            logger.debug("bus_event_queued", session_id=session_id, type=event_type)
        return event

    async def subscribe(self, session_id: str) -> Subscription:
        subscription = Subscription(session_id)
        channel = self._channel(session_id)
        async with channel.lock:
            channel.subscriptions[subscription.id] = subscription
        logger.info("bus_subscribed", session_id=session_id, subscription_id=subscription.id)
        return subscription

    async def unsubscribe(self, subscription: Subscription) -> None:
        """Close and remove one subscription; siblings are untouched."""
        subscription.close()
        channel = self._channels.get(subscription.session_id)
        if channel is None:
            return
        async with channel.lock:
            channel.subscriptions.pop(subscription.id, None)
        logger.info(
            "bus_unsubscribed",
            session_id=subscription.session_id,
            subscription_id=subscription.id,
        )

    async def replay_since(self, session_id: str, since: datetime) -> list[BusEvent]:
        """Unexpired backlog events created strictly after ``since``, oldest first."""
        channel = self._channels.get(session_id)
        if channel is None:
            return []
        if since.tzinfo is None:
            since = since.replace(tzinfo=timezone.utc)
        cutoff = self.clock() - self.backlog_ttl
        async with channel.lock:
            return [e for e in channel.backlog if e.created_at > since and e.created_at >= cutoff]

    async def sweep(self) -> dict[str, int]:
        """Purge expired backlog entries, closed subscriptions and idle channels."""
        cutoff = self.clock() - self.backlog_ttl
        expired = 0
        closed = 0
        for session_id, channel in list(self._channels.items()):
            async with channel.lock:
                while channel.backlog and channel.backlog[0].created_at < cutoff:
                    channel.backlog.popleft()
                    expired += 1
                for sub_id, subscription in list(channel.subscriptions.items()):
                    if subscription.closed:
                        del channel.subscriptions[sub_id]
                        closed += 1
                if channel.idle and self._channels.get(session_id) is channel:
                    del self._channels[session_id]

        if expired or closed:
            logger.info("bus_swept", expired_events=expired, closed_subscriptions=closed)
        return {"expired_events": expired, "closed_subscriptions": closed}

    async def close_session(self, session_id: str) -> None:
        """Close every subscription of a session and drop its backlog."""
        channel = self._channels.pop(session_id, None)
        if channel is None:
            return
        async with channel.lock:
            for subscription in channel.subscriptions.values():
                subscription.close()
            channel.subscriptions.clear()
            channel.backlog.clear()

    def subscriber_count(self, session_id: str) -> int:
        channel = self._channels.get(session_id)
        if channel is None:
            return 0
        return sum(1 for s in channel.subscriptions.values() if not s.closed)

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            try:
                await self.sweep()
            except Exception as e:
                logger.error("bus_sweep_failed", error=str(e))

    def start(self) -> None:
        """Start the periodic sweep task (idempotent)."""
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.get_running_loop().create_task(self._sweep_loop())

    async def stop(self) -> None:
        """Cancel the sweep task and close every session so open streams end."""
        if self._sweeper is not None:
            self._sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sweeper
            self._sweeper = None
        for session_id in list(self._channels):
            await self.close_session(session_id)


_bus: SessionBus | None = None


def get_bus() -> SessionBus:
    """Process-wide session bus configured from AppConfig."""
    global _bus
    if _bus is None:
        bus_config = get_config().bus
        _bus = SessionBus(
            backlog_size=bus_config.backlog_size,
            backlog_ttl_seconds=bus_config.backlog_ttl_seconds,
            sweep_interval_seconds=bus_config.sweep_interval_seconds,
        )
    return _bus
