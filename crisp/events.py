"""
Per-session progress events and the broadcast stream that carries them.

Every session owns one EventStream. Producers call ``publish`` which never
blocks: each attached subscriber has its own unbounded queue. Events that
arrive while nobody is attached wait in a bounded backlog (oldest dropped
first) and are handed to the next subscriber to attach. Late subscribers do
not see events that were already delivered to someone else; the status and
result queries exist to recover that state.
"""

from __future__ import annotations

import asyncio
import json
import logging
import threading
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any
from uuid import UUID, uuid4

logger = logging.getLogger(__name__)

EventHandler = Callable[["AgentEvent"], Awaitable[None] | None]


class EventKind(StrEnum):
    AGENT_MESSAGE = "agent_message"
    PLAN_READY = "plan_ready"
    STEP_STARTED = "step_started"
    DELIVERY_READY = "delivery_ready"
    ERROR = "error"


@dataclass
class AgentEvent:
    """A timestamped, kind-tagged progress event."""

    kind: EventKind
    data: dict[str, Any] = field(default_factory=dict)
    session_id: str | None = None
    id: UUID = field(default_factory=uuid4)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "kind": self.kind.value,
            "session_id": self.session_id,
            "timestamp": self.timestamp.isoformat(),
            **self.data,
        }

    def format_sse(self) -> str:
        """Server-Sent Events framing."""
        return f"event: {self.kind.value}\ndata: {json.dumps(self.to_dict(), default=str)}\n\n"


def agent_message(message_id: str, content: str) -> AgentEvent:
    return AgentEvent(
        kind=EventKind.AGENT_MESSAGE,
        data={"message_id": message_id, "content": content},
    )


def plan_ready(plan: dict[str, Any]) -> AgentEvent:
    return AgentEvent(kind=EventKind.PLAN_READY, data={"plan": plan})


def step_started(step_number: int, description: str) -> AgentEvent:
    return AgentEvent(
        kind=EventKind.STEP_STARTED,
        data={"step_number": step_number, "description": description},
    )


def delivery_ready(delivery_card: dict[str, Any]) -> AgentEvent:
    return AgentEvent(kind=EventKind.DELIVERY_READY, data={"delivery_card": delivery_card})


def error(message: str) -> AgentEvent:
    return AgentEvent(kind=EventKind.ERROR, data={"message": message})


_CLOSED = object()


class EventSubscription:
    """One consumer's view of a stream. Async-iterable until closed."""

    def __init__(self, stream: EventStream) -> None:
        self._stream = stream
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._closed = False

    def _deliver(self, item: Any) -> None:
        self._queue.put_nowait(item)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def __aiter__(self) -> EventSubscription:
        return self

    async def __anext__(self) -> AgentEvent:
        if self._closed and self._queue.empty():
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            self._closed = True
            raise StopAsyncIteration
        return item

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._stream._detach(self)
            self._queue.put_nowait(_CLOSED)

    async def __aenter__(self) -> EventSubscription:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.close()


class EventStream:
    """Multi-producer, multi-consumer broadcast channel scoped to one session."""

    def __init__(self, session_id: str | None = None, *, backlog_limit: int = 1000) -> None:
        self.session_id = session_id
        self._lock = threading.Lock()
        self._subscribers: list[EventSubscription] = []
        self._backlog: deque[AgentEvent] = deque(maxlen=backlog_limit)
        self._handlers: list[EventHandler] = []
        self._tasks: set[asyncio.Task[None]] = set()
        self._dropped = 0

    def on_event(self, handler: EventHandler) -> None:
        """Register a side-channel handler (persistence, relays) called for every event."""
        self._handlers.append(handler)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    @property
    def backlog_size(self) -> int:
        with self._lock:
            return len(self._backlog)

    @property
    def dropped(self) -> int:
        return self._dropped

    def publish(self, event: AgentEvent) -> AgentEvent:
        if event.session_id is None:
            event.session_id = self.session_id

        with self._lock:
            if self._subscribers:
                for subscriber in self._subscribers:
                    subscriber._deliver(event)
            else:
                if len(self._backlog) == self._backlog.maxlen:
                    self._dropped += 1
                self._backlog.append(event)

        self._dispatch(event)
        return event

    def subscribe(self) -> EventSubscription:
        subscription = EventSubscription(self)
        with self._lock:
            if not self._subscribers:
                while self._backlog:
                    subscription._deliver(self._backlog.popleft())
            self._subscribers.append(subscription)
        return subscription

    def close(self) -> None:
        """End every attached subscription."""
        with self._lock:
            subscribers = list(self._subscribers)
        for subscriber in subscribers:
            subscriber.close()

    def _detach(self, subscription: EventSubscription) -> None:
        with self._lock:
            if subscription in self._subscribers:
                self._subscribers.remove(subscription)

    def _dispatch(self, event: AgentEvent) -> None:
        for handler in self._handlers:
            try:
                result = handler(event)
            except Exception:
                logger.exception("Event handler failed for %s", event.kind.value)
                continue
            if result is None or not hasattr(result, "__await__"):
                continue
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                logger.warning("No running loop; dropping async handler for %s", event.kind.value)
                result.close()  # type: ignore[union-attr]
                continue
            task = loop.create_task(self._await_handler(result, event))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    @staticmethod
    async def _await_handler(result: Awaitable[None], event: AgentEvent) -> None:
        try:
            await result
        except Exception:
            logger.exception("Async event handler failed for %s", event.kind.value)


async def redis_relay_handler(event: AgentEvent) -> None:
    """Handler that publishes events to Redis Pub/Sub for out-of-process observers."""
    if not event.session_id:
        return

    try:
        from .redis_client import get_redis_client

        redis = get_redis_client()
        channel = f"channel:session:{event.session_id}"
        await redis.publish(channel, json.dumps(event.to_dict(), default=str))
    except Exception as exc:
        logger.warning("Redis publish failed for session %s: %s", event.session_id, exc)
