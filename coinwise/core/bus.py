from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, Optional

from coinwise.core.clock import Millis
from coinwise.errors.errors import CoinwiseError
from coinwise.types.topics import ALL_TOPICS

logger = logging.getLogger(__name__)

Handler = Callable[["Envelope"], Awaitable[None]]


class BusError(CoinwiseError):
    "Error in connection with the bus"


# --- Data structures ---


@dataclass(frozen=True)
class Envelope:
    """Immutable message envelope delivered to subscribers."""

    topic: str
    seq: int  # per topic, strictly increasing
    ts: Millis
    payload: Any


class _BusState(str, Enum):
    RUNNING = "RUNNING"
    CLOSED = "CLOSED"


@dataclass
class _TopicState:
    name: str
    subscribers: dict[str, "Subscription"] = field(default_factory=dict)
    high_seq: int = 0
    pub_count: int = 0
    last_publish_utc: Optional[Millis] = None


@dataclass
class TopicStats:
    name: str
    high_seq: int
    subscribers: int
    publish_count: int
    last_publish_utc: Optional[Millis]


class Subscription:
    """Handle returned by Bus.subscribe(); close() detaches it (idempotent)."""

    def __init__(self, bus: "Bus", name: str, topic: str, handler: Handler) -> None:
        self.bus = bus
        self.name = name
        self.topic = topic
        self.handler = handler
        self.delivered = 0
        self.errors = 0
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.bus._detach(self)


class Bus:
    """
    In-process publish/subscribe bus.

    - Topics must be registered before use (the standard set is registered on init).
    - Every publish gets a per-topic sequence number.
    - Handlers run in subscriber-name order, awaited inline; a failing handler is
      logged and counted and never breaks delivery to the others.
    """

    def __init__(self, topics: Iterable[str] = ALL_TOPICS) -> None:
        self._state = _BusState.RUNNING
        self._topics: dict[str, _TopicState] = {t: _TopicState(name=t) for t in topics}
        self._lock = asyncio.Lock()

    # --- Topic Management ---

    def register_topic(self, name: str) -> None:
        if name not in self._topics:
            self._topics[name] = _TopicState(name=name)

    def topic_stats(self, topic: str) -> TopicStats:
        ts = self._topics[topic]
        return TopicStats(
            name=ts.name,
            high_seq=ts.high_seq,
            subscribers=len(ts.subscribers),
            publish_count=ts.pub_count,
            last_publish_utc=ts.last_publish_utc,
        )

    # --- subscriptions ---

    def subscribe(self, topic: str, handler: Handler, *, name: str) -> Subscription:
        if self._state != _BusState.RUNNING:
            raise BusError("Cannot subscribe: bus is closed", component="bus")
        ts = self._topics.get(topic)
        if ts is None:
            raise BusError(f"Topic {topic!r} not registered", component="bus")
        if name in ts.subscribers:
            raise BusError(
                f"Subscriber {name!r} already attached to {topic!r}",
                component="bus",
            )
        sub = Subscription(self, name, topic, handler)
        ts.subscribers[name] = sub
        logger.debug(f"[bus] subscriber {name} attached to {topic}")
        return sub

    def _detach(self, sub: Subscription) -> None:
        ts = self._topics.get(sub.topic)
        if ts is not None and ts.subscribers.get(sub.name) is sub:
            del ts.subscribers[sub.name]
            logger.debug(f"[bus] subscriber {sub.name} detached from {sub.topic}")

    # --- publish ---

    async def publish(self, topic: str, ts_utc: Millis, payload: Any) -> int:
        """Fan-out to all subscribers of topic. Returns the sequence number."""
        if self._state != _BusState.RUNNING:
            raise BusError("Cannot publish: bus is closed", component="bus")
        if not isinstance(ts_utc, int):
            raise BusError(f"ts_utc is of type {type(ts_utc)}", component="bus")

        async with self._lock:
            tstate = self._topics.get(topic)
            if tstate is None:
                raise BusError(f"Publish: Topic {topic} unknown", component="bus")
            tstate.high_seq += 1
            tstate.pub_count += 1
            tstate.last_publish_utc = ts_utc
            seq = tstate.high_seq
            subscribers = [tstate.subscribers[n] for n in sorted(tstate.subscribers)]

        env = Envelope(topic=topic, seq=seq, ts=ts_utc, payload=payload)
        for sub in subscribers:
            if sub.closed:
                continue
            try:
                await sub.handler(env)
                sub.delivered += 1
            except Exception as e:
                sub.errors += 1
                logger.error(f"[bus] handler {sub.name} failed on {topic}#{seq}: {e!r}")
        return seq

    async def close(self) -> None:
        self._state = _BusState.CLOSED
        for ts in self._topics.values():
            ts.subscribers.clear()
