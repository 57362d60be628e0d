"""
Price poller.

Fetches the configured symbols every `poll_interval_s` and replaces the
market snapshot wholesale. An empty or failed fetch keeps the previous
snapshot, so valuations never drop to the zero fallback because of one bad
poll.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from coinwise.config.configs import PriceFeedConfig
from coinwise.core.bus import Bus
from coinwise.core.clock import Clock
from coinwise.ports.price_feed import PriceFeed
from coinwise.types.topics import T_PRICES
from coinwise.types.types import EMPTY_SNAPSHOT, MarketSnapshot

logger = logging.getLogger(__name__)

SnapshotListener = Callable[[MarketSnapshot], Awaitable[None]]


class PricePoller:
    def __init__(
        self,
        feed: PriceFeed,
        bus: Bus,
        clock: Clock,
        cfg: Optional[PriceFeedConfig] = None,
        name: str = "price_poller",
    ) -> None:
        self._feed = feed
        self._bus = bus
        self._clock = clock
        self._cfg = cfg or PriceFeedConfig()
        self._name = name

        self._snapshot: MarketSnapshot = EMPTY_SNAPSHOT
        self._listeners: list[SnapshotListener] = []

        self._task: Optional[asyncio.Task[None]] = None
        self._shutdown_event = asyncio.Event()

        # stats
        self._polls = 0
        self._failures = 0
        self._last_error: Optional[str] = None

    @property
    def snapshot(self) -> MarketSnapshot:
        return self._snapshot

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def failures(self) -> int:
        return self._failures

    def add_listener(self, listener: SnapshotListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    async def start(self) -> None:
        if self._task is not None:
            logger.warning(f"[{self._name}] already running")
            return
        self._shutdown_event.clear()
        self._task = asyncio.create_task(self._poll_loop(), name=self._name)
        logger.info(
            f"[{self._name}] started: {len(self._cfg.symbols)} symbols "
            f"every {self._cfg.poll_interval_s}s"
        )

    async def stop(self) -> None:
        self._shutdown_event.set()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info(f"[{self._name}] stopped after {self._polls} polls ({self._failures} failed)")

    async def _poll_loop(self) -> None:
        try:
            while not self._shutdown_event.is_set():
                await self.poll_once()
                await self._clock.sleep_for(int(self._cfg.poll_interval_s * 1000))
        except asyncio.CancelledError:
            logger.debug(f"[{self._name}] poll loop cancelled")
            raise

    async def poll_once(self) -> MarketSnapshot:
        """Fetch once. Returns the snapshot in effect afterwards."""
        self._polls += 1
        try:
            quotes = await self._feed.fetch_prices(self._cfg.symbols)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._failures += 1
            self._last_error = str(e)
            logger.warning(f"[{self._name}] fetch failed, keeping previous snapshot: {e}")
            return self._snapshot

        if not quotes:
            logger.warning(f"[{self._name}] empty price list, keeping previous snapshot")
            return self._snapshot

        self._snapshot = MarketSnapshot(quotes=tuple(quotes), fetched_at=self._clock.now())
        await self._bus.publish(topic=T_PRICES, ts_utc=self._snapshot.fetched_at, payload=self._snapshot)
        for listener in list(self._listeners):
            try:
                await listener(self._snapshot)
            except Exception as e:
                logger.error(f"[{self._name}] snapshot listener failed: {e!r}")
        return self._snapshot
