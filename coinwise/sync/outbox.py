"""
Outbox for remote writes.

Local state changes are applied first and pushed later. The outbox:
- keeps at most one pending write per path (a newer value replaces the queued one)
- flushes in FIFO order from a background worker
- retries failed writes with exponential backoff and jitter
- drops a write after `max_attempts` failures (logged as SyncFailure); the
  local snapshot is never rolled back
- exposes `is_dirty` / `wait_until_synced()` so callers can assert convergence
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from coinwise.config.configs import SyncConfig
from coinwise.core.clock import Clock
from coinwise.errors.errors import SyncFailure
from coinwise.ports.remote_store import RemoteStore
from coinwise.types.types import SyncStatus

logger = logging.getLogger(__name__)


@dataclass
class PendingWrite:
    path: str
    value: Optional[Any]  # None means delete
    enqueued_at: int
    attempts: int = 0

    @property
    def is_delete(self) -> bool:
        return self.value is None


class Outbox:
    def __init__(
        self,
        store: RemoteStore,
        clock: Clock,
        cfg: Optional[SyncConfig] = None,
        on_status: Optional[Callable[[SyncStatus], Awaitable[None]]] = None,
        on_failure: Optional[Callable[[SyncFailure], Awaitable[None]]] = None,
        rng: Optional[random.Random] = None,
        name: str = "outbox",
    ) -> None:
        self._store = store
        self._clock = clock
        self._cfg = cfg or SyncConfig()
        self._on_status = on_status
        self._on_failure = on_failure
        self._rng = rng or random.Random()
        self._name = name

        self._pending: OrderedDict[str, PendingWrite] = OrderedDict()
        self._in_flight: Optional[str] = None

        self._worker: Optional[asyncio.Task[None]] = None
        self._wakeup = asyncio.Event()
        self._synced = asyncio.Event()
        self._synced.set()
        self._drain_lock = asyncio.Lock()

        # stats
        self._writes_ok = 0
        self._failures = 0
        self._last_error: Optional[str] = None

    # --- Properties ---

    @property
    def is_dirty(self) -> bool:
        return bool(self._pending) or self._in_flight is not None

    @property
    def is_running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def pending_paths(self) -> list[str]:
        return list(self._pending)

    def status(self) -> SyncStatus:
        return SyncStatus(
            dirty=self.is_dirty,
            pending=len(self._pending),
            in_flight=self._in_flight,
            last_error=self._last_error,
            failures=self._failures,
            details={"writes_ok": self._writes_ok},
        )

    # --- Enqueue ---

    def enqueue_set(self, path: str, value: Any) -> None:
        if value is None:
            raise ValueError("enqueue_set() needs a value; use enqueue_delete()")
        self._enqueue(PendingWrite(path=path, value=value, enqueued_at=self._clock.now()))

    def enqueue_delete(self, path: str) -> None:
        self._enqueue(PendingWrite(path=path, value=None, enqueued_at=self._clock.now()))

    def _enqueue(self, write: PendingWrite) -> None:
        if write.path in self._pending:
            logger.debug(f"[{self._name}] coalescing write to {write.path}")
            del self._pending[write.path]
        self._pending[write.path] = write
        self._synced.clear()
        self._wakeup.set()

    # --- Lifecycle ---

    async def start(self) -> None:
        if self.is_running:
            logger.warning(f"[{self._name}] already running")
            return
        self._worker = asyncio.create_task(self._run(), name=f"{self._name}_worker")
        if self._pending:
            self._wakeup.set()

    async def stop(self, *, flush: bool = True, timeout_s: float = 5.0) -> None:
        if flush and self.is_dirty:
            try:
                await self.wait_until_synced(timeout_s=timeout_s)
            except asyncio.TimeoutError:
                logger.warning(
                    f"[{self._name}] stopping with {len(self._pending)} unsynced write(s)"
                )
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None

    async def flush(self) -> None:
        """Drain everything now, in the caller's task."""
        await self._drain()

    async def wait_until_synced(self, timeout_s: Optional[float] = None) -> None:
        if not self.is_running:
            await self._drain()
            return
        await asyncio.wait_for(self._synced.wait(), timeout=timeout_s)

    # --- Worker ---

    async def _run(self) -> None:
        try:
            while True:
                await self._wakeup.wait()
                self._wakeup.clear()
                await self._drain()
        except asyncio.CancelledError:
            logger.debug(f"[{self._name}] worker cancelled")
            raise

    async def _drain(self) -> None:
        async with self._drain_lock:
            while self._pending:
                path, write = next(iter(self._pending.items()))
                self._in_flight = path
                ok = await self._attempt(write)
                self._in_flight = None
                current = self._pending.get(path)

                if ok:
                    self._writes_ok += 1
                    if current is write:
                        del self._pending[path]
                    continue

                if current is not write:
                    # superseded while in flight; the newer value goes next
                    continue

                write.attempts += 1
                if write.attempts >= self._cfg.max_attempts:
                    del self._pending[path]
                    self._failures += 1
                    failure = SyncFailure(
                        f"Giving up on remote write after {write.attempts} attempts",
                        path=path,
                        attempts=write.attempts,
                        details={"last_error": self._last_error},
                    )
                    logger.error(f"[{self._name}] {failure}")
                    if self._on_failure:
                        try:
                            await self._on_failure(failure)
                        except Exception as e:
                            logger.warning(f"[{self._name}] failure callback error: {e}")
                    continue

                delay = self._backoff_delay_s(write.attempts)
                logger.warning(
                    f"[{self._name}] write to {path} failed (attempt {write.attempts}), "
                    f"retrying in {delay:.2f}s: {self._last_error}"
                )
                await self._notify()
                await self._clock.sleep_for(int(delay * 1000))

            self._synced.set()
            await self._notify()

    async def _attempt(self, write: PendingWrite) -> bool:
        try:
            if write.is_delete:
                await self._store.delete(write.path)
            else:
                await self._store.set(write.path, write.value)
            return True
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._last_error = f"{type(e).__name__}: {e}"
            return False

    def _backoff_delay_s(self, attempt: int) -> float:
        """Exponential backoff delay with jitter."""
        delay = self._cfg.base_retry_delay_s * (2 ** (attempt - 1))
        delay = min(delay, self._cfg.max_retry_delay_s)

        jitter_range = delay * self._cfg.retry_jitter
        delay += self._rng.uniform(-jitter_range, jitter_range)

        return float(max(0.0, delay))

    async def _notify(self) -> None:
        if self._on_status is None:
            return
        try:
            await self._on_status(self.status())
        except Exception as e:
            logger.warning(f"[{self._name}] status callback error: {e}")
