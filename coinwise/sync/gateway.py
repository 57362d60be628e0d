"""
Sync Gateway.

Bridges local UserState snapshots and the remote store:
- pull:  users/{uid} -> UserState (tolerant decode)
- push:  UserState -> users/{uid}, plus competition/players/{key} while competing
- remove_entry: delete competition/players/{key}
- one standing subscription on the pool, fanned out to the bus and listeners

Writes go through the Outbox (coalesced, retried, never rolled back). Reads
are direct. Conflict policy is last write wins per document: whatever a push
sends replaces the remote document as a whole.
"""

from __future__ import annotations

import asyncio
import logging
from decimal import Decimal
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from coinwise.config.configs import PoolConfig, SyncConfig
from coinwise.core.bus import Bus
from coinwise.core.clock import Clock
from coinwise.core.competition import CompetitionEngine
from coinwise.errors.errors import SyncFailure
from coinwise.ports.pool_cache import PoolCache
from coinwise.ports.remote_store import RemoteStore, StoreSubscription
from coinwise.sync.codec import decode_user, encode_entry, encode_user, pool_key
from coinwise.sync.outbox import Outbox
from coinwise.sync.pool import PoolReadModel
from coinwise.types.aliases import AccountId
from coinwise.types.topics import T_LOG, T_POOL, T_SYNC
from coinwise.types.types import Identity, LeaderboardEntry, LogEvent, SyncStatus, UserState

logger = logging.getLogger(__name__)

PoolListener = Callable[[list[LeaderboardEntry]], Awaitable[None]]


class GatewayState(str, Enum):
    STOPPED = "STOPPED"
    RUNNING = "RUNNING"
    STOPPING = "STOPPING"


class SyncGateway:
    """
    Usage:
        gateway = SyncGateway(store, bus, clock)
        await gateway.start()
        state = await gateway.pull(identity)
        gateway.push(identity, state, net_worth)
        await gateway.subscribe_pool(state.account_id)
        ...
        await gateway.stop()
    """

    def __init__(
        self,
        store: RemoteStore,
        bus: Bus,
        clock: Clock,
        sync_cfg: Optional[SyncConfig] = None,
        pool_cfg: Optional[PoolConfig] = None,
        cache: Optional[PoolCache] = None,
        outbox: Optional[Outbox] = None,
        name: str = "sync_gateway",
    ) -> None:
        self._store = store
        self._bus = bus
        self._clock = clock
        self._cfg = sync_cfg or SyncConfig()
        self._name = name

        self._state = GatewayState.STOPPED
        self._outbox = outbox or Outbox(
            store,
            clock,
            self._cfg,
            on_status=self._publish_status,
            on_failure=self._on_write_failure,
        )
        self._pool = PoolReadModel(pool_cfg, cache)

        self._pool_sub: Optional[StoreSubscription] = None
        self._pool_lock = asyncio.Lock()
        self._pool_listeners: list[PoolListener] = []

        # stats
        self._pool_deliveries = 0
        self._pulls = 0
        self._pushes = 0

    # --- Bus-based logging for critical events ---

    async def _emit_log(
        self,
        level: str,
        msg: str,
        payload: Optional[dict[str, Any]] = None,
    ) -> None:
        ts_utc = self._clock.now()
        log_event = LogEvent(
            level=level,
            component=self._name,
            msg=msg,
            payload=payload or {},
            sim_time=ts_utc,
        )
        await self._bus.publish(topic=T_LOG, ts_utc=ts_utc, payload=log_event)

    # --- Properties ---

    @property
    def state(self) -> GatewayState:
        return self._state

    @property
    def outbox(self) -> Outbox:
        return self._outbox

    @property
    def is_dirty(self) -> bool:
        return self._outbox.is_dirty

    @property
    def is_subscribed(self) -> bool:
        return self._pool_sub is not None

    @property
    def pool(self) -> list[LeaderboardEntry]:
        return self._pool.entries

    def rank_of(self, account_id: AccountId) -> Optional[int]:
        return self._pool.rank_of(account_id)

    def sync_status(self) -> SyncStatus:
        return self._outbox.status()

    # --- Paths ---

    def user_path(self, identity: Identity) -> str:
        return f"{self._cfg.users_path}/{identity.user_id}"

    def entry_path(self, account_id: AccountId) -> str:
        return f"{self._cfg.pool_path}/{pool_key(account_id)}"

    # --- Lifecycle ---

    async def start(self) -> None:
        if self._state == GatewayState.RUNNING:
            logger.warning(f"[{self._name}] already running")
            return
        await self._outbox.start()
        self._state = GatewayState.RUNNING
        logger.info(f"[{self._name}] started")

    async def stop(self, *, flush_timeout_s: float = 5.0) -> None:
        if self._state == GatewayState.STOPPED:
            return
        self._state = GatewayState.STOPPING
        await self.unsubscribe_pool()
        await self._outbox.stop(flush=True, timeout_s=flush_timeout_s)
        self._state = GatewayState.STOPPED
        logger.info(
            f"[{self._name}] stopped (pulls={self._pulls}, pushes={self._pushes}, "
            f"pool_deliveries={self._pool_deliveries})"
        )

    async def wait_until_synced(self, timeout_s: Optional[float] = None) -> None:
        await self._outbox.wait_until_synced(timeout_s=timeout_s)

    # --- Documents ---

    async def pull(self, identity: Identity) -> Optional[UserState]:
        """
        Returns None when no document exists yet.

        Raises:
            SyncFailure: if the read fails or the document is malformed
        """
        path = self.user_path(identity)
        try:
            raw = await self._store.get(path)
        except asyncio.CancelledError:
            raise
        except SyncFailure:
            raise
        except Exception as e:
            raise SyncFailure(f"Failed to read user document: {e}", path=path) from e

        self._pulls += 1
        if raw is None:
            logger.info(f"[{self._name}] no remote document at {path}")
            return None
        return decode_user(raw, path=path)

    def push(self, identity: Identity, state: UserState, net_worth: Decimal) -> None:
        """
        Queue the full user document and, while competing, the leaderboard entry.
        `net_worth` is the valuation used as the entry's value.
        """
        self._outbox.enqueue_set(self.user_path(identity), encode_user(state))
        if state.is_competing:
            entry = CompetitionEngine.project_leaderboard_entry(state, net_worth)
            self._outbox.enqueue_set(self.entry_path(state.account_id), encode_entry(entry))
        self._pushes += 1

    def remove_entry(self, account_id: AccountId) -> None:
        self._outbox.enqueue_delete(self.entry_path(account_id))

    # --- Pool subscription ---

    def add_pool_listener(self, listener: PoolListener) -> Callable[[], None]:
        self._pool_listeners.append(listener)

        def _remove() -> None:
            if listener in self._pool_listeners:
                self._pool_listeners.remove(listener)

        return _remove

    async def subscribe_pool(self, own_account_id: Optional[AccountId] = None) -> bool:
        """
        Attach the standing pool subscription. Returns False (no-op) when one is
        already attached.
        """
        async with self._pool_lock:
            if self._pool_sub is not None:
                logger.debug(f"[{self._name}] pool already subscribed")
                return False
            self._pool.set_owner(own_account_id)
            cached = self._pool.load_cached()
            if cached:
                await self._fan_out(cached)
            self._pool_sub = await self._store.subscribe(self._cfg.pool_path, self._on_pool_value)
        await self._emit_log("INFO", "Pool subscription attached", {"path": self._cfg.pool_path})
        return True

    async def unsubscribe_pool(self) -> bool:
        async with self._pool_lock:
            sub, self._pool_sub = self._pool_sub, None
            if sub is None:
                return False
            try:
                await sub.close()
            except Exception as e:
                logger.warning(f"[{self._name}] closing pool subscription failed: {e}")
            self._pool.clear()
        await self._emit_log("INFO", "Pool subscription detached", {"path": self._cfg.pool_path})
        return True

    async def _on_pool_value(self, raw: Optional[Any]) -> None:
        self._pool_deliveries += 1
        entries = self._pool.apply(raw)
        await self._fan_out(entries)

    async def _fan_out(self, entries: list[LeaderboardEntry]) -> None:
        await self._bus.publish(topic=T_POOL, ts_utc=self._clock.now(), payload=entries)
        for listener in list(self._pool_listeners):
            try:
                await listener(entries)
            except Exception as e:
                logger.error(f"[{self._name}] pool listener failed: {e!r}")

    # --- Outbox callbacks ---

    async def _publish_status(self, status: SyncStatus) -> None:
        await self._bus.publish(topic=T_SYNC, ts_utc=self._clock.now(), payload=status)

    async def _on_write_failure(self, failure: SyncFailure) -> None:
        await self._emit_log("ERROR", str(failure), dict(failure.details))
