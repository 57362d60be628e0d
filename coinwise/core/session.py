"""
Session: the explicit "current user" context.

State machine, driven by identity events:

    [SIGNED_OUT] --identity--> [ESTABLISHING] --pulled/created--> [ACTIVE]
         ^                                                            |
         +---------------------- [CLOSING] <---- identity None / sign_out

While ACTIVE, every operation runs synchronously through the ledger and the
competition engine, and the resulting snapshot is pushed whenever it differs
by value from the previous one. Ledger errors propagate to the caller with
the current snapshot untouched; push failures never do (the outbox logs them).
"""

from __future__ import annotations

import asyncio
import logging
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Optional, Union

from coinwise.core.bus import Bus
from coinwise.core.clock import Clock
from coinwise.core.competition import CompetitionEngine
from coinwise.core.ledger import Number, PortfolioLedger, net_worth
from coinwise.errors.errors import SessionError
from coinwise.ports.identity_provider import IdentityProvider, Unsubscribe
from coinwise.sync.gateway import SyncGateway
from coinwise.types.topics import T_LOG, T_SESSION, T_USER_STATE
from coinwise.types.types import (
    EMPTY_SNAPSHOT,
    CompetitionPhase,
    Identity,
    LeaderboardEntry,
    LogEvent,
    MarketSnapshot,
    TradeSide,
    UserState,
)

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    SIGNED_OUT = "SIGNED_OUT"
    ESTABLISHING = "ESTABLISHING"
    ACTIVE = "ACTIVE"
    CLOSING = "CLOSING"


class Session:
    """
    Usage:
        session = Session(identity, gateway, ledger, engine, bus, clock)
        await session.attach()
        await session.sign_in("alice@example.com", "secret")
        await session.trade("BUY", "BTCUSDT", "0.1")
        await session.sign_out()
    """

    def __init__(
        self,
        identity: IdentityProvider,
        gateway: SyncGateway,
        ledger: PortfolioLedger,
        engine: CompetitionEngine,
        bus: Bus,
        clock: Clock,
        name: str = "session",
    ) -> None:
        self._identity = identity
        self._gateway = gateway
        self._ledger = ledger
        self._engine = engine
        self._bus = bus
        self._clock = clock
        self._name = name

        self._state = SessionState.SIGNED_OUT
        self._principal: Optional[Identity] = None
        self._user: Optional[UserState] = None
        self._snapshot: MarketSnapshot = EMPTY_SNAPSHOT

        self._auth_unsub: Optional[Unsubscribe] = None
        self._pool_unsub: Optional[Callable[[], None]] = None
        self._pending_names: dict[str, str] = {}
        self._lock = asyncio.Lock()

        self._teardowns = 0
        self._generation = 0
        self._last_error: Optional[str] = None

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
    def state(self) -> SessionState:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._state == SessionState.ACTIVE

    @property
    def identity(self) -> Optional[Identity]:
        return self._principal

    @property
    def user(self) -> Optional[UserState]:
        return self._user

    @property
    def snapshot(self) -> MarketSnapshot:
        return self._snapshot

    @property
    def teardown_count(self) -> int:
        return self._teardowns

    @property
    def last_error(self) -> Optional[str]:
        return self._last_error

    @property
    def pool(self) -> list[LeaderboardEntry]:
        return self._gateway.pool

    def net_worth(self) -> Decimal:
        return net_worth(self._require_active(), self._snapshot)

    def phase(self) -> CompetitionPhase:
        return self._engine.phase(self._require_active())

    # --- Identity wiring ---

    async def attach(self) -> None:
        """Start listening to identity changes (delivers the current one at once)."""
        if self._auth_unsub is not None:
            return
        self._auth_unsub = self._identity.on_auth_change(self._on_auth_change)

    async def detach(self) -> None:
        if self._auth_unsub is not None:
            self._auth_unsub()
            self._auth_unsub = None
        await self._teardown()

    async def sign_in(self, email: str, password: str) -> None:
        """Raises AuthFailure; the session follows through the identity event."""
        await self._identity.sign_in(email, password)

    async def sign_up(self, email: str, password: str, name: str) -> None:
        key = email.strip().lower()
        self._pending_names[key] = name
        try:
            await self._identity.sign_up(email, password)
        finally:
            self._pending_names.pop(key, None)

    async def sign_out(self) -> None:
        await self._identity.sign_out()
        # providers that do not echo the sign-out still end the session
        await self._teardown()

    async def _on_auth_change(self, principal: Optional[Identity]) -> None:
        if principal is None:
            await self._teardown()
            return
        try:
            await self.establish(principal)
        except Exception as e:
            self._last_error = str(e)
            logger.error(f"[{self._name}] failed to establish session: {e}")

    async def establish(self, principal: Identity) -> Optional[UserState]:
        """
        Load (or create) the user's state and attach the pool subscription.

        Returns None when a sign-out (or another identity) arrives while the
        pull or the subscription is in flight; the session then stays as the
        teardown left it.

        Raises:
            SyncFailure: if the user document cannot be read
        """
        if self._state == SessionState.ACTIVE and self._principal == principal and self._user:
            return self._user
        if self._state in (SessionState.ACTIVE, SessionState.ESTABLISHING):
            await self._teardown()

        async with self._lock:
            generation = self._generation
            await self._set_state(SessionState.ESTABLISHING)
            self._principal = principal
            try:
                user = await self._gateway.pull(principal)
            except Exception:
                if generation == self._generation:
                    self._principal = None
                    await self._set_state(SessionState.SIGNED_OUT)
                raise

            if generation != self._generation:
                logger.info(f"[{self._name}] sign-out during establish, dropping {principal.user_id}")
                return None

            if user is None:
                user = self._fresh_user(principal)
                logger.info(f"[{self._name}] created fresh state for {user.account_id}")
                self._gateway.push(principal, user, net_worth(user, self._snapshot))

            self._user = user
            self._pool_unsub = self._gateway.add_pool_listener(self._on_pool)
            await self._gateway.subscribe_pool(user.account_id)

            if generation != self._generation:
                # teardown ran while the subscription was attaching
                self._drop_pool_listener()
                await self._gateway.unsubscribe_pool()
                return None
            await self._set_state(SessionState.ACTIVE)

        await self._publish_user()
        await self._emit_log("INFO", "Session established", {"account_id": user.account_id})
        return user

    async def _teardown(self) -> None:
        if self._state in (SessionState.SIGNED_OUT, SessionState.CLOSING):
            return
        # an establish still in flight sees the bump and backs out
        self._generation += 1
        await self._set_state(SessionState.CLOSING)
        account_id = self._user.account_id if self._user else None

        self._drop_pool_listener()
        await self._gateway.unsubscribe_pool()

        self._user = None
        self._principal = None
        self._teardowns += 1
        await self._set_state(SessionState.SIGNED_OUT)
        await self._emit_log("INFO", "Session closed", {"account_id": account_id})

    def _drop_pool_listener(self) -> None:
        if self._pool_unsub is not None:
            self._pool_unsub()
            self._pool_unsub = None

    def _fresh_user(self, principal: Identity) -> UserState:
        account_id = principal.email or principal.user_id
        name = self._pending_names.get(account_id.lower()) or principal.display_name
        if not name:
            name = account_id.split("@", 1)[0]
        return self._ledger.new_user(account_id, name)

    # --- Operations ---

    async def trade(
        self,
        kind: Union[TradeSide, str],
        symbol: str,
        amount: Number,
        price: Optional[Number] = None,
    ) -> UserState:
        """Trade at `price`, or at the current snapshot price when omitted."""
        user = self._require_active()
        px = self._snapshot.price_of(symbol) if price is None else price
        return await self._commit(self._ledger.trade(user, kind, symbol, amount, px))

    async def deposit(self, amount: Number) -> UserState:
        user = self._require_active()
        return await self._commit(self._ledger.deposit(user, amount))

    async def enter_competition(self) -> UserState:
        user = self._require_active()
        new = self._engine.enter(user, self._snapshot)
        await self._emit_log(
            "INFO",
            "Entered competition",
            {"account_id": user.account_id, "fee": str(self._engine.config.entry_fee)},
        )
        return await self._commit(new)

    async def reset_competition(self) -> UserState:
        user = self._require_active()
        if user.is_competing:
            self._gateway.remove_entry(user.account_id)
        return await self._commit(self._engine.reset(user))

    async def on_prices(self, snapshot: MarketSnapshot) -> None:
        """Snapshot listener: store the prices and rescore while competing."""
        self._snapshot = snapshot
        if self._state != SessionState.ACTIVE or self._user is None:
            return
        await self._commit(self._user)

    async def _on_pool(self, entries: list[LeaderboardEntry]) -> None:
        if self._user is None or not self._user.is_competing:
            return
        rank = self._gateway.rank_of(self._user.account_id)
        if rank is None:
            return
        await self._commit(self._engine.set_rank(self._user, rank))

    # --- Helpers ---

    def _require_active(self) -> UserState:
        if self._state != SessionState.ACTIVE or self._user is None:
            raise SessionError(
                f"Operation requires an active session (state={self._state.value})",
                component=self._name,
            )
        return self._user

    async def _commit(self, new: UserState) -> UserState:
        """Rescore, swap in the new snapshot and push if it changed by value."""
        worth = net_worth(new, self._snapshot)
        new = self._engine.recompute_score(new, worth)
        if new == self._user:
            return new
        self._user = new
        if self._principal is not None:
            self._gateway.push(self._principal, new, worth)
        await self._publish_user()
        return new

    async def _set_state(self, new_state: SessionState) -> None:
        old_state = self._state
        self._state = new_state
        if old_state != new_state:
            logger.debug(f"[{self._name}] State: {old_state.value} -> {new_state.value}")
            await self._bus.publish(topic=T_SESSION, ts_utc=self._clock.now(), payload=new_state)

    async def _publish_user(self) -> None:
        if self._user is not None:
            await self._bus.publish(topic=T_USER_STATE, ts_utc=self._clock.now(), payload=self._user)
