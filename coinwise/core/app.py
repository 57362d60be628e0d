"""
Composition root: wires the ledger, competition engine, sync gateway, price
poller and session around one bus and one clock.

    app = CoinwiseApp.build(cfg, store=..., identity=..., feed=...)
    await app.start()
    await app.session.sign_in(email, password)
    ...
    await app.stop()
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

import aiohttp

from coinwise.adapters.binance import BinancePriceFeed
from coinwise.adapters.firebase import FirebaseRealtimeStore
from coinwise.adapters.firebase_auth import FirebaseIdentityProvider
from coinwise.adapters.pool_cache import FilePoolCache
from coinwise.config.configs import AppConfig
from coinwise.core.bus import Bus, Envelope, Subscription
from coinwise.core.clock import Clock, RealtimeClock
from coinwise.core.competition import CompetitionEngine
from coinwise.core.ledger import PortfolioLedger
from coinwise.core.session import Session
from coinwise.feed.poller import PricePoller
from coinwise.ports.identity_provider import IdentityProvider
from coinwise.ports.pool_cache import PoolCache
from coinwise.ports.price_feed import PriceFeed
from coinwise.ports.remote_store import RemoteStore
from coinwise.ports.secrets_provider import SecretsProvider
from coinwise.ports.telemetry import Telemetry
from coinwise.sync.gateway import SyncGateway
from coinwise.types.topics import T_LOG
from coinwise.types.types import LOG_LEVELS, LogEvent
from coinwise.utils.utility import make_serializable

logger = logging.getLogger(__name__)


def attach_telemetry(bus: Bus, telemetry: Telemetry, min_level: str = "INFO") -> Subscription:
    """Forward LogEvents at or above `min_level` from the bus into telemetry."""
    threshold = LOG_LEVELS.get(min_level.upper(), 20)

    async def _forward(env: Envelope) -> None:
        ev = env.payload
        if not isinstance(ev, LogEvent) or LOG_LEVELS.get(ev.level, 0) < threshold:
            return
        telemetry.log(
            "log_event",
            level=ev.level,
            component=ev.component,
            msg=ev.msg,
            payload=make_serializable(ev.payload),
            sim_time=ev.sim_time,
        )

    return bus.subscribe(T_LOG, _forward, name="telemetry")


@dataclass
class CoinwiseApp:
    cfg: AppConfig
    bus: Bus
    clock: Clock
    ledger: PortfolioLedger
    engine: CompetitionEngine
    gateway: SyncGateway
    poller: PricePoller
    session: Session
    _detach: list[Callable[[], None]] = field(default_factory=list)
    _owned_closers: list[Callable[[], Awaitable[Any]]] = field(default_factory=list)

    @classmethod
    def build(
        cls,
        cfg: AppConfig,
        *,
        store: RemoteStore,
        identity: IdentityProvider,
        feed: PriceFeed,
        clock: Optional[Clock] = None,
        bus: Optional[Bus] = None,
        cache: Optional[PoolCache] = None,
    ) -> "CoinwiseApp":
        clock = clock or RealtimeClock()
        bus = bus or Bus()
        if cache is None and cfg.pool.cache_path is not None:
            cache = FilePoolCache(cfg.pool.cache_path)

        ledger = PortfolioLedger(clock, cfg.ledger)
        engine = CompetitionEngine(ledger, clock, cfg.competition)
        gateway = SyncGateway(store, bus, clock, cfg.sync, cfg.pool, cache)
        poller = PricePoller(feed, bus, clock, cfg.prices)
        session = Session(identity, gateway, ledger, engine, bus, clock)
        return cls(
            cfg=cfg,
            bus=bus,
            clock=clock,
            ledger=ledger,
            engine=engine,
            gateway=gateway,
            poller=poller,
            session=session,
        )

    @classmethod
    def build_hosted(
        cls,
        cfg: AppConfig,
        secrets: SecretsProvider,
        *,
        http_session: Optional[aiohttp.ClientSession] = None,
        clock: Optional[Clock] = None,
        bus: Optional[Bus] = None,
    ) -> "CoinwiseApp":
        """
        Realtime database, identity toolkit and ticker adapters. The signed-in
        user's idToken becomes the database credential; on sign-out the store
        falls back to the static database token, if one is configured.
        """
        db_token = secrets.get_optional("firebase_db_token")
        store = FirebaseRealtimeStore(cfg.firebase, auth_token=db_token, session=http_session)

        def _use_token(token: Optional[str]) -> None:
            store.set_auth_token(token or db_token)

        identity = FirebaseIdentityProvider(
            cfg.firebase,
            secrets.get("firebase_api_key"),
            session=http_session,
            on_token=_use_token,
        )
        feed = BinancePriceFeed(cfg.prices)
        app = cls.build(cfg, store=store, identity=identity, feed=feed, clock=clock, bus=bus)
        app._owned_closers.extend([identity.close, store.close, feed.close])
        return app

    async def start(self, *, poll: bool = True) -> None:
        await self.gateway.start()
        self._detach.append(self.poller.add_listener(self.session.on_prices))
        # first snapshot before any user operation
        await self.poller.poll_once()
        if poll:
            await self.poller.start()
        await self.session.attach()
        logger.info("[app] started")

    async def stop(self) -> None:
        await self.session.detach()
        await self.poller.stop()
        for detach in self._detach:
            detach()
        self._detach.clear()
        await self.gateway.stop()
        for close in self._owned_closers:
            await close()
        self._owned_closers.clear()
        logger.info("[app] stopped")
