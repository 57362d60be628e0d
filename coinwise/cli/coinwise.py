"""coinwise CLI entrypoint.

Subcommands:
    config   print the resolved configuration (file < env < --set)
    prices   fetch one price snapshot from the public ticker
    pool     print the ranked competition pool from the realtime database
    demo     run a scripted session against in-memory adapters (no network)
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from dataclasses import asdict
from decimal import Decimal
from pathlib import Path
from typing import Any, Optional

import orjson

from coinwise.adapters.binance import BinancePriceFeed
from coinwise.adapters.env_provider import EnvSecretsProvider
from coinwise.adapters.firebase import FirebaseRealtimeStore
from coinwise.adapters.memory_identity import InMemoryIdentityProvider
from coinwise.adapters.memory_store import InMemoryRemoteStore
from coinwise.adapters.static_feed import StaticPriceFeed
from coinwise.adapters.telemetry.jsonl import JsonlTelemetry
from coinwise.config.config_loader import ConfigLoader
from coinwise.config.configs import AppConfig
from coinwise.core.app import CoinwiseApp, attach_telemetry
from coinwise.core.clock import SimClock
from coinwise.errors.errors import CoinwiseError
from coinwise.sync.pool import PoolReadModel
from coinwise.types.types import LeaderboardEntry
from coinwise.utils.utility import make_serializable, new_id

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"

DEMO_PRICES = {"BTCUSDT": "60000", "ETHUSDT": "3000", "SOLUSDT": "150"}


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="coinwise")
    p.add_argument("--config", type=Path, required=False, help="TOML config file")
    p.add_argument(
        "--set",
        dest="config_overrides",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Override a config entry (may be repeated)",
    )
    p.add_argument("--log-level", default=None, help="Overrides log_level from config")
    sub = p.add_subparsers(dest="command", required=True)

    sub.add_parser("config", help="Print the resolved configuration")

    prices = sub.add_parser("prices", help="Fetch one price snapshot")
    prices.add_argument("symbols", nargs="*", help="Symbols (default: configured list)")

    sub.add_parser("pool", help="Print the ranked competition pool")

    demo = sub.add_parser("demo", help="Scripted session on in-memory adapters")
    demo.add_argument("--telemetry", type=Path, default=None, help="JSONL sink for log events")
    return p


def _dump(obj: Any) -> str:
    return orjson.dumps(make_serializable(obj), option=orjson.OPT_INDENT_2).decode()


def _print_pool(entries: list[LeaderboardEntry]) -> None:
    if not entries:
        print("(pool is empty)")
        return
    for e in entries:
        marker = "*" if e.is_user else " "
        print(f"{marker}{e.rank:>3}  {e.name:<24} {e.pnl:>+9.2f}%  {e.value:>14.2f}")


# --- Commands ---


async def run_prices(cfg: AppConfig, symbols: list[str]) -> int:
    feed = BinancePriceFeed(cfg.prices)
    try:
        quotes = await feed.fetch_prices(symbols or cfg.prices.symbols)
    finally:
        await feed.close()
    for q in quotes:
        print(f"{q.symbol:<10} {q.price}")
    return 0 if quotes else 1


async def run_pool(cfg: AppConfig) -> int:
    secrets = EnvSecretsProvider()
    store = FirebaseRealtimeStore(cfg.firebase, auth_token=secrets.get_optional("firebase_db_token"))
    try:
        raw = await store.get(cfg.sync.pool_path)
    finally:
        await store.close()
    _print_pool(PoolReadModel(cfg.pool).apply(raw))
    return 0


async def run_demo(cfg: AppConfig, telemetry_path: Optional[Path] = None) -> int:
    """Two players, one competition round, everything in memory."""
    clock = SimClock(start_ms=1_700_000_000_000)
    store = InMemoryRemoteStore()
    identity = InMemoryIdentityProvider()
    feed = StaticPriceFeed(DEMO_PRICES)
    demo_cfg = AppConfig(
        ledger=cfg.ledger,
        competition=cfg.competition,
        prices=cfg.prices,
        sync=cfg.sync,
        pool=type(cfg.pool)(bot_name_pattern=cfg.pool.bot_name_pattern, cache_path=None),
        firebase=cfg.firebase,
        log_level=cfg.log_level,
    )
    app = CoinwiseApp.build(demo_cfg, store=store, identity=identity, feed=feed, clock=clock)
    if telemetry_path is not None:
        attach_telemetry(app.bus, JsonlTelemetry(instance_id=new_id(), sink_path=telemetry_path, clock=clock))

    # a rival and a bot already on the board
    await store.set(
        f"{cfg.sync.pool_path}/rival@example%2Ecom",
        {"rank": 0, "name": "rival", "accountId": "rival@example.com", "pnl": 1.5, "value": 10150},
    )
    await store.set(
        f"{cfg.sync.pool_path}/bot",
        {"rank": 0, "name": "AlgoTrader-7", "accountId": "bot", "pnl": 50, "value": 15000},
    )

    await app.start(poll=False)
    session = app.session
    await session.sign_up("demo@example.com", "hunter22", "demo")
    await session.trade("BUY", "BTCUSDT", Decimal("0.05"))
    print(f"after buy:   balance={session.user.balance} net_worth={session.net_worth()}")

    await session.enter_competition()
    await session.trade("BUY", "ETHUSDT", Decimal("2"))
    feed.set_price("ETHUSDT", "3250")
    await app.poller.poll_once()
    await app.gateway.wait_until_synced(timeout_s=5)
    comp = session.user.competition
    print(f"competing:   pnl={comp.pnl_percent:.2f}% phase={session.phase().value}")
    _print_pool(session.pool)

    clock.advance_by(cfg.competition.duration_ms)
    print(f"after end:   phase={session.phase().value}")
    await session.reset_competition()
    await app.gateway.wait_until_synced(timeout_s=5)
    print(f"after reset: competing={session.user.is_competing} pool={len(session.pool)} entries")

    await session.sign_out()
    await app.stop()
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    """CLI entrypoint wrapper compatible with setuptools scripts."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        cfg = ConfigLoader().load_app_config(args.config, cli_pairs=args.config_overrides)
    except (CoinwiseError, FileNotFoundError, ValueError) as e:
        print(f"configuration error: {e}", file=sys.stderr)
        return 2

    logging.basicConfig(level=(args.log_level or cfg.log_level).upper(), format=LOG_FORMAT)

    try:
        if args.command == "config":
            print(_dump(asdict(cfg)))
            return 0
        if args.command == "prices":
            return asyncio.run(run_prices(cfg, [s.upper() for s in args.symbols]))
        if args.command == "pool":
            return asyncio.run(run_pool(cfg))
        if args.command == "demo":
            return asyncio.run(run_demo(cfg, args.telemetry))
    except CoinwiseError as e:
        logger.error(f"[cli] {e}")
        return 1
    parser.error(f"unknown command {args.command!r}")
    return 2


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
