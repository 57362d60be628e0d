import itertools
from decimal import Decimal

import pytest

from coinwise.config.configs import CompetitionConfig, LedgerConfig
from coinwise.core.clock import SimClock
from coinwise.core.competition import CompetitionEngine
from coinwise.core.ledger import PortfolioLedger
from coinwise.types.types import MarketQuote, MarketSnapshot

T0 = 1_700_000_000_000


def snapshot_of(prices: dict[str, str], fetched_at: int = T0) -> MarketSnapshot:
    return MarketSnapshot(
        quotes=tuple(MarketQuote(symbol=s, price=Decimal(p)) for s, p in prices.items()),
        fetched_at=fetched_at,
    )


@pytest.fixture
def clock() -> SimClock:
    return SimClock(start_ms=T0)


@pytest.fixture
def ledger(clock: SimClock) -> PortfolioLedger:
    counter = itertools.count(1)
    return PortfolioLedger(
        clock,
        LedgerConfig(starting_balance=Decimal("10000")),
        id_factory=lambda: f"tx-{next(counter)}",
    )


@pytest.fixture
def engine(ledger: PortfolioLedger, clock: SimClock) -> CompetitionEngine:
    return CompetitionEngine(
        ledger,
        clock,
        CompetitionConfig(
            baseline_net_worth=Decimal("10000"), entry_fee=Decimal("10"), duration_ms=60_000
        ),
    )


@pytest.fixture
def make_snapshot():
    return snapshot_of
