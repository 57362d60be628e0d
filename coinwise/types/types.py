from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping, Optional, Union

from coinwise.types.aliases import AccountId, Symbol, UnixMillis, UserId

ZERO = Decimal("0")
ONE = Decimal("1")
HUNDRED = Decimal("100")

LOG_LEVELS = {"DEBUG": 10, "INFO": 20, "WARNING": 30, "ERROR": 40}

# -------- Enums --------


class TradeSide(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


class TransactionType(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    DEPOSIT = "DEPOSIT"
    FEE = "FEE"  # debit, e.g. competition entry fee
    ALLOCATION = "ALLOCATION"  # balance replaced by a competition baseline


class CompetitionPhase(str, Enum):
    IDLE = "idle"
    ACTIVE = "active"
    ENDED = "ended"  # expired but not yet reset


# --- Ledger ---


@dataclass(frozen=True, slots=True)
class AssetHolding:
    symbol: Symbol
    amount: Decimal  # strictly positive


@dataclass(frozen=True, slots=True)
class Transaction:
    """Immutable ledger record. Never mutated or removed once appended."""

    id: str
    type: TransactionType
    asset: str
    amount: Decimal
    price: Decimal
    total: Decimal
    timestamp: UnixMillis


# --- Competition (tagged variant) ---


@dataclass(frozen=True, slots=True)
class IdleCompetition:
    @property
    def is_competing(self) -> bool:
        return False


@dataclass(frozen=True, slots=True)
class ActiveCompetition:
    entry_net_worth: Decimal
    entry_time: UnixMillis
    end_time: Optional[UnixMillis] = None
    pnl_percent: Decimal = ZERO
    current_rank: int = 0

    @property
    def is_competing(self) -> bool:
        return True

    def is_expired(self, now: UnixMillis) -> bool:
        return self.end_time is not None and now >= self.end_time


CompetitionState = Union[IdleCompetition, ActiveCompetition]

IDLE = IdleCompetition()


@dataclass(frozen=True, slots=True)
class UserState:
    """
    One user's ledger snapshot. Every mutation produces a new instance, so
    "has the state changed" is a plain equality check.
    """

    account_id: AccountId
    name: str
    balance: Decimal
    assets: tuple[AssetHolding, ...] = ()
    transactions: tuple[Transaction, ...] = ()
    competition: CompetitionState = IDLE

    def holding(self, symbol: Symbol) -> Optional[AssetHolding]:
        for h in self.assets:
            if h.symbol == symbol:
                return h
        return None

    def held_amount(self, symbol: Symbol) -> Decimal:
        h = self.holding(symbol)
        return h.amount if h is not None else ZERO

    @property
    def is_competing(self) -> bool:
        return self.competition.is_competing


# --- Leaderboard ---


@dataclass(frozen=True, slots=True)
class LeaderboardEntry:
    """Read-model row broadcast through the shared pool; keyed by account_id."""

    rank: int
    name: str
    account_id: AccountId
    pnl: Decimal
    value: Decimal
    is_user: bool = True


# --- Market data ---


@dataclass(frozen=True, slots=True)
class MarketQuote:
    symbol: Symbol
    price: Decimal


@dataclass(frozen=True)
class MarketSnapshot:
    """Latest full price list from the feed. Replaced wholesale, never patched."""

    quotes: tuple[MarketQuote, ...] = ()
    fetched_at: UnixMillis = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "_by_symbol", {q.symbol: q.price for q in self.quotes})

    def price_of(self, symbol: Symbol, default: Decimal = ZERO) -> Decimal:
        """Price for symbol; unquoted symbols fall back to `default` (zero)."""
        return self._by_symbol.get(symbol, default)  # type: ignore[attr-defined]

    def has_quote(self, symbol: Symbol) -> bool:
        return symbol in self._by_symbol  # type: ignore[attr-defined]

    @property
    def symbols(self) -> frozenset[Symbol]:
        return frozenset(self._by_symbol)  # type: ignore[attr-defined]

    def __bool__(self) -> bool:
        return bool(self.quotes)


EMPTY_SNAPSHOT = MarketSnapshot()


# --- Identity ---


@dataclass(frozen=True, slots=True)
class Identity:
    """Principal yielded by the identity provider."""

    user_id: UserId
    email: Optional[str] = None
    display_name: Optional[str] = None


# --- Audit ---


@dataclass
class LogEvent:
    """
    Generic structure for critical infrastructure events bridged to the bus.
    """

    level: str  # DEBUG, INFO, WARNING, ERROR
    component: str
    msg: str
    payload: dict[str, Any] = field(default_factory=dict)
    sim_time: Optional[int] = None
    wall_time: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


@dataclass(frozen=True, slots=True)
class SyncStatus:
    """Outbox convergence snapshot."""

    dirty: bool
    pending: int
    in_flight: Optional[str] = None
    last_error: Optional[str] = None
    failures: int = 0
    details: Mapping[str, Any] = field(default_factory=dict)
