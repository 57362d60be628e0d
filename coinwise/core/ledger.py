"""
Portfolio Ledger.

Responsibilities:
- Balance, holdings and the append-only transaction log of one user
- Trade (BUY/SELL) and deposit with all-or-nothing precondition checks
- Net worth projection against the latest market snapshot

Every operation takes a UserState and returns a new one; the input snapshot is
never touched. A rejected operation raises before anything is built, so callers
keep their previous snapshot as-is.

Valuation fallback: a holding whose symbol has no quote in the snapshot is
valued at zero. The amount is logged at debug level so the gap is visible.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from decimal import Decimal
from typing import Callable, Optional, Union

from coinwise.config.configs import LedgerConfig
from coinwise.core.clock import Clock
from coinwise.errors.errors import InsufficientFunds, InsufficientHoldings, InvalidOrder
from coinwise.types.aliases import AccountId, Symbol
from coinwise.types.types import (
    IDLE,
    ONE,
    ZERO,
    AssetHolding,
    MarketSnapshot,
    TradeSide,
    Transaction,
    TransactionType,
    UserState,
)
from coinwise.utils.utility import dec, new_id

logger = logging.getLogger(__name__)

Number = Union[Decimal, int, float, str]

ENTRY_FEE_ASSET = "ENTRY-FEE"
ALLOCATION_ASSET = "COMPETITION"


def net_worth(state: UserState, snapshot: MarketSnapshot) -> Decimal:
    """balance + sum(amount * current price); unquoted symbols count as zero."""
    total = state.balance
    for h in state.assets:
        if not snapshot.has_quote(h.symbol):
            logger.debug(f"[ledger] no quote for {h.symbol}, valuing {h.amount} at 0")
            continue
        total += h.amount * snapshot.price_of(h.symbol)
    return total


def _positive(value: Number, field: str) -> Decimal:
    try:
        d = dec(value)
    except (ArithmeticError, TypeError, ValueError) as e:
        raise InvalidOrder(f"{field} is not a number", field=field, value=value) from e
    if not d.is_finite() or d <= ZERO:
        raise InvalidOrder(f"{field} must be > 0", field=field, value=value)
    return d


class PortfolioLedger:
    """
    Stateless ledger service. Owns the mutation rules, not the state.

    Usage:
        ledger = PortfolioLedger(clock)
        s0 = ledger.new_user("alice@example.com", "alice")
        s1 = ledger.trade(s0, TradeSide.BUY, "BTCUSDT", "0.1", "50000")
    """

    def __init__(
        self,
        clock: Clock,
        cfg: Optional[LedgerConfig] = None,
        id_factory: Callable[[], str] = new_id,
    ) -> None:
        self._clock = clock
        self._cfg = cfg or LedgerConfig()
        self._new_id = id_factory

    # --- Construction ---

    def new_user(
        self,
        account_id: AccountId,
        name: str,
        starting_balance: Optional[Number] = None,
    ) -> UserState:
        balance = self._cfg.starting_balance if starting_balance is None else dec(starting_balance)
        if balance < ZERO:
            raise InvalidOrder("starting balance must be >= 0", field="balance", value=balance)
        return UserState(
            account_id=account_id,
            name=name,
            balance=balance,
            assets=(),
            transactions=(),
            competition=IDLE,
        )

    # --- Core API ---

    def trade(
        self,
        state: UserState,
        kind: Union[TradeSide, str],
        symbol: Symbol,
        amount: Number,
        price: Number,
    ) -> UserState:
        """
        BUY debits amount*price and credits the holding; SELL does the inverse and
        drops the holding when it reaches exactly zero.

        Raises:
            InvalidOrder: unknown side, empty symbol, non-positive amount/price
            InsufficientFunds: BUY with balance < amount*price
            InsufficientHoldings: SELL of a missing symbol or more than held
        """
        try:
            side = TradeSide(kind.upper() if isinstance(kind, str) else kind)
        except ValueError as e:
            raise InvalidOrder(f"unknown side {kind!r}", field="kind", value=kind) from e
        if not symbol:
            raise InvalidOrder("symbol must be non-empty", field="symbol")
        qty = _positive(amount, "amount")
        px = _positive(price, "price")
        total = qty * px

        if side == TradeSide.BUY:
            if state.balance < total:
                raise InsufficientFunds(required=total, available=state.balance)
            balance = state.balance - total
            assets = self._credit(state.assets, symbol, qty)
            tx_type = TransactionType.BUY
        else:
            held = state.held_amount(symbol)
            if state.holding(symbol) is None or held < qty:
                raise InsufficientHoldings(symbol=symbol, required=qty, available=held)
            balance = state.balance + total
            assets = self._debit(state.assets, symbol, qty)
            tx_type = TransactionType.SELL

        tx = self._record(tx_type, symbol, qty, px, total)
        logger.debug(f"[ledger] {state.account_id} {side.value} {qty} {symbol} @ {px}")
        return replace(
            state,
            balance=balance,
            assets=assets,
            transactions=state.transactions + (tx,),
        )

    def deposit(self, state: UserState, amount: Number) -> UserState:
        qty = _positive(amount, "amount")
        tx = self._record(TransactionType.DEPOSIT, self._cfg.quote_ccy, qty, ONE, qty)
        return replace(
            state,
            balance=state.balance + qty,
            transactions=state.transactions + (tx,),
        )

    def charge(self, state: UserState, fee: Number, asset: str = ENTRY_FEE_ASSET) -> UserState:
        """Debit a fee from the balance, recorded as a FEE transaction."""
        amount = dec(fee)
        if amount < ZERO:
            raise InvalidOrder("fee must be >= 0", field="fee", value=fee)
        if state.balance < amount:
            raise InsufficientFunds(
                "Insufficient funds for fee", required=amount, available=state.balance
            )
        tx = self._record(TransactionType.FEE, asset, ONE, amount, amount)
        return replace(
            state,
            balance=state.balance - amount,
            transactions=state.transactions + (tx,),
        )

    def liquidate(self, state: UserState, snapshot: MarketSnapshot) -> UserState:
        """
        Forced liquidation: sell every holding at the snapshot price.
        Unquoted holdings are closed at the zero fallback and still logged.
        """
        balance = state.balance
        txs: list[Transaction] = []
        for h in state.assets:
            px = snapshot.price_of(h.symbol)
            if not snapshot.has_quote(h.symbol):
                logger.warning(f"[ledger] liquidating {h.symbol} without a quote, price=0")
            total = h.amount * px
            balance += total
            txs.append(self._record(TransactionType.SELL, h.symbol, h.amount, px, total))
        return replace(
            state,
            balance=balance,
            assets=(),
            transactions=state.transactions + tuple(txs),
        )

    def allocate(self, state: UserState, amount: Number) -> UserState:
        """
        Replace the balance by `amount` (competition baseline). The ALLOCATION
        record carries the new balance as its price and the change as its
        total, so replaying the log reproduces the balance.
        """
        value = dec(amount)
        if value < ZERO:
            raise InvalidOrder("allocation must be >= 0", field="amount", value=amount)
        tx = self._record(TransactionType.ALLOCATION, ALLOCATION_ASSET, ONE, value, value - state.balance)
        return replace(state, balance=value, transactions=state.transactions + (tx,))

    # --- Helpers ---

    def _record(
        self,
        tx_type: TransactionType,
        asset: str,
        amount: Decimal,
        price: Decimal,
        total: Decimal,
    ) -> Transaction:
        return Transaction(
            id=self._new_id(),
            type=tx_type,
            asset=asset,
            amount=amount,
            price=price,
            total=total,
            timestamp=self._clock.now(),
        )

    @staticmethod
    def _credit(
        assets: tuple[AssetHolding, ...], symbol: Symbol, qty: Decimal
    ) -> tuple[AssetHolding, ...]:
        out: list[AssetHolding] = []
        found = False
        for h in assets:
            if h.symbol == symbol:
                out.append(AssetHolding(symbol=symbol, amount=h.amount + qty))
                found = True
            else:
                out.append(h)
        if not found:
            out.append(AssetHolding(symbol=symbol, amount=qty))
        return tuple(out)

    @staticmethod
    def _debit(
        assets: tuple[AssetHolding, ...], symbol: Symbol, qty: Decimal
    ) -> tuple[AssetHolding, ...]:
        out: list[AssetHolding] = []
        for h in assets:
            if h.symbol != symbol:
                out.append(h)
                continue
            remaining = h.amount - qty
            if remaining > ZERO:
                out.append(AssetHolding(symbol=symbol, amount=remaining))
        return tuple(out)
