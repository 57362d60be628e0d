"""Fixed-price PriceFeed for demos and tests. Prices can be moved between polls."""

from __future__ import annotations

from decimal import Decimal
from typing import Iterable, Mapping, Union

from coinwise.errors.errors import PriceFeedError
from coinwise.types.types import MarketQuote
from coinwise.utils.utility import dec


class StaticPriceFeed:
    def __init__(self, prices: Mapping[str, Union[Decimal, int, float, str]]) -> None:
        self._prices: dict[str, Decimal] = {s: dec(p) for s, p in prices.items()}
        self.calls = 0
        self.fail = False

    def set_price(self, symbol: str, price: Union[Decimal, int, float, str]) -> None:
        self._prices[symbol] = dec(price)

    def clear(self) -> None:
        self._prices.clear()

    async def fetch_prices(self, symbols: Iterable[str]) -> list[MarketQuote]:
        self.calls += 1
        if self.fail:
            raise PriceFeedError("static feed set to fail", component="static_feed")
        return [MarketQuote(symbol=s, price=self._prices[s]) for s in symbols if s in self._prices]
