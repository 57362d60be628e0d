"""PriceFeed Port Interface.

Contract: return the current price of each requested symbol. Symbols the venue
does not quote are simply absent from the result. Failures raise PriceFeedError.
"""

from __future__ import annotations

from typing import Iterable, Protocol

from coinwise.types.types import MarketQuote


class PriceFeed(Protocol):
    async def fetch_prices(self, symbols: Iterable[str]) -> list[MarketQuote]: ...
