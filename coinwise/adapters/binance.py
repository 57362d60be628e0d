"""
Binance public ticker adapter (PriceFeed port).

GET {base_url}/api/v3/ticker/price?symbols=["BTCUSDT",...]
    -> [{"symbol": "BTCUSDT", "price": "67000.01"}, ...]

The venue rejects the whole request (HTTP 400) when one symbol is unknown; in
that case the full ticker list is fetched and filtered, so unknown symbols are
simply absent from the result.
"""

from __future__ import annotations

import asyncio
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Optional

import aiohttp
import orjson

from coinwise.config.configs import PriceFeedConfig
from coinwise.errors.errors import PriceFeedError
from coinwise.types.types import MarketQuote

logger = logging.getLogger(__name__)

TICKER_PRICE_PATH = "/api/v3/ticker/price"


class BinancePriceFeed:
    def __init__(
        self,
        cfg: Optional[PriceFeedConfig] = None,
        session: Optional[aiohttp.ClientSession] = None,
        name: str = "binance",
    ) -> None:
        self._cfg = cfg or PriceFeedConfig()
        self._session = session
        self._owns_session = session is None
        self._name = name

    @property
    def url(self) -> str:
        return self._cfg.base_url.rstrip("/") + TICKER_PRICE_PATH

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self._cfg.request_timeout_s)
            self._session = aiohttp.ClientSession(timeout=timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def fetch_prices(self, symbols: Iterable[str]) -> list[MarketQuote]:
        wanted = [s.upper() for s in symbols]
        if not wanted:
            return []

        params = {"symbols": orjson.dumps(wanted).decode()}
        status, body = await self._get(params)
        if status == 400:
            logger.warning(f"[{self._name}] venue rejected symbol list, filtering full ticker")
            status, body = await self._get(None)
        if status != 200:
            raise PriceFeedError(
                f"Ticker request failed with HTTP {status}",
                component=self._name,
                details={"url": self.url, "body": body[:200].decode(errors="replace")},
            )

        return self.parse_quotes(body, wanted)

    async def _get(self, params: Optional[dict[str, str]]) -> tuple[int, bytes]:
        session = await self._get_session()
        try:
            async with session.get(self.url, params=params) as response:
                return response.status, await response.read()
        except asyncio.TimeoutError as e:
            raise PriceFeedError("Ticker request timed out", component=self._name) from e
        except aiohttp.ClientError as e:
            raise PriceFeedError(f"Ticker request failed: {e}", component=self._name) from e

    def parse_quotes(self, body: bytes, wanted: list[str]) -> list[MarketQuote]:
        try:
            rows: Any = orjson.loads(body)
        except orjson.JSONDecodeError as e:
            raise PriceFeedError("Ticker response is not JSON", component=self._name) from e
        if isinstance(rows, dict):
            rows = [rows]
        if not isinstance(rows, list):
            raise PriceFeedError("Unexpected ticker payload", component=self._name)

        keep = set(wanted)
        quotes: list[MarketQuote] = []
        for row in rows:
            symbol = row.get("symbol") if isinstance(row, dict) else None
            if symbol not in keep:
                continue
            try:
                price = Decimal(str(row["price"]))
            except (KeyError, InvalidOperation):
                logger.debug(f"[{self._name}] skipping malformed row: {row}")
                continue
            if price > 0:
                quotes.append(MarketQuote(symbol=symbol, price=price))
        # keep the configured order
        order = {s: i for i, s in enumerate(wanted)}
        quotes.sort(key=lambda q: order[q.symbol])
        return quotes
