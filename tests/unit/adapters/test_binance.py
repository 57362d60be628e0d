"""
Unit tests for the Binance ticker adapter.
"""

from decimal import Decimal
from unittest.mock import AsyncMock

import orjson
import pytest

from coinwise.adapters.binance import BinancePriceFeed
from coinwise.config.configs import PriceFeedConfig
from coinwise.errors.errors import PriceFeedError

TICKER = orjson.dumps(
    [
        {"symbol": "ETHUSDT", "price": "3000.50"},
        {"symbol": "BTCUSDT", "price": "67000.01"},
        {"symbol": "LTCUSDT", "price": "80.00"},
        {"symbol": "XRPUSDT"},
        {"symbol": "ADAUSDT", "price": "not-a-number"},
        {"symbol": "DOGEUSDT", "price": "0"},
    ]
)


@pytest.fixture
def feed() -> BinancePriceFeed:
    return BinancePriceFeed(PriceFeedConfig(base_url="https://api.example.com/"))


class TestParseQuotes:
    def test_filters_and_keeps_requested_order(self, feed) -> None:
        quotes = feed.parse_quotes(TICKER, ["BTCUSDT", "ETHUSDT", "SOLUSDT"])
        assert [(q.symbol, q.price) for q in quotes] == [
            ("BTCUSDT", Decimal("67000.01")),
            ("ETHUSDT", Decimal("3000.50")),
        ]

    def test_malformed_and_non_positive_rows_skipped(self, feed) -> None:
        quotes = feed.parse_quotes(TICKER, ["XRPUSDT", "ADAUSDT", "DOGEUSDT", "LTCUSDT"])
        assert [q.symbol for q in quotes] == ["LTCUSDT"]

    def test_single_object_payload(self, feed) -> None:
        body = orjson.dumps({"symbol": "BTCUSDT", "price": "1"})
        assert [q.symbol for q in feed.parse_quotes(body, ["BTCUSDT"])] == ["BTCUSDT"]

    @pytest.mark.parametrize("body", [b"<html>", b'"oops"'])
    def test_garbage_raises(self, feed, body) -> None:
        with pytest.raises(PriceFeedError):
            feed.parse_quotes(body, ["BTCUSDT"])


class TestFetch:
    def test_url(self, feed) -> None:
        assert feed.url == "https://api.example.com/api/v3/ticker/price"

    @pytest.mark.asyncio
    async def test_requests_symbols_as_json_array(self, feed) -> None:
        feed._get = AsyncMock(return_value=(200, TICKER))

        quotes = await feed.fetch_prices(["btcusdt"])

        assert [q.symbol for q in quotes] == ["BTCUSDT"]
        feed._get.assert_awaited_once_with({"symbols": '["BTCUSDT"]'})

    @pytest.mark.asyncio
    async def test_unknown_symbol_falls_back_to_full_list(self, feed) -> None:
        feed._get = AsyncMock(side_effect=[(400, b'{"code":-1121}'), (200, TICKER)])

        quotes = await feed.fetch_prices(["BTCUSDT", "NOPEUSDT"])

        assert [q.symbol for q in quotes] == ["BTCUSDT"]
        assert feed._get.await_args_list[1].args == (None,)

    @pytest.mark.asyncio
    async def test_http_error_raises(self, feed) -> None:
        feed._get = AsyncMock(return_value=(503, b"unavailable"))
        with pytest.raises(PriceFeedError) as exc:
            await feed.fetch_prices(["BTCUSDT"])
        assert exc.value.details["body"] == "unavailable"

    @pytest.mark.asyncio
    async def test_no_symbols_no_request(self, feed) -> None:
        feed._get = AsyncMock()
        assert await feed.fetch_prices([]) == []
        feed._get.assert_not_awaited()
