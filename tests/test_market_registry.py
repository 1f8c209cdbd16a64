"""
Market Registry Tests

- defaults merged under each market
- currency derivation (coarsest precision per code)
- load_markets caching / reload / shared in-flight fetch
- lookup helpers
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from exchange_core.exchanges.exceptions import ExchangeError
from exchange_core.exchanges.market_registry import Currency, Market, MarketRegistry

RAW_MARKETS = [
    {
        "id": "BTC-PERPETUAL",
        "symbol": "BTC/USD",
        "base": "BTC",
        "quote": "USD",
        "baseId": "BTC",
        "quoteId": "USD",
        "precision": {"amount": 10, "price": 0.5},
    },
    {
        "id": "ETH-PERPETUAL",
        "symbol": "ETH/USD",
        "base": "ETH",
        "quote": "USD",
        "precision": {"amount": 1, "price": 0.05},
    },
]


def make_registry(**kwargs):
    kwargs.setdefault("default_precision", {"amount": 8, "price": 8})
    kwargs.setdefault("default_limits", {"amount": {"min": None, "max": None}})
    kwargs.setdefault("trading_fees", {"taker": 0.00075, "maker": -0.00025})
    return MarketRegistry("testex", **kwargs)


class TestSetMarkets:
    """set_markets()"""

    def test_indexes_by_symbol_and_id(self):
        registry = make_registry()

        markets = registry.set_markets(RAW_MARKETS)

        assert set(markets) == {"BTC/USD", "ETH/USD"}
        assert registry.markets_by_id["BTC-PERPETUAL"].symbol == "BTC/USD"
        assert registry.symbols == ["BTC/USD", "ETH/USD"]
        assert registry.ids == ["BTC-PERPETUAL", "ETH-PERPETUAL"]

    def test_defaults_merged(self):
        registry = make_registry()

        registry.set_markets(RAW_MARKETS)
        market = registry.market("BTC/USD")

        assert isinstance(market, Market)
        assert market.precision == {"amount": 10, "price": 0.5}
        assert market.limits == {"amount": {"min": None, "max": None}}
        assert market.taker == 0.00075
        assert market.maker == -0.00025

    def test_derived_currencies_use_max_precision(self):
        registry = make_registry()

        registry.set_markets(RAW_MARKETS)

        assert list(registry.currencies) == ["BTC", "ETH", "USD"]
        assert registry.currencies["BTC"].precision == 10
        assert registry.currencies["ETH"].precision == 1
        # quote legs: 0.5 vs 0.05 -> coarsest wins
        assert registry.currencies["USD"].precision == 0.5

    def test_equal_precision_later_entry_wins(self):
        registry = make_registry()
        raw = [
            dict(RAW_MARKETS[0], quoteId="usd-a", precision={"amount": 1, "price": 2}),
            dict(RAW_MARKETS[1], quoteId="usd-b", precision={"amount": 1, "price": 2}),
        ]

        registry.set_markets(raw)

        assert registry.currencies["USD"].id == "usd-b"

    def test_missing_precision_defaults_to_eight(self):
        registry = make_registry(default_precision={})
        raw = [{"id": "X", "symbol": "A/B", "base": "A", "quote": "B"}]

        registry.set_markets(raw)

        assert registry.currencies["A"].precision == 8
        assert registry.currencies["B"].precision == 8

    def test_supplied_currencies_used(self):
        registry = make_registry()

        registry.set_markets(RAW_MARKETS, {"BTC": {"id": "btc", "precision": 4}})

        assert list(registry.currencies) == ["BTC"]
        assert registry.currencies["BTC"] == Currency(id="btc", code="BTC", precision=4)
        assert registry.currencies_by_id["btc"].code == "BTC"

    def test_reload_replaces_maps_wholesale(self):
        registry = make_registry()
        registry.set_markets(RAW_MARKETS)
        old_markets = registry.markets

        registry.set_markets(RAW_MARKETS[:1])

        assert set(registry.markets) == {"BTC/USD"}
        assert set(old_markets) == {"BTC/USD", "ETH/USD"}

    def test_missing_required_field(self):
        registry = make_registry()
        with pytest.raises(ExchangeError, match="symbol"):
            registry.set_markets([{"id": "X", "base": "A", "quote": "B"}])


class TestLoadMarkets:
    """load_markets()"""

    @pytest.mark.asyncio
    async def test_cached_after_first_load(self):
        fetch = AsyncMock(return_value=RAW_MARKETS)
        registry = make_registry(fetch_markets=fetch)

        first = await registry.load_markets()
        second = await registry.load_markets()

        assert first is second
        fetch.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_reload_fetches_again(self):
        fetch = AsyncMock(return_value=RAW_MARKETS)
        registry = make_registry(fetch_markets=fetch)

        await registry.load_markets()
        await registry.load_markets(reload=True)

        assert fetch.await_count == 2

    @pytest.mark.asyncio
    async def test_missing_id_index_rebuilt_without_fetch(self):
        fetch = AsyncMock(return_value=RAW_MARKETS)
        registry = make_registry(fetch_markets=fetch)
        registry.set_markets(RAW_MARKETS)
        registry.markets_by_id = None

        await registry.load_markets()

        fetch.assert_not_awaited()
        assert registry.markets_by_id["ETH-PERPETUAL"].symbol == "ETH/USD"

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_fetch(self):
        calls = 0

        async def fetch():
            nonlocal calls
            calls += 1
            await asyncio.sleep(0)
            return RAW_MARKETS

        registry = make_registry(fetch_markets=fetch)

        results = await asyncio.gather(*(registry.load_markets() for _ in range(5)))

        assert calls == 1
        assert all(result is results[0] for result in results)

    @pytest.mark.asyncio
    async def test_fetch_currencies_used_when_provided(self):
        registry = make_registry(
            fetch_markets=AsyncMock(return_value=RAW_MARKETS),
            fetch_currencies=AsyncMock(return_value={"BTC": {"id": "BTC", "precision": 3}}),
        )

        await registry.load_markets()

        assert registry.currency("BTC").precision == 3

    @pytest.mark.asyncio
    async def test_no_market_source(self):
        registry = make_registry()
        with pytest.raises(ExchangeError, match="no market source"):
            await registry.load_markets()


class TestLookups:
    """Lookup helpers"""

    def setup_method(self):
        self.registry = make_registry(common_currencies={"XBT": "BTC"})
        self.registry.set_markets(RAW_MARKETS)

    def test_market_unknown_symbol(self):
        with pytest.raises(ExchangeError, match="does not have market symbol DOGE/USD"):
            self.registry.market("DOGE/USD")

    def test_market_before_load(self):
        with pytest.raises(ExchangeError, match="markets not loaded"):
            make_registry().market("BTC/USD")

    def test_market_id(self):
        assert self.registry.market_id("BTC/USD") == "BTC-PERPETUAL"
        assert self.registry.market_id("UNKNOWN") == "UNKNOWN"
        assert self.registry.market_ids(["ETH/USD", "BTC/USD"]) == ["ETH-PERPETUAL", "BTC-PERPETUAL"]

    def test_find_market_and_symbol(self):
        assert self.registry.find_market("BTC-PERPETUAL").symbol == "BTC/USD"
        assert self.registry.find_market("ETH/USD").id == "ETH-PERPETUAL"
        assert self.registry.find_market("nope") == "nope"
        assert self.registry.find_symbol("ETH-PERPETUAL") == "ETH/USD"
        assert self.registry.find_symbol("nope") == "nope"

    def test_common_currency_code(self):
        assert self.registry.common_currency_code("XBT") == "BTC"
        assert self.registry.common_currency_code("ETH") == "ETH"

    def test_currency_lookups(self):
        assert self.registry.currency("ETH").code == "ETH"
        assert self.registry.currency_id("USD") == "USD"
        with pytest.raises(ExchangeError):
            self.registry.currency("DOGE")
