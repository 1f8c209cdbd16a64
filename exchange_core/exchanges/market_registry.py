# -*- coding: utf-8 -*-
"""
Market Registry

Normalized market/currency metadata for one venue:
- markets indexed by unified symbol and by venue-native id
- currencies supplied by the venue, or derived from market legs
- load_markets() caches; reload replaces the maps wholesale
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence

from exchange_core.exchanges.exceptions import ExchangeError
from exchange_core.exchanges.utils import deep_extend

logger = logging.getLogger(__name__)

DEFAULT_CURRENCY_PRECISION = 8


@dataclass(frozen=True)
class Market:
    """Venue market (immutable once loaded)"""
    id: str
    symbol: str
    base: str
    quote: str
    base_id: Optional[str] = None
    quote_id: Optional[str] = None
    active: Optional[bool] = True
    precision: Dict[str, Any] = field(default_factory=dict)
    limits: Dict[str, Any] = field(default_factory=dict)
    type: Optional[str] = None
    taker: Optional[float] = None
    maker: Optional[float] = None
    info: Any = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Market":
        for key in ("id", "symbol", "base", "quote"):
            if data.get(key) is None:
                raise ExchangeError(f"market is missing required field '{key}': {dict(data)}")
        return cls(
            id=data["id"],
            symbol=data["symbol"],
            base=data["base"],
            quote=data["quote"],
            base_id=data.get("baseId", data.get("base_id")),
            quote_id=data.get("quoteId", data.get("quote_id")),
            active=data.get("active", True),
            precision=dict(data.get("precision") or {}),
            limits=dict(data.get("limits") or {}),
            type=data.get("type"),
            taker=data.get("taker"),
            maker=data.get("maker"),
            info=data.get("info"),
        )


@dataclass(frozen=True)
class Currency:
    """Currency derived from market legs or supplied by the venue"""
    id: str
    code: str
    precision: Optional[float] = DEFAULT_CURRENCY_PRECISION
    info: Any = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Currency":
        code = data.get("code")
        if code is None:
            raise ExchangeError(f"currency is missing required field 'code': {dict(data)}")
        return cls(
            id=data.get("id", code),
            code=code,
            precision=data.get("precision", DEFAULT_CURRENCY_PRECISION),
            info=data.get("info"),
        )


class MarketRegistry:
    """
    Owner of the market and currency maps.

    Only this class writes markets; everyone else reads through the lookup
    helpers.
    """

    def __init__(
        self,
        exchange_id: str,
        fetch_markets: Optional[Callable[[], Awaitable[Sequence[Mapping]]]] = None,
        fetch_currencies: Optional[Callable[[], Awaitable[Mapping[str, Mapping]]]] = None,
        default_precision: Optional[Mapping] = None,
        default_limits: Optional[Mapping] = None,
        trading_fees: Optional[Mapping] = None,
        common_currencies: Optional[Mapping[str, str]] = None,
        configured_currencies: Optional[Mapping[str, Mapping]] = None,
    ):
        """
        Args:
            exchange_id: venue id (error messages)
            fetch_markets: coroutine returning raw market dicts
            fetch_currencies: coroutine returning {code: raw currency}, if the venue has one
            default_precision: merged under each market's precision
            default_limits: merged under each market's limits
            trading_fees: merged under each market (taker/maker/...)
            common_currencies: venue code -> common code aliases (XBT -> BTC)
            configured_currencies: static currency overrides declared by the adapter
        """
        self.exchange_id = exchange_id
        self._fetch_markets = fetch_markets
        self._fetch_currencies = fetch_currencies
        self.default_precision = dict(default_precision or {})
        self.default_limits = dict(default_limits or {})
        self.trading_fees = dict(trading_fees or {})
        self.common_currencies = dict(common_currencies or {})
        self.configured_currencies = dict(configured_currencies or {})

        self.markets: Optional[Dict[str, Market]] = None
        self.markets_by_id: Optional[Dict[str, Market]] = None
        self.currencies: Dict[str, Currency] = {}
        self.currencies_by_id: Dict[str, Currency] = {}
        self.symbols: List[str] = []
        self.ids: List[str] = []
        self._loading: Optional[asyncio.Future] = None

    def _normalize_market(self, raw) -> Market:
        if isinstance(raw, Market):
            return raw
        merged = deep_extend(
            {"limits": self.default_limits, "precision": self.default_precision},
            self.trading_fees,
            raw,
        )
        return Market.from_dict(merged)

    def set_markets(
        self,
        raw_markets,
        raw_currencies: Optional[Mapping[str, Mapping]] = None,
    ) -> Dict[str, Market]:
        """
        Normalize and index markets (and currencies).

        Args:
            raw_markets: iterable of raw market dicts / Market, or {symbol: market}
            raw_currencies: {code: raw currency}; derived from markets when None

        Returns:
            {symbol: Market}
        """
        if isinstance(raw_markets, Mapping):
            raw_markets = list(raw_markets.values())
        values = [self._normalize_market(raw) for raw in raw_markets]

        markets = {market.symbol: market for market in values}
        markets_by_id = {market.id: market for market in values}

        if raw_currencies:
            currencies = {
                code: Currency.from_dict(dict(raw, code=raw.get("code", code)))
                for code, raw in raw_currencies.items()
            }
        else:
            currencies = self._derive_currencies(values)
        for code, raw in self.configured_currencies.items():
            currencies[code] = Currency.from_dict(dict(raw, code=raw.get("code", code)))

        # swap in complete maps only
        self.markets = markets
        self.markets_by_id = markets_by_id
        self.symbols = sorted(markets)
        self.ids = sorted(markets_by_id)
        self.currencies = dict(sorted(currencies.items()))
        self.currencies_by_id = {c.id: c for c in self.currencies.values()}

        logger.info(
            f"[MARKETS] {self.exchange_id}: {len(self.markets)} markets, "
            f"{len(self.currencies)} currencies"
        )
        return self.markets

    @staticmethod
    def _derive_currencies(markets: Sequence[Market]) -> Dict[str, Currency]:
        """
        Group base/quote legs by code and keep, per code, the leg with the
        coarsest (maximum) precision value; later legs win ties.
        """
        candidates: List[Currency] = []
        for market in markets:
            precision = market.precision or {}
            base_precision = precision.get("base", precision.get("amount"))
            quote_precision = precision.get("quote", precision.get("price"))
            candidates.append(Currency(
                id=market.base_id or market.base,
                code=market.base,
                precision=DEFAULT_CURRENCY_PRECISION if base_precision is None else base_precision,
            ))
            candidates.append(Currency(
                id=market.quote_id or market.quote,
                code=market.quote,
                precision=DEFAULT_CURRENCY_PRECISION if quote_precision is None else quote_precision,
            ))

        result: Dict[str, Currency] = {}
        for currency in candidates:
            current = result.get(currency.code)
            if current is None or not (current.precision > currency.precision):
                result[currency.code] = currency
        return result

    async def load_markets(self, reload: bool = False) -> Dict[str, Market]:
        """
        Load markets once and cache them.

        Args:
            reload: force a fresh fetch

        Returns:
            {symbol: Market}
        """
        if not reload and self.markets is not None:
            if self.markets_by_id is None:
                return self.set_markets(self.markets)
            return self.markets

        if self._loading is not None and not self._loading.done():
            return await asyncio.shield(self._loading)

        self._loading = asyncio.ensure_future(self._fetch_and_set())
        return await asyncio.shield(self._loading)

    async def _fetch_and_set(self) -> Dict[str, Market]:
        if self._fetch_markets is None:
            raise ExchangeError(f"{self.exchange_id} has no market source configured")
        logger.info(f"[MARKETS] {self.exchange_id}: fetching markets")
        raw_markets = await self._fetch_markets()
        raw_currencies = None
        if self._fetch_currencies is not None:
            raw_currencies = await self._fetch_currencies()
        return self.set_markets(raw_markets, raw_currencies)

    def _require_markets(self) -> Dict[str, Market]:
        if self.markets is None:
            raise ExchangeError(f"{self.exchange_id} markets not loaded")
        return self.markets

    def market(self, symbol: str) -> Market:
        markets = self._require_markets()
        if symbol in markets:
            return markets[symbol]
        raise ExchangeError(f"{self.exchange_id} does not have market symbol {symbol}")

    def market_id(self, symbol: str) -> str:
        markets = self.markets or {}
        market = markets.get(symbol)
        return market.id if market is not None else symbol

    def market_ids(self, symbols: Sequence[str]) -> List[str]:
        return [self.market_id(symbol) for symbol in symbols]

    def find_market(self, id_or_symbol: str):
        """Market by venue id or symbol; the input string itself if unknown"""
        if self.markets_by_id and id_or_symbol in self.markets_by_id:
            return self.markets_by_id[id_or_symbol]
        if self.markets and id_or_symbol in self.markets:
            return self.markets[id_or_symbol]
        return id_or_symbol

    def find_symbol(self, market_id: str, market: Optional[Market] = None) -> str:
        if market is None:
            market = self.find_market(market_id)
        if isinstance(market, Market):
            return market.symbol
        return market_id

    def common_currency_code(self, code: str) -> str:
        return self.common_currencies.get(code, code)

    def currency(self, code: str) -> Currency:
        if not self.currencies:
            raise ExchangeError(f"{self.exchange_id} currencies not loaded")
        if code in self.currencies:
            return self.currencies[code]
        raise ExchangeError(f"{self.exchange_id} does not have currency code {code}")

    def currency_id(self, code: str) -> str:
        """Venue id for a common code, reversing the alias table if needed"""
        currency = self.currencies.get(code)
        if currency is not None:
            return currency.id
        for venue_code, common_code in self.common_currencies.items():
            if common_code == code:
                return venue_code
        return code
