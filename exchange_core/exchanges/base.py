# -*- coding: utf-8 -*-
"""
Exchange Adapter Base

Assembles the shared runtime for one venue client from a describe()
dictionary deep-merged with user configuration:

    Throttle -> RestDispatcher          (REST)
    MarketRegistry                      (markets / currencies)
    ExchangeStore + OrderBookEngine     (streamed state)
    EventBus + ConnectionManager        (WebSocket)

Adapters subclass BaseExchange, extend describe() and override the hooks
(sign, handle_errors, fetch_*, _websocket_*).
"""

import asyncio
import json
import logging
import time
from typing import Any, Dict, List, Optional

import httpx

from exchange_core.exchanges.connection_manager import ConnectionManager
from exchange_core.exchanges.event_bus import EventBus, EventKind
from exchange_core.exchanges.exceptions import (
    AuthenticationError,
    InvalidAddress,
    NotSupported,
)
from exchange_core.exchanges.http_client import RequestDescriptor, RestDispatcher
from exchange_core.exchanges.market_registry import Currency, Market, MarketRegistry
from exchange_core.exchanges.orderbook import OrderBook, OrderBookEngine, aggregate_levels
from exchange_core.exchanges.routing import build_routing_table, url_with_query
from exchange_core.exchanges.store import ExchangeStore
from exchange_core.exchanges.utils import deep_extend, iso8601
from exchange_core.infrastructure.rate_limiter import AsyncTokenBucket, TokenBucketConfig

logger = logging.getLogger(__name__)

CREDENTIAL_KEYS = ("api_key", "secret", "uid", "login", "password")


class BaseExchange:
    """
    Common venue client.

    Example:
        exchange = Deribit({"timeout": 5000})
        await exchange.load_markets()
        book = await exchange.fetch_order_book("BTC-PERPETUAL")
        book = await exchange.watch_order_book("BTC-PERPETUAL", limit=10)
        await exchange.close()
    """

    def describe(self) -> Dict[str, Any]:
        return {
            "id": None,
            "name": None,
            "version": None,
            "rate_limit": 2000,  # ms per token
            "enable_rate_limit": True,
            "timeout": 10000,  # ms
            "token_bucket": {
                "capacity": 1.0,
                "default_cost": 1.0,
                "max_capacity": 1000.0,
            },
            "user_agent": None,
            "headers": {},
            "urls": {},
            "api": {},
            "has": {
                "fetch_markets": True,
                "fetch_currencies": False,
                "fetch_order_book": True,
                "fetch_l2_order_book": True,
                "fetch_trades": False,
                "watch_order_book": False,
                "subscribe_trades": False,
            },
            "required_credentials": {
                "api_key": True,
                "secret": True,
                "uid": False,
                "login": False,
                "password": False,
            },
            "exceptions": {},
            "ws_config": {
                "templates": {},
                "events": {},
            },
            "precision": {},
            "limits": {},
            "fees": {
                "trading": {},
            },
            "currencies": {},
            "common_currencies": {
                "XBT": "BTC",
                "BCC": "BCH",
                "DRK": "DASH",
            },
            "parse_json_response": True,
            "skip_json_on_status_codes": [],
            "min_funding_address_length": 1,
            "options": {},
        }

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        connection_factory=None,
        throttle: Optional[AsyncTokenBucket] = None,
    ):
        """
        Args:
            config: user overrides deep-merged over describe()
            http_client: httpx.AsyncClient to use for REST (optional)
            connection_factory: WebSocket transport factory (optional)
            throttle: pre-built token bucket (optional)
        """
        settings = deep_extend(self.describe(), config or {})
        self.settings = settings

        self.id: str = settings["id"]
        self.name: Optional[str] = settings.get("name")
        self.version: Optional[str] = settings.get("version")
        self.rate_limit: float = settings["rate_limit"]
        self.enable_rate_limit: bool = settings["enable_rate_limit"]
        self.timeout: float = settings["timeout"]
        self.urls: Dict[str, Any] = settings["urls"]
        self.api: Dict[str, Any] = settings["api"]
        self.has: Dict[str, bool] = settings["has"]
        self.required_credentials: Dict[str, bool] = settings["required_credentials"]
        self.exceptions: Dict[str, type] = settings["exceptions"]
        self.ws_config: Dict[str, Any] = settings["ws_config"]
        self.options: Dict[str, Any] = settings["options"]
        self.min_funding_address_length: int = settings["min_funding_address_length"]
        for key in CREDENTIAL_KEYS:
            setattr(self, key, settings.get(key))

        self.routes = build_routing_table(self.api)

        self.throttle = throttle or AsyncTokenBucket(
            TokenBucketConfig.from_rate_limit(self.rate_limit, **settings["token_bucket"])
        )
        self.rest = RestDispatcher(
            self.id,
            sign=self.sign,
            handle_errors=self.handle_errors,
            throttle=self.throttle,
            enable_rate_limit=self.enable_rate_limit,
            timeout_ms=self.timeout,
            parse_json_response=settings["parse_json_response"],
            skip_json_on_status_codes=settings["skip_json_on_status_codes"],
            headers=settings["headers"],
            user_agent=settings["user_agent"],
            client=http_client,
        )

        self.registry = MarketRegistry(
            self.id,
            fetch_markets=self.fetch_markets,
            fetch_currencies=self.fetch_currencies if self.has.get("fetch_currencies") else None,
            default_precision=settings["precision"],
            default_limits=settings["limits"],
            trading_fees=settings["fees"].get("trading"),
            common_currencies=settings["common_currencies"],
            configured_currencies=settings["currencies"],
        )

        self.store = ExchangeStore()
        self.event_bus = EventBus()
        self.order_books = OrderBookEngine(self.store, self.event_bus)
        self.connections = ConnectionManager(
            self.id,
            ws_config=self.ws_config,
            event_bus=self.event_bus,
            market_id=self.market_id,
            timeout_ms=self.timeout,
            connection_factory=connection_factory,
            message_handler=self._websocket_on_message,
            open_handler=self._websocket_on_open,
            subscriber=self._websocket_subscribe,
            unsubscriber=self._websocket_unsubscribe,
        )
        self.event_bus.subscribe(EventKind.CLOSE, self._on_connection_lost)
        self.event_bus.subscribe(EventKind.ERROR, self._on_connection_lost)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def close(self) -> None:
        """Release the HTTP client and every WebSocket connection"""
        await self.connections.close_all()
        await self.rest.close()

    # ------------------------------------------------------------------
    # REST
    # ------------------------------------------------------------------

    async def request(
        self,
        path: str,
        category: str = "public",
        method: str = "GET",
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        body: Any = None,
        cost: Optional[float] = None,
    ) -> Any:
        return await self.rest.request(path, category, method, params, headers, body, cost)

    async def call(self, operation: str, params: Optional[Dict[str, Any]] = None, cost: Optional[float] = None) -> Any:
        """
        Invoke a declared endpoint by operation name.

        Example:
            await exchange.call("public_get_getorderbook", {"instrument": "BTC-PERPETUAL"})

        Raises:
            NotSupported: the operation is not declared in the api table
        """
        route = self.routes.get(operation)
        if route is None:
            raise NotSupported(f"{self.id} does not declare endpoint {operation}")
        return await self.request(route.path, route.category, route.http_method, params, cost=cost)

    def sign(
        self,
        path: str,
        category: str = "public",
        method: str = "GET",
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        body: Any = None,
    ) -> RequestDescriptor:
        """Default signer: unauthenticated request, params in the query (GET) or JSON body"""
        params = params or {}
        base = self.urls.get("api")
        if isinstance(base, dict):
            base = base[category]
        if method == "GET":
            url = f"{base}/{url_with_query(path, params)}"
        else:
            url = f"{base}/{url_with_query(path, {})}"
            if params:
                body = json.dumps(params)
                headers = dict(headers or {}, **{"Content-Type": "application/json"})
        return RequestDescriptor(url=url, method=method, headers=headers, body=body)

    def handle_errors(self, status, reason, url, method, headers, body, response) -> None:
        """Venue error hook, called before the generic status mapping (no-op by default)"""
        return None

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    @staticmethod
    def milliseconds() -> int:
        return int(time.time() * 1000)

    @staticmethod
    def seconds() -> int:
        return int(time.time())

    def nonce(self) -> int:
        return self.milliseconds()

    @staticmethod
    def iso8601(timestamp_ms: Optional[float]) -> Optional[str]:
        return iso8601(timestamp_ms)

    def check_required_credentials(self) -> None:
        """
        Raises:
            AuthenticationError: a required credential is missing
        """
        for key, required in self.required_credentials.items():
            if required and not getattr(self, key, None):
                raise AuthenticationError(f"{self.id} requires `{key}`")

    def check_address(self, address: Optional[str]) -> str:
        """
        Raises:
            InvalidAddress: undefined, too short, one repeated character or whitespace
        """
        if address is None:
            raise InvalidAddress(f"{self.id} address is undefined")
        if (
            len(set(address)) == 1
            or len(address) < self.min_funding_address_length
            or any(ch.isspace() for ch in address)
        ):
            raise InvalidAddress(
                f"{self.id} address is invalid or has less than "
                f"{self.min_funding_address_length} characters: \"{address}\""
            )
        return address

    # ------------------------------------------------------------------
    # markets
    # ------------------------------------------------------------------

    @property
    def markets(self) -> Optional[Dict[str, Market]]:
        return self.registry.markets

    @property
    def symbols(self) -> List[str]:
        return self.registry.symbols

    @property
    def currencies(self) -> Dict[str, Currency]:
        return self.registry.currencies

    async def load_markets(self, reload: bool = False) -> Dict[str, Market]:
        return await self.registry.load_markets(reload)

    def set_markets(self, markets, currencies=None) -> Dict[str, Market]:
        return self.registry.set_markets(markets, currencies)

    def market(self, symbol: str) -> Market:
        return self.registry.market(symbol)

    def market_id(self, symbol: str) -> str:
        return self.registry.market_id(symbol)

    def market_ids(self, symbols: List[str]) -> List[str]:
        return self.registry.market_ids(symbols)

    def find_market(self, id_or_symbol: str):
        return self.registry.find_market(id_or_symbol)

    def find_symbol(self, market_id: str, market: Optional[Market] = None) -> str:
        return self.registry.find_symbol(market_id, market)

    def currency(self, code: str) -> Currency:
        return self.registry.currency(code)

    def currency_id(self, code: str) -> str:
        return self.registry.currency_id(code)

    def common_currency_code(self, code: Optional[str]) -> Optional[str]:
        if code is None:
            return None
        return self.registry.common_currency_code(code)

    async def fetch_markets(self) -> List[Dict[str, Any]]:
        raise NotSupported(f"{self.id} fetch_markets() not supported")

    async def fetch_currencies(self) -> Dict[str, Dict[str, Any]]:
        raise NotSupported(f"{self.id} fetch_currencies() not supported")

    # ------------------------------------------------------------------
    # order books
    # ------------------------------------------------------------------

    async def fetch_order_book(self, symbol: str, limit: Optional[int] = None, params=None) -> OrderBook:
        raise NotSupported(f"{self.id} fetch_order_book() not supported")

    async def fetch_l2_order_book(self, symbol: str, limit: Optional[int] = None, params=None) -> OrderBook:
        """Order book with equal prices aggregated, optionally depth limited"""
        book = await self.fetch_order_book(symbol, limit, params)
        return OrderBook(
            bids=aggregate_levels(book.bids, descending=True),
            asks=aggregate_levels(book.asks, descending=False),
            timestamp=book.timestamp,
            nonce=book.nonce,
        ).copy(limit)

    async def watch_order_book(self, symbol: str, limit: Optional[int] = None, params=None) -> OrderBook:
        """
        Subscribe to the order book stream and return the current book.

        Returns the stored book when one exists, otherwise waits for the
        first one. The whole call is bounded by the configured timeout.

        Raises:
            RequestTimeout: no acknowledgement / book within the timeout
            ExchangeNotAvailable: the connection failed meanwhile
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout / 1000.0

        await self.subscribe_order_book(symbol, params)
        book = self.order_books.get(symbol, limit)
        if book is not None:
            return book

        ctx = self.connections.get_context("ob", symbol)
        event = await self.event_bus.wait_for(
            EventKind.ORDER_BOOK,
            symbol,
            timeout=max(0.0, deadline - loop.time()),
            connection_id=ctx.connection_id if ctx is not None else None,
        )
        return event.data.copy(limit)

    async def subscribe_order_book(self, symbol: str, params=None) -> None:
        await self.load_markets()
        await self.connections.subscribe("ob", symbol, params)

    async def unsubscribe_order_book(self, symbol: str, params=None) -> None:
        await self.connections.unsubscribe("ob", symbol, params)
        self.order_books.remove(symbol)

    async def subscribe_trades(self, symbol: str, params=None) -> None:
        await self.load_markets()
        await self.connections.subscribe("trade", symbol, params)

    async def unsubscribe_trades(self, symbol: str, params=None) -> None:
        await self.connections.unsubscribe("trade", symbol, params)

    # ------------------------------------------------------------------
    # websocket hooks
    # ------------------------------------------------------------------

    def _on_connection_lost(self, event) -> None:
        # books built from a dead stream are not resumed by the next snapshot
        for stream_event, symbol in event.data or ():
            if stream_event == "ob":
                self.order_books.remove(symbol)
                logger.debug(f"[WS] {self.id} {symbol} book dropped with connection {event.connection_id}")

    def _websocket_on_open(self, connection_id: str) -> None:
        pass

    def _websocket_on_message(self, connection_id: str, data: str) -> None:
        logger.debug(f"[WS] {self.id} {connection_id} unhandled message: {data[:200]}")

    async def _websocket_subscribe(self, connection_id, event, symbol, correlation_id, params) -> None:
        raise NotSupported(f"subscribe {event}({symbol}) not supported for exchange {self.id}")

    async def _websocket_unsubscribe(self, connection_id, event, symbol, correlation_id, params) -> None:
        raise NotSupported(f"unsubscribe {event}({symbol}) not supported for exchange {self.id}")
