# -*- coding: utf-8 -*-
"""
Deribit Adapter

Reference venue built on BaseExchange:
- REST: static endpoint table, x-deribit-sig signing for private calls,
  numeric error codes mapped before the generic HTTP handler
- WebSocket (JSON-RPC 2.0): book / trades channels over one shared
  connection; the JSON-RPC "id" carries the subscription correlation
"""

import base64
import hashlib
import itertools
import json
import logging
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlencode

from exchange_core.exchanges.base import BaseExchange
from exchange_core.exchanges.event_bus import Event, EventKind
from exchange_core.exchanges.exceptions import (
    AuthenticationError,
    DDoSProtection,
    ExchangeError,
    ExchangeNotAvailable,
    InsufficientFunds,
    InvalidOrder,
    NotSupported,
    OrderNotFound,
    PermissionDenied,
)
from exchange_core.exchanges.http_client import RequestDescriptor
from exchange_core.exchanges.orderbook import OrderBook
from exchange_core.exchanges.utils import (
    deep_extend,
    safe_float,
    safe_integer,
    safe_string,
    safe_value,
)

logger = logging.getLogger(__name__)

DEFAULT_BOOK_DEPTH = 10
DEFAULT_TRADES_LIMIT = 10000

EXCEPTIONS = {
    "9999": PermissionDenied,  # api_not_enabled
    "10000": AuthenticationError,  # authorization_required
    "10001": ExchangeError,  # error
    "10002": InvalidOrder,  # qty_too_low
    "10003": InvalidOrder,  # order_overlap
    "10004": OrderNotFound,  # order_not_found
    "10005": InvalidOrder,  # price_too_low
    "10006": InvalidOrder,  # price_too_low4idx
    "10007": InvalidOrder,  # price_too_high
    "10008": InvalidOrder,  # price_too_high4idx
    "10009": InsufficientFunds,  # not_enough_funds
    "10010": OrderNotFound,  # already_closed
    "10011": InvalidOrder,  # price_not_allowed
    "10012": InvalidOrder,  # book_closed
    "10013": PermissionDenied,  # pme_max_total_open_orders
    "10014": PermissionDenied,  # pme_max_future_open_orders
    "10015": PermissionDenied,  # pme_max_option_open_orders
    "10016": PermissionDenied,  # pme_max_future_open_orders_size
    "10017": PermissionDenied,  # pme_max_option_open_orders_size
    "10019": PermissionDenied,  # locked_by_admin
    "10020": ExchangeError,  # invalid_or_unsupported_instrument
    "10022": InvalidOrder,  # invalid_quantity
    "10023": InvalidOrder,  # invalid_price
    "10024": InvalidOrder,  # invalid_max_show
    "10025": InvalidOrder,  # invalid_order_id
    "10026": InvalidOrder,  # price_precision_exceeded
    "10027": InvalidOrder,  # non_integer_contract_amount
    "10028": DDoSProtection,  # too_many_requests
    "10029": OrderNotFound,  # not_owner_of_order
    "10030": ExchangeError,  # must_be_websocket_request
    "10031": ExchangeError,  # invalid_args_for_instrument
    "10032": InvalidOrder,  # whole_cost_too_low
    "10033": NotSupported,  # not_implemented
    "10034": InvalidOrder,  # stop_price_too_high
    "10035": InvalidOrder,  # stop_price_too_low
    "11030": ExchangeError,  # other_reject
    "11031": ExchangeError,  # other_error
    "11035": InvalidOrder,  # no_more_stops
    "11036": InvalidOrder,  # invalid_stoppx_for_index_or_last
    "11037": InvalidOrder,  # outdated_instrument_for_IV_order
    "11038": InvalidOrder,  # no_adv_for_futures
    "11039": InvalidOrder,  # no_adv_postonly
    "11040": InvalidOrder,  # impv_not_in_range
    "11041": InvalidOrder,  # not_adv_order
    "11042": PermissionDenied,  # permission_denied
    "11044": OrderNotFound,  # not_open_order
    "11045": ExchangeError,  # invalid_event
    "11046": ExchangeError,  # outdated_instrument
    "11047": ExchangeError,  # unsupported_arg_combination
    "11048": ExchangeError,  # not_on_this_server
    "11050": ExchangeError,  # invalid_request
    "11051": ExchangeNotAvailable,  # system_maintenance
}


class Deribit(BaseExchange):
    """Deribit (BTC/ETH futures and options)"""

    def describe(self) -> Dict[str, Any]:
        return deep_extend(super().describe(), {
            "id": "deribit",
            "name": "Deribit",
            "version": "v1",
            "rate_limit": 2000,
            "has": {
                "fetch_trades": True,
                "watch_order_book": True,
                "subscribe_trades": True,
            },
            "urls": {
                "api": "https://www.deribit.com",
                "test": "https://test.deribit.com",
                "www": "https://www.deribit.com",
                "doc": "https://docs.deribit.com",
            },
            "api": {
                "public": {
                    "get": [
                        "ping",
                        "test",
                        "getinstruments",
                        "index",
                        "getcurrencies",
                        "getorderbook",
                        "getlasttrades",
                        "getsummary",
                        "stats",
                        "getannouncments",
                        "get_tradingview_chart_data",
                    ],
                },
                "private": {
                    "get": [
                        "account",
                        "getopenorders",
                        "positions",
                        "orderhistory",
                        "orderstate",
                        "tradehistory",
                        "newannouncements",
                    ],
                    "post": [
                        "buy",
                        "sell",
                        "edit",
                        "cancel",
                        "cancelall",
                    ],
                },
            },
            "ws_config": {
                "templates": {
                    "default": {
                        "type": "ws",
                        "baseurl": "wss://www.deribit.com/ws/api/v2/",
                        "testurl": "wss://test.deribit.com/ws/api/v2/",
                    },
                },
                "events": {
                    "ob": {"template": "default"},
                    "trade": {"template": "default"},
                },
            },
            "exceptions": EXCEPTIONS,
        })

    def __init__(self, config: Optional[Dict[str, Any]] = None, **kwargs):
        super().__init__(config, **kwargs)
        self._request_ids = itertools.count(1)
        # JSON-RPC id -> connection manager correlation id
        self._ws_requests: Dict[int, str] = {}
        # (event, symbol) -> subscribed channel
        self._ws_channels: Dict[Tuple[str, str], str] = {}

    # ------------------------------------------------------------------
    # REST
    # ------------------------------------------------------------------

    def sign(self, path, category="public", method="GET", params=None, headers=None, body=None) -> RequestDescriptor:
        params = params or {}
        query = f"/api/{self.version}/{category}/{path}"
        url = self.urls["api"] + query
        if category == "public":
            if params:
                url += "?" + urlencode(params)
            return RequestDescriptor(url=url, method=method, headers=headers, body=body)

        self.check_required_credentials()
        nonce = str(self.nonce())
        auth = f"_={nonce}&_ackey={self.api_key}&_acsec={self.secret}&_action={query}"
        if params:
            params = dict(sorted(params.items()))
            auth += "&" + urlencode(params)
        digest = base64.b64encode(hashlib.sha256(auth.encode("utf-8")).digest()).decode("ascii")
        headers = {"x-deribit-sig": f"{self.api_key}.{nonce}.{digest}"}
        if method != "GET":
            headers["Content-Type"] = "application/x-www-form-urlencoded"
            body = urlencode(params)
        elif params:
            url += "?" + urlencode(params)
        return RequestDescriptor(url=url, method=method, headers=headers, body=body)

    def handle_errors(self, status, reason, url, method, headers, body, response) -> None:
        """
        Map Deribit error codes; runs on every reply, HTTP 200 included.

        {"success": false, "message": "order_not_found", "error": 10004}
        """
        if not response or not isinstance(response, dict):
            return
        error = safe_string(response, "error")
        if error is not None and error != "0":
            feedback = f"{self.id} {body}"
            raise self.exceptions.get(error, ExchangeError)(feedback)

    async def fetch_markets(self) -> List[Dict[str, Any]]:
        response = await self.call("public_get_getinstruments")
        result = []
        for market in safe_value(response, "result", []):
            market_id = safe_string(market, "instrumentName")
            base_id = safe_string(market, "baseCurrency")
            quote_id = safe_string(market, "currency")
            market_type = safe_string(market, "kind")
            min_amount = safe_float(market, "minTradeAmount")
            tick_size = safe_float(market, "tickSize")
            result.append({
                "id": market_id,
                "symbol": market_id,
                "base": self.common_currency_code(base_id),
                "quote": self.common_currency_code(quote_id),
                "baseId": base_id,
                "quoteId": quote_id,
                "active": safe_value(market, "isActive"),
                "precision": {
                    "amount": min_amount,
                    "price": tick_size,
                },
                "limits": {
                    "amount": {"min": min_amount, "max": None},
                    "price": {"min": tick_size, "max": None},
                    "cost": {"min": None, "max": None},
                },
                "type": market_type,
                "info": market,
            })
        return result

    async def fetch_order_book(self, symbol: str, limit: Optional[int] = None, params=None) -> OrderBook:
        await self.load_markets()
        market = self.market(symbol)
        request = dict({"instrument": market.id}, **(params or {}))
        response = await self.call("public_get_getorderbook", request)
        us_out = safe_integer(response, "usOut")
        book = self.order_books.parse_snapshot(
            safe_value(response, "result", {}),
            timestamp=us_out // 1000 if us_out is not None else None,
            price_key="price",
            amount_key="quantity",
            nonce=safe_integer(response, "tstamp"),
        )
        return book.copy(limit)

    async def fetch_trades(self, symbol: str, since: Optional[int] = None, limit: Optional[int] = None, params=None):
        await self.load_markets()
        market = self.market(symbol)
        request = {
            "instrument": market.id,
            "limit": limit if limit is not None else DEFAULT_TRADES_LIMIT,
        }
        if since is not None:
            request["startTimestamp"] = since
        request.update(params or {})
        response = await self.call("public_get_getlasttrades", request)
        trades = [self.parse_trade(trade, market.symbol) for trade in safe_value(response, "result", [])]
        trades.sort(key=lambda trade: trade["timestamp"] or 0)
        if since is not None:
            trades = [trade for trade in trades if (trade["timestamp"] or 0) >= since]
        if limit is not None:
            trades = trades[-limit:]
        return trades

    def parse_trade(self, trade: Dict[str, Any], symbol: Optional[str] = None) -> Dict[str, Any]:
        """REST (camelCase) and WebSocket (snake_case) trade payloads"""
        if symbol is None:
            market_id = safe_string(trade, "instrument") or safe_string(trade, "instrument_name")
            symbol = self.find_symbol(market_id) if market_id else None
        timestamp = safe_integer(trade, "timeStamp", safe_integer(trade, "timestamp"))
        price = safe_float(trade, "price")
        amount = safe_float(trade, "quantity", safe_float(trade, "amount"))
        cost = price * amount if price is not None and amount is not None else None
        fee = None
        fee_cost = safe_float(trade, "fee")
        if fee_cost is not None:
            fee = {
                "cost": fee_cost,
                "currency": self.common_currency_code(safe_string(trade, "feeCurrency")),
            }
        return {
            "id": safe_string(trade, "tradeId", safe_string(trade, "trade_id")),
            "info": trade,
            "timestamp": timestamp,
            "datetime": self.iso8601(timestamp),
            "symbol": symbol,
            "order": safe_string(trade, "orderId"),
            "side": safe_string(trade, "side", safe_string(trade, "direction")),
            "price": price,
            "amount": amount,
            "cost": cost,
            "fee": fee,
        }

    # ------------------------------------------------------------------
    # WebSocket
    # ------------------------------------------------------------------

    def _channel(self, event: str, symbol: str, params: Dict[str, Any]) -> str:
        market_id = self.market_id(symbol).upper()
        if event == "ob":
            depth = safe_integer(params, "limit", DEFAULT_BOOK_DEPTH)
            return f"book.{market_id}.none.{depth}.100ms"
        if event == "trade":
            return f"trades.{market_id}.100ms"
        raise NotSupported(f"subscribe {event}({symbol}) not supported for exchange {self.id}")

    async def _send_rpc(self, connection_id: str, method: str, channel: str, correlation_id: str) -> None:
        request_id = next(self._request_ids)
        self._ws_requests[request_id] = correlation_id
        await self.connections.send_json({
            "jsonrpc": "2.0",
            "id": request_id,
            "method": method,
            "params": {"channels": [channel]},
        }, connection_id)

    async def _websocket_subscribe(self, connection_id, event, symbol, correlation_id, params) -> None:
        channel = self._channel(event, symbol, params)
        self._ws_channels[(event, symbol)] = channel
        await self._send_rpc(connection_id, "public/subscribe", channel, correlation_id)

    async def _websocket_unsubscribe(self, connection_id, event, symbol, correlation_id, params) -> None:
        channel = self._ws_channels.get((event, symbol)) or self._channel(event, symbol, params)
        await self._send_rpc(connection_id, "public/unsubscribe", channel, correlation_id)

    def _websocket_on_open(self, connection_id: str) -> None:
        self._ws_requests.clear()

    def _websocket_on_message(self, connection_id: str, data: str) -> None:
        msg = json.loads(data)
        request_id = msg.get("id")

        if "error" in msg:
            error = msg["error"] or {}
            failure = ExchangeError(
                f"{self.id} status {safe_integer(error, 'code')}:{safe_string(error, 'message')}"
            )
            correlation_id = self._ws_requests.pop(request_id, None)
            if correlation_id is not None:
                self.connections.resolve(correlation_id, False, failure)
            else:
                self.event_bus.publish(Event(EventKind.ERROR, connection_id=connection_id, error=failure))
            return

        if "result" in msg:
            correlation_id = self._ws_requests.pop(request_id, None)
            if correlation_id is not None:
                self.connections.resolve(correlation_id, True)
            elif isinstance(msg["result"], list):
                for channel in msg["result"]:
                    event, symbol = self._parse_channel(channel)
                    if event is not None:
                        self.connections.resolve_subscriptions(event, symbol, True)
            return

        params = msg.get("params") or {}
        channel = params.get("channel") or ""
        if channel.startswith("book."):
            self._handle_order_book(connection_id, params.get("data") or {})
        elif channel.startswith("trades."):
            self._handle_trades(connection_id, params.get("data") or [])

    def _parse_channel(self, channel: str) -> Tuple[Optional[str], Optional[str]]:
        parts = channel.split(".")
        if len(parts) < 2:
            return None, None
        event = {"book": "ob", "trades": "trade"}.get(parts[0])
        return event, self.find_symbol(parts[1])

    @staticmethod
    def _book_levels(levels) -> List[Tuple[float, float]]:
        """[price, amount] or [action, price, amount] ('delete' -> amount 0)"""
        result = []
        for level in levels or []:
            if len(level) == 3:
                action, price, amount = level
                result.append((float(price), 0.0 if action == "delete" else float(amount)))
            else:
                result.append((float(level[0]), float(level[1])))
        return result

    def _handle_order_book(self, connection_id: str, data: Dict[str, Any]) -> None:
        symbol = self.find_symbol(safe_string(data, "instrument_name"))
        raw = {
            "bids": self._book_levels(data.get("bids")),
            "asks": self._book_levels(data.get("asks")),
        }
        timestamp = safe_integer(data, "timestamp")
        nonce = safe_integer(data, "change_id")
        if data.get("type") == "change":
            book = self.order_books.apply_delta(symbol, raw, timestamp=timestamp, nonce=nonce)
        else:
            book = self.order_books.apply_snapshot(symbol, raw, timestamp=timestamp, nonce=nonce)
        ctx = self.connections.get_context("ob", symbol)
        if ctx is not None and book is not None:
            ctx.last_data = timestamp

    def _handle_trades(self, connection_id: str, data: List[Dict[str, Any]]) -> None:
        if not data:
            return
        trades = [self.parse_trade(trade) for trade in data]
        symbol = trades[0]["symbol"]
        self.store.add_trades(symbol, trades)
        for trade in trades:
            self.event_bus.publish(Event(EventKind.TRADE, trade["symbol"], trade, connection_id))
