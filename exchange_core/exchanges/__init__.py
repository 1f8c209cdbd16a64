# -*- coding: utf-8 -*-
"""
Exchange Adapter Layer

Shared venue client runtime (REST dispatch, markets, order books,
WebSocket connection management) and the Deribit reference adapter.
"""

from exchange_core.exchanges.base import BaseExchange
from exchange_core.exchanges.connection_manager import (
    ConnectionManager,
    SubscriptionState,
)
from exchange_core.exchanges.deribit import Deribit
from exchange_core.exchanges.event_bus import Event, EventBus, EventKind
from exchange_core.exchanges.exceptions import (
    AuthenticationError,
    DDoSProtection,
    ExchangeError,
    ExchangeNotAvailable,
    InsufficientFunds,
    InvalidAddress,
    InvalidOrder,
    NetworkError,
    NotSupported,
    OrderNotFound,
    PermissionDenied,
    RequestTimeout,
)
from exchange_core.exchanges.http_client import RequestDescriptor, RestDispatcher
from exchange_core.exchanges.market_registry import Currency, Market, MarketRegistry
from exchange_core.exchanges.orderbook import OrderBook, OrderBookEngine
from exchange_core.exchanges.store import ExchangeStore

__all__ = [
    "BaseExchange",
    "Deribit",
    "ConnectionManager",
    "SubscriptionState",
    "Event",
    "EventBus",
    "EventKind",
    "RequestDescriptor",
    "RestDispatcher",
    "Currency",
    "Market",
    "MarketRegistry",
    "OrderBook",
    "OrderBookEngine",
    "ExchangeStore",
    "ExchangeError",
    "AuthenticationError",
    "PermissionDenied",
    "InvalidAddress",
    "NotSupported",
    "InsufficientFunds",
    "InvalidOrder",
    "OrderNotFound",
    "NetworkError",
    "DDoSProtection",
    "RequestTimeout",
    "ExchangeNotAvailable",
]
