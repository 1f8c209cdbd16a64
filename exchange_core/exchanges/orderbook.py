"""
Order Book Engine

L2 order book parsing and incremental maintenance.

Side invariants (hold after every snapshot and every delta):
- bids strictly descending by price, asks strictly ascending
- unique prices per side
- no level with zero amount

Delta rule (tolerant L2):
    existing price + zero amount    -> remove level
    existing price + nonzero amount -> replace amount
    new price      + nonzero amount -> insert at sorted position
    new price      + zero amount    -> no-op
"""

import logging
from bisect import bisect_left
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from exchange_core.exchanges.event_bus import Event, EventBus, EventKind
from exchange_core.exchanges.store import ExchangeStore
from exchange_core.exchanges.utils import iso8601

logger = logging.getLogger(__name__)

Level = Tuple[float, float]  # (price, amount)


@dataclass
class OrderBook:
    """L2 order book"""
    bids: List[Level] = field(default_factory=list)
    asks: List[Level] = field(default_factory=list)
    timestamp: Optional[int] = None
    nonce: Any = None

    @property
    def datetime(self) -> Optional[str]:
        return iso8601(self.timestamp)

    @property
    def best_bid(self) -> Optional[Level]:
        return self.bids[0] if self.bids else None

    @property
    def best_ask(self) -> Optional[Level]:
        return self.asks[0] if self.asks else None

    def copy(self, limit: Optional[int] = None) -> "OrderBook":
        """Detached copy, optionally limited to the first `limit` levels per side"""
        bids = self.bids if limit is None else self.bids[:limit]
        asks = self.asks if limit is None else self.asks[:limit]
        return OrderBook(bids=list(bids), asks=list(asks), timestamp=self.timestamp, nonce=self.nonce)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "bids": [list(level) for level in self.bids],
            "asks": [list(level) for level in self.asks],
            "timestamp": self.timestamp,
            "datetime": self.datetime,
            "nonce": self.nonce,
        }


def _sort_key(descending: bool):
    if descending:
        return lambda level: -level[0]
    return lambda level: level[0]


def aggregate_levels(levels: Iterable[Level], descending: bool = False) -> List[Level]:
    """
    Sum amounts of equal prices, drop empty levels and sort the side.

    Args:
        levels: (price, amount) pairs in any order
        descending: True for bids

    Returns:
        side satisfying the order book invariants
    """
    totals: Dict[float, float] = {}
    for price, amount in levels:
        totals[price] = totals.get(price, 0.0) + amount
    result = [(price, amount) for price, amount in totals.items() if amount != 0]
    result.sort(key=_sort_key(descending))
    return result


def merge_side(side: List[Level], deltas: Iterable[Level], descending: bool) -> None:
    """Apply delta levels to a sorted side in place"""
    key = _sort_key(descending)
    for price, amount in deltas:
        target = -price if descending else price
        index = bisect_left(side, target, key=key)
        exists = index < len(side) and side[index][0] == price
        if exists:
            if amount == 0:
                del side[index]
            else:
                side[index] = (price, amount)
        elif amount != 0:
            side.insert(index, (price, amount))


class OrderBookEngine:
    """
    Parses raw payloads into OrderBook objects and keeps the per-symbol books
    in the ExchangeStore (sole writer of store.orderbooks).
    """

    def __init__(self, store: Optional[ExchangeStore] = None, event_bus: Optional[EventBus] = None):
        self.store = store or ExchangeStore()
        self.event_bus = event_bus

    @staticmethod
    def parse_bid_ask(raw, price_key=0, amount_key=1) -> Level:
        return float(raw[price_key]), float(raw[amount_key])

    def parse_bids_asks(self, raw_levels, price_key=0, amount_key=1) -> List[Level]:
        if not raw_levels:
            return []
        if isinstance(raw_levels, Mapping):
            raw_levels = list(raw_levels.values())
        return [self.parse_bid_ask(raw, price_key, amount_key) for raw in raw_levels]

    def parse_snapshot(
        self,
        raw: Mapping[str, Any],
        timestamp: Optional[int] = None,
        bids_key: str = "bids",
        asks_key: str = "asks",
        price_key=0,
        amount_key=1,
        nonce: Any = None,
    ) -> OrderBook:
        """
        Build an OrderBook from a raw venue snapshot.

        Args:
            raw: payload holding the bid/ask level arrays
            timestamp: snapshot time in ms
            bids_key / asks_key: keys of the level arrays in `raw`
            price_key / amount_key: index (or key) of price/amount in a level
            nonce: venue sequence number, if any

        Returns:
            OrderBook (duplicate prices summed, empty levels dropped)
        """
        bids = self.parse_bids_asks(raw.get(bids_key), price_key, amount_key)
        asks = self.parse_bids_asks(raw.get(asks_key), price_key, amount_key)
        return OrderBook(
            bids=aggregate_levels(bids, descending=True),
            asks=aggregate_levels(asks, descending=False),
            timestamp=timestamp,
            nonce=nonce,
        )

    def merge_delta(
        self,
        book: OrderBook,
        raw: Mapping[str, Any],
        timestamp: Optional[int] = None,
        bids_key: str = "bids",
        asks_key: str = "asks",
        price_key=0,
        amount_key=1,
        nonce: Any = None,
    ) -> OrderBook:
        """Apply a raw delta to `book` in place and return it"""
        merge_side(book.bids, self.parse_bids_asks(raw.get(bids_key), price_key, amount_key), descending=True)
        merge_side(book.asks, self.parse_bids_asks(raw.get(asks_key), price_key, amount_key), descending=False)
        if timestamp is not None:
            book.timestamp = timestamp
        if nonce is not None:
            book.nonce = nonce
        return book

    def apply_snapshot(self, symbol: str, raw: Mapping[str, Any], **kwargs) -> OrderBook:
        """Replace the stored book for `symbol` and publish it"""
        book = self.parse_snapshot(raw, **kwargs)
        self.store.orderbooks[symbol] = book
        logger.debug(
            f"[ORDERBOOK] Snapshot {symbol}: {len(book.bids)} bids, {len(book.asks)} asks"
        )
        self._publish(symbol, book)
        return book

    def apply_delta(self, symbol: str, raw: Mapping[str, Any], **kwargs) -> Optional[OrderBook]:
        """
        Merge a delta into the stored book for `symbol` and publish it.

        Returns:
            the updated book, or None when no snapshot has been applied yet
        """
        book = self.store.orderbooks.get(symbol)
        if book is None:
            logger.warning(f"[ORDERBOOK] Delta for {symbol} before snapshot, ignored")
            return None
        self.merge_delta(book, raw, **kwargs)
        self._publish(symbol, book)
        return book

    def get(self, symbol: str, limit: Optional[int] = None) -> Optional[OrderBook]:
        book = self.store.orderbooks.get(symbol)
        return book.copy(limit) if book is not None else None

    def remove(self, symbol: str) -> None:
        self.store.orderbooks.pop(symbol, None)

    def _publish(self, symbol: str, book: OrderBook) -> None:
        if self.event_bus is not None:
            self.event_bus.publish(Event(EventKind.ORDER_BOOK, symbol, book.copy()))
