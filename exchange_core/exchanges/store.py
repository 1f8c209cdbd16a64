"""
Exchange Store

Explicit per-client state holder for streamed data. Each entry has a single
writer: order books are written only by OrderBookEngine, trades only by the
adapter message handler.
"""

from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Optional

DEFAULT_TRADES_LIMIT = 1000


@dataclass
class ExchangeStore:
    """Order books / trades keyed by symbol"""
    orderbooks: Dict[str, Any] = field(default_factory=dict)
    trades: Dict[str, Deque[Dict[str, Any]]] = field(default_factory=dict)
    trades_limit: int = DEFAULT_TRADES_LIMIT

    def add_trades(self, symbol: str, trades: List[Dict[str, Any]]) -> None:
        """Append trades, keeping only the newest `trades_limit` entries"""
        bucket = self.trades.get(symbol)
        if bucket is None:
            bucket = deque(maxlen=self.trades_limit)
            self.trades[symbol] = bucket
        bucket.extend(trades)

    def get_trades(self, symbol: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        items = list(self.trades.get(symbol, ()))
        if limit is not None:
            items = items[-limit:]
        return items

    def clear(self, symbol: Optional[str] = None) -> None:
        if symbol is None:
            self.orderbooks.clear()
            self.trades.clear()
            return
        self.orderbooks.pop(symbol, None)
        self.trades.pop(symbol, None)
