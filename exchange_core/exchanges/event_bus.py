"""
Event Bus

In-process fan-out of normalized events to listeners:
- kinds: order book ("ob"), trade, error, close
- listeners optionally scoped to one symbol
- wait_for(): first matching event, or fail fast on error/close of the
  awaited connection, or RequestTimeout at the deadline
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from exchange_core.exchanges.exceptions import ExchangeNotAvailable, RequestTimeout

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    ORDER_BOOK = "ob"
    TRADE = "trade"
    ERROR = "error"
    CLOSE = "close"


@dataclass(frozen=True)
class Event:
    """Normalized event"""
    kind: EventKind
    symbol: Optional[str] = None
    data: Any = None
    connection_id: Optional[str] = None
    error: Optional[BaseException] = None


Listener = Callable[[Event], None]


class EventBus:
    """
    Synchronous publish, listeners invoked in subscription order.

    Example:
        >>> bus = EventBus()
        >>> unsubscribe = bus.subscribe(EventKind.ORDER_BOOK, print, symbol="BTC-PERPETUAL")
        >>> bus.publish(Event(EventKind.ORDER_BOOK, "BTC-PERPETUAL", book))
        >>> unsubscribe()
    """

    def __init__(self):
        # (kind, symbol or None) -> listeners
        self._listeners: Dict[Tuple[EventKind, Optional[str]], List[Listener]] = {}

    def subscribe(self, kind: EventKind, listener: Listener, symbol: Optional[str] = None) -> Callable[[], None]:
        """
        Args:
            kind: event kind
            listener: callable(Event)
            symbol: only deliver events for this symbol (None = all)

        Returns:
            callable removing the listener
        """
        key = (EventKind(kind), symbol)
        self._listeners.setdefault(key, []).append(listener)

        def _unsubscribe() -> None:
            listeners = self._listeners.get(key)
            if listeners and listener in listeners:
                listeners.remove(listener)
                if not listeners:
                    del self._listeners[key]

        return _unsubscribe

    def listener_count(self, kind: Optional[EventKind] = None) -> int:
        return sum(
            len(listeners)
            for (k, _), listeners in self._listeners.items()
            if kind is None or k == kind
        )

    def publish(self, event: Event) -> None:
        targets = list(self._listeners.get((event.kind, None), ()))
        if event.symbol is not None:
            targets += self._listeners.get((event.kind, event.symbol), ())

        for listener in targets:
            try:
                listener(event)
            except Exception as e:
                logger.error(f"[EVENT_BUS] Listener error on {event.kind.value}/{event.symbol}: {e}")

    async def wait_for(
        self,
        kind: EventKind,
        symbol: Optional[str] = None,
        timeout: Optional[float] = None,
        connection_id: Optional[str] = None,
    ) -> Event:
        """
        Wait for the next event of `kind` (for `symbol`).

        Args:
            kind: awaited event kind
            symbol: awaited symbol (None = any)
            timeout: deadline in seconds (None = no deadline)
            connection_id: fail fast on error/close of this connection
                (None = any connection)

        Returns:
            the matching Event

        Raises:
            the broadcast error (or ExchangeNotAvailable) on error/close
            RequestTimeout: deadline reached
        """
        loop = asyncio.get_running_loop()
        future: asyncio.Future = loop.create_future()

        def _on_event(event: Event) -> None:
            if not future.done():
                future.set_result(event)

        def _on_failure(event: Event) -> None:
            if future.done():
                return
            if connection_id is not None and event.connection_id != connection_id:
                return
            error = event.error
            if error is None:
                error = ExchangeNotAvailable(f"connection {event.connection_id} {event.kind.value}")
            future.set_exception(error)

        unsubscribers = [self.subscribe(kind, _on_event, symbol)]
        if kind not in (EventKind.ERROR, EventKind.CLOSE):
            unsubscribers.append(self.subscribe(EventKind.ERROR, _on_failure))
            unsubscribers.append(self.subscribe(EventKind.CLOSE, _on_failure))

        try:
            if timeout is None:
                return await future
            try:
                return await asyncio.wait_for(future, timeout)
            except asyncio.TimeoutError:
                scope = f"{kind.value} {symbol}" if symbol else kind.value
                raise RequestTimeout(f"{scope} wait timed out ({timeout * 1000:.0f} ms)") from None
        finally:
            for unsubscribe in unsubscribers:
                unsubscribe()
