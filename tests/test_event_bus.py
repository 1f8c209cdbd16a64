"""
Event Bus Tests
"""

import asyncio
from unittest.mock import Mock

import pytest

from exchange_core.exchanges.event_bus import Event, EventBus, EventKind
from exchange_core.exchanges.exceptions import ExchangeNotAvailable, RequestTimeout


class TestPublish:
    """subscribe() / publish()"""

    def test_symbol_scoped_listener(self):
        bus = EventBus()
        btc, anything = Mock(), Mock()
        bus.subscribe(EventKind.ORDER_BOOK, btc, symbol="BTC/USD")
        bus.subscribe(EventKind.ORDER_BOOK, anything)

        bus.publish(Event(EventKind.ORDER_BOOK, "ETH/USD", data=1))
        bus.publish(Event(EventKind.ORDER_BOOK, "BTC/USD", data=2))

        assert btc.call_count == 1
        assert anything.call_count == 2

    def test_other_kinds_not_delivered(self):
        bus = EventBus()
        listener = Mock()
        bus.subscribe(EventKind.TRADE, listener)

        bus.publish(Event(EventKind.ORDER_BOOK, "BTC/USD"))

        listener.assert_not_called()

    def test_unsubscribe(self):
        bus = EventBus()
        listener = Mock()
        unsubscribe = bus.subscribe("trade", listener)
        assert bus.listener_count(EventKind.TRADE) == 1

        unsubscribe()
        unsubscribe()
        bus.publish(Event(EventKind.TRADE, "BTC/USD"))

        listener.assert_not_called()
        assert bus.listener_count() == 0

    def test_listener_error_does_not_stop_delivery(self):
        bus = EventBus()
        second = Mock()
        bus.subscribe(EventKind.TRADE, Mock(side_effect=RuntimeError("boom")))
        bus.subscribe(EventKind.TRADE, second)

        bus.publish(Event(EventKind.TRADE, "BTC/USD"))

        second.assert_called_once()


class TestWaitFor:
    """wait_for()"""

    @pytest.mark.asyncio
    async def test_returns_matching_event(self):
        bus = EventBus()
        loop = asyncio.get_running_loop()
        loop.call_soon(bus.publish, Event(EventKind.ORDER_BOOK, "ETH/USD", data="eth"))
        loop.call_soon(bus.publish, Event(EventKind.ORDER_BOOK, "BTC/USD", data="btc"))

        event = await bus.wait_for(EventKind.ORDER_BOOK, "BTC/USD", timeout=1.0)

        assert event.data == "btc"
        assert bus.listener_count() == 0

    @pytest.mark.asyncio
    async def test_timeout(self):
        bus = EventBus()

        with pytest.raises(RequestTimeout, match=r"ob BTC/USD wait timed out \(10 ms\)"):
            await bus.wait_for(EventKind.ORDER_BOOK, "BTC/USD", timeout=0.01)
        assert bus.listener_count() == 0

    @pytest.mark.asyncio
    async def test_error_event_fails_waiter(self):
        bus = EventBus()
        error = ExchangeNotAvailable("socket dropped")
        asyncio.get_running_loop().call_soon(
            bus.publish, Event(EventKind.ERROR, connection_id="c1", error=error)
        )

        with pytest.raises(ExchangeNotAvailable, match="socket dropped"):
            await bus.wait_for(EventKind.ORDER_BOOK, "BTC/USD", timeout=1.0, connection_id="c1")

    @pytest.mark.asyncio
    async def test_close_of_other_connection_ignored(self):
        bus = EventBus()
        loop = asyncio.get_running_loop()
        loop.call_soon(bus.publish, Event(EventKind.CLOSE, connection_id="other"))
        loop.call_soon(bus.publish, Event(EventKind.ORDER_BOOK, "BTC/USD", data="ok"))

        event = await bus.wait_for(EventKind.ORDER_BOOK, "BTC/USD", timeout=1.0, connection_id="c1")

        assert event.data == "ok"

    @pytest.mark.asyncio
    async def test_close_without_error(self):
        bus = EventBus()
        asyncio.get_running_loop().call_soon(bus.publish, Event(EventKind.CLOSE, connection_id="c1"))

        with pytest.raises(ExchangeNotAvailable, match="connection c1 close"):
            await bus.wait_for(EventKind.TRADE, timeout=1.0)
