"""
WebSocket Connection Tests

websockets.connect is patched; the fake socket replays queued frames.
"""

import asyncio
from unittest.mock import AsyncMock, Mock, patch

import pytest
from websockets.exceptions import ConnectionClosedOK
from websockets.frames import Close

from exchange_core.exchanges.exceptions import ExchangeNotAvailable, RequestTimeout
from exchange_core.exchanges.ws_client import WebSocketConnection

CONNECT = "exchange_core.exchanges.ws_client.websockets.connect"


class FakeSocket:
    """recv() replays queued frames; exceptions in the queue are raised"""

    def __init__(self):
        self.frames = asyncio.Queue()
        self.sent = []
        self.close = AsyncMock()

    async def recv(self):
        frame = await self.frames.get()
        if isinstance(frame, BaseException):
            raise frame
        return frame

    async def send(self, data):
        self.sent.append(data)


def make_connection(**callbacks):
    callbacks = {name: callbacks.get(name, Mock()) for name in ("on_open", "on_message", "on_error", "on_close")}
    return WebSocketConnection("wss://venue.example/ws", connection_id="c1", timeout=1.0, **callbacks), callbacks


async def drain():
    for _ in range(5):
        await asyncio.sleep(0)


class TestWebSocketConnection:

    @pytest.mark.asyncio
    async def test_open_receive_close(self):
        socket = FakeSocket()
        conn, callbacks = make_connection()

        with patch(CONNECT, AsyncMock(return_value=socket)):
            await conn.open()
        socket.frames.put_nowait('{"a": 1}')
        socket.frames.put_nowait(b'{"b": 2}')
        await drain()

        callbacks["on_open"].assert_called_once_with()
        assert [c.args[0] for c in callbacks["on_message"].call_args_list] == ['{"a": 1}', '{"b": 2}']
        assert conn.is_active() is True

        await conn.send_json({"id": 1})
        assert socket.sent == ['{"id": 1}']

        await conn.close()
        socket.close.assert_awaited_once()
        callbacks["on_close"].assert_not_called()
        assert conn.is_active() is False

    @pytest.mark.asyncio
    async def test_peer_close(self):
        socket = FakeSocket()
        conn, callbacks = make_connection()

        with patch(CONNECT, AsyncMock(return_value=socket)):
            await conn.open()
        socket.frames.put_nowait(ConnectionClosedOK(Close(1000, "bye"), None))
        await drain()

        callbacks["on_close"].assert_called_once_with(1000, "bye")
        assert conn.is_active() is False

    @pytest.mark.asyncio
    async def test_receive_error(self):
        socket = FakeSocket()
        conn, callbacks = make_connection()

        with patch(CONNECT, AsyncMock(return_value=socket)):
            await conn.open()
        error = RuntimeError("frame too big")
        socket.frames.put_nowait(error)
        await drain()

        callbacks["on_error"].assert_called_once_with(error)
        callbacks["on_close"].assert_not_called()

    @pytest.mark.asyncio
    async def test_callback_exception_does_not_stop_loop(self):
        socket = FakeSocket()
        seen = []

        def on_message(text):
            seen.append(text)
            raise ValueError("handler bug")

        conn, _ = make_connection(on_message=on_message)
        with patch(CONNECT, AsyncMock(return_value=socket)):
            await conn.open()
        socket.frames.put_nowait("one")
        socket.frames.put_nowait("two")
        await drain()

        assert seen == ["one", "two"]
        await conn.close()

    @pytest.mark.asyncio
    async def test_connect_refused(self):
        conn, callbacks = make_connection()

        with patch(CONNECT, AsyncMock(side_effect=OSError("connection refused"))):
            with pytest.raises(ExchangeNotAvailable, match="connection refused"):
                await conn.open()
        callbacks["on_open"].assert_not_called()

    @pytest.mark.asyncio
    async def test_connect_timeout(self):
        async def hang(*args, **kwargs):
            await asyncio.sleep(3600)

        conn = WebSocketConnection("wss://venue.example/ws", timeout=0.01)

        with patch(CONNECT, hang):
            with pytest.raises(RequestTimeout, match="connect timeout"):
                await conn.open()

    @pytest.mark.asyncio
    async def test_send_when_not_connected(self):
        conn, _ = make_connection()
        with pytest.raises(ExchangeNotAvailable, match="not connected"):
            await conn.send("ping")
