"""
WebSocket Connection

One physical WebSocket connection (library: websockets).

Fans transport activity out to four callbacks owned by ConnectionManager:
- on_open()                  connection established
- on_message(text)           one frame (bytes decoded as UTF-8)
- on_error(exception)        receive loop failed
- on_close(code, reason)     peer closed the connection

Reconnection is not performed here; ConnectionManager decides what to do
when a connection goes away.
"""

import asyncio
import json
import logging
from typing import Any, Callable, Optional

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from exchange_core.exchanges.exceptions import ExchangeNotAvailable, RequestTimeout

logger = logging.getLogger(__name__)


class WebSocketConnection:
    """
    Callback-driven WebSocket transport.

    Example:
        conn = WebSocketConnection(
            "wss://www.deribit.com/ws/api/v2/",
            on_message=handle_text,
        )
        await conn.open()
        await conn.send_json({"method": "public/test", "jsonrpc": "2.0", "id": 1})
        await conn.close()
    """

    def __init__(
        self,
        url: str,
        connection_id: str = "default",
        timeout: float = 10.0,
        on_open: Optional[Callable[[], None]] = None,
        on_message: Optional[Callable[[str], None]] = None,
        on_error: Optional[Callable[[BaseException], None]] = None,
        on_close: Optional[Callable[[Optional[int], str], None]] = None,
        ping_interval: Optional[float] = 20.0,
        ping_timeout: Optional[float] = 20.0,
    ):
        """
        Args:
            url: WebSocket URL
            connection_id: pool id (logging only)
            timeout: connect timeout in seconds
            on_open / on_message / on_error / on_close: transport callbacks
            ping_interval / ping_timeout: keepalive handled by websockets
        """
        self.url = url
        self.connection_id = connection_id
        self.timeout = timeout
        self.on_open = on_open
        self.on_message = on_message
        self.on_error = on_error
        self.on_close = on_close
        self.ping_interval = ping_interval
        self.ping_timeout = ping_timeout

        self.ws = None
        self.is_connected = False
        self._receive_task: Optional[asyncio.Task] = None
        self._closed = False

    def is_active(self) -> bool:
        return self.is_connected

    async def open(self) -> None:
        """
        Connect and start the receive loop.

        Raises:
            RequestTimeout: handshake did not complete within `timeout`
            ExchangeNotAvailable: connection refused / handshake failed
        """
        logger.info(f"[WS] Connecting {self.connection_id} to {self.url}")
        try:
            self.ws = await asyncio.wait_for(
                websockets.connect(
                    self.url,
                    ping_interval=self.ping_interval,
                    ping_timeout=self.ping_timeout,
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            raise RequestTimeout(f"WebSocket connect timeout: {self.url}") from None
        except (OSError, WebSocketException) as e:
            raise ExchangeNotAvailable(f"WebSocket connect failed: {self.url} {type(e).__name__} {e}") from e

        if self._closed:
            # close() was called during the handshake
            await self.ws.close()
            self.ws = None
            raise ExchangeNotAvailable(f"WebSocket {self.connection_id} closed while connecting")

        self.is_connected = True
        logger.info(f"[WS] Connected {self.connection_id}")
        self._fire(self.on_open)
        self._receive_task = asyncio.create_task(self._receive_loop())

    async def _receive_loop(self) -> None:
        try:
            while True:
                raw_message = await self.ws.recv()
                if isinstance(raw_message, bytes):
                    try:
                        raw_message = raw_message.decode("utf-8")
                    except UnicodeDecodeError as e:
                        logger.error(f"[WS] Failed to decode bytes message on {self.connection_id}: {e}")
                        continue
                logger.debug(f"[WS] {self.connection_id} <- {raw_message[:200]}")
                self._fire(self.on_message, raw_message)
        except ConnectionClosed as e:
            self.is_connected = False
            rcvd = getattr(e, "rcvd", None)
            code = rcvd.code if rcvd is not None else None
            reason = rcvd.reason if rcvd is not None else ""
            logger.info(f"[WS] Closed {self.connection_id} (code={code}, reason={reason})")
            self._fire(self.on_close, code, reason)
        except asyncio.CancelledError:
            self.is_connected = False
            raise
        except Exception as e:
            self.is_connected = False
            logger.error(f"[WS] Receive error on {self.connection_id}: {e}")
            self._fire(self.on_error, e)

    def _fire(self, callback: Optional[Callable], *args: Any) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception as e:
            logger.error(f"[WS] Callback error on {self.connection_id}: {e}")

    async def send(self, data: str) -> None:
        if not self.is_connected or self.ws is None:
            raise ExchangeNotAvailable(f"WebSocket {self.connection_id} is not connected")
        logger.debug(f"[WS] {self.connection_id} -> {data[:200]}")
        try:
            await self.ws.send(data)
        except ConnectionClosed as e:
            self.is_connected = False
            raise ExchangeNotAvailable(f"WebSocket {self.connection_id} send failed: {e}") from e

    async def send_json(self, message: Any) -> None:
        await self.send(json.dumps(message))

    async def close(self) -> None:
        """Close without firing on_close (the caller already knows)"""
        self._closed = True
        self.is_connected = False
        task, self._receive_task = self._receive_task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        if self.ws is not None:
            await self.ws.close()
            self.ws = None
        logger.info(f"[WS] Disconnected {self.connection_id}")
