"""
Connection Manager

Multiplexes logical subscriptions (event x symbol) over a small pool of
physical WebSocket connections.

Connection templates (ws_config["templates"]) describe how to reach the
venue; events (ws_config["events"]) say which template serves them:

    ws_config = {
        "templates": {
            "default": {"type": "ws", "baseurl": "wss://venue/ws"},
        },
        "events": {
            "ob": {"template": "default"},
        },
    }

Template types:
- "ws"   : one shared connection, subscriptions sent as messages (connect)
- "ws-s" : streams carried in the URL; adding or removing a stream replaces
           the connection with one whose URL lists every stream (reconnect)

Subscription state per (event, symbol):

    UNSUBSCRIBED -> SUBSCRIBING -> SUBSCRIBED -> UNSUBSCRIBING -> UNSUBSCRIBED

Transient states are settled exactly once, by a correlated acknowledgement
(resolve / resolve_subscriptions / resolve_unsubscriptions) or by the
per-operation timeout, which reverts the flag and raises RequestTimeout.
"""

import asyncio
import itertools
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from exchange_core.exchanges.event_bus import Event, EventBus, EventKind
from exchange_core.exchanges.exceptions import (
    ExchangeError,
    ExchangeNotAvailable,
    NotSupported,
    RequestTimeout,
)
from exchange_core.exchanges.routing import implode_params
from exchange_core.exchanges.ws_client import WebSocketConnection

logger = logging.getLogger(__name__)

DEFAULT_GENERATORS = {
    "url": "{baseurl}",
    "id": "{id}",
    "stream": "{symbol}",
}

SUBSCRIBE = "subscribe"
UNSUBSCRIBE = "unsubscribe"


class SubscriptionState(str, Enum):
    UNSUBSCRIBED = "unsubscribed"
    SUBSCRIBING = "subscribing"
    SUBSCRIBED = "subscribed"
    UNSUBSCRIBING = "unsubscribing"


class PendingOperation:
    """
    One in-flight subscribe/unsubscribe.

    A future plus a cancellable timer; whichever of resolve / fail / timeout
    comes first wins, the others are no-ops.
    """

    def __init__(
        self,
        correlation_id: str,
        kind: str,
        event: str,
        symbol: str,
        timeout_ms: float,
        on_settle: Callable[["PendingOperation", bool], None],
        timeout_message: str,
    ):
        loop = asyncio.get_running_loop()
        self.correlation_id = correlation_id
        self.kind = kind
        self.event = event
        self.symbol = symbol
        self.future: asyncio.Future = loop.create_future()
        self._on_settle = on_settle
        self._timeout_message = timeout_message
        self._timer = loop.call_later(timeout_ms / 1000.0, self._expire)
        self.future.add_done_callback(self._on_done)

    @property
    def done(self) -> bool:
        return self.future.done()

    def resolve(self, result: Any = True) -> bool:
        if self.future.done():
            return False
        self._timer.cancel()
        self._on_settle(self, True)
        self.future.set_result(result)
        return True

    def fail(self, error: BaseException) -> bool:
        if self.future.done():
            return False
        self._timer.cancel()
        self._on_settle(self, False)
        self.future.set_exception(error)
        return True

    def _expire(self) -> None:
        self.fail(RequestTimeout(self._timeout_message))

    def _on_done(self, future: asyncio.Future) -> None:
        self._timer.cancel()
        if future.cancelled():
            # awaiting caller was cancelled
            self._on_settle(self, False)
        else:
            # mark the exception retrieved when nobody awaits the operation
            future.exception()


@dataclass
class SymbolContext:
    """Subscription state of one (event, symbol) pair"""
    event: str
    symbol: str
    connection_id: Optional[str] = None
    subscribed: bool = False
    subscribing: bool = False
    unsubscribing: bool = False
    pending_subscribe: Dict[str, PendingOperation] = field(default_factory=dict)
    pending_unsubscribe: Dict[str, PendingOperation] = field(default_factory=dict)
    last_data: Any = None

    @property
    def state(self) -> SubscriptionState:
        if self.unsubscribing:
            return SubscriptionState.UNSUBSCRIBING
        if self.subscribed:
            return SubscriptionState.SUBSCRIBED
        if self.subscribing:
            return SubscriptionState.SUBSCRIBING
        return SubscriptionState.UNSUBSCRIBED

    @property
    def active(self) -> bool:
        return self.subscribed or self.subscribing

    def reset(self) -> List[PendingOperation]:
        """Clear flags and data; return the detached pending operations"""
        detached = list(self.pending_subscribe.values()) + list(self.pending_unsubscribe.values())
        self.pending_subscribe = {}
        self.pending_unsubscribe = {}
        self.subscribed = False
        self.subscribing = False
        self.unsubscribing = False
        self.last_data = None
        return detached


@dataclass
class ConnectionRecord:
    """One physical connection in the pool"""
    id: str
    config: Dict[str, Any]
    transport: Any = None
    ready: bool = False
    authenticated: bool = False
    closed: bool = False
    # stream -> (event, symbol), only for "ws-s" connections
    streams: Dict[str, Tuple[str, str]] = field(default_factory=dict)
    opening: Optional[asyncio.Future] = None
    ready_future: Optional[asyncio.Future] = None

    @property
    def alive(self) -> bool:
        if self.closed:
            return False
        if self.ready and self.transport is not None and hasattr(self.transport, "is_active"):
            return self.transport.is_active()
        return True


@dataclass
class ConnectionCommand:
    """Decision taken by ensure_active()"""
    command: str  # "connect" | "reconnect" | "close"
    config: Dict[str, Any]
    streams: Dict[str, Tuple[str, str]] = field(default_factory=dict)
    reset_context: bool = True


def _default_connection_factory(url, connection_id, timeout, on_open, on_message, on_error, on_close):
    return WebSocketConnection(
        url,
        connection_id=connection_id,
        timeout=timeout,
        on_open=on_open,
        on_message=on_message,
        on_error=on_error,
        on_close=on_close,
    )


class ConnectionManager:
    """
    Pool of connection records plus per-(event, symbol) subscription contexts.

    Adapter hooks:
        message_handler(connection_id, text)                        sync
        open_handler(connection_id)                                 sync
        subscriber(connection_id, event, symbol, correlation_id, params)    async
        unsubscriber(connection_id, event, symbol, correlation_id, params)  async
    """

    def __init__(
        self,
        exchange_id: str,
        ws_config: Optional[Dict[str, Any]] = None,
        event_bus: Optional[EventBus] = None,
        market_id: Optional[Callable[[str], str]] = None,
        timeout_ms: float = 10000,
        connection_factory: Optional[Callable[..., Any]] = None,
        message_handler: Optional[Callable[[str, str], None]] = None,
        open_handler: Optional[Callable[[str], None]] = None,
        subscriber: Optional[Callable[..., Awaitable[None]]] = None,
        unsubscriber: Optional[Callable[..., Awaitable[None]]] = None,
    ):
        self.exchange_id = exchange_id
        ws_config = ws_config or {}
        self.templates: Dict[str, Dict[str, Any]] = dict(ws_config.get("templates") or {})
        self.events: Dict[str, Dict[str, Any]] = dict(ws_config.get("events") or {})
        self.event_bus = event_bus or EventBus()
        self.market_id = market_id or (lambda symbol: symbol)
        self.timeout_ms = timeout_ms
        self.connection_factory = connection_factory or _default_connection_factory
        self.message_handler = message_handler
        self.open_handler = open_handler
        self.subscriber = subscriber
        self.unsubscriber = unsubscriber

        self.pool: Dict[str, ConnectionRecord] = {}
        self.contexts: Dict[str, Dict[str, SymbolContext]] = {}
        self._pending: Dict[str, PendingOperation] = {}
        self._counter = itertools.count(1)
        self._closing: set = set()

    # ------------------------------------------------------------------
    # contexts
    # ------------------------------------------------------------------

    def context(self, event: str, symbol: str) -> SymbolContext:
        """Context for (event, symbol), created on first use"""
        by_symbol = self.contexts.setdefault(event, {})
        ctx = by_symbol.get(symbol)
        if ctx is None:
            ctx = SymbolContext(event=event, symbol=symbol)
            by_symbol[symbol] = ctx
        return ctx

    def get_context(self, event: str, symbol: str) -> Optional[SymbolContext]:
        return self.contexts.get(event, {}).get(symbol)

    def _contexts_on(self, connection_id: str) -> List[SymbolContext]:
        return [
            ctx
            for by_symbol in self.contexts.values()
            for ctx in by_symbol.values()
            if ctx.connection_id == connection_id
        ]

    def subscribed_event_symbols(self, connection_id: str) -> List[Tuple[str, str]]:
        return [(ctx.event, ctx.symbol) for ctx in self._contexts_on(connection_id) if ctx.active]

    def reset_contexts(
        self,
        connection_id: Optional[str] = None,
        error: Optional[BaseException] = None,
        keep: Optional[set] = None,
    ) -> None:
        """
        Reset every context on `connection_id` (all contexts when None).

        Contexts listed in `keep` ((event, symbol) pairs) stay SUBSCRIBING and
        keep their pending subscribe operations: they are carried over to the
        replacement connection.
        """
        keep = keep or set()
        detached: List[PendingOperation] = []
        for by_symbol in self.contexts.values():
            for ctx in by_symbol.values():
                if connection_id is not None and ctx.connection_id != connection_id:
                    continue
                if (ctx.event, ctx.symbol) in keep:
                    carried = ctx.pending_subscribe
                    detached.extend(ctx.reset())
                    for op in carried.values():
                        detached.remove(op)
                    ctx.pending_subscribe = carried
                    ctx.subscribing = True
                else:
                    detached.extend(ctx.reset())

        if detached:
            failure = error or ExchangeNotAvailable(
                f"{self.exchange_id} connection {connection_id} reset"
            )
            for op in detached:
                self._pending.pop(op.correlation_id, None)
                op.fail(failure)

    # ------------------------------------------------------------------
    # command decision
    # ------------------------------------------------------------------

    def resolve_config(self, event: str, symbol: str) -> Tuple[Dict[str, Any], Dict[str, str]]:
        """
        Materialize the connection configuration serving (event, symbol).

        Returns:
            (config, generators)

        Raises:
            ExchangeError: unknown event or template, incomplete config
        """
        event_conf = self.events.get(event)
        if event_conf is None:
            raise ExchangeError(f"invalid websocket configuration for event: {event} in exchange: {self.exchange_id}")
        template_name = event_conf.get("template", "default")
        template = self.templates.get(template_name)
        if template is None:
            raise ExchangeError(
                f"websocket connection template: {template_name} does not exist in exchange: {self.exchange_id}"
            )
        generators = dict(DEFAULT_GENERATORS)
        generators.update(event_conf.get("generators") or {})

        params = dict(template, event=event, symbol=symbol, id=template_name)
        config = dict(template)
        for key in ("url", "id"):
            config[key] = implode_params(generators[key], params)
        if not all(config.get(key) for key in ("id", "url", "type")):
            raise ExchangeError(f"invalid websocket configuration in exchange: {self.exchange_id}")
        return config, generators

    def stream_name(self, event: str, symbol: str, generators: Optional[Dict[str, str]] = None) -> str:
        template = (generators or DEFAULT_GENERATORS).get("stream", DEFAULT_GENERATORS["stream"])
        return implode_params(template, {"event": event, "symbol": self.market_id(symbol).lower()})

    def command_for_event(self, event: str, symbol: str, subscribe: bool = True) -> Optional[ConnectionCommand]:
        """
        Decide whether (event, symbol) needs a connection change.

        Returns:
            None when the current state already satisfies the request
        """
        ctx = self.get_context(event, symbol)
        if subscribe and ctx is not None and ctx.active:
            return None
        if not subscribe and (ctx is None or not ctx.active):
            return None

        config, generators = self.resolve_config(event, symbol)
        connection_id = config["id"]
        record = self.pool.get(connection_id)

        conn_type = config["type"]
        if conn_type == "ws":
            if not subscribe or (record is not None and record.alive):
                return None
            return ConnectionCommand("connect", config)

        if conn_type == "ws-s":
            streams = {
                self.stream_name(e, s, generators): (e, s)
                for e, s in self.subscribed_event_symbols(connection_id)
            }
            stream = self.stream_name(event, symbol, generators)
            if subscribe:
                streams[stream] = (event, symbol)
            else:
                streams.pop(stream, None)

            if record is not None and record.alive and set(streams) == set(record.streams):
                return None
            if not streams:
                return ConnectionCommand("close", config)

            ordered = sorted(streams)
            separator = config.get("stream-separator", "")
            config["stream"] = separator.join(ordered)
            config["url"] = config["url"] + config["stream"]
            return ConnectionCommand("reconnect", config, streams={s: streams[s] for s in ordered})

        raise NotSupported(f"invalid websocket connection: {conn_type} for exchange {self.exchange_id}")

    def apply_command(self, command: ConnectionCommand) -> ConnectionRecord:
        """Replace the pool entry for the command's connection id (no suspension)"""
        config = command.config
        connection_id = config["id"]

        old = self.pool.pop(connection_id, None)
        if old is not None:
            self._discard(old)
        if command.reset_context:
            self.reset_contexts(connection_id, keep=set(command.streams.values()))
        if command.command == "close":
            return old

        record = ConnectionRecord(id=connection_id, config=config, streams=dict(command.streams))
        record.transport = self.connection_factory(
            config["url"],
            connection_id,
            self.timeout_ms / 1000.0,
            lambda: self._on_transport_open(record),
            lambda data: self._on_transport_message(record, data),
            lambda error: self._on_transport_error(record, error),
            lambda code=None, reason="": self._on_transport_close(record, code, reason),
        )
        self.pool[connection_id] = record
        for event, symbol in record.streams.values():
            ctx = self.context(event, symbol)
            ctx.connection_id = connection_id
            ctx.subscribing = True
        logger.info(
            f"[WS_POOL] {self.exchange_id} {command.command} {connection_id} -> {config['url']}"
        )
        return record

    async def ensure_active(self, event: str, symbol: str, subscribe: bool = True) -> bool:
        """
        Make sure the connection serving (event, symbol) matches the request.

        Returns:
            True if a connect/reconnect/close command was issued
        """
        command = self.command_for_event(event, symbol, subscribe)
        if command is None:
            return False
        record = self.apply_command(command)
        ctx = self.context(event, symbol)
        if ctx.connection_id is None:
            ctx.connection_id = command.config["id"]
        if command.command != "close":
            await self.connect(record.id)
        return True

    # ------------------------------------------------------------------
    # connection lifecycle
    # ------------------------------------------------------------------

    def get_connection(self, connection_id: str = "default") -> ConnectionRecord:
        record = self.pool.get(connection_id)
        if record is None:
            raise NotSupported(f"websocket <{connection_id}> not found in this exchange: {self.exchange_id}")
        return record

    async def connect(self, connection_id: str = "default") -> ConnectionRecord:
        """
        Open the pooled connection once; concurrent callers share the attempt.

        A record replaced while opening hands its callers over to the
        replacement.
        """
        while True:
            record = self.get_connection(connection_id)
            if record.ready:
                return record
            if record.opening is None:
                record.opening = asyncio.ensure_future(self._open(record))
                record.opening.add_done_callback(
                    lambda task: task.cancelled() or task.exception()
                )
            try:
                await asyncio.shield(record.opening)
                return record
            except ExchangeNotAvailable:
                replacement = self.pool.get(connection_id)
                if replacement is None or replacement is record:
                    raise

    async def _open(self, record: ConnectionRecord) -> None:
        wait_for_ready = bool(record.config.get("wait_for_ready"))
        if wait_for_ready:
            record.ready_future = asyncio.get_running_loop().create_future()
        try:
            await asyncio.wait_for(self._open_transport(record, wait_for_ready), self.timeout_ms / 1000.0)
        except asyncio.TimeoutError:
            error = RequestTimeout(
                f"{self.exchange_id} connect {record.id} request timed out ({self.timeout_ms} ms)"
            )
            self._drop(record, EventKind.ERROR, error)
            raise error from None
        except Exception as e:
            self._drop(record, EventKind.ERROR, e)
            raise

        if self.pool.get(record.id) is not record:
            raise ExchangeNotAvailable(f"{self.exchange_id} connection {record.id} was replaced while opening")

        record.ready = True
        logger.info(f"[WS_POOL] {self.exchange_id} {record.id} ready")
        if record.streams:
            # stream-in-URL: being connected is being subscribed
            for event, symbol in record.streams.values():
                self.resolve_subscriptions(event, symbol, True)

    async def _open_transport(self, record: ConnectionRecord, wait_for_ready: bool) -> None:
        await record.transport.open()
        if wait_for_ready:
            await record.ready_future

    def mark_ready(self, connection_id: str, success: bool = True, error: Optional[BaseException] = None) -> None:
        """Called by the adapter when a wait_for_ready connection is usable"""
        record = self.pool.get(connection_id)
        if record is None or record.ready_future is None or record.ready_future.done():
            return
        if success:
            record.ready_future.set_result(True)
        else:
            record.ready_future.set_exception(
                error or ExchangeNotAvailable(f"{self.exchange_id} connection {connection_id} not ready")
            )

    def _discard(self, record: ConnectionRecord) -> None:
        """Close a superseded record in the background (no events, no reset)"""
        record.closed = True
        record.ready = False
        if record.ready_future is not None and not record.ready_future.done():
            record.ready_future.set_exception(
                ExchangeNotAvailable(f"{self.exchange_id} connection {record.id} replaced")
            )
            record.ready_future.exception()
        if record.transport is not None:
            task = asyncio.ensure_future(record.transport.close())
            self._closing.add(task)
            task.add_done_callback(self._closing.discard)

    def _drop(self, record: ConnectionRecord, kind: EventKind, error: Optional[BaseException]) -> None:
        """
        Remove a failed/closed record, reset its contexts and broadcast.

        The broadcast event carries the (event, symbol) pairs that were bound
        to the connection as `data`, so listeners can drop derived state.
        """
        if self.pool.get(record.id) is not record:
            return
        del self.pool[record.id]
        record.closed = True
        record.ready = False
        record.authenticated = False
        if record.ready_future is not None and not record.ready_future.done():
            record.ready_future.set_exception(
                error or ExchangeNotAvailable(f"{self.exchange_id} connection {record.id} closed")
            )
            record.ready_future.exception()
        if isinstance(error, ExchangeError):
            failure = error
        else:
            failure = ExchangeNotAvailable(
                f"{self.exchange_id} connection {record.id} {kind.value}" + (f": {error}" if error else "")
            )
        bound = [(ctx.event, ctx.symbol) for ctx in self._contexts_on(record.id)]
        self.reset_contexts(record.id, error=failure)
        self.event_bus.publish(Event(kind, data=bound, connection_id=record.id, error=failure))

    async def close(self, connection_id: str = "default") -> None:
        """Close one connection; its contexts reset and a close event is broadcast"""
        record = self.get_connection(connection_id)
        self._drop(record, EventKind.CLOSE, None)
        if record.transport is not None:
            await record.transport.close()

    async def close_all(self) -> None:
        for connection_id in list(self.pool):
            await self.close(connection_id)
        if self._closing:
            await asyncio.gather(*self._closing, return_exceptions=True)

    async def send(self, data: str, connection_id: str = "default") -> None:
        record = self.get_connection(connection_id)
        await record.transport.send(data)

    async def send_json(self, message: Any, connection_id: str = "default") -> None:
        logger.debug(f"[WS_POOL] {connection_id} -> {message}")
        await self.send(json.dumps(message), connection_id)

    # ------------------------------------------------------------------
    # transport callbacks (stale records are ignored)
    # ------------------------------------------------------------------

    def _is_current(self, record: ConnectionRecord) -> bool:
        return self.pool.get(record.id) is record and not record.closed

    def _on_transport_open(self, record: ConnectionRecord) -> None:
        if not self._is_current(record):
            return
        record.authenticated = False
        if self.open_handler is not None:
            try:
                self.open_handler(record.id)
            except Exception as e:
                logger.error(f"[WS_POOL] {self.exchange_id} open handler error on {record.id}: {e}")
                self.event_bus.publish(Event(EventKind.ERROR, connection_id=record.id, error=e))

    def _on_transport_message(self, record: ConnectionRecord, data: str) -> None:
        if not self._is_current(record):
            return
        if self.message_handler is None:
            return
        try:
            self.message_handler(record.id, data)
        except Exception as e:
            logger.error(f"[WS_POOL] {self.exchange_id} message handler error on {record.id}: {e}")
            self.event_bus.publish(Event(EventKind.ERROR, connection_id=record.id, error=e))

    def _on_transport_error(self, record: ConnectionRecord, error: BaseException) -> None:
        if not self._is_current(record):
            return
        logger.warning(f"[WS_POOL] {self.exchange_id} {record.id} error: {error}")
        self._drop(record, EventKind.ERROR, error)

    def _on_transport_close(self, record: ConnectionRecord, code: Optional[int], reason: str) -> None:
        if not self._is_current(record):
            return
        logger.info(f"[WS_POOL] {self.exchange_id} {record.id} closed by peer (code={code})")
        self._drop(record, EventKind.CLOSE, None)

    # ------------------------------------------------------------------
    # subscribe / unsubscribe
    # ------------------------------------------------------------------

    def _new_operation(self, kind: str, ctx: SymbolContext) -> PendingOperation:
        correlation_id = f"{next(self._counter)}-{ctx.symbol}-{ctx.event}-{kind}"
        op = PendingOperation(
            correlation_id,
            kind,
            ctx.event,
            ctx.symbol,
            self.timeout_ms,
            self._settle,
            f"{self.exchange_id} {ctx.event} {ctx.symbol} {kind} request timed out ({self.timeout_ms} ms)",
        )
        self._pending[correlation_id] = op
        if kind == SUBSCRIBE:
            ctx.pending_subscribe[correlation_id] = op
        else:
            ctx.pending_unsubscribe[correlation_id] = op
        return op

    def _settle(self, op: PendingOperation, success: bool) -> None:
        """Update flags for a settled operation still attached to its context"""
        self._pending.pop(op.correlation_id, None)
        ctx = self.get_context(op.event, op.symbol)
        if ctx is None:
            return
        if op.kind == SUBSCRIBE:
            if ctx.pending_subscribe.pop(op.correlation_id, None) is None:
                return
            if success:
                ctx.subscribed = True
                ctx.subscribing = False
            elif not ctx.pending_subscribe:
                ctx.subscribing = False
        else:
            if ctx.pending_unsubscribe.pop(op.correlation_id, None) is None:
                return
            if success:
                ctx.subscribed = False
                ctx.unsubscribing = False
                ctx.last_data = None
            elif not ctx.pending_unsubscribe:
                ctx.unsubscribing = False

    async def subscribe(self, event: str, symbol: str, params: Optional[Dict[str, Any]] = None) -> None:
        """
        Subscribe (event, symbol); returns once acknowledged.

        Raises:
            RequestTimeout: no acknowledgement within the timeout
            ExchangeNotAvailable: connection failed or closed meanwhile
            ExchangeError: venue rejected the subscription
        """
        ctx = self.get_context(event, symbol)
        if ctx is not None and ctx.subscribed and not ctx.unsubscribing:
            return
        if ctx is not None and ctx.subscribing:
            if ctx.pending_subscribe:
                op = next(iter(ctx.pending_subscribe.values()))
            else:
                op = self._new_operation(SUBSCRIBE, ctx)
            await asyncio.shield(op.future)
            return

        # synchronous part: decide, apply, mark SUBSCRIBING, arm the timer
        command = self.command_for_event(event, symbol, True)
        if command is not None:
            self.apply_command(command)
        config, _ = self.resolve_config(event, symbol)
        ctx = self.context(event, symbol)
        ctx.connection_id = config["id"]
        ctx.subscribing = True
        op = self._new_operation(SUBSCRIBE, ctx)

        try:
            await self.connect(ctx.connection_id)
            if config["type"] == "ws-s":
                # stream already carried in the URL
                self.resolve_subscriptions(event, symbol, True)
            elif not op.done:
                if self.subscriber is None:
                    raise NotSupported(f"subscribe {event}({symbol}) not supported for exchange {self.exchange_id}")
                await self.subscriber(ctx.connection_id, event, symbol, op.correlation_id, params or {})
        except Exception as e:
            op.fail(e)
        await op.future

    async def unsubscribe(self, event: str, symbol: str, params: Optional[Dict[str, Any]] = None) -> None:
        """Unsubscribe (event, symbol); no-op when not subscribed"""
        ctx = self.get_context(event, symbol)
        if ctx is None or not ctx.active:
            return
        if ctx.unsubscribing and ctx.pending_unsubscribe:
            await asyncio.shield(next(iter(ctx.pending_unsubscribe.values())).future)
            return

        record = self.pool.get(ctx.connection_id)
        if record is not None and record.config.get("type") == "ws-s":
            await self.ensure_active(event, symbol, False)
            return

        ctx.unsubscribing = True
        op = self._new_operation(UNSUBSCRIBE, ctx)
        try:
            if self.unsubscriber is None:
                raise NotSupported(f"unsubscribe {event}({symbol}) not supported for exchange {self.exchange_id}")
            await self.unsubscriber(ctx.connection_id, event, symbol, op.correlation_id, params or {})
        except Exception as e:
            op.fail(e)
        await op.future

    def resolve(self, correlation_id: str, success: bool = True, error: Optional[BaseException] = None) -> bool:
        """Settle one pending operation by correlation id"""
        op = self._pending.get(correlation_id)
        if op is None:
            return False
        if success:
            return op.resolve(True)
        return op.fail(error or ExchangeError(
            f"{self.exchange_id} {op.event} {op.symbol} {op.kind} rejected"
        ))

    def _resolve_all(self, ops: List[PendingOperation], success: bool, error: Optional[BaseException]) -> int:
        count = 0
        for op in ops:
            if self.resolve(op.correlation_id, success, error):
                count += 1
        return count

    def resolve_subscriptions(
        self, event: str, symbol: str, success: bool = True, error: Optional[BaseException] = None
    ) -> int:
        """Settle every pending subscribe of (event, symbol); returns the count"""
        ctx = self.get_context(event, symbol)
        if ctx is None:
            return 0
        count = self._resolve_all(list(ctx.pending_subscribe.values()), success, error)
        if success and ctx.subscribing and not ctx.pending_subscribe:
            ctx.subscribed = True
            ctx.subscribing = False
        return count

    def resolve_unsubscriptions(
        self, event: str, symbol: str, success: bool = True, error: Optional[BaseException] = None
    ) -> int:
        ctx = self.get_context(event, symbol)
        if ctx is None:
            return 0
        return self._resolve_all(list(ctx.pending_unsubscribe.values()), success, error)
