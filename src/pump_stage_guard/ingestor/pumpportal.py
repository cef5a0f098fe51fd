"""PumpPortal WebSocket client for token launches and trades.

Subscribes to new-token events and, per tracked mint, to token trades.
Launches are delivered as ``DiscoveryEvent``s, trades as ``TradeEvent``s.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum

import websockets
from websockets.asyncio.client import ClientConnection

from pump_stage_guard.ingestor.models import TradeEvent, discovery_event_from_message
from pump_stage_guard.lifecycle.models import DiscoveryEvent

logger = logging.getLogger(__name__)

DEFAULT_PUMPPORTAL_WS_URL = "wss://pumpportal.fun/api/data"
DEFAULT_PING_INTERVAL = 30  # seconds
DEFAULT_MAX_RECONNECT_DELAY = 30  # seconds
DEFAULT_INITIAL_RECONNECT_DELAY = 1  # seconds


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


@dataclass
class StreamStats:
    tokens_received: int = 0
    trades_received: int = 0
    parse_errors: int = 0
    reconnect_count: int = 0
    last_message_time: float | None = None
    connected_since: float | None = None
    last_error: str | None = None


class PumpPortalStreamError(Exception):
    """Base exception for PumpPortal stream errors."""


class PumpPortalConnectionError(PumpPortalStreamError):
    """Raised when connection to the WebSocket fails."""


TokenCallback = Callable[[DiscoveryEvent], Awaitable[object]]
TradeCallback = Callable[[TradeEvent], Awaitable[None]]


class PumpPortalStreamHandler:
    """WebSocket client for the PumpPortal data feed.

    Example:
        ```python
        stream = PumpPortalStreamHandler(on_token=pipeline.on_new_token, on_trade=pipeline.on_trade)
        task = asyncio.create_task(stream.start())
        await stream.request_trade_subscription({mint})
        ...
        await stream.stop()
        ```
    """

    def __init__(
        self,
        *,
        host: str = DEFAULT_PUMPPORTAL_WS_URL,
        on_token: TokenCallback | None = None,
        on_trade: TradeCallback | None = None,
        ping_interval: int = DEFAULT_PING_INTERVAL,
        max_reconnect_delay: int = DEFAULT_MAX_RECONNECT_DELAY,
        initial_reconnect_delay: int = DEFAULT_INITIAL_RECONNECT_DELAY,
    ) -> None:
        self._host = host
        self._on_token = on_token
        self._on_trade = on_trade
        self._ping_interval = ping_interval
        self._max_reconnect_delay = max_reconnect_delay
        self._initial_reconnect_delay = initial_reconnect_delay

        self._state = ConnectionState.DISCONNECTED
        self._stats = StreamStats()

        self._ws: ClientConnection | None = None
        self._running = False
        self._stop_event: asyncio.Event | None = None

        self._mints_lock = asyncio.Lock()
        self._subscribed_mints: set[str] = set()
        self._pending_subscribe: set[str] = set()
        self._pending_unsubscribe: set[str] = set()

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def stats(self) -> StreamStats:
        return self._stats

    def _set_state(self, new_state: ConnectionState) -> None:
        if self._state != new_state:
            logger.info("PumpPortal stream state: %s -> %s", self._state.value, new_state.value)
            self._state = new_state

    async def request_trade_subscription(self, mints: set[str]) -> None:
        if not mints:
            return
        async with self._mints_lock:
            self._pending_subscribe |= {m for m in mints if m}
            self._pending_unsubscribe -= mints

    async def request_trade_unsubscription(self, mints: set[str]) -> None:
        if not mints:
            return
        async with self._mints_lock:
            self._pending_unsubscribe |= {m for m in mints if m}
            self._pending_subscribe -= mints

    async def _send_subscription_messages(self, ws: ClientConnection) -> None:
        async with self._mints_lock:
            subscribe = set(self._pending_subscribe)
            unsubscribe = set(self._pending_unsubscribe)
            self._pending_subscribe.clear()
            self._pending_unsubscribe.clear()

        if unsubscribe:
            await ws.send(json.dumps({"method": "unsubscribeTokenTrade", "keys": sorted(unsubscribe)}))
            async with self._mints_lock:
                self._subscribed_mints -= unsubscribe

        if subscribe:
            await ws.send(json.dumps({"method": "subscribeTokenTrade", "keys": sorted(subscribe)}))
            async with self._mints_lock:
                self._subscribed_mints |= subscribe

    async def _connect(self) -> ClientConnection:
        self._set_state(ConnectionState.CONNECTING)
        try:
            ws = await websockets.connect(
                self._host,
                ping_interval=self._ping_interval,
                ping_timeout=self._ping_interval * 2,
            )
        except Exception as e:
            self._stats.last_error = str(e)
            raise PumpPortalConnectionError(f"Failed to connect to {self._host}: {e}") from e

        await ws.send(json.dumps({"method": "subscribeNewToken"}))
        async with self._mints_lock:
            mints = sorted(self._subscribed_mints)
        if mints:
            await ws.send(json.dumps({"method": "subscribeTokenTrade", "keys": mints}))

        self._set_state(ConnectionState.CONNECTED)
        self._stats.connected_since = time.time()
        logger.info("Connected to PumpPortal: %s", self._host)
        return ws

    async def _handle_message(self, message: str) -> None:
        try:
            data = json.loads(message)
        except json.JSONDecodeError:
            self._stats.parse_errors += 1
            logger.warning("Invalid JSON message on PumpPortal stream")
            return

        if not isinstance(data, dict):
            return
        tx_type = str(data.get("txType", "")).lower()

        if tx_type == "create":
            try:
                event = discovery_event_from_message(data)
            except ValueError as e:
                self._stats.parse_errors += 1
                logger.warning("Failed to parse create event: %s", e)
                return
            self._stats.tokens_received += 1
            self._stats.last_message_time = time.time()
            if self._on_token:
                await self._on_token(event)
            return

        if tx_type in ("buy", "sell"):
            try:
                trade = TradeEvent.from_websocket_message(data)
            except ValueError as e:
                self._stats.parse_errors += 1
                logger.warning("Failed to parse trade event: %s", e)
                return
            self._stats.trades_received += 1
            self._stats.last_message_time = time.time()
            if self._on_trade:
                await self._on_trade(trade)
            return

        # Subscription acknowledgements and other notices.
        logger.debug("Ignoring PumpPortal message: %s", str(data)[:120])

    async def _listen(self, ws: ClientConnection) -> None:
        try:
            while self._running:
                try:
                    message = await asyncio.wait_for(ws.recv(), timeout=1.0)
                except TimeoutError:
                    message = None

                if isinstance(message, str):
                    await self._handle_message(message)
                elif message is not None:
                    logger.debug("Ignoring non-text PumpPortal message")

                await self._send_subscription_messages(ws)
        except websockets.ConnectionClosed as e:
            logger.warning("PumpPortal connection closed: %s", e)
            raise

    async def start(self) -> None:
        if self._running:
            raise RuntimeError("PumpPortal stream already running")
        self._running = True
        self._stop_event = asyncio.Event()

        delay = self._initial_reconnect_delay
        while self._running and self._stop_event and not self._stop_event.is_set():
            try:
                self._ws = await self._connect()
                delay = self._initial_reconnect_delay
                await self._listen(self._ws)
            except Exception as e:
                self._stats.reconnect_count += 1
                self._stats.last_error = str(e)
                self._set_state(ConnectionState.RECONNECTING)
                await asyncio.sleep(delay)
                delay = min(self._max_reconnect_delay, delay * 2)
            finally:
                with contextlib.suppress(Exception):
                    if self._ws:
                        await self._ws.close()
                self._ws = None

        self._set_state(ConnectionState.DISCONNECTED)

    async def stop(self) -> None:
        self._running = False
        if self._stop_event:
            self._stop_event.set()
        if self._ws:
            with contextlib.suppress(Exception):
                await self._ws.close()
