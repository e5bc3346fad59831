"""Push log subscription over the Solana WebSocket API.

One handler owns one ``logsSubscribe`` subscription for a single account
(``mentions`` filter). Reconnection is not done here: when the socket drops
the owner is told through ``on_closed`` and decides whether to fall back to
polling or resubscribe.
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
from typing import Any

import websockets
from websockets.asyncio.client import ClientConnection

from mint_sentinel.ingestor.models import LogNotification, TransactionParseError
from mint_sentinel.ingestor.rpc import LogSubscriptionError

logger = logging.getLogger(__name__)

DEFAULT_PING_INTERVAL = 30  # seconds
DEFAULT_ACK_TIMEOUT = 10.0  # seconds
SUBSCRIBE_REQUEST_ID = 1
UNSUBSCRIBE_REQUEST_ID = 2


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSED = "closed"


@dataclass
class StreamStats:
    notifications_received: int = 0
    subscription_id: int | None = None
    last_message_time: float | None = None
    connected_since: float | None = None
    last_error: str | None = None


LogsCallback = Callable[[LogNotification], Awaitable[None]]
ClosedCallback = Callable[[BaseException | None], Awaitable[None]]


class LogStreamHandler:
    """WebSocket client for one account's log notifications."""

    def __init__(
        self,
        *,
        ws_url: str,
        address: str,
        on_logs: LogsCallback,
        on_closed: ClosedCallback | None = None,
        commitment: str = "confirmed",
        ping_interval: int = DEFAULT_PING_INTERVAL,
        ack_timeout: float = DEFAULT_ACK_TIMEOUT,
    ) -> None:
        self._ws_url = ws_url
        self._address = address
        self._on_logs = on_logs
        self._on_closed = on_closed
        self._commitment = commitment
        self._ping_interval = ping_interval
        self._ack_timeout = ack_timeout

        self._state = ConnectionState.DISCONNECTED
        self._stats = StreamStats()

        self._ws: ClientConnection | None = None
        self._listen_task: asyncio.Task[None] | None = None
        self._closing = False
        self._early: list[LogNotification] = []

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def stats(self) -> StreamStats:
        return self._stats

    @property
    def address(self) -> str:
        return self._address

    def _set_state(self, new_state: ConnectionState) -> None:
        if self._state != new_state:
            old = self._state
            self._state = new_state
            logger.debug("Log stream %s state: %s -> %s", self._address, old.value, new_state.value)

    def _subscribe_message(self) -> str:
        return json.dumps(
            {
                "jsonrpc": "2.0",
                "id": SUBSCRIBE_REQUEST_ID,
                "method": "logsSubscribe",
                "params": [{"mentions": [self._address]}, {"commitment": self._commitment}],
            }
        )

    def _parse_notification(self, data: dict[str, Any]) -> LogNotification | None:
        if data.get("method") != "logsNotification":
            return None
        try:
            return LogNotification.from_websocket_message(data)
        except (TransactionParseError, ValueError, TypeError) as e:
            logger.warning("Failed to parse log notification: %s", e)
            return None

    async def _await_ack(self, ws: ClientConnection) -> int:
        while True:
            raw = await ws.recv()
            try:
                data = json.loads(raw)
            except json.JSONDecodeError:
                logger.warning("Invalid JSON message on log stream")
                continue
            if not isinstance(data, dict):
                continue
            if data.get("id") == SUBSCRIBE_REQUEST_ID:
                if data.get("error"):
                    raise LogSubscriptionError(f"logsSubscribe rejected: {data['error']}")
                result = data.get("result")
                if not isinstance(result, int):
                    raise LogSubscriptionError(f"logsSubscribe returned no subscription id: {result!r}")
                return result
            notification = self._parse_notification(data)
            if notification is not None:
                self._early.append(notification)

    async def open(self) -> None:
        """Connect, subscribe and wait for the node's acknowledgement.

        Connection errors propagate unchanged so the caller can classify them
        (e.g. an HTTP 429 on the upgrade request).

        Raises:
            LogSubscriptionError: If the node rejects the subscription.
            TimeoutError: If no acknowledgement arrives in time.
        """
        if self._ws is not None:
            raise RuntimeError("Log stream already open")
        self._set_state(ConnectionState.CONNECTING)
        ws = await websockets.connect(
            self._ws_url,
            ping_interval=self._ping_interval,
            ping_timeout=self._ping_interval * 2,
        )
        try:
            await ws.send(self._subscribe_message())
            subscription_id = await asyncio.wait_for(self._await_ack(ws), timeout=self._ack_timeout)
        except BaseException as e:
            self._stats.last_error = str(e)
            self._set_state(ConnectionState.DISCONNECTED)
            with contextlib.suppress(Exception):
                await ws.close()
            raise

        self._ws = ws
        self._stats.subscription_id = subscription_id
        self._stats.connected_since = time.time()
        self._set_state(ConnectionState.CONNECTED)
        logger.info("Subscribed to logs for %s (subscription %d)", self._address, subscription_id)
        self._listen_task = asyncio.create_task(self._listen(ws))

    async def _dispatch(self, notification: LogNotification) -> None:
        self._stats.notifications_received += 1
        self._stats.last_message_time = time.time()
        try:
            await self._on_logs(notification)
        except Exception:
            logger.exception("Error handling log notification %s", notification.signature)

    async def _handle_message(self, message: str) -> None:
        try:
            data = json.loads(message)
        except json.JSONDecodeError:  # pragma: no cover
            logger.warning("Invalid JSON message on log stream")
            return
        if not isinstance(data, dict):
            return
        notification = self._parse_notification(data)
        if notification is None:
            logger.debug("Ignoring log-stream message: %r", data.get("method") or data.get("id"))
            return
        await self._dispatch(notification)

    async def _listen(self, ws: ClientConnection) -> None:
        error: BaseException | None = None
        try:
            early, self._early = self._early, []
            for notification in early:
                await self._dispatch(notification)
            async for message in ws:
                if isinstance(message, str):
                    await self._handle_message(message)
                else:
                    logger.debug("Ignoring non-text log-stream message")
        except websockets.ConnectionClosed as e:
            error = e
        if self._closing:
            return
        if error is not None:
            self._stats.last_error = str(error)
            logger.warning("Log stream for %s closed: %s", self._address, error)
        else:
            logger.warning("Log stream for %s ended", self._address)
        self._ws = None
        self._set_state(ConnectionState.CLOSED)
        if self._on_closed:
            try:
                await self._on_closed(error)
            except Exception as e:  # pragma: no cover
                logger.error("Error in log stream close callback: %s", e)

    async def close(self) -> None:
        """Unsubscribe (best effort) and close the socket without notifying ``on_closed``."""
        self._closing = True
        ws, self._ws = self._ws, None
        if ws is not None:
            if self._stats.subscription_id is not None:
                with contextlib.suppress(Exception):
                    await ws.send(
                        json.dumps(
                            {
                                "jsonrpc": "2.0",
                                "id": UNSUBSCRIBE_REQUEST_ID,
                                "method": "logsUnsubscribe",
                                "params": [self._stats.subscription_id],
                            }
                        )
                    )
            with contextlib.suppress(Exception):
                await ws.close()
        task, self._listen_task = self._listen_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._set_state(ConnectionState.CLOSED)
