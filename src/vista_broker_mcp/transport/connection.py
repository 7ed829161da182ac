"""TCP connection to the RPC Broker with ordered, awaitable reads.

Data arrives through asyncio's protocol callbacks in arbitrary chunks.
Reads are queued and each is satisfied from the receive buffer strictly
in the order it was requested.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from typing import Callable

from ..errors import ConnectionClosedError, NotConnectedError

logger = logging.getLogger(__name__)

DEFAULT_PORT = 9430


@dataclass
class _PendingRead:
    satisfy: Callable[[], bytes | None]
    future: asyncio.Future


class BrokerConnection(asyncio.Protocol):
    """Manages the socket to the broker.

    Usage::

        conn = BrokerConnection("localhost", 9430)
        await conn.connect()
        await conn.write(frame)
        response = await conn.read_until(b"\\x04")
        await conn.close()
    """

    def __init__(self, host: str = "localhost", port: int = DEFAULT_PORT) -> None:
        self.host = host
        self.port = int(port)
        self._transport: asyncio.Transport | None = None
        self._connected = False
        self._was_connected = False
        self._buffer = bytearray()
        self._requests: deque[_PendingRead] = deque()
        self._paused = False
        self._drain_waiter: asyncio.Future | None = None
        self._closed: asyncio.Future | None = None
        self._connecting: asyncio.Future | None = None

    @classmethod
    def attach(cls, transport: asyncio.Transport) -> BrokerConnection:
        """Wrap an already-connected transport."""
        peer = transport.get_extra_info("peername") or ("", 0)
        conn = cls(peer[0], peer[1])
        transport.set_protocol(conn)
        conn.connection_made(transport)
        return conn

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def buffered(self) -> int:
        return len(self._buffer)

    @property
    def pending(self) -> int:
        return len(self._requests)

    # ── Public API ────────────────────────────────────────────────────

    async def connect(self) -> None:
        """Open the connection. Does nothing if already connected.

        Concurrent callers share one in-flight connection attempt.
        """
        if self._connected:
            return
        connecting = self._connecting
        if connecting is None:
            loop = asyncio.get_running_loop()
            connecting = self._connecting = asyncio.ensure_future(
                loop.create_connection(lambda: self, self.host, self.port)
            )
        try:
            await connecting
        finally:
            if self._connecting is connecting and connecting.done():
                self._connecting = None

    async def write(self, data: bytes) -> None:
        """Send ``data``, waiting while the transport applies back-pressure.

        Raises:
            NotConnectedError: If the connection was never opened.
            ConnectionClosedError: If the connection has been closed.
        """
        self._check_connected("write")
        self._transport.write(data)
        logger.debug("Sent %d bytes: %r", len(data), data)
        if self._paused:
            self._drain_waiter = asyncio.get_running_loop().create_future()
            await self._drain_waiter

    def read(self, length: int = 0) -> asyncio.Future:
        """Read exactly ``length`` bytes.

        With ``length <= 0`` the future resolves with everything buffered
        once at least one byte is available.
        """

        def satisfy() -> bytes | None:
            available = len(self._buffer)
            if available == 0 or length > available:
                return None
            size = length if length > 0 else available
            return self._take(size)

        return self._enqueue("read", satisfy)

    def read_until(self, delimiter: bytes = b"\0") -> asyncio.Future:
        """Read through the first ``delimiter``, delimiter included."""

        def satisfy() -> bytes | None:
            index = self._buffer.find(delimiter)
            if index < 0:
                return None
            return self._take(index + len(delimiter))

        return self._enqueue("read_until", satisfy)

    def flush(self) -> asyncio.Future:
        """Take whatever is buffered, possibly nothing, without waiting for data."""
        return self._enqueue("flush", lambda: self._take(len(self._buffer)))

    async def close(self) -> None:
        """Close the connection, failing every pending read. Idempotent."""
        if not self._connected:
            return
        logger.info("Closing connection to %s:%s", self.host, self.port)
        transport = self._transport
        self._mark_closed(ConnectionClosedError("Connection closed"))
        transport.close()
        if self._closed is not None:
            await self._closed

    # ── asyncio.Protocol callbacks ────────────────────────────────────

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        self._transport = transport
        self._connected = True
        self._was_connected = True
        self._buffer.clear()
        self._paused = False
        self._closed = asyncio.get_running_loop().create_future()
        logger.info("Connected to %s:%s", self.host, self.port)

    def data_received(self, data: bytes) -> None:
        logger.debug("Received %d bytes: %r", len(data), data)
        self._buffer.extend(data)
        self._process_requests()

    def eof_received(self) -> bool:
        logger.info("Remote end closed %s:%s", self.host, self.port)
        return False

    def connection_lost(self, exc: Exception | None) -> None:
        if exc is not None:
            logger.warning("Connection to %s:%s lost: %s", self.host, self.port, exc)
        error = ConnectionClosedError("Socket has been disconnected")
        if exc is not None:
            error.__cause__ = exc
        self._mark_closed(error)
        if self._closed is not None and not self._closed.done():
            self._closed.set_result(None)

    def pause_writing(self) -> None:
        self._paused = True

    def resume_writing(self) -> None:
        self._paused = False
        self._wake_writer(None)

    # ── Internals ─────────────────────────────────────────────────────

    def _check_connected(self, operation: str) -> None:
        if self._connected:
            return
        if self._was_connected:
            raise ConnectionClosedError(f"{operation} attempted on closed connection")
        raise NotConnectedError(f"{operation} attempted on disconnected socket")

    def _enqueue(self, operation: str, satisfy: Callable[[], bytes | None]) -> asyncio.Future:
        future = asyncio.get_running_loop().create_future()
        try:
            self._check_connected(operation)
        except (NotConnectedError, ConnectionClosedError) as e:
            future.set_exception(e)
            return future
        self._requests.append(_PendingRead(satisfy, future))
        self._process_requests()
        return future

    def _take(self, size: int) -> bytes:
        data = bytes(self._buffer[:size])
        del self._buffer[:size]
        return data

    def _process_requests(self) -> None:
        while self._connected and self._requests:
            head = self._requests[0]
            if head.future.done():
                # Cancelled by the caller; it must not consume data.
                self._requests.popleft()
                continue
            data = head.satisfy()
            if data is None:
                break
            self._requests.popleft()
            head.future.set_result(data)
        logger.debug(
            "Pending requests: %d, buffered: %d", len(self._requests), len(self._buffer)
        )

    def _mark_closed(self, error: Exception) -> None:
        self._connected = False
        self._transport = None
        self._wake_writer(error)
        while self._requests:
            request = self._requests.popleft()
            if not request.future.done():
                request.future.set_exception(error)

    def _wake_writer(self, error: Exception | None) -> None:
        waiter = self._drain_waiter
        self._drain_waiter = None
        if waiter is None or waiter.done():
            return
        if error is None:
            waiter.set_result(None)
        else:
            waiter.set_exception(error)
