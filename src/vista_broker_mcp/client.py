"""Execution engine: runs a scripted sequence of broker calls over one connection."""

from __future__ import annotations

import inspect
import logging
from enum import Enum
from typing import Any, Callable, Iterable, Mapping, Sequence

from .errors import NotConnectedError
from .models.call import CallDefinition, CallOptions, Result
from .protocol.framing import TERMINATOR
from .transport.connection import DEFAULT_PORT, BrokerConnection

logger = logging.getLogger(__name__)

FIELD_SEPARATOR = "^"

ResultObserver = Callable[[Result], Any]
ResponseHandler = Callable[[Any], Any]


class ClientState(Enum):
    IDLE = "idle"
    RUNNING = "running"
    FAILED = "failed"


def create_call(
    data: Any,
    args: Any = None,
    options: CallOptions | Mapping[str, Any] | None = None,
) -> CallDefinition:
    """Build a :class:`CallDefinition` from any of the accepted call shapes.

    - ``create_call(frame)`` or ``create_call(frame, options)``: a raw frame.
    - ``create_call(name, [args...], options)``: a name and argument list.
    - ``create_call({"name": ..., "args": [...], **options})``: a mapping.
    - ``create_call(call)``: an existing definition, returned unchanged.
    """
    if isinstance(data, CallDefinition):
        return data
    if isinstance(data, (str, bytes)) and not isinstance(args, (list, tuple)):
        # The second positional slot doubles as options for these shapes.
        call_options = args if args is not None else options
        if isinstance(data, bytes) or data.lstrip().startswith("[XWB]"):
            return CallDefinition.from_raw(data, call_options)
        return CallDefinition.create(data, (), call_options)
    if isinstance(data, str):
        return CallDefinition.create(data, args, options)
    if isinstance(data, Mapping):
        call_options = {k: v for k, v in data.items() if k not in ("name", "args")}
        return CallDefinition.create(data["name"], data.get("args") or (), call_options)
    raise TypeError(f"Cannot build a call from {type(data).__name__}")


class BrokerClient:
    """Drives a list of calls against one broker connection.

    Each step sends one request, waits for its response, records the
    result, and copies values named by the call's context bindings into
    the shared context for later calls to substitute.

    Args:
        host: Broker host.
        port: Broker port.
        context: Base context; every run starts from a copy of it.
        connection_factory: Builds the connection from ``(host, port)``.
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = DEFAULT_PORT,
        context: Mapping[str, Any] | None = None,
        connection_factory: Callable[[str, int], BrokerConnection] = BrokerConnection,
    ) -> None:
        self.host = host
        self.port = int(port)
        self.base_context: dict[str, Any] = dict(context or {})
        self.context: dict[str, Any] = dict(self.base_context)
        self.calls: list[CallDefinition] = []
        self.current_index = 0
        self.state = ClientState.IDLE
        self.connection: BrokerConnection | None = None
        self._connection_factory = connection_factory
        self._handlers: dict[str, ResponseHandler] = {}
        self._store_results = True

    @property
    def is_running(self) -> bool:
        return self.state is ClientState.RUNNING

    # ── Call list ─────────────────────────────────────────────────────

    def add(self, data: Any, args: Any = None, options: Any = None) -> BrokerClient:
        self.calls.append(create_call(data, args, options))
        return self

    def load(self, items: Iterable[Any]) -> BrokerClient:
        self.calls.extend(create_call(item) for item in items)
        return self

    def insert_at(
        self, index: int, data: Any, args: Any = None, options: Any = None
    ) -> BrokerClient:
        self.calls.insert(index, create_call(data, args, options))
        return self

    def delete_at(self, index: int) -> BrokerClient:
        del self.calls[index]
        return self

    def clear(self) -> BrokerClient:
        self.calls.clear()
        return self

    def store_results(self, enabled: bool = True) -> None:
        """When disabled, results are handed out once and not kept on the calls."""
        self._store_results = enabled

    def add_response_handler(self, name: str, handler: ResponseHandler) -> None:
        self._handlers[name] = handler

    # ── Cursor ────────────────────────────────────────────────────────

    def jump_to(self, index: int) -> None:
        """Move the cursor, clamped to the last call. Negative indices are ignored."""
        if index >= 0:
            self.current_index = max(0, min(index, len(self.calls) - 1))

    def to_start(self) -> None:
        self.current_index = 0

    def to_end(self) -> None:
        """Move the cursor to the last call so it still runs."""
        self.current_index = max(0, len(self.calls) - 1)

    # ── Execution ─────────────────────────────────────────────────────

    def reset(self) -> None:
        self.current_index = 0
        self.state = ClientState.IDLE
        self.context = dict(self.base_context)
        for call in self.calls:
            call.reset()

    async def start(self) -> None:
        self.reset()
        self.connection = self._connection_factory(self.host, self.port)
        self.state = ClientState.RUNNING
        logger.info(
            "Starting run of %d calls against %s:%s", len(self.calls), self.host, self.port
        )
        await self.connection.connect()

    async def advance(self) -> Result | None:
        """Run one call and return its result, or None at the end of the sequence.

        Calls whose conditions do not hold are skipped without any I/O.
        """
        while self.current_index < len(self.calls):
            call = self.calls[self.current_index]
            if self._conditions_hold(call):
                break
            logger.debug("Skipping %s at index %d", call.name, self.current_index)
            self.current_index += 1
        else:
            await self.end()
            return None

        if self.connection is None:
            raise NotConnectedError("advance called before start")

        request = call.get_request(self.context)
        await self.connection.write(request)
        response = await self.connection.read_until(TERMINATOR)
        call.set_raw_response(response)

        residual = await self.connection.flush()
        if residual:
            logger.warning("Discarded %d stray bytes after %s", len(residual), call.name)

        if call.is_complete():
            self.current_index += 1

        self._apply_bindings(call)

        return call.last_result() if self._store_results else call.pop_last_result()

    async def run(self, on_result: ResultObserver | None = None) -> None:
        """Run every call in order.

        ``on_result`` is called with each result, awaited if it returns an
        awaitable, before the next request is sent. The connection is
        closed when the run ends, normally or not.
        """
        try:
            await self.start()
            while self.is_running:
                result = await self.advance()
                if result is None:
                    break
                if on_result is not None:
                    outcome = on_result(result)
                    if inspect.isawaitable(outcome):
                        await outcome
        except Exception:
            self.state = ClientState.FAILED
            logger.exception("Run aborted at index %d", self.current_index)
            raise
        finally:
            await self.end()

    async def end(self) -> None:
        """Stop the run and close the connection. Idempotent."""
        if self.state is ClientState.RUNNING:
            self.state = ClientState.IDLE
        await self._close_connection()

    def get_results(self) -> list[Result]:
        return [result for call in self.calls for result in call.results]

    # ── Internals ─────────────────────────────────────────────────────

    async def _close_connection(self) -> None:
        connection, self.connection = self.connection, None
        if connection is not None:
            await connection.close()

    def _conditions_hold(self, call: CallDefinition) -> bool:
        return all(condition.holds(self.context) for condition in call.options.conditions)

    def _apply_bindings(self, call: CallDefinition) -> None:
        result = call.last_result()
        if result is None:
            return
        for binding in call.options.context:
            value = result.response.value
            if binding.index is not None:
                value = _item(value, binding.index)
            if binding.field is not None:
                value = _field(value, binding.field)
            handler = self._handlers.get(binding.handler) if binding.handler else None
            if callable(handler):
                value = handler(value)
            self.context[binding.key] = value
            logger.debug("Context %s = %r", binding.key, value)


def _item(value: Any, index: int) -> Any:
    items: Sequence[Any] = value if isinstance(value, (list, tuple)) else [value]
    if 0 <= index < len(items):
        return items[index]
    return ""


def _field(value: Any, field: int) -> str:
    parts = str(value).split(FIELD_SEPARATOR)
    return parts[field] if 0 <= field < len(parts) else ""
