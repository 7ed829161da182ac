"""Scripted call definitions: normalized arguments, options, and results."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping, Sequence

from ..protocol.framing import (
    Reference,
    build_request_frame,
    build_response_frame,
    encrypt_argument,
    parse_request_frame,
    parse_response_frame,
)
from ..utils.template import contains_placeholder, render

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Condition:
    """Gate a call on the context.

    With ``value`` left as ``None`` the key only has to be present.
    """

    key: str
    value: Any = None

    def holds(self, context: Mapping[str, Any]) -> bool:
        current = context.get(self.key)
        if self.value is None:
            return current is not None
        return current == self.value

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Condition:
        return cls(key=data.get("key", data.get("name")), value=data.get("value"))


@dataclass(frozen=True)
class ContextBinding:
    """Copy part of a call's latest response value into the context."""

    key: str
    index: int | None = None
    field: int | None = None
    handler: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ContextBinding:
        return cls(
            key=data.get("key", data.get("name")),
            index=data.get("index"),
            field=data.get("field"),
            handler=data.get("handler"),
        )


@dataclass(frozen=True)
class CallOptions:
    repeat: int = 1
    conditions: tuple[Condition, ...] = ()
    context: tuple[ContextBinding, ...] = ()

    def __post_init__(self) -> None:
        if self.repeat < 1:
            raise ValueError(f"repeat must be >= 1, got {self.repeat}")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> CallOptions:
        """Build options from script-style keys (``repeat``, ``conditions``, ``context``)."""
        data = data or {}
        return cls(
            repeat=int(data.get("repeat") or 1),
            conditions=tuple(
                c if isinstance(c, Condition) else Condition.from_dict(c)
                for c in data.get("conditions") or ()
            ),
            context=tuple(
                b if isinstance(b, ContextBinding) else ContextBinding.from_dict(b)
                for b in data.get("context") or ()
            ),
        )


@dataclass
class CallState:
    """Per-run invocation state, rewritten by :meth:`CallDefinition.reset`."""

    iterations: int = 0
    timestamp: str | None = None
    started: float | None = None
    stopped: float | None = None
    arguments: list[Any] | None = None
    request: bytes | None = None


@dataclass
class Response:
    raw: bytes
    value: Any


@dataclass
class Result:
    """One request/response exchange."""

    name: str
    arguments: list[Any]
    request: bytes | None
    response: Response
    timestamp: str | None
    duration: float
    iteration: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "args": [str(a) if isinstance(a, Reference) else a for a in self.arguments],
            "raw": self.request.decode("latin-1") if self.request is not None else None,
            "response": {
                "raw": self.response.raw.decode("latin-1"),
                "value": self.response.value,
            },
            "timestamp": self.timestamp,
            "duration": self.duration,
            "iteration": self.iteration,
        }


def normalize_argument(arg: Any) -> Any:
    """Reduce a scripted argument to a wire-ready value.

    Mappings carry a ``type`` and ``value``: ``reference`` becomes a
    :class:`Reference`, ``encrypt`` is encrypted now, and every other type
    reduces to its plain value.
    """
    if not isinstance(arg, Mapping):
        return arg

    arg_type = str(arg.get("type", "default")).lower()
    value = arg.get("value")
    if arg_type == "reference":
        return Reference(value)
    if arg_type == "encrypt":
        return encrypt_argument(str(value))
    if arg_type not in ("default", "string", "number"):
        logger.debug("Unknown argument type %r, sending value as-is", arg_type)
    return value


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class CallDefinition:
    """A scripted remote procedure call and the results it has produced.

    Prefer the :meth:`create` and :meth:`from_raw` factories over the
    constructor.
    """

    def __init__(
        self,
        name: str,
        args: Sequence[Any],
        raw: bytes | None,
        options: CallOptions,
    ) -> None:
        self.name = name
        self.args = list(args)
        self.raw = raw
        self.options = options
        self.state = CallState()
        self.results: list[Result] = []

    def __repr__(self) -> str:
        return (
            f"CallDefinition(name={self.name!r}, args={self.args!r}, "
            f"repeat={self.options.repeat})"
        )

    @classmethod
    def create(
        cls,
        name: str,
        args: Sequence[Any] = (),
        options: CallOptions | Mapping[str, Any] | None = None,
    ) -> CallDefinition:
        """Create a call from a name and scripted arguments.

        The frame is built once here unless an argument holds a
        placeholder, in which case it is built per request.
        """
        normalized = [normalize_argument(arg) for arg in args or ()]
        templated = any(contains_placeholder(arg) for arg in normalized)
        raw = None if templated else build_request_frame(name, normalized)
        return cls(name, normalized, raw, _coerce_options(options))

    @classmethod
    def from_raw(
        cls,
        raw: bytes | str,
        options: CallOptions | Mapping[str, Any] | None = None,
    ) -> CallDefinition:
        """Create a call from a complete request frame.

        Text frames are taken one code point per byte.
        """
        if isinstance(raw, str):
            raw = raw.encode("latin-1")
        name, args = parse_request_frame(raw)
        return cls(name, args, raw, _coerce_options(options))

    @property
    def is_templated(self) -> bool:
        return self.raw is None

    def reset(self) -> None:
        self.state = CallState()
        self.results = []

    def get_request(self, context: Mapping[str, Any] | None = None) -> bytes:
        """Return the bytes to send for the next iteration of this call."""
        state = self.state
        state.timestamp = _utc_timestamp()
        state.started = time.perf_counter()
        state.stopped = None
        state.iterations += 1
        if self.raw is not None:
            state.request = self.raw
        else:
            state.arguments = [render(arg, context or {}) for arg in self.args]
            state.request = build_request_frame(self.name, state.arguments)
        return state.request

    def set_raw_response(self, raw: bytes) -> Result:
        return self._record(raw, parse_response_frame(raw))

    def set_response(self, value: Any) -> Result:
        """Record a response value that did not come off the wire."""
        return self._record(build_response_frame(value), value)

    def is_complete(self) -> bool:
        return self.state.iterations >= self.options.repeat

    def last_result(self) -> Result | None:
        return self.results[-1] if self.results else None

    def pop_last_result(self) -> Result | None:
        return self.results.pop() if self.results else None

    def _record(self, raw: bytes, value: Any) -> Result:
        state = self.state
        duration = 0.0
        if state.started is not None:
            state.stopped = time.perf_counter()
            duration = (state.stopped - state.started) * 1000.0

        result = Result(
            name=self.name,
            arguments=list(state.arguments if state.arguments is not None else self.args),
            request=state.request,
            response=Response(raw=raw, value=value),
            timestamp=state.timestamp,
            duration=duration,
            iteration=state.iterations,
        )
        self.results.append(result)
        return result


def _coerce_options(options: CallOptions | Mapping[str, Any] | None) -> CallOptions:
    if isinstance(options, CallOptions):
        return options
    return CallOptions.from_dict(options)
