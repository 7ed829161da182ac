"""Request and response frame codec for the RPC Broker wire format.

Request layout::

    +-------+--------+------+----------------+-------------+-------+--------+------------+
    | [XWB] | 1130   | 2    | len + "1.108"  | len + name  | "5"   | params | 0x04       |
    | 5 B   | 4 B    | 1 B  | 1 B + version  | 1 B + name  | 1 B   |        | terminator |
    +-------+--------+------+----------------+-------------+-------+--------+------------+

- Each length prefix above is a single raw byte.
- Params: ``4f`` for a call without arguments, otherwise one block per
  argument: ``<flag><3-digit byte length><value>f``. Flag ``0`` sends the
  value literally, flag ``1`` sends it as a reference expression that the
  broker resolves.

Response layout::

    +------+------+--------------------------+------------+
    | 0x00 | 0x00 | lines joined by CR LF    | 0x04       |
    +------+------+--------------------------+------------+
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Sequence

from ..errors import MalformedFrameError
from ..utils.cipher import get_cipher_provider

PREFIX = b"[XWB]"
HEADER = b"1130"
RPC_TYPE = b"2"
VERSION = b"1.108"
PARAMS_START = b"5"
EMPTY_PARAMS = b"4f"
PARAM_END = b"f"
TERMINATOR = b"\x04"
RESPONSE_MARKER = b"\x00\x00"
LINE_SEPARATOR = "\r\n"

FLAG_LITERAL = b"0"
FLAG_REFERENCE = b"1"

ENCODING = "utf-8"
MAX_NAME_LENGTH = 0xFF
MAX_PARAM_LENGTH = 999


@dataclass(frozen=True)
class Reference:
    """An argument sent by reference (flag 1).

    The text is an expression the broker evaluates, e.g. a global root.
    """

    value: Any

    def __str__(self) -> str:
        return str(self.value)


def _spack(data: bytes) -> bytes:
    """Prefix ``data`` with its length as a single byte."""
    if len(data) > MAX_NAME_LENGTH:
        raise ValueError(
            f"Value too long for a 1-byte length prefix: {len(data)} bytes"
        )
    return bytes([len(data)]) + data


def encode_argument(arg: Any) -> bytes:
    """Encode one argument as a ``<flag><length><value>f`` block."""
    flag = FLAG_REFERENCE if isinstance(arg, Reference) else FLAG_LITERAL
    value = str(arg).encode(ENCODING)
    if len(value) > MAX_PARAM_LENGTH:
        raise ValueError(
            f"Argument must be at most {MAX_PARAM_LENGTH} bytes, got {len(value)}"
        )
    return flag + str(len(value)).zfill(3).encode("ascii") + value + PARAM_END


def build_request_frame(name: str, args: Sequence[Any] = ()) -> bytes:
    """Build the wire bytes for a remote procedure call.

    Args:
        name: Remote procedure name.
        args: Scalars are sent by value, :class:`Reference` instances by
            reference.

    Returns:
        The complete request frame, terminator included.
    """
    if args:
        params = b"".join(encode_argument(arg) for arg in args)
    else:
        params = EMPTY_PARAMS
    return (
        PREFIX
        + HEADER
        + RPC_TYPE
        + _spack(VERSION)
        + _spack(name.encode(ENCODING))
        + PARAMS_START
        + params
        + TERMINATOR
    )


def _read_spack(raw: bytes, pos: int, what: str) -> tuple[bytes, int]:
    if pos >= len(raw):
        raise MalformedFrameError(f"Frame ends before the {what} length byte")
    length = raw[pos]
    end = pos + 1 + length
    if end > len(raw):
        raise MalformedFrameError(
            f"Frame too short for {what} of {length} bytes"
        )
    return raw[pos + 1 : end], end


def parse_request_frame(raw: bytes) -> tuple[str, list[str]]:
    """Recover the procedure name and argument values from a request frame.

    The version and name are read by their length bytes, so frames built
    with any name length (``\\x04``, ``\\r``, ``\\x10`` ...) are accepted.

    Raises:
        MalformedFrameError: If the frame does not follow the layout.
    """
    start = raw.find(PREFIX)
    if start < 0:
        raise MalformedFrameError(f"Missing {PREFIX!r} prefix")

    pos = start + len(PREFIX) + len(HEADER) + len(RPC_TYPE)
    _, pos = _read_spack(raw, pos, "version")
    name_bytes, pos = _read_spack(raw, pos, "name")
    name = name_bytes.decode(ENCODING)

    if raw[pos : pos + 1] != PARAMS_START:
        raise MalformedFrameError(f"Expected parameter block at offset {pos}")
    pos += 1

    args: list[str] = []
    while True:
        if pos >= len(raw):
            raise MalformedFrameError("Missing frame terminator")
        if raw[pos : pos + 1] == TERMINATOR:
            break
        if raw[pos : pos + 2] == EMPTY_PARAMS:
            pos += 2
            continue

        digits = raw[pos + 1 : pos + 4]
        if len(digits) != 3 or not digits.isdigit():
            raise MalformedFrameError(
                f"Bad argument length {digits!r} at offset {pos + 1}"
            )
        length = int(digits)
        value_start = pos + 4
        value_end = value_start + length
        if raw[value_end : value_end + 1] != PARAM_END:
            raise MalformedFrameError(
                f"Argument at offset {pos} is not closed by {PARAM_END!r}"
            )
        args.append(raw[value_start:value_end].decode(ENCODING))
        pos = value_end + 1

    return name, args


def parse_response_frame(raw: bytes) -> str | list[str]:
    """Parse a response frame into a single line or a list of lines.

    Raises:
        MalformedFrameError: If the terminator is missing.
    """
    if len(raw) < len(RESPONSE_MARKER) + 1 or not raw.endswith(TERMINATOR):
        raise MalformedFrameError(f"Response frame not terminated: {raw[-16:]!r}")

    payload = raw[len(RESPONSE_MARKER) : -len(TERMINATOR)]
    lines = payload.decode(ENCODING, errors="replace").split(LINE_SEPARATOR)
    if len(lines) > 1 and lines[-1] == "":
        lines.pop()

    if len(lines) == 1:
        return lines[0]
    return lines


def build_response_frame(value: Any) -> bytes:
    """Build a synthetic response frame for ``value``.

    A list or tuple becomes one line per element, anything else a single
    line.
    """
    if isinstance(value, (list, tuple)):
        payload = "".join(f"{line}{LINE_SEPARATOR}" for line in value)
    else:
        payload = str(value)
    return RESPONSE_MARKER + payload.encode(ENCODING) + TERMINATOR


def encrypt_argument(plaintext: str) -> str:
    """Encrypt an argument with the configured cipher provider."""
    return get_cipher_provider().encrypt(plaintext)
