"""Exception hierarchy shared by the codec, transport, and client layers."""

from __future__ import annotations


class BrokerError(Exception):
    """Base class for all broker client errors."""


class BrokerConnectionError(BrokerError, ConnectionError):
    """The broker connection is unusable."""


class NotConnectedError(BrokerConnectionError):
    """An operation was attempted on a connection that was never opened."""


class ConnectionClosedError(BrokerConnectionError):
    """The connection was closed, locally or by the remote side."""


class MalformedFrameError(BrokerError, ValueError):
    """A frame is missing an expected delimiter, length, or terminator."""


class CipherConfigError(BrokerError):
    """No usable cipher pad table is configured."""


class ScriptError(BrokerError, ValueError):
    """A call script has an invalid structure."""
