"""Scripted client for the VistA RPC Broker protocol."""

from .client import BrokerClient, ClientState, create_call
from .errors import (
    BrokerError,
    ConnectionClosedError,
    MalformedFrameError,
    NotConnectedError,
)
from .models.call import CallDefinition, CallOptions, Condition, ContextBinding, Result
from .protocol.framing import Reference
from .transport.connection import BrokerConnection

__version__ = "0.1.0"
