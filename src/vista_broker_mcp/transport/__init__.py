"""Transport layer: the TCP connection to the broker."""

from .connection import BrokerConnection
