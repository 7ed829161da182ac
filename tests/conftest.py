"""Shared fixtures: an in-memory transport, a scripted broker, and a test cipher."""

from __future__ import annotations

import asyncio
import random
import string

import pytest

from vista_broker_mcp.utils.cipher import VistaCipher, set_cipher_provider

ALPHABET = string.ascii_letters + string.digits + ";!@#$%^&*"
TEST_CIPHER_TABLE = [ALPHABET[k:] + ALPHABET[:k] for k in range(0, 60, 3)]


class FakeTransport(asyncio.Transport):
    """Records writes; closing reports the loss to the protocol on the next loop turn."""

    def __init__(self, protocol=None) -> None:
        super().__init__()
        self.protocol = protocol
        self.written: list[bytes] = []
        self.closed = False

    def set_protocol(self, protocol) -> None:
        self.protocol = protocol

    def get_protocol(self):
        return self.protocol

    def get_extra_info(self, name, default=None):
        if name == "peername":
            return ("127.0.0.1", 9430)
        return default

    def write(self, data) -> None:
        self.written.append(bytes(data))

    def is_closing(self) -> bool:
        return self.closed

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        asyncio.get_running_loop().call_soon(self.protocol.connection_lost, None)


async def read_request_frame(reader: asyncio.StreamReader) -> bytes:
    """Read one request frame, honouring the version and name length bytes."""
    head = await reader.readexactly(len(b"[XWB]11302"))
    version_len = await reader.readexactly(1)
    version = await reader.readexactly(version_len[0])
    name_len = await reader.readexactly(1)
    name = await reader.readexactly(name_len[0])
    params = await reader.readuntil(b"\x04")
    return head + version_len + version + name_len + name + params


class ScriptedBroker:
    """Loopback broker answering each request with the next scripted response.

    Once the responses run out it closes the connection.
    """

    def __init__(self, responses: list[bytes]) -> None:
        self.responses = list(responses)
        self.requests: list[bytes] = []
        self.connections = 0
        self.server: asyncio.AbstractServer | None = None
        self.port = 0

    async def start(self) -> ScriptedBroker:
        self.server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        self.port = self.server.sockets[0].getsockname()[1]
        return self

    async def stop(self) -> None:
        if self.server is not None:
            self.server.close()
            await self.server.wait_closed()

    async def _handle(self, reader, writer) -> None:
        self.connections += 1
        try:
            while True:
                try:
                    frame = await read_request_frame(reader)
                except (asyncio.IncompleteReadError, ConnectionError):
                    break
                self.requests.append(frame)
                if not self.responses:
                    break
                writer.write(self.responses.pop(0))
                await writer.drain()
        finally:
            writer.close()


@pytest.fixture
async def broker():
    """Factory fixture: ``await broker([responses...])`` starts a ScriptedBroker."""
    started: list[ScriptedBroker] = []

    async def factory(responses: list[bytes]) -> ScriptedBroker:
        instance = await ScriptedBroker(responses).start()
        started.append(instance)
        return instance

    yield factory
    for instance in started:
        await instance.stop()


@pytest.fixture
def cipher():
    """Install a deterministic pad-table cipher for encrypt-marked arguments."""
    provider = VistaCipher(TEST_CIPHER_TABLE, rng=random.Random(1234))
    set_cipher_provider(provider)
    yield provider
    set_cipher_provider(None)
