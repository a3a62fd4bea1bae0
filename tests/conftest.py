"""Pytest configuration and fixtures."""

from __future__ import annotations

from typing import Any, Callable, List, Optional, Tuple

import pytest

from client.net import SessionPeer
from common.loopback import LoopbackListener, LoopbackNetwork
from common.messages import Envelope
from common.protocol import decode, encode
from common.transport import Connection
from server.host import SessionHost
from server.state import CredentialStore

# Cheap scrypt cost so tests that log in many times stay fast
FAST_SCRYPT_N = 2 ** 4


class Recorder:
    """Collects (event, args) pairs from any number of handlers."""

    def __init__(self) -> None:
        self.events: List[Tuple[str, tuple]] = []

    def __call__(self, name: str) -> Callable[..., None]:
        def handler(*args: Any) -> None:
            self.events.append((name, args))

        return handler

    def names(self) -> List[str]:
        return [name for name, _ in self.events]

    def args(self, name: str) -> List[tuple]:
        return [args for event, args in self.events if event == name]


class FakeConnection(Connection):
    """Transport stub: records sent envelopes, notifications are fired by the test."""

    def __init__(self, address: Optional[tuple] = ("fake", 1)) -> None:
        super().__init__()
        self._address = address
        self.open = True
        self.started = False
        self.close_calls = 0
        self.frames: List[bytes] = []

    @property
    def is_open(self) -> bool:
        return self.open

    @property
    def address(self):
        return self._address

    def start(self) -> None:
        self.started = True

    def send(self, frame: bytes) -> None:
        self.frames.append(frame)

    def close(self) -> None:
        self.close_calls += 1
        self.open = False

    @property
    def sent(self) -> List[Envelope]:
        return [decode(frame) for frame in self.frames]

    def deliver(self, kind: str, payload: Any = None) -> None:
        self.on_message(encode(Envelope(kind, payload)))


@pytest.fixture
def store() -> CredentialStore:
    """A credential store with alice and bob registered."""
    store = CredentialStore(scrypt_n=FAST_SCRYPT_N)
    store.register("alice", "s3cret")
    store.register("bob", "hunter2")
    return store


@pytest.fixture
def host(store: CredentialStore) -> SessionHost:
    """A host without handshake timeout and with deterministic ids."""
    return SessionHost(store, handshake_timeout=None)


@pytest.fixture
def network() -> LoopbackNetwork:
    return LoopbackNetwork()


@pytest.fixture
def listener(network: LoopbackNetwork, host: SessionHost) -> LoopbackListener:
    listener = network.listen()
    host.attach(listener)
    return listener


@pytest.fixture
def make_peer(network: LoopbackNetwork, listener: LoopbackListener) -> Callable[..., SessionPeer]:
    """Factory for peers connected through the loopback network."""

    def factory(identity: str, secret: str) -> SessionPeer:
        return SessionPeer("loopback", 0, identity, secret,
                           connect=lambda _host, _port: network.connect(listener))

    return factory


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()


@pytest.fixture
def make_connection() -> Callable[..., FakeConnection]:
    """Factory for transport stubs driven by the test."""
    return FakeConnection
