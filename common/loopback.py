import itertools
import logging
from collections import deque
from typing import Any, Callable, Deque, Optional

from common.transport import Address, Connection, _noop

logger = logging.getLogger(__name__)


class LoopbackConnection(Connection):
    ''' One end of an in-process connection pair; frames travel through the network queue '''

    def __init__(self, network: "LoopbackNetwork", address: Address, announce_open: bool = False):
        super().__init__()
        self._network = network
        self._address = address
        self._announce_open = announce_open
        self._open = True
        self._receiving = True
        self.peer: Optional["LoopbackConnection"] = None

    @property
    def is_open(self) -> bool:
        return self._open

    @property
    def address(self) -> Address:
        return self._address

    def start(self) -> None:
        if self._announce_open:
            self._network._enqueue(self._fire_open)

    def send(self, frame: bytes) -> None:
        if not self._open:
            logger.debug("Dropping frame on closed loopback %s", self._address)
            return
        self._network._enqueue(lambda: self.peer._fire_message(bytes(frame)))

    def close(self) -> None:
        if not self._open:
            return
        # The closing end stops receiving now; frames already in flight
        # towards the other end are still delivered before its close.
        self._receiving = False
        for end in (self, self.peer):
            end._open = False
            self._network._enqueue(end._fire_close)

    def _fire_open(self) -> None:
        if self._open:
            self.on_open()

    def _fire_message(self, frame: bytes) -> None:
        if self._receiving:
            self.on_message(frame)

    def _fire_close(self) -> None:
        self._receiving = False
        self.on_close()


class LoopbackListener:
    # Server side of a loopback network; mirrors SocketListener

    def __init__(self, network: "LoopbackNetwork"):
        self._network = network
        self.on_connection: Callable[[Connection, dict], Any] = _noop


class LoopbackNetwork:
    '''
    In-process transport with no sockets and no threads, for tests and embedding.
    Notifications are queued and delivered one at a time by run_until_idle(),
    so every state transition happens in a deterministic order.
    '''

    def __init__(self) -> None:
        self._pending: Deque[Callable[[], Any]] = deque()
        self._ports = itertools.count(1)

    def listen(self) -> LoopbackListener:
        return LoopbackListener(self)

    def connect(self, listener: LoopbackListener, request: Optional[dict] = None) -> LoopbackConnection:
        '''
        This function opens a connection to listener and returns the client end.
        The listener is notified before the client end can announce open.
        '''
        port = next(self._ports)
        client = LoopbackConnection(self, ("loopback", port), announce_open=True)
        server = LoopbackConnection(self, ("loopback", port))
        client.peer, server.peer = server, client
        info = {"address": client.address} if request is None else request
        self._enqueue(lambda: listener.on_connection(server, info))
        return client

    def _enqueue(self, notification: Callable[[], Any]) -> None:
        self._pending.append(notification)

    def run_until_idle(self, max_steps: int = 100_000) -> int:
        '''
        This function delivers queued notifications until none are left.
        Input:
            - max_steps: int - guard against handlers that keep the network busy forever
        Output: int - the number of notifications delivered
        Handler exceptions propagate to the caller.
        '''
        steps = 0
        while self._pending:
            if steps >= max_steps:
                raise RuntimeError(f"loopback network still busy after {max_steps} steps")
            self._pending.popleft()()
            steps += 1
        return steps
