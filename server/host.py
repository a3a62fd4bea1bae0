import itertools
import logging
import threading
from typing import Any, Callable, Dict, Optional

from common.events import EventHub, HostEvent
from common.transport import Connection, SocketListener
from server.connection import ConnectionHandle
from server.state import CredentialStore

logger = logging.getLogger(__name__)


class SessionHost(EventHub):
    '''
    Server role: accepts connections and enforces one active session per identity.
    Owns everything the handles share: the credential store, the id generator
    and the live connection table.
        Inputs:
            - credentials: store to authenticate against; a fresh one by default
            - id_factory: callable returning the next connection id; a counter from 0 by default
            - handshake_timeout: seconds a connection may stay without logging in; None disables it
    '''

    EVENTS = HostEvent
    ALIASES = {"open": HostEvent.CONNECTION}

    def __init__(
        self,
        credentials: Optional[CredentialStore] = None,
        *,
        id_factory: Optional[Callable[[], int]] = None,
        handshake_timeout: Optional[float] = None,
    ):
        super().__init__()
        self.credentials = credentials if credentials is not None else CredentialStore()
        self.handshake_timeout = handshake_timeout
        self._next_id = id_factory if id_factory is not None else itertools.count().__next__
        self._lock = threading.Lock()   # guards the live table and the timers
        self._clients: Dict[int, ConnectionHandle] = {}   # id -> handle
        self._timers: Dict[int, threading.Timer] = {}   # id -> pending handshake timeout
        self._listener: Optional[Any] = None

    def register_credential(self, identity: str, secret: str) -> None:
        ''' This function registers (or resets) an identity; one connection may use it at a time'''
        self.credentials.register(identity, secret)

    @property
    def connections(self) -> Dict[int, ConnectionHandle]:
        ''' Snapshot of the live connection table '''
        with self._lock:
            return dict(self._clients)

    def get(self, handle_id: int) -> Optional[ConnectionHandle]:
        with self._lock:
            return self._clients.get(handle_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._clients)

    def accept(self, connection: Connection, request: Optional[dict] = None) -> ConnectionHandle:
        '''
        This function takes ownership of a new transport connection.
        Inputs:
            - connection: the accepted, not yet started, connection
            - request: transport metadata such as the peer address
        Output: ConnectionHandle - the new handle, already in the live table
        'connection' is emitted before the transport starts, so handlers can attach in time.
        '''
        with self._lock:
            handle = ConnectionHandle(self._next_id(), connection, self, request)
            self._clients[handle.id] = handle
        logger.info("Connection %s opened from %s", handle.id, connection.address)

        self._arm_timer(handle)
        self._emit(HostEvent.CONNECTION, handle)
        connection.start()
        return handle

    def attach(self, listener: Any) -> None:
        ''' This function routes new connections from a transport listener to accept()'''
        listener.on_connection = self.accept
        self._listener = listener

    def listen(self, address: str = "0.0.0.0", port: int = 0) -> SocketListener:
        ''' Bind a TCP listener; call serve_forever or serve_in_background next '''
        listener = SocketListener(address, port)
        self.attach(listener)
        listener.bind()
        return listener

    def serve_forever(self) -> None:
        if self._listener is None:
            raise RuntimeError("No listener attached; call listen() first")
        self._listener.serve_forever()

    def serve_in_background(self) -> threading.Thread:
        if self._listener is None:
            raise RuntimeError("No listener attached; call listen() first")
        return self._listener.serve_in_background()

    def stop(self) -> None:
        ''' This function stops accepting and closes every live connection'''
        if self._listener is not None and hasattr(self._listener, "stop"):
            self._listener.stop()
        for handle in self.connections.values():
            handle.close()

    def _arm_timer(self, handle: ConnectionHandle) -> None:
        if self.handshake_timeout is None:
            return
        timer = threading.Timer(self.handshake_timeout, handle.expire_handshake)
        timer.daemon = True
        with self._lock:
            self._timers[handle.id] = timer
        timer.start()

    def _cancel_timer(self, handle: ConnectionHandle) -> None:
        with self._lock:
            timer = self._timers.pop(handle.id, None)
        if timer is not None:
            timer.cancel()

    def _logon(self, handle: ConnectionHandle, identity: Any, success: bool) -> None:
        if success:
            self._cancel_timer(handle)
            self._emit(HostEvent.SUCCESSFUL_LOGON, identity)
        else:
            self._emit(HostEvent.FAILED_LOGON, identity)

    def _discard(self, handle: ConnectionHandle) -> None:
        self._cancel_timer(handle)
        with self._lock:
            removed = self._clients.pop(handle.id, None)
        if removed is not None:
            self._emit(HostEvent.CLOSE, handle)
