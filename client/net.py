import logging
import threading
from enum import Enum, auto
from typing import Any, Callable, Optional

from common.errors import AuthenticationFailure, DecodeError
from common.events import EventHub, PeerEvent
from common.messages import Envelope
from common.protocol import LOGIN, decode, encode, field, login_request
from common.transport import Connection, open_connection

logger = logging.getLogger(__name__)


class PeerState(Enum):
    CONNECTING = auto()
    HANDSHAKE_PENDING = auto()
    AUTHORIZED = auto()
    REJECTED = auto()   # terminal
    CLOSED = auto()


class SessionPeer(EventHub):
    '''
    Client role: one outbound connection that logs in as soon as it opens.
    Without a 'rejected' handler a rejection raises AuthenticationFailure from the
    transport's notification. The TCP reader thread only logs that exception, so
    TCP callers must register 'rejected' to observe a rejection in their own code.
    '''

    EVENTS = PeerEvent

    def __init__(self, host: str, port: int, identity: str, secret: str,
                 connect: Callable[[str, int], Connection] = open_connection):
        super().__init__()
        self.host, self.port = host, port
        self.identity, self.secret = identity, secret
        self._open_connection = connect   # transport factory, TCP by default
        self.connection: Optional[Connection] = None
        self.state = PeerState.CONNECTING
        self._lock = threading.Lock()
        self._closed = False

    def __repr__(self) -> str:
        return f"SessionPeer({self.identity!r}@{self.host}:{self.port}, state={self.state.name})"

    @property
    def authorized(self) -> bool:
        return self.state is PeerState.AUTHORIZED

    def connect(self) -> None:
        '''
        Open the transport. Register handlers first: the login is sent as soon as
        the transport reports open, and its response may arrive right after.
        '''
        self.connection = self._open_connection(self.host, self.port)
        self.connection.on_open = self._on_open
        self.connection.on_message = self._on_message
        self.connection.on_close = self._on_close
        logger.debug("Connecting to %s:%s as %s", self.host, self.port, self.identity)
        self.connection.start()

    def close(self) -> None:
        ''' Close the transport; 'close' is emitted when the transport reports it '''
        if self.connection is not None:
            self.connection.close()

    def send(self, kind: str, payload: Any = None) -> None:
        ''' Send an envelope to the server; silently dropped unless the transport is open '''
        if self.connection is None or not self.connection.is_open:
            logger.debug("Transport not open, dropping %s", kind)
            return
        self.connection.send(encode(Envelope(kind, payload)))

    def _on_open(self) -> None:
        self._emit(PeerEvent.OPEN)
        self.state = PeerState.HANDSHAKE_PENDING
        login = login_request(self.identity, self.secret)
        self.send(login.kind, login.payload)

    def _on_message(self, frame: bytes) -> None:
        if self.state in (PeerState.REJECTED, PeerState.CLOSED):
            return
        try:
            env = decode(frame)
        except DecodeError as e:
            logger.warning("Malformed frame from server, closing: %s", e)
            self.close()
            return

        if self.state is PeerState.AUTHORIZED:
            if env.kind == LOGIN:
                logger.warning("Ignoring unexpected login envelope after authorization")
                return
            self._emit(PeerEvent.MESSAGE, env)
            return

        # Anything before the login response is the login response.
        if field(env.payload, "success") is True:
            self.state = PeerState.AUTHORIZED
            logger.info("Authorized as %s", self.identity)
            self._emit(PeerEvent.AUTHORIZED)
            return

        reason = field(env.payload, "reason")
        self.state = PeerState.REJECTED
        logger.warning("Login as %s rejected: %s", self.identity, reason)
        self.close()
        if self.handler(PeerEvent.REJECTED) is None:
            raise AuthenticationFailure(reason)
        self._emit(PeerEvent.REJECTED, reason)

    def _on_close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        if self.state is not PeerState.REJECTED:
            self.state = PeerState.CLOSED
        logger.info("Connection to %s:%s closed", self.host, self.port)
        self._emit(PeerEvent.CLOSE)
