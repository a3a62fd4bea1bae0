import logging
import threading
from enum import Enum, auto
from typing import TYPE_CHECKING, Any, Optional

from common.errors import DecodeError
from common.events import ConnectionEvent, EventHub
from common.messages import Envelope
from common.protocol import (
    ALREADY_LOGGED_IN,
    INVALID_CREDENTIALS,
    LOGIN,
    LOGIN_REQUIRED,
    LOGIN_TIMEOUT,
    decode,
    encode,
    field,
    login_accepted,
    login_rejected,
)
from common.transport import Connection

if TYPE_CHECKING:
    from server.host import SessionHost

logger = logging.getLogger(__name__)


class HandleState(Enum):
    AWAITING_LOGIN = auto()
    LOGGED_IN = auto()
    REJECTED = auto()  # terminal; the transport has been closed by us
    CLOSED = auto()


class ConnectionHandle(EventHub):
    '''
    Server-side state of one accepted connection, owned by a SessionHost.
    The first envelope must be a valid login; anything else is answered with a
    failure response and the transport is closed.
    '''

    EVENTS = ConnectionEvent

    def __init__(self, handle_id: int, connection: Connection, host: "SessionHost",
                 request: Optional[dict] = None):
        super().__init__()
        self.id = handle_id   # host-assigned, unique for the host's lifetime
        self.connection = connection   # only this handle writes to it
        self.request = request or {}   # transport metadata captured on accept
        self.identity: Optional[str] = None   # set once logged in
        self.state = HandleState.AWAITING_LOGIN
        self._host = host
        self._lock = threading.RLock()
        self._closed = False

        connection.on_message = self._on_message
        connection.on_close = self._on_close

    def __repr__(self) -> str:
        return f"ConnectionHandle(id={self.id}, identity={self.identity!r}, state={self.state.name})"

    @property
    def logged_in(self) -> bool:
        return self.state is HandleState.LOGGED_IN

    def send(self, kind: str, payload: Any = None) -> None:
        ''' This function sends an envelope; silently dropped if the transport is not open'''
        self._send(Envelope(kind, payload))

    def close(self) -> None:
        ''' Close the transport; 'close' is emitted when the transport reports it '''
        self.connection.close()

    def expire_handshake(self) -> None:
        ''' This function rejects the connection if it still has not logged in'''
        with self._lock:
            if self.state is not HandleState.AWAITING_LOGIN:
                return
            logger.warning("Connection %s did not log in in time", self.id)
            self._reject(LOGIN_TIMEOUT)

    def _send(self, env: Envelope) -> None:
        if not self.connection.is_open:
            logger.debug("Connection %s not open, dropping %s", self.id, env.kind)
            return
        self.connection.send(encode(env))

    def _reject(self, reason: str) -> None:
        self.state = HandleState.REJECTED
        self._send(login_rejected(reason))
        self.connection.close()

    def _on_message(self, frame: bytes) -> None:
        if self.state in (HandleState.REJECTED, HandleState.CLOSED):
            return
        try:
            env = decode(frame)
        except DecodeError as e:
            logger.warning("Connection %s sent a malformed frame, closing: %s", self.id, e)
            self.close()
            return

        with self._lock:
            if self.state is HandleState.AWAITING_LOGIN:
                self._handshake(env)
                return
            if self.state is not HandleState.LOGGED_IN:
                return

        if env.kind == LOGIN:
            logger.warning("Connection %s (%s) tried to log in twice", self.id, self.identity)
            self._send(login_rejected(ALREADY_LOGGED_IN))
            return
        self._emit(ConnectionEvent.MESSAGE, env)

    def _handshake(self, env: Envelope) -> None:
        # Check if the first message is a login
        if env.kind != LOGIN:
            logger.warning("Connection %s sent %r before logging in", self.id, env.kind)
            self._reject(LOGIN_REQUIRED)
            return

        identity = field(env.payload, "identity")
        secret = field(env.payload, "secret")
        valid = isinstance(identity, str) and isinstance(secret, str)
        if valid and self._host.credentials.try_login(identity, secret):
            self.state = HandleState.LOGGED_IN
            self.identity = identity
            logger.info("Connection %s logged in as %s", self.id, identity)
            # the response goes out first so anything sent by logon handlers follows it
            self._send(login_accepted())
            self._host._logon(self, identity, True)
        else:
            # unknown identity, wrong secret or already active → reject and close
            logger.warning("Connection %s failed to log in as %r", self.id, identity)
            self._host._logon(self, identity, False)
            self._reject(INVALID_CREDENTIALS)

    def _on_close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            if self.state is not HandleState.REJECTED:
                self.state = HandleState.CLOSED
            identity = self.identity

        # release the identity, then drop the handle from the host's table
        if identity is not None:
            self._host.credentials.logout(identity)
        logger.info("Connection %s closed", self.id)
        self._host._discard(self)
        self._emit(ConnectionEvent.CLOSE)
