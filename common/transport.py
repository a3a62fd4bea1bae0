import logging
import socket
import threading
from typing import Any, Callable, Optional, Tuple

from common.protocol import recv_frame, send_frame

logger = logging.getLogger(__name__)

Address = Tuple[str, int]


def _noop(*_args: Any) -> None:
    pass


class Connection:
    # One end of a bidirectional frame connection. The session core drives it through
    # three callbacks and two calls; on_close fires exactly once, whoever closed it.

    def __init__(self) -> None:
        self.on_open: Callable[[], Any] = _noop
        self.on_message: Callable[[bytes], Any] = _noop
        self.on_close: Callable[[], Any] = _noop

    @property
    def is_open(self) -> bool:
        raise NotImplementedError

    @property
    def address(self) -> Optional[Address]:
        ''' Remote address, if the transport has one '''
        return None

    def start(self) -> None:
        ''' Begin delivering notifications '''
        raise NotImplementedError

    def send(self, frame: bytes) -> None:
        raise NotImplementedError

    def close(self) -> None:
        ''' Terminate the connection without waiting for the peer '''
        raise NotImplementedError


class SocketConnection(Connection):
    '''
    Connection over a connected TCP socket, framed with a 4-byte length prefix.
    start() fires on_open if requested, then spawns the reader thread that fires on_close.
    '''

    def __init__(self, sock: socket.socket, address: Optional[Address] = None,
                 announce_open: bool = False):
        super().__init__()
        self.sock = sock
        self._address = address
        self._announce_open = announce_open
        self._send_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._open = True
        self._close_fired = False
        self._reader: Optional[threading.Thread] = None

    @property
    def is_open(self) -> bool:
        return self._open

    @property
    def address(self) -> Optional[Address]:
        return self._address

    def start(self) -> None:
        self._reader = threading.Thread(target=self._recv_loop, daemon=True,
                                        name=f"conn-{self._address}")
        if self._announce_open:
            self.on_open()
        self._reader.start()

    def send(self, frame: bytes) -> None:
        try:
            with self._send_lock:
                send_frame(self.sock, frame)
        except OSError as e:
            logger.debug("Send to %s failed: %s", self._address, e)
            self.close()

    def close(self) -> None:
        with self._state_lock:
            if not self._open:
                return
            self._open = False
        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass  # already disconnected
        self.sock.close()
        if self._reader is None or not self._reader.is_alive():
            self._fire_close()

    def _fire_close(self) -> None:
        with self._state_lock:
            if self._close_fired:
                return
            self._close_fired = True
            self._open = False
        self.on_close()

    def _recv_loop(self) -> None:
        ''' Thread function to receive frames from the peer '''
        try:
            while self._open:
                frame = recv_frame(self.sock)
                if frame is None:
                    logger.debug("Peer closed connection: %s", self._address)
                    break
                self.on_message(frame)
        except OSError as e:
            if self._open:
                logger.debug("Connection %s lost: %s", self._address, e)
        except Exception:
            logger.exception("Error handling frame from %s", self._address)
        finally:
            if self._open:
                self.close()
            self._fire_close()


def open_connection(host: str, port: int, timeout: Optional[float] = None) -> SocketConnection:
    '''
    Establish a TCP connection to a session server.
    The returned connection announces on_open when started.
    '''
    sock = socket.create_connection((host, port), timeout=timeout)
    sock.settimeout(None)
    sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)  # send frames immediately
    return SocketConnection(sock, address=(host, port), announce_open=True)


class SocketListener:
    '''
    Accept loop for TCP connections.
    Every accepted socket is handed to on_connection(connection, {"address": addr})
    before it is started, so the receiver can attach its callbacks first.
    '''

    def __init__(self, host: str, port: int):
        self.host, self.port = host, port
        self.on_connection: Callable[[Connection, dict], Any] = _noop
        self._sock: Optional[socket.socket] = None
        self._running = False
        self._thread: Optional[threading.Thread] = None

    def bind(self) -> Address:
        ''' This function binds the server socket and returns the resolved address'''
        self._sock = socket.create_server((self.host, self.port))
        self.port = self._sock.getsockname()[1]  # resolve port 0
        self._running = True
        logger.info("Listening on %s:%s", self.host, self.port)
        return self.host, self.port

    def serve_forever(self) -> None:
        if self._sock is None:
            self.bind()
        server = self._sock
        while self._running:
            try:
                conn, addr = server.accept()
            except OSError:
                if self._running:
                    logger.exception("Accept failed")
                break
            conn.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
            logger.debug("Accepted connection from %s", addr)
            connection = SocketConnection(conn, address=addr)
            try:
                self.on_connection(connection, {"address": addr})
            except Exception:
                logger.exception("Connection handler failed for %s", addr)
                connection.close()

    def serve_in_background(self) -> threading.Thread:
        if self._sock is None:
            self.bind()
        self._thread = threading.Thread(target=self.serve_forever, daemon=True, name="listener")
        self._thread.start()
        return self._thread

    def stop(self) -> None:
        self._running = False
        if self._sock is not None:
            try:
                self._sock.shutdown(socket.SHUT_RDWR)  # wakes a blocked accept()
            except OSError:
                pass
            try:
                self._sock.close()
            finally:
                self._sock = None
        logger.info("Listener on %s:%s stopped", self.host, self.port)
