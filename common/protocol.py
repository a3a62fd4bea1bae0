import json
import socket
import struct
from typing import Any, Optional

from common.errors import DecodeError, FrameTooLarge
from common.messages import Envelope

ENC = "utf-8"   # encoding for JSON text
HEADER = struct.Struct("!I")   # 4-byte big-endian frame length
MAX_FRAME_SIZE = 16 * 1024 * 1024

LOGIN = "login"   # the only reserved envelope kind
INVALID_CREDENTIALS = "Invalid credentials"
LOGIN_REQUIRED = "Login required"
LOGIN_TIMEOUT = "Login timed out"
ALREADY_LOGGED_IN = "Already logged in"


def encode(env: Envelope) -> bytes:
    '''
    The function serializes an envelope to a binary frame.
    Inputs:
        - env: Envelope - the envelope to encode; its payload must be JSON-compatible
    Output: bytes - UTF-8 JSON text of {"kind": ..., "payload": ...}
    Raises TypeError for non-serializable values and ValueError for NaN or infinity.
    '''
    text = json.dumps(env.to_dict(), ensure_ascii=False, allow_nan=False,
                      separators=(",", ":"))
    return text.encode(ENC)


def decode(frame: bytes) -> Envelope:
    '''
    The function parses a binary frame back into an envelope.
    Input:
        - frame: bytes - a frame produced by encode()
    Output:
        - Envelope - the decoded envelope
    Raises DecodeError if the frame is not a JSON object carrying a string "kind".
    '''
    try:
        obj = json.loads(bytes(frame).decode(ENC), parse_constant=_reject_constant)
    except (UnicodeDecodeError, ValueError) as e:
        raise DecodeError(f"malformed frame: {e}") from e
    if not isinstance(obj, dict) or "kind" not in obj:
        raise DecodeError("frame has no 'kind' field")
    if not isinstance(obj["kind"], str):
        raise DecodeError(f"'kind' must be a string, got {type(obj['kind']).__name__}")
    return Envelope(kind=obj["kind"], payload=obj.get("payload"))


def _reject_constant(token: str) -> Any:
    raise ValueError(f"{token} is not valid JSON")


def login_request(identity: str, secret: str) -> Envelope:
    return Envelope(LOGIN, {"identity": identity, "secret": secret})


def login_accepted() -> Envelope:
    return Envelope(LOGIN, {"success": True})


def login_rejected(reason: str = INVALID_CREDENTIALS) -> Envelope:
    return Envelope(LOGIN, {"success": False, "reason": reason})


def send_frame(sock: socket.socket, frame: bytes) -> None:
    '''
    The function writes one length-prefixed frame to a socket.
    Inputs:
        - sock: socket.socket - the socket to send the data through
        - frame: bytes - the frame to be sent
    Output: None
    '''
    if len(frame) > MAX_FRAME_SIZE:
        raise FrameTooLarge(f"frame of {len(frame)} bytes exceeds {MAX_FRAME_SIZE}")
    sock.sendall(HEADER.pack(len(frame)) + frame)


def recv_frame(sock: socket.socket) -> Optional[bytes]:
    '''
    The function reads one length-prefixed frame from a socket.
    Input:
        - sock: socket.socket - the socket to receive data from
    Output:
        - bytes - the frame, or None if the peer closed the connection cleanly
    '''
    header = _recv_exact(sock, HEADER.size)
    if header is None:
        return None
    (size,) = HEADER.unpack(header)
    if size > MAX_FRAME_SIZE:
        raise FrameTooLarge(f"peer announced a frame of {size} bytes")
    if size == 0:
        return b""
    body = _recv_exact(sock, size)
    if body is None:
        raise ConnectionError("socket closed mid-frame")
    return body


def _recv_exact(sock: socket.socket, n: int) -> Optional[bytes]:
    buf = bytearray()
    while len(buf) < n:
        chunk = sock.recv(n - len(buf))
        if not chunk:
            if buf:
                raise ConnectionError("socket closed mid-frame")
            return None
        buf.extend(chunk)
    return bytes(buf)


def field(payload: Any, name: str) -> Any:
    '''Return payload[name] if payload is a mapping, else None'''
    if isinstance(payload, dict):
        return payload.get(name)
    return None
