"""Tests for the client-side SessionPeer state machine."""

from __future__ import annotations

import pytest

from client.net import PeerState, SessionPeer
from common.errors import AuthenticationFailure
from common.messages import Envelope
from common.protocol import INVALID_CREDENTIALS, LOGIN


@pytest.fixture
def conn(make_connection):
    return make_connection()


@pytest.fixture
def peer(conn, recorder) -> SessionPeer:
    peer = SessionPeer("example.org", 5050, "alice", "s3cret", connect=lambda host, port: conn)
    for kind in ("open", "authorized", "rejected", "message", "close"):
        peer.on(kind, recorder(kind))
    peer.connect()
    return peer


class TestHandshake:
    def test_connect_starts_transport(self, peer: SessionPeer, conn) -> None:
        assert conn.started
        assert peer.connection is conn
        assert peer.state is PeerState.CONNECTING
        assert conn.frames == []

    def test_open_sends_login(self, peer: SessionPeer, conn, recorder) -> None:
        conn.on_open()

        assert recorder.names() == ["open"]
        assert peer.state is PeerState.HANDSHAKE_PENDING
        assert conn.sent == [Envelope(LOGIN, {"identity": "alice", "secret": "s3cret"})]

    def test_success_response_authorizes(self, peer: SessionPeer, conn, recorder) -> None:
        conn.on_open()
        conn.deliver(LOGIN, {"success": True})

        assert peer.authorized
        assert recorder.names() == ["open", "authorized"]

    def test_first_envelope_is_always_the_login_response(self, peer, conn, recorder) -> None:
        """An application-looking envelope before authorization is never a message."""
        conn.on_open()
        conn.deliver("job", {"success": True, "id": 1})

        assert peer.authorized
        assert "message" not in recorder.names()

    def test_messages_follow_authorization(self, peer: SessionPeer, conn, recorder) -> None:
        conn.on_open()
        conn.deliver(LOGIN, {"success": True})
        conn.deliver("job", {"id": 1})

        assert recorder.names() == ["open", "authorized", "message"]
        assert recorder.args("message") == [(Envelope("job", {"id": 1}),)]

    def test_late_login_envelope_ignored(self, peer: SessionPeer, conn, recorder) -> None:
        conn.on_open()
        conn.deliver(LOGIN, {"success": True})
        conn.deliver(LOGIN, {"success": False})

        assert peer.authorized
        assert recorder.names() == ["open", "authorized"]

    def test_rejection(self, peer: SessionPeer, conn, recorder) -> None:
        conn.on_open()
        conn.deliver(LOGIN, {"success": False, "reason": INVALID_CREDENTIALS})

        assert peer.state is PeerState.REJECTED
        assert recorder.args("rejected") == [(INVALID_CREDENTIALS,)]
        assert "authorized" not in recorder.names()
        assert conn.close_calls == 1

    def test_rejection_without_listener_raises(self, conn) -> None:
        peer = SessionPeer("example.org", 5050, "alice", "bad", connect=lambda host, port: conn)
        peer.connect()
        conn.on_open()

        with pytest.raises(AuthenticationFailure) as exc_info:
            conn.deliver(LOGIN, {"success": False, "reason": INVALID_CREDENTIALS})

        assert exc_info.value.reason == INVALID_CREDENTIALS
        assert peer.state is PeerState.REJECTED

    def test_nothing_processed_after_rejection(self, peer, conn, recorder) -> None:
        conn.on_open()
        conn.deliver(LOGIN, {"success": False, "reason": INVALID_CREDENTIALS})
        conn.deliver(LOGIN, {"success": True})
        conn.deliver("job", {})

        assert peer.state is PeerState.REJECTED
        assert recorder.names() == ["open", "rejected"]

    def test_malformed_frame_closes(self, peer, conn, recorder) -> None:
        conn.on_open()
        conn.on_message(b"{not json")

        assert conn.close_calls == 1
        assert not peer.authorized


class TestClose:
    def test_close_emitted_once(self, peer: SessionPeer, conn, recorder) -> None:
        conn.on_open()
        conn.deliver(LOGIN, {"success": True})

        conn.on_close()
        conn.on_close()

        assert peer.state is PeerState.CLOSED
        assert recorder.names().count("close") == 1

    def test_close_before_open(self, peer: SessionPeer, conn, recorder) -> None:
        conn.on_close()
        assert peer.state is PeerState.CLOSED
        assert recorder.names() == ["close"]

    def test_rejected_stays_terminal(self, peer: SessionPeer, conn, recorder) -> None:
        conn.on_open()
        conn.deliver(LOGIN, {"success": False, "reason": INVALID_CREDENTIALS})
        conn.on_close()

        assert peer.state is PeerState.REJECTED
        assert recorder.names() == ["open", "rejected", "close"]

    def test_close_closes_transport(self, peer: SessionPeer, conn) -> None:
        peer.close()
        assert conn.close_calls == 1


class TestSend:
    def test_send_when_open(self, peer: SessionPeer, conn) -> None:
        peer.send("job", {"id": 1})
        assert conn.sent == [Envelope("job", {"id": 1})]

    def test_send_dropped_when_not_open(self, peer: SessionPeer, conn) -> None:
        conn.open = False
        peer.send("job", {"id": 1})
        assert conn.frames == []

    def test_send_before_connect_is_dropped(self) -> None:
        SessionPeer("example.org", 5050, "alice", "s3cret").send("job", {})
