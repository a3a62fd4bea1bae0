import argparse, logging
from typing import List, Optional, Tuple

from common.messages import Envelope
from server.connection import ConnectionHandle
from server.host import SessionHost
from server.state import CredentialStore

HOST = "0.0.0.0"
PORT = 5050
HANDSHAKE_TIMEOUT = 10.0   # seconds an unauthenticated connection may stay open

logger = logging.getLogger("server")

def parse_user(spec: str) -> Tuple[str, str]:
    '''Split a NAME:SECRET command line value'''
    identity, sep, secret = spec.partition(":")
    if not sep or not identity:
        raise argparse.ArgumentTypeError(f"expected NAME:SECRET, got {spec!r}")
    return identity, secret

def build_host(users: List[Tuple[str, str]], handshake_timeout,
               credentials: Optional[CredentialStore] = None) -> SessionHost:
    ''' This function creates a host that logs every session event and echoes messages back '''
    host = SessionHost(credentials, handshake_timeout=handshake_timeout)
    for identity, secret in users:
        host.register_credential(identity, secret)

    host.on("successfulLogon", lambda identity: logger.info("Successful logon attempt from user %s", identity))
    host.on("failedLogon", lambda identity: logger.info("Failed logon attempt from user %s", identity))

    def on_connection(client: ConnectionHandle):
        logger.info("Client %s is connecting from %s", client.id, client.connection.address)

        def on_message(packet: Envelope):
            logger.info("Incoming message from client %s (%s): %s", client.id, client.identity, packet)
            client.send(packet.kind, packet.payload)   # echo

        client.on("message", on_message)
        client.on("close", lambda: logger.info("Client %s disconnected", client.id))

    host.on("connection", on_connection)
    return host

def main(argv=None):
    ap = argparse.ArgumentParser(description="Run a session server")
    ap.add_argument("--host", default=HOST, help="Address to listen on")
    ap.add_argument("--port", type=int, default=PORT, help="Port to listen on")
    ap.add_argument("--user", dest="users", action="append", type=parse_user, default=[],
                    metavar="NAME:SECRET", help="Register a login (repeatable)")
    ap.add_argument("--handshake-timeout", type=float, default=HANDSHAKE_TIMEOUT,
                    help="Seconds to wait for a login; 0 disables")
    ap.add_argument("--log-level", default="INFO", help="Logging level")
    args = ap.parse_args(argv)

    logging.basicConfig(level=args.log_level.upper(),
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    if not args.users:
        logger.warning("No users registered; every login will be rejected")

    host = build_host(args.users, args.handshake_timeout or None)
    host.listen(args.host, args.port)
    logger.info("Server listening on %s:%s", args.host, args.port)
    try:
        host.serve_forever()
    except KeyboardInterrupt:
        logger.info("Shutting down")
    finally:
        host.stop()

if __name__ == "__main__":
    main()
