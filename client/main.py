"""
Main entry point for the session client.
Connect and log in, then send each line typed on stdin as an application message.
"""
import argparse
import logging
import sys
import threading

from .net import SessionPeer

logger = logging.getLogger("client")


def main(argv=None) -> int:
    """
    Start the session client.

    Step 1: Connect to the server; the login is sent as soon as the connection opens
    Step 2: Once authorized, forward stdin lines until EOF
    Step 3: Close and report how the session ended
    """
    # Parse command line arguments (host, port and credentials)
    ap = argparse.ArgumentParser(description="Connect to a session server")
    ap.add_argument("--host", default="127.0.0.1", help="Server host address")
    ap.add_argument("--port", type=int, default=5050, help="Server port")
    ap.add_argument("--user", required=True, help="Identity to log in with")
    ap.add_argument("--secret", required=True, help="Secret to log in with")
    ap.add_argument("--kind", default="chat", help="Envelope kind for stdin lines")
    ap.add_argument("--log-level", default="INFO", help="Logging level")
    args = ap.parse_args(argv)

    logging.basicConfig(level=args.log_level.upper(),
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    authorized = threading.Event()
    finished = threading.Event()
    outcome = {"rejected": None}

    client = SessionPeer(args.host, args.port, args.user, args.secret)
    client.on("open", lambda: logger.info("Connection opened!"))
    client.on("message", lambda packet: logger.info("Incoming message! %s", packet))

    def on_authorized():
        logger.info("Connection authorized!")
        authorized.set()

    def on_rejected(reason):
        outcome["rejected"] = reason
        finished.set()

    def on_close():
        logger.info("Connection closed!")
        finished.set()

    client.on("authorized", on_authorized)
    client.on("rejected", on_rejected)
    client.on("close", on_close)

    try:
        client.connect()
    except OSError as e:
        logger.error("Could not connect to %s:%s: %s", args.host, args.port, e)
        return 1

    # Step 2: wait until the handshake settles one way or the other
    while not (authorized.is_set() or finished.is_set()):
        authorized.wait(0.1)

    if authorized.is_set() and not finished.is_set():
        try:
            for line in sys.stdin:
                if finished.is_set():
                    break
                client.send(args.kind, {"text": line.rstrip("\n")})
        except KeyboardInterrupt:
            pass
        client.close()

    finished.wait(5)
    if outcome["rejected"] is not None:
        logger.error("Failed to log in: %s", outcome["rejected"])
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
