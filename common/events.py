import logging
from enum import Enum
from typing import Any, Callable, ClassVar, Dict, Optional, Type

from common.errors import UnknownEventError

logger = logging.getLogger(__name__)

Handler = Callable[..., Any]

# Each role emits a closed set of event kinds and keeps one handler slot per kind.

class PeerEvent(str, Enum):   # emitted by SessionPeer (client role)
    OPEN = "open"
    AUTHORIZED = "authorized"
    REJECTED = "rejected"
    MESSAGE = "message"
    CLOSE = "close"


class ConnectionEvent(str, Enum):   # emitted by a server-side ConnectionHandle
    MESSAGE = "message"
    CLOSE = "close"


class HostEvent(str, Enum):   # emitted by SessionHost
    CONNECTION = "connection"
    SUCCESSFUL_LOGON = "successfulLogon"
    FAILED_LOGON = "failedLogon"
    CLOSE = "close"


class EventHub:
    # Single-slot event registry: registering again for a kind replaces the old handler.
    # Subclasses set EVENTS to the enum they emit and may map extra names in ALIASES.
    EVENTS: ClassVar[Type[Enum]]
    ALIASES: ClassVar[Dict[str, Enum]] = {}

    def __init__(self):
        self._handlers: Dict[Enum, Handler] = {}   # event kind -> handler

    def _resolve(self, kind: Any) -> Enum:
        if isinstance(kind, str) and kind in self.ALIASES:
            return self.ALIASES[kind]
        try:
            return self.EVENTS(kind)
        except ValueError:
            raise UnknownEventError(kind, type(self).__name__) from None

    def on(self, kind: Any, handler: Handler) -> None:
        '''
        This function registers the handler for an event, replacing any previous one.
        Inputs:
            - kind: the enum member or its string value, e.g. "authorized"
            - handler: callable invoked with the event's arguments
        Raises UnknownEventError if this role never emits kind.
        '''
        self._handlers[self._resolve(kind)] = handler

    def handler(self, kind: Any) -> Optional[Handler]:
        ''' This function retrieves the handler currently registered for kind, if any'''
        return self._handlers.get(self._resolve(kind))

    def _emit(self, kind: Enum, *args: Any) -> None:
        handler = self._handlers.get(kind)
        if handler is None:
            logger.debug("%s: no handler for %s", type(self).__name__, kind.value)
            return
        handler(*args)   # handler exceptions reach the caller


# Event catalogue per role, keyed by class name
EVENTS: Dict[str, list] = {
    "SessionHost": [e.value for e in HostEvent],
    "ConnectionHandle": [e.value for e in ConnectionEvent],
    "SessionPeer": [e.value for e in PeerEvent],
}
