"""Connection registry: accept, classify, dispatch and close connections.

The registry is the entry point for every transport event:

    accept(path, connection)      classify once, then subscribe or bind
    on_message(connection, data)  route inbound frames by intent
    on_close(connection)          undo whatever accept did (idempotent)

Unrecognized paths are either rejected with close code 1008 or, when
``reject_unknown_paths`` is off, left open but unclassified: such a
connection is tracked until it closes but never receives fan-out.
"""
import logging
import threading
from typing import Any, Dict, Optional

from .channels import CourseChannelManager
from .connection import (
    CLOSE_UNKNOWN_PATH,
    ChatSubscribe,
    Connection,
    ConnectionIntent,
    NotificationBind,
    PresenceSubscribe,
    classify_path,
)
from .errors import UnknownPathError
from .notifications import UserNotificationRouter
from .presence import PresenceTracker
from .relay import MessageRelay
from .schemas import ChatMessage

logger = logging.getLogger(__name__)


class ConnectionRegistry:
    """Tracks live connections and routes them to the right subsystem."""

    def __init__(
        self,
        channels: CourseChannelManager,
        notifications: UserNotificationRouter,
        presence: PresenceTracker,
        relay: MessageRelay,
        reject_unknown_paths: bool = True,
        user_id_param: str = "userId",
    ) -> None:
        self.channels = channels
        self.notifications = notifications
        self.presence = presence
        self.relay = relay
        self.reject_unknown_paths = reject_unknown_paths
        self.user_id_param = user_id_param

        # connection id -> Connection, for every accepted, not yet closed connection
        self._connections: Dict[str, Connection] = {}
        self._lock = threading.Lock()

    async def accept(self, path: str, connection: Connection) -> Optional[ConnectionIntent]:
        """Classify *connection* by *path* and register it.

        Args:
            path: Requested target, including any query string.
            connection: Freshly accepted connection.

        Returns:
            The connection's intent, or None if the path was not recognized
            (the connection is then closed or left unclassified, depending
            on ``reject_unknown_paths``).
        """
        connection.path = path
        try:
            intent = classify_path(path, self.user_id_param)
        except UnknownPathError as e:
            if self.reject_unknown_paths:
                logger.warning(f"[Registry] Rejecting connection {connection.id[:8]}: {e}")
                await connection.close(code=CLOSE_UNKNOWN_PATH, reason="unknown path")
                return None
            logger.warning(f"[Registry] Connection {connection.id[:8]} left unclassified: {e}")
            self._track(connection)
            return None

        connection.intent = intent
        self._track(connection)

        if isinstance(intent, (ChatSubscribe, PresenceSubscribe)):
            if self.channels.subscribe(intent.course_id, connection):
                await self.presence.announce(intent.course_id)
        elif isinstance(intent, NotificationBind):
            self.notifications.bind(intent.user_id, connection)

        logger.info(f"[Registry] Accepted {connection!r} on {path}")
        return intent

    async def on_message(self, connection: Connection, data: Any) -> Optional[ChatMessage]:
        """Handle one inbound frame.

        Only open chat connections accept inbound frames. Frames from a
        connection that was evicted or closed are dropped, as is anything
        received on a presence, notification or unclassified connection.

        Raises:
            MessageValidationError: From the relay, for a bad chat frame.
            PersistenceError: From the relay, when the store fails.
        """
        if not connection.is_open:
            logger.debug(f"[Registry] Dropping frame from closed {connection!r}")
            return None

        intent = connection.intent
        if isinstance(intent, ChatSubscribe):
            return await self.relay.handle(intent.course_id, connection, data)

        logger.debug(f"[Registry] Ignoring inbound frame on {connection!r}")
        return None

    async def on_close(self, connection: Connection) -> None:
        """Remove *connection* from every membership structure.

        Safe to call more than once for the same connection.
        """
        connection.mark_closed()
        with self._lock:
            tracked = self._connections.pop(connection.id, None)

        intent = connection.intent
        if isinstance(intent, (ChatSubscribe, PresenceSubscribe)):
            if self.channels.unsubscribe(intent.course_id, connection):
                await self.presence.announce(intent.course_id)
        elif isinstance(intent, NotificationBind):
            self.notifications.unbind(intent.user_id, connection)

        if tracked is not None:
            logger.info(f"[Registry] Closed {connection!r}")

    def _track(self, connection: Connection) -> None:
        with self._lock:
            self._connections[connection.id] = connection

    def get(self, connection_id: str) -> Optional[Connection]:
        with self._lock:
            return self._connections.get(connection_id)

    def connection_count(self) -> int:
        with self._lock:
            return len(self._connections)
