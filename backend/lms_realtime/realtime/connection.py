"""Connection handle and connection-intent classification.

A Connection wraps one accepted WebSocket transport. The registry owns it
for its whole lifetime; the channel manager and the notification router
only ever hold references to it.

Classification happens exactly once, at accept time: the requested target
(path plus query string) becomes one of three intents, and every later
decision dispatches on the intent rather than re-reading the path.

    /ws/chat/{courseId}              -> ChatSubscribe(course_id)
    /ws/presence/{courseId}          -> PresenceSubscribe(course_id)
    /ws/notifications?userId={id}    -> NotificationBind(user_id)
"""
import json
import logging
import re
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Union
from urllib.parse import parse_qs, urlsplit

from .errors import DeliveryError, UnknownPathError

logger = logging.getLogger(__name__)

_CHAT_PATH = re.compile(r"^/ws/chat/(?P<course_id>\d+)/?$")
_PRESENCE_PATH = re.compile(r"^/ws/presence/(?P<course_id>\d+)/?$")
_NOTIFICATIONS_PATH = re.compile(r"^/ws/notifications/?$")

# 1008 = Policy Violation
CLOSE_UNKNOWN_PATH = 1008


class ConnectionState(str, Enum):
    """Lifecycle state of a connection.

    Attributes:
        OPEN: Accepted and eligible for fan-out.
        CLOSING: Close requested, transport not yet torn down.
        CLOSED: Transport gone; never sent to again.
    """
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


class IntentKind(str, Enum):
    CHAT = "chat"
    PRESENCE = "presence"
    NOTIFICATIONS = "notifications"


@dataclass(frozen=True)
class ChatSubscribe:
    course_id: int
    kind = IntentKind.CHAT


@dataclass(frozen=True)
class PresenceSubscribe:
    course_id: int
    kind = IntentKind.PRESENCE


@dataclass(frozen=True)
class NotificationBind:
    user_id: int
    kind = IntentKind.NOTIFICATIONS


ConnectionIntent = Union[ChatSubscribe, PresenceSubscribe, NotificationBind]


def classify_path(target: str, user_id_param: str = "userId") -> ConnectionIntent:
    """Turn a requested WebSocket target into a connection intent.

    Args:
        target: Request path, optionally followed by ``?query``.
        user_id_param: Query parameter carrying the user id for
            notification bindings.

    Returns:
        The intent for the target.

    Raises:
        UnknownPathError: If the target matches no known path family, or
            the notification target lacks an integer user id.
    """
    parts = urlsplit(target)
    path = parts.path

    match = _CHAT_PATH.match(path)
    if match:
        return ChatSubscribe(course_id=int(match.group("course_id")))

    match = _PRESENCE_PATH.match(path)
    if match:
        return PresenceSubscribe(course_id=int(match.group("course_id")))

    if _NOTIFICATIONS_PATH.match(path):
        values = parse_qs(parts.query).get(user_id_param, [])
        if not values or not values[0].isdigit():
            raise UnknownPathError(target, reason=f"missing or invalid {user_id_param}")
        return NotificationBind(user_id=int(values[0]))

    raise UnknownPathError(target)


class Connection:
    """An accepted bidirectional transport session.

    The transport is anything exposing ``async send_text(data)`` and
    ``async close(code, reason)``; in the running service it is a FastAPI
    WebSocket.

    Connections hash by identity, so they can live in sets and as
    dictionary keys regardless of their mutable attributes.
    """

    def __init__(
        self,
        transport: Any,
        path: str = "",
        user_id: Optional[int] = None,
    ) -> None:
        self.id = uuid.uuid4().hex
        self.transport = transport
        self.path = path
        self.user_id = user_id
        self.state = ConnectionState.OPEN
        self.intent: Optional[ConnectionIntent] = None
        # Set by the channel manager while the connection is subscribed
        self.course_id: Optional[int] = None

    def __repr__(self) -> str:
        return (
            f"<Connection {self.id[:8]} state={self.state.value} "
            f"user={self.user_id} intent={self.intent}>"
        )

    @property
    def is_open(self) -> bool:
        return self.state is ConnectionState.OPEN

    @property
    def kind(self) -> Optional[IntentKind]:
        return self.intent.kind if self.intent is not None else None

    async def send(self, payload: Any) -> None:
        """Send one JSON-serializable frame as text.

        Raises:
            DeliveryError: If the connection is not open or the transport
                fails. A transport failure also marks the connection closed.
            TypeError, ValueError: If *payload* is not JSON-serializable;
                the connection is left untouched.
        """
        if not self.is_open:
            raise DeliveryError(f"connection {self.id} is {self.state.value}", self)
        text = json.dumps(payload, separators=(",", ":"), ensure_ascii=False)
        try:
            await self.transport.send_text(text)
        except Exception as e:
            self.mark_closed()
            raise DeliveryError(f"send to connection {self.id} failed: {e}", self) from e

    async def close(self, code: int = 1000, reason: str = "") -> None:
        """Close the transport. Safe to call on an already-closed connection."""
        if self.state is not ConnectionState.OPEN:
            return
        self.state = ConnectionState.CLOSING
        try:
            await self.transport.close(code=code, reason=reason)
        except RuntimeError as e:
            # Transport already torn down underneath us
            logger.debug(f"Close on connection {self.id} ignored: {e}")
        finally:
            self.mark_closed()

    def mark_closed(self) -> None:
        self.state = ConnectionState.CLOSED
