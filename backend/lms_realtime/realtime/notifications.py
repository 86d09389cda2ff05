"""User notification router: at most one live connection per user.

Direct notifications (e.g. "your submission was graded") are pushed to
whichever connection is currently bound to the user. Nothing is queued:
if the user has no live binding the notification is dropped, so callers
that need guaranteed delivery must persist the notification first.
"""
import logging
import threading
from typing import Any, Dict, Optional

from .connection import Connection
from .errors import DeliveryError

logger = logging.getLogger(__name__)


class UserNotificationRouter:
    """Maps user ids to their single active notification connection.

    This is the only component allowed to mutate the binding map.
    """

    def __init__(self) -> None:
        # user_id -> Connection
        self._bindings: Dict[int, Connection] = {}
        self._lock = threading.Lock()

    def bind(self, user_id: int, connection: Connection) -> Optional[Connection]:
        """Bind *connection* to *user_id*, superseding any previous binding.

        The superseded connection is not closed.

        Returns:
            The connection that was replaced, if any.
        """
        with self._lock:
            previous = self._bindings.get(user_id)
            self._bindings[user_id] = connection

        if previous is not None and previous is not connection:
            logger.info(
                f"[Notify] User {user_id} rebound: {previous.id[:8]} superseded by {connection.id[:8]}"
            )
            return previous
        logger.info(f"[Notify] User {user_id} bound to connection {connection.id[:8]}")
        return None

    def unbind(self, user_id: int, connection: Connection) -> bool:
        """Remove the binding only if it still refers to *connection*.

        A late close of a superseded connection must not erase the newer
        binding.

        Returns:
            True if the binding was removed.
        """
        with self._lock:
            if self._bindings.get(user_id) is not connection:
                return False
            del self._bindings[user_id]

        logger.info(f"[Notify] User {user_id} unbound from connection {connection.id[:8]}")
        return True

    def get_connection(self, user_id: int) -> Optional[Connection]:
        with self._lock:
            return self._bindings.get(user_id)

    def is_bound(self, user_id: int) -> bool:
        with self._lock:
            return user_id in self._bindings

    async def notify(self, user_id: int, payload: Any) -> bool:
        """Push *payload* to the user's bound connection, if any.

        Returns:
            True if the payload was sent, False if it was dropped.

        Raises:
            TypeError, ValueError: If *payload* is not JSON-serializable;
                the binding is kept.
        """
        connection = self.get_connection(user_id)
        if connection is None or not connection.is_open:
            logger.debug(f"[Notify] No live connection for user {user_id}; notification dropped")
            return False

        try:
            await connection.send(payload)
        except DeliveryError as e:
            logger.warning(f"[Notify] Delivery to user {user_id} failed: {e}")
            self.unbind(user_id, connection)
            return False
        return True
