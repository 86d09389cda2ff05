"""Course channel manager: connection sets per course and fan-out.

One channel exists per course id while at least one connection is
subscribed to it; the entry is dropped as soon as the set becomes empty,
so channels never accumulate for courses nobody is viewing.

Concurrency:
    Membership changes and lookups are synchronous and guarded by a single
    re-entrant lock that is never held across an await. Each channel also
    owns an asyncio.Lock that serializes its broadcasts, which gives FIFO
    delivery per channel: two broadcasts to the same course reach any one
    connection in the order they were issued. Sends within one broadcast
    run concurrently with asyncio.gather().

Delivery:
    Best-effort. A failed send marks that connection closed and evicts it
    from the channel; the remaining sends are unaffected and nothing is
    raised to the caller.
"""
import asyncio
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from .connection import Connection, IntentKind
from .errors import DeliveryError

logger = logging.getLogger(__name__)


@dataclass
class CourseChannel:
    """Connections currently subscribed to one course's stream."""
    course_id: int
    members: Set[Connection] = field(default_factory=set)
    send_lock: asyncio.Lock = field(default_factory=asyncio.Lock)


class CourseChannelManager:
    """Groups connections by course id and fans payloads out to them.

    This is the only component allowed to mutate course membership.
    """

    def __init__(self) -> None:
        # course_id -> CourseChannel
        self._channels: Dict[int, CourseChannel] = {}
        self._lock = threading.RLock()

    def subscribe(self, course_id: int, connection: Connection) -> bool:
        """Add *connection* to the course channel, creating it if absent.

        Idempotent per connection.

        Returns:
            True if membership changed, False if it was already subscribed.

        Raises:
            ValueError: If the connection is subscribed to another course.
        """
        with self._lock:
            if connection.course_id is not None and connection.course_id != course_id:
                raise ValueError(
                    f"connection {connection.id} already subscribed to course {connection.course_id}"
                )
            channel = self._channels.get(course_id)
            if channel is None:
                channel = self._channels[course_id] = CourseChannel(course_id)
                logger.debug(f"[Channels] Created channel for course {course_id}")
            if connection in channel.members:
                return False
            channel.members.add(connection)
            connection.course_id = course_id
            size = len(channel.members)

        logger.info(f"[Channels] Connection {connection.id[:8]} joined course {course_id} ({size} members)")
        return True

    def unsubscribe(self, course_id: int, connection: Connection) -> bool:
        """Remove *connection* from the course channel.

        Removing an absent connection is a no-op. The channel entry is
        deleted once its last member leaves.

        Returns:
            True if membership changed.
        """
        with self._lock:
            channel = self._channels.get(course_id)
            if channel is None or connection not in channel.members:
                return False
            channel.members.discard(connection)
            if connection.course_id == course_id:
                connection.course_id = None
            if not channel.members:
                del self._channels[course_id]
                logger.debug(f"[Channels] Dropped empty channel for course {course_id}")
            size = len(channel.members)

        logger.info(f"[Channels] Connection {connection.id[:8]} left course {course_id} ({size} members)")
        return True

    def members(self, course_id: int) -> List[Connection]:
        """Snapshot of the connections subscribed to a course."""
        with self._lock:
            channel = self._channels.get(course_id)
            return list(channel.members) if channel else []

    def has_channel(self, course_id: int) -> bool:
        with self._lock:
            return course_id in self._channels

    def course_ids(self) -> List[int]:
        with self._lock:
            return list(self._channels)

    def get_channel_size(self, course_id: int) -> int:
        with self._lock:
            channel = self._channels.get(course_id)
            return len(channel.members) if channel else 0

    async def broadcast(
        self,
        course_id: int,
        payload: Any,
        exclude: Optional[Connection] = None,
        kind: Optional[IntentKind] = None,
    ) -> List[Connection]:
        """Send *payload* to every open member of a course channel.

        Args:
            course_id: Channel to broadcast to.
            payload: JSON-serializable frame.
            exclude: Connection that must not receive the payload.
            kind: If given, only members whose intent is of this kind.

        Returns:
            Connections evicted because their send failed.
        """
        with self._lock:
            channel = self._channels.get(course_id)
            if channel is None:
                return []
            targets = [
                conn for conn in channel.members
                if conn is not exclude and (kind is None or conn.kind is kind)
            ]
            send_lock = channel.send_lock

        if not targets:
            return []

        async with send_lock:
            # A target may have closed while we waited for the previous broadcast
            targets = [conn for conn in targets if conn.is_open]
            results = await asyncio.gather(
                *[conn.send(payload) for conn in targets],
                return_exceptions=True,
            )

        failed = []
        for conn, result in zip(targets, results):
            if isinstance(result, DeliveryError):
                logger.debug(f"[Channels] {result}")
                failed.append(conn)
            elif isinstance(result, BaseException):
                raise result

        self._evict(course_id, failed)
        return failed

    def _evict(self, course_id: int, failed: List[Connection]) -> None:
        for conn in failed:
            conn.mark_closed()
            if self.unsubscribe(course_id, conn):
                logger.warning(f"[Channels] Evicted dead connection {conn.id[:8]} from course {course_id}")
