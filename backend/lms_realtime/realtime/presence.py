"""Presence tracker: who is currently viewing a course.

The roster is never stored. It is recomputed from the course channel's
open members every time it is needed, so it cannot drift from the actual
connection set.
"""
import logging
from typing import Set

from .channels import CourseChannelManager
from .schemas import PresenceUpdate

logger = logging.getLogger(__name__)


class PresenceTracker:
    def __init__(self, channels: CourseChannelManager) -> None:
        self.channels = channels

    def current_users(self, course_id: int) -> Set[int]:
        """User ids of the open connections subscribed to *course_id*.

        Connections without a resolved user id are members of the channel
        but are not part of the roster.
        """
        return {
            conn.user_id
            for conn in self.channels.members(course_id)
            if conn.is_open and conn.user_id is not None
        }

    async def announce(self, course_id: int) -> Set[int]:
        """Broadcast the current roster to every member of the channel.

        If the broadcast itself evicts dead connections the roster has
        changed again, so it is recomputed and re-sent until a round
        evicts nobody.

        Returns:
            The roster that was last announced.
        """
        while True:
            users = self.current_users(course_id)
            update = PresenceUpdate(courseId=course_id, users=sorted(users))
            evicted = await self.channels.broadcast(course_id, update.model_dump())
            if not evicted:
                logger.debug(f"[Presence] Course {course_id} roster: {update.users}")
                return users
