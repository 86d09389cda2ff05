"""In-memory chat message store.

Default backend for development and tests. Messages live for the lifetime
of the process; ids start at 1 and increase monotonically across courses.
"""
import itertools
import threading
from datetime import datetime, timezone
from typing import Dict, List, Optional

from lms_realtime.realtime.schemas import ChatMessage, ChatMessageCreate

from .base import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, ChatMessageStore


class InMemoryChatMessageStore(ChatMessageStore):
    """Thread-safe, append-only message history per course."""

    def __init__(self) -> None:
        self._ids = itertools.count(1)
        self._messages: Dict[int, List[ChatMessage]] = {}
        self._lock = threading.Lock()

    async def create_chat_message(self, message: ChatMessageCreate) -> ChatMessage:
        with self._lock:
            saved = ChatMessage(
                id=next(self._ids),
                courseId=message.courseId,
                authorUserId=message.authorUserId,
                body=message.body,
                timestamp=datetime.now(timezone.utc),
            )
            self._messages.setdefault(message.courseId, []).append(saved)
        return saved

    async def list_chat_messages(
        self,
        course_id: int,
        before_id: Optional[int] = None,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> List[ChatMessage]:
        limit = min(limit, MAX_PAGE_SIZE)
        with self._lock:
            messages = list(self._messages.get(course_id, []))

        if before_id is not None:
            messages = [msg for msg in messages if msg.id < before_id]

        return messages[-limit:] if messages else []

    def message_count(self, course_id: int) -> int:
        with self._lock:
            return len(self._messages.get(course_id, []))
