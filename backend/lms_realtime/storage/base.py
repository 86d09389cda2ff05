"""ChatMessageStore abstract interface.

The realtime core never talks to a database directly. It persists chat
messages through this interface, which assigns each message its durable
id and timestamp.

Usage:
    from lms_realtime.storage import build_store

    store = build_store(config.storage)
    saved = await store.create_chat_message(create)
    recent = await store.list_chat_messages(course_id=7, limit=20)
"""
from abc import ABC, abstractmethod
from typing import List, Optional

from lms_realtime.realtime.schemas import ChatMessage, ChatMessageCreate

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 100


class ChatMessageStore(ABC):
    """Abstract base class for chat message persistence.

    Implementations must raise PersistenceError (and nothing else) when
    a write or read fails.
    """

    @abstractmethod
    async def create_chat_message(self, message: ChatMessageCreate) -> ChatMessage:
        """Durably store *message* and return it with id and timestamp.

        Raises:
            PersistenceError: If the write did not happen.
        """

    @abstractmethod
    async def list_chat_messages(
        self,
        course_id: int,
        before_id: Optional[int] = None,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> List[ChatMessage]:
        """Return up to *limit* messages for a course, oldest first.

        Args:
            course_id: Course to read.
            before_id: Only messages with an id lower than this cursor.
                If None, the most recent messages are returned.
            limit: Maximum number of messages (capped at MAX_PAGE_SIZE).
        """

    def close(self) -> None:
        """Release any resources held by the store."""
