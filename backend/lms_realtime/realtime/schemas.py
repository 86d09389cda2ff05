"""Pydantic schemas for realtime frames and chat messages.

These schemas are used by:
    - MessageRelay: parse inbound chat frames, build outbound ones
    - ChatMessageStore implementations: persist and return messages
    - PresenceTracker: presence roster frames
    - router: HTTP presence and history responses
"""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ChatMessageInput(BaseModel):
    """Inbound chat frame as sent by a client.

    The author and course normally come from the connection itself; the
    optional fields are cross-checked against it by the relay.

    Attributes:
        body: Message text.
        courseId: Course the client believes it is posting to.
        authorUserId: Author the client claims to be.
    """
    model_config = ConfigDict(extra="ignore")

    body: str = Field(..., description="Message text")
    courseId: Optional[int] = Field(None, description="Target course id")
    authorUserId: Optional[int] = Field(None, description="Claimed author user id")


class ChatMessageCreate(BaseModel):
    """A validated chat message, ready to hand to the store."""
    courseId: int = Field(..., description="Course the message belongs to")
    authorUserId: int = Field(..., description="Author user id")
    body: str = Field(..., min_length=1, description="Message text")


class ChatMessage(BaseModel):
    """A persisted, immutable chat message.

    Attributes:
        id: Durable identifier assigned by the store.
        courseId: Course the message belongs to.
        authorUserId: Author user id.
        body: Message text.
        timestamp: Creation time assigned by the store (UTC).
    """
    model_config = ConfigDict(frozen=True)

    id: int = Field(..., description="Durable message id")
    courseId: int = Field(..., description="Course the message belongs to")
    authorUserId: int = Field(..., description="Author user id")
    body: str = Field(..., description="Message text")
    timestamp: datetime = Field(..., description="Creation time (UTC)")

    def to_frame(self) -> dict:
        """Outbound WebSocket frame for this message."""
        return {"type": "message", **self.model_dump(mode="json")}


class PresenceUpdate(BaseModel):
    """Roster of users currently connected to a course channel."""
    type: str = "presence"
    courseId: int
    users: List[int] = Field(default_factory=list)


class ChatHistoryResponse(BaseModel):
    messages: List[ChatMessage]
    hasMore: bool = False


def error_frame(error: Exception) -> dict:
    """Frame reporting a sender-facing error back to the originating connection."""
    return {"type": "error", "error": str(error)}
