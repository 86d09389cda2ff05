"""Message relay: inbound chat frame -> persisted, broadcast ChatMessage.

Each message moves through four stages:

    received -> validated -> persisted -> broadcast

A message is broadcast only after the store has accepted it; if
persistence fails nothing is sent to the channel and the error surfaces
to the caller. Validation and persistence errors never close the
sender's connection.
"""
import json
import logging
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

from pydantic import ValidationError as PydanticValidationError

from .channels import CourseChannelManager
from .connection import Connection, IntentKind
from .errors import DeliveryError, MessageValidationError, PersistenceError
from .schemas import ChatMessage, ChatMessageCreate, ChatMessageInput

if TYPE_CHECKING:
    from lms_realtime.storage.base import ChatMessageStore

    from .presence import PresenceTracker

logger = logging.getLogger(__name__)


class RelayStage(str, Enum):
    RECEIVED = "received"
    VALIDATED = "validated"
    PERSISTED = "persisted"
    BROADCAST = "broadcast"


class MessageRelay:
    """Validates, persists and fans out chat messages within a course.

    Attributes:
        channels: Course channel manager used for fan-out.
        store: Persistence collaborator assigning ids and timestamps.
        presence: Optional tracker re-announced when fan-out evicts members.
        echo_to_sender: Whether the sender also receives its own message.
        max_body_length: Longest accepted message body.
    """

    def __init__(
        self,
        channels: CourseChannelManager,
        store: "ChatMessageStore",
        presence: Optional["PresenceTracker"] = None,
        echo_to_sender: bool = False,
        max_body_length: int = 4000,
    ) -> None:
        self.channels = channels
        self.store = store
        self.presence = presence
        self.echo_to_sender = echo_to_sender
        self.max_body_length = max_body_length

    def parse(self, course_id: int, sender: Connection, raw_payload: Any) -> ChatMessageCreate:
        """Validate an inbound frame into a message ready to persist.

        Args:
            course_id: Course of the channel the frame arrived on.
            sender: Originating connection; its user id is the author.
            raw_payload: JSON text or UTF-8 bytes, or an already-decoded object.

        Raises:
            MessageValidationError: If the frame is malformed, the body is
                empty or too long, or the claimed course/author disagrees
                with the connection.
        """
        if isinstance(raw_payload, (str, bytes)):
            try:
                raw_payload = json.loads(raw_payload)
            except json.JSONDecodeError as e:
                raise MessageValidationError(f"Invalid message format: {e.msg}") from e
            except UnicodeDecodeError as e:
                raise MessageValidationError("Invalid message format: frame is not UTF-8") from e

        if not isinstance(raw_payload, dict):
            raise MessageValidationError("Invalid message format: expected a JSON object")

        try:
            data = ChatMessageInput.model_validate(raw_payload)
        except PydanticValidationError as e:
            fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
            raise MessageValidationError(f"Invalid message format: {fields}") from e

        body = data.body.strip()
        if not body:
            raise MessageValidationError("Invalid message format: body is required")
        if len(body) > self.max_body_length:
            raise MessageValidationError(
                f"Message body exceeds {self.max_body_length} characters"
            )

        if data.courseId is not None and data.courseId != course_id:
            raise MessageValidationError(
                f"Message for course {data.courseId} sent on course {course_id} channel"
            )

        author = sender.user_id
        if author is None:
            author = data.authorUserId
        elif data.authorUserId is not None and data.authorUserId != author:
            raise MessageValidationError("authorUserId does not match the connected user")
        if author is None:
            raise MessageValidationError("Invalid message format: author is unknown")

        return ChatMessageCreate(courseId=course_id, authorUserId=author, body=body)

    async def handle(self, course_id: int, sender: Connection, raw_payload: Any) -> ChatMessage:
        """Validate, persist and broadcast one chat message.

        Returns:
            The persisted message as broadcast to the channel.

        Raises:
            MessageValidationError: Frame rejected; nothing persisted.
            PersistenceError: Store failed; nothing broadcast.
            DeliveryError: The sender was already closed or evicted; nothing
                persisted.
        """
        if not sender.is_open:
            raise DeliveryError(f"connection {sender.id} is {sender.state.value}", sender)
        logger.debug(f"[Relay] {RelayStage.RECEIVED.value} on course {course_id} from {sender.id[:8]}")
        create = self.parse(course_id, sender, raw_payload)
        logger.debug(f"[Relay] {RelayStage.VALIDATED.value}: author={create.authorUserId}")

        try:
            message = await self.store.create_chat_message(create)
        except PersistenceError:
            logger.error(f"[Relay] Persistence failed for course {course_id}; message not broadcast")
            raise
        except Exception as e:
            logger.error(f"[Relay] Store raised for course {course_id}: {e}")
            raise PersistenceError(f"could not store chat message: {e}") from e
        logger.debug(f"[Relay] {RelayStage.PERSISTED.value}: id={message.id}")

        exclude = None if self.echo_to_sender else sender
        evicted = await self.channels.broadcast(
            course_id, message.to_frame(), exclude=exclude, kind=IntentKind.CHAT
        )
        logger.info(
            f"[Relay] {RelayStage.BROADCAST.value} message {message.id} to course {course_id} "
            f"({self.channels.get_channel_size(course_id)} members)"
        )

        if evicted and self.presence is not None:
            await self.presence.announce(course_id)
        return message
