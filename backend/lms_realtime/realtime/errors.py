"""Error taxonomy for the realtime layer.

Sender-facing errors (MessageValidationError, PersistenceError) propagate
to the call that triggered them and are reported back to the originating
connection only. DeliveryError never escapes a broadcast; the channel
manager evicts the failed connection instead. UnknownPathError is raised
at accept time for targets the registry cannot classify.
"""
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .connection import Connection


class RealtimeError(Exception):
    """Base class for all realtime-layer errors."""


class MessageValidationError(RealtimeError):
    """Inbound chat payload is malformed or has an empty body."""


class PersistenceError(RealtimeError):
    """The chat message store failed to write or read."""


class DeliveryError(RealtimeError):
    """Sending a frame to a single connection failed."""

    def __init__(self, message: str, connection: Optional["Connection"] = None) -> None:
        super().__init__(message)
        self.connection = connection


class UnknownPathError(RealtimeError):
    """A connection asked for a path that maps to no subscription."""

    def __init__(self, path: str, reason: str = "unrecognized path") -> None:
        super().__init__(f"{reason}: {path}")
        self.path = path
