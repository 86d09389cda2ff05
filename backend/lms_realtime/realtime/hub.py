"""Process-wide wiring of the realtime components.

All WebSocket handlers and any HTTP handler that pushes notifications
share one RealtimeHub, so membership state is consistent across them.

Usage:
    from lms_realtime.realtime.hub import get_hub

    # e.g. from a grading endpoint, after the grade is saved
    await get_hub().notifications.notify(student_id, {"type": "graded", ...})
"""
import logging
from typing import Optional

from lms_realtime.config import AppConfig, get_config
from lms_realtime.storage import ChatMessageStore, build_store

from .channels import CourseChannelManager
from .identity import QueryParamSessionResolver, SessionResolver
from .notifications import UserNotificationRouter
from .presence import PresenceTracker
from .registry import ConnectionRegistry
from .relay import MessageRelay

logger = logging.getLogger(__name__)


class RealtimeHub:
    """Owns one instance of every realtime component."""

    def __init__(
        self,
        config: AppConfig,
        store: Optional[ChatMessageStore] = None,
        session_resolver: Optional[SessionResolver] = None,
    ) -> None:
        realtime = config.realtime

        self.config = config
        self.store = store if store is not None else build_store(config.storage)
        self.session_resolver = session_resolver or QueryParamSessionResolver(realtime.user_id_param)

        self.channels = CourseChannelManager()
        self.notifications = UserNotificationRouter()
        self.presence = PresenceTracker(self.channels)
        self.relay = MessageRelay(
            self.channels,
            self.store,
            presence=self.presence,
            echo_to_sender=realtime.echo_chat_to_sender,
            max_body_length=realtime.max_body_length,
        )
        self.registry = ConnectionRegistry(
            self.channels,
            self.notifications,
            self.presence,
            self.relay,
            reject_unknown_paths=realtime.reject_unknown_paths,
            user_id_param=realtime.user_id_param,
        )

    def close(self) -> None:
        self.store.close()


_hub: Optional[RealtimeHub] = None


def get_hub() -> RealtimeHub:
    """Get the global hub, building it from the current config on first use."""
    global _hub
    if _hub is None:
        _hub = RealtimeHub(get_config())
        logger.info(f"Realtime hub ready (storage={_hub.config.storage.backend})")
    return _hub


def set_hub(hub: RealtimeHub) -> None:
    """Set the global hub instance."""
    global _hub
    _hub = hub


def reset_hub() -> None:
    """Close and forget the global hub. Primarily used by tests."""
    global _hub
    if _hub is not None:
        _hub.close()
        _hub = None
