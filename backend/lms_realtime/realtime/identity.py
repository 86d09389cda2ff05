"""Session/identity adapters.

Authentication lives outside the realtime core. At accept time the core
only needs to know which user a connection belongs to; a SessionResolver
answers that from the handshake request.
"""
from abc import ABC, abstractmethod
from typing import Any, Optional


class SessionResolver(ABC):
    """Resolves the authenticated user id for an incoming WebSocket."""

    @abstractmethod
    def resolve_user_id(self, websocket: Any) -> Optional[int]:
        """Return the user id for *websocket*, or None if anonymous."""


class QueryParamSessionResolver(SessionResolver):
    """Reads the user id from a query parameter (``?userId=42``).

    Only suitable behind a gateway that has already authenticated the
    request and set the parameter itself.
    """

    def __init__(self, param: str = "userId") -> None:
        self.param = param

    def resolve_user_id(self, websocket: Any) -> Optional[int]:
        value = websocket.query_params.get(self.param)
        if value is None or not value.isdigit():
            return None
        return int(value)
