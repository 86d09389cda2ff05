"""Realtime router providing WebSocket and HTTP endpoints.

This module provides:
    - WebSocket /ws/chat/{course_id}: Course chat and presence roster
    - WebSocket /ws/presence/{course_id}: Presence roster only
    - WebSocket /ws/notifications?userId={id}: Direct notifications
    - GET /courses/{course_id}/presence: Current roster
    - GET /courses/{course_id}/chat: Paginated chat history

All WebSocket paths share one endpoint; the ConnectionRegistry decides
what a connection is from its path.

Protocol Message Types (server -> client):
    - message: A persisted chat message
    - presence: Roster of user ids connected to the course
    - error: A chat frame from this client was rejected
    - anything else: Notification payloads, passed through unchanged
"""
import logging
from typing import Optional

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse

from lms_realtime.storage import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE

from .connection import Connection
from .errors import DeliveryError, MessageValidationError, PersistenceError
from .hub import get_hub
from .schemas import ChatHistoryResponse, PresenceUpdate, error_frame

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/courses/{course_id}/presence", response_model=PresenceUpdate)
async def get_course_presence(course_id: int) -> PresenceUpdate:
    """Get the user ids currently connected to a course channel."""
    users = get_hub().presence.current_users(course_id)
    return PresenceUpdate(courseId=course_id, users=sorted(users))


@router.get("/courses/{course_id}/chat")
async def get_chat_history(
    course_id: int,
    before: Optional[int] = Query(None, description="Message id cursor (get messages before this id)"),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE, description="Number of messages to return"),
) -> JSONResponse:
    """Get paginated chat history for a course.

    Clients fetch older messages by passing the id of the oldest message
    they currently have as ``before``.

    Example:
        GET /courses/7/chat?limit=50
        GET /courses/7/chat?before=120&limit=50
    """
    store = get_hub().store
    try:
        messages = await store.list_chat_messages(course_id, before, limit)
        has_more = False
        if messages:
            older = await store.list_chat_messages(course_id, messages[0].id, 1)
            has_more = len(older) > 0
    except PersistenceError as e:
        logger.error(f"[HTTP] History for course {course_id} unavailable: {e}")
        return JSONResponse({"error": str(e)}, status_code=503)

    response = ChatHistoryResponse(messages=messages, hasMore=has_more)
    return JSONResponse(response.model_dump(mode="json"))


@router.websocket("/ws/{target:path}")
async def websocket_endpoint(websocket: WebSocket, target: str) -> None:
    """WebSocket endpoint for every realtime path family.

    Protocol Flow:
        1. Client connects → connection accepted, user id resolved from
           the session, path classified by the registry
           → unknown path: closed with 1008 (or left idle, if configured)
        2. Chat/presence clients → everyone in the course receives
           {type: "presence", courseId, users: [...]}
        3. Chat client sends {body} → persisted, then broadcast to the
           other chat clients as {type: "message", ...fullMessage}
           → bad frame or store failure: {type: "error", error} to sender only
        4. On disconnect → membership removed, roster re-announced
    """
    hub = get_hub()
    path = websocket.url.path
    if websocket.url.query:
        path = f"{path}?{websocket.url.query}"

    await websocket.accept()
    connection = Connection(websocket, path=path, user_id=hub.session_resolver.resolve_user_id(websocket))
    logger.info(f"[WS] New connection {connection.id[:8]} to {path} (user={connection.user_id})")

    try:
        await hub.registry.accept(path, connection)
        if not connection.is_open:
            return

        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000), message.get("reason"))
            data = message.get("text")
            if data is None:
                data = message.get("bytes")
            try:
                await hub.registry.on_message(connection, data)
            except (MessageValidationError, PersistenceError) as e:
                logger.info(f"[WS] Rejected frame from {connection.id[:8]}: {e}")
                await connection.send(error_frame(e))
            if not connection.is_open:
                # Evicted by a failed send during fan-out
                break

    except (WebSocketDisconnect, DeliveryError):
        logger.info(f"[WS] Connection {connection.id[:8]} disconnected")
    finally:
        await hub.registry.on_close(connection)
