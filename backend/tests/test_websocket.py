"""End-to-end tests for the realtime WebSocket and HTTP endpoints.

Every chat/presence connection receives a presence roster whenever the
course membership changes, so the helpers below drain those frames
before asserting on chat traffic.
"""
import asyncio

import pytest
from fastapi import WebSocketDisconnect
from fastapi.testclient import TestClient

from lms_realtime.config import AppConfig, RealtimeConfig
from lms_realtime.main import app
from lms_realtime.realtime.hub import RealtimeHub, get_hub, set_hub
from lms_realtime.storage import InMemoryChatMessageStore


client = TestClient(app)


def receive_presence(ws, users):
    """Helper to receive and validate a presence roster."""
    frame = ws.receive_json()
    assert frame["type"] == "presence"
    assert frame["users"] == users
    return frame


def test_health():
    assert client.get("/health").json() == {"status": "ok"}


def test_chat_between_two_users_without_echo():
    course_id = 10

    with client.websocket_connect(f"/ws/chat/{course_id}?userId=1") as ws_a:
        receive_presence(ws_a, [1])

        with client.websocket_connect(f"/ws/chat/{course_id}?userId=2") as ws_b:
            receive_presence(ws_a, [1, 2])
            receive_presence(ws_b, [1, 2])

            ws_a.send_json({"body": "hi"})

            data = ws_b.receive_json()
            assert data["type"] == "message"
            assert data["body"] == "hi"
            assert data["courseId"] == course_id
            assert data["authorUserId"] == 1
            assert "id" in data
            assert "timestamp" in data

            # B replies; A gets it, so A's next frame proves A saw no echo of "hi"
            ws_b.send_json({"body": "hello back"})
            reply = ws_a.receive_json()
            assert reply["body"] == "hello back"
            assert reply["authorUserId"] == 2

        # B left: A gets the new roster
        receive_presence(ws_a, [1])

    assert get_hub().store.message_count(course_id) == 2
    assert not get_hub().channels.has_channel(course_id)


def test_chat_courses_are_isolated():
    with client.websocket_connect("/ws/chat/1?userId=1") as ws1, \
         client.websocket_connect("/ws/chat/2?userId=2") as ws2:
        receive_presence(ws1, [1])
        receive_presence(ws2, [2])

        ws1.send_json({"body": "course one only"})
        ws2.send_json({"body": "course two only"})

        # Neither receives the other's message; an error frame proves the queue is empty
        ws1.send_json({"body": ""})
        assert ws1.receive_json()["type"] == "error"
        ws2.send_json({"body": ""})
        assert ws2.receive_json()["type"] == "error"


def test_invalid_chat_frame_reports_error_to_sender_only():
    with client.websocket_connect("/ws/chat/3?userId=1") as ws_a:
        receive_presence(ws_a, [1])
        with client.websocket_connect("/ws/chat/3?userId=2") as ws_b:
            receive_presence(ws_a, [1, 2])
            receive_presence(ws_b, [1, 2])

            ws_a.send_text("definitely not json")
            error = ws_a.receive_json()
            assert error["type"] == "error"
            assert "Invalid message format" in error["error"]

            ws_a.send_json({"body": "   "})
            assert ws_a.receive_json()["type"] == "error"

            # Connection still usable; B's first chat frame is this one
            ws_a.send_json({"body": "valid"})
            assert ws_b.receive_json()["body"] == "valid"


def test_persistence_failure_reported_to_sender():
    class BrokenStore(InMemoryChatMessageStore):
        async def create_chat_message(self, message):
            raise OSError("disk unavailable")

    set_hub(RealtimeHub(AppConfig(), store=BrokenStore()))

    with client.websocket_connect("/ws/chat/4?userId=1") as ws_a:
        receive_presence(ws_a, [1])
        with client.websocket_connect("/ws/chat/4?userId=2") as ws_b:
            receive_presence(ws_a, [1, 2])
            receive_presence(ws_b, [1, 2])

            ws_a.send_json({"body": "lost"})
            error = ws_a.receive_json()
            assert error["type"] == "error"
            assert "could not store" in error["error"]

            # Nothing was broadcast: B's next frame is its own error
            ws_b.send_json({"body": ""})
            assert ws_b.receive_json()["type"] == "error"

        receive_presence(ws_a, [1])


def test_echo_to_sender_when_configured():
    config = AppConfig(realtime=RealtimeConfig(echo_chat_to_sender=True))
    set_hub(RealtimeHub(config, store=InMemoryChatMessageStore()))

    with client.websocket_connect("/ws/chat/5?userId=1") as ws_a:
        receive_presence(ws_a, [1])
        ws_a.send_json({"body": "me too"})
        echoed = ws_a.receive_json()
        assert echoed["type"] == "message"
        assert echoed["body"] == "me too"


def test_presence_only_connection():
    with client.websocket_connect("/ws/presence/6?userId=9") as watcher:
        receive_presence(watcher, [9])

        with client.websocket_connect("/ws/chat/6?userId=1") as chatter:
            receive_presence(watcher, [1, 9])
            receive_presence(chatter, [1, 9])

            assert client.get("/courses/6/presence").json() == {
                "type": "presence", "courseId": 6, "users": [1, 9],
            }

            chatter.send_json({"body": "anyone there?"})
            chatter.send_json({"body": ""})
            assert chatter.receive_json()["type"] == "error"

        # Watcher never saw the chat message, only rosters
        receive_presence(watcher, [9])


def test_presence_roster_after_close():
    with client.websocket_connect("/ws/chat/7?userId=1") as ws1:
        receive_presence(ws1, [1])
        with client.websocket_connect("/ws/chat/7?userId=2") as ws2:
            receive_presence(ws1, [1, 2])
            receive_presence(ws2, [1, 2])

            ws1.close()
            receive_presence(ws2, [2])
            assert get_hub().presence.current_users(7) == {2}


def test_binary_chat_frame_relayed():
    with client.websocket_connect("/ws/chat/11?userId=1") as ws_a:
        receive_presence(ws_a, [1])
        with client.websocket_connect("/ws/chat/11?userId=2") as ws_b:
            receive_presence(ws_a, [1, 2])
            receive_presence(ws_b, [1, 2])

            ws_a.send_bytes(b'{"body": "hi"}')

            data = ws_b.receive_json()
            assert data["type"] == "message"
            assert data["body"] == "hi"
            assert data["authorUserId"] == 1


def test_non_utf8_frame_reports_error_and_keeps_connection():
    with client.websocket_connect("/ws/chat/12?userId=1") as ws_a:
        receive_presence(ws_a, [1])
        with client.websocket_connect("/ws/chat/12?userId=2") as ws_b:
            receive_presence(ws_a, [1, 2])
            receive_presence(ws_b, [1, 2])

            ws_a.send_bytes(b'{"body": "\xc3\x28"}')
            error = ws_a.receive_json()
            assert error["type"] == "error"
            assert "Invalid message format" in error["error"]

            ws_a.send_json({"body": "still here"})
            assert ws_b.receive_json()["body"] == "still here"


def test_notifications_delivered_to_latest_binding():
    with client.websocket_connect("/ws/notifications?userId=42") as first:
        with client.websocket_connect("/ws/notifications?userId=42") as second:
            delivered = asyncio.run(
                get_hub().notifications.notify(42, {"type": "graded", "assignmentId": 3})
            )
            assert delivered is True
            assert second.receive_json() == {"type": "graded", "assignmentId": 3}

        # Closing the newer socket does not resurrect the superseded one
        assert get_hub().notifications.is_bound(42) is False
        assert asyncio.run(get_hub().notifications.notify(42, {"type": "graded"})) is False


def test_notify_unknown_user_is_dropped():
    assert asyncio.run(get_hub().notifications.notify(12345, {"type": "graded"})) is False


@pytest.mark.parametrize("path", ["/ws/grades/1", "/ws/chat/abc", "/ws/notifications"])
def test_unknown_path_closed_with_policy_violation(path):
    with client.websocket_connect(path) as ws:
        with pytest.raises(WebSocketDisconnect) as exc_info:
            ws.receive_json()
    assert exc_info.value.code == 1008
    assert get_hub().registry.connection_count() == 0


def test_chat_history_endpoint():
    with client.websocket_connect("/ws/chat/8?userId=1") as ws:
        receive_presence(ws, [1])
        for text in ("first", "second", "third"):
            ws.send_json({"body": text})
        ws.send_json({"body": ""})
        ws.receive_json()  # error frame: all three messages are stored by now

    page = client.get("/courses/8/chat", params={"limit": 2}).json()
    assert [m["body"] for m in page["messages"]] == ["second", "third"]
    assert page["hasMore"] is True

    older = client.get(
        "/courses/8/chat", params={"before": page["messages"][0]["id"], "limit": 2}
    ).json()
    assert [m["body"] for m in older["messages"]] == ["first"]
    assert older["hasMore"] is False


def test_chat_history_limit_validated():
    assert client.get("/courses/8/chat", params={"limit": 0}).status_code == 422
    assert client.get("/courses/8/chat", params={"limit": 101}).status_code == 422
