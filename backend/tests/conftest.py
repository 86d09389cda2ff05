"""Shared test fixtures and configuration for backend tests."""
import json

import pytest
from fastapi.testclient import TestClient

from lms_realtime.config import AppConfig, set_config
from lms_realtime.main import app
from lms_realtime.realtime.connection import Connection
from lms_realtime.realtime.hub import reset_hub


class FakeTransport:
    """Stands in for a WebSocket: records frames, can be told to fail."""

    def __init__(self, fail: bool = False) -> None:
        self.sent = []
        self.fail = fail
        self.closed_with = None

    async def send_text(self, data: str) -> None:
        if self.fail:
            raise RuntimeError("socket is gone")
        self.sent.append(json.loads(data))

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.closed_with = code


@pytest.fixture(autouse=True)
def fresh_hub():
    """Give every test default config and a brand-new in-memory hub."""
    set_config(AppConfig())
    reset_hub()
    yield
    reset_hub()
    set_config(None)


@pytest.fixture
def make_connection():
    """Factory for open connections over fake transports."""
    def _make(user_id=None, fail=False, path=""):
        return Connection(FakeTransport(fail=fail), path=path, user_id=user_id)
    return _make


@pytest.fixture
def api_client():
    """Provide a TestClient for the main FastAPI app."""
    return TestClient(app)
