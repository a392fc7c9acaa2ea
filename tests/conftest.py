"""
tests/conftest.py
Shared fixtures: a fake Dify behind httpx.MockTransport and a TestClient
wired to it through dependency_overrides.
"""

import json

import httpx
import pytest
from fastapi.testclient import TestClient

from note_relay.core.config import Settings, get_settings
from note_relay.main import app
from note_relay.routers.note import get_http_client

DIFY_URL = "https://dify.test/v1/workflows/run"


class FakeDify:
    """Records every upstream request; `respond` decides the answer."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.respond = lambda request: httpx.Response(
            200, json={"data": {"outputs": {"result": "ok"}}}
        )

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.respond(request)

    @property
    def called(self) -> bool:
        return bool(self.requests)

    @property
    def last_body(self) -> dict:
        return json.loads(self.requests[-1].content)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def dify():
    return FakeDify()


@pytest.fixture
def settings():
    return Settings(
        DIFY_API_KEY="test-key",
        DIFY_API_URL=DIFY_URL,
        _env_file=None,
    )


@pytest.fixture
def client(dify, settings):
    http = httpx.AsyncClient(transport=httpx.MockTransport(dify))
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_http_client] = lambda: http
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()
