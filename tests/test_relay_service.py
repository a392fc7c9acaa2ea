"""
tests/test_relay_service.py
Unit tests for the relay pieces that don't need the HTTP app.
"""

import anyio
import httpx
import pytest

from note_relay.core.config import DifyConfig, Settings
from note_relay.core.errors import ServerConfigurationError, UnexpectedUpstreamFormat
from note_relay.models.request import CreateNoteRequest
from note_relay.routers.note import RelayStreamingResponse
from note_relay.services.client_classifier import ClientCategory
from note_relay.services.relay_service import (
    NoteRelay,
    StreamRelay,
    StreamState,
    extract_outputs,
    fallback_user_id,
)

CONFIG = DifyConfig(
    api_key="k",
    api_url="https://dify.test/v1/workflows/run",
    fallback_user_prefix="quantum-user-",
)


async def _chunks(*parts: bytes, fail: Exception = None):
    for part in parts:
        yield part
    if fail is not None:
        raise fail


def _upstream(*parts: bytes, fail: Exception = None) -> httpx.Response:
    return httpx.Response(200, content=_chunks(*parts, fail=fail))


# ─────────────────────────────────────────────────────────────────────────────
# Config
# ─────────────────────────────────────────────────────────────────────────────

def test_config_requires_api_key():
    with pytest.raises(ServerConfigurationError):
        DifyConfig.from_settings(Settings(DIFY_API_KEY="", _env_file=None))


def test_config_rejects_blank_api_key():
    with pytest.raises(ServerConfigurationError):
        DifyConfig.from_settings(Settings(DIFY_API_KEY="   ", _env_file=None))


def test_config_from_settings():
    config = DifyConfig.from_settings(Settings(DIFY_API_KEY="secret", _env_file=None))
    assert config.api_key == "secret"
    assert config.api_url == "https://api.dify.ai/v1/workflows/run"
    assert config.fallback_user_prefix == "quantum-user-"
    assert config.client_markers == ("miniProgram", "MicroMessenger")


# ─────────────────────────────────────────────────────────────────────────────
# Upstream request
# ─────────────────────────────────────────────────────────────────────────────

def test_fallback_user_id():
    user = fallback_user_id("quantum-user-")
    assert user.startswith("quantum-user-")
    assert user[len("quantum-user-"):].isdigit()


@pytest.mark.parametrize("category,mode", [
    (ClientCategory.CONSTRAINED, "blocking"),
    (ClientCategory.STANDARD, "streaming"),
])
def test_build_upstream_request(category, mode):
    relay = NoteRelay(CONFIG, http=None)
    req = CreateNoteRequest(emotion="e", event="v", behavior="b", userName="mei")

    body = relay.build_upstream_request(req, category)

    assert body.response_mode == mode
    assert body.user == "mei"
    assert body.inputs.user_emotion_input == "e"
    assert body.inputs.user_event_description == "v"
    assert body.inputs.user_behavior_input == "b"


@pytest.mark.parametrize("user_name", [None, ""])
def test_build_upstream_request_falls_back(user_name):
    relay = NoteRelay(CONFIG, http=None)
    req = CreateNoteRequest(emotion="e", event="v", behavior="b", userName=user_name)
    body = relay.build_upstream_request(req, ClientCategory.STANDARD)
    assert body.user.startswith("quantum-user-")


@pytest.mark.parametrize("req,complete", [
    (CreateNoteRequest(emotion="e", event="v", behavior="b"), True),
    (CreateNoteRequest(emotion="e", event="v"), False),
    (CreateNoteRequest(emotion="", event="v", behavior="b"), False),
    (CreateNoteRequest(), False),
])
def test_request_is_complete(req, complete):
    assert req.is_complete() is complete


# ─────────────────────────────────────────────────────────────────────────────
# Blocking unwrap
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.parametrize("document,outputs", [
    ({"data": {"outputs": {"result": "ok"}}}, {"result": "ok"}),
    ({"data": {"outputs": {}}, "task_id": "t"}, {}),
    ({"data": {"outputs": "plain"}}, "plain"),
    ({"data": {"outputs": []}}, []),
])
def test_extract_outputs(document, outputs):
    assert extract_outputs(document) == outputs


@pytest.mark.parametrize("document", [
    {"foo": 1},
    {"data": {"status": "failed"}},
    {"data": "oops"},
    {"data": {"outputs": None}},
    {"data": {"outputs": ""}},
    {"data": {"outputs": 0}},
    {"data": {"outputs": False}},
    None,
    "text",
])
def test_extract_outputs_unexpected(document):
    with pytest.raises(UnexpectedUpstreamFormat):
        extract_outputs(document)


# ─────────────────────────────────────────────────────────────────────────────
# Stream relay
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.anyio
async def test_stream_forwards_each_chunk_as_it_arrives():
    relay = StreamRelay(_upstream(b"He", b"llo"))
    pieces = [piece async for piece in relay.iter_text()]
    assert pieces == ["He", "llo"]
    assert "".join(pieces) == "Hello"


@pytest.mark.anyio
async def test_stream_holds_incomplete_multibyte_sequence():
    encoded = "你好".encode("utf-8")
    relay = StreamRelay(_upstream(encoded[:2], encoded[2:4], encoded[4:]))
    pieces = [piece async for piece in relay.iter_text()]
    assert pieces == ["你", "好"]


@pytest.mark.anyio
async def test_stream_state_after_natural_end():
    upstream = _upstream(b"a", b"b", b"c")
    relay = StreamRelay(upstream)
    assert relay.state is StreamState.IDLE

    seen = []
    async for _ in relay.iter_text():
        seen.append(relay.state)

    assert seen == [StreamState.STREAMING] * 3
    assert relay.state is StreamState.CLOSED
    assert relay.chunks == 3
    assert upstream.is_closed


@pytest.mark.anyio
async def test_stream_error_appends_notice_and_closes():
    upstream = _upstream(b"He", fail=httpx.ReadError("connection reset"))
    relay = StreamRelay(upstream)

    pieces = [piece async for piece in relay.iter_text()]

    assert pieces == ["He", "\n\nStreaming error occurred."]
    assert relay.state is StreamState.CLOSED
    assert upstream.is_closed


@pytest.mark.anyio
async def test_stream_cannot_restart_after_close():
    relay = StreamRelay(_upstream(b"x"))
    [piece async for piece in relay.iter_text()]

    with pytest.raises(RuntimeError):
        [piece async for piece in relay.iter_text()]


@pytest.mark.anyio
async def test_closing_generator_closes_upstream():
    upstream = _upstream(b"one", b"two", b"three")
    relay = StreamRelay(upstream)

    stream = relay.iter_text()
    assert await stream.__anext__() == "one"
    await stream.aclose()

    assert relay.state is StreamState.CLOSED
    assert upstream.is_closed


@pytest.mark.anyio
async def test_response_closes_upstream_when_send_fails():
    upstream = _upstream(b"one", b"two", b"three")
    relay = StreamRelay(upstream)
    response = RelayStreamingResponse(relay)
    scope = {"type": "http", "asgi": {"spec_version": "2.4"}, "method": "POST", "headers": []}
    sent = []

    async def receive():
        await anyio.sleep_forever()

    async def send(message):
        if message["type"] == "http.response.body" and message.get("body"):
            raise OSError("client went away")
        sent.append(message)

    with pytest.raises(Exception):
        await response(scope, receive, send)

    assert sent[0]["type"] == "http.response.start"
    assert relay.state is StreamState.CLOSED
    assert upstream.is_closed
