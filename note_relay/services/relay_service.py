"""
services/relay_service.py

Turns a CreateNoteRequest into one Dify workflow run and hands
the result back in the transfer mode the caller can handle.

Flow:
  1. Classify caller from User-Agent → blocking | streaming
  2. Build DifyWorkflowRequest (userName or fallback id)
  3a. blocking  → wait, unwrap data.outputs
  3b. streaming → StreamRelay copies Dify's bytes through as text
"""

import codecs
import time
from enum import Enum
from typing import Any, AsyncIterator, Optional

import httpx

from note_relay.core.config import DifyConfig
from note_relay.core.errors import StreamingError, UnexpectedUpstreamFormat
from note_relay.core.logger import get_logger
from note_relay.models.request import CreateNoteRequest, DifyInputs, DifyWorkflowRequest
from note_relay.services.client_classifier import ClientCategory, classify
from note_relay.services.dify_client import DifyClient

logger = get_logger(__name__)


def fallback_user_id(prefix: str) -> str:
    """Epoch milliseconds. Two anonymous callers in the same ms will collide."""
    return f"{prefix}{int(time.time() * 1000)}"


def _present(value: Any) -> bool:
    """Empty objects and lists count as a result; None, "", 0 and False don't."""
    return isinstance(value, (dict, list)) or bool(value)


def extract_outputs(document: Any) -> Any:
    data = document.get("data") if isinstance(document, dict) else None
    outputs = data.get("outputs") if isinstance(data, dict) else None
    if not _present(outputs):
        logger.error(f"Unexpected response format: {str(document)[:300]}")
        raise UnexpectedUpstreamFormat()
    return outputs


# ─────────────────────────────────────────────────────────────────────────────
# Streaming relay
# ─────────────────────────────────────────────────────────────────────────────

class StreamState(str, Enum):
    IDLE = "idle"
    HEADERS_SENT = "headers_sent"
    STREAMING = "streaming"
    CLOSED = "closed"


class StreamRelay:
    """
    Idle → HeadersSent → Streaming(n) → Closed

    iter_text() is handed to StreamingResponse, which only starts pulling
    after it has sent the status line and headers. From then on the status
    is 200 no matter what, so a failure is appended as text instead.

    On a caller disconnect RelayStreamingResponse closes this generator,
    and the finally block closes the upstream response.
    """

    def __init__(self, upstream: httpx.Response):
        self.upstream = upstream
        self.state = StreamState.IDLE
        self.chunks = 0
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    async def iter_text(self) -> AsyncIterator[str]:
        if self.state is not StreamState.IDLE:
            raise RuntimeError(f"stream relay already {self.state.value}")

        self.state = StreamState.HEADERS_SENT
        try:
            async for raw in self.upstream.aiter_bytes():
                self.state = StreamState.STREAMING
                self.chunks += 1
                text = self._decoder.decode(raw)
                if text:
                    yield text

            tail = self._decoder.decode(b"", final=True)
            if tail:
                yield tail
            logger.info(f"Stream finished after {self.chunks} chunks")

        except Exception as e:
            err = StreamingError(f"{type(e).__name__}: {e}")
            logger.error(f"Streaming error after {self.chunks} chunks: {err}", exc_info=True)
            yield StreamingError.NOTICE

        finally:
            self.state = StreamState.CLOSED
            await self.upstream.aclose()

    async def aclose(self) -> None:
        self.state = StreamState.CLOSED
        await self.upstream.aclose()


# ─────────────────────────────────────────────────────────────────────────────
# Relay
# ─────────────────────────────────────────────────────────────────────────────

class NoteRelay:
    def __init__(self, config: DifyConfig, http: httpx.AsyncClient):
        self.config = config
        self.client = DifyClient(config, http)

    def build_upstream_request(
        self,
        req: CreateNoteRequest,
        category: ClientCategory,
    ) -> DifyWorkflowRequest:
        inputs = DifyInputs(
            user_emotion_input=req.emotion,
            user_event_description=req.event,
            user_behavior_input=req.behavior,
        )
        logger.info(f"Dify inputs: {inputs.model_dump_json()}")
        return DifyWorkflowRequest(
            inputs=inputs,
            response_mode=category.response_mode,
            user=req.user_name or fallback_user_id(self.config.fallback_user_prefix),
        )

    def prepare(
        self,
        req: CreateNoteRequest,
        user_agent: Optional[str],
    ) -> DifyWorkflowRequest:
        category = classify(user_agent, self.config.client_markers)
        body = self.build_upstream_request(req, category)
        logger.info(f"Request mode: {body.response_mode} (client: {category.value})")
        return body

    async def run_blocking(self, body: DifyWorkflowRequest) -> Any:
        document = await self.client.run_blocking(body)
        logger.info("Blocking response received")
        return extract_outputs(document)

    async def open_stream(self, body: DifyWorkflowRequest) -> StreamRelay:
        upstream = await self.client.open_stream(body)
        return StreamRelay(upstream)
