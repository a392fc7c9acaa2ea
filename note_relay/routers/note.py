"""
routers/note.py

POST /api/create-note
  1. Validate input          → 400
  2. Check Dify API key      → 500
  3. Classify client         → blocking | streaming
  4. Call Dify once          → forwarded status on error
  5. Return JSON envelope or chunked text
Any other method           → 405 + Allow: POST
"""

from typing import Optional

import anyio
import httpx
from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import StreamingResponse
from starlette.types import Receive, Scope, Send

from note_relay.core.config import DifyConfig, Settings, get_settings
from note_relay.core.errors import BadRequest, MethodNotAllowed
from note_relay.core.logger import get_logger
from note_relay.models.request import CreateNoteRequest
from note_relay.models.response import ErrorResponse, NoteResponse
from note_relay.services.relay_service import NoteRelay, StreamRelay

logger = get_logger(__name__)
router = APIRouter(prefix="/api", tags=["notes"])

STREAM_HEADERS = {
    "Transfer-Encoding": "chunked",
    "Cache-Control": "no-cache",
    "X-Accel-Buffering": "no",  # disable nginx buffering
}


class RelayStreamingResponse(StreamingResponse):
    """
    StreamingResponse that always releases the Dify connection.

    On a caller disconnect Starlette stops at send() and neither closes
    body_iterator nor runs background tasks, so both are done here,
    shielded from the cancellation that ended the response.
    """

    def __init__(self, relay: StreamRelay):
        self.relay = relay
        super().__init__(
            relay.iter_text(),
            media_type="text/plain; charset=utf-8",
            headers=STREAM_HEADERS,
        )

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            with anyio.CancelScope(shield=True):
                await self.body_iterator.aclose()
                await self.relay.aclose()


def get_http_client(request: Request) -> httpx.AsyncClient:
    """Shared client opened in the app lifespan."""
    return request.app.state.http_client


@router.post(
    "/create-note",
    response_model=NoteResponse,
    responses={
        200: {"content": {"text/plain": {}}, "description": "Streamed workflow output"},
        400: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
)
async def create_note(
    req: CreateNoteRequest,
    user_agent: Optional[str] = Header(None),
    settings: Settings = Depends(get_settings),
    http: httpx.AsyncClient = Depends(get_http_client),
):
    """
    Blocking JSON for WeChat mini-programs, streamed text for everyone else.
    """
    if not req.is_complete():
        raise BadRequest()

    relay = NoteRelay(DifyConfig.from_settings(settings), http)
    body = relay.prepare(req, user_agent)

    if body.response_mode == "blocking":
        outputs = await relay.run_blocking(body)
        return NoteResponse(data=outputs)

    stream = await relay.open_stream(body)
    return RelayStreamingResponse(stream)


@router.api_route(
    "/create-note",
    methods=["GET", "HEAD", "PUT", "PATCH", "DELETE", "OPTIONS"],
    include_in_schema=False,
)
async def create_note_wrong_method(request: Request):
    raise MethodNotAllowed(request.method)
