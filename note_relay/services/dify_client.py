"""
services/dify_client.py

Thin wrapper over POST {DIFY_API_URL}.
One attempt per call; any non-2xx becomes UpstreamError with Dify's status.
"""

from typing import Any

import httpx

from note_relay.core.config import DifyConfig
from note_relay.core.errors import UnexpectedUpstreamFormat, UpstreamError
from note_relay.core.logger import get_logger
from note_relay.models.request import DifyWorkflowRequest

logger = get_logger(__name__)


class DifyClient:
    def __init__(self, config: DifyConfig, http: httpx.AsyncClient):
        self.config = config
        self._http = http

    def _build_request(self, body: DifyWorkflowRequest) -> httpx.Request:
        return self._http.build_request(
            "POST",
            self.config.api_url,
            headers={
                "Authorization": f"Bearer {self.config.api_key}",
                "Content-Type": "application/json",
            },
            json=body.model_dump(),
        )

    @staticmethod
    def _upstream_error(response: httpx.Response) -> UpstreamError:
        logger.error(f"Dify API error: {response.status_code} {response.reason_phrase}")
        return UpstreamError(response.status_code, response.reason_phrase)

    async def run_blocking(self, body: DifyWorkflowRequest) -> Any:
        """Wait for the whole workflow run and return the parsed JSON document."""
        response = await self._http.send(self._build_request(body))
        if not response.is_success:
            raise self._upstream_error(response)

        try:
            return response.json()
        except ValueError as e:
            logger.error(f"Dify returned non-JSON body: {response.text[:300]!r}")
            raise UnexpectedUpstreamFormat() from e

    async def open_stream(self, body: DifyWorkflowRequest) -> httpx.Response:
        """
        Send the request and return as soon as Dify's headers arrive.
        Caller owns the returned response and must aclose() it.
        """
        response = await self._http.send(self._build_request(body), stream=True)
        if not response.is_success:
            await response.aclose()
            raise self._upstream_error(response)
        return response
