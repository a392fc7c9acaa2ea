"""
core/errors.py

Every failure the relay can report to a caller.
The exception handler in main.py turns a RelayError into
  {"error": <message>}  with status_code and headers.
"""

from typing import Optional


class RelayError(Exception):
    status_code: int = 500
    message: str = "Internal server error"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        status_code: Optional[int] = None,
        headers: Optional[dict[str, str]] = None,
    ):
        self.message = message or self.message
        if status_code is not None:
            self.status_code = status_code
        self.headers = headers or {}
        super().__init__(self.message)

    def to_content(self) -> dict:
        return {"error": self.message}


class MethodNotAllowed(RelayError):
    status_code = 405

    def __init__(self, method: str, allowed: str = "POST"):
        super().__init__(f"Method {method} Not Allowed", headers={"Allow": allowed})


class BadRequest(RelayError):
    status_code = 400
    message = "Bad Request: emotion, event, and behavior are required."


class ServerConfigurationError(RelayError):
    """Deployment is missing the Dify credential. Not the caller's fault."""

    status_code = 500
    message = "Server configuration error: API key is missing."


class UpstreamError(RelayError):
    """Dify answered with a non-2xx status; the status is forwarded as-is."""

    def __init__(self, status_code: int, reason: str):
        super().__init__(
            f"Dify API error: {status_code} {reason}".rstrip(),
            status_code=status_code,
        )


class UnexpectedUpstreamFormat(RelayError):
    status_code = 500
    message = "Unexpected response format from Dify API."


class StreamingError(RelayError):
    """
    Raised inside the stream relay once headers are committed.
    Never becomes a status code; reported in-band as NOTICE.
    """

    NOTICE = "\n\nStreaming error occurred."


class InternalError(RelayError):
    status_code = 500
    message = "Internal server error"

    def __init__(self, details: str):
        super().__init__()
        self.details = details

    def to_content(self) -> dict:
        return {"error": self.message, "details": self.details}
