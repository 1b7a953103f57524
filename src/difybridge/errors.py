"""Error types raised while bridging OpenAI requests to the Dify backend."""

from __future__ import annotations

from typing import Any

from fastapi import status


class BridgeError(Exception):
    """Base failure carrying the HTTP status to report to the caller."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, detail: Any, *, status_code: int | None = None):
        super().__init__(str(detail))
        if status_code is not None:
            self.status_code = status_code
        self.detail = detail


class MalformedContent(BridgeError):
    """Inbound message content could not be interpreted."""

    status_code = status.HTTP_400_BAD_REQUEST


class InvalidInlineData(BridgeError):
    """An inline image was not a base64 data URL."""

    status_code = status.HTTP_400_BAD_REQUEST


class UploadFailed(BridgeError):
    """The backend refused an attachment upload."""

    status_code = status.HTTP_502_BAD_GATEWAY

    def __init__(self, upstream_status: int, body: str):
        super().__init__(f"File upload failed: {upstream_status}: {body}")
        self.upstream_status = upstream_status
        self.body = body


class BackendRejected(BridgeError):
    """The backend answered the chat request with a non-2xx status.

    The status and body are forwarded to the caller unchanged.
    """

    def __init__(self, status_code: int, body: bytes, content_type: str | None = None):
        super().__init__(
            body.decode("utf-8", errors="replace"), status_code=status_code
        )
        self.body = body
        self.content_type = content_type


class BackendUnavailable(BridgeError):
    """Transport-level failure talking to the backend."""

    status_code = status.HTTP_502_BAD_GATEWAY


class StreamFailed(BridgeError):
    """The backend reported an error event while producing an answer."""

    GENERIC_MESSAGE = "An error occurred while processing the request."

    def __init__(self, code: str | None = None, message: str | None = None):
        super().__init__(self.GENERIC_MESSAGE)
        self.code = code
        self.message = message


__all__ = [
    "BackendRejected",
    "BackendUnavailable",
    "BridgeError",
    "InvalidInlineData",
    "MalformedContent",
    "StreamFailed",
    "UploadFailed",
]
