"""OpenAI-compatible chat completion routes."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.responses import JSONResponse
from sse_starlette.sse import EventSourceResponse

from ..bridge import ChatBridge
from ..errors import BackendRejected, BridgeError, StreamFailed
from ..schemas.chat import ChatCompletionRequest

logger = logging.getLogger(__name__)

router = APIRouter(tags=["chat"])


def get_chat_bridge(request: Request) -> ChatBridge:
    return request.app.state.chat_bridge


def _error_response(exc: Exception) -> Response:
    if isinstance(exc, BackendRejected):
        return Response(
            content=exc.body,
            status_code=exc.status_code,
            media_type=exc.content_type,
        )
    if isinstance(exc, StreamFailed):
        logger.error("Dify reported an error: %s, %s", exc.code, exc.message)
        return JSONResponse({"error": exc.detail}, status_code=exc.status_code)
    if isinstance(exc, BridgeError):
        logger.warning("Chat request failed (%s): %s", exc.status_code, exc.detail)
        return JSONResponse({"error": exc.detail}, status_code=exc.status_code)
    logger.error("Unhandled error while processing chat request", exc_info=exc)
    return JSONResponse(
        {"error": str(exc)},
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


@router.post("/v1/chat/completions", response_model=None)
@router.post("/chat/completions", response_model=None, include_in_schema=False)
async def create_chat_completion(
    payload: ChatCompletionRequest,
    bridge: ChatBridge = Depends(get_chat_bridge),
) -> Response:
    """Answer a chat completion through Dify, streamed or aggregated."""

    logger.info(
        "Received chat completion request (model=%s, messages=%d, stream=%s)",
        payload.model,
        len(payload.messages),
        payload.stream,
    )

    try:
        if payload.stream:
            stream = await bridge.stream(payload)
            return EventSourceResponse(
                stream.publish(),
                status_code=stream.status_code,
                sep="\n",
            )
        return JSONResponse(await bridge.complete(payload))
    except Exception as exc:
        return _error_response(exc)


__all__ = ["get_chat_bridge", "router"]
