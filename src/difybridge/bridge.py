"""High-level chat bridge wiring the adapter stages together."""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Optional

import httpx

from .adapter.assembler import (
    AggregateAssembler,
    ResponseStreamState,
    SseEvent,
    StreamingAssembler,
)
from .adapter.attachments import AttachmentResolver
from .adapter.normalizer import build_backend_query
from .config import Settings
from .dify import DifyClient
from .errors import BackendUnavailable
from .schemas.chat import ChatCompletionRequest
from .schemas.dify import BackendQuery

logger = logging.getLogger(__name__)


class BridgedStream:
    """An open backend stream rendered as OpenAI SSE payloads.

    ``prime()`` pulls the first rendered event before any response headers
    are sent, which lets an error that precedes all content surface as an
    HTTP 500. The backend response is closed when publishing finishes,
    fails, or is cancelled because the caller went away.
    """

    def __init__(self, assembler: StreamingAssembler, response: httpx.Response):
        self._assembler = assembler
        self._response = response
        self._events = assembler.render(response.aiter_bytes())
        self._pending: Optional[SseEvent] = None

    @property
    def state(self) -> ResponseStreamState:
        return self._assembler.state

    @property
    def status_code(self) -> int:
        return self.state.status_code

    async def prime(self) -> None:
        try:
            self._pending = await self._events.__anext__()
        except StopAsyncIteration:
            self._pending = None
        except httpx.HTTPError as exc:
            await self.aclose()
            raise BackendUnavailable(str(exc)) from exc
        except BaseException:
            await self.aclose()
            raise

    async def publish(self) -> AsyncIterator[SseEvent]:
        try:
            if self._pending is not None:
                pending, self._pending = self._pending, None
                yield pending
            async for event in self._events:
                yield event
        except Exception as exc:
            logger.exception(
                "Streaming %s failed after headers were sent",
                self.state.completion_id,
            )
            for event in self._assembler.fail(str(exc)):
                yield event
        finally:
            await self.aclose()
            logger.info("Response %s ended", self.state.completion_id)

    async def aclose(self) -> None:
        await self._events.aclose()
        await self._response.aclose()


class ChatBridge:
    """Serve OpenAI chat completions from a Dify application."""

    def __init__(self, settings: Settings, client: Optional[DifyClient] = None):
        self._settings = settings
        self._client = client or DifyClient(settings)
        self._resolver = AttachmentResolver(self._client)

    @property
    def client(self) -> DifyClient:
        return self._client

    def _new_state(self, request: ChatCompletionRequest) -> ResponseStreamState:
        return ResponseStreamState(model=request.model or self._settings.default_model)

    async def prepare(self, request: ChatCompletionRequest) -> BackendQuery:
        return await build_backend_query(
            request, self._resolver, user=self._settings.dify_user
        )

    async def stream(self, request: ChatCompletionRequest) -> BridgedStream:
        """Open the backend stream and prime the first outgoing event."""

        query = await self.prepare(request)
        response = await self._client.open_chat_stream(query)
        assembler = StreamingAssembler(
            self._new_state(request),
            output_variable=self._settings.output_variable,
        )
        stream = BridgedStream(assembler, response)
        await stream.prime()
        return stream

    async def complete(self, request: ChatCompletionRequest) -> dict[str, Any]:
        """Consume the backend stream fully and return one completion."""

        query = await self.prepare(request)
        response = await self._client.open_chat_stream(query)
        assembler = AggregateAssembler(
            self._new_state(request),
            output_variable=self._settings.output_variable,
        )
        try:
            result = await assembler.collect(response.aiter_bytes())
        except httpx.HTTPError as exc:
            raise BackendUnavailable(str(exc)) from exc
        finally:
            await response.aclose()

        logger.info(
            "Sending completion %s (%d chars)",
            result["id"],
            len(result["choices"][0]["message"]["content"]),
        )
        return result

    async def aclose(self) -> None:
        await self._client.aclose()


__all__ = ["BridgedStream", "ChatBridge"]
