"""Render normalized events as OpenAI streaming chunks or one completion."""

from __future__ import annotations

import json
import logging
import time
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Any, AsyncIterable, AsyncIterator, Optional
from uuid import uuid4

from fastapi import status

from ..errors import StreamFailed
from ..schemas.dify import BackendFrame
from .events import (
    ContentDelta,
    Finished,
    Ignored,
    NormalizedEvent,
    StreamError,
    UsageReport,
    classify,
)
from .frames import FrameReassembler, iter_frames

logger = logging.getLogger(__name__)


SseEvent = dict[str, str]

DONE_SENTINEL = "[DONE]"
SYSTEM_FINGERPRINT = "fp_2f57f81c11"


def new_completion_id() -> str:
    return f"chatcmpl-{uuid4().hex}"


@dataclass
class ResponseStreamState:
    """Mutable state for a single bridged response.

    ``ended`` only ever goes from False to True. Once it is set nothing else
    may be written to the caller.
    """

    model: str
    completion_id: str = field(default_factory=new_completion_id)
    reassembler: FrameReassembler = field(default_factory=FrameReassembler)
    ended: bool = False
    frames_written: int = 0
    status_code: int = status.HTTP_200_OK
    text: list[str] = field(default_factory=list)
    usage: Optional[UsageReport] = None
    error: Optional[StreamError] = None

    @property
    def buffer(self) -> bytes:
        return self.reassembler.buffer

    def write(self, data: str) -> Optional[SseEvent]:
        if self.ended:
            return None
        self.frames_written += 1
        return {"data": data}

    def end(self) -> bool:
        """Mark the response ended; return False if it already was."""

        if self.ended:
            return False
        self.ended = True
        return True

    def accumulate(self, delta: ContentDelta) -> None:
        if delta.replace:
            self.text = [delta.text]
        else:
            self.text.append(delta.text)

    def record_usage(self, usage: UsageReport) -> None:
        self.usage = usage

    @property
    def content(self) -> str:
        return "".join(self.text).strip()


class StreamingAssembler:
    """Translate backend frames into OpenAI ``chat.completion.chunk`` events."""

    def __init__(
        self, state: ResponseStreamState, *, output_variable: Optional[str] = None
    ):
        self.state = state
        self._output_variable = output_variable

    def _chunk(
        self, delta: dict[str, Any], finish_reason: Optional[str], created: int
    ) -> str:
        return json.dumps(
            {
                "id": self.state.completion_id,
                "object": "chat.completion.chunk",
                "created": created,
                "model": self.state.model,
                "choices": [
                    {
                        "index": 0,
                        "delta": delta,
                        "finish_reason": finish_reason,
                    }
                ],
            },
            ensure_ascii=False,
        )

    def _terminate(self, frames: list[str]) -> list[SseEvent]:
        if self.state.ended:
            return []
        events = [self.state.write(data) for data in [*frames, DONE_SENTINEL]]
        self.state.end()
        return [event for event in events if event is not None]

    def finish(self, created: Optional[int] = None) -> list[SseEvent]:
        """Emit the stop chunk and ``[DONE]`` unless already terminated."""

        created = created if created is not None else int(time.time())
        return self._terminate([self._chunk({}, "stop", created)])

    def fail(self, message: str) -> list[SseEvent]:
        """Emit an error frame and ``[DONE]`` unless already terminated."""

        if self.state.ended:
            return []
        if self.state.frames_written == 0:
            self.state.status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
        return self._terminate([json.dumps({"error": message}, ensure_ascii=False)])

    def handle(self, event: NormalizedEvent, created: int) -> list[SseEvent]:
        if self.state.ended:
            return []
        if isinstance(event, ContentDelta):
            if not event.text:
                return []
            written = self.state.write(
                self._chunk({"content": event.text}, None, created)
            )
            return [written] if written is not None else []
        if isinstance(event, Finished):
            return self.finish(created)
        if isinstance(event, StreamError):
            self.state.error = event
            return self.fail(event.message)
        if isinstance(event, UsageReport):
            self.state.record_usage(event)
            return []
        if isinstance(event, Ignored):
            return []
        raise TypeError(f"Unhandled event type {type(event).__name__}")

    def events_for(self, frame: BackendFrame) -> list[SseEvent]:
        created = frame.created_at if frame.created_at is not None else int(time.time())
        rendered: list[SseEvent] = []
        for event in classify(
            frame, streaming=True, output_variable=self._output_variable
        ):
            rendered.extend(self.handle(event, created))
        return rendered

    async def render(self, chunks: AsyncIterable[bytes]) -> AsyncIterator[SseEvent]:
        """Yield SSE payloads until the response is terminated.

        Reading stops as soon as a terminal frame was written. A backend
        stream that ends without one is still closed with a stop chunk.
        """

        async with aclosing(iter_frames(chunks, self.state.reassembler)) as frames:
            async for frame in frames:
                for event in self.events_for(frame):
                    yield event
                if self.state.ended:
                    break

        if not self.state.ended:
            logger.warning(
                "Dify stream for %s ended without a terminal event",
                self.state.completion_id,
            )
            for event in self.finish():
                yield event


class AggregateAssembler:
    """Consume the whole backend stream and build one ``chat.completion``."""

    def __init__(
        self, state: ResponseStreamState, *, output_variable: Optional[str] = None
    ):
        self.state = state
        self._output_variable = output_variable

    def accept(self, event: NormalizedEvent) -> None:
        if isinstance(event, ContentDelta):
            self.state.accumulate(event)
        elif isinstance(event, UsageReport):
            self.state.record_usage(event)
        elif isinstance(event, StreamError):
            self.state.error = event
        elif not isinstance(event, (Finished, Ignored)):
            raise TypeError(f"Unhandled event type {type(event).__name__}")

    async def collect(self, chunks: AsyncIterable[bytes]) -> dict[str, Any]:
        async with aclosing(iter_frames(chunks, self.state.reassembler)) as frames:
            async for frame in frames:
                for event in classify(
                    frame, streaming=False, output_variable=self._output_variable
                ):
                    self.accept(event)
                if self.state.error is not None:
                    break
        self.state.end()

        if self.state.error is not None:
            raise StreamFailed(self.state.error.code, self.state.error.message)
        return self.build_response()

    def build_response(self) -> dict[str, Any]:
        usage = self.state.usage or UsageReport()
        return {
            "id": self.state.completion_id,
            "object": "chat.completion",
            "created": int(time.time()),
            "model": self.state.model,
            "choices": [
                {
                    "index": 0,
                    "message": {
                        "role": "assistant",
                        "content": self.state.content,
                    },
                    "logprobs": None,
                    "finish_reason": "stop",
                }
            ],
            "usage": usage.asdict(),
            "system_fingerprint": SYSTEM_FINGERPRINT,
        }


__all__ = [
    "AggregateAssembler",
    "DONE_SENTINEL",
    "ResponseStreamState",
    "SYSTEM_FINGERPRINT",
    "SseEvent",
    "StreamingAssembler",
    "new_completion_id",
]
