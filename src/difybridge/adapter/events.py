"""Map Dify frames onto protocol-agnostic events."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Optional, Union

from ..schemas.dify import (
    AgentThoughtFrame,
    BackendFrame,
    ErrorFrame,
    MessageEndFrame,
    MessageFrame,
    PingFrame,
    TextChunkFrame,
    UnknownFrame,
    UsageCounters,
    WorkflowFinishedFrame,
)

logger = logging.getLogger(__name__)


DEFAULT_PROMPT_TOKENS = 100
DEFAULT_COMPLETION_TOKENS = 10
DEFAULT_TOTAL_TOKENS = 110


@dataclass(frozen=True)
class ContentDelta:
    text: str
    # Workflow results carry the full answer rather than an increment
    replace: bool = False


@dataclass(frozen=True)
class Finished:
    pass


@dataclass(frozen=True)
class UsageReport:
    prompt_tokens: int = DEFAULT_PROMPT_TOKENS
    completion_tokens: int = DEFAULT_COMPLETION_TOKENS
    total_tokens: int = DEFAULT_TOTAL_TOKENS

    def asdict(self) -> dict[str, int]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }


@dataclass(frozen=True)
class StreamError:
    message: str
    code: Optional[str] = None


@dataclass(frozen=True)
class Ignored:
    pass


NormalizedEvent = Union[ContentDelta, Finished, UsageReport, StreamError, Ignored]


def _usage_from(
    counters: Optional[UsageCounters], *, total_tokens: Optional[int] = None
) -> UsageReport:
    counters = counters or UsageCounters()
    total = total_tokens if total_tokens is not None else counters.total_tokens
    return UsageReport(
        prompt_tokens=(
            counters.prompt_tokens
            if counters.prompt_tokens is not None
            else DEFAULT_PROMPT_TOKENS
        ),
        completion_tokens=(
            counters.completion_tokens
            if counters.completion_tokens is not None
            else DEFAULT_COMPLETION_TOKENS
        ),
        total_tokens=total if total is not None else DEFAULT_TOTAL_TOKENS,
    )


def resolve_workflow_output(outputs: Any, output_variable: Optional[str]) -> str:
    """Pick the configured output variable, or render every output."""

    value = outputs
    if output_variable and isinstance(outputs, dict):
        value = outputs.get(output_variable)
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False)


def classify(
    frame: BackendFrame,
    *,
    streaming: bool,
    output_variable: Optional[str] = None,
) -> list[NormalizedEvent]:
    """Translate one frame into the events it implies, in order."""

    if isinstance(frame, MessageFrame):
        return [ContentDelta(frame.answer)]
    if isinstance(frame, TextChunkFrame):
        return [ContentDelta(frame.data.text)]
    if isinstance(frame, MessageEndFrame):
        return [_usage_from(frame.metadata.usage), Finished()]
    if isinstance(frame, WorkflowFinishedFrame):
        usage = _usage_from(frame.metadata.usage, total_tokens=frame.data.total_tokens)
        if streaming:
            return [usage, Finished()]
        text = resolve_workflow_output(frame.data.outputs, output_variable)
        return [ContentDelta(text, replace=True), usage]
    if isinstance(frame, ErrorFrame):
        code = None if frame.code is None else str(frame.code)
        logger.error("Dify stream error: %s, %s", code, frame.message)
        return [StreamError(frame.message, code)]
    if isinstance(frame, (AgentThoughtFrame, PingFrame)):
        return [Ignored()]
    if isinstance(frame, UnknownFrame):
        logger.debug("Ignoring unknown Dify event %r", frame.event)
        return [Ignored()]
    raise TypeError(f"Unhandled frame type {type(frame).__name__}")


__all__ = [
    "ContentDelta",
    "DEFAULT_COMPLETION_TOKENS",
    "DEFAULT_PROMPT_TOKENS",
    "DEFAULT_TOTAL_TOKENS",
    "Finished",
    "Ignored",
    "NormalizedEvent",
    "StreamError",
    "UsageReport",
    "classify",
    "resolve_workflow_output",
]
