"""Pydantic models for the Dify chat-messages protocol."""

from __future__ import annotations

from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
)


class _Frame(BaseModel):
    model_config = ConfigDict(extra="allow")

    created_at: Optional[int] = None


class UsageCounters(BaseModel):
    model_config = ConfigDict(extra="allow")

    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    total_tokens: Optional[int] = None


class FrameMetadata(BaseModel):
    model_config = ConfigDict(extra="allow")

    usage: Optional[UsageCounters] = None


class MessageFrame(_Frame):
    event: Literal["message", "agent_message"]
    answer: str = ""


class TextChunkData(BaseModel):
    model_config = ConfigDict(extra="allow")

    text: str = ""


class TextChunkFrame(_Frame):
    event: Literal["text_chunk"]
    data: TextChunkData = Field(default_factory=TextChunkData)


class MessageEndFrame(_Frame):
    event: Literal["message_end"]
    metadata: FrameMetadata = Field(default_factory=FrameMetadata)


class WorkflowFinishedData(BaseModel):
    model_config = ConfigDict(extra="allow")

    outputs: Any = None
    total_tokens: Optional[int] = None


class WorkflowFinishedFrame(_Frame):
    event: Literal["workflow_finished"]
    data: WorkflowFinishedData = Field(default_factory=WorkflowFinishedData)
    metadata: FrameMetadata = Field(default_factory=FrameMetadata)


class AgentThoughtFrame(_Frame):
    event: Literal["agent_thought"]


class PingFrame(_Frame):
    event: Literal["ping"]


class ErrorFrame(_Frame):
    event: Literal["error"]
    code: Any = None
    message: str = ""
    status: Any = None

    @field_validator("message", mode="before")
    @classmethod
    def _coerce_message(cls, value: Any) -> str:
        if value is None:
            return ""
        return value if isinstance(value, str) else str(value)


class UnknownFrame(_Frame):
    """Any event tag this bridge does not know about."""

    event: str


KnownFrame = Annotated[
    Union[
        MessageFrame,
        TextChunkFrame,
        MessageEndFrame,
        WorkflowFinishedFrame,
        AgentThoughtFrame,
        PingFrame,
        ErrorFrame,
    ],
    Field(discriminator="event"),
]

BackendFrame = Union[
    MessageFrame,
    TextChunkFrame,
    MessageEndFrame,
    WorkflowFinishedFrame,
    AgentThoughtFrame,
    PingFrame,
    ErrorFrame,
    UnknownFrame,
]

KNOWN_EVENTS: frozenset[str] = frozenset(
    {
        "message",
        "agent_message",
        "text_chunk",
        "message_end",
        "workflow_finished",
        "agent_thought",
        "ping",
        "error",
    }
)

_KNOWN_FRAME_ADAPTER: TypeAdapter[Any] = TypeAdapter(KnownFrame)


def parse_frame(payload: Dict[str, Any]) -> BackendFrame:
    """Validate a decoded JSON object into its frame variant.

    Raises ``pydantic.ValidationError`` when a known event carries fields of
    the wrong shape. ``error`` events are the exception: they always come
    back as an ``ErrorFrame``.
    """

    event = payload.get("event")
    if not isinstance(event, str) or event not in KNOWN_EVENTS:
        return UnknownFrame.model_validate({**payload, "event": str(event)})
    try:
        return _KNOWN_FRAME_ADAPTER.validate_python(payload)
    except ValidationError:
        if event != "error":
            raise
        # an error report is never dropped, whatever else it carries
        return ErrorFrame(
            event="error",
            code=payload.get("code"),
            message=payload.get("message"),
            status=payload.get("status"),
        )


class BackendQuery(BaseModel):
    """Request body for ``POST /chat-messages``."""

    query: str
    files: List[Dict[str, Any]] = Field(default_factory=list)
    user: str
    conversation_id: str = ""
    inputs: Dict[str, Any] = Field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "inputs": dict(self.inputs),
            "query": self.query,
            "response_mode": "streaming",
            "conversation_id": self.conversation_id,
            "user": self.user,
            "auto_generate_name": False,
            "files": list(self.files),
        }


__all__ = [
    "AgentThoughtFrame",
    "BackendFrame",
    "BackendQuery",
    "ErrorFrame",
    "FrameMetadata",
    "KNOWN_EVENTS",
    "MessageEndFrame",
    "MessageFrame",
    "PingFrame",
    "TextChunkFrame",
    "UnknownFrame",
    "UsageCounters",
    "WorkflowFinishedFrame",
    "parse_frame",
]
