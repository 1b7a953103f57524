"""Pydantic models for OpenAI-style chat requests."""

from __future__ import annotations

from typing import Any, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict


class ChatMessage(BaseModel):
    """Represents a single chat message."""

    role: Literal["system", "user", "assistant", "tool"]
    content: Union[str, List[Any], None] = None
    name: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, extra="allow")


class ChatCompletionRequest(BaseModel):
    """Incoming chat completion request payload.

    Only ``model``, ``messages`` and ``stream`` influence the backend call;
    other OpenAI parameters are accepted so that stock clients work, then
    ignored.
    """

    model: Optional[str] = None
    messages: List[ChatMessage]
    stream: bool = False

    model_config = ConfigDict(populate_by_name=True, extra="allow")


__all__ = ["ChatMessage", "ChatCompletionRequest"]
