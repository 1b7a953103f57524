"""Flatten OpenAI chat requests into a single Dify query."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Sequence, Union

from ..errors import MalformedContent
from ..schemas.chat import ChatCompletionRequest, ChatMessage
from ..schemas.dify import BackendQuery
from .attachments import AttachmentResolver

logger = logging.getLogger(__name__)


HISTORY_TEMPLATE = (
    "Here is our talk history:\n'''\n{history}\n'''\n\nHere is my question:\n{question}"
)


@dataclass(frozen=True)
class TextPart:
    text: str


@dataclass(frozen=True)
class ImagePart:
    url: str


ContentPart = Union[TextPart, ImagePart]


def parse_content_part(raw: Any) -> ContentPart:
    """Interpret one OpenAI content part."""

    if not isinstance(raw, dict):
        raise MalformedContent("Content parts must be objects")

    part_type = raw.get("type")
    text = raw.get("text")
    if part_type in (None, "text") and isinstance(text, str):
        return TextPart(text)

    if part_type in (None, "image_url"):
        image = raw.get("image_url")
        if isinstance(image, dict):
            image = image.get("url")
        if isinstance(image, str) and image.strip():
            return ImagePart(image.strip())

    raise MalformedContent(
        f"Unsupported content part of type {part_type!r}: expected text or image_url"
    )


def flatten_text(content: Union[str, Sequence[Any], None]) -> str:
    """Return the text carried by ``content``, ignoring images."""

    if content is None:
        return ""
    if isinstance(content, str):
        return content
    fragments = [
        part.text
        for part in map(parse_content_part, content)
        if isinstance(part, TextPart)
    ]
    return "\n".join(fragments).strip()


def render_history(messages: Sequence[ChatMessage]) -> str:
    return "\n".join(
        f"{message.role}: {flatten_text(message.content)}" for message in messages
    )


async def build_backend_query(
    request: ChatCompletionRequest,
    resolver: AttachmentResolver,
    *,
    user: str,
) -> BackendQuery:
    """Build the Dify request for ``request``.

    The last message is the question; earlier messages are embedded in the
    query text as a transcript because Dify is called without a
    conversation id.
    """

    if not request.messages:
        raise MalformedContent("messages must not be empty")

    *earlier, active = request.messages
    files: list[dict[str, Any]] = []

    if isinstance(active.content, list):
        fragments: list[str] = []
        for part in map(parse_content_part, active.content):
            if isinstance(part, TextPart):
                fragments.append(part.text)
            else:
                attachment = await resolver.resolve(part.url, user=user)
                files.append(attachment.to_file())
        question = "\n".join(fragments).strip()
    else:
        question = active.content or ""

    history = render_history(earlier)
    query = (
        HISTORY_TEMPLATE.format(history=history, question=question)
        if history
        else question
    )

    logger.info(
        "Prepared Dify query from %d message(s) (last role %s, %d file(s))",
        len(request.messages),
        active.role,
        len(files),
    )
    return BackendQuery(query=query, files=files, user=user)


__all__ = [
    "ContentPart",
    "HISTORY_TEMPLATE",
    "ImagePart",
    "TextPart",
    "build_backend_query",
    "flatten_text",
    "parse_content_part",
    "render_history",
]
