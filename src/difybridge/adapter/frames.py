"""Reassemble Dify's line-delimited SSE byte stream into frames."""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterable, AsyncIterator, Optional

from pydantic import ValidationError

from ..schemas.dify import BackendFrame, parse_frame

logger = logging.getLogger(__name__)


DATA_PREFIX = "data:"


class FrameReassembler:
    """Split arbitrary byte chunks into complete newline-terminated lines.

    Bytes after the last line feed stay in ``buffer`` until more data
    arrives. Lines are decoded only once complete, so a multi-byte UTF-8
    character split across two chunks is decoded intact.
    """

    def __init__(self) -> None:
        self.buffer = b""

    def feed(self, chunk: bytes) -> list[str]:
        if not chunk:
            return []
        self.buffer += chunk
        *complete, self.buffer = self.buffer.split(b"\n")
        return [line.decode("utf-8", errors="replace") for line in complete]

    def close(self) -> bytes:
        """Drop and return whatever never received a line terminator."""

        leftover, self.buffer = self.buffer, b""
        if leftover.strip():
            logger.debug(
                "Discarding %d unterminated trailing byte(s) from Dify stream",
                len(leftover),
            )
        return leftover


def decode_line(line: str) -> Optional[dict[str, Any]]:
    """Return the JSON object carried by one ``data:`` line, if any."""

    stripped = line.strip()
    if not stripped.startswith(DATA_PREFIX):
        return None
    body = stripped[len(DATA_PREFIX):].strip()
    if not body:
        return None
    try:
        payload = json.loads(body)
    except json.JSONDecodeError:
        logger.debug("Skipping undecodable Dify line: %.200s", body)
        return None
    if not isinstance(payload, dict):
        return None
    return payload


def decode_frame(line: str) -> Optional[BackendFrame]:
    payload = decode_line(line)
    if payload is None:
        return None
    try:
        return parse_frame(payload)
    except ValidationError as exc:
        logger.debug(
            "Skipping malformed %r frame: %s", payload.get("event"), exc.errors()
        )
        return None


async def iter_frames(
    chunks: AsyncIterable[bytes],
    reassembler: Optional[FrameReassembler] = None,
) -> AsyncIterator[BackendFrame]:
    """Yield decoded frames in the order their lines appear in ``chunks``."""

    reassembler = reassembler if reassembler is not None else FrameReassembler()
    async for chunk in chunks:
        for line in reassembler.feed(chunk):
            frame = decode_frame(line)
            if frame is not None:
                yield frame
    reassembler.close()


__all__ = [
    "DATA_PREFIX",
    "FrameReassembler",
    "decode_frame",
    "decode_line",
    "iter_frames",
]
