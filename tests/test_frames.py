"""Frame reassembly tests for the Dify SSE byte stream."""

from __future__ import annotations

from typing import AsyncIterator, Iterable

import pytest

from difybridge.adapter.events import ContentDelta, Finished, UsageReport, classify
from difybridge.adapter.frames import (
    FrameReassembler,
    decode_frame,
    decode_line,
    iter_frames,
)
from difybridge.schemas.dify import MessageFrame, UnknownFrame

STREAM = (
    'data: {"event": "message", "answer": "Hé"}\n'
    "event: ping\n"
    "\n"
    "data: not json at all\n"
    ': keep-alive comment\n'
    'data:{"event": "message", "answer": "llo 🌍"}\n'
    'data: {"event": "message_end", "metadata": {"usage": '
    '{"prompt_tokens": 5, "completion_tokens": 2, "total_tokens": 7}}}\n'
).encode("utf-8")


async def _iterate(chunks: Iterable[bytes]) -> AsyncIterator[bytes]:
    for chunk in chunks:
        yield chunk


async def _events(chunks: Iterable[bytes]) -> list:
    events = []
    async for frame in iter_frames(_iterate(chunks)):
        events.extend(classify(frame, streaming=False))
    return events


@pytest.mark.asyncio
async def test_stream_decodes_into_expected_events():
    events = await _events([STREAM])

    assert events == [
        ContentDelta("Hé"),
        ContentDelta("llo 🌍"),
        UsageReport(prompt_tokens=5, completion_tokens=2, total_tokens=7),
        Finished(),
    ]


@pytest.mark.asyncio
async def test_events_do_not_depend_on_chunk_boundaries():
    expected = await _events([STREAM])

    for offset in range(len(STREAM) + 1):
        split = [STREAM[:offset], STREAM[offset:]]
        assert await _events(split) == expected, f"split at byte {offset}"


@pytest.mark.asyncio
async def test_byte_by_byte_delivery_matches_single_chunk():
    single_bytes = [STREAM[i : i + 1] for i in range(len(STREAM))]

    assert await _events(single_bytes) == await _events([STREAM])


@pytest.mark.asyncio
async def test_malformed_line_does_not_stop_following_frames():
    raw = (
        b'data: {"event": "message", "answer": "a"\n'
        b'data: {"event": "message", "answer": "b"}\n'
    )

    assert await _events([raw]) == [ContentDelta("b")]


@pytest.mark.asyncio
async def test_frame_with_wrong_field_types_is_skipped():
    raw = (
        b'data: {"event": "message", "answer": {"nested": true}}\n'
        b'data: {"event": "message", "answer": "ok"}\n'
    )

    assert await _events([raw]) == [ContentDelta("ok")]


@pytest.mark.asyncio
async def test_unterminated_trailing_fragment_is_discarded():
    raw = (
        b'data: {"event": "message", "answer": "kept"}\n'
        b'data: {"event": "message", "answer": "lost"}'
    )
    reassembler = FrameReassembler()

    frames = [frame async for frame in iter_frames(_iterate([raw]), reassembler)]

    assert [frame.answer for frame in frames] == ["kept"]
    assert reassembler.buffer == b""


def test_reassembler_keeps_partial_line_until_terminated():
    reassembler = FrameReassembler()

    assert reassembler.feed(b"data: {\"event\"") == []
    assert reassembler.buffer == b'data: {"event"'
    assert reassembler.feed(b': "ping"}\r\nnext') == ['data: {"event": "ping"}\r']
    assert reassembler.buffer == b"next"
    assert reassembler.close() == b"next"
    assert reassembler.buffer == b""


def test_reassembler_joins_split_multibyte_character():
    encoded = "data: ü\n".encode("utf-8")
    cut = encoded.index(b"\xc3") + 1
    reassembler = FrameReassembler()

    assert reassembler.feed(encoded[:cut]) == []
    assert reassembler.feed(encoded[cut:]) == ["data: ü"]


def test_decode_line_requires_data_prefix():
    assert decode_line('{"event": "ping"}') is None
    assert decode_line("   ") is None
    assert decode_line("data: [DONE]") is None
    assert decode_line("data: [1, 2]") is None
    assert decode_line('  data: {"event": "ping"}  ') == {"event": "ping"}


def test_decode_frame_maps_unknown_events():
    frame = decode_frame('data: {"event": "node_started", "data": {}}')

    assert isinstance(frame, UnknownFrame)
    assert frame.event == "node_started"


def test_decode_frame_reads_created_at():
    frame = decode_frame(
        'data: {"event": "agent_message", "answer": "x", "created_at": 1700000000}'
    )

    assert isinstance(frame, MessageFrame)
    assert frame.created_at == 1700000000
