"""Protocol adapter between OpenAI chat requests and Dify streams."""

from .assembler import AggregateAssembler, ResponseStreamState, StreamingAssembler
from .frames import FrameReassembler, iter_frames

__all__ = [
    "AggregateAssembler",
    "FrameReassembler",
    "ResponseStreamState",
    "StreamingAssembler",
    "iter_frames",
]
