"""Ordered output hand-off and vendor stream parsing."""

from agentrunner.streaming.accumulator import StreamAccumulator
from agentrunner.streaming.parsers import (
    PARSERS,
    ClaudeStreamParser,
    CopilotStreamParser,
    OpenCodeStreamParser,
    StreamParser,
)
from agentrunner.streaming.queue import OutputQueue, StreamLine, StreamPump, StreamSource

__all__ = [
    "PARSERS",
    "ClaudeStreamParser",
    "CopilotStreamParser",
    "OpenCodeStreamParser",
    "OutputQueue",
    "StreamAccumulator",
    "StreamLine",
    "StreamParser",
    "StreamPump",
    "StreamSource",
]
