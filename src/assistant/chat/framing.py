"""Incremental parsing of `data:` framed Server-Sent Events.

Frames are blocks of text terminated by a blank line (``"\\n\\n"``). A chunk
read from the network may end anywhere, so :func:`parse_chunk` only emits
frames whose terminator has been observed and hands the rest back as a
carry-over buffer for the next call.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Iterable, Union

FRAME_TERMINATOR = "\n\n"
DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"


@dataclass(frozen=True)
class ContentEvent:
    content: str


@dataclass(frozen=True)
class DoneEvent:
    title: str | None = None


StreamEvent = Union[ContentEvent, DoneEvent]


@dataclass
class ChunkParseResult:
    events: list[StreamEvent] = field(default_factory=list)
    remaining_buffer: str = ""


def parse_chunk(chunk: str, buffer: str = "") -> ChunkParseResult:
    """Split ``buffer + chunk`` into complete frames and interpret each one."""

    frames = f"{buffer}{chunk}".split(FRAME_TERMINATOR)
    remaining = frames.pop()

    events: list[StreamEvent] = []
    for frame in frames:
        payload = _extract_payload(frame)
        if payload is None:
            continue
        event = interpret_payload(payload)
        if event is not None:
            events.append(event)

    return ChunkParseResult(events=events, remaining_buffer=remaining)


def flush_buffer(buffer: str) -> ChunkParseResult:
    """Treat the terminator as present once the byte stream has ended."""

    if not buffer.strip():
        return ChunkParseResult()
    return parse_chunk(FRAME_TERMINATOR, buffer)


def _extract_payload(frame: str) -> str | None:
    for line in frame.split("\n"):
        if line.startswith(DATA_PREFIX):
            return line[len(DATA_PREFIX) :].strip()
    return None


def interpret_payload(payload: str) -> StreamEvent | None:
    """Classify a single trimmed ``data:`` payload.

    Payloads that are not JSON are surfaced as literal content rather than
    dropped; some upstreams send plain text frames.
    """

    if not payload:
        return None

    if payload == DONE_SENTINEL:
        return DoneEvent()

    try:
        parsed = json.loads(payload)
    except ValueError:
        return ContentEvent(payload)

    if not isinstance(parsed, dict):
        return None

    if parsed.get("type") == "done":
        title = parsed.get("title")
        return DoneEvent(title if isinstance(title, str) and title else None)

    content = parsed.get("content")
    if isinstance(content, str) and content:
        return ContentEvent(content)

    return None


def append_content(previous: str, delta: str) -> str:
    return f"{previous}{delta}"


def accumulate(events: Iterable[StreamEvent], initial: str = "") -> str:
    """Fold content events, in order, onto ``initial``."""

    text = initial
    for event in events:
        if isinstance(event, ContentEvent):
            text = append_content(text, event.content)
    return text


def content_data(content: str) -> str:
    """JSON payload for a content frame."""

    return json.dumps({"type": "content", "content": content})


def done_data(title: str | None = None) -> str:
    payload: dict[str, str] = {"type": "done"}
    if title:
        payload["title"] = title
    return json.dumps(payload)


__all__ = [
    "ChunkParseResult",
    "ContentEvent",
    "DATA_PREFIX",
    "DONE_SENTINEL",
    "DoneEvent",
    "FRAME_TERMINATOR",
    "StreamEvent",
    "accumulate",
    "append_content",
    "content_data",
    "done_data",
    "flush_buffer",
    "interpret_payload",
    "parse_chunk",
]
