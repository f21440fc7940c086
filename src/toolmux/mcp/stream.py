"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Output sink for tool results and annotations sent back to the chat UI.

Parts use the AI data stream line format: ``<code>:<json>\\n``.
"""

from __future__ import annotations

import json
from typing import Any, Literal, Protocol

DataStreamPartType = Literal[
    "text",
    "data",
    "error",
    "message_annotations",
    "tool_call",
    "tool_result",
]

DATA_STREAM_CODES: dict[str, str] = {
    "text": "0",
    "data": "2",
    "error": "3",
    "message_annotations": "8",
    "tool_call": "9",
    "tool_result": "a",
}
_CODES_TO_TYPES = {code: kind for kind, code in DATA_STREAM_CODES.items()}


def format_data_stream_part(kind: DataStreamPartType, value: Any) -> str:
    """Encode one data stream part as a newline-terminated line."""
    try:
        code = DATA_STREAM_CODES[kind]
    except KeyError as e:
        raise ValueError(f"Unknown data stream part type: {kind}") from e
    return f"{code}:{json.dumps(value, separators=(',', ':'), default=str)}\n"


def parse_data_stream_part(line: str) -> tuple[str, Any]:
    """Decode one line produced by ``format_data_stream_part``."""
    code, sep, payload = line.rstrip("\n").partition(":")
    if not sep or code not in _CODES_TO_TYPES:
        raise ValueError(f"Invalid data stream part: {line!r}")
    return _CODES_TO_TYPES[code], json.loads(payload)


class DataStreamWriter(Protocol):
    """Sink the invocation processing writes events into."""

    def write(self, data: str) -> None:
        """Write one formatted data stream part."""
        ...

    def write_message_annotation(self, annotation: dict[str, Any]) -> None:
        """Attach an annotation to the message currently being streamed."""
        ...


class DataStreamBuffer:
    """In-memory ``DataStreamWriter`` collecting every written part."""

    def __init__(self) -> None:
        self.parts: list[str] = []

    def write(self, data: str) -> None:
        self.parts.append(data)

    def write_message_annotation(self, annotation: dict[str, Any]) -> None:
        self.parts.append(format_data_stream_part("message_annotations", [annotation]))

    def events(self) -> list[tuple[str, Any]]:
        return [parse_data_stream_part(part) for part in self.parts]

    def annotations(self) -> list[dict[str, Any]]:
        out: list[dict[str, Any]] = []
        for kind, value in self.events():
            if kind == "message_annotations":
                out.extend(value)
        return out

    def tool_results(self) -> list[dict[str, Any]]:
        return [value for kind, value in self.events() if kind == "tool_result"]

    def getvalue(self) -> str:
        return "".join(self.parts)
