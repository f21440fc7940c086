"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Chat message models exchanged with the chat UI.

Field aliases follow the UI's camelCase wire JSON (``toolInvocation``,
``toolCallId``) so request bodies can be validated directly.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ToolInvocation(_WireModel):
    """
    A tool call proposed by the model and tracked through approval.

    Attributes:
        state: UI lifecycle state (``partial-call``, ``call`` or ``result``).
        tool_call_id: Identifier of the call.
        tool_name: Name of the tool in the merged namespace.
        args: Arguments proposed by the model.
        result: Approval outcome recorded by the UI, then the tool result.
    """

    state: str = "call"
    tool_call_id: str = Field(alias="toolCallId")
    tool_name: str = Field(alias="toolName")
    args: dict[str, Any] = Field(default_factory=dict)
    result: Any = None
    step: int | None = None


class ToolCall(_WireModel):
    """Tool call as emitted by the model step, before any UI interaction."""

    type: Literal["tool-call"] = "tool-call"
    tool_call_id: str = Field(alias="toolCallId")
    tool_name: str = Field(alias="toolName")
    args: dict[str, Any] = Field(default_factory=dict)


class TextPart(_WireModel):
    type: Literal["text"] = "text"
    text: str = ""


class ToolInvocationPart(_WireModel):
    type: Literal["tool-invocation"] = "tool-invocation"
    tool_invocation: ToolInvocation = Field(alias="toolInvocation")


class OtherPart(_WireModel):
    """Any part kind this package passes through untouched."""

    type: str


def _part_kind(value: Any) -> str:
    kind = value.get("type") if isinstance(value, dict) else getattr(value, "type", None)
    if kind in ("text", "tool-invocation"):
        return kind
    return "other"


MessagePart = Annotated[
    Union[
        Annotated[TextPart, Tag("text")],
        Annotated[ToolInvocationPart, Tag("tool-invocation")],
        Annotated[OtherPart, Tag("other")],
    ],
    Discriminator(_part_kind),
]


class Message(_WireModel):
    """One conversation message with its structured parts."""

    id: str
    role: Literal["system", "user", "assistant", "data"]
    content: str = ""
    parts: list[MessagePart] | None = None
