"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Approval-gated execution of tool invocations found in the latest message.

For each ``tool-invocation`` part of the last message:

* unknown tool or no recorded outcome -> part passes through unchanged
* ``ToolApproval.APPROVE`` -> the tool runs (connecting lazily if needed)
* ``ToolApproval.REJECT`` -> ``TOOL_EXECUTION_DENIED``, the tool never runs
* anything else -> part passes through unchanged

Every computed result is written to the data stream as a ``tool_result``
part before the updated part is built.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol, Sequence

from .messages import Message, MessagePart, ToolInvocationPart
from .stream import DataStreamWriter, format_data_stream_part
from .transport import MCPTool, ToolExecutionOptions
from .types import (
    TOOL_EXECUTION_DENIED,
    TOOL_EXECUTION_ERROR,
    TOOL_NO_EXECUTE_FUNCTION,
    ToolApproval,
)

logger = logging.getLogger("toolmux.mcp.invocations")


class ToolProvider(Protocol):
    """What invocation processing needs from the orchestration service."""

    def is_valid_tool_name(self, tool_name: str) -> bool:
        ...

    async def resolve_executable(self, tool_name: str) -> MCPTool | None:
        """Return the executable tool, materializing its server if needed."""
        ...


async def _run_tool(
    provider: ToolProvider,
    part: ToolInvocationPart,
    messages: Sequence[Message],
) -> Any:
    invocation = part.tool_invocation
    tool = await provider.resolve_executable(invocation.tool_name)
    if tool is None or tool.execute is None:
        logger.warning("Tool %s has no execute function", invocation.tool_name)
        return TOOL_NO_EXECUTE_FUNCTION

    logger.debug("Calling tool %r with args: %s", invocation.tool_name, invocation.args)
    try:
        result = await tool.execute(
            dict(invocation.args),
            ToolExecutionOptions(
                tool_call_id=invocation.tool_call_id,
                messages=list(messages),
            ),
        )
    except Exception:
        logger.exception('Error while calling tool "%s"', invocation.tool_name)
        return TOOL_EXECUTION_ERROR

    logger.debug("Tool %s execution result: %s", invocation.tool_name, result)
    return result


async def _process_part(
    provider: ToolProvider,
    part: MessagePart,
    messages: Sequence[Message],
    data_stream: DataStreamWriter,
) -> MessagePart:
    if not isinstance(part, ToolInvocationPart):
        return part

    invocation = part.tool_invocation
    if not provider.is_valid_tool_name(invocation.tool_name):
        return part

    outcome = invocation.result
    logger.debug(
        "Processing tool invocation for %s: state=%s, result=%s",
        invocation.tool_name,
        invocation.state,
        outcome,
    )
    if not outcome:
        return part

    if outcome == ToolApproval.APPROVE:
        result = await _run_tool(provider, part, messages)
    elif outcome == ToolApproval.REJECT:
        result = TOOL_EXECUTION_DENIED
    else:
        return part

    data_stream.write(
        format_data_stream_part(
            "tool_result",
            {"toolCallId": invocation.tool_call_id, "result": result},
        )
    )
    return part.model_copy(
        update={"tool_invocation": invocation.model_copy(update={"result": result})}
    )


async def process_tool_invocations(
    provider: ToolProvider,
    messages: Sequence[Message],
    data_stream: DataStreamWriter,
) -> list[Message]:
    """
    Resolve approved or rejected tool invocations in the last message.

    Earlier messages are returned as-is. Invocations are processed
    concurrently and reassembled in their original order.
    """
    if not messages:
        return list(messages)

    last_message = messages[-1]
    if not last_message.parts:
        return list(messages)

    processed = await asyncio.gather(
        *(
            _process_part(provider, part, messages, data_stream)
            for part in last_message.parts
        )
    )
    return [*messages[:-1], last_message.model_copy(update={"parts": list(processed)})]
