"""
Type aliases shared across the Keel engine.
"""

from typing import Any, Awaitable, Callable, TypeAlias

# Wire-format message as sent to an OpenAI-compatible endpoint
MessageDict: TypeAlias = dict[str, Any]

# Decoded JSON object carried by one SSE data line
FramePayload: TypeAlias = dict[str, Any]

# Opaque function-tool schemas forwarded to the model
ToolSchemas: TypeAlias = list[dict[str, Any]]

# Handler used by FunctionToolExecutor; may be sync or async
ToolHandler: TypeAlias = Callable[[dict[str, Any]], str | Awaitable[str]]
