"""Domain and wire models for the chat-completions transport layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict

ChatRole = Literal["system", "user", "assistant", "tool"]


# =============================================================================
# Values
# =============================================================================


@dataclass(frozen=True)
class ToolCall:
    """A tool call requested by the model; ``arguments`` is raw JSON text."""

    id: str
    name: str
    arguments: str


@dataclass(frozen=True)
class ChatMessage:
    """One role-tagged entry of the ``messages`` array."""

    role: ChatRole
    content: str = ""
    tool_call_id: str | None = None

    def to_wire(self) -> dict[str, Any]:
        wire: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_call_id is not None:
            wire["tool_call_id"] = self.tool_call_id
        return wire


@dataclass(frozen=True)
class ChatTool:
    """A function tool declaration in chat-completions form."""

    name: str
    parameters: dict[str, Any]
    description: str | None = None

    def to_wire(self) -> dict[str, Any]:
        function: dict[str, Any] = {"name": self.name}
        if self.description is not None:
            function["description"] = self.description
        function["parameters"] = self.parameters
        return {"type": "function", "function": function}


@dataclass(frozen=True)
class ChatPayload:
    """Translated request: ordered messages plus tools (``None`` when there are none)."""

    messages: list[ChatMessage]
    tools: list[ChatTool] | None = None


# =============================================================================
# Stream accumulation
# =============================================================================


@dataclass
class ToolCallAccumulator:
    """Partial tool call assembled from index-keyed stream deltas.

    ``id`` and ``name`` are filled once and never overwritten. Argument text
    arrives in arbitrary fragments and is only ever appended.
    """

    index: int
    id: str | None = None
    name: str | None = None
    fragments: list[str] = field(default_factory=list)

    def merge(self, delta: ToolCallDelta) -> None:
        if self.id is None and delta.id:
            self.id = delta.id
        function = delta.function
        if function is None:
            return
        if self.name is None and function.name:
            self.name = function.name
        if function.arguments:
            self.fragments.append(function.arguments)

    def to_tool_call(self) -> ToolCall:
        return ToolCall(
            id=self.id or f"call_{self.index}",
            name=self.name or "tool",
            arguments="".join(self.fragments),
        )


# =============================================================================
# Inbound wire models
# =============================================================================


class _WireModel(BaseModel):
    # Backends add vendor fields freely; keep them instead of failing.
    model_config = ConfigDict(extra="allow")


class ChatUsage(_WireModel):
    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None


class ChatFunction(_WireModel):
    name: str | None = None
    arguments: str | None = None


class ChatToolCall(_WireModel):
    id: str | None = None
    type: str | None = None
    function: ChatFunction | None = None


class ChatCompletionMessage(_WireModel):
    role: str | None = None
    #: Some compatible servers send a list of ``{"type": "text", ...}`` parts.
    content: str | list[Any] | None = None
    tool_calls: list[ChatToolCall] | None = None


class ChatChoice(_WireModel):
    index: int | None = None
    message: ChatCompletionMessage | None = None
    finish_reason: str | None = None


class ChatCompletion(_WireModel):
    """Non-streaming ``/chat/completions`` response body."""

    id: str | None = None
    model: str | None = None
    choices: list[ChatChoice] | None = None
    usage: ChatUsage | None = None


class FunctionDelta(_WireModel):
    name: str | None = None
    arguments: str | None = None


class ToolCallDelta(_WireModel):
    index: int | None = None
    id: str | None = None
    type: str | None = None
    function: FunctionDelta | None = None


class ChoiceDelta(_WireModel):
    role: str | None = None
    content: str | list[Any] | None = None
    tool_calls: list[ToolCallDelta] | None = None


class ChunkChoice(_WireModel):
    index: int | None = None
    delta: ChoiceDelta | None = None
    finish_reason: str | None = None


class ChatCompletionChunk(_WireModel):
    """One ``data:`` payload of a streaming response."""

    id: str | None = None
    model: str | None = None
    choices: list[ChunkChoice] | None = None
    usage: ChatUsage | None = None


def content_text(content: str | list[Any] | None) -> str:
    """Flatten message content to text."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    pieces: list[str] = []
    for item in content:
        if isinstance(item, str):
            pieces.append(item)
        elif isinstance(item, dict) and isinstance(item.get("text"), str):
            pieces.append(item["text"])
    return "".join(pieces)
