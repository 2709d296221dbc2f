"""Gemini request -> chat-completions ``messages`` and ``tools``.

Only text and function-call/response parts translate faithfully. Any other
part is serialized as compact JSON and sent as text.
"""

from __future__ import annotations

from dataclasses import dataclass
import json
from typing import TYPE_CHECKING, Any
import uuid

from google.genai import types

from castor.providers.models import ChatMessage, ChatPayload, ChatTool

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

_EMPTY_PARAMETERS: dict[str, Any] = {"type": "object", "properties": {}}

# Roles that may carry function responses back to the model.
_TOOL_RESULT_ROLES = frozenset({"user", "function", "tool"})


@dataclass(frozen=True)
class GenerationRequest:
    """A generation request, normalized once at the boundary.

    Use :meth:`create` to build one from the shapes the Gemini SDK accepts.
    """

    contents: tuple[types.Content, ...]
    model: str | None = None
    #: Flattened system instruction text, or ``None`` when absent or empty.
    system_instruction: str | None = None
    function_declarations: tuple[types.FunctionDeclaration, ...] = ()

    @classmethod
    def create(
        cls,
        contents: Any,
        *,
        model: str | None = None,
        config: types.GenerateContentConfig | dict[str, Any] | None = None,
    ) -> GenerationRequest:
        """Normalize contents, system instruction and tool declarations.

        Args:
            contents: A string, a ``Content``, a dict in Content form, or a
                sequence of Contents/dicts. Entries that are not contents are
                dropped.
            model: The model requested by the caller.
            config: ``GenerateContentConfig`` (or its dict form) carrying
                ``system_instruction`` and ``tools``.
        """
        if isinstance(config, dict):
            config = types.GenerateContentConfig.model_validate(config)

        system_instruction: str | None = None
        declarations: list[types.FunctionDeclaration] = []
        if config is not None:
            system_instruction = normalize_system_instruction(config.system_instruction)
            for tool in config.tools or ():
                if isinstance(tool, types.Tool):
                    declarations.extend(tool.function_declarations or ())

        return cls(
            contents=tuple(_normalize_contents(contents)),
            model=model,
            system_instruction=system_instruction,
            function_declarations=tuple(declarations),
        )


def _normalize_contents(contents: Any) -> Iterable[types.Content]:
    if isinstance(contents, str):
        yield types.Content(role="user", parts=[types.Part(text=contents)])
        return
    items = contents if isinstance(contents, (list, tuple)) else [contents]
    for item in items:
        if isinstance(item, types.Content):
            yield item
        elif isinstance(item, dict) and "role" in item and "parts" in item:
            yield types.Content.model_validate(item)


# =============================================================================
# Part flattening
# =============================================================================


def part_to_text(part: Any) -> str:
    """Return a part's text, or a minimal JSON rendering of a non-text part."""
    if isinstance(part, str):
        return part
    if isinstance(part, types.Part):
        if isinstance(part.text, str):
            return part.text
        return part.model_dump_json(exclude_none=True)
    if isinstance(part, dict):
        text = part.get("text")
        if isinstance(text, str):
            return text
    return json.dumps(part, default=str, separators=(",", ":"))


def flatten_parts(parts: Sequence[Any] | None) -> str:
    if not parts:
        return ""
    return "".join(part_to_text(p) for p in parts)


def normalize_system_instruction(value: Any) -> str | None:
    """Flatten any accepted system-instruction shape to plain text.

    Accepted shapes: a string, a content object with ``parts``, a single
    part, or a sequence of parts (dict forms included). Recognized shapes
    without text, and anything unrecognized, yield ``None``.
    """
    text: str | None = None
    if isinstance(value, str):
        text = value
    elif isinstance(value, types.Content):
        text = flatten_parts(value.parts)
    elif isinstance(value, types.Part):
        text = value.text
    elif isinstance(value, dict):
        if isinstance(value.get("parts"), list):
            text = flatten_parts(value["parts"])
        elif isinstance(value.get("text"), str):
            text = value["text"]
    elif isinstance(value, (list, tuple)):
        text = flatten_parts(value)
    return text or None


# =============================================================================
# Messages and tools
# =============================================================================


def build_chat_messages(request: GenerationRequest) -> ChatPayload:
    """Translate a request into ordered chat messages plus optional tools."""
    messages: list[ChatMessage] = []
    if request.system_instruction:
        messages.append(ChatMessage(role="system", content=request.system_instruction))

    for content in request.contents:
        parts = content.parts or []
        if content.role == "model":
            # Earlier function calls are not replayed as tool_calls.
            text = flatten_parts(parts)
            if text:
                messages.append(ChatMessage(role="assistant", content=text))
            continue

        # Tool results travel as user turns carrying function responses.
        responses = [p.function_response for p in parts if p.function_response]
        role = content.role or "user"
        if role in _TOOL_RESULT_ROLES and responses:
            messages.extend(_tool_message(fr) for fr in responses)
            continue

        # Unknown roles are sent as user text.
        messages.append(ChatMessage(role="user", content=flatten_parts(parts)))

    return ChatPayload(
        messages=messages,
        tools=convert_function_declarations(request.function_declarations),
    )


def _tool_message(response: types.FunctionResponse) -> ChatMessage:
    call_id = response.id or f"{response.name or 'tool'}_{uuid.uuid4().hex[:12]}"
    payload = response.response or {}
    output = payload.get("output")
    if isinstance(output, str):
        content = output
    else:
        content = json.dumps(payload, default=str, separators=(",", ":"))
    return ChatMessage(role="tool", content=content, tool_call_id=call_id)


def convert_function_declarations(
    declarations: Iterable[types.FunctionDeclaration] | None,
) -> list[ChatTool] | None:
    """Translate declarations 1:1, skipping nameless ones; empty means ``None``."""
    tools: list[ChatTool] = []
    for decl in declarations or ():
        if not decl.name:
            continue
        tools.append(
            ChatTool(
                name=decl.name,
                description=decl.description,
                parameters=_declaration_parameters(decl),
            )
        )
    return tools or None


def _declaration_parameters(decl: types.FunctionDeclaration) -> dict[str, Any]:
    json_schema = getattr(decl, "parameters_json_schema", None)
    if isinstance(json_schema, dict):
        return json_schema
    if decl.parameters is not None:
        schema = decl.parameters.model_dump(mode="json", exclude_none=True)
        return to_json_schema(schema)
    return dict(_EMPTY_PARAMETERS)


def to_json_schema(schema: dict[str, Any]) -> dict[str, Any]:
    """Lower-case Gemini ``Schema`` type names (``OBJECT`` -> ``object``).

    Chat-completions backends validate tool parameters as standard JSON
    Schema, which only knows lower-case type names.
    """

    def walk(node: Any) -> Any:
        if isinstance(node, list):
            return [walk(item) for item in node]
        if not isinstance(node, dict):
            return node

        updated: dict[str, Any] = {}
        for key, value in node.items():
            updated[key] = walk(value)

        type_name = updated.get("type")
        if isinstance(type_name, str):
            updated["type"] = type_name.lower()

        return updated

    result = walk(schema)
    if not isinstance(result, dict):
        return dict(_EMPTY_PARAMETERS)
    return result
