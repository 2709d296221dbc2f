"""Chat-completions responses -> Gemini ``GenerateContentResponse`` shapes."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from google.genai import types

from castor.providers.models import ToolCall, content_text

if TYPE_CHECKING:
    from collections.abc import Iterable

    from castor.providers.models import ChatCompletion, ChatUsage

#: Key holding tool arguments that were not a JSON object.
RAW_ARGUMENTS_KEY = "__raw"


def parse_tool_arguments(raw: str | None) -> dict[str, Any]:
    """Parse tool-call arguments; never raises.

    Empty input yields ``{}``. Text that is not a JSON object is kept verbatim
    under :data:`RAW_ARGUMENTS_KEY` so tool execution can still inspect it.
    """
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except ValueError:
        return {RAW_ARGUMENTS_KEY: raw}
    if not isinstance(parsed, dict):
        return {RAW_ARGUMENTS_KEY: raw}
    return parsed


def function_call_part(call: ToolCall) -> types.Part:
    return types.Part(
        function_call=types.FunctionCall(
            id=call.id,
            name=call.name,
            args=parse_tool_arguments(call.arguments),
        )
    )


def _model_content(parts: list[types.Part]) -> types.Content:
    return types.Content(role="model", parts=parts)


def text_chunk(text: str) -> types.GenerateContentResponse:
    """Streaming chunk carrying one text delta."""
    return types.GenerateContentResponse(
        candidates=[types.Candidate(content=_model_content([types.Part(text=text)]))]
    )


def tool_calls_chunk(calls: Iterable[ToolCall]) -> types.GenerateContentResponse:
    """Streaming chunk carrying every completed tool call, one part each."""
    parts = [function_call_part(call) for call in calls]
    return types.GenerateContentResponse(
        candidates=[types.Candidate(content=_model_content(parts))]
    )


def finish_reason(raw: str | None) -> types.FinishReason | str:
    """Upper-case the backend's finish reason; ``STOP`` when absent.

    Reasons Gemini also knows map onto ``FinishReason`` members; the rest
    (``TOOL_CALLS``, ``LENGTH``, ...) stay plain upper-case strings.
    """
    reason = (raw or "").upper() or "STOP"
    if reason in types.FinishReason.__members__:
        return types.FinishReason[reason]
    return reason


def usage_metadata(
    usage: ChatUsage | None,
) -> types.GenerateContentResponseUsageMetadata | None:
    """Copy usage through, but only when a total token count is present."""
    if usage is None or not isinstance(usage.total_tokens, int):
        return None
    return types.GenerateContentResponseUsageMetadata(
        prompt_token_count=usage.prompt_tokens,
        candidates_token_count=usage.completion_tokens,
        total_token_count=usage.total_tokens,
    )


def completion_to_response(completion: ChatCompletion) -> types.GenerateContentResponse:
    """Translate one non-streaming completion into a single-candidate response."""
    choice = completion.choices[0] if completion.choices else None
    message = choice.message if choice is not None else None

    parts: list[types.Part] = []
    if message is not None:
        text = content_text(message.content)
        if text:
            parts.append(types.Part(text=text))
        for idx, tc in enumerate(message.tool_calls or ()):
            function = tc.function
            call = ToolCall(
                id=tc.id or f"call_{idx}",
                name=(function.name if function else None) or "tool",
                arguments=(function.arguments if function else None) or "",
            )
            parts.append(function_call_part(call))

    # Backend-specific reasons are not FinishReason members; skip enum
    # validation so they survive as upper-case strings.
    candidate = types.Candidate.model_construct(
        content=_model_content(parts),
        finish_reason=finish_reason(choice.finish_reason if choice else None),
    )
    return types.GenerateContentResponse(
        candidates=[candidate],
        usage_metadata=usage_metadata(completion.usage),
    )
