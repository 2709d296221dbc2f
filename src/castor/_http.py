"""Small HTTP-related constants shared across castor.

This module is intentionally tiny to avoid circular imports and drift.
"""

from __future__ import annotations

# Statuses a caller may reasonably retry; attached to UpstreamHTTPError.retryable.
RETRYABLE_STATUS_CODES: frozenset[int] = frozenset({408, 409, 429, 500, 502, 503, 504})

# Chat-completions endpoint path, relative to the configured base URL.
CHAT_COMPLETIONS_PATH = "chat/completions"

# Terminal payload of an OpenAI-style event stream.
STREAM_DONE_SENTINEL = "[DONE]"

DEFAULT_TIMEOUT_S = 600.0
