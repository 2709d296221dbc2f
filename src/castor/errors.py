"""Exception hierarchy for castor."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator


class CastorError(Exception):
    """Base exception for all castor errors."""

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.hint = hint


class ConfigurationError(CastorError):
    """Configuration validation or resolution failed."""


class ProviderInactiveError(ConfigurationError):
    """The chat-completions family is not the active provider."""


class MissingCredentialError(ConfigurationError):
    """No API key is available for the active provider family.

    Raised before any network call is attempted.
    """

    status_code = 401

    def __init__(
        self, message: str, *, hint: str | None = None, env_var: str | None = None
    ) -> None:
        super().__init__(message, hint=hint)
        self.env_var = env_var


class UnsupportedOperationError(CastorError):
    """The backend family does not offer this operation (token counting, embeddings)."""


class StreamProtocolError(CastorError):
    """A single stream frame could not be decoded.

    Only used inside the streaming engine: offending frames are skipped and
    this never reaches callers.
    """


class TransportAbortError(CastorError):
    """The caller aborted an in-flight request or stream."""


class APIError(CastorError):
    """API call failed.

    Carries retry metadata so callers can decide on bounded retries without
    brittle substring matching.
    """

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        retryable: bool | None = None,
        status_code: int | None = None,
        provider: str | None = None,
        phase: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.retryable = retryable
        self.status_code = status_code
        self.provider = provider
        self.phase = phase


class UpstreamHTTPError(APIError):
    """The backend answered with a non-2xx status.

    ``status_code``, ``status_text`` and ``body`` are the upstream values,
    verbatim, so callers can show the real cause.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int,
        status_text: str = "",
        body: str = "",
        hint: str | None = None,
        retryable: bool | None = None,
        provider: str | None = None,
        phase: str | None = None,
    ) -> None:
        super().__init__(
            message,
            hint=hint,
            retryable=retryable,
            status_code=status_code,
            provider=provider,
            phase=phase,
        )
        self.status_text = status_text
        self.body = body


class RateLimitError(UpstreamHTTPError):
    """Rate limit exceeded (HTTP 429)."""


def _walk_exception_chain(exc: BaseException) -> Iterator[BaseException]:
    """Yield *exc* and its ``__cause__``/``__context__`` chain, with cycle protection."""
    seen: set[int] = set()
    stack: list[BaseException] = [exc]
    while stack:
        cur = stack.pop()
        if id(cur) in seen:
            continue
        seen.add(id(cur))
        yield cur

        cause = cur.__cause__
        if isinstance(cause, BaseException):
            stack.append(cause)
        context = cur.__context__
        if isinstance(context, BaseException):
            stack.append(context)
