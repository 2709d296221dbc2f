"""Shared provider-side error helpers.

Upstream failures become APIError subclasses carrying the status code and
retry metadata.
"""

from __future__ import annotations

import asyncio

import httpx

from castor._http import RETRYABLE_STATUS_CODES
from castor.errors import (
    APIError,
    CastorError,
    RateLimitError,
    UpstreamHTTPError,
    _walk_exception_chain,
)


def extract_status_code(exc: BaseException) -> int | None:
    """Walk the exception chain to find an HTTP status code."""
    for e in _walk_exception_chain(exc):
        for attr in ("status_code", "status"):
            value = getattr(e, attr, None)
            if isinstance(value, int) and 100 <= value <= 599:
                return value
        response = getattr(e, "response", None)
        value = getattr(response, "status_code", None)
        if isinstance(value, int) and 100 <= value <= 599:
            return value
    return None


def _auth_hint(status_code: int | None, api_key_env: str | None) -> str | None:
    """Generate a hint for auth errors where naming the env var is useful."""
    if status_code in {401, 403}:
        env_var = api_key_env or "the provider API key"
        return f"Check credentials/permissions (try setting {env_var})."
    return None


async def raise_for_upstream_status(
    response: httpx.Response,
    *,
    provider: str,
    phase: str,
    api_key_env: str | None = None,
) -> None:
    """Raise UpstreamHTTPError for a non-2xx response, body included verbatim."""
    if response.is_success:
        return

    try:
        await response.aread()
        body = response.text
    except asyncio.CancelledError:
        raise
    except httpx.HTTPError:
        body = ""

    status = response.status_code
    reason = response.reason_phrase
    err_cls: type[UpstreamHTTPError] = (
        RateLimitError if status == 429 else UpstreamHTTPError
    )
    raise err_cls(
        f"{provider} API error ({status} {reason}): {body}",
        status_code=status,
        status_text=reason,
        body=body,
        hint=_auth_hint(status, api_key_env),
        retryable=status in RETRYABLE_STATUS_CODES,
        provider=provider,
        phase=phase,
    )


def wrap_provider_error(
    exc: BaseException,
    *,
    provider: str,
    phase: str,
    allow_network_errors: bool,
    message: str | None = None,
    hint: str | None = None,
) -> CastorError:
    """Map transport exceptions into APIError with stable retry metadata.

    castor's own errors pass through untouched (an APIError only gains
    missing context). Task cancellation is never wrapped.
    """
    if isinstance(exc, asyncio.CancelledError):
        raise exc

    if isinstance(exc, APIError):
        if exc.provider is None:
            exc.provider = provider
        if exc.phase is None:
            exc.phase = phase
        if hint is not None and exc.hint is None:
            exc.hint = hint
        return exc

    if isinstance(exc, CastorError):
        return exc

    status_code = extract_status_code(exc)

    retryable = False
    if isinstance(status_code, int) and status_code in RETRYABLE_STATUS_CODES:
        retryable = True
    elif allow_network_errors:
        for e in _walk_exception_chain(exc):
            if isinstance(e, (httpx.TimeoutException, httpx.RequestError)):
                retryable = True
                break

    msg = message or f"{provider} {phase} failed"
    status_note = f" (status={status_code})" if isinstance(status_code, int) else ""
    cause = str(exc)
    return APIError(
        f"{msg}{status_note}: {cause}" if cause else f"{msg}{status_note}",
        hint=hint,
        retryable=retryable,
        status_code=status_code,
        provider=provider,
        phase=phase,
    )
