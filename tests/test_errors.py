from __future__ import annotations

import asyncio

import httpx
import pytest

from castor.errors import (
    APIError,
    CastorError,
    ConfigurationError,
    MissingCredentialError,
    ProviderInactiveError,
    RateLimitError,
    UpstreamHTTPError,
)
from castor.providers._errors import (
    extract_status_code,
    raise_for_upstream_status,
    wrap_provider_error,
)

pytestmark = pytest.mark.unit


def test_api_error_structured_metadata() -> None:
    err = APIError(
        "boom",
        hint="do this",
        retryable=True,
        status_code=503,
        provider="DeepSeek",
        phase="generate",
    )

    assert str(err) == "boom"
    assert err.hint == "do this"
    assert err.retryable is True
    assert err.status_code == 503
    assert err.provider == "DeepSeek"
    assert err.phase == "generate"


def test_api_error_defaults_to_none() -> None:
    err = APIError("fail")
    assert err.hint is None
    assert err.retryable is None
    assert err.status_code is None
    assert err.provider is None
    assert err.phase is None


def test_subclass_hierarchy() -> None:
    """Upstream and configuration errors are catchable via their bases."""
    rate_err = RateLimitError("slow down", status_code=429, retryable=True)
    inactive = ProviderInactiveError("inactive")
    missing = MissingCredentialError("no key", env_var="DEEPSEEK_API_KEY")

    assert isinstance(rate_err, UpstreamHTTPError)
    assert isinstance(rate_err, APIError)
    assert isinstance(rate_err, CastorError)
    assert isinstance(inactive, ConfigurationError)
    assert isinstance(missing, ConfigurationError)
    assert missing.status_code == 401


def test_upstream_error_keeps_status_text_and_body() -> None:
    err = UpstreamHTTPError(
        "DeepSeek API error (402 Payment Required): {}",
        status_code=402,
        status_text="Payment Required",
        body="{}",
    )
    assert err.status_code == 402
    assert err.status_text == "Payment Required"
    assert err.body == "{}"


# =============================================================================
# Upstream status mapping
# =============================================================================


def _response(status: int, body: str) -> httpx.Response:
    return httpx.Response(
        status,
        text=body,
        request=httpx.Request("POST", "https://api.deepseek.test/chat/completions"),
    )


@pytest.mark.asyncio
async def test_raise_for_upstream_status_passes_success_through() -> None:
    await raise_for_upstream_status(
        _response(200, "{}"), provider="DeepSeek", phase="generate"
    )


@pytest.mark.asyncio
async def test_raise_for_upstream_status_includes_body_verbatim() -> None:
    body = '{"error":{"message":"Insufficient Balance"}}'

    with pytest.raises(UpstreamHTTPError) as exc:
        await raise_for_upstream_status(
            _response(402, body), provider="DeepSeek", phase="generate"
        )

    err = exc.value
    assert str(err) == f"DeepSeek API error (402 Payment Required): {body}"
    assert err.body == body
    assert err.status_code == 402
    assert err.status_text == "Payment Required"
    assert err.retryable is False
    assert err.provider == "DeepSeek"
    assert err.phase == "generate"


@pytest.mark.asyncio
async def test_raise_for_upstream_status_maps_429_to_rate_limit() -> None:
    with pytest.raises(RateLimitError) as exc:
        await raise_for_upstream_status(
            _response(429, "busy"), provider="DeepSeek", phase="stream"
        )
    assert exc.value.retryable is True


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [401, 403])
async def test_auth_failures_hint_at_the_key_variable(status: int) -> None:
    with pytest.raises(UpstreamHTTPError) as exc:
        await raise_for_upstream_status(
            _response(status, "denied"),
            provider="DeepSeek",
            phase="generate",
            api_key_env="DEEPSEEK_API_KEY",
        )
    assert exc.value.hint is not None
    assert "DEEPSEEK_API_KEY" in exc.value.hint


# =============================================================================
# Transport error wrapping
# =============================================================================


def test_wrap_provider_error_marks_network_errors_retryable() -> None:
    request = httpx.Request("POST", "https://api.deepseek.test/chat/completions")
    exc = httpx.ConnectError("connection refused", request=request)

    err = wrap_provider_error(
        exc, provider="DeepSeek", phase="generate", allow_network_errors=True
    )

    assert isinstance(err, APIError)
    assert err.retryable is True
    assert err.status_code is None
    assert "connection refused" in str(err)


def test_wrap_provider_error_extracts_status_from_response_attribute() -> None:
    class _Resp:
        status_code = 503

    class _SdkError(Exception):
        def __init__(self) -> None:
            super().__init__("unavailable")
            self.response = _Resp()

    err = wrap_provider_error(
        _SdkError(), provider="DeepSeek", phase="generate", allow_network_errors=False
    )

    assert isinstance(err, APIError)
    assert err.status_code == 503
    assert err.retryable is True
    assert "503" in str(err)


def test_wrap_provider_error_enriches_existing_api_error_without_clobbering() -> None:
    base = APIError("bad request", retryable=False, status_code=400)
    wrapped = wrap_provider_error(
        base, provider="DeepSeek", phase="generate", allow_network_errors=True
    )

    assert wrapped is base
    assert wrapped.status_code == 400
    assert wrapped.retryable is False
    assert wrapped.provider == "DeepSeek"
    assert wrapped.phase == "generate"


def test_wrap_provider_error_never_wraps_cancellation() -> None:
    with pytest.raises(asyncio.CancelledError):
        wrap_provider_error(
            asyncio.CancelledError(),
            provider="DeepSeek",
            phase="generate",
            allow_network_errors=True,
        )


def test_extract_status_code_walks_cause_chain() -> None:
    class _Inner(Exception):
        status_code = 502

    try:
        try:
            raise _Inner("bad gateway")
        except _Inner as inner:
            raise RuntimeError("outer") from inner
    except RuntimeError as outer:
        assert extract_status_code(outer) == 502
