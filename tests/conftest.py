"""Pytest configuration and fixtures.

Provides environment isolation, logging configuration, marker registration,
and a recording fake backend. Fixtures here are autouse unless noted.
"""

from __future__ import annotations

from contextlib import suppress
from dataclasses import dataclass, field
import json
import logging
import os
from typing import Any

import httpx
import pytest

from castor.config import ProviderConfig, ProviderKind

DEEPSEEK_TEST_KEY = "sk-test-deepseek"
DEEPSEEK_TEST_BASE_URL = "https://api.deepseek.test"

# =============================================================================
# Test Doubles
# =============================================================================


@dataclass
class FakeBackend:
    """Chat-completions backend stand-in built on ``httpx.MockTransport``.

    Records every request it receives so tests can assert on the exact body
    sent upstream, and on how many requests were issued at all.
    """

    status_code: int = 200
    json_body: dict[str, Any] | None = None
    #: Raw SSE body; when set the response streams these byte slices.
    stream_slices: list[bytes] | None = None
    #: Fail the stream with ``httpx.ReadError`` after the last slice.
    stream_fails: bool = False
    text_body: str | None = None
    requests: list[httpx.Request] = field(default_factory=list)
    streams: list[SliceStream] = field(default_factory=list)

    @property
    def last_body(self) -> dict[str, Any]:
        assert self.requests, "no request was issued"
        return json.loads(self.requests[-1].content)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.stream_slices is not None:
            stream_cls = BrokenStream if self.stream_fails else SliceStream
            stream = stream_cls(self.stream_slices)
            self.streams.append(stream)
            return httpx.Response(
                self.status_code,
                headers={"Content-Type": "text/event-stream"},
                stream=stream,
            )
        if self.text_body is not None:
            return httpx.Response(self.status_code, text=self.text_body)
        return httpx.Response(self.status_code, json=self.json_body or {})

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


class SliceStream(httpx.AsyncByteStream):
    """Async byte stream yielding pre-split slices.

    Records how many slices were handed out and whether it was closed.
    """

    def __init__(self, slices: list[bytes]) -> None:
        self._slices = slices
        self.reads = 0
        self.closed = False

    async def __aiter__(self):
        for piece in self._slices:
            self.reads += 1
            yield piece

    async def aclose(self) -> None:
        self.closed = True


class BrokenStream(SliceStream):
    """Slice stream whose transport fails with ``httpx.ReadError`` once drained."""

    async def __aiter__(self):
        async for piece in super().__aiter__():
            yield piece
        raise httpx.ReadError("connection reset by peer")


def sse(*frames: dict[str, Any] | str) -> bytes:
    """Encode frames as SSE ``data:`` lines (strings are sent verbatim)."""
    lines = []
    for frame in frames:
        payload = frame if isinstance(frame, str) else json.dumps(frame, ensure_ascii=False)
        lines.append(f"data: {payload}\n\n")
    return "".join(lines).encode("utf-8")


def delta_frame(
    *,
    content: str | None = None,
    tool_calls: list[dict[str, Any]] | None = None,
    finish_reason: str | None = None,
) -> dict[str, Any]:
    delta: dict[str, Any] = {}
    if content is not None:
        delta["content"] = content
    if tool_calls is not None:
        delta["tool_calls"] = tool_calls
    return {
        "id": "chatcmpl-1",
        "choices": [{"index": 0, "delta": delta, "finish_reason": finish_reason}],
    }


@pytest.fixture
def deepseek_config() -> ProviderConfig:
    """ProviderConfig for an active DeepSeek family with a key."""
    return ProviderConfig(
        kind=ProviderKind.DEEPSEEK,
        base_url=DEEPSEEK_TEST_BASE_URL,
        api_key=DEEPSEEK_TEST_KEY,
        api_key_env="DEEPSEEK_API_KEY",
    )


@pytest.fixture
def fake_backend() -> FakeBackend:
    return FakeBackend()


# =============================================================================
# Environment Isolation (Autouse)
# =============================================================================


@pytest.fixture(autouse=True)
def block_dotenv(request, monkeypatch):
    """Prevent python-dotenv from loading project .env files during tests.

    Opt-out: @pytest.mark.allow_dotenv
    """
    if request.node.get_closest_marker("allow_dotenv"):
        return
    with suppress(Exception):
        monkeypatch.setattr(
            "castor.config.load_dotenv", lambda *_args, **_kwargs: False
        )


@pytest.fixture(autouse=True)
def isolate_provider_env(request, monkeypatch):
    """Ensure a clean provider environment for each test.

    Clears CASTOR_*, DEEPSEEK_*, OPENAI_COMPAT_* and GEMINI_* env vars.
    Opt-out: @pytest.mark.allow_env_pollution
    """
    if request.node.get_closest_marker("allow_env_pollution"):
        return

    for key in list(os.environ.keys()):
        if key.startswith(("CASTOR_", "DEEPSEEK_", "OPENAI_COMPAT_", "GEMINI_")):
            monkeypatch.delenv(key, raising=False)


# =============================================================================
# Logging
# =============================================================================


@pytest.fixture(scope="session", autouse=True)
def quiet_noisy_libraries():
    """Suppress noisy third-party loggers."""
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


# =============================================================================
# Pytest Hooks
# =============================================================================

API_TESTS_REASON = "API tests require ENABLE_API_TESTS=1"


def pytest_collection_modifyitems(items):
    """Automatically skip API tests when not explicitly enabled."""
    if os.getenv("ENABLE_API_TESTS"):
        return
    skip_api = pytest.mark.skip(reason=API_TESTS_REASON)
    for item in items:
        if "api" in item.keywords:
            item.add_marker(skip_api)
