"""Content generator for DeepSeek and other OpenAI-compatible backends.

Requests arrive in Gemini shape, are translated to ``/chat/completions``
bodies, and responses are translated back, so the calling layer never sees
the foreign wire format.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

import httpx
from pydantic import ValidationError

from castor._http import CHAT_COMPLETIONS_PATH, DEFAULT_TIMEOUT_S
from castor.errors import (
    APIError,
    CastorError,
    ProviderInactiveError,
    UnsupportedOperationError,
)
from castor.providers._errors import raise_for_upstream_status, wrap_provider_error
from castor.providers._utils import await_or_abort, join_url
from castor.providers.base import GeneratorCapabilities
from castor.providers.chat_request import build_chat_messages
from castor.providers.chat_response import completion_to_response
from castor.providers.models import ChatCompletion
from castor.providers.streaming import ChunkStream

if TYPE_CHECKING:
    from google.genai import types

    from castor.config import ProviderConfig
    from castor.providers.chat_request import GenerationRequest

logger = logging.getLogger(__name__)


class DeepSeekContentGenerator:
    """Chat-completions generator behind the Gemini-shaped generator surface.

    Serves the DeepSeek and OpenAI-compatible provider kinds. The HTTP
    client is created lazily and owned by the generator unless one is
    injected, in which case :meth:`aclose` leaves it open.
    """

    def __init__(
        self,
        config: ProviderConfig,
        *,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT_S,
    ) -> None:
        """Initialize with a resolved provider config."""
        self.config = config
        self._timeout = timeout
        self._client = http_client
        self._owns_client = http_client is None

    def _get_client(self) -> httpx.AsyncClient:
        """Lazily initialize and return the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    @property
    def capabilities(self) -> GeneratorCapabilities:
        """Return supported feature flags."""
        return GeneratorCapabilities(
            streaming=True,
            tools=True,
            token_counting=False,
            embeddings=False,
        )

    def _prepare(
        self, request: GenerationRequest, call_id: str, *, stream: bool
    ) -> tuple[str, dict[str, str], dict[str, Any]]:
        """Check provider state and build the endpoint, headers and body.

        Raises before any I/O when the family is inactive or has no key.
        """
        config = self.config
        if not config.enabled:
            raise ProviderInactiveError(
                f"{config.label} is not a chat-completions provider.",
                hint="Select deepseek or openai_compatible as the provider.",
            )
        api_key = config.require_api_key()

        payload = build_chat_messages(request)
        body: dict[str, Any] = {
            "model": config.resolve_model(request.model),
            "messages": [m.to_wire() for m in payload.messages],
        }
        if payload.tools:
            body["tools"] = [t.to_wire() for t in payload.tools]
            body["tool_choice"] = "auto"
        if config.temperature is not None:
            body["temperature"] = config.temperature
        if stream:
            body["stream"] = True
        body["user"] = call_id

        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        logger.debug(
            "Dispatching chat completion: model=%s messages=%d tools=%d stream=%s",
            body["model"],
            len(payload.messages),
            len(payload.tools or ()),
            stream,
        )
        url = join_url(config.resolve_base_url(), CHAT_COMPLETIONS_PATH)
        return url, headers, body

    async def generate_content(
        self,
        request: GenerationRequest,
        call_id: str,
        *,
        abort: asyncio.Event | None = None,
    ) -> types.GenerateContentResponse:
        """Send one non-streaming request and translate the completion."""
        url, headers, body = self._prepare(request, call_id, stream=False)
        client = self._get_client()
        try:
            response = await await_or_abort(
                client.post(url, json=body, headers=headers), abort
            )
        except asyncio.CancelledError:
            raise
        except CastorError:
            raise
        except Exception as e:
            raise self._wrap(e, phase="generate") from e

        await raise_for_upstream_status(
            response,
            provider=self.config.label,
            phase="generate",
            api_key_env=self.config.api_key_env,
        )
        try:
            completion = ChatCompletion.model_validate_json(response.content)
        except ValidationError as e:
            raise APIError(
                f"{self.config.label} returned an unreadable completion body",
                hint=f"{e.error_count()} validation error(s)",
                status_code=response.status_code,
                provider=self.config.label,
                phase="generate",
            ) from e
        return completion_to_response(completion)

    async def generate_content_stream(
        self,
        request: GenerationRequest,
        call_id: str,
        *,
        abort: asyncio.Event | None = None,
    ) -> ChunkStream:
        """Open a streaming request; chunks are decoded as they are consumed."""
        url, headers, body = self._prepare(request, call_id, stream=True)
        client = self._get_client()
        http_request = client.build_request("POST", url, json=body, headers=headers)
        try:
            response = await await_or_abort(
                client.send(http_request, stream=True), abort
            )
        except asyncio.CancelledError:
            raise
        except CastorError:
            raise
        except Exception as e:
            raise self._wrap(e, phase="stream") from e

        try:
            await raise_for_upstream_status(
                response,
                provider=self.config.label,
                phase="stream",
                api_key_env=self.config.api_key_env,
            )
        except BaseException:
            await response.aclose()
            raise
        return ChunkStream(response, abort=abort, provider=self.config.label)

    async def count_tokens(self, request: Any) -> Any:
        """Raise because chat-completions backends expose no token counting."""
        _ = request
        raise UnsupportedOperationError(
            "countTokens is not supported for chat-completions providers",
            hint="Estimate locally or switch to a Gemini provider.",
        )

    async def embed_content(self, request: Any) -> Any:
        """Raise because embeddings are not served by this generator."""
        _ = request
        raise UnsupportedOperationError(
            "embedContent is not supported for chat-completions providers",
            hint="Use a Gemini provider for embeddings.",
        )

    def _wrap(self, exc: Exception, *, phase: str) -> CastorError:
        return wrap_provider_error(
            exc,
            provider=self.config.label,
            phase=phase,
            allow_network_errors=True,
            message=f"{self.config.label} request failed",
        )

    async def aclose(self) -> None:
        """Close the HTTP client when this generator created it."""
        client = self._client
        if client is None or not self._owns_client:
            return
        self._client = None
        await client.aclose()
