"""Castor: Gemini-shaped generation over OpenAI-style chat-completions backends.

Public API:
    - resolve_provider_config(): Resolve the active provider once
    - get_content_generator(): Build the generator for that provider
    - GenerationRequest: Normalized Gemini-shaped request
    - ChunkStream: Cancellable stream of response chunks
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from castor.config import (
    OpenAICompatSettings,
    ProviderConfig,
    ProviderKind,
    resolve_provider_config,
)
from castor.credentials import ApiKeyStore, CredentialStore, InMemoryCredentialStore
from castor.errors import (
    APIError,
    CastorError,
    ConfigurationError,
    MissingCredentialError,
    ProviderInactiveError,
    RateLimitError,
    TransportAbortError,
    UnsupportedOperationError,
    UpstreamHTTPError,
)
from castor.providers.chat_request import GenerationRequest
from castor.providers.streaming import ChunkStream

if TYPE_CHECKING:
    import httpx

    from castor.providers.base import ContentGenerator

try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("castor")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"

# Library-level NullHandler: stay silent unless the consumer configures logging.
logging.getLogger("castor").addHandler(logging.NullHandler())

logger = logging.getLogger(__name__)


def get_content_generator(
    config: ProviderConfig,
    *,
    http_client: httpx.AsyncClient | None = None,
    **kwargs: Any,
) -> ContentGenerator:
    """Get the content generator for a resolved provider.

    Args:
        config: Result of :func:`resolve_provider_config`.
        http_client: Optional shared client; the generator will not close it.
        **kwargs: Passed through to the generator (e.g. ``timeout``).

    Example:
        config = resolve_provider_config()
        generator = get_content_generator(config)
        request = GenerationRequest.create("Hello")
        response = await generator.generate_content(request, "call-1")
    """
    if not config.kind.is_chat_completions:
        raise ConfigurationError(
            f"Provider {config.kind.value!r} is served natively, not by castor",
            hint="Select deepseek or openai_compatible to use a chat-completions backend.",
        )

    from castor.providers.deepseek import DeepSeekContentGenerator

    logger.debug("Using %s chat-completions generator", config.label)
    return DeepSeekContentGenerator(config, http_client=http_client, **kwargs)


# Re-export for convenience
__all__ = [
    "APIError",
    "ApiKeyStore",
    "CastorError",
    "ChunkStream",
    "ConfigurationError",
    "CredentialStore",
    "GenerationRequest",
    "InMemoryCredentialStore",
    "MissingCredentialError",
    "OpenAICompatSettings",
    "ProviderConfig",
    "ProviderInactiveError",
    "ProviderKind",
    "RateLimitError",
    "TransportAbortError",
    "UnsupportedOperationError",
    "UpstreamHTTPError",
    "get_content_generator",
    "resolve_provider_config",
]
