"""Content generator protocol: the surface the calling layer talks to."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    import asyncio

    from google.genai import types

    from castor.providers.chat_request import GenerationRequest
    from castor.providers.streaming import ChunkStream


@dataclass(frozen=True)
class GeneratorCapabilities:
    """Feature flags exposed by content generators."""

    streaming: bool
    tools: bool
    token_counting: bool = False
    embeddings: bool = False


@runtime_checkable
class ContentGenerator(Protocol):
    """Minimal generator protocol: generate, stream, count tokens, embed."""

    async def generate_content(
        self,
        request: GenerationRequest,
        call_id: str,
        *,
        abort: asyncio.Event | None = None,
    ) -> types.GenerateContentResponse:
        """Generate one complete response."""
        ...

    async def generate_content_stream(
        self,
        request: GenerationRequest,
        call_id: str,
        *,
        abort: asyncio.Event | None = None,
    ) -> ChunkStream:
        """Start a streaming generation and return its chunk iterator."""
        ...

    async def count_tokens(self, request: Any) -> Any:
        """Count tokens for a request."""
        ...

    async def embed_content(self, request: Any) -> Any:
        """Embed content."""
        ...

    @property
    def capabilities(self) -> GeneratorCapabilities:
        """Feature capabilities of this generator."""
        ...
