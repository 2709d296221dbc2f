"""Server-sent-event stream -> incremental ``GenerateContentResponse`` chunks.

The work is split in two:

- :class:`StreamReconstructor` is a sans-IO state machine. It is fed raw
  bytes in whatever slices the transport delivers and returns the chunks
  those bytes complete.
- :class:`ChunkStream` owns the HTTP response, pulls one read at a time
  when the consumer asks for more, and releases the transport on every
  exit path.

Text deltas are emitted immediately as standalone chunks. Tool-call deltas
are buffered per stream index and emitted together, ordered by index, when
the backend signals a finish reason, sends ``[DONE]``, or closes the
connection.
"""

from __future__ import annotations

import asyncio
import codecs
from collections import deque
import logging
from typing import TYPE_CHECKING, Any

import httpx
from pydantic import ValidationError

from castor._http import STREAM_DONE_SENTINEL
from castor.errors import StreamProtocolError, TransportAbortError
from castor.providers._errors import wrap_provider_error
from castor.providers._utils import await_or_abort
from castor.providers.chat_response import text_chunk, tool_calls_chunk
from castor.providers.models import (
    ChatCompletionChunk,
    ToolCallAccumulator,
    content_text,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from google.genai import types

logger = logging.getLogger(__name__)

_DATA_PREFIX = "data:"


class SSELineBuffer:
    """Reassemble complete lines from arbitrarily split bytes.

    Multi-byte UTF-8 sequences split across reads are held back by the
    incremental decoder until complete; invalid bytes decode as U+FFFD.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._partial = ""

    def feed(self, data: bytes) -> list[str]:
        """Return every line completed by *data*, without line terminators."""
        text = self._partial + self._decoder.decode(data)
        *lines, self._partial = text.split("\n")
        return [line.rstrip("\r") for line in lines]

    def remainder(self) -> str:
        """Drain and return the unterminated tail."""
        tail = self._partial + self._decoder.decode(b"", final=True)
        self._partial = ""
        return tail


class StreamReconstructor:
    """Per-call state machine turning SSE bytes into response chunks."""

    def __init__(self) -> None:
        self._lines = SSELineBuffer()
        self._calls: dict[int, ToolCallAccumulator] = {}
        #: Set once the ``[DONE]`` sentinel is seen; later input is ignored.
        self.done = False

    def feed(self, data: bytes) -> list[types.GenerateContentResponse]:
        if self.done:
            return []
        chunks: list[types.GenerateContentResponse] = []
        for line in self._lines.feed(data):
            self._handle_line(line, chunks)
            if self.done:
                break
        return chunks

    def finish(self) -> list[types.GenerateContentResponse]:
        """End-of-transport flush.

        Tool calls still buffered are emitted as they stand, even when their
        argument text is incomplete. An unterminated trailing line is dropped.
        """
        if self.done:
            return []
        self.done = True
        tail = self._lines.remainder()
        if tail.strip():
            logger.debug("Discarding unterminated trailing line (%d chars)", len(tail))
        chunks: list[types.GenerateContentResponse] = []
        self._flush(chunks)
        return chunks

    @property
    def pending_tool_calls(self) -> int:
        return len(self._calls)

    # --- Frame handling -----------------------------------------------------

    def _handle_line(self, line: str, out: list[types.GenerateContentResponse]) -> None:
        line = line.strip()
        if not line.startswith(_DATA_PREFIX):
            return
        payload = line[len(_DATA_PREFIX) :].strip()
        if not payload:
            return
        if payload == STREAM_DONE_SENTINEL:
            self._flush(out)
            self.done = True
            return

        try:
            frame = _parse_frame(payload)
        except StreamProtocolError as e:
            logger.debug("Skipping malformed stream frame: %s", e)
            return

        choice = frame.choices[0] if frame.choices else None
        if choice is None:
            return
        delta = choice.delta
        if delta is not None:
            text = content_text(delta.content)
            if text:
                out.append(text_chunk(text))
            for tc in delta.tool_calls or ():
                index = tc.index if tc.index is not None else 0
                acc = self._calls.get(index)
                if acc is None:
                    acc = self._calls[index] = ToolCallAccumulator(index=index)
                acc.merge(tc)
        if choice.finish_reason:
            self._flush(out)

    def _flush(self, out: list[types.GenerateContentResponse]) -> None:
        if not self._calls:
            return
        calls = [self._calls[i].to_tool_call() for i in sorted(self._calls)]
        self._calls.clear()
        logger.debug("Flushing %d tool call(s)", len(calls))
        out.append(tool_calls_chunk(calls))


def _parse_frame(payload: str) -> ChatCompletionChunk:
    try:
        return ChatCompletionChunk.model_validate_json(payload)
    except ValidationError as e:
        raise StreamProtocolError(
            f"Invalid stream frame: {payload[:200]!r}",
            hint=f"{e.error_count()} validation error(s)",
        ) from e


class ChunkStream:
    """Cancellable async iterator over one streaming call.

    Reads are pulled from the transport only when no decoded chunk is
    waiting. The response is released on completion, on error, on abort and
    on :meth:`aclose`. Transport failures mid-stream surface as
    :class:`~castor.errors.APIError`, the same as when opening the stream.

    Example:
        async with await generator.generate_content_stream(req, "c1") as stream:
            async for chunk in stream:
                print(chunk.text)
    """

    def __init__(
        self,
        response: httpx.Response,
        *,
        abort: asyncio.Event | None = None,
        provider: str = "chat-completions",
    ) -> None:
        self._response = response
        self._abort = abort
        self._provider = provider
        self._cancel = asyncio.Event()
        self._engine = StreamReconstructor()
        self._reads: AsyncIterator[bytes] = response.aiter_bytes()
        self._pending: deque[types.GenerateContentResponse] = deque()
        self._read_task: asyncio.Future[bytes | None] | None = None
        self._reading = False
        self._aborted = False
        self._released = False

    @property
    def closed(self) -> bool:
        return self._released

    def __aiter__(self) -> ChunkStream:
        return self

    async def __anext__(self) -> types.GenerateContentResponse:
        if self._abort is not None and self._abort.is_set() and not self._aborted:
            # Chunks decoded before the abort are dropped, flush included.
            self._aborted = True
            await self._discard()
            raise TransportAbortError("Stream aborted by caller")
        while not self._pending:
            if self._released:
                raise StopAsyncIteration
            data = await self._read()
            if data is None:
                self._pending.extend(self._engine.finish())
                await self._release()
                continue
            self._pending.extend(self._engine.feed(data))
            if self._engine.done:
                await self._release()
        return self._pending.popleft()

    async def _read(self) -> bytes | None:
        self._reading = True
        try:
            return await self._next_bytes()
        except TransportAbortError:
            self._aborted = True
            await self._discard()
            raise
        except httpx.HTTPError as e:
            await self._discard()
            raise wrap_provider_error(
                e,
                provider=self._provider,
                phase="stream",
                allow_network_errors=True,
                message=f"{self._provider} stream read failed",
            ) from e
        except BaseException:
            await self._discard()
            raise
        finally:
            self._reading = False

    async def _next_bytes(self) -> bytes | None:
        if self._abort is not None:
            return await await_or_abort(
                anext(self._reads, None), self._abort, self._cancel
            )
        if self._cancel.is_set():
            raise TransportAbortError("Stream cancelled")
        # Without a caller abort event only cancel() can interrupt the read.
        read = self._read_task = asyncio.ensure_future(anext(self._reads, None))
        try:
            return await read
        except asyncio.CancelledError:
            if self._cancel.is_set() and read.cancelled():
                raise TransportAbortError("Stream cancelled") from None
            raise
        finally:
            self._read_task = None

    async def cancel(self) -> None:
        """Abort the stream: drop buffered chunks and release the transport.

        An outstanding read in another task fails with TransportAbortError;
        no end-of-stream flush is emitted.
        """
        self._cancel.set()
        self._pending.clear()
        if self._read_task is not None:
            self._read_task.cancel()
        if not self._reading:
            await self._release()

    async def aclose(self) -> None:
        """Stop consuming early and release the transport."""
        await self._discard()

    async def _discard(self) -> None:
        self._pending.clear()
        await self._release()

    async def _release(self) -> None:
        if self._released:
            return
        self._released = True
        aclose = getattr(self._reads, "aclose", None)
        try:
            if aclose is not None:
                await aclose()
        finally:
            await self._response.aclose()
        logger.debug("Stream transport released")

    async def __aenter__(self) -> ChunkStream:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()
