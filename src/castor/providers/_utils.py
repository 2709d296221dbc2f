"""Shared utilities for provider implementations."""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import TYPE_CHECKING, TypeVar

from castor.errors import TransportAbortError

if TYPE_CHECKING:
    from collections.abc import Awaitable

T = TypeVar("T")

logger = logging.getLogger(__name__)


def join_url(base: str, path: str) -> str:
    """Join *base* and *path* with exactly one slash between them."""
    return f"{base.rstrip('/')}/{path.lstrip('/')}"


async def await_or_abort(awaitable: Awaitable[T], *aborts: asyncio.Event | None) -> T:
    """Await *awaitable*, or raise TransportAbortError once any abort event is set.

    The losing side is cancelled and allowed to settle before returning, so
    no network operation is left running. If the work finished in the same
    instant an abort fired, the abort wins and any closable result (an open
    streaming response) is closed.
    """
    events = [event for event in aborts if event is not None]
    if not events:
        return await awaitable
    if any(event.is_set() for event in events):
        if inspect.iscoroutine(awaitable):
            awaitable.close()
        raise TransportAbortError("Request aborted by caller")

    work = asyncio.ensure_future(awaitable)
    waiters = {asyncio.ensure_future(event.wait()) for event in events}
    try:
        await asyncio.wait({work, *waiters}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in (work, *waiters):
            task.cancel()
        await asyncio.wait({work, *waiters})

    if any(event.is_set() for event in events):
        if not work.cancelled() and work.exception() is None:
            aclose = getattr(work.result(), "aclose", None)
            if aclose is not None:
                await aclose()
        elif not work.cancelled():
            logger.debug("Discarding error from aborted request: %s", work.exception())
        raise TransportAbortError("Request aborted by caller")
    return work.result()
