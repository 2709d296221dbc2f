"""API-key persistence boundary used by the configuration layer.

The generator itself never touches stored secrets: a configuration layer
loads a key here and passes it to :func:`castor.config.resolve_provider_config`.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol, runtime_checkable

from castor.config import ProviderKind

logger = logging.getLogger(__name__)

DEFAULT_API_KEY_ENTRY = "default-api-key"
DEEPSEEK_API_KEY_ENTRY = "deepseek-api-key"
OPENAI_COMPAT_API_KEY_ENTRY = "openai-compatible-api-key"

_ENTRY_FOR_KIND: dict[ProviderKind, str] = {
    ProviderKind.GEMINI: DEFAULT_API_KEY_ENTRY,
    ProviderKind.DEEPSEEK: DEEPSEEK_API_KEY_ENTRY,
    ProviderKind.OPENAI_COMPATIBLE: OPENAI_COMPAT_API_KEY_ENTRY,
}


@runtime_checkable
class CredentialStore(Protocol):
    """Asynchronous named-secret storage."""

    async def get(self, entry: str) -> str | None:
        """Return the secret stored under *entry*, if any."""
        ...

    async def set(self, entry: str, secret: str) -> None:
        """Store *secret* under *entry*, replacing any previous value."""
        ...

    async def delete(self, entry: str) -> None:
        """Remove *entry*; missing entries are not an error."""
        ...


class InMemoryCredentialStore:
    """Process-local store, for tests and ephemeral sessions."""

    def __init__(self) -> None:
        self._secrets: dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def get(self, entry: str) -> str | None:
        async with self._lock:
            return self._secrets.get(entry)

    async def set(self, entry: str, secret: str) -> None:
        async with self._lock:
            self._secrets[entry] = secret

    async def delete(self, entry: str) -> None:
        async with self._lock:
            self._secrets.pop(entry, None)


def entry_for(kind: ProviderKind) -> str:
    """Return the storage entry name holding the key for *kind*."""
    try:
        return _ENTRY_FOR_KIND[kind]
    except KeyError:
        raise ValueError(f"{kind.value} does not use a stored API key") from None


class ApiKeyStore:
    """Load, save and clear per-provider API keys.

    Storage failures while loading or clearing are logged, not raised.
    Saving propagates failures.
    """

    def __init__(self, store: CredentialStore) -> None:
        self._store = store

    async def load(self, kind: ProviderKind) -> str | None:
        entry = entry_for(kind)
        try:
            key = await self._store.get(entry)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("Failed to load API key %r from storage: %s", entry, exc)
            return None
        return key or None

    async def save(self, kind: ProviderKind, api_key: str | None) -> None:
        """Store *api_key*; an empty or blank key deletes the entry instead."""
        entry = entry_for(kind)
        if not api_key or not api_key.strip():
            try:
                await self._store.delete(entry)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                # The entry may simply not exist.
                logger.warning("Failed to delete API key %r from storage: %s", entry, exc)
            return
        await self._store.set(entry, api_key)

    async def clear(self, kind: ProviderKind) -> None:
        entry = entry_for(kind)
        try:
            await self._store.delete(entry)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("Failed to clear API key %r from storage: %s", entry, exc)
