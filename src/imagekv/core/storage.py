"""Key-value storage for generated images.

Two layers live here:

- :class:`KeyValueStore` backends -- plain ``get``/``put``/``delete`` over
  string keys and values, with optional per-entry expiration.
- :class:`ImageRepository` -- the persistence adapter used by the pipeline
  and routes.  It applies the configured expiration, turns a missing key
  into :class:`~imagekv.core.errors.NotFoundError`, and wraps backend
  failures in :class:`~imagekv.core.errors.StorageError`.

Backends
--------
``MemoryKeyValueStore``
    Process-local dict.  Default backend and the one used in tests.
``JsonFileKeyValueStore``
    Single JSON file on disk, ``{key: {"value": ..., "expires_at": ...}}``.
    Expired entries are pruned whenever the file is loaded.  File I/O runs
    in the default executor.
``CloudflareKVStore``
    Workers KV REST API via httpx.

Contract shared by all backends:

- ``get`` on a missing or expired key returns ``None``, never ``""``.
- ``put`` without ``expiration_seconds`` keeps the value indefinitely.
- ``delete`` on a missing key succeeds silently.
"""

from __future__ import annotations

import asyncio
import json
import logging
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from functools import partial
from pathlib import Path
from typing import TYPE_CHECKING
from urllib.parse import quote

import httpx

from .errors import ImageKVError, MissingBindingError, NotFoundError, StorageError

if TYPE_CHECKING:
    from .config import ImageKVConfig

logger = logging.getLogger(__name__)


class KeyValueStore(ABC):
    """Abstract base class for key-value backends."""

    name: str = "Base Key-Value Store"

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Return the value stored under *key*, or ``None`` if absent."""

    @abstractmethod
    async def put(self, key: str, value: str, expiration_seconds: int | None = None) -> None:
        """Store *value* under *key*, optionally expiring after a number of seconds."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove *key*.  Missing keys are not an error."""

    async def aclose(self) -> None:
        """Release any resources held by the store."""


# ---------------------------------------------------------------------------
# In-memory backend.
# ---------------------------------------------------------------------------


class MemoryKeyValueStore(KeyValueStore):
    """Dict-backed store with monotonic-clock expiration.

    Expired entries are dropped when read and swept on every ``put``, so keys
    that are never read again do not accumulate.

    Args:
        clock: Time source in seconds.  Tests pass a fake clock to exercise
            expiration without sleeping.
    """

    name = "Memory"

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[str, float | None]] = {}

    async def get(self, key: str) -> str | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    async def put(self, key: str, value: str, expiration_seconds: int | None = None) -> None:
        now = self._clock()
        self._prune(now)
        self._entries[key] = (value, now + expiration_seconds if expiration_seconds else None)

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def _prune(self, now: float) -> None:
        """Drop every expired entry."""
        expired = [
            key
            for key, (_, expires_at) in self._entries.items()
            if expires_at is not None and now >= expires_at
        ]
        for key in expired:
            del self._entries[key]

    def __len__(self) -> int:
        return len(self._entries)


# ---------------------------------------------------------------------------
# JSON file backend.
# ---------------------------------------------------------------------------


class JsonFileKeyValueStore(KeyValueStore):
    """Store every entry in one JSON file.

    The file is read and rewritten on each operation, which keeps the store
    trivially inspectable and is adequate for single-process development use.
    File I/O runs in the default executor, off the event loop, and a lock
    serializes each read-modify-write cycle.
    Wall-clock time is used for expiry so entries survive restarts.
    """

    name = "JSON file"

    def __init__(self, path: Path, clock: Callable[[], float] = time.time) -> None:
        self.path = Path(path)
        self._clock = clock
        self._lock = threading.Lock()
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def _load(self) -> dict[str, dict]:
        """Load entries from disk, dropping expired or malformed ones.

        A missing file is an empty store.  If anything was dropped, the
        cleaned mapping is written back immediately.
        """
        if not self.path.exists():
            return {}

        with open(self.path, encoding="utf-8") as handle:
            raw_entries = json.load(handle)

        if not isinstance(raw_entries, dict):
            raise StorageError("Image store file is corrupt", detail=str(self.path))

        now = self._clock()
        entries: dict[str, dict] = {}
        for key, entry in raw_entries.items():
            if not isinstance(entry, dict) or not isinstance(entry.get("value"), str):
                continue
            expires_at = entry.get("expires_at")
            if expires_at is not None and now >= expires_at:
                continue
            entries[key] = entry

        if entries != raw_entries:
            self._save(entries)
        return entries

    def _save(self, entries: dict[str, dict]) -> None:
        with open(self.path, "w", encoding="utf-8") as handle:
            json.dump(entries, handle, indent=2)

    async def _run(self, func, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(func, *args))

    def _get(self, key: str) -> str | None:
        with self._lock:
            entry = self._load().get(key)
        return entry["value"] if entry else None

    def _put(self, key: str, value: str, expiration_seconds: int | None) -> None:
        with self._lock:
            entries = self._load()
            entries[key] = {
                "value": value,
                "expires_at": self._clock() + expiration_seconds if expiration_seconds else None,
            }
            self._save(entries)

    def _delete(self, key: str) -> None:
        with self._lock:
            entries = self._load()
            if entries.pop(key, None) is not None:
                self._save(entries)

    async def get(self, key: str) -> str | None:
        return await self._run(self._get, key)

    async def put(self, key: str, value: str, expiration_seconds: int | None = None) -> None:
        await self._run(self._put, key, value, expiration_seconds)

    async def delete(self, key: str) -> None:
        await self._run(self._delete, key)


# ---------------------------------------------------------------------------
# Cloudflare Workers KV backend.
# ---------------------------------------------------------------------------


class CloudflareKVStore(KeyValueStore):
    """Workers KV REST backend.

    Values live at
    ``{api_base}/accounts/{account_id}/storage/kv/namespaces/{namespace_id}/values/{key}``.
    Writes pass ``expiration_ttl`` as a query parameter when an expiration
    is requested.
    """

    name = "Cloudflare Workers KV"

    def __init__(
        self,
        account_id: str,
        namespace_id: str,
        api_token: str,
        *,
        api_base: str = "https://api.cloudflare.com/client/v4",
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = (
            f"{api_base.rstrip('/')}/accounts/{account_id}/storage/kv/namespaces/{namespace_id}"
        )
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._headers = {"Authorization": f"Bearer {api_token}"}

    def _value_url(self, key: str) -> str:
        return f"{self.base_url}/values/{quote(key, safe='')}"

    async def get(self, key: str) -> str | None:
        response = await self._client.get(self._value_url(key), headers=self._headers)
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return response.text

    async def put(self, key: str, value: str, expiration_seconds: int | None = None) -> None:
        params = {"expiration_ttl": str(expiration_seconds)} if expiration_seconds else None
        response = await self._client.put(
            self._value_url(key),
            params=params,
            content=value.encode("utf-8"),
            headers={**self._headers, "Content-Type": "text/plain"},
        )
        response.raise_for_status()

    async def delete(self, key: str) -> None:
        response = await self._client.delete(self._value_url(key), headers=self._headers)
        if response.status_code == 404:
            return
        response.raise_for_status()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


def build_store(config: ImageKVConfig) -> KeyValueStore | None:
    """Build the store named by ``config.store_backend``.

    Returns ``None`` when the Cloudflare backend is selected without its
    account, namespace and token; requests then fail with a missing binding.
    """
    if config.store_backend == "memory":
        return MemoryKeyValueStore()
    if config.store_backend == "json":
        return JsonFileKeyValueStore(config.store_path)

    if not (
        config.cloudflare_account_id and config.kv_namespace_id and config.cloudflare_api_token
    ):
        logger.warning("Cloudflare KV selected but account, namespace or token is missing")
        return None

    return CloudflareKVStore(
        config.cloudflare_account_id,
        config.kv_namespace_id,
        config.cloudflare_api_token,
        api_base=config.cloudflare_api_base,
        timeout=config.request_timeout,
    )


# ---------------------------------------------------------------------------
# Persistence adapter.
# ---------------------------------------------------------------------------


class ImageRepository:
    """Persistence adapter between the pipeline and a :class:`KeyValueStore`.

    Args:
        store: Backend to use, or ``None`` if no store is configured.  Every
            operation then raises :class:`MissingBindingError`.
        expiration_seconds: Lifetime applied to every saved image.
    """

    def __init__(self, store: KeyValueStore | None, expiration_seconds: int | None = None) -> None:
        self.store = store
        self.expiration_seconds = expiration_seconds

    def _require_store(self) -> KeyValueStore:
        if self.store is None:
            raise MissingBindingError("Image store is not configured")
        return self.store

    async def save(self, user_id: str, value: str) -> None:
        """Persist *value* for *user_id* with the configured expiration."""
        store = self._require_store()
        try:
            await store.put(user_id, value, self.expiration_seconds)
        except ImageKVError:
            raise
        except Exception as e:
            logger.error(f"Failed to store image for {user_id}: {e}", exc_info=True)
            raise StorageError("Failed to store image", detail=str(e)) from e
        logger.info(f"Image stored for {user_id}")

    async def load(self, user_id: str) -> str:
        """Return the stored value for *user_id*.

        Raises:
            NotFoundError: If nothing is stored (or it has expired).
            StorageError: If the backend fails.
        """
        store = self._require_store()
        try:
            value = await store.get(user_id)
        except ImageKVError:
            raise
        except Exception as e:
            logger.error(f"Failed to read image for {user_id}: {e}", exc_info=True)
            raise StorageError("Failed to read image", detail=str(e)) from e
        if value is None:
            raise NotFoundError("Image not found")
        return value

    async def remove(self, user_id: str) -> None:
        """Delete the image for *user_id*.  Succeeds whether or not it exists."""
        store = self._require_store()
        try:
            await store.delete(user_id)
        except ImageKVError:
            raise
        except Exception as e:
            logger.error(f"Failed to delete image for {user_id}: {e}", exc_info=True)
            raise StorageError("Failed to delete image", detail=str(e)) from e
        logger.info(f"Image deleted for {user_id}")
