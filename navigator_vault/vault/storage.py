"""
Vault Storage — local secure storage for credentials and lockout counters.

``SecureStorage`` is the capability the authenticator consumes: a small
async string key-value store. Two backends ship with the package:

- ``MemoryStorage``: process memory only (tests, ephemeral sessions).
- ``FileStorage``: a JSON document written atomically with 0600 permissions.

``CredentialStore`` adds typed accessors on top (salt, PIN verifier,
failed attempts, lockout expiry, last known index hash).

``BlobCache`` keeps downloaded entry blobs on this device so reads work
offline and skip the API. It only ever holds ciphertext.

Security Note:
    The raw master key is never stored; only the salt and the PIN verifier.
"""
import os
import base64
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Optional
from datetime import datetime, timezone

import orjson

logger = logging.getLogger("navigator.vault")


class SecureStorage(ABC):
    """Abstract async key-value store for vault credentials."""

    @abstractmethod
    async def read(self, key: str) -> Optional[str]:
        """Return the stored value, or None if absent."""

    @abstractmethod
    async def write(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove ``key``; no-op if absent."""

    @abstractmethod
    async def clear(self) -> None:
        """Remove every stored value."""


class MemoryStorage(SecureStorage):
    """In-process storage backend."""

    def __init__(self, data: Optional[dict[str, str]] = None):
        self._data: dict[str, str] = dict(data or {})

    async def read(self, key: str) -> Optional[str]:
        return self._data.get(key)

    async def write(self, key: str, value: str) -> None:
        self._data[key] = value

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def clear(self) -> None:
        self._data.clear()


class FileStorage(SecureStorage):
    """JSON file backend, readable only by the owner.

    Every write rewrites the whole document through a temporary file and
    ``os.replace`` so a crash never leaves a truncated file behind.
    """

    def __init__(self, path: str):
        self._path = path
        self._lock = asyncio.Lock()

    def _load(self) -> dict[str, str]:
        if not os.path.exists(self._path):
            return {}
        with open(self._path, "rb") as fp:
            raw = fp.read()
        return orjson.loads(raw) if raw else {}

    def _dump(self, data: dict[str, str]) -> None:
        directory = os.path.dirname(self._path)
        if directory:
            os.makedirs(directory, mode=0o700, exist_ok=True)
        tmp = f"{self._path}.tmp"
        fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "wb") as fp:
            fp.write(orjson.dumps(data))
        os.replace(tmp, self._path)

    async def read(self, key: str) -> Optional[str]:
        async with self._lock:
            data = await asyncio.to_thread(self._load)
        return data.get(key)

    async def write(self, key: str, value: str) -> None:
        async with self._lock:
            data = await asyncio.to_thread(self._load)
            data[key] = value
            await asyncio.to_thread(self._dump, data)

    async def delete(self, key: str) -> None:
        async with self._lock:
            data = await asyncio.to_thread(self._load)
            if data.pop(key, None) is not None:
                await asyncio.to_thread(self._dump, data)

    async def clear(self) -> None:
        async with self._lock:
            if os.path.exists(self._path):
                await asyncio.to_thread(os.remove, self._path)
        logger.info("Vault credentials cleared: %s", self._path)


class CredentialStore:
    """Typed accessors over a ``SecureStorage`` backend."""

    SALT = "salt"
    PIN_HASH = "pin_hash"
    FAILED_ATTEMPTS = "failed_attempts"
    LOCKOUT_UNTIL = "lockout_until"
    INDEX_SHA = "index_sha"
    LAST_SYNC_AT = "last_sync_at"

    def __init__(self, storage: SecureStorage):
        self._storage = storage

    async def _read_bytes(self, key: str) -> Optional[bytes]:
        value = await self._storage.read(key)
        return None if value is None else base64.b64decode(value)

    async def _write_bytes(self, key: str, value: bytes) -> None:
        await self._storage.write(key, base64.b64encode(value).decode("ascii"))

    async def _read_datetime(self, key: str) -> Optional[datetime]:
        value = await self._storage.read(key)
        if value is None:
            return None
        parsed = datetime.fromisoformat(value)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed

    # -- vault credentials --

    async def is_configured(self) -> bool:
        return (
            await self._storage.read(self.SALT) is not None
            and await self._storage.read(self.PIN_HASH) is not None
        )

    async def get_salt(self) -> Optional[bytes]:
        return await self._read_bytes(self.SALT)

    async def set_salt(self, salt: bytes) -> None:
        await self._write_bytes(self.SALT, salt)

    async def get_pin_hash(self) -> Optional[bytes]:
        return await self._read_bytes(self.PIN_HASH)

    async def set_pin_hash(self, pin_hash: bytes) -> None:
        await self._write_bytes(self.PIN_HASH, pin_hash)

    # -- lockout counters --

    async def get_failed_attempts(self) -> int:
        value = await self._storage.read(self.FAILED_ATTEMPTS)
        return int(value) if value else 0

    async def set_failed_attempts(self, count: int) -> None:
        await self._storage.write(self.FAILED_ATTEMPTS, str(count))

    async def get_lockout_until(self) -> Optional[datetime]:
        return await self._read_datetime(self.LOCKOUT_UNTIL)

    async def set_lockout_until(self, until: datetime) -> None:
        await self._storage.write(self.LOCKOUT_UNTIL, until.isoformat())

    async def clear_lockout(self) -> None:
        await self._storage.delete(self.FAILED_ATTEMPTS)
        await self._storage.delete(self.LOCKOUT_UNTIL)

    # -- sync bookkeeping --

    async def get_index_sha(self) -> Optional[str]:
        return await self._storage.read(self.INDEX_SHA)

    async def set_index_sha(self, sha: str) -> None:
        await self._storage.write(self.INDEX_SHA, sha)

    async def get_last_sync_at(self) -> Optional[datetime]:
        return await self._read_datetime(self.LAST_SYNC_AT)

    async def set_last_sync_at(self, when: datetime) -> None:
        await self._storage.write(self.LAST_SYNC_AT, when.isoformat())

    async def clear_all(self) -> None:
        await self._storage.clear()


class BlobCache(ABC):
    """Abstract local cache of encrypted entry blobs, keyed by entry id."""

    @abstractmethod
    async def get(self, entry_id: str) -> Optional[bytes]:
        """Return the cached ciphertext, or None on a miss."""

    @abstractmethod
    async def put(self, entry_id: str, blob: bytes) -> None:
        """Cache ``blob`` for ``entry_id``."""

    @abstractmethod
    async def evict(self, entry_id: str) -> None:
        """Drop ``entry_id``; no-op if absent."""

    @abstractmethod
    async def clear(self) -> None:
        """Drop every cached blob."""


class MemoryBlobCache(BlobCache):
    """In-process blob cache."""

    def __init__(self):
        self._blobs: dict[str, bytes] = {}

    def __contains__(self, entry_id: str) -> bool:
        return entry_id in self._blobs

    async def get(self, entry_id: str) -> Optional[bytes]:
        return self._blobs.get(entry_id)

    async def put(self, entry_id: str, blob: bytes) -> None:
        self._blobs[entry_id] = bytes(blob)

    async def evict(self, entry_id: str) -> None:
        self._blobs.pop(entry_id, None)

    async def clear(self) -> None:
        self._blobs.clear()


class FileBlobCache(BlobCache):
    """One ``<entry_id>.enc`` file per blob inside a private directory.

    Files are written through a temporary file and ``os.replace``, with 0600
    permissions, like ``FileStorage``.
    """

    SUFFIX = ".enc"

    def __init__(self, directory: str):
        self._directory = directory

    def _path(self, entry_id: str) -> str:
        if not entry_id or os.sep in entry_id or entry_id.startswith("."):
            raise ValueError(f"Invalid entry id: {entry_id!r}")
        return os.path.join(self._directory, f"{entry_id}{self.SUFFIX}")

    def __contains__(self, entry_id: str) -> bool:
        return os.path.exists(self._path(entry_id))

    def _read(self, path: str) -> Optional[bytes]:
        try:
            with open(path, "rb") as fp:
                return fp.read()
        except FileNotFoundError:
            return None

    def _write(self, path: str, blob: bytes) -> None:
        os.makedirs(self._directory, mode=0o700, exist_ok=True)
        tmp = f"{path}.tmp"
        fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "wb") as fp:
            fp.write(blob)
        os.replace(tmp, path)

    def _remove(self, path: str) -> None:
        try:
            os.remove(path)
        except FileNotFoundError:
            pass

    def _clear(self) -> None:
        if not os.path.isdir(self._directory):
            return
        for name in os.listdir(self._directory):
            if name.endswith(self.SUFFIX):
                self._remove(os.path.join(self._directory, name))

    async def get(self, entry_id: str) -> Optional[bytes]:
        return await asyncio.to_thread(self._read, self._path(entry_id))

    async def put(self, entry_id: str, blob: bytes) -> None:
        await asyncio.to_thread(self._write, self._path(entry_id), bytes(blob))

    async def evict(self, entry_id: str) -> None:
        await asyncio.to_thread(self._remove, self._path(entry_id))

    async def clear(self) -> None:
        await asyncio.to_thread(self._clear)
        logger.info("Vault blob cache cleared: %s", self._directory)
