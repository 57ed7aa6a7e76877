"""
Secret Vault — high-level API tying authentication, crypto and the remote store.

Lifecycle::

    vault = SecretVault.from_config(VaultConfig.from_env())
    await vault.initialize()
    await vault.unlock("123456")        # or setup() on first use
    await vault.sync()
    entry = (await vault.add_entry("wifi", b"hunter2")).unwrap()
    result = await vault.cleanup()

The decrypted index is cached in memory only while the vault is unlocked;
locking discards it together with the master key. Every index write goes
through one lock and carries the sha of the index it was built from, so a
stale write fails with ``ConflictError`` instead of overwriting.

Encrypted blobs are kept in a ``BlobCache`` so entries can be read offline.

Security Note:
    Plaintext is returned to the caller and never cached or logged.
    The blob cache holds ciphertext only.
"""
import asyncio
import binascii
import logging
from typing import Callable, Optional, Union

from ..data import EntryType, RetentionPeriod, VaultEntry, VaultIndex, utcnow
from ..result import Failure, Result, Success
from .auth import AuthState, Authenticator, Errored, NotConfigured, StateListener, Unlocked
from .cleanup import CleanupResult, CleanupService
from .config import VaultConfig, VaultMetadata
from .crypto import CryptoService, MasterKey
from .errors import (
    AuthError,
    CryptoError,
    InvalidDataFormat,
    NotFound,
    RepositoryError,
    UnknownRepositoryError,
    VaultStateError,
)
from .repository import VaultRepository
from .storage import (
    BlobCache,
    CredentialStore,
    FileBlobCache,
    FileStorage,
    MemoryBlobCache,
    SecureStorage,
)

VaultError = Union[RepositoryError, CryptoError]


class SecretVault:
    """Local-first secrets vault backed by a GitHub repository."""

    def __init__(
        self,
        authenticator: Authenticator,
        repository: VaultRepository,
        credentials: CredentialStore,
        crypto: Optional[CryptoService] = None,
        cleanup: Optional[CleanupService] = None,
        cleanup_on_sync: bool = False,
        cache: Optional[BlobCache] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.authenticator = authenticator
        self.repository = repository
        self.credentials = credentials
        self.crypto = crypto or CryptoService()
        self.cleanup_service = cleanup or CleanupService(repository, self.crypto)
        self.cleanup_on_sync = cleanup_on_sync
        self.cache = cache if cache is not None else MemoryBlobCache()
        self._logger = logger or logging.getLogger("navigator.vault")
        self._index: Optional[VaultIndex] = None
        self._index_sha: Optional[str] = None
        self._index_lock = asyncio.Lock()
        self._cleanup_lock = asyncio.Lock()
        self.authenticator.subscribe(self._on_auth_state)

    @classmethod
    def from_config(
        cls,
        config: VaultConfig,
        storage: Optional[SecureStorage] = None,
        crypto: Optional[CryptoService] = None,
        cleanup_on_sync: bool = False,
    ) -> "SecretVault":
        """Wire every component from a ``VaultConfig``.

        Args:
            config: Validated configuration.
            storage: Local secure storage (defaults to a FileStorage at
                ``config.storage_path``).
            crypto: Crypto service (defaults to production Argon2 costs).
            cleanup_on_sync: Run a cleanup pass after each successful sync.
        """
        crypto = crypto or CryptoService()
        credentials = CredentialStore(storage or FileStorage(config.storage_path))
        repository = VaultRepository.from_config(config)
        return cls(
            authenticator=Authenticator(
                credentials, crypto=crypto, policy=config.lockout_policy
            ),
            repository=repository,
            credentials=credentials,
            crypto=crypto,
            cleanup=CleanupService(
                repository, crypto, max_batch_size=config.cleanup_batch_size
            ),
            cleanup_on_sync=cleanup_on_sync,
            cache=FileBlobCache(config.cache_dir),
        )

    async def close(self) -> None:
        self.lock()
        await self.repository.close()

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> AuthState:
        return self.authenticator.state

    @property
    def is_unlocked(self) -> bool:
        return isinstance(self.state, Unlocked)

    @property
    def index(self) -> Optional[VaultIndex]:
        """Last synced index, or None before the first sync."""
        return self._index

    @property
    def index_sha(self) -> Optional[str]:
        return self._index_sha

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        return self.authenticator.subscribe(listener)

    def _on_auth_state(self, state: AuthState) -> None:
        if not isinstance(state, Unlocked):
            self._index = None
            self._index_sha = None

    def _require_key(self) -> MasterKey:
        key = self.authenticator.master_key
        if key is None:
            raise VaultStateError(
                f"Vault is not unlocked ({type(self.state).__name__})"
            )
        return key

    def _require_index(self) -> VaultIndex:
        if self._index is None:
            raise VaultStateError("Vault has not been synced")
        return self._index

    def _snapshot(self) -> tuple[VaultIndex, Optional[str]]:
        """The current index together with the remote sha it was read at."""
        return self._require_index(), self._index_sha

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    async def initialize(self) -> AuthState:
        return await self.authenticator.initialize()

    async def setup(self, pin: str) -> Result[MasterKey, Union[AuthError, RepositoryError]]:
        """First-time setup on this device.

        Reuses the salt published in the remote ``config.json`` so every
        device derives the same master key; publishes a new salt when the
        vault does not exist yet.
        """
        if not isinstance(self.state, (NotConfigured, Errored)):
            raise VaultStateError(
                f"Cannot set up the vault while {type(self.state).__name__}"
            )
        invalid = self.authenticator.validate_pin(pin)
        if invalid is not None:
            return Failure(invalid)
        metadata = await self.repository.download_metadata()
        if metadata.is_success:
            salt = metadata.unwrap().salt
            self._logger.info("Joining existing vault")
        elif isinstance(metadata.error_or_none, NotFound):
            salt = self.crypto.generate_salt()
            published = await self.repository.upload_metadata(VaultMetadata(salt=salt))
            if published.is_failure:
                self._logger.error(
                    "Cannot publish vault config: %s", published.error_or_none.message
                )
                return published
            self._logger.info("Created new vault")
        else:
            self._logger.error(
                "Cannot read vault config: %s", metadata.error_or_none.message
            )
            return metadata
        return await self.authenticator.setup(pin, salt)

    async def unlock(self, pin: str) -> Result[MasterKey, AuthError]:
        return await self.authenticator.submit_pin(pin)

    def lock(self) -> AuthState:
        return self.authenticator.lock()

    # ------------------------------------------------------------------
    # Index
    # ------------------------------------------------------------------

    async def sync(self) -> Result[VaultIndex, VaultError]:
        """Download and decrypt the remote index.

        A missing index yields an empty one (new vault).

        Raises:
            VaultStateError: If the vault is not unlocked.
        """
        key = self._require_key()
        async with self._index_lock:
            info = await self.repository.get_file_info(self.repository.INDEX_FILE)
            if isinstance(info.error_or_none, NotFound):
                index, sha = VaultIndex.empty(), None
            elif info.is_failure:
                self._logger.warning("Sync failed: %s", info.error_or_none.message)
                return info
            else:
                remote = info.unwrap()
                try:
                    content = remote.decoded_content
                except binascii.Error:
                    return Failure(InvalidDataFormat("Index content is not valid base64"))
                if content is None:
                    return Failure(UnknownRepositoryError("Index has no content"))
                decrypted = self.crypto.decrypt(content, key)
                if decrypted.is_failure:
                    self._logger.error(
                        "Cannot decrypt index: %s", decrypted.error_or_none.message
                    )
                    return decrypted
                try:
                    index = VaultIndex.from_json(decrypted.unwrap())
                except ValueError as err:
                    return Failure(InvalidDataFormat(f"Invalid index: {err}"))
                sha = remote.sha

            self._adopt_index(index, sha)
            if sha is not None:
                await self.credentials.set_index_sha(sha)
            await self.credentials.set_last_sync_at(utcnow())
        self._logger.info("Synced vault index (%d entries)", len(index))

        if self.cleanup_on_sync and sha is not None and index.expired_entries():
            await self.cleanup()
        return Success(index)

    async def _save_index(
        self,
        new_index: VaultIndex,
        key: MasterKey,
        sha: Optional[str],
    ) -> Result[VaultIndex, VaultError]:
        """Upload ``new_index`` over the remote index read with ``sha``."""
        encrypted = self.crypto.encrypt(new_index.to_json(), key)
        if encrypted.is_failure:
            return encrypted
        uploaded = await self.repository.upload_index(encrypted.unwrap(), sha)
        if uploaded.is_failure:
            self._logger.warning(
                "Index upload failed: %s", uploaded.error_or_none.message
            )
            return uploaded
        new_sha = uploaded.unwrap().sha
        self._adopt_index(new_index, new_sha)
        await self.credentials.set_index_sha(new_sha)
        return Success(new_index)

    def _adopt_index(self, index: VaultIndex, sha: Optional[str]) -> None:
        # a lock during the upload already discarded the cached index
        if self.is_unlocked:
            self._index, self._index_sha = index, sha

    # ------------------------------------------------------------------
    # Entries
    # ------------------------------------------------------------------

    async def add_entry(
        self,
        label: str,
        content: bytes,
        entry_type: EntryType = EntryType.TEXT,
        mime_type: Optional[str] = None,
        retention: Optional[RetentionPeriod] = RetentionPeriod.ONE_DAY,
    ) -> Result[VaultEntry, VaultError]:
        """Encrypt and upload ``content``, then record it in the index.

        Args:
            label: User-facing description.
            content: Plaintext bytes.
            entry_type: Kind of content.
            mime_type: MIME type of the plaintext.
            retention: How long to keep the entry; None keeps it forever.

        Returns:
            Success(VaultEntry) carrying the blob sha, or the first failure.
        """
        key = self._require_key()
        self._require_index()
        encrypted = self.crypto.encrypt(content, key)
        if encrypted.is_failure:
            return encrypted
        blob = encrypted.unwrap()
        entry = VaultEntry.create(
            label,
            size_bytes=len(blob),
            entry_type=entry_type,
            mime_type=mime_type,
            retention=retention,
        )
        uploaded = await self.repository.upload_entry(entry.id, blob)
        if uploaded.is_failure:
            return uploaded
        entry = entry.with_sha(uploaded.unwrap().sha)
        async with self._index_lock:
            index, sha = self._snapshot()
            saved = await self._save_index(index.add_entry(entry), key, sha)
        if saved.is_failure:
            # blob stays unreferenced until the index is written again
            return saved
        await self.cache.put(entry.id, blob)
        self._logger.info("Added entry %s", entry.id)
        return Success(entry)

    async def read_entry(self, entry_id: str) -> Result[bytes, VaultError]:
        """Decrypt the content of ``entry_id``.

        The local blob cache is tried first; a cached blob that no longer
        decrypts is evicted and downloaded again.
        """
        key = self._require_key()
        if self._require_index().get_entry(entry_id) is None:
            return Failure(NotFound(self.repository.entry_path(entry_id)))
        cached = await self.cache.get(entry_id)
        if cached is not None:
            decrypted = self.crypto.decrypt(cached, key)
            if decrypted.is_success:
                return decrypted
            self._logger.warning(
                "Cached blob of entry %s is unreadable (%s), downloading",
                entry_id, decrypted.error_or_none.message,
            )
            await self.cache.evict(entry_id)
        downloaded = await self.repository.download_entry(entry_id)
        if downloaded.is_failure:
            return downloaded
        blob = downloaded.unwrap()
        decrypted = self.crypto.decrypt(blob, key)
        if decrypted.is_success:
            await self.cache.put(entry_id, blob)
        return decrypted

    async def delete_entry(self, entry_id: str) -> Result[VaultIndex, VaultError]:
        """Delete the blob of ``entry_id`` and drop it from the index.

        A blob that is already gone is not an error.
        """
        key = self._require_key()
        self._require_index()
        async with self._index_lock:
            index, index_sha = self._snapshot()
            entry = index.get_entry(entry_id)
            if entry is None:
                return Failure(NotFound(self.repository.entry_path(entry_id)))
            sha = entry.sha
            if sha is None:
                info = await self.repository.get_file_info(
                    self.repository.entry_path(entry_id)
                )
                if info.is_success:
                    sha = info.unwrap().sha
                elif not isinstance(info.error_or_none, NotFound):
                    return info
            if sha is not None:
                deleted = await self.repository.delete_entry(entry_id, sha)
                if deleted.is_failure and not isinstance(deleted.error_or_none, NotFound):
                    return deleted
            await self.cache.evict(entry_id)
            self._logger.info("Deleted entry %s", entry_id)
            return await self._save_index(index.remove_entry(entry_id), key, index_sha)

    async def change_retention(
        self,
        entry_id: str,
        retention: Optional[RetentionPeriod],
    ) -> Result[VaultEntry, VaultError]:
        """Change how long ``entry_id`` is kept, counted from its creation."""
        key = self._require_key()
        self._require_index()
        async with self._index_lock:
            index, sha = self._snapshot()
            entry = index.get_entry(entry_id)
            if entry is None:
                return Failure(NotFound(self.repository.entry_path(entry_id)))
            updated = entry.with_retention(retention)
            saved = await self._save_index(index.update_entry(updated), key, sha)
        return saved.map(lambda _: updated)

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    async def cleanup(self) -> CleanupResult:
        """Run one expiry cleanup pass over the synced index.

        At most one pass runs at a time; a call made while another pass is
        in flight returns an empty result without touching the remote. The
        pass waits for pending index writes and starts from the index they
        produced.

        Raises:
            VaultStateError: If the vault is locked or has not been synced.
        """
        key = self._require_key()
        self._require_index()
        if self._cleanup_lock.locked():
            self._logger.debug("Cleanup already running")
            return CleanupResult.empty()
        async with self._cleanup_lock:
            async with self._index_lock:
                index, sha = self._snapshot()
                result = await self.cleanup_service.cleanup_expired_entries(
                    index, key, sha
                )
                if result.index is not None and result.index_sha is not None:
                    self._adopt_index(result.index, result.index_sha)
                    if self.is_unlocked:
                        await self.credentials.set_index_sha(result.index_sha)
            for entry_id in result.deleted_ids:
                await self.cache.evict(entry_id)
        if result.index_error:
            self._logger.warning(
                "Index not updated after cleanup, will retry on next pass: %s",
                result.index_error,
            )
        if result.has_remaining:
            self._logger.info(
                "%d expired entries remaining for next cleanup", result.remaining
            )
        return result
