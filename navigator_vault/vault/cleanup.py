"""
Vault Cleanup — Batch deletion of expired entries.

Deletes expired blobs from the remote store in bounded batches and then
reconciles the encrypted index. Every delete is guarded by the blob sha, so
a blob that changed remotely is left alone and counted as failed. The
operation is idempotent: a blob that is already gone counts as deleted, and
a pass that fails to upload the index is repaired by the next pass.

Security Note:
    The master key is only used to re-encrypt the index.
    Never log entry contents or key material; ids and counts only.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from .. import conf
from ..data import VaultEntry, VaultIndex
from .crypto import CryptoService, MasterKey
from .errors import NotFound, VaultStateError
from .repository import VaultRepository

MAX_BATCH_SIZE = conf.VAULT_CLEANUP_BATCH_SIZE


@dataclass(frozen=True)
class CleanupResult:
    """Outcome of one cleanup pass.

    ``deleted + failed`` is the batch size; ``remaining`` counts the expired
    entries left for a later pass. ``index`` and ``index_sha`` are set when the
    reconciled index was uploaded, ``index_error`` when that upload failed.
    ``deleted_ids`` lists the entries whose blobs are gone from the remote.
    """

    deleted: int
    failed: int
    remaining: int
    index: Optional[VaultIndex] = None
    index_sha: Optional[str] = None
    index_error: Optional[str] = None
    deleted_ids: tuple[str, ...] = ()

    @classmethod
    def empty(cls) -> "CleanupResult":
        return cls(deleted=0, failed=0, remaining=0)

    @property
    def has_deleted(self) -> bool:
        return self.deleted > 0

    @property
    def has_failed(self) -> bool:
        return self.failed > 0

    @property
    def has_remaining(self) -> bool:
        return self.remaining > 0

    @property
    def index_updated(self) -> bool:
        return self.index_sha is not None

    def __str__(self) -> str:
        return (
            f"CleanupResult(deleted={self.deleted}, failed={self.failed}, "
            f"remaining={self.remaining})"
        )


class CleanupService:
    """Removes expired entries from the remote vault."""

    def __init__(
        self,
        repository: VaultRepository,
        crypto: CryptoService,
        logger: Optional[logging.Logger] = None,
        max_batch_size: int = MAX_BATCH_SIZE,
    ):
        if not 1 <= max_batch_size <= MAX_BATCH_SIZE:
            raise ValueError(
                f"max_batch_size must be between 1 and {MAX_BATCH_SIZE}"
            )
        self.repository = repository
        self.crypto = crypto
        self.max_batch_size = max_batch_size
        self._logger = logger or logging.getLogger("navigator.vault.cleanup")

    async def _delete_entry(self, entry: VaultEntry) -> bool:
        """Delete one expired blob; True when it no longer exists remotely."""
        sha = entry.sha
        if sha is None:
            info = await self.repository.get_file_info(
                self.repository.entry_path(entry.id)
            )
            if isinstance(info.error_or_none, NotFound):
                self._logger.debug("Entry %s already removed", entry.id)
                return True
            if info.is_failure:
                self._logger.warning(
                    "Cannot resolve sha of entry %s: %s",
                    entry.id, info.error_or_none.message,
                )
                return False
            sha = info.value_or_none.sha
        result = await self.repository.delete_entry(entry.id, sha)
        if result.is_success:
            return True
        error = result.error_or_none
        if isinstance(error, NotFound):
            self._logger.debug("Entry %s already removed", entry.id)
            return True
        self._logger.warning(
            "Failed to delete entry %s: %s", entry.id, error.message
        )
        return False

    async def cleanup_expired_entries(
        self,
        index: VaultIndex,
        master_key: MasterKey,
        index_sha: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> CleanupResult:
        """Delete up to ``max_batch_size`` expired entries and update the index.

        Args:
            index: Current decrypted index.
            master_key: Live master key, used to re-encrypt the index.
            index_sha: Remote sha of the index this pass started from.
            now: Reference time for expiry (defaults to the current UTC time).

        Returns:
            CleanupResult with per-entry counts and the reconciled index.

        Raises:
            VaultStateError: If ``master_key`` has been wiped.
        """
        if not master_key.is_valid:
            raise VaultStateError("Cleanup requires an unlocked vault")

        expired = index.expired_entries(now)
        if not expired:
            return CleanupResult.empty()

        batch = expired[:self.max_batch_size]
        remaining = len(expired) - len(batch)
        self._logger.info(
            "Cleaning up %d expired entries (%d left for later)",
            len(batch), remaining,
        )

        deleted_ids: list[str] = []
        failed = 0
        for entry in batch:
            try:
                removed = await self._delete_entry(entry)
            except Exception as err:
                self._logger.error(
                    "Error deleting expired entry %s: %s", entry.id, err
                )
                removed = False
            if removed:
                deleted_ids.append(entry.id)
            else:
                failed += 1

        if not deleted_ids:
            self._logger.info("Cleanup complete: nothing deleted, %d failed", failed)
            return CleanupResult(deleted=0, failed=failed, remaining=remaining)

        new_index = index.remove_entries(deleted_ids)
        new_sha, index_error = await self._upload_index(new_index, master_key, index_sha)
        result = CleanupResult(
            deleted=len(deleted_ids),
            failed=failed,
            remaining=remaining,
            index=new_index if new_sha is not None else None,
            index_sha=new_sha,
            index_error=index_error,
            deleted_ids=tuple(deleted_ids),
        )
        self._logger.info("Cleanup complete: %s", result)
        return result

    async def _upload_index(
        self,
        new_index: VaultIndex,
        master_key: MasterKey,
        index_sha: Optional[str],
    ) -> tuple[Optional[str], Optional[str]]:
        """Encrypt and upload the reconciled index.

        Returns:
            ``(new_sha, None)`` on success, ``(None, reason)`` on failure.
        """
        try:
            encrypted = self.crypto.encrypt(new_index.to_json(), master_key)
            if encrypted.is_failure:
                reason = encrypted.error_or_none.message
            else:
                uploaded = await self.repository.upload_index(
                    encrypted.unwrap(), index_sha
                )
                if uploaded.is_success:
                    return uploaded.value_or_none.sha, None
                reason = uploaded.error_or_none.message
        except Exception as err:
            reason = str(err) or type(err).__name__
        self._logger.error("Failed to update index after cleanup: %s", reason)
        return None, reason
