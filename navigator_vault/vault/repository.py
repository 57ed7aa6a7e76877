"""
Vault Repository — encrypted vault files in a GitHub repository.

Remote layout::

    .navigator-vault/
        config.json      - public metadata (KDF salt)
        index.enc        - encrypted index of all entries
        data/
            <id>.enc     - encrypted entry blobs

Every write and delete carries the ``sha`` the caller last read or wrote;
a stale sha is reported as ``ConflictError``, distinct from ``NotFound`` and
from transport failures. All operations return a ``Result``.
"""
import base64
import binascii
import logging
from typing import Any, Optional

from .. import conf
from ..result import Failure, Result, Success
from .config import VaultConfig, VaultMetadata
from .errors import NotFound, RepositoryError, UnknownRepositoryError
from .github import GitHubAuth, GitHubClient, RateLimitTracker, RemoteFile, map_status


class VaultRepository:
    """Remote object store client for vault blobs, index and metadata."""

    CONFIG_FILE = conf.VAULT_CONFIG_FILE
    INDEX_FILE = conf.VAULT_INDEX_FILE
    DATA_DIR = conf.VAULT_DATA_DIR

    def __init__(self, client: GitHubClient, logger: Optional[logging.Logger] = None):
        self._client = client
        self._logger = logger or logging.getLogger("navigator.vault.github")

    @classmethod
    def from_config(cls, config: VaultConfig) -> "VaultRepository":
        client = GitHubClient(
            GitHubAuth.from_config(config),
            timeout=config.request_timeout,
            max_retries=config.max_retries,
            retry_delay=config.retry_delay,
        )
        return cls(client)

    @classmethod
    def entry_path(cls, entry_id: str) -> str:
        return f"{cls.DATA_DIR}/{entry_id}{conf.VAULT_ENTRY_SUFFIX}"

    @property
    def rate_limits(self) -> RateLimitTracker:
        return self._client.rate_limits

    async def close(self) -> None:
        await self._client.close()

    def _error(
        self,
        status: int,
        path: str,
        data: Any,
        sha: Optional[str] = None,
    ) -> RepositoryError:
        message = data.get("message") if isinstance(data, dict) else None
        return map_status(
            status, path, message, expected_sha=sha, rate_limits=self.rate_limits
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def verify_access(self) -> Result[bool, RepositoryError]:
        """Check repository access.

        Returns:
            Success(True) if the vault exists, Success(False) if the repository
            is reachable but the vault is not initialized, or a failure.
        """
        auth = self._client.auth
        try:
            status, data = await self._client.get(auth.repo_path)
            if status != 200:
                return Failure(self._error(status, auth.repo_path, data))
            status, _ = await self._client.get(auth.contents_path(self.CONFIG_FILE))
        except RepositoryError as err:
            return Failure(err)
        return Success(status == 200)

    async def get_file_info(self, path: str) -> Result[RemoteFile, RepositoryError]:
        """Return the remote file description (including its current sha)."""
        try:
            status, data = await self._client.get(self._client.auth.contents_path(path))
        except RepositoryError as err:
            return Failure(err)
        if status != 200:
            return Failure(self._error(status, path, data))
        if not isinstance(data, dict):
            return Failure(UnknownRepositoryError(f"{path} is not a file", status))
        return Success(RemoteFile.from_json(data))

    async def download_file(self, path: str) -> Result[bytes, RepositoryError]:
        info = await self.get_file_info(path)
        if info.is_failure:
            return info
        try:
            content = info.value_or_none.decoded_content
        except binascii.Error:
            return Failure(UnknownRepositoryError(f"{path} has malformed content"))
        if content is None:
            return Failure(UnknownRepositoryError(f"{path} has no content"))
        return Success(content)

    async def download_index(self) -> Result[bytes, RepositoryError]:
        return await self.download_file(self.INDEX_FILE)

    async def download_entry(self, entry_id: str) -> Result[bytes, RepositoryError]:
        return await self.download_file(self.entry_path(entry_id))

    async def download_metadata(self) -> Result[VaultMetadata, RepositoryError]:
        """Download and parse ``config.json``."""
        downloaded = await self.download_file(self.CONFIG_FILE)
        if downloaded.is_failure:
            return downloaded
        try:
            return Success(VaultMetadata.from_json(downloaded.unwrap()))
        except ValueError as err:
            return Failure(UnknownRepositoryError(str(err)))

    async def get_index_sha(self) -> Result[Optional[str], RepositoryError]:
        """Current sha of ``index.enc``; Success(None) when it does not exist."""
        info = await self.get_file_info(self.INDEX_FILE)
        if isinstance(info.error_or_none, NotFound):
            return Success(None)
        return info.map(lambda remote: remote.sha)

    async def list_directory(self, path: str) -> Result[list[RemoteFile], RepositoryError]:
        try:
            status, data = await self._client.get(self._client.auth.contents_path(path))
        except RepositoryError as err:
            return Failure(err)
        if status == 404:
            return Success([])
        if status != 200:
            return Failure(self._error(status, path, data))
        if not isinstance(data, list):
            return Failure(UnknownRepositoryError(f"{path} is not a directory", status))
        return Success([RemoteFile.from_json(item) for item in data])

    async def list_entries(self) -> Result[list[RemoteFile], RepositoryError]:
        return await self.list_directory(self.DATA_DIR)

    # ------------------------------------------------------------------
    # Hash-guarded writes
    # ------------------------------------------------------------------

    async def upload_file(
        self,
        path: str,
        content: bytes,
        message: str,
        sha: Optional[str] = None,
    ) -> Result[RemoteFile, RepositoryError]:
        """Create (``sha`` None) or replace the file at ``path``.

        Returns:
            Success(RemoteFile) whose ``sha`` is the new content hash, or
            Failure(ConflictError) when ``sha`` is stale.
        """
        payload = {
            "message": message,
            "content": base64.b64encode(content).decode("ascii"),
        }
        if sha is not None:
            payload["sha"] = sha
        try:
            status, data = await self._client.put(
                self._client.auth.contents_path(path), payload
            )
        except RepositoryError as err:
            return Failure(err)
        if status not in (200, 201):
            return Failure(self._error(status, path, data, sha))
        self._logger.debug("Uploaded %s (%d bytes)", path, len(content))
        return Success(RemoteFile.from_json(data["content"]))

    async def upload_index(
        self,
        content: bytes,
        sha: Optional[str] = None,
    ) -> Result[RemoteFile, RepositoryError]:
        return await self.upload_file(
            self.INDEX_FILE,
            content,
            "Initialize vault index" if sha is None else "Update vault index",
            sha,
        )

    async def upload_entry(
        self,
        entry_id: str,
        content: bytes,
        sha: Optional[str] = None,
    ) -> Result[RemoteFile, RepositoryError]:
        return await self.upload_file(
            self.entry_path(entry_id),
            content,
            f"Add entry {entry_id}" if sha is None else f"Update entry {entry_id}",
            sha,
        )

    async def upload_metadata(
        self,
        metadata: VaultMetadata,
        sha: Optional[str] = None,
    ) -> Result[RemoteFile, RepositoryError]:
        return await self.upload_file(
            self.CONFIG_FILE,
            metadata.to_json(),
            "Initialize vault" if sha is None else "Update vault config",
            sha,
        )

    async def delete_file(
        self,
        path: str,
        sha: str,
        message: str,
    ) -> Result[None, RepositoryError]:
        """Delete ``path`` if its current hash is still ``sha``."""
        try:
            status, data = await self._client.delete(
                self._client.auth.contents_path(path),
                {"message": message, "sha": sha},
            )
        except RepositoryError as err:
            return Failure(err)
        if status != 200:
            return Failure(self._error(status, path, data, sha))
        self._logger.debug("Deleted %s", path)
        return Success(None)

    async def delete_entry(self, entry_id: str, sha: str) -> Result[None, RepositoryError]:
        return await self.delete_file(
            self.entry_path(entry_id), sha, f"Delete entry {entry_id}"
        )
