"""
Vault Configuration — validated settings, lockout policy and remote metadata.

Reads settings from environment variables:
    VAULT_REPO = <owner/repo or https://github.com/owner/repo>
    VAULT_GITHUB_TOKEN = <personal access token>
    VAULT_MAX_FAILED_ATTEMPTS, VAULT_LOCKOUT_SECONDS, ... (see ``conf.py``)

Security Note:
    Never log the token. ``VaultConfig`` keeps it as a ``SecretStr``.
"""
import os
import re
import base64
import logging
from typing import ClassVar, Optional
from datetime import datetime, timedelta, timezone

import orjson
from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator

from .. import conf

logger = logging.getLogger("navigator.vault")

_REPO_URL_PATTERN = re.compile(r"^github\.com/([^/]+)/([^/]+)$")
_REPO_SLUG_PATTERN = re.compile(r"^([A-Za-z0-9_.-]+)/([A-Za-z0-9_.-]+)$")


def parse_repo(value: str) -> Optional[tuple[str, str]]:
    """Parse ``owner/repo`` or a GitHub URL into ``(owner, repo)``.

    Accepts ``https://github.com/owner/repo(.git)``, ``github.com/owner/repo``
    and ``owner/repo``. Returns None when the value matches none of them.
    """
    cleaned = value.strip()
    cleaned = re.sub(r"\.git$", "", cleaned)
    cleaned = re.sub(r"^https?://", "", cleaned)
    cleaned = re.sub(r"^www\.", "", cleaned)
    match = _REPO_URL_PATTERN.match(cleaned) or _REPO_SLUG_PATTERN.match(cleaned)
    if match is None:
        return None
    return match.group(1), match.group(2)


class LockoutPolicy(BaseModel):
    """Brute-force lockout policy.

    Once ``threshold`` failed attempts are reached, every further failure locks
    the vault for ``base * 2 ** (failed_attempts - threshold)``, capped at
    ``maximum``. The duration depends only on the failure count, so more
    failures never shorten a lockout.
    """

    model_config = ConfigDict(frozen=True)

    threshold: int = Field(default=conf.VAULT_MAX_FAILED_ATTEMPTS, ge=1)
    base: timedelta = timedelta(seconds=conf.VAULT_LOCKOUT_SECONDS)
    maximum: timedelta = timedelta(seconds=conf.VAULT_MAX_LOCKOUT_SECONDS)

    def attempts_remaining(self, failed_attempts: int) -> int:
        return max(0, self.threshold - failed_attempts)

    def lockout_duration(self, failed_attempts: int) -> Optional[timedelta]:
        """Lockout for a failure count, or None while under the threshold."""
        if failed_attempts < self.threshold:
            return None
        exponent = min(failed_attempts - self.threshold, 32)
        seconds = self.base.total_seconds() * (2 ** exponent)
        return timedelta(seconds=min(seconds, self.maximum.total_seconds()))


class VaultConfig(BaseModel):
    """Validated vault configuration."""

    repo_owner: str
    repo_name: str
    token: SecretStr
    api_url: str = Field(default=conf.VAULT_API_URL)
    storage_path: str = Field(default=conf.VAULT_STORAGE_PATH)
    cache_dir: str = Field(default=conf.VAULT_CACHE_DIR)
    max_failed_attempts: int = Field(default=conf.VAULT_MAX_FAILED_ATTEMPTS, ge=1, le=100)
    lockout_seconds: int = Field(default=conf.VAULT_LOCKOUT_SECONDS, ge=1)
    max_lockout_seconds: int = Field(default=conf.VAULT_MAX_LOCKOUT_SECONDS, ge=1)
    cleanup_batch_size: int = Field(
        default=conf.VAULT_CLEANUP_BATCH_SIZE, ge=1, le=conf.VAULT_CLEANUP_BATCH_SIZE
    )
    request_timeout: int = Field(default=conf.VAULT_REQUEST_TIMEOUT, ge=1)
    max_retries: int = Field(default=conf.VAULT_MAX_RETRIES, ge=1, le=10)
    retry_delay: float = Field(default=conf.VAULT_RETRY_DELAY, ge=0)

    @field_validator("api_url")
    @classmethod
    def validate_api_url(cls, v: str) -> str:
        """API URL must be http(s); trailing slash is dropped."""
        if not v.startswith(("https://", "http://")):
            raise ValueError(f"Unsupported API URL: {v}")
        return v.rstrip("/")

    @property
    def lockout_policy(self) -> LockoutPolicy:
        return LockoutPolicy(
            threshold=self.max_failed_attempts,
            base=timedelta(seconds=self.lockout_seconds),
            maximum=timedelta(seconds=max(self.lockout_seconds, self.max_lockout_seconds)),
        )

    @classmethod
    def from_env(cls) -> "VaultConfig":
        """Create VaultConfig by loading values from environment.

        Returns:
            Populated VaultConfig instance.

        Raises:
            RuntimeError: If VAULT_REPO or VAULT_GITHUB_TOKEN is missing.
            ValueError: If VAULT_REPO cannot be parsed.
        """
        repo = os.environ.get("VAULT_REPO")
        token = os.environ.get("VAULT_GITHUB_TOKEN")
        if not repo or not token:
            raise RuntimeError(
                "Vault remote is not configured. "
                "Set VAULT_REPO=<owner/repo> and VAULT_GITHUB_TOKEN=<token>"
            )
        parsed = parse_repo(repo)
        if parsed is None:
            raise ValueError(f"Invalid GitHub repository: {repo}")
        owner, name = parsed
        logger.debug("Vault remote configured for %s/%s", owner, name)
        return cls(
            repo_owner=owner,
            repo_name=name,
            token=token,
            api_url=os.environ.get("VAULT_API_URL", conf.VAULT_API_URL),
            storage_path=os.environ.get("VAULT_STORAGE_PATH", conf.VAULT_STORAGE_PATH),
            cache_dir=os.environ.get("VAULT_CACHE_DIR", conf.VAULT_CACHE_DIR),
            max_failed_attempts=conf.VAULT_MAX_FAILED_ATTEMPTS,
            lockout_seconds=conf.VAULT_LOCKOUT_SECONDS,
            max_lockout_seconds=conf.VAULT_MAX_LOCKOUT_SECONDS,
            cleanup_batch_size=int(
                os.environ.get("VAULT_CLEANUP_BATCH_SIZE", conf.VAULT_CLEANUP_BATCH_SIZE)
            ),
            request_timeout=conf.VAULT_REQUEST_TIMEOUT,
            max_retries=conf.VAULT_MAX_RETRIES,
            retry_delay=conf.VAULT_RETRY_DELAY,
        )


class VaultMetadata(BaseModel):
    """Public vault metadata stored in plaintext as ``config.json``.

    Holds the KDF salt so every device derives the same master key.
    """

    model_config = ConfigDict(frozen=True)

    CURRENT_VERSION: ClassVar[int] = 1

    version: int = 1
    salt: bytes
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def to_json(self) -> bytes:
        return orjson.dumps({
            "version": self.version,
            "salt": base64.b64encode(self.salt).decode("ascii"),
            "created_at": self.created_at.isoformat(),
        })

    @classmethod
    def from_json(cls, data: bytes) -> "VaultMetadata":
        """Parse ``config.json``.

        Raises:
            ValueError: If the document is malformed.
        """
        try:
            parsed = orjson.loads(data)
            return cls(
                version=parsed.get("version", 1),
                salt=base64.b64decode(parsed["salt"]),
                created_at=parsed.get("created_at") or datetime.now(timezone.utc),
            )
        except (KeyError, TypeError, AttributeError, orjson.JSONDecodeError) as err:
            raise ValueError(f"Invalid vault metadata: {err}") from err
