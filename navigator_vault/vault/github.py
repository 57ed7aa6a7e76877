"""
GitHub transport — authenticated aiohttp client for the contents API.

- ``GitHubAuth``: repository coordinates, token and request headers
- ``RateLimitTracker``: parsed ``X-RateLimit-*`` response headers
- ``RemoteFile``: a file entry returned by the contents API
- ``GitHubClient``: request loop with retry on connection errors and 5xx,
  and mapping of HTTP statuses to typed ``RepositoryError``s

Security Note:
    The token is sent in the Authorization header only; never log it.
"""
import base64
import asyncio
import logging
from typing import Any, Optional
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

import aiohttp
import orjson

from .. import conf
from ..version import __title__, __version__
from .config import VaultConfig, parse_repo
from .errors import (
    AccessForbidden,
    AuthenticationFailed,
    ConflictError,
    NetworkError,
    NotFound,
    RateLimitExceeded,
    RepositoryError,
    ServerError,
    UnknownRepositoryError,
)


@dataclass
class GitHubAuth:
    """Repository coordinates and credentials."""

    owner: str
    repo: str
    token: str = field(repr=False)
    base_url: str = conf.VAULT_API_URL

    @classmethod
    def from_url(cls, repo_url: str, token: str, **kwargs) -> "GitHubAuth":
        """Build from ``https://github.com/owner/repo`` or ``owner/repo``.

        Raises:
            ValueError: If the URL cannot be parsed.
        """
        parsed = parse_repo(repo_url)
        if parsed is None:
            raise ValueError(f"Invalid GitHub repository URL: {repo_url}")
        return cls(owner=parsed[0], repo=parsed[1], token=token, **kwargs)

    @classmethod
    def from_config(cls, config: VaultConfig) -> "GitHubAuth":
        return cls(
            owner=config.repo_owner,
            repo=config.repo_name,
            token=config.token.get_secret_value(),
            base_url=config.api_url,
        )

    @property
    def repo_path(self) -> str:
        return f"/repos/{self.owner}/{self.repo}"

    def contents_path(self, file_path: str) -> str:
        return f"{self.repo_path}/contents/{file_path.lstrip('/')}"

    @property
    def headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": conf.VAULT_API_VERSION,
            "User-Agent": f"{__title__}/{__version__}",
        }


class RateLimitTracker:
    """Tracks the API quota reported by the last response."""

    def __init__(self, warning_threshold: int = conf.VAULT_RATE_LIMIT_WARNING):
        self.warning_threshold = warning_threshold
        self.limit: Optional[int] = None
        self.remaining: Optional[int] = None
        self.reset_at: Optional[datetime] = None

    @staticmethod
    def _to_int(value: Any) -> Optional[int]:
        try:
            return int(value)
        except (TypeError, ValueError):
            return None

    def update_from_headers(self, headers: Mapping[str, str]) -> None:
        lowered = {str(k).lower(): v for k, v in headers.items()}
        if "x-ratelimit-limit" in lowered:
            self.limit = self._to_int(lowered["x-ratelimit-limit"])
        if "x-ratelimit-remaining" in lowered:
            self.remaining = self._to_int(lowered["x-ratelimit-remaining"])
        reset = self._to_int(lowered.get("x-ratelimit-reset"))
        if reset is not None:
            self.reset_at = datetime.fromtimestamp(reset, tz=timezone.utc)

    @property
    def is_near_limit(self) -> bool:
        return self.remaining is not None and self.remaining < self.warning_threshold

    @property
    def is_exhausted(self) -> bool:
        return self.remaining is not None and self.remaining <= 0

    def time_until_reset(self, now: Optional[datetime] = None) -> Optional[timedelta]:
        if self.reset_at is None:
            return None
        delta = self.reset_at - (now or datetime.now(timezone.utc))
        return max(delta, timedelta(0))

    @property
    def status(self) -> str:
        if self.remaining is None or self.limit is None:
            return "Rate limit: unknown"
        reset = f" (resets at {self.reset_at:%H:%M:%S} UTC)" if self.reset_at else ""
        return f"Rate limit: {self.remaining}/{self.limit} remaining{reset}"

    def __str__(self) -> str:
        return self.status


@dataclass(frozen=True)
class RemoteFile:
    """A file as described by the contents API."""

    name: str
    path: str
    sha: str
    size: int = 0
    type: str = "file"
    content: Optional[str] = field(default=None, repr=False)
    download_url: Optional[str] = None

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> "RemoteFile":
        return cls(
            name=data["name"],
            path=data["path"],
            sha=data["sha"],
            size=data.get("size", 0),
            type=data.get("type", "file"),
            content=data.get("content"),
            download_url=data.get("download_url"),
        )

    @property
    def decoded_content(self) -> Optional[bytes]:
        if self.content is None:
            return None
        # GitHub wraps base64 content in newlines
        return base64.b64decode(self.content.replace("\n", ""))

    @property
    def is_file(self) -> bool:
        return self.type == "file"

    @property
    def is_directory(self) -> bool:
        return self.type == "dir"


def map_status(
    status: int,
    path: str,
    message: Optional[str] = None,
    expected_sha: Optional[str] = None,
    rate_limits: Optional[RateLimitTracker] = None,
) -> RepositoryError:
    """Translate an unexpected HTTP status into a RepositoryError."""
    message = message or ""
    if status == 401:
        return AuthenticationFailed()
    if status == 403:
        if "rate limit" in message.lower():
            return RateLimitExceeded(
                reset_at=rate_limits.reset_at if rate_limits else None,
                remaining=rate_limits.remaining if rate_limits else None,
            )
        return AccessForbidden()
    if status == 404:
        return NotFound(path)
    if status in (409, 412):
        return ConflictError(path, expected_sha)
    if status == 422 and "sha" in message.lower():
        # contents API answers 422 when a write omits/mismatches the sha
        return ConflictError(path, expected_sha)
    if status == 429:
        return RateLimitExceeded(
            reset_at=rate_limits.reset_at if rate_limits else None,
            remaining=rate_limits.remaining if rate_limits else None,
        )
    if status >= 500:
        return ServerError(status, message or None)
    return UnknownRepositoryError(message or f"HTTP {status}", status)


class GitHubClient:
    """aiohttp client for the GitHub REST API.

    Connection errors, timeouts and 5xx responses are retried with a linear
    backoff up to ``max_retries`` attempts; every other status is returned to
    the caller. Rate-limit responses raise ``RateLimitExceeded`` immediately.
    """

    def __init__(
        self,
        auth: GitHubAuth,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: int = conf.VAULT_REQUEST_TIMEOUT,
        max_retries: int = conf.VAULT_MAX_RETRIES,
        retry_delay: float = conf.VAULT_RETRY_DELAY,
        logger: Optional[logging.Logger] = None,
    ):
        self.auth = auth
        self.rate_limits = RateLimitTracker()
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._timeout = timeout
        self._session = session
        self._owns_session = session is None
        self._logger = logger or logging.getLogger("navigator.vault.github")

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create the aiohttp session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._timeout),
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        """Close the session if this client created it."""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()

    async def __aenter__(self) -> "GitHubClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    @staticmethod
    def _parse_body(body: bytes) -> Any:
        if not body:
            return None
        try:
            return orjson.loads(body)
        except orjson.JSONDecodeError:
            return {"message": body.decode("utf-8", errors="replace")}

    @staticmethod
    def _message(data: Any) -> Optional[str]:
        if isinstance(data, Mapping):
            value = data.get("message")
            return str(value) if value is not None else None
        return None

    async def request(
        self,
        method: str,
        path: str,
        payload: Optional[dict] = None,
    ) -> tuple[int, Any]:
        """Send a request and return ``(status, parsed JSON body)``.

        Raises:
            NetworkError: Connection failure or timeout after all retries.
            ServerError: 5xx response after all retries.
            RateLimitExceeded: The API quota is exhausted.
        """
        attempts = 0
        while True:
            attempts += 1
            try:
                session = await self._get_session()
                async with session.request(
                    method,
                    f"{self.auth.base_url}{path}",
                    json=payload,
                    headers=self.auth.headers,
                ) as response:
                    self.rate_limits.update_from_headers(response.headers)
                    status = response.status
                    data = self._parse_body(await response.read())
            except (aiohttp.ClientConnectionError, asyncio.TimeoutError) as err:
                if attempts < self.max_retries:
                    self._logger.warning(
                        "%s %s failed (%s), retry %d/%d",
                        method, path, err or type(err).__name__,
                        attempts, self.max_retries - 1,
                    )
                    await asyncio.sleep(self.retry_delay * attempts)
                    continue
                raise NetworkError(str(err) or type(err).__name__) from err
            except aiohttp.ClientError as err:
                raise NetworkError(str(err)) from err

            message = self._message(data)
            if status == 429 or (
                status == 403 and message and "rate limit" in message.lower()
            ):
                raise map_status(status, path, message, rate_limits=self.rate_limits)
            if status >= 500:
                if attempts < self.max_retries:
                    self._logger.warning(
                        "%s %s returned %d, retry %d/%d",
                        method, path, status, attempts, self.max_retries - 1,
                    )
                    await asyncio.sleep(self.retry_delay * attempts)
                    continue
                raise ServerError(status, message)
            if self.rate_limits.is_near_limit:
                self._logger.warning("GitHub API quota low: %s", self.rate_limits.status)
            return status, data

    async def get(self, path: str) -> tuple[int, Any]:
        return await self.request("GET", path)

    async def put(self, path: str, payload: dict) -> tuple[int, Any]:
        return await self.request("PUT", path, payload)

    async def delete(self, path: str, payload: dict) -> tuple[int, Any]:
        return await self.request("DELETE", path, payload)
