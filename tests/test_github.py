"""
Tests for the GitHub transport.

Tests cover:
- Repository coordinates and headers
- Rate limit header tracking
- Status to error mapping
- Request retries and failure handling
"""
import base64
import pytest
import aiohttp
from datetime import datetime, timedelta, timezone

from navigator_vault.vault.errors import (
    AccessForbidden,
    AuthenticationFailed,
    ConflictError,
    NetworkError,
    NotFound,
    RateLimitExceeded,
    ServerError,
    UnknownRepositoryError,
)
from navigator_vault.vault.github import (
    GitHubAuth,
    GitHubClient,
    RateLimitTracker,
    RemoteFile,
    map_status,
)


# --- Test Fixtures ---

class FakeResponse:
    """Minimal aiohttp response context manager."""

    def __init__(self, status: int, body: bytes = b"", headers=None):
        self.status = status
        self.headers = headers or {}
        self._body = body

    async def read(self) -> bytes:
        return self._body

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False


class FakeSession:
    """Replays queued responses (or raises queued exceptions)."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []
        self.closed = False

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    async def close(self):
        self.closed = True


@pytest.fixture
def auth():
    return GitHubAuth(owner="octo", repo="vault", token="ghp_secret")


def make_client(auth, *responses, max_retries=3):
    session = FakeSession(*responses)
    client = GitHubClient(auth, session=session, max_retries=max_retries, retry_delay=0)
    return client, session


# --- Test GitHubAuth ---

class TestGitHubAuth:
    """Tests for repository coordinates."""

    def test_from_url(self):
        auth = GitHubAuth.from_url("https://github.com/octo/vault.git", "t")
        assert (auth.owner, auth.repo) == ("octo", "vault")

    def test_from_slug(self):
        auth = GitHubAuth.from_url("octo/vault", "t")
        assert auth.repo_path == "/repos/octo/vault"

    def test_invalid_url(self):
        with pytest.raises(ValueError):
            GitHubAuth.from_url("not a repo", "t")

    def test_contents_path(self, auth):
        assert auth.contents_path("/.navigator-vault/index.enc") == (
            "/repos/octo/vault/contents/.navigator-vault/index.enc"
        )

    def test_headers(self, auth):
        headers = auth.headers
        assert headers["Authorization"] == "Bearer ghp_secret"
        assert headers["Accept"] == "application/vnd.github+json"
        assert headers["User-Agent"].startswith("navigator_vault/")

    def test_token_not_in_repr(self, auth):
        assert "ghp_secret" not in repr(auth)


# --- Test RateLimitTracker ---

class TestRateLimitTracker:
    """Tests for quota tracking."""

    def test_unknown(self):
        tracker = RateLimitTracker()
        assert tracker.status == "Rate limit: unknown"
        assert tracker.is_near_limit is False

    def test_update_from_headers(self):
        tracker = RateLimitTracker()
        tracker.update_from_headers({
            "X-RateLimit-Limit": "5000",
            "X-RateLimit-Remaining": "42",
            "X-RateLimit-Reset": "1772366400",
        })
        assert tracker.limit == 5000
        assert tracker.remaining == 42
        assert tracker.reset_at == datetime.fromtimestamp(1772366400, tz=timezone.utc)
        assert tracker.is_near_limit is True
        assert tracker.is_exhausted is False

    def test_time_until_reset(self):
        tracker = RateLimitTracker()
        now = datetime(2026, 3, 1, tzinfo=timezone.utc)
        tracker.reset_at = now + timedelta(minutes=5)
        assert tracker.time_until_reset(now) == timedelta(minutes=5)
        assert tracker.time_until_reset(now + timedelta(hours=1)) == timedelta(0)


# --- Test RemoteFile ---

class TestRemoteFile:
    """Tests for contents API file descriptions."""

    def test_from_json(self):
        content = base64.b64encode(b"payload").decode()
        remote = RemoteFile.from_json({
            "name": "index.enc",
            "path": ".navigator-vault/index.enc",
            "sha": "abc",
            "size": 7,
            "type": "file",
            "content": content[:4] + "\n" + content[4:],
        })
        assert remote.sha == "abc"
        assert remote.is_file
        assert remote.decoded_content == b"payload"

    def test_no_content(self):
        remote = RemoteFile(name="d", path="d", sha="x", type="dir")
        assert remote.decoded_content is None
        assert remote.is_directory


# --- Test map_status ---

class TestMapStatus:
    """Tests for translating HTTP statuses."""

    @pytest.mark.parametrize("status,message,expected", [
        (401, None, AuthenticationFailed),
        (403, "Resource not accessible", AccessForbidden),
        (403, "API rate limit exceeded", RateLimitExceeded),
        (404, None, NotFound),
        (409, "is at abc but expected def", ConflictError),
        (412, None, ConflictError),
        (422, "sha wasn't supplied", ConflictError),
        (422, "Invalid request", UnknownRepositoryError),
        (429, None, RateLimitExceeded),
        (502, "Bad gateway", ServerError),
        (418, None, UnknownRepositoryError),
    ])
    def test_mapping(self, status, message, expected):
        assert isinstance(map_status(status, "p", message), expected)

    def test_conflict_is_not_transport(self):
        assert map_status(409, "p", expected_sha="s").is_transport is False
        assert map_status(404, "p").is_transport is False
        assert map_status(500, "p").is_transport is True

    def test_conflict_keeps_expected_sha(self):
        error = map_status(409, "p", expected_sha="s1")
        assert error.expected_sha == "s1"
        assert error.path == "p"


# --- Test GitHubClient ---

class TestGitHubClient:
    """Tests for the request loop."""

    @pytest.mark.asyncio
    async def test_get(self, auth):
        client, session = make_client(
            auth,
            FakeResponse(200, b'{"name": "vault"}', {"X-RateLimit-Remaining": "4999"}),
        )
        status, data = await client.get(auth.repo_path)
        assert status == 200
        assert data == {"name": "vault"}
        method, url, kwargs = session.calls[0]
        assert method == "GET"
        assert url == "https://api.github.com/repos/octo/vault"
        assert kwargs["headers"]["Authorization"] == "Bearer ghp_secret"
        assert client.rate_limits.remaining == 4999

    @pytest.mark.asyncio
    async def test_put_sends_payload(self, auth):
        client, session = make_client(auth, FakeResponse(201, b"{}"))
        await client.put("/x", {"message": "m", "sha": "s"})
        assert session.calls[0][0] == "PUT"
        assert session.calls[0][2]["json"] == {"message": "m", "sha": "s"}

    @pytest.mark.asyncio
    async def test_client_errors_returned(self, auth):
        client, _ = make_client(auth, FakeResponse(404, b'{"message": "Not Found"}'))
        status, data = await client.get("/x")
        assert status == 404
        assert data["message"] == "Not Found"

    @pytest.mark.asyncio
    async def test_server_error_retried(self, auth):
        client, session = make_client(
            auth, FakeResponse(502), FakeResponse(200, b"[]")
        )
        status, data = await client.get("/x")
        assert status == 200
        assert data == []
        assert len(session.calls) == 2

    @pytest.mark.asyncio
    async def test_server_error_exhausts_retries(self, auth):
        client, session = make_client(
            auth, *(FakeResponse(503) for _ in range(3))
        )
        with pytest.raises(ServerError):
            await client.get("/x")
        assert len(session.calls) == 3

    @pytest.mark.asyncio
    async def test_connection_error_retried(self, auth):
        client, _ = make_client(
            auth,
            aiohttp.ClientConnectionError("reset"),
            FakeResponse(200, b"{}"),
        )
        status, _ = await client.get("/x")
        assert status == 200

    @pytest.mark.asyncio
    async def test_connection_error_exhausts_retries(self, auth):
        client, session = make_client(
            auth,
            *(aiohttp.ClientConnectionError("reset") for _ in range(2)),
            max_retries=2,
        )
        with pytest.raises(NetworkError):
            await client.get("/x")
        assert len(session.calls) == 2

    @pytest.mark.asyncio
    async def test_rate_limited(self, auth):
        client, session = make_client(auth, FakeResponse(429))
        with pytest.raises(RateLimitExceeded):
            await client.get("/x")
        assert len(session.calls) == 1

    @pytest.mark.asyncio
    async def test_forbidden_rate_limit(self, auth):
        client, _ = make_client(
            auth,
            FakeResponse(403, b'{"message": "API rate limit exceeded for user"}'),
        )
        with pytest.raises(RateLimitExceeded):
            await client.get("/x")

    @pytest.mark.asyncio
    async def test_non_json_body(self, auth):
        client, _ = make_client(auth, FakeResponse(400, b"oops"))
        status, data = await client.get("/x")
        assert (status, data) == (400, {"message": "oops"})

    @pytest.mark.asyncio
    async def test_close_keeps_injected_session(self, auth):
        client, session = make_client(auth)
        await client.close()
        assert session.closed is False
