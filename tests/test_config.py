"""
Tests for vault configuration.

Tests cover:
- Repository parsing
- VaultConfig validation and environment loading
- LockoutPolicy derived from the configuration
- VaultMetadata documents
"""
import pytest
from datetime import timedelta
from pydantic import ValidationError

from navigator_vault.vault.config import VaultConfig, VaultMetadata, parse_repo


# --- Test parse_repo ---

class TestParseRepo:
    """Tests for repository references."""

    @pytest.mark.parametrize("value", [
        "octo/vault",
        "https://github.com/octo/vault",
        "https://github.com/octo/vault.git",
        "github.com/octo/vault",
        "  https://www.github.com/octo/vault  ",
    ])
    def test_valid(self, value):
        assert parse_repo(value) == ("octo", "vault")

    @pytest.mark.parametrize("value", ["", "octo", "https://gitlab.com/octo/vault", "a/b/c"])
    def test_invalid(self, value):
        assert parse_repo(value) is None


# --- Test VaultConfig ---

class TestVaultConfig:
    """Tests for configuration validation."""

    def test_defaults(self):
        config = VaultConfig(repo_owner="octo", repo_name="vault", token="t")
        assert config.api_url == "https://api.github.com"
        assert config.cleanup_batch_size == 50
        assert config.max_failed_attempts == 5

    def test_token_hidden(self):
        config = VaultConfig(repo_owner="octo", repo_name="vault", token="ghp_secret")
        assert "ghp_secret" not in repr(config)
        assert config.token.get_secret_value() == "ghp_secret"

    def test_api_url_trailing_slash(self):
        config = VaultConfig(
            repo_owner="o", repo_name="r", token="t", api_url="https://ghe.local/api/v3/"
        )
        assert config.api_url == "https://ghe.local/api/v3"

    def test_api_url_scheme(self):
        with pytest.raises(ValidationError):
            VaultConfig(repo_owner="o", repo_name="r", token="t", api_url="ftp://x")

    @pytest.mark.parametrize("size", [0, 51])
    def test_batch_size_bounds(self, size):
        with pytest.raises(ValidationError):
            VaultConfig(repo_owner="o", repo_name="r", token="t", cleanup_batch_size=size)

    def test_lockout_policy(self):
        config = VaultConfig(
            repo_owner="o",
            repo_name="r",
            token="t",
            max_failed_attempts=3,
            lockout_seconds=60,
            max_lockout_seconds=600,
        )
        policy = config.lockout_policy
        assert policy.threshold == 3
        assert policy.lockout_duration(2) is None
        assert policy.lockout_duration(3) == timedelta(minutes=1)
        assert policy.lockout_duration(4) == timedelta(minutes=2)
        assert policy.lockout_duration(20) == timedelta(minutes=10)


# --- Test from_env ---

class TestFromEnv:
    """Tests for environment loading."""

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("VAULT_REPO", "https://github.com/octo/vault")
        monkeypatch.setenv("VAULT_GITHUB_TOKEN", "ghp_x")
        monkeypatch.setenv("VAULT_CLEANUP_BATCH_SIZE", "10")
        monkeypatch.setenv("VAULT_CACHE_DIR", "/tmp/vault-cache")
        config = VaultConfig.from_env()
        assert (config.repo_owner, config.repo_name) == ("octo", "vault")
        assert config.cleanup_batch_size == 10
        assert config.cache_dir == "/tmp/vault-cache"

    def test_missing_repo(self, monkeypatch):
        monkeypatch.delenv("VAULT_REPO", raising=False)
        monkeypatch.setenv("VAULT_GITHUB_TOKEN", "ghp_x")
        with pytest.raises(RuntimeError):
            VaultConfig.from_env()

    def test_invalid_repo(self, monkeypatch):
        monkeypatch.setenv("VAULT_REPO", "not-a-repo")
        monkeypatch.setenv("VAULT_GITHUB_TOKEN", "ghp_x")
        with pytest.raises(ValueError):
            VaultConfig.from_env()


# --- Test VaultMetadata ---

class TestVaultMetadata:
    """Tests for the public vault document."""

    def test_json(self):
        metadata = VaultMetadata(salt=b"\x00" * 32)
        restored = VaultMetadata.from_json(metadata.to_json())
        assert restored.salt == metadata.salt
        assert restored.version == VaultMetadata.CURRENT_VERSION

    @pytest.mark.parametrize("data", [b"not json", b"{}", b'{"salt": 5}'])
    def test_malformed(self, data):
        with pytest.raises(ValueError):
            VaultMetadata.from_json(data)
