"""Navigator Vault default settings.

Every value can be overridden through the environment; ``VaultConfig.from_env``
reads the same variables.
"""
import os

# Remote layout (relative to the repository root)
VAULT_DIR = os.environ.get("VAULT_REMOTE_DIR", ".navigator-vault")
VAULT_CONFIG_FILE = f"{VAULT_DIR}/config.json"
VAULT_INDEX_FILE = f"{VAULT_DIR}/index.enc"
VAULT_DATA_DIR = f"{VAULT_DIR}/data"
VAULT_ENTRY_SUFFIX = ".enc"

# GitHub contents API
VAULT_API_URL = os.environ.get("VAULT_API_URL", "https://api.github.com")
VAULT_API_VERSION = "2022-11-28"
VAULT_REQUEST_TIMEOUT = int(os.environ.get("VAULT_REQUEST_TIMEOUT", 30))
VAULT_MAX_RETRIES = int(os.environ.get("VAULT_MAX_RETRIES", 3))
VAULT_RETRY_DELAY = float(os.environ.get("VAULT_RETRY_DELAY", 1.0))
VAULT_RATE_LIMIT_WARNING = 100

# Lockout policy
VAULT_MAX_FAILED_ATTEMPTS = int(os.environ.get("VAULT_MAX_FAILED_ATTEMPTS", 5))
VAULT_LOCKOUT_SECONDS = int(os.environ.get("VAULT_LOCKOUT_SECONDS", 15 * 60))
VAULT_MAX_LOCKOUT_SECONDS = int(
    os.environ.get("VAULT_MAX_LOCKOUT_SECONDS", 24 * 60 * 60)
)
VAULT_PIN_LENGTH = 6

# Expiry sweep: hard cap of entries purged per cleanup pass
VAULT_CLEANUP_BATCH_SIZE = 50

# Local secure storage
VAULT_STORAGE_PATH = os.environ.get(
    "VAULT_STORAGE_PATH",
    os.path.join(os.path.expanduser("~"), ".navigator-vault", "credentials.json"),
)

# Local cache of encrypted entry blobs
VAULT_CACHE_DIR = os.environ.get(
    "VAULT_CACHE_DIR",
    os.path.join(os.path.expanduser("~"), ".navigator-vault", "cache"),
)
