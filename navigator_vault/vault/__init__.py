"""Secret Vault — PIN-protected secrets synced through a GitHub repository.

Security Note (Threat Model):
    The master key and decrypted index live in process memory while the
    vault is unlocked. A memory dump of the process taken in that window
    could expose them. Locking wipes the key buffer, but Python may keep
    transient copies (for example inside the AES-GCM call) until they are
    garbage collected. This is an accepted limitation.
"""

from .auth import (
    AuthState,
    Authenticator,
    Errored,
    Initializing,
    Locked,
    NotConfigured,
    Unlocked,
)
from .cleanup import CleanupResult, CleanupService
from .config import LockoutPolicy, VaultConfig, VaultMetadata
from .crypto import CryptoService, MasterKey
from .repository import VaultRepository
from .secret_vault import SecretVault
from .storage import (
    CredentialStore,
    FileBlobCache,
    FileStorage,
    MemoryBlobCache,
    MemoryStorage,
)

__all__ = [
    "SecretVault",
    "Authenticator",
    "AuthState",
    "Initializing",
    "NotConfigured",
    "Locked",
    "Unlocked",
    "Errored",
    "CleanupService",
    "CleanupResult",
    "VaultConfig",
    "VaultMetadata",
    "LockoutPolicy",
    "CryptoService",
    "MasterKey",
    "VaultRepository",
    "CredentialStore",
    "FileStorage",
    "MemoryStorage",
    "FileBlobCache",
    "MemoryBlobCache",
]
