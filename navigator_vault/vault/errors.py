"""
Vault Errors — typed failures carried by ``Failure`` results.

Three closed families:

- ``CryptoError``: envelope encryption/decryption and key derivation.
- ``RepositoryError``: the remote contents store (not-found, hash conflict,
  transport).
- ``AuthError``: PIN authentication (wrong PIN, lockout, storage,
  key derivation, setup validation).

They subclass ``Exception`` so ``Result.unwrap()`` can raise them, but
expected failures are always returned, never raised. ``VaultStateError`` is
the one error raised directly: an operation was called in a state where it
cannot make progress.

Security Note:
    Messages never include key material, PINs or payloads.
"""
from datetime import datetime, timedelta
from typing import Optional


class VaultStateError(RuntimeError):
    """Raised when an operation is invoked in the wrong vault state."""


# ---------------------------------------------------------------------------
# Crypto errors
# ---------------------------------------------------------------------------

class CryptoError(Exception):
    """Base class for crypto failures."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r})"


class EncryptionFailed(CryptoError):
    def __init__(self, details: Optional[str] = None):
        super().__init__(details or "Encryption failed")


class DecryptionFailed(CryptoError):
    def __init__(self, details: Optional[str] = None):
        super().__init__(details or "Decryption failed")


class TamperedData(CryptoError):
    """Authentication tag mismatch: wrong key or modified ciphertext."""

    def __init__(self):
        super().__init__("Data integrity check failed - possible tampering")


class InvalidKeyLength(CryptoError):
    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Invalid key length: expected {expected}, got {actual}")


class InvalidSaltLength(CryptoError):
    def __init__(self, min_length: int, actual: int):
        self.min_length = min_length
        self.actual = actual
        super().__init__(
            f"Invalid salt length: minimum {min_length}, got {actual}"
        )


class UnsupportedVersion(CryptoError):
    def __init__(self, version: int, supported: tuple = (1,)):
        self.version = version
        self.supported = supported
        super().__init__(
            f"Unsupported version: {version} (supported: {list(supported)})"
        )


class InvalidDataFormat(CryptoError):
    def __init__(self, details: Optional[str] = None):
        super().__init__(details or "Invalid encrypted data format")


class KeyDerivationFailed(CryptoError):
    def __init__(self, details: Optional[str] = None):
        super().__init__(details or "Key derivation failed")


# ---------------------------------------------------------------------------
# Repository errors
# ---------------------------------------------------------------------------

class RepositoryError(Exception):
    """Base class for remote store failures."""

    #: False only for outcomes that describe the remote object itself
    #: (missing, hash mismatch) rather than the transport.
    is_transport: bool = True

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status = status

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r})"


class NotFound(RepositoryError):
    is_transport = False

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Resource not found: {path}", 404)


class ConflictError(RepositoryError):
    """The remote object's hash no longer matches the expected one."""

    is_transport = False

    def __init__(self, path: str, expected_sha: Optional[str] = None):
        self.path = path
        self.expected_sha = expected_sha
        super().__init__(
            f"Conflict: {path} was modified (expected SHA: {expected_sha})", 409
        )


class AuthenticationFailed(RepositoryError):
    def __init__(self):
        super().__init__("Authentication failed - check your token", 401)


class AccessForbidden(RepositoryError):
    def __init__(self):
        super().__init__("Access forbidden - check repository permissions", 403)


class RateLimitExceeded(RepositoryError):
    def __init__(
        self,
        reset_at: Optional[datetime] = None,
        remaining: Optional[int] = None,
    ):
        self.reset_at = reset_at
        self.remaining = remaining
        if reset_at is not None:
            message = f"Rate limit exceeded - resets at {reset_at.isoformat()}"
        else:
            message = "Rate limit exceeded"
        super().__init__(message, 429)


class NetworkError(RepositoryError):
    def __init__(self, details: str):
        self.details = details
        super().__init__(f"Network error: {details}")


class ServerError(RepositoryError):
    def __init__(self, status: int, details: Optional[str] = None):
        self.details = details
        super().__init__(
            f"Server error ({status}): {details or 'Unknown error'}", status
        )


class UnknownRepositoryError(RepositoryError):
    def __init__(self, details: str, status: Optional[int] = None):
        self.details = details
        super().__init__(f"Repository error: {details}", status)


# ---------------------------------------------------------------------------
# Authentication errors
# ---------------------------------------------------------------------------

class AuthError(Exception):
    """Base class for authentication failures.

    ``message`` is rendered only from the error's own fields; ``retryable``
    tells the caller whether submitting again can succeed.
    """

    retryable: bool = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r})"


class WrongPinError(AuthError):
    retryable = True

    def __init__(self, attempts_remaining: int):
        self.attempts_remaining = attempts_remaining
        super().__init__(
            f"Wrong PIN. {attempts_remaining} attempts remaining."
        )


class LockedOutError(AuthError):
    """Too many failed attempts; retry after ``duration``."""

    retryable = True

    def __init__(self, duration: timedelta):
        self.duration = duration
        seconds = max(0, int(duration.total_seconds()))
        minutes = seconds // 60
        if minutes > 0:
            message = f"Too many failed attempts. Try again in {minutes} minutes."
        else:
            message = f"Too many failed attempts. Try again in {seconds} seconds."
        super().__init__(message)


class StorageError(AuthError):
    def __init__(self, details: str):
        self.details = details
        super().__init__(f"Storage error: {details}")


class KeyDerivationError(AuthError):
    def __init__(self, details: str):
        self.details = details
        super().__init__(f"Failed to derive key: {details}")


class SetupValidationError(AuthError):
    retryable = True

    def __init__(self, details: str):
        self.details = details
        super().__init__(details)
