"""
Vault Crypto Core — Key derivation, envelope encryption and PIN verification.

- Master key: Argon2id(PIN, salt) → 32-byte key held in a ``MasterKey``
- Envelope: AES-256-GCM → [version 4B uint32 LE][nonce 12B][payload + tag 16B]
- PIN verifier: HMAC-SHA256(salt, PIN), compared in constant time

Every operation returns a ``Result``; failures are typed ``CryptoError``s.

Security Note:
    Never log plaintext, ciphertext, PINs or key material.
    Nonces are random 96-bit; collision probability negligible under normal usage.
"""
import os
import hmac
import struct
import asyncio
import hashlib
import secrets
import logging
from typing import Union

from argon2.low_level import Type, hash_secret_raw
from argon2.exceptions import HashingError
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..result import Failure, Result, Success
from .errors import (
    CryptoError,
    DecryptionFailed,
    EncryptionFailed,
    InvalidDataFormat,
    InvalidKeyLength,
    InvalidSaltLength,
    KeyDerivationFailed,
    TamperedData,
    UnsupportedVersion,
    VaultStateError,
)

logger = logging.getLogger("navigator.vault")

ENVELOPE_VERSION = 1
VERSION_SIZE = 4  # uint32 little-endian
NONCE_SIZE = 12  # 96-bit nonce
TAG_SIZE = 16  # GCM tag
KEY_LENGTH = 32  # AES-256
MIN_ENVELOPE_SIZE = VERSION_SIZE + NONCE_SIZE + TAG_SIZE

SALT_LENGTH = 32
MIN_SALT_LENGTH = 16

ARGON2_MEMORY_COST = 49152  # KiB
ARGON2_TIME_COST = 3
ARGON2_PARALLELISM = 2


class MasterKey:
    """Owner of the raw master key bytes.

    The material lives in a ``bytearray`` so ``wipe()`` can zero it in place.
    After a wipe the key is unusable: reading ``material`` raises
    ``VaultStateError``.
    """

    __slots__ = ("_material", "_wiped")

    def __init__(self, material: bytes):
        if len(material) != KEY_LENGTH:
            raise ValueError(
                f"Master key must be {KEY_LENGTH} bytes, got {len(material)}"
            )
        self._material = bytearray(material)
        self._wiped = False

    @property
    def is_valid(self) -> bool:
        return not self._wiped

    @property
    def material(self) -> bytearray:
        if self._wiped:
            raise VaultStateError("Master key has been wiped")
        return self._material

    def wipe(self) -> None:
        """Zero the key material; idempotent."""
        for i in range(len(self._material)):
            self._material[i] = 0
        self._wiped = True

    def __len__(self) -> int:
        return len(self._material)

    def __repr__(self) -> str:
        if self._wiped:
            return "MasterKey(wiped)"
        return f"MasterKey({len(self._material)} bytes)"


KeyLike = Union[MasterKey, bytes, bytearray]


def _key_bytes(key: KeyLike) -> bytes:
    if isinstance(key, MasterKey):
        return bytes(key.material)
    return bytes(key)


# ---------------------------------------------------------------------------
# Key derivation
# ---------------------------------------------------------------------------

def generate_salt(length: int = SALT_LENGTH) -> bytes:
    """Generate a random KDF salt."""
    return secrets.token_bytes(length)


def derive_key(
    pin: str,
    salt: bytes,
    time_cost: int = ARGON2_TIME_COST,
    memory_cost: int = ARGON2_MEMORY_COST,
    parallelism: int = ARGON2_PARALLELISM,
) -> Result[MasterKey, CryptoError]:
    """Derive the 32-byte master key from a PIN using Argon2id.

    Args:
        pin: User PIN.
        salt: Vault salt (shared through the remote ``config.json``).
        time_cost: Argon2 passes.
        memory_cost: Argon2 memory in KiB.
        parallelism: Argon2 lanes.

    Returns:
        Success(MasterKey) or Failure(InvalidSaltLength | KeyDerivationFailed).
    """
    if len(salt) < MIN_SALT_LENGTH:
        return Failure(InvalidSaltLength(MIN_SALT_LENGTH, len(salt)))
    try:
        raw = hash_secret_raw(
            secret=pin.encode("utf-8"),
            salt=salt,
            time_cost=time_cost,
            memory_cost=memory_cost,
            parallelism=parallelism,
            hash_len=KEY_LENGTH,
            type=Type.ID,
        )
    except (HashingError, ValueError) as err:
        return Failure(KeyDerivationFailed(str(err)))
    return Success(MasterKey(raw))


def hash_pin(pin: str, salt: bytes) -> bytes:
    """PIN verifier stored locally for quick unlock checks."""
    return hmac.new(salt, pin.encode("utf-8"), hashlib.sha256).digest()


def verify_pin(pin: str, salt: bytes, expected: bytes) -> bool:
    """Constant-time comparison of a PIN against its stored verifier."""
    return hmac.compare_digest(hash_pin(pin, salt), expected)


# ---------------------------------------------------------------------------
# Envelope encryption
# ---------------------------------------------------------------------------

def encrypt(plaintext: bytes, key: KeyLike) -> Result[bytes, CryptoError]:
    """Encrypt a payload into a versioned AES-GCM envelope.

    Format: [version 4B LE][nonce 12B][encrypted_payload + GCM_tag 16B]

    Args:
        plaintext: Data to encrypt.
        key: MasterKey or raw 32-byte key.

    Returns:
        Success(envelope bytes) or a typed CryptoError failure.
    """
    try:
        material = _key_bytes(key)
    except VaultStateError as err:
        return Failure(EncryptionFailed(str(err)))
    if len(material) != KEY_LENGTH:
        return Failure(InvalidKeyLength(KEY_LENGTH, len(material)))
    try:
        nonce = os.urandom(NONCE_SIZE)
        ct = AESGCM(material).encrypt(nonce, bytes(plaintext), None)
    except Exception as err:
        return Failure(EncryptionFailed(f"Encryption failed: {err}"))
    return Success(struct.pack("<I", ENVELOPE_VERSION) + nonce + ct)


def extract_version(data: bytes) -> Result[int, CryptoError]:
    """Read the envelope version without decrypting."""
    if len(data) < VERSION_SIZE:
        return Failure(InvalidDataFormat("Data too short to contain a version"))
    return Success(struct.unpack("<I", data[:VERSION_SIZE])[0])


def decrypt(data: bytes, key: KeyLike) -> Result[bytes, CryptoError]:
    """Decrypt a versioned AES-GCM envelope.

    Args:
        data: Envelope produced by ``encrypt``.
        key: MasterKey or raw 32-byte key.

    Returns:
        Success(plaintext) or a typed CryptoError failure; a wrong key or a
        modified envelope yields ``TamperedData``.
    """
    try:
        material = _key_bytes(key)
    except VaultStateError as err:
        return Failure(DecryptionFailed(str(err)))
    if len(material) != KEY_LENGTH:
        return Failure(InvalidKeyLength(KEY_LENGTH, len(material)))
    if len(data) < MIN_ENVELOPE_SIZE:
        return Failure(InvalidDataFormat(
            f"Envelope too short: {len(data)} bytes (minimum {MIN_ENVELOPE_SIZE})"
        ))
    version = struct.unpack("<I", data[:VERSION_SIZE])[0]
    if version != ENVELOPE_VERSION:
        return Failure(UnsupportedVersion(version, (ENVELOPE_VERSION,)))
    nonce = data[VERSION_SIZE:VERSION_SIZE + NONCE_SIZE]
    ct = data[VERSION_SIZE + NONCE_SIZE:]
    try:
        return Success(AESGCM(material).decrypt(nonce, bytes(ct), None))
    except InvalidTag:
        return Failure(TamperedData())
    except Exception as err:
        return Failure(DecryptionFailed(f"Decryption failed: {err}"))


class CryptoService:
    """Injectable facade over the module functions.

    Argon2 costs are per instance so deployments (and tests) can tune them.
    """

    def __init__(
        self,
        time_cost: int = ARGON2_TIME_COST,
        memory_cost: int = ARGON2_MEMORY_COST,
        parallelism: int = ARGON2_PARALLELISM,
    ):
        self.time_cost = time_cost
        self.memory_cost = memory_cost
        self.parallelism = parallelism

    def generate_salt(self) -> bytes:
        return generate_salt()

    def derive_key(self, pin: str, salt: bytes) -> Result[MasterKey, CryptoError]:
        return derive_key(
            pin,
            salt,
            time_cost=self.time_cost,
            memory_cost=self.memory_cost,
            parallelism=self.parallelism,
        )

    async def derive_key_async(
        self, pin: str, salt: bytes
    ) -> Result[MasterKey, CryptoError]:
        """Run the (CPU-bound) derivation in a worker thread."""
        return await asyncio.to_thread(self.derive_key, pin, salt)

    def hash_pin(self, pin: str, salt: bytes) -> bytes:
        return hash_pin(pin, salt)

    def verify_pin(self, pin: str, salt: bytes, expected: bytes) -> bool:
        return verify_pin(pin, salt, expected)

    def encrypt(self, plaintext: bytes, key: KeyLike) -> Result[bytes, CryptoError]:
        return encrypt(plaintext, key)

    def decrypt(self, data: bytes, key: KeyLike) -> Result[bytes, CryptoError]:
        return decrypt(data, key)
