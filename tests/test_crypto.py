"""
Tests for the vault crypto core.

Tests cover:
- Argon2id key derivation
- MasterKey wiping
- AES-GCM envelope format and tamper detection
- PIN verifier
"""
import os
import struct
import pytest

from navigator_vault.vault.crypto import (
    ENVELOPE_VERSION,
    MIN_ENVELOPE_SIZE,
    NONCE_SIZE,
    VERSION_SIZE,
    CryptoService,
    MasterKey,
    decrypt,
    encrypt,
    extract_version,
    hash_pin,
    verify_pin,
)
from navigator_vault.vault.errors import (
    DecryptionFailed,
    EncryptionFailed,
    InvalidDataFormat,
    InvalidKeyLength,
    InvalidSaltLength,
    TamperedData,
    UnsupportedVersion,
    VaultStateError,
)


# --- Test Fixtures ---

@pytest.fixture
def crypto():
    """CryptoService with cheap Argon2 parameters."""
    return CryptoService(time_cost=1, memory_cost=1024, parallelism=1)


@pytest.fixture
def key():
    return MasterKey(os.urandom(32))


@pytest.fixture
def salt():
    return b"s" * 32


# --- Test Key Derivation ---

class TestKeyDerivation:
    """Tests for Argon2id key derivation."""

    def test_derive_is_deterministic(self, crypto, salt):
        first = crypto.derive_key("123456", salt).unwrap()
        second = crypto.derive_key("123456", salt).unwrap()
        assert len(first) == 32
        assert bytes(first.material) == bytes(second.material)

    def test_different_pin_different_key(self, crypto, salt):
        first = crypto.derive_key("123456", salt).unwrap()
        second = crypto.derive_key("654321", salt).unwrap()
        assert bytes(first.material) != bytes(second.material)

    def test_different_salt_different_key(self, crypto, salt):
        first = crypto.derive_key("123456", salt).unwrap()
        second = crypto.derive_key("123456", b"t" * 32).unwrap()
        assert bytes(first.material) != bytes(second.material)

    def test_short_salt_rejected(self, crypto):
        result = crypto.derive_key("123456", b"short")
        assert isinstance(result.error_or_none, InvalidSaltLength)

    @pytest.mark.asyncio
    async def test_derive_async(self, crypto, salt):
        result = await crypto.derive_key_async("123456", salt)
        assert result.is_success

    def test_generate_salt(self, crypto):
        assert len(crypto.generate_salt()) == 32
        assert crypto.generate_salt() != crypto.generate_salt()


# --- Test MasterKey ---

class TestMasterKey:
    """Tests for MasterKey lifecycle."""

    def test_wrong_length_rejected(self):
        with pytest.raises(ValueError):
            MasterKey(b"x" * 16)

    def test_wipe_zeroes_material(self, key):
        buffer = key.material
        key.wipe()
        assert key.is_valid is False
        assert bytes(buffer) == b"\x00" * 32

    def test_material_after_wipe_raises(self, key):
        key.wipe()
        with pytest.raises(VaultStateError):
            key.material

    def test_repr_hides_material(self, key):
        assert repr(key) == "MasterKey(32 bytes)"
        key.wipe()
        assert repr(key) == "MasterKey(wiped)"

    def test_encrypt_with_wiped_key_fails(self, key):
        key.wipe()
        assert isinstance(encrypt(b"x", key).error_or_none, EncryptionFailed)
        assert isinstance(decrypt(b"\x00" * 64, key).error_or_none, DecryptionFailed)


# --- Test Envelope ---

class TestEnvelope:
    """Tests for the AES-GCM envelope."""

    def test_encrypt_decrypt(self, key):
        envelope = encrypt(b"secret", key).unwrap()
        assert decrypt(envelope, key).unwrap() == b"secret"

    def test_envelope_layout(self, key):
        envelope = encrypt(b"secret", key).unwrap()
        assert struct.unpack("<I", envelope[:VERSION_SIZE])[0] == ENVELOPE_VERSION
        assert len(envelope) == VERSION_SIZE + NONCE_SIZE + len(b"secret") + 16
        assert extract_version(envelope).unwrap() == ENVELOPE_VERSION

    def test_nonces_are_random(self, key):
        assert encrypt(b"same", key).unwrap() != encrypt(b"same", key).unwrap()

    def test_empty_plaintext(self, key):
        envelope = encrypt(b"", key).unwrap()
        assert len(envelope) == MIN_ENVELOPE_SIZE
        assert decrypt(envelope, key).unwrap() == b""

    def test_raw_bytes_key(self):
        raw = os.urandom(32)
        assert decrypt(encrypt(b"x", raw).unwrap(), raw).unwrap() == b"x"

    def test_tampered_ciphertext(self, key):
        envelope = bytearray(encrypt(b"secret", key).unwrap())
        envelope[-1] ^= 0x01
        assert isinstance(decrypt(bytes(envelope), key).error_or_none, TamperedData)

    def test_wrong_key(self, key):
        envelope = encrypt(b"secret", key).unwrap()
        other = MasterKey(os.urandom(32))
        assert isinstance(decrypt(envelope, other).error_or_none, TamperedData)

    def test_invalid_key_length(self):
        assert isinstance(encrypt(b"x", b"short").error_or_none, InvalidKeyLength)

    def test_too_short(self, key):
        assert isinstance(decrypt(b"abc", key).error_or_none, InvalidDataFormat)
        assert isinstance(extract_version(b"ab").error_or_none, InvalidDataFormat)

    def test_unsupported_version(self, key):
        envelope = encrypt(b"secret", key).unwrap()
        forged = struct.pack("<I", 99) + envelope[VERSION_SIZE:]
        error = decrypt(forged, key).error_or_none
        assert isinstance(error, UnsupportedVersion)
        assert error.version == 99


# --- Test PIN Verifier ---

class TestPinVerifier:
    """Tests for the PIN verifier."""

    def test_verify(self, salt):
        verifier = hash_pin("123456", salt)
        assert verify_pin("123456", salt, verifier) is True
        assert verify_pin("123457", salt, verifier) is False

    def test_salt_bound(self, salt):
        assert hash_pin("123456", salt) != hash_pin("123456", b"t" * 32)
